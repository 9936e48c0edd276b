from flask_sqlalchemy import SQLAlchemy

from .telemetry import Automatic, Manual, threshold_of

db = SQLAlchemy()

DEFAULT_THRESHOLD = 50
DEFAULT_LEVEL = 50


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False)
    email = db.Column(db.String(50), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    machines = db.relationship('Machine', backref='owner', lazy=True)


class ProductKey(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    product_key = db.Column(db.String(15), unique=True, nullable=False)
    code = db.Column(db.String(10), unique=True, nullable=True)  # device auth code
    is_registered = db.Column(db.Boolean, nullable=False, default=False)


class Machine(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    product_key = db.Column(db.String(15), unique=True, nullable=False, index=True)
    name = db.Column(db.String(20), nullable=False)
    address = db.Column(db.String(100), nullable=False)

    manual_mode = db.Column(db.Boolean, nullable=False, default=False)
    threshold_moisture = db.Column(db.Integer, nullable=False, default=DEFAULT_THRESHOLD)
    per_probe_control = db.Column(db.Boolean, nullable=False, default=True)
    water_tank_level = db.Column(db.Integer, nullable=False, default=DEFAULT_LEVEL)

    # document-style columns, written back whole by store.save_machine
    probes = db.Column(db.JSON, nullable=False)
    water_tank_log = db.Column(db.JSON, nullable=False)

    JSON_FIELDS = ('probes', 'water_tank_log')

    @classmethod
    def register(cls, owner, name, product_key, address, probe_count=1, per_probe_control=True):
        return cls(
            owner=owner,
            name=name,
            product_key=product_key,
            address=address,
            manual_mode=False,
            threshold_moisture=DEFAULT_THRESHOLD,
            per_probe_control=per_probe_control,
            water_tank_level=DEFAULT_LEVEL,
            probes=[new_probe() for _ in range(probe_count)],
            water_tank_log=[],
        )

    @property
    def mode(self):
        if self.manual_mode:
            return Manual()
        return Automatic(self.threshold_moisture)

    @mode.setter
    def mode(self, mode):
        self.manual_mode = isinstance(mode, Manual)
        if isinstance(mode, Automatic):
            self.threshold_moisture = mode.threshold

    @property
    def motor_states(self):
        return [p["isMotorOn"] for p in self.probes]

    def summary(self):
        return {
            "id": self.id,
            "name": self.name,
            "productKey": self.product_key,
            "address": self.address,
            "thresholdMoisture": threshold_of(self.mode),
        }

    def state(self):
        return {
            **self.summary(),
            "perProbeControl": self.per_probe_control,
            "waterTankLevel": self.water_tank_level,
            "soilMoisture": [p["value"] for p in self.probes],
            "isMotorOn": self.motor_states,
        }


def new_probe():
    return {
        "value": DEFAULT_LEVEL,
        "isMotorOn": False,
        "soilMoistureLog": [],
        "motorLog": [],
        "motorUsagePerDay": [],
    }
