import json
import logging
import os
from datetime import timedelta
from functools import wraps

import click
from flask import Blueprint, Flask, current_app, jsonify, request
from flask_bcrypt import Bcrypt
from flask_jwt_extended import JWTManager, create_access_token, get_jwt_identity, jwt_required
from flask_mqtt import Mqtt
from sqlalchemy.exc import SQLAlchemyError

from . import store
from .clock import now_ms
from .config import load_config
from .consolidation import consolidate_machine
from .errors import IrrigationError, LowWaterError, Unauthorized, ValidationFailure
from .models import User, db
from .schemas import (
    AutoThresholdRequest,
    LoginRequest,
    MachineRegisterRequest,
    ManualMotorRequest,
    TelemetryRequest,
    UserRegisterRequest,
    parse,
)
from .telemetry import ingest_telemetry, is_tank_low, set_automatic, set_manual

logger = logging.getLogger(__name__)

MS_PER_DAY = 86_400_000
TELEMETRY_TOPIC = "machine/+/telemetry"
COMMAND_TOPIC = "machine/{}/cmd/motor"

bcrypt = Bcrypt()
jwt = JWTManager()

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")
api_bp = Blueprint("api", __name__, url_prefix="/api")
iot_bp = Blueprint("iot", __name__, url_prefix="/iot")


def _utc_offset():
    return timedelta(minutes=current_app.config["LOCAL_UTC_OFFSET_MINUTES"])


def _retention_ms():
    return current_app.config["LOG_RETENTION_DAYS"] * MS_PER_DAY


def _current_user_id():
    return int(get_jwt_identity())


# --- Telemetry ------------------------------------------------------

def record_telemetry(product_key, data):
    """Ingest one device report and return the motor states to apply."""
    reading = parse(TelemetryRequest, data)
    states = store.with_machine_by_product_key(
        product_key,
        lambda machine: ingest_telemetry(
            machine,
            reading.water_level,
            reading.soil_moisture,
            reading.motor_on,
            now_ms(),
            retention_ms=_retention_ms(),
        ),
    )
    logger.info("Telemetry from %s: tank=%s%% motors=%s", product_key, reading.water_level, states)
    return states


def process_telemetry_message(topic, payload):
    """Handle a raw MQTT telemetry message; returns motor states or None if rejected."""
    try:
        product_key = topic.split("/")[1]
        data = json.loads(payload)
    except (IndexError, ValueError) as e:
        logger.warning("Error processing message: %s, Topic: %s, Payload: %s", e, topic, payload)
        return None

    if not isinstance(data, dict) or not store.is_product_authentic(product_key, data.get("code")):
        logger.warning("Rejected telemetry on %s: invalid productKey or code", topic)
        return None

    try:
        return record_telemetry(product_key, data)
    except IrrigationError as e:
        logger.warning("Telemetry from %s rejected: %s", product_key, e.message)
        return None
    except SQLAlchemyError as e:
        logger.error("Could not store telemetry from %s: %s", product_key, e)
        return None


def init_mqtt(app):
    mqtt = Mqtt(app)

    @mqtt.on_connect()
    def handle_connect(*_):
        mqtt.subscribe(TELEMETRY_TOPIC)

    @mqtt.on_message()
    def handle_message(_, __, msg):
        with app.app_context():
            states = process_telemetry_message(msg.topic, msg.payload)
        if states is None:
            return
        product_key = msg.topic.split("/")[1]
        mqtt.publish(COMMAND_TOPIC.format(product_key), json.dumps({"motorOn": states}), qos=1)

    app.extensions["irrigation_mqtt"] = mqtt
    return mqtt


# --- Auth Endpoints -------------------------------------------------

@auth_bp.route("/register", methods=["POST"])
def register():
    details = parse(UserRegisterRequest, request.get_json(silent=True))

    if User.query.filter_by(email=details.email).first():
        return jsonify({"msg": "Email already registered"}), 409

    pw_hash = bcrypt.generate_password_hash(details.password).decode('utf-8')
    db.session.add(User(name=details.name, email=details.email, password_hash=pw_hash))
    try:
        store.commit()
    except SQLAlchemyError as e:
        logger.error("Error during registration: %s", e)
        return jsonify({"msg": "Registration failed"}), 500
    return jsonify({"msg": "User registered successfully"}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    details = parse(LoginRequest, request.get_json(silent=True))

    user = User.query.filter_by(email=details.email).first()
    if user and bcrypt.check_password_hash(user.password_hash, details.password):
        return jsonify(access_token=create_access_token(identity=str(user.id)))
    return jsonify({"msg": "Bad email or password"}), 401


# --- Machine API ----------------------------------------------------

@api_bp.route("/machines", methods=["GET"])
@jwt_required()
def list_machines():
    user = db.session.get(User, _current_user_id())
    if not user:
        return jsonify({"msg": "User not found"}), 404
    return jsonify([m.summary() for m in user.machines])


@api_bp.route("/machines", methods=["POST"])
@jwt_required()
def create_machine():
    user = db.session.get(User, _current_user_id())
    if not user:
        return jsonify({"error": "User not found"}), 404

    details = parse(MachineRegisterRequest, request.get_json(silent=True))
    machine = store.register_machine(
        user,
        details.name,
        details.product_key,
        details.address,
        details.probe_count or current_app.config["DEFAULT_PROBE_COUNT"],
        details.per_probe_control,
    )
    return jsonify(machine.summary()), 201


@api_bp.route("/machines/<int:machine_id>", methods=["GET"])
@jwt_required()
def get_machine(machine_id):
    machine = store.load_machine(machine_id, _current_user_id())
    return jsonify(machine.state())


@api_bp.route("/machines/<int:machine_id>", methods=["DELETE"])
@jwt_required()
def remove_machine(machine_id):
    store.delete_machine(machine_id, _current_user_id())
    return jsonify({"msg": "deleted successfully"})


@api_bp.route("/machines/<int:machine_id>/threshold/auto", methods=["PUT"])
@jwt_required()
def threshold_auto(machine_id):
    details = parse(AutoThresholdRequest, request.get_json(silent=True))
    states, tank_low = store.with_machine(
        machine_id,
        lambda m: (set_automatic(m, details.threshold_moisture), is_tank_low(m.water_tank_level)),
        owner_id=_current_user_id(),
    )
    if tank_low:
        return jsonify({"msg": "threshold updated. motors off due to low tank water", "isMotorOn": states})
    return jsonify({"msg": "motors updated successfully", "isMotorOn": states})


@api_bp.route("/machines/<int:machine_id>/threshold/manual", methods=["PUT"])
@jwt_required()
def threshold_manual(machine_id):
    details = parse(ManualMotorRequest, request.get_json(silent=True))
    states, tank_low = store.with_machine(
        machine_id,
        lambda m: (set_manual(m, details.motor_on), is_tank_low(m.water_tank_level)),
        owner_id=_current_user_id(),
    )
    if tank_low:
        raise LowWaterError("can't turn on motor. Tank water low", detail={"isMotorOn": states})
    return jsonify({"msg": "motors updated successfully", "isMotorOn": states})


@api_bp.route("/machines/<int:machine_id>/logs", methods=["GET"])
@jwt_required()
def get_logs(machine_id):
    machine = store.load_machine(machine_id, _current_user_id())
    limit = request.args.get("limit", 100, type=int)
    if limit < 1:
        raise ValidationFailure("limit must be a positive integer")
    return jsonify({
        "waterTankLog": machine.water_tank_log[-limit:],
        "soilMoistureLog": [p["soilMoistureLog"][-limit:] for p in machine.probes],
    })


@api_bp.route("/machines/<int:machine_id>/motor-usage", methods=["GET"])
@jwt_required()
def get_motor_usage(machine_id):
    offset = _utc_offset()
    tables = store.with_machine(
        machine_id,
        lambda m: consolidate_machine(m, offset),
        owner_id=_current_user_id(),
    )
    return jsonify({"motorUsagePerDay": tables})


# --- Device Endpoints -----------------------------------------------

def machine_auth_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        data = request.get_json(silent=True) or {}
        product_key = data.get("productKey") or request.args.get("productKey")
        code = data.get("code") or request.args.get("code")
        if not product_key or not store.is_product_authentic(product_key, code):
            raise Unauthorized("Access denied, invalid productKey or Code")
        return view(product_key, *args, **kwargs)
    return wrapper


@iot_bp.route("/motor-status", methods=["GET"])
@machine_auth_required
def motor_status(product_key):
    machine = store.load_machine_by_product_key(product_key)
    return jsonify({"isMotorOn": machine.motor_states})


@iot_bp.route("/telemetry", methods=["POST"])
@machine_auth_required
def telemetry(product_key):
    states = record_telemetry(product_key, request.get_json(silent=True))
    return jsonify({"isMotorOn": states})


# --- Application ----------------------------------------------------

def handle_irrigation_error(error):
    body = {"error": error.message}
    body.update(error.detail)
    return jsonify(body), error.http_status


def register_commands(app):
    @app.cli.command("init-db")
    def init_db():
        """Create database tables."""
        db.create_all()
        click.echo("Database tables created (if they didn't exist).")

    @app.cli.command("provision-key")
    @click.argument("product_key")
    @click.option("--code", default=None, help="10 character device auth code.")
    def provision_key(product_key, code):
        """Add a factory product key."""
        store.provision_product_key(product_key, code)
        click.echo(f"Provisioned {product_key}")


def create_app(overrides=None):
    app = Flask(__name__)
    app.config.update(load_config())
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db.init_app(app)
    bcrypt.init_app(app)
    jwt.init_app(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp)
    app.register_blueprint(iot_bp)
    app.register_error_handler(IrrigationError, handle_irrigation_error)
    register_commands(app)

    if app.config["MQTT_ENABLED"]:
        init_mqtt(app)
    return app


if __name__ == "__main__":
    app = create_app()
    with app.app_context():
        try:
            db.create_all()
            logger.info("Database tables created (if they didn't exist).")
        except Exception as e:
            logger.error("Error during initial db setup: %s", e)
    app.run(host="0.0.0.0", port=8000, debug=os.getenv("FLASK_DEBUG", "False").lower() == "true")
