"""
Shared fixtures: a Flask app on in-memory SQLite, a test client, and helpers
for users, product keys and machines.
"""

import logging
from datetime import datetime

import pytest

from irrigation_backend import create_app
from irrigation_backend.clock import local_zone, to_ms
from irrigation_backend.models import Machine, User, db
from irrigation_backend.store import provision_product_key

logging.getLogger("irrigation_backend").setLevel(logging.WARNING)

PRODUCT_KEY = "PK0000000000001"
DEVICE_CODE = "CODE000001"
IST = local_zone()


def ist_ms(*args):
    """Epoch ms for a wall-clock time at +05:30."""
    return to_ms(datetime(*args, tzinfo=IST))


@pytest.fixture()
def app():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "JWT_SECRET_KEY": "test-secret-key-with-enough-length-for-hs256",
        "BCRYPT_LOG_ROUNDS": 4,
        "MQTT_ENABLED": False,
        "LOG_LEVEL": "WARNING",
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def product_key(app):
    return provision_product_key(PRODUCT_KEY, DEVICE_CODE)


def register_and_login(client, email="ada@example.com"):
    client.post("/auth/register", json={"name": "Ada", "email": email, "password": "secret"})
    resp = client.post("/auth/login", json={"email": email, "password": "secret"})
    return {"Authorization": f"Bearer {resp.get_json()['access_token']}"}


@pytest.fixture()
def auth_headers(client):
    return register_and_login(client)


@pytest.fixture()
def machine_id(client, auth_headers, product_key):
    resp = client.post("/api/machines", headers=auth_headers, json={
        "name": "Greenhouse",
        "productKey": PRODUCT_KEY,
        "address": "12 Orchard Lane, Pune",
    })
    assert resp.status_code == 201
    return resp.get_json()["id"]


def make_machine(probe_count=4, per_probe_control=True):
    """A transient machine for pure-logic tests; never added to a session."""
    owner = User(name="Ada", email="ada@example.com", password_hash="x")
    return Machine.register(owner, "Bench", PRODUCT_KEY, "Test bench address", probe_count, per_probe_control)
