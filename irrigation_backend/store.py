import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.attributes import flag_modified

from .errors import ConflictError, NotFoundError
from .models import Machine, ProductKey, db

logger = logging.getLogger(__name__)


def load_machine(machine_id, owner_id=None):
    machine = db.session.get(Machine, machine_id)
    if machine is None or (owner_id is not None and machine.user_id != owner_id):
        raise NotFoundError("machine not found for the user")
    return machine


def load_machine_by_product_key(product_key):
    machine = Machine.query.filter_by(product_key=product_key).first()
    if machine is None:
        raise NotFoundError("machine unavailable")
    return machine


def commit():
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise


def save_machine(machine):
    # JSON columns are mutated in place, so flag them for a whole-document write
    for field in Machine.JSON_FIELDS:
        flag_modified(machine, field)
    db.session.add(machine)
    commit()


def with_machine(machine_id, fn, owner_id=None):
    """Load a machine, apply ``fn`` to it and save it back. Returns ``fn``'s result.

    No locking: concurrent writers to the same machine race.
    """
    machine = load_machine(machine_id, owner_id)
    result = fn(machine)
    save_machine(machine)
    return result


def with_machine_by_product_key(product_key, fn):
    machine = load_machine_by_product_key(product_key)
    result = fn(machine)
    save_machine(machine)
    return result


# --- Product keys ---------------------------------------------------


def is_product_authentic(product_key, code):
    key = ProductKey.query.filter_by(product_key=product_key).first()
    if key is None:
        return False
    # keys provisioned without a device code authenticate by key alone
    return key.code is None or key.code == code


def provision_product_key(product_key, code=None):
    if ProductKey.query.filter_by(product_key=product_key).first() is not None:
        raise ConflictError("product key already provisioned")
    key = ProductKey(product_key=product_key, code=code, is_registered=False)
    db.session.add(key)
    commit()
    return key


def register_machine(owner, name, product_key, address, probe_count, per_probe_control=True):
    key = ProductKey.query.filter_by(product_key=product_key).first()
    if key is None:
        raise NotFoundError("Machine not valid")
    if key.is_registered:
        raise ConflictError("Machine already registered")

    machine = Machine.register(owner, name, product_key, address, probe_count, per_probe_control)
    key.is_registered = True
    db.session.add(machine)
    commit()
    logger.info("Registered machine %s (%d probe(s)) for user %s", product_key, probe_count, owner.id)
    return machine


def delete_machine(machine_id, owner_id):
    machine = load_machine(machine_id, owner_id)
    key = ProductKey.query.filter_by(product_key=machine.product_key).first()
    if key is not None:
        key.is_registered = False
    db.session.delete(machine)
    commit()
    logger.info("Deleted machine %s, product key released", machine.product_key)
