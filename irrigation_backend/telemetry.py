import logging
from dataclasses import dataclass
from typing import Union

from .errors import ValidationFailure

logger = logging.getLogger(__name__)

LOG_SPACING_MS = 300_000
LOW_WATER_LEVEL = 10
MANUAL_THRESHOLD = -1


# --- Modes ----------------------------------------------------------


@dataclass(frozen=True)
class Automatic:
    threshold: int


@dataclass(frozen=True)
class Manual:
    pass


Mode = Union[Automatic, Manual]


def mode_from_threshold(threshold):
    """Read the legacy encoding where -1 means manual."""
    if threshold == MANUAL_THRESHOLD:
        return Manual()
    return Automatic(threshold)


def threshold_of(mode):
    if isinstance(mode, Manual):
        return MANUAL_THRESHOLD
    return mode.threshold


# --- Log appenders --------------------------------------------------


def append_if_due(log, fields, now):
    """Append ``fields`` stamped with ``now`` unless the last entry is too recent."""
    if log and now - log[-1]["createdAt"] <= LOG_SPACING_MS:
        return log
    return [*log, {**fields, "createdAt": now}]


def append_if_changed(log, is_motor_on, now):
    """Record a motor transition. An initial OFF is not a transition."""
    if not log:
        if not is_motor_on:
            return log
    elif log[-1]["isMotorOn"] == is_motor_on:
        return log
    return [*log, {"isMotorOn": is_motor_on, "createdAt": now}]


def trim_log(log, now, retention_ms):
    if not retention_ms:
        return log
    cutoff = now - retention_ms
    return [entry for entry in log if entry["createdAt"] >= cutoff]


# --- Decision -------------------------------------------------------


def aggregate(values):
    if not values:
        raise ValidationFailure("at least one probe value is required")
    return sum(values) / len(values)


def is_tank_low(water_level):
    return water_level <= LOW_WATER_LEVEL


def decide_motor_states(mode, probe_values, current_states, commands=None, per_probe=True):
    if isinstance(mode, Manual):
        if commands is not None:
            return list(commands)
        return list(current_states)

    if per_probe:
        return [value < mode.threshold for value in probe_values]
    is_on = aggregate(probe_values) < mode.threshold
    return [is_on] * len(probe_values)


def actuate(machine, commands=None):
    """Recompute and store every motor state on ``machine``.

    The low-water rule runs first and, when it trips, skips the decision
    engine entirely.
    """
    probes = machine.probes
    if is_tank_low(machine.water_tank_level):
        if any(p["isMotorOn"] for p in probes):
            logger.info(
                "Tank at %s%% on machine %s, forcing motors off",
                machine.water_tank_level,
                machine.product_key,
            )
        states = [False] * len(probes)
    else:
        states = decide_motor_states(
            machine.mode,
            [p["value"] for p in probes],
            [p["isMotorOn"] for p in probes],
            commands,
            per_probe=machine.per_probe_control,
        )

    for probe, state in zip(probes, states):
        if probe["isMotorOn"] != state:
            logger.debug("Machine %s motor -> %s", machine.product_key, "ON" if state else "OFF")
        probe["isMotorOn"] = state
    return states


# --- Operations -----------------------------------------------------


def _check_probe_count(machine, values, field):
    values = list(values)
    if len(values) != len(machine.probes):
        raise ValidationFailure(
            f"{field} must have {len(machine.probes)} value(s), got {len(values)}"
        )
    return values


def ingest_telemetry(machine, water_level, soil_moisture, motor_on, now, retention_ms=None):
    """Apply one device report and return the motor states the device should adopt."""
    soil_moisture = _check_probe_count(machine, soil_moisture, "soilMoisture")
    motor_on = _check_probe_count(machine, motor_on, "motorOn")

    machine.water_tank_level = water_level
    tank_log = append_if_due(machine.water_tank_log, {"waterLevel": water_level}, now)
    machine.water_tank_log = trim_log(tank_log, now, retention_ms)

    for probe, moisture, reported_on in zip(machine.probes, soil_moisture, motor_on):
        probe["value"] = moisture
        soil_log = append_if_due(probe["soilMoistureLog"], {"moistureLevel": moisture}, now)
        probe["soilMoistureLog"] = trim_log(soil_log, now, retention_ms)
        probe["motorLog"] = append_if_changed(probe["motorLog"], reported_on, now)

    return actuate(machine)


def set_automatic(machine, threshold):
    machine.mode = Automatic(threshold)
    return actuate(machine)


def set_manual(machine, commands):
    """Pin manual mode. The tank rule still wins over an explicit ON."""
    commands = _check_probe_count(machine, commands, "motorOn")
    machine.mode = Manual()
    return actuate(machine, commands)
