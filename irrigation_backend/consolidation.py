import logging

from .clock import DEFAULT_UTC_OFFSET, local_day, minutes_between, next_local_midnight

logger = logging.getLogger(__name__)


def _credit(usage, day, minutes):
    # usage is appended in day order, so only the last entry can match
    key = day.isoformat()
    if usage and usage[-1]["createdAt"] == key:
        usage[-1] = {**usage[-1], "durationMinutes": usage[-1]["durationMinutes"] + minutes}
    else:
        usage.append({"durationMinutes": minutes, "createdAt": key})


def _credit_run(usage, on_ms, off_ms, utc_offset):
    current = on_ms
    while current < off_ms:
        midnight = next_local_midnight(current, utc_offset)
        minutes = minutes_between(current, min(off_ms, midnight))
        _credit(usage, local_day(current, utc_offset), minutes)
        current = midnight


def _drop_leading_off(motor_log):
    start = 0
    while start < len(motor_log) and not motor_log[start]["isMotorOn"]:
        start += 1
    if start:
        logger.warning("Motor log starts with %d OFF entr(ies); discarding them", start)
    return motor_log[start:]


def consolidate_motor_log(motor_log, usage, utc_offset=DEFAULT_UTC_OFFSET):
    """Fold complete ON/OFF pairs into per-day minutes.

    Returns ``(remaining_log, usage)``. Runs are split at local midnight and
    each day touched gets an entry like
    ``{"durationMinutes": 95, "createdAt": "2024-03-01"}``. An odd-length log
    keeps its trailing ON so the running period is picked up next time; an
    even-length log is cleared.
    """
    motor_log = _drop_leading_off(motor_log)
    if len(motor_log) < 2:
        return motor_log, usage

    usage = list(usage)
    pairs = len(motor_log) // 2
    for k in range(pairs):
        on_event, off_event = motor_log[2 * k], motor_log[2 * k + 1]
        _credit_run(usage, on_event["createdAt"], off_event["createdAt"], utc_offset)

    remaining = motor_log[-1:] if len(motor_log) % 2 else []
    logger.debug("Consolidated %d motor run(s), %d entr(ies) left", pairs, len(remaining))
    return remaining, usage


def consolidate_machine(machine, utc_offset=DEFAULT_UTC_OFFSET):
    tables = []
    for probe in machine.probes:
        probe["motorLog"], probe["motorUsagePerDay"] = consolidate_motor_log(
            probe["motorLog"], probe["motorUsagePerDay"], utc_offset
        )
        tables.append(probe["motorUsagePerDay"])
    return tables
