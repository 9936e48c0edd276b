import pytest

from conftest import make_machine
from irrigation_backend.errors import ValidationFailure
from irrigation_backend.telemetry import (
    LOG_SPACING_MS,
    Automatic,
    Manual,
    aggregate,
    append_if_changed,
    append_if_due,
    decide_motor_states,
    ingest_telemetry,
    mode_from_threshold,
    set_automatic,
    set_manual,
    threshold_of,
    trim_log,
)

T0 = 1_700_000_000_000


# --- throttled append ----------------------------------------------

def test_append_if_due_first_entry():
    log = append_if_due([], {"waterLevel": 70}, T0)
    assert log == [{"waterLevel": 70, "createdAt": T0}]


def test_append_if_due_throttles_within_window():
    log = append_if_due([], {"waterLevel": 70}, T0)
    assert append_if_due(log, {"waterLevel": 60}, T0 + 299_999) == log
    assert append_if_due(log, {"waterLevel": 60}, T0 + LOG_SPACING_MS) == log


def test_append_if_due_appends_after_window():
    log = append_if_due([], {"moistureLevel": 30}, T0)
    log = append_if_due(log, {"moistureLevel": 31}, T0 + 300_001)
    assert [e["moistureLevel"] for e in log] == [30, 31]


def test_append_if_due_does_not_mutate_input():
    log = [{"waterLevel": 70, "createdAt": T0}]
    append_if_due(log, {"waterLevel": 20}, T0 + 10 * LOG_SPACING_MS)
    assert len(log) == 1


# --- edge-triggered append -----------------------------------------

def test_initial_off_is_not_logged():
    assert append_if_changed([], False, T0) == []


def test_all_off_sequence_stays_empty():
    log = []
    for i in range(5):
        log = append_if_changed(log, False, T0 + i)
    assert log == []


def test_only_transitions_are_logged():
    log = []
    for i, state in enumerate([True, True, False, False, True, False, False]):
        log = append_if_changed(log, state, T0 + i * 1000)
    assert [e["isMotorOn"] for e in log] == [True, False, True, False]
    assert all(a["isMotorOn"] != b["isMotorOn"] for a, b in zip(log, log[1:]))
    assert log[0]["createdAt"] == T0


# --- aggregation & decision ----------------------------------------

def test_aggregate():
    assert aggregate([40, 40, 40, 40]) == 40
    assert aggregate([0, 100]) == 50
    assert aggregate([37]) == 37


def test_aggregate_rejects_empty():
    with pytest.raises(ValidationFailure):
        aggregate([])


def test_mode_sentinel_roundtrip():
    assert mode_from_threshold(-1) == Manual()
    assert mode_from_threshold(30) == Automatic(30)
    assert threshold_of(Manual()) == -1
    assert threshold_of(Automatic(0)) == 0


def test_automatic_per_probe_decision():
    assert decide_motor_states(Automatic(30), [20], [False]) == [True]
    assert decide_motor_states(Automatic(30), [40], [True]) == [False]
    assert decide_motor_states(Automatic(30), [20, 40, 30, 29], [False] * 4) == [True, False, False, True]


def test_automatic_whole_machine_uses_mean():
    # mean 27.5 < 30
    assert decide_motor_states(Automatic(30), [10, 45, 30, 25], [False] * 4, per_probe=False) == [True] * 4
    assert decide_motor_states(Automatic(30), [10, 90], [True, True], per_probe=False) == [False, False]


def test_manual_passes_commands_through():
    assert decide_motor_states(Manual(), [0, 100], [False, False], [True, False]) == [True, False]


def test_manual_without_command_keeps_state():
    assert decide_motor_states(Manual(), [0, 100], [False, True]) == [False, True]


# --- ingestion -------------------------------------------------------

def test_ingest_automatic_turns_motors_on_for_dry_probes():
    machine = make_machine()
    set_automatic(machine, 30)
    states = ingest_telemetry(machine, 80, [20, 40, 10, 35], [False] * 4, T0)
    assert states == [True, False, True, False]
    assert machine.motor_states == states
    assert machine.water_tank_level == 80
    assert machine.water_tank_log == [{"waterLevel": 80, "createdAt": T0}]
    assert machine.probes[0]["soilMoistureLog"] == [{"moistureLevel": 20, "createdAt": T0}]


def test_ingest_logs_reported_motor_state():
    machine = make_machine(probe_count=1)
    ingest_telemetry(machine, 80, [60], [True], T0)
    ingest_telemetry(machine, 80, [60], [True], T0 + 1000)
    ingest_telemetry(machine, 80, [60], [False], T0 + 2000)
    assert machine.probes[0]["motorLog"] == [
        {"isMotorOn": True, "createdAt": T0},
        {"isMotorOn": False, "createdAt": T0 + 2000},
    ]


def test_ingest_throttles_history():
    machine = make_machine(probe_count=1)
    ingest_telemetry(machine, 80, [60], [False], T0)
    ingest_telemetry(machine, 70, [50], [False], T0 + 60_000)
    assert len(machine.water_tank_log) == 1
    assert len(machine.probes[0]["soilMoistureLog"]) == 1
    # the live readings still move
    assert machine.water_tank_level == 70
    assert machine.probes[0]["value"] == 50


def test_low_water_forces_motors_off():
    machine = make_machine()
    set_automatic(machine, 30)
    states = ingest_telemetry(machine, 5, [0, 0, 0, 0], [True] * 4, T0)
    assert states == [False] * 4


def test_low_water_overrides_manual_on():
    machine = make_machine(probe_count=2)
    set_manual(machine, [True, True])
    assert machine.motor_states == [True, True]
    states = ingest_telemetry(machine, 10, [50, 50], [True, True], T0)
    assert states == [False, False]
    assert machine.mode == Manual()


def test_manual_mode_ignores_device_report_and_threshold():
    machine = make_machine(probe_count=2)
    set_manual(machine, [True, False])
    states = ingest_telemetry(machine, 90, [100, 0], [False, True], T0)
    assert states == [True, False]


def test_switching_back_to_automatic_recomputes():
    machine = make_machine(probe_count=2)
    ingest_telemetry(machine, 90, [20, 80], [False, False], T0)
    set_manual(machine, [False, True])
    states = set_automatic(machine, 50)
    assert states == [True, False]
    assert machine.mode == Automatic(50)


def test_ingest_rejects_wrong_probe_count_without_mutation():
    machine = make_machine(probe_count=4)
    with pytest.raises(ValidationFailure):
        ingest_telemetry(machine, 20, [10, 10], [False, False], T0)
    assert machine.water_tank_log == []
    assert machine.water_tank_level == 50


def test_trim_log_drops_old_entries():
    log = [{"waterLevel": 1, "createdAt": T0}, {"waterLevel": 2, "createdAt": T0 + 5000}]
    assert trim_log(log, T0 + 6000, 2000) == [{"waterLevel": 2, "createdAt": T0 + 5000}]
    assert trim_log(log, T0 + 6000, 0) == log


def test_ingest_applies_retention():
    machine = make_machine(probe_count=1)
    day = 86_400_000
    ingest_telemetry(machine, 80, [60], [False], T0, retention_ms=day)
    ingest_telemetry(machine, 70, [50], [False], T0 + 2 * day, retention_ms=day)
    assert machine.water_tank_log == [{"waterLevel": 70, "createdAt": T0 + 2 * day}]
    assert machine.probes[0]["soilMoistureLog"] == [{"moistureLevel": 50, "createdAt": T0 + 2 * day}]
