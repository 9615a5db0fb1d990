from datetime import datetime, timezone

import pytest

from timetabler.core.exceptions import ValidatorViolation
from timetabler.services.engine import generate_timetable
from timetabler.services.validator import ConflictDetector, ensure_valid, validate_timetable

GENERATED_AT = datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def timetable_a(scenario_a_snapshot):
    return generate_timetable(scenario_a_snapshot, generated_at=GENERATED_AT).timetable


@pytest.fixture()
def timetable_b(scenario_b_snapshot):
    return generate_timetable(scenario_b_snapshot, generated_at=GENERATED_AT).timetable


def _codes(result):
    return [item.code for item in result.violations]


def test_engine_output_is_valid(timetable_b):
    result = validate_timetable(timetable_b)

    assert result.valid
    assert result.violations == []


def test_validation_is_idempotent(timetable_a):
    tampered = timetable_a.model_copy(update={"assignments": timetable_a.assignments[:1]})

    first = validate_timetable(tampered)
    second = validate_timetable(tampered)

    assert first == second
    assert not first.valid


def test_detects_faculty_double_booking(timetable_b):
    b1_first = next(item for item in timetable_b.assignments if item.batch_id == "b1")
    moved = [
        item.model_copy(
            update={
                "day": b1_first.day,
                "period_index": b1_first.period_index,
                "period_label": b1_first.period_label,
                "slot_index": b1_first.slot_index,
            }
        )
        if item.batch_id == "b2" and item.slot_index == 6
        else item
        for item in timetable_b.assignments
    ]

    result = validate_timetable(timetable_b.model_copy(update={"assignments": moved}))

    assert _codes(result) == ["faculty_double_booked"]
    violation = result.violations[0]
    assert violation.invariant == 2
    assert violation.slot == "Monday 09:00-10:00"


def test_detects_batch_double_booking(timetable_a):
    duplicate = timetable_a.assignments[0].model_copy(update={"subject_id": "s1"})
    detector = ConflictDetector(timetable_a.snapshot, timetable_a.grid)

    violations = detector.detect_conflicts([timetable_a.assignments[0], duplicate])

    assert {item.code for item in violations} == {"batch_double_booked", "faculty_double_booked"}


def test_detects_quota_overrun(timetable_a):
    extra = timetable_a.assignments[0].model_copy(
        update={"period_index": 2, "period_label": "11:30-12:30", "slot_index": 2}
    )

    result = validate_timetable(timetable_a.model_copy(update={"assignments": [*timetable_a.assignments, extra]}))

    assert _codes(result) == ["quota_exceeded"]
    assert result.violations[0].invariant == 4


def test_detects_incorrect_completeness_report(timetable_a):
    result = validate_timetable(timetable_a.model_copy(update={"assignments": timetable_a.assignments[:1]}))

    assert _codes(result) == ["completeness_mismatch", "completeness_mismatch"]


def test_detects_dangling_and_mismatched_references(timetable_a):
    ghost = timetable_a.assignments[1].model_copy(update={"subject_id": "ghost"})
    wrong_faculty = timetable_a.assignments[0].model_copy(update={"faculty": "Dr. Iyer"})

    result = validate_timetable(timetable_a.model_copy(update={"assignments": [wrong_faculty, ghost]}))

    codes = _codes(result)
    assert "dangling_reference" in codes
    assert "faculty_mismatch" in codes


def test_detects_slots_outside_the_grid(timetable_a):
    off_grid = timetable_a.assignments[1].model_copy(update={"day": "Saturday"})

    result = validate_timetable(timetable_a.model_copy(update={"assignments": [timetable_a.assignments[0], off_grid]}))

    assert _codes(result) == ["unknown_slot"]
    assert result.violations[0].invariant == 7


def test_detects_room_double_booking(scenario_b_snapshot):
    timetable = generate_timetable(scenario_b_snapshot, rooms=["R1"], generated_at=GENERATED_AT).timetable
    first = timetable.assignments[0]
    clash = first.model_copy(update={"batch_id": "b2", "subject_id": "s2", "faculty": "Dr. Iyer"})
    detector = ConflictDetector(timetable.snapshot, timetable.grid, timetable.room_pool)

    violations = detector.detect_conflicts([first, clash])

    assert "room_double_booked" in {item.code for item in violations}


def test_ensure_valid_raises_with_violation_details(timetable_a):
    tampered = timetable_a.model_copy(update={"assignments": timetable_a.assignments[:1]})

    with pytest.raises(ValidatorViolation) as exc_info:
        ensure_valid(tampered)

    error = exc_info.value
    assert error.status_code == 500
    assert len(error.details["violations"]) == 2
    assert error.details["violations"][0]["code"] == "completeness_mismatch"
