import asyncio
import time
from unittest.mock import patch

import pytest

from timetabler.core.exceptions import GenerationTimeout, ValidatorViolation
from timetabler.schemas.timetable import ValidationResult, Violation
from timetabler.services import engine as engine_module
from timetabler.services.engine import TimetableEngine, run_generation


def test_run_generation_returns_engine_result(scenario_a_snapshot):
    result = asyncio.run(run_generation(scenario_a_snapshot, timeout_seconds=10))

    assert result.timetable.is_complete
    assert result.validation.valid


def test_run_generation_times_out(scenario_a_snapshot, monkeypatch):
    def slow_generate(*args, **kwargs):
        time.sleep(0.5)

    monkeypatch.setattr(engine_module, "generate_timetable", slow_generate)

    with pytest.raises(GenerationTimeout) as exc_info:
        asyncio.run(run_generation(scenario_a_snapshot, timeout_seconds=0.05))

    assert exc_info.value.status_code == 504
    assert exc_info.value.details == {"timeout_seconds": 0.05}


def test_engine_propagates_validator_violation(scenario_a_snapshot):
    violation = Violation(invariant=1, code="batch_double_booked", description="overlap", entity_id="b1")
    failing = ValidatorViolation("Generated timetable violates 1 hard constraint(s)", violations=[violation.model_dump()])

    with patch("timetabler.services.engine.ensure_valid", side_effect=failing):
        with pytest.raises(ValidatorViolation):
            TimetableEngine(scenario_a_snapshot).run()


def test_engine_returns_validation_from_final_scan(scenario_a_snapshot):
    with patch("timetabler.services.engine.ensure_valid", return_value=ValidationResult(valid=True)) as mocked:
        result = TimetableEngine(scenario_a_snapshot).run()

    mocked.assert_called_once_with(result.timetable)
    assert result.validation.valid
