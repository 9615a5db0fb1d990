import asyncio
import logging
import time

import pytest

from timetabler.core.config import Settings, get_settings
from timetabler.main import app
from timetabler.models.batch import Batch
from timetabler.models.department import Department
from timetabler.models.room import Room
from timetabler.models.subject import Subject
from timetabler.services import engine as engine_module
from timetabler.services import repository


def _payload(snapshot, **extra):
    return {"snapshot": snapshot.model_dump(mode="json"), **extra}


def test_generate_returns_complete_timetable(client, scenario_a_snapshot):
    response = client.post("/api/timetable/generate", json=_payload(scenario_a_snapshot))

    assert response.status_code == 200
    body = response.json()
    assert body["validation"] == {"valid": True, "violations": []}
    assert body["version_label"] is None
    timetable = body["timetable"]
    assert timetable["is_complete"]
    assert len(timetable["assignments"]) == 2
    assert timetable["schedule"]["b1"]["Monday"]["09:00-10:00"]["subject_id"] == "s1"


def test_generate_reports_shortfall(client):
    payload = {
        "snapshot": {
            "departments": [{"id": "d1", "name": "Computer Science", "code": "CSE"}],
            "batches": [{"id": "b1", "department_id": "d1"}],
            "subjects": [{"id": "s1", "batch_id": "b1", "faculty": "Dr. Rao", "hours_per_week": 10}],
        },
        "grid": {"days": ["Monday"]},
    }

    response = client.post("/api/timetable/generate", json=payload)

    assert response.status_code == 200
    completeness = response.json()["timetable"]["completeness"]
    assert completeness["is_complete"] is False
    assert completeness["shortfalls"][0]["shortfall_hours"] == 4


def test_generate_rejects_dangling_subject(client):
    payload = {
        "snapshot": {
            "departments": [{"id": "d1", "name": "Computer Science", "code": "CSE"}],
            "batches": [{"id": "b1", "department_id": "d1"}],
            "subjects": [{"id": "s1", "batch_id": "b9", "faculty": "Dr. Rao", "hours_per_week": 2}],
        }
    }

    response = client.post("/api/timetable/generate", json=payload)

    assert response.status_code == 422
    body = response.json()
    assert "b9" in body["message"]
    assert body["details"]["errors"][0]["entity"] == "subject"


def test_generate_rejects_malformed_body(client, scenario_a_snapshot):
    payload = _payload(scenario_a_snapshot)
    payload["snapshot"]["subjects"][0]["hours_per_week"] = 0

    response = client.post("/api/timetable/generate", json=payload)

    assert response.status_code == 422
    assert "detail" in response.json()


def test_generate_times_out(client, scenario_a_snapshot, monkeypatch):
    def slow_generate(*args, **kwargs):
        time.sleep(0.3)

    monkeypatch.setattr(engine_module, "generate_timetable", slow_generate)
    app.dependency_overrides[get_settings] = lambda: Settings(generation_timeout_seconds=0.01)

    response = client.post("/api/timetable/generate", json=_payload(scenario_a_snapshot))

    assert response.status_code == 504
    assert response.json()["details"] == {"timeout_seconds": 0.01}


def test_persisted_timetables_can_be_listed_and_fetched(client, scenario_b_snapshot):
    first = client.post("/api/timetable/generate", json=_payload(scenario_b_snapshot, persist=True))
    second = client.post("/api/timetable/generate", json=_payload(scenario_b_snapshot, persist=True, rooms=["R1"]))

    assert first.status_code == 200
    assert first.json()["version_label"] == "v1"
    assert second.json()["version_label"] == "v2"

    listing = client.get("/api/timetable/generated")
    assert listing.status_code == 200
    assert {item["label"] for item in listing.json()} == {"v1", "v2"}

    version_id = second.json()["version_id"]
    detail = client.get(f"/api/timetable/generated/{version_id}")
    assert detail.status_code == 200
    body = detail.json()
    assert body["label"] == "v2"
    assert body["timetable"]["id"] == second.json()["timetable"]["id"]
    assert body["timetable"]["room_pool"] == ["R1"]
    assert body["summary"]["batches"] == 2


def test_unknown_generated_timetable_returns_404(client):
    response = client.get("/api/timetable/generated/missing")

    assert response.status_code == 404
    assert response.json()["message"] == "Generated timetable with id missing not found"


def test_generate_from_stored_entities(client, session_factory):
    db = session_factory()
    db.add(Department(id="d1", name="Computer Science", code="CSE"))
    db.add(Batch(id="b1", department_id="d1", name="CSE-Y1", semester=1))
    db.add(Subject(id="s1", batch_id="b1", name="Programming", code="CS101", faculty="Dr. Rao", hours_per_week=3))
    db.add(Room(id="R1", name="Room 1"))
    db.commit()
    db.close()

    response = client.post(
        "/api/timetable/generate/stored",
        json={"department_ids": ["d1"], "use_room_pool": True, "persist": True},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["version_label"] == "v1"
    assert body["timetable"]["rooms_tracked"] is True
    assert {item["room_id"] for item in body["timetable"]["assignments"]} == {"R1"}


def test_generate_from_empty_store_is_input_error(client):
    response = client.post("/api/timetable/generate/stored", json={})

    assert response.status_code == 422
    assert response.json()["message"] == "Entity snapshot contains no departments"


def test_validate_endpoint_flags_tampered_timetable(client, scenario_a_snapshot):
    generated = client.post("/api/timetable/generate", json=_payload(scenario_a_snapshot)).json()["timetable"]

    valid = client.post("/api/timetable/validate", json={"timetable": generated})
    generated["assignments"] = generated["assignments"][:1]
    tampered = client.post("/api/timetable/validate", json={"timetable": generated})

    assert valid.json() == {"valid": True, "violations": []}
    assert tampered.status_code == 200
    assert tampered.json()["valid"] is False
    assert {item["code"] for item in tampered.json()["violations"]} == {"completeness_mismatch"}


def test_default_grid_endpoint(client):
    response = client.get("/api/timetable/grid/default")

    assert response.status_code == 200
    body = response.json()
    assert body["total_slots"] == 30
    assert body["slots"][6]["day"] == "Tuesday"
    assert body["double_slot_pairs"] == [[0, 1], [2, 3], [4, 5]]
    assert [period["label"] for period in body["config"]["periods"] if period["is_break"]] == ["Break", "Lunch"]


def test_stored_generation_runs_session_work_in_worker_threads(client, session_factory, monkeypatch):
    db = session_factory()
    db.add(Department(id="d1", name="Computer Science", code="CSE"))
    db.add(Batch(id="b1", department_id="d1", name="CSE-Y1", semester=1))
    db.add(Subject(id="s1", batch_id="b1", name="Programming", code="CS101", faculty="Dr. Rao", hours_per_week=2))
    db.add(Room(id="R1", name="Room 1"))
    db.commit()
    db.close()

    offloaded = []
    original_to_thread = asyncio.to_thread

    async def recording_to_thread(func, /, *args, **kwargs):
        offloaded.append(func)
        return await original_to_thread(func, *args, **kwargs)

    monkeypatch.setattr(asyncio, "to_thread", recording_to_thread)

    response = client.post(
        "/api/timetable/generate/stored",
        json={"department_ids": ["d1"], "use_room_pool": True, "persist": True},
    )

    assert response.status_code == 200
    assert response.json()["version_label"] == "v1"
    for func in (repository.load_snapshot, repository.load_room_pool, repository.save_timetable):
        assert func in offloaded


def test_rejected_input_is_logged_as_warning_without_traceback(client, caplog):
    payload = {
        "snapshot": {
            "departments": [{"id": "d1", "name": "Computer Science", "code": "CSE"}],
            "batches": [{"id": "b1", "department_id": "d1"}],
            "subjects": [{"id": "s1", "batch_id": "b9", "faculty": "Dr. Rao", "hours_per_week": 2}],
        }
    }

    with caplog.at_level(logging.INFO, logger="timetabler.api.routes.generator"):
        response = client.post("/api/timetable/generate", json=payload)

    assert response.status_code == 422
    records = [record for record in caplog.records if record.name == "timetabler.api.routes.generator"]
    rejected = [record for record in records if "TIMETABLE GENERATION REJECTED" in record.getMessage()]
    assert len(rejected) == 1
    assert rejected[0].levelno == logging.WARNING
    assert "status=422" in rejected[0].getMessage()
    assert not [record for record in records if record.levelno >= logging.ERROR or record.exc_info]


def test_unexpected_failure_is_logged_with_traceback(client, scenario_a_snapshot, monkeypatch, caplog):
    def broken_generate(*args, **kwargs):
        raise RuntimeError("search crashed")

    monkeypatch.setattr(engine_module, "generate_timetable", broken_generate)

    with caplog.at_level(logging.INFO, logger="timetabler.api.routes.generator"):
        with pytest.raises(RuntimeError):
            client.post("/api/timetable/generate", json=_payload(scenario_a_snapshot))

    failed = [record for record in caplog.records if "TIMETABLE GENERATION FAILED" in record.getMessage()]
    assert len(failed) == 1
    assert failed[0].levelno == logging.ERROR
    assert failed[0].exc_info is not None
