import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from timetabler.api.deps import get_db
from timetabler.db.base import Base
from timetabler.main import app
from timetabler.schemas.grid import GridConfig
from timetabler.schemas.snapshot import EntitySnapshot


def make_snapshot(batches, subjects, departments=None) -> EntitySnapshot:
    """Snapshot from plain dicts; batches default to department ``d1``."""
    departments = departments or [{"id": "d1", "name": "Computer Science", "code": "CSE"}]
    return EntitySnapshot.model_validate(
        {
            "departments": departments,
            "batches": [{"department_id": departments[0]["id"], **batch} for batch in batches],
            "subjects": subjects,
        }
    )


@pytest.fixture()
def scenario_a_snapshot():
    return make_snapshot(
        batches=[{"id": "b1", "name": "CSE-A"}],
        subjects=[{"id": "s1", "batch_id": "b1", "name": "Algorithms", "code": "CS201", "faculty": "Dr. Rao", "hours_per_week": 2}],
    )


@pytest.fixture()
def scenario_b_snapshot():
    return make_snapshot(
        batches=[{"id": "b1", "name": "CSE-A"}, {"id": "b2", "name": "CSE-B"}],
        subjects=[
            {"id": "s1", "batch_id": "b1", "name": "Algorithms", "code": "CS201", "faculty": "Dr. Rao", "hours_per_week": 6},
            {"id": "s2", "batch_id": "b2", "name": "Algorithms", "code": "CS201", "faculty": "  dr.  RAO ", "hours_per_week": 6},
        ],
    )


@pytest.fixture()
def single_day_grid():
    return GridConfig(days=["Monday"])


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture()
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
