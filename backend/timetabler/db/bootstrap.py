from __future__ import annotations

import logging

from sqlalchemy import inspect

import timetabler.models  # noqa: F401
from timetabler.db.base import Base
from timetabler.db.session import engine

logger = logging.getLogger(__name__)

REQUIRED_TABLES: dict[str, set[str]] = {
    "departments": {"id", "name", "code"},
    "batches": {"id", "department_id", "semester", "student_count"},
    "subjects": {"id", "batch_id", "faculty", "subject_type", "hours_per_week"},
    "rooms": {"id", "name", "is_active"},
    "generated_timetables": {"id", "label", "payload", "summary"},
}


def ensure_schema() -> None:
    Base.metadata.create_all(bind=engine)
    with engine.connect() as connection:
        inspector = inspect(connection)
        table_names = set(inspector.get_table_names())
        for table_name, columns in REQUIRED_TABLES.items():
            if table_name not in table_names:
                logger.warning("Table %s is missing after schema bootstrap", table_name)
                continue
            existing = {item["name"] for item in inspector.get_columns(table_name)}
            missing = sorted(columns - existing)
            if missing:
                logger.warning("Table %s is missing column(s): %s", table_name, ", ".join(missing))
