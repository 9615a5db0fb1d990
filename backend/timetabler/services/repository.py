from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from timetabler.core.exceptions import ResourceNotFoundError
from timetabler.models.batch import Batch
from timetabler.models.department import Department
from timetabler.models.generated_timetable import GeneratedTimetable
from timetabler.models.room import Room
from timetabler.models.subject import Subject
from timetabler.schemas.snapshot import BatchPayload, DepartmentPayload, EntitySnapshot, SubjectPayload
from timetabler.schemas.timetable import TimetableOut


def load_snapshot(db: Session, department_ids: list[str] | None = None) -> EntitySnapshot:
    department_query = select(Department).order_by(Department.code, Department.id)
    if department_ids:
        department_query = department_query.where(Department.id.in_(department_ids))
    departments = list(db.execute(department_query).scalars().all())

    if department_ids:
        found = {department.id for department in departments}
        missing = [item for item in department_ids if item not in found]
        if missing:
            raise ResourceNotFoundError("Department", missing[0])

    selected_department_ids = [department.id for department in departments]
    batches: list[Batch] = []
    if selected_department_ids:
        batches = list(
            db.execute(
                select(Batch)
                .where(Batch.department_id.in_(selected_department_ids))
                .order_by(Batch.semester, Batch.name, Batch.id)
            )
            .scalars()
            .all()
        )

    batch_ids = [batch.id for batch in batches]
    subjects: list[Subject] = []
    if batch_ids:
        subjects = list(
            db.execute(
                select(Subject)
                .where(Subject.batch_id.in_(batch_ids))
                .order_by(Subject.code, Subject.id)
            )
            .scalars()
            .all()
        )

    return EntitySnapshot(
        departments=[DepartmentPayload.model_validate(item) for item in departments],
        batches=[BatchPayload.model_validate(item) for item in batches],
        subjects=[SubjectPayload.model_validate(item) for item in subjects],
    )


def load_room_pool(db: Session) -> list[str]:
    rows = db.execute(select(Room.id).where(Room.is_active.is_(True)).order_by(Room.id)).scalars().all()
    return list(rows)


def _next_version_label(db: Session) -> str:
    labels = db.execute(select(GeneratedTimetable.label)).scalars().all()
    numeric = []
    for label in labels:
        if not label.startswith("v"):
            continue
        suffix = label[1:]
        if suffix.isdigit():
            numeric.append(int(suffix))
    next_index = (max(numeric) + 1) if numeric else 1
    return f"v{next_index}"


def timetable_summary(timetable: TimetableOut) -> dict:
    return {
        "timetable_id": timetable.id,
        "batches": len(timetable.schedule),
        "assignments": len(timetable.assignments),
        "shortfall_hours": sum(item.shortfall_hours for item in timetable.completeness.shortfalls),
        "rooms_tracked": timetable.rooms_tracked,
        "backtracks": timetable.statistics.backtracks,
    }


def save_timetable(db: Session, timetable: TimetableOut, label: str | None = None) -> GeneratedTimetable:
    record = GeneratedTimetable(
        label=label or _next_version_label(db),
        is_complete=timetable.is_complete,
        payload=timetable.model_dump(mode="json"),
        summary=timetable_summary(timetable),
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def get_timetable(db: Session, record_id: str) -> GeneratedTimetable:
    record = db.get(GeneratedTimetable, record_id)
    if record is None:
        raise ResourceNotFoundError("Generated timetable", record_id)
    return record


def list_timetables(db: Session) -> list[GeneratedTimetable]:
    return list(
        db.execute(select(GeneratedTimetable).order_by(GeneratedTimetable.created_at.desc(), GeneratedTimetable.label))
        .scalars()
        .all()
    )
