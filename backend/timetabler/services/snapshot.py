from __future__ import annotations

from collections import Counter

from timetabler.core.exceptions import InputError
from timetabler.schemas.snapshot import (
    BatchPayload,
    DepartmentPayload,
    EntitySnapshot,
    SubjectPayload,
    faculty_key,
)


def _duplicate_ids(items) -> list[str]:
    counts = Counter(item.id for item in items)
    return sorted(item_id for item_id, count in counts.items() if count > 1)


def validate_snapshot(snapshot: EntitySnapshot) -> None:
    """Reject empty or internally inconsistent snapshots with ``InputError``."""
    if not snapshot.departments:
        raise InputError("Entity snapshot contains no departments", details={"entity": "department"})
    if not snapshot.batches:
        raise InputError("Entity snapshot contains no batches", details={"entity": "batch"})
    if not snapshot.subjects:
        raise InputError("Entity snapshot contains no subjects", details={"entity": "subject"})

    errors: list[dict] = []
    for entity, items in (
        ("department", snapshot.departments),
        ("batch", snapshot.batches),
        ("subject", snapshot.subjects),
    ):
        for duplicate in _duplicate_ids(items):
            errors.append({"entity": entity, "id": duplicate, "field": "id", "value": duplicate, "reason": "duplicate"})

    department_ids = {department.id for department in snapshot.departments}
    batch_ids = {batch.id for batch in snapshot.batches}

    for batch in snapshot.batches:
        if batch.department_id not in department_ids:
            errors.append(
                {
                    "entity": "batch",
                    "id": batch.id,
                    "field": "department_id",
                    "value": batch.department_id,
                    "reason": "unknown_reference",
                }
            )
    for subject in snapshot.subjects:
        if subject.batch_id not in batch_ids:
            errors.append(
                {
                    "entity": "subject",
                    "id": subject.id,
                    "field": "batch_id",
                    "value": subject.batch_id,
                    "reason": "unknown_reference",
                }
            )

    if errors:
        first = errors[0]
        if first["reason"] == "duplicate":
            message = f"Duplicate {first['entity']} id {first['id']}"
        else:
            message = f"{first['entity'].capitalize()} {first['id']} references unknown {first['field']} {first['value']}"
        raise InputError(message, details={"errors": errors})


class SnapshotIndex:
    """Validated lookups over one entity snapshot."""

    def __init__(self, snapshot: EntitySnapshot) -> None:
        validate_snapshot(snapshot)
        self.snapshot = snapshot
        self.departments: dict[str, DepartmentPayload] = {item.id: item for item in snapshot.departments}
        self.batches: tuple[BatchPayload, ...] = tuple(snapshot.batches)
        self.batch_by_id: dict[str, BatchPayload] = {item.id: item for item in snapshot.batches}
        self.subject_by_id: dict[str, SubjectPayload] = {item.id: item for item in snapshot.subjects}

        subjects_by_batch: dict[str, list[SubjectPayload]] = {batch.id: [] for batch in self.batches}
        for subject in snapshot.subjects:
            subjects_by_batch[subject.batch_id].append(subject)
        self.subjects_by_batch: dict[str, tuple[SubjectPayload, ...]] = {
            batch_id: tuple(items) for batch_id, items in subjects_by_batch.items()
        }

    @property
    def subjects(self) -> tuple[SubjectPayload, ...]:
        return tuple(self.snapshot.subjects)

    def faculty_key_for(self, subject_id: str) -> str:
        return faculty_key(self.subject_by_id[subject_id].faculty)
