from __future__ import annotations

from datetime import datetime, timezone
import hashlib
import json

from timetabler.schemas.timetable import (
    AssignmentOut,
    CompletenessReport,
    FacultySlotEntry,
    QuotaShortfall,
    SlotEntry,
    TimetableOut,
)
from timetabler.services.constraints import ConstraintModel
from timetabler.services.search import SearchResult


class ScheduleBuilder:
    """Turns search placements into the per-batch and per-faculty views."""

    def __init__(self, model: ConstraintModel) -> None:
        self.model = model
        self.index = model.index
        self.grid = model.grid

    def build(self, result: SearchResult, *, generated_at: datetime | None = None) -> TimetableOut:
        assignments = self.assignments_for(result)
        completeness = self.completeness_for(result)
        timetable_id = self.fingerprint(assignments)
        return TimetableOut(
            id=timetable_id,
            generated_at=generated_at or datetime.now(timezone.utc),
            is_complete=completeness.is_complete,
            rooms_tracked=self.model.rooms_tracked,
            room_pool=list(self.model.rooms),
            grid=self.grid.config,
            snapshot=self.index.snapshot,
            assignments=assignments,
            schedule=self.batch_schedule(assignments),
            faculty_schedule=self.faculty_schedule(assignments),
            completeness=completeness,
            statistics=result.statistics,
        )

    def assignments_for(self, result: SearchResult) -> list[AssignmentOut]:
        assignments: list[AssignmentOut] = []
        for placement in result.placements:
            subject = self.index.subject_by_id[placement.subject_id]
            for slot_index in placement.slot_indices:
                slot = self.grid.slots[slot_index]
                assignments.append(
                    AssignmentOut(
                        batch_id=placement.batch_id,
                        subject_id=subject.id,
                        faculty=subject.faculty,
                        day=slot.day,
                        period_index=slot.period_index,
                        period_label=slot.label,
                        slot_index=slot.index,
                        room_id=placement.room_id,
                    )
                )
        batch_order = {batch.id: position for position, batch in enumerate(self.index.batches)}
        assignments.sort(key=lambda item: (batch_order.get(item.batch_id, len(batch_order)), item.slot_index))
        return assignments

    def batch_schedule(self, assignments: list[AssignmentOut]) -> dict[str, dict[str, dict[str, SlotEntry]]]:
        schedule: dict[str, dict[str, dict[str, SlotEntry]]] = {
            batch.id: {day: {} for day in self.grid.days} for batch in self.index.batches
        }
        for assignment in assignments:
            subject = self.index.subject_by_id[assignment.subject_id]
            schedule[assignment.batch_id][assignment.day][assignment.period_label] = SlotEntry(
                subject_id=subject.id,
                subject_name=subject.name,
                subject_code=subject.code,
                faculty=subject.faculty,
                room_id=assignment.room_id,
            )
        return schedule

    def faculty_schedule(self, assignments: list[AssignmentOut]) -> dict[str, dict[str, dict[str, FacultySlotEntry]]]:
        # Keyed by the first spelling of each faculty name in snapshot order.
        display_names: dict[str, str] = {}
        for subject in self.index.subjects:
            display_names.setdefault(self.index.faculty_key_for(subject.id), subject.faculty)

        schedule: dict[str, dict[str, dict[str, FacultySlotEntry]]] = {}
        for assignment in sorted(assignments, key=lambda item: item.slot_index):
            name = display_names[self.index.faculty_key_for(assignment.subject_id)]
            by_day = schedule.setdefault(name, {day: {} for day in self.grid.days})
            by_day[assignment.day][assignment.period_label] = FacultySlotEntry(
                batch_id=assignment.batch_id,
                subject_id=assignment.subject_id,
                room_id=assignment.room_id,
            )
        return dict(sorted(schedule.items()))

    def completeness_for(self, result: SearchResult) -> CompletenessReport:
        shortfalls: list[QuotaShortfall] = []
        for batch in self.index.batches:
            for subject in self.index.subjects_by_batch.get(batch.id, ()):
                placed = result.placed_hours.get(subject.id, 0)
                if placed < subject.hours_per_week:
                    shortfalls.append(
                        QuotaShortfall(
                            subject_id=subject.id,
                            batch_id=batch.id,
                            required_hours=subject.hours_per_week,
                            placed_hours=placed,
                            shortfall_hours=subject.hours_per_week - placed,
                        )
                    )
        return CompletenessReport(is_complete=not shortfalls, shortfalls=shortfalls)

    def fingerprint(self, assignments: list[AssignmentOut]) -> str:
        """Stable id: identical inputs and placements always hash the same."""
        payload = {
            "grid": self.grid.config.model_dump(mode="json"),
            "snapshot": self.index.snapshot.model_dump(mode="json"),
            "rooms": list(self.model.rooms),
            "assignments": [item.model_dump(mode="json") for item in assignments],
        }
        encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
        return "tt-" + hashlib.blake2b(encoded, digest_size=8).hexdigest()
