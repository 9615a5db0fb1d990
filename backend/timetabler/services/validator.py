from __future__ import annotations

from collections import Counter, defaultdict
import logging
from typing import Iterable

from timetabler.core.exceptions import ValidatorViolation
from timetabler.schemas.grid import GridConfig
from timetabler.schemas.snapshot import EntitySnapshot, faculty_key
from timetabler.schemas.timetable import AssignmentOut, TimetableOut, ValidationResult, Violation
from timetabler.services.grid import TimeGrid

logger = logging.getLogger(__name__)


class ConflictDetector:
    """Independent full scan of a finished timetable.

    Works only from the assignment list, the snapshot and the grid; it shares
    no bookkeeping with the search that produced the assignments.
    """

    def __init__(self, snapshot: EntitySnapshot, grid: GridConfig, room_pool: Iterable[str] | None = None):
        self.snapshot = snapshot
        self.grid = TimeGrid(grid)
        self.room_pool = {room for room in room_pool or ()}
        self.subject_map = {subject.id: subject for subject in snapshot.subjects}
        self.batch_ids = {batch.id for batch in snapshot.batches}

    def detect_conflicts(self, assignments: list[AssignmentOut]) -> list[Violation]:
        violations: list[Violation] = []
        violations.extend(self._reference_violations(assignments))
        violations.extend(self._slot_violations(assignments))
        violations.extend(self._double_booking_violations(assignments))
        violations.extend(self._quota_violations(assignments))
        return violations

    def validate(self, timetable: TimetableOut) -> ValidationResult:
        violations = self.detect_conflicts(timetable.assignments)
        violations.extend(self._completeness_violations(timetable))
        violations.sort(key=lambda item: (item.invariant, item.code, item.entity_id, item.slot or ""))
        return ValidationResult(valid=not violations, violations=violations)

    def _slot_label(self, assignment: AssignmentOut) -> str:
        return f"{assignment.day} {assignment.period_label}"

    def _reference_violations(self, assignments: list[AssignmentOut]) -> list[Violation]:
        violations: list[Violation] = []
        for assignment in assignments:
            slot = self._slot_label(assignment)
            subject = self.subject_map.get(assignment.subject_id)
            if subject is None:
                violations.append(Violation(
                    invariant=5,
                    code="dangling_reference",
                    description=f"Assignment references unknown subject {assignment.subject_id}",
                    entity_id=assignment.subject_id,
                    slot=slot,
                ))
            if assignment.batch_id not in self.batch_ids:
                violations.append(Violation(
                    invariant=5,
                    code="dangling_reference",
                    description=f"Assignment references unknown batch {assignment.batch_id}",
                    entity_id=assignment.batch_id,
                    slot=slot,
                ))
            if subject is None:
                continue
            if subject.batch_id != assignment.batch_id:
                violations.append(Violation(
                    invariant=6,
                    code="batch_mismatch",
                    description=(
                        f"Subject {subject.id} belongs to batch {subject.batch_id} "
                        f"but is assigned to batch {assignment.batch_id}"
                    ),
                    entity_id=subject.id,
                    slot=slot,
                ))
            if faculty_key(subject.faculty) != faculty_key(assignment.faculty):
                violations.append(Violation(
                    invariant=6,
                    code="faculty_mismatch",
                    description=(
                        f"Subject {subject.id} is taught by {subject.faculty} "
                        f"but the assignment names {assignment.faculty}"
                    ),
                    entity_id=subject.id,
                    slot=slot,
                ))
        return violations

    def _slot_violations(self, assignments: list[AssignmentOut]) -> list[Violation]:
        violations: list[Violation] = []
        for assignment in assignments:
            slot = self._slot_label(assignment)
            if not self.grid.has_slot(assignment.day, assignment.period_index):
                violations.append(Violation(
                    invariant=7,
                    code="unknown_slot",
                    description=f"{assignment.day} period {assignment.period_index} is not part of the grid",
                    entity_id=assignment.subject_id,
                    slot=slot,
                ))
            else:
                grid_slot = self.grid.slot_at(assignment.day, assignment.period_index)
                if grid_slot.index != assignment.slot_index or grid_slot.label != assignment.period_label:
                    violations.append(Violation(
                        invariant=7,
                        code="unknown_slot",
                        description=(
                            f"Slot {assignment.slot_index} ({assignment.period_label}) does not match "
                            f"grid slot {grid_slot.index} ({grid_slot.label})"
                        ),
                        entity_id=assignment.subject_id,
                        slot=slot,
                    ))
            if self.room_pool and (assignment.room_id is None or assignment.room_id not in self.room_pool):
                violations.append(Violation(
                    invariant=7,
                    code="room_missing",
                    description=f"Assignment of subject {assignment.subject_id} has no room from the pool",
                    entity_id=assignment.subject_id,
                    slot=slot,
                ))
        return violations

    def _double_booking_violations(self, assignments: list[AssignmentOut]) -> list[Violation]:
        by_batch: dict[tuple[str, str, int], list[AssignmentOut]] = defaultdict(list)
        by_faculty: dict[tuple[str, str, int], list[AssignmentOut]] = defaultdict(list)
        by_room: dict[tuple[str, str, int], list[AssignmentOut]] = defaultdict(list)
        for assignment in assignments:
            position = (assignment.day, assignment.period_index)
            by_batch[(assignment.batch_id, *position)].append(assignment)
            by_faculty[(faculty_key(assignment.faculty), *position)].append(assignment)
            if self.room_pool and assignment.room_id is not None:
                by_room[(assignment.room_id, *position)].append(assignment)

        violations: list[Violation] = []
        for (batch_id, _, _), group in by_batch.items():
            if len(group) > 1:
                violations.append(Violation(
                    invariant=1,
                    code="batch_double_booked",
                    description=(
                        f"Batch {batch_id} has {len(group)} subjects at {self._slot_label(group[0])}: "
                        f"{', '.join(item.subject_id for item in group)}"
                    ),
                    entity_id=batch_id,
                    slot=self._slot_label(group[0]),
                ))
        for _, group in by_faculty.items():
            if len(group) > 1:
                violations.append(Violation(
                    invariant=2,
                    code="faculty_double_booked",
                    description=(
                        f"Faculty overlap for {group[0].faculty} at {self._slot_label(group[0])}: "
                        f"{', '.join(item.batch_id for item in group)}"
                    ),
                    entity_id=group[0].faculty,
                    slot=self._slot_label(group[0]),
                ))
        for (room_id, _, _), group in by_room.items():
            if len(group) > 1:
                violations.append(Violation(
                    invariant=3,
                    code="room_double_booked",
                    description=(
                        f"Room overlap in {room_id} at {self._slot_label(group[0])}: "
                        f"{', '.join(item.batch_id for item in group)}"
                    ),
                    entity_id=room_id,
                    slot=self._slot_label(group[0]),
                ))
        return violations

    def _quota_violations(self, assignments: list[AssignmentOut]) -> list[Violation]:
        counts = Counter(assignment.subject_id for assignment in assignments)
        violations: list[Violation] = []
        for subject_id, count in sorted(counts.items()):
            subject = self.subject_map.get(subject_id)
            if subject is not None and count > subject.hours_per_week:
                violations.append(Violation(
                    invariant=4,
                    code="quota_exceeded",
                    description=f"Subject {subject_id} has {count} assignments for {subject.hours_per_week} required hours",
                    entity_id=subject_id,
                ))
        return violations

    def _completeness_violations(self, timetable: TimetableOut) -> list[Violation]:
        counts = Counter(assignment.subject_id for assignment in timetable.assignments)
        expected = {
            subject.id: subject.hours_per_week - counts.get(subject.id, 0)
            for subject in self.snapshot.subjects
            if counts.get(subject.id, 0) < subject.hours_per_week
        }
        reported = {item.subject_id: item.shortfall_hours for item in timetable.completeness.shortfalls}

        violations: list[Violation] = []
        for subject_id in sorted(set(expected) | set(reported)):
            if expected.get(subject_id) != reported.get(subject_id):
                violations.append(Violation(
                    invariant=4,
                    code="completeness_mismatch",
                    description=(
                        f"Subject {subject_id} shortfall is {expected.get(subject_id, 0)} "
                        f"but the report lists {reported.get(subject_id, 0)}"
                    ),
                    entity_id=subject_id,
                ))
        if timetable.is_complete != (not expected) or timetable.completeness.is_complete != (not expected):
            violations.append(Violation(
                invariant=4,
                code="completeness_mismatch",
                description="Completeness flag does not match the placed hours",
                entity_id=timetable.id,
            ))
        return violations


def validate_timetable(timetable: TimetableOut) -> ValidationResult:
    detector = ConflictDetector(timetable.snapshot, timetable.grid, timetable.room_pool if timetable.rooms_tracked else None)
    return detector.validate(timetable)


def ensure_valid(timetable: TimetableOut) -> ValidationResult:
    result = validate_timetable(timetable)
    if not result.valid:
        logger.error(
            "Timetable %s failed validation with %s violation(s): %s",
            timetable.id,
            len(result.violations),
            "; ".join(item.description for item in result.violations[:5]),
        )
        raise ValidatorViolation(
            f"Generated timetable violates {len(result.violations)} hard constraint(s)",
            violations=[item.model_dump() for item in result.violations],
        )
    return result
