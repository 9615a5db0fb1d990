from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Sequence

from timetabler.schemas.snapshot import SubjectPayload, faculty_key
from timetabler.services.grid import TimeGrid
from timetabler.services.snapshot import SnapshotIndex


@dataclass(frozen=True)
class Placement:
    subject_id: str
    batch_id: str
    faculty_key: str
    slot_indices: tuple[int, ...]
    room_id: str | None = None

    @property
    def size(self) -> int:
        return len(self.slot_indices)


class SearchState:
    """Occupancy of one in-progress run, owned by the search that builds it."""

    def __init__(self) -> None:
        self.batch_occ: dict[tuple[str, int], str] = {}
        self.faculty_occ: dict[tuple[str, int], str] = {}
        self.room_occ: dict[tuple[str, int], str] = {}
        self.placed_hours: Counter[str] = Counter()
        self.placements: list[Placement] = []

    def place(self, placement: Placement) -> None:
        for slot_index in placement.slot_indices:
            batch_key = (placement.batch_id, slot_index)
            faculty_key_ = (placement.faculty_key, slot_index)
            if batch_key in self.batch_occ or faculty_key_ in self.faculty_occ:
                raise ValueError(f"Slot {slot_index} is already taken for placement {placement}")
            if placement.room_id is not None and (placement.room_id, slot_index) in self.room_occ:
                raise ValueError(f"Room {placement.room_id} is already taken at slot {slot_index}")

        for slot_index in placement.slot_indices:
            self.batch_occ[(placement.batch_id, slot_index)] = placement.subject_id
            self.faculty_occ[(placement.faculty_key, slot_index)] = placement.batch_id
            if placement.room_id is not None:
                self.room_occ[(placement.room_id, slot_index)] = placement.batch_id
        self.placed_hours[placement.subject_id] += placement.size
        self.placements.append(placement)

    def retract(self, placement: Placement) -> None:
        for slot_index in placement.slot_indices:
            self.batch_occ.pop((placement.batch_id, slot_index), None)
            self.faculty_occ.pop((placement.faculty_key, slot_index), None)
            if placement.room_id is not None:
                self.room_occ.pop((placement.room_id, slot_index), None)
        remaining = self.placed_hours[placement.subject_id] - placement.size
        if remaining > 0:
            self.placed_hours[placement.subject_id] = remaining
        else:
            self.placed_hours.pop(placement.subject_id, None)
        for position in range(len(self.placements) - 1, -1, -1):
            if self.placements[position] == placement:
                del self.placements[position]
                break


class ConstraintModel:
    """Hard constraints of one snapshot, evaluated against a ``SearchState``.

    Never mutates the state it is given.
    """

    def __init__(self, index: SnapshotIndex, grid: TimeGrid, rooms: Sequence[str] | None = None) -> None:
        self.index = index
        self.grid = grid
        self.rooms: tuple[str, ...] = tuple(sorted({room.strip() for room in rooms or () if room.strip()}))

    @property
    def rooms_tracked(self) -> bool:
        return bool(self.rooms)

    def is_batch_free(self, batch_id: str, slot_index: int, state: SearchState) -> bool:
        return (batch_id, slot_index) not in state.batch_occ

    def is_faculty_free(self, faculty: str, slot_index: int, state: SearchState) -> bool:
        return (faculty_key(faculty), slot_index) not in state.faculty_occ

    def is_room_free(self, room_id: str, slot_index: int, state: SearchState) -> bool:
        if not self.rooms_tracked:
            return True
        return (room_id, slot_index) not in state.room_occ

    def remaining_quota(self, subject: SubjectPayload, state: SearchState) -> int:
        return subject.hours_per_week - state.placed_hours.get(subject.id, 0)

    def free_room(self, slot_indices: Sequence[int], state: SearchState) -> str | None:
        """Lowest room id free in every slot of the block."""
        for room_id in self.rooms:
            if all(self.is_room_free(room_id, slot_index, state) for slot_index in slot_indices):
                return room_id
        return None

    def is_legal(
        self,
        subject: SubjectPayload,
        slot_indices: Sequence[int],
        room_id: str | None,
        state: SearchState,
    ) -> bool:
        if self.remaining_quota(subject, state) < len(slot_indices):
            return False
        if self.rooms_tracked and room_id is None:
            return False
        for slot_index in slot_indices:
            if not self.is_batch_free(subject.batch_id, slot_index, state):
                return False
            if not self.is_faculty_free(subject.faculty, slot_index, state):
                return False
            if room_id is not None and not self.is_room_free(room_id, slot_index, state):
                return False
        return True

    def available_slot_count(self, subject: SubjectPayload, state: SearchState, *, block_size: int = 1) -> int:
        """Candidates still open to the subject's faculty and batch."""
        if block_size == 2:
            candidates = [(first.index, second.index) for first, second in self.grid.contiguous_pairs()]
        else:
            candidates = [(slot.index,) for slot in self.grid]
        count = 0
        for slot_indices in candidates:
            if all(
                self.is_batch_free(subject.batch_id, slot_index, state)
                and self.is_faculty_free(subject.faculty, slot_index, state)
                for slot_index in slot_indices
            ):
                count += 1
        return count

    def placement_for(self, subject: SubjectPayload, slot_indices: Sequence[int], room_id: str | None) -> Placement:
        return Placement(
            subject_id=subject.id,
            batch_id=subject.batch_id,
            faculty_key=faculty_key(subject.faculty),
            slot_indices=tuple(slot_indices),
            room_id=room_id,
        )
