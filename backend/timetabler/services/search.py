from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import logging

from timetabler.core.exceptions import InfeasibleQuota
from timetabler.schemas.snapshot import BatchPayload, SubjectPayload
from timetabler.schemas.timetable import GenerationOptions, SearchStatistics
from timetabler.services.constraints import ConstraintModel, Placement, SearchState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Block:
    subject: SubjectPayload
    size: int

    @property
    def subject_id(self) -> str:
        return self.subject.id


@dataclass(frozen=True)
class PendingBlock:
    block: Block
    start_at: int = 0


@dataclass(frozen=True)
class SearchResult:
    placements: tuple[Placement, ...]
    placed_hours: dict[str, int]
    statistics: SearchStatistics


class AssignmentSearch:
    """Constructive placement with bounded chronological backtracking.

    Batches are scheduled one after another in snapshot order. Inside a batch
    every subject is cut into blocks (double blocks for lab/practical
    subjects when enabled) and blocks are placed most-constrained-first into
    the first legal candidate in grid order. A dead end retracts the most
    recent placement of the same batch and retries it from its next
    candidate, until the batch's backtrack budget runs out; blocks that still
    cannot be placed are reported as unmet quota instead of failing the run.

    Candidate evaluations are capped per attempt; an attempt starts with each
    batch and again after every backtrack. Slots the batch already holds are
    skipped without counting against the cap.
    """

    def __init__(self, model: ConstraintModel, options: GenerationOptions) -> None:
        self.model = model
        self.options = options
        self.grid = model.grid
        self.index = model.index
        self._single_candidates: tuple[tuple[int, ...], ...] = tuple((slot.index,) for slot in self.grid)
        self._double_candidates: tuple[tuple[int, ...], ...] = tuple(
            (first.index, second.index) for first, second in self.grid.contiguous_pairs()
        )
        self._batch_order = {batch.id: position for position, batch in enumerate(self.index.batches)}
        self.statistics = SearchStatistics()
        self._attempt_cap = 0
        self._attempt_evaluations = 0
        self._attempt_exhausted = False

    def evaluation_cap_for(self, batch: BatchPayload) -> int:
        if self.options.max_candidate_evaluations:
            return self.options.max_candidate_evaluations
        # Every block may scan the candidate list twice: once from its retry
        # position and once from the start.
        hours = sum(subject.hours_per_week for subject in self.index.subjects_by_batch.get(batch.id, ()))
        return (2 * hours + 1) * max(1, self.grid.total_slots)

    def _start_attempt(self) -> None:
        self._attempt_evaluations = 0
        self._attempt_exhausted = False

    def run(self) -> SearchResult:
        state = SearchState()
        for batch in self.index.batches:
            self._schedule_batch(batch, state)

        ordered = sorted(
            state.placements,
            key=lambda placement: (self._batch_order[placement.batch_id], placement.slot_indices[0]),
        )
        logger.debug(
            "Search finished evaluations=%s backtracks=%s placed=%s unmet=%s",
            self.statistics.candidate_evaluations,
            self.statistics.backtracks,
            self.statistics.blocks_placed,
            self.statistics.blocks_unmet,
        )
        return SearchResult(
            placements=tuple(ordered),
            placed_hours=dict(state.placed_hours),
            statistics=self.statistics,
        )

    def _candidates_for(self, size: int) -> tuple[tuple[int, ...], ...]:
        return self._double_candidates if size == 2 else self._single_candidates

    def _block_sizes(self, subject: SubjectPayload, quota: int) -> list[int]:
        if self.options.lab_double_slot and subject.needs_double_slot and self._double_candidates:
            return [2] * (quota // 2) + [1] * (quota % 2)
        return [1] * quota

    def _expand_blocks(self, batch: BatchPayload, state: SearchState) -> list[Block]:
        ranked: list[tuple[float, int, SubjectPayload, list[int]]] = []
        for subject in self.index.subjects_by_batch.get(batch.id, ()):
            quota = self.model.remaining_quota(subject, state)
            if quota <= 0:
                continue
            sizes = self._block_sizes(subject, quota)
            available = self.model.available_slot_count(subject, state, block_size=sizes[0]) * sizes[0]
            ratio = quota / available if available else float("inf")
            ranked.append((ratio, quota, subject, sizes))

        # Most constrained first: highest quota per still-available slot.
        ranked.sort(key=lambda item: (-item[0], -item[1], item[2].id))
        return [Block(subject=subject, size=size) for _, _, subject, sizes in ranked for size in sizes]

    def _schedule_batch(self, batch: BatchPayload, state: SearchState) -> None:
        pending: deque[PendingBlock] = deque(PendingBlock(block) for block in self._expand_blocks(batch, state))
        committed: list[tuple[Block, Placement, int]] = []
        backtracks_left = self.options.max_backtracks_per_batch
        self._attempt_cap = self.evaluation_cap_for(batch)
        self._start_attempt()

        while pending:
            item = pending.popleft()
            try:
                if self._advance(item, pending, committed, state, backtracks_left=backtracks_left):
                    backtracks_left -= 1
                    self._start_attempt()
            except InfeasibleQuota as exc:
                logger.debug("Quota shortfall recorded: %s", exc.message)

        logger.debug(
            "Batch %s scheduled placements=%s backtracks_used=%s",
            batch.id,
            len(committed),
            self.options.max_backtracks_per_batch - backtracks_left,
        )

    def _advance(
        self,
        item: PendingBlock,
        pending: deque[PendingBlock],
        committed: list[tuple[Block, Placement, int]],
        state: SearchState,
        *,
        backtracks_left: int,
    ) -> bool:
        """Place one pending block; returns True when a backtrack was spent."""
        block = item.block
        found = self._first_legal_candidate(block, state, start_at=item.start_at)
        if found is not None:
            position, placement = found
            state.place(placement)
            committed.append((block, placement, position))
            self.statistics.blocks_placed += 1
            return False

        if self._attempt_exhausted:
            self._fail_block(block, pending)

        can_backtrack = backtracks_left > 0 and bool(committed)
        if can_backtrack and (item.start_at > 0 or self._blocked_by_batch(block, state)):
            previous_block, previous_placement, previous_position = committed.pop()
            state.retract(previous_placement)
            self.statistics.blocks_placed -= 1
            self.statistics.backtracks += 1
            pending.appendleft(PendingBlock(block))
            pending.appendleft(PendingBlock(previous_block, start_at=previous_position + 1))
            return True

        if item.start_at > 0:
            # Out of budget while retrying: fall back to the first legal candidate.
            pending.appendleft(PendingBlock(block))
            return False

        if block.size == 2 and self.options.lab_split_fallback:
            single = Block(subject=block.subject, size=1)
            pending.appendleft(PendingBlock(single))
            pending.appendleft(PendingBlock(single))
            return False

        self._fail_block(block, pending)
        return False

    def _first_legal_candidate(
        self,
        block: Block,
        state: SearchState,
        *,
        start_at: int = 0,
    ) -> tuple[int, Placement] | None:
        subject = block.subject
        candidates = self._candidates_for(block.size)
        for position in range(start_at, len(candidates)):
            slot_indices = candidates[position]
            if not all(self.model.is_batch_free(subject.batch_id, slot_index, state) for slot_index in slot_indices):
                continue

            if self._attempt_evaluations >= self._attempt_cap:
                self._attempt_exhausted = True
                self.statistics.evaluation_budget_exhausted = True
                return None
            self._attempt_evaluations += 1
            self.statistics.candidate_evaluations += 1

            room_id = self.model.free_room(slot_indices, state) if self.model.rooms_tracked else None
            if self.model.is_legal(subject, slot_indices, room_id, state):
                return position, self.model.placement_for(subject, slot_indices, room_id)
        return None

    def _blocked_by_batch(self, block: Block, state: SearchState) -> bool:
        """True when a placement of this batch sits on a slot the block could otherwise use."""
        subject = block.subject
        for slot_indices in self._candidates_for(block.size):
            if not all(self.model.is_faculty_free(subject.faculty, slot_index, state) for slot_index in slot_indices):
                continue
            if any(not self.model.is_batch_free(subject.batch_id, slot_index, state) for slot_index in slot_indices):
                return True
        return False

    def _fail_block(self, block: Block, pending: deque[PendingBlock]) -> None:
        # Blocks of the same subject at least this large cannot fit either.
        kept: list[PendingBlock] = []
        dropped: list[PendingBlock] = []
        for item in pending:
            if item.block.subject_id == block.subject_id and item.block.size >= block.size:
                dropped.append(item)
            else:
                kept.append(item)
        pending.clear()
        pending.extend(kept)

        self.statistics.blocks_unmet += 1 + len(dropped)
        hours = block.size + sum(item.block.size for item in dropped)
        raise InfeasibleQuota(block.subject_id, block.subject.batch_id, hours)
