from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
import logging
from time import perf_counter
from typing import Sequence

from timetabler.core.exceptions import GenerationTimeout
from timetabler.schemas.grid import GridConfig
from timetabler.schemas.snapshot import EntitySnapshot
from timetabler.schemas.timetable import GenerationOptions, TimetableOut, ValidationResult
from timetabler.services.builder import ScheduleBuilder
from timetabler.services.constraints import ConstraintModel
from timetabler.services.grid import TimeGrid
from timetabler.services.search import AssignmentSearch
from timetabler.services.snapshot import SnapshotIndex
from timetabler.services.validator import ensure_valid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
    timetable: TimetableOut
    validation: ValidationResult
    runtime_ms: int


class TimetableEngine:
    """One generation run: snapshot check, search, build, final scan.

    The snapshot is validated in the constructor, so an ``InputError`` is
    raised before any placement work starts.
    """

    def __init__(
        self,
        snapshot: EntitySnapshot,
        *,
        grid: GridConfig | None = None,
        rooms: Sequence[str] | None = None,
        options: GenerationOptions | None = None,
    ) -> None:
        self.index = SnapshotIndex(snapshot)
        self.grid = TimeGrid(grid)
        self.model = ConstraintModel(self.index, self.grid, rooms)
        self.options = options or GenerationOptions()

    def run(self, *, generated_at: datetime | None = None) -> GenerationResult:
        started = perf_counter()
        search_result = AssignmentSearch(self.model, self.options).run()
        timetable = ScheduleBuilder(self.model).build(search_result, generated_at=generated_at)
        validation = ensure_valid(timetable)
        runtime_ms = int((perf_counter() - started) * 1000)

        if not timetable.is_complete:
            logger.warning(
                "Timetable %s is incomplete | shortfall_subjects=%s | shortfall_hours=%s",
                timetable.id,
                len(timetable.completeness.shortfalls),
                sum(item.shortfall_hours for item in timetable.completeness.shortfalls),
            )
        logger.debug(
            "Engine run finished | id=%s | assignments=%s | runtime_ms=%s",
            timetable.id,
            len(timetable.assignments),
            runtime_ms,
        )
        return GenerationResult(timetable=timetable, validation=validation, runtime_ms=runtime_ms)


def generate_timetable(
    snapshot: EntitySnapshot,
    *,
    grid: GridConfig | None = None,
    rooms: Sequence[str] | None = None,
    options: GenerationOptions | None = None,
    generated_at: datetime | None = None,
) -> GenerationResult:
    engine = TimetableEngine(snapshot, grid=grid, rooms=rooms, options=options)
    return engine.run(generated_at=generated_at)


async def run_generation(
    snapshot: EntitySnapshot,
    *,
    timeout_seconds: float,
    grid: GridConfig | None = None,
    rooms: Sequence[str] | None = None,
    options: GenerationOptions | None = None,
    generated_at: datetime | None = None,
) -> GenerationResult:
    """Run ``generate_timetable`` on a worker thread, bounded by ``timeout_seconds``.

    On timeout the worker's eventual result is discarded; nothing it touches
    is shared with the caller.
    """
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(
                generate_timetable,
                snapshot,
                grid=grid,
                rooms=rooms,
                options=options,
                generated_at=generated_at,
            ),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning("Timetable generation timed out after %ss", timeout_seconds)
        raise GenerationTimeout(timeout_seconds) from None
