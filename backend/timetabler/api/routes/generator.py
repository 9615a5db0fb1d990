import asyncio
import logging
from time import perf_counter
from typing import Sequence

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from timetabler.api.deps import get_db
from timetabler.core.config import Settings, get_settings
from timetabler.core.exceptions import AppError, ValidatorViolation
from timetabler.schemas.grid import GridConfig
from timetabler.schemas.snapshot import EntitySnapshot
from timetabler.schemas.timetable import (
    GenerateFromStoreRequest,
    GenerateTimetableRequest,
    GenerateTimetableResponse,
    GeneratedTimetableOut,
    GeneratedTimetableSummaryOut,
    GenerationOptions,
    GridOut,
    GridSlotOut,
    TimetableOut,
    ValidateTimetableRequest,
    ValidationResult,
)
from timetabler.services import engine as generation_engine
from timetabler.services.grid import TimeGrid
from timetabler.services.repository import (
    get_timetable,
    list_timetables,
    load_room_pool,
    load_snapshot,
    save_timetable,
)
from timetabler.services.validator import validate_timetable

router = APIRouter()
logger = logging.getLogger(__name__)


def default_generation_options(settings: Settings) -> GenerationOptions:
    return GenerationOptions(
        lab_double_slot=settings.lab_double_slot,
        lab_split_fallback=settings.lab_split_fallback,
        max_backtracks_per_batch=settings.max_backtracks_per_batch,
    )


async def _run_and_respond(
    *,
    db: Session,
    settings: Settings,
    snapshot: EntitySnapshot,
    grid: GridConfig | None,
    rooms: Sequence[str] | None,
    options: GenerationOptions | None,
    persist: bool,
    source: str,
) -> GenerateTimetableResponse:
    started = perf_counter()
    logger.info(
        "TIMETABLE GENERATION START | source=%s | departments=%s | batches=%s | subjects=%s | rooms=%s | persist=%s",
        source,
        len(snapshot.departments),
        len(snapshot.batches),
        len(snapshot.subjects),
        len(rooms or ()),
        persist,
    )
    try:
        result = await generation_engine.run_generation(
            snapshot,
            timeout_seconds=settings.generation_timeout_seconds,
            grid=grid,
            rooms=rooms,
            options=options or default_generation_options(settings),
        )
        response = GenerateTimetableResponse(
            timetable=result.timetable,
            validation=result.validation,
            runtime_ms=result.runtime_ms,
        )
        if persist:
            record = await asyncio.to_thread(save_timetable, db, result.timetable)
            response.version_label = record.label
            response.version_id = record.id

        elapsed_ms = int((perf_counter() - started) * 1000)
        logger.info(
            "TIMETABLE GENERATION COMPLETE | source=%s | id=%s | assignments=%s | complete=%s | backtracks=%s | version=%s | runtime_ms=%s | wall_ms=%s",
            source,
            result.timetable.id,
            len(result.timetable.assignments),
            result.timetable.is_complete,
            result.timetable.statistics.backtracks,
            response.version_label,
            result.runtime_ms,
            elapsed_ms,
        )
        return response
    except ValidatorViolation:
        elapsed_ms = int((perf_counter() - started) * 1000)
        logger.exception(
            "TIMETABLE GENERATION FAILED | source=%s | departments=%s | wall_ms=%s",
            source,
            len(snapshot.departments),
            elapsed_ms,
        )
        raise
    except AppError as exc:
        elapsed_ms = int((perf_counter() - started) * 1000)
        logger.warning(
            "TIMETABLE GENERATION REJECTED | source=%s | status=%s | reason=%s | wall_ms=%s",
            source,
            exc.status_code,
            exc.message,
            elapsed_ms,
        )
        raise
    except Exception:
        elapsed_ms = int((perf_counter() - started) * 1000)
        logger.exception(
            "TIMETABLE GENERATION FAILED | source=%s | departments=%s | wall_ms=%s",
            source,
            len(snapshot.departments),
            elapsed_ms,
        )
        raise


@router.post("/generate", response_model=GenerateTimetableResponse)
async def generate_timetable(
    payload: GenerateTimetableRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> GenerateTimetableResponse:
    return await _run_and_respond(
        db=db,
        settings=settings,
        snapshot=payload.snapshot,
        grid=payload.grid,
        rooms=payload.rooms,
        options=payload.options,
        persist=payload.persist,
        source="request",
    )


@router.post("/generate/stored", response_model=GenerateTimetableResponse)
async def generate_stored_timetable(
    payload: GenerateFromStoreRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> GenerateTimetableResponse:
    # Session work stays off the event loop.
    snapshot = await asyncio.to_thread(load_snapshot, db, payload.department_ids)
    rooms = await asyncio.to_thread(load_room_pool, db) if payload.use_room_pool else None
    return await _run_and_respond(
        db=db,
        settings=settings,
        snapshot=snapshot,
        grid=payload.grid,
        rooms=rooms,
        options=payload.options,
        persist=payload.persist,
        source="database",
    )


@router.post("/validate", response_model=ValidationResult)
def validate_generated_timetable(payload: ValidateTimetableRequest) -> ValidationResult:
    result = validate_timetable(payload.timetable)
    if not result.valid:
        logger.warning(
            "TIMETABLE VALIDATION FAILED | id=%s | violations=%s",
            payload.timetable.id,
            len(result.violations),
        )
    return result


@router.get("/generated", response_model=list[GeneratedTimetableSummaryOut])
def list_generated_timetables(db: Session = Depends(get_db)) -> list[GeneratedTimetableSummaryOut]:
    return [GeneratedTimetableSummaryOut.model_validate(record) for record in list_timetables(db)]


@router.get("/generated/{record_id}", response_model=GeneratedTimetableOut)
def get_generated_timetable(record_id: str, db: Session = Depends(get_db)) -> GeneratedTimetableOut:
    record = get_timetable(db, record_id)
    return GeneratedTimetableOut(
        id=record.id,
        label=record.label,
        is_complete=record.is_complete,
        summary=record.summary,
        created_at=record.created_at,
        timetable=TimetableOut.model_validate(record.payload),
    )


@router.get("/grid/default", response_model=GridOut, status_code=status.HTTP_200_OK)
def get_default_grid() -> GridOut:
    grid = TimeGrid()
    return GridOut(
        config=grid.config,
        total_slots=grid.total_slots,
        slots=[
            GridSlotOut(
                index=slot.index,
                day=slot.day,
                period_index=slot.period_index,
                label=slot.label,
                start_time=slot.start_time,
                end_time=slot.end_time,
            )
            for slot in grid.slots
        ],
        double_slot_pairs=[tuple(pair) for pair in grid.double_slot_pairs],
    )
