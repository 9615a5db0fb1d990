from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from timetabler.schemas.grid import GridConfig
from timetabler.schemas.snapshot import EntitySnapshot


class GenerationOptions(BaseModel):
    lab_double_slot: bool = True
    lab_split_fallback: bool = True
    max_backtracks_per_batch: int = Field(default=200, ge=0, le=100_000)
    max_candidate_evaluations: int | None = Field(default=None, ge=1)


class AssignmentOut(BaseModel):
    batch_id: str
    subject_id: str
    faculty: str
    day: str
    period_index: int = Field(ge=0)
    period_label: str
    slot_index: int = Field(ge=0)
    room_id: str | None = None

    model_config = ConfigDict(frozen=True)


class SlotEntry(BaseModel):
    subject_id: str
    subject_name: str | None = None
    subject_code: str | None = None
    faculty: str
    room_id: str | None = None


class FacultySlotEntry(BaseModel):
    batch_id: str
    subject_id: str
    room_id: str | None = None


class QuotaShortfall(BaseModel):
    subject_id: str
    batch_id: str
    required_hours: int
    placed_hours: int
    shortfall_hours: int = Field(ge=1)


class CompletenessReport(BaseModel):
    is_complete: bool
    shortfalls: list[QuotaShortfall] = Field(default_factory=list)


class SearchStatistics(BaseModel):
    candidate_evaluations: int = 0
    backtracks: int = 0
    blocks_placed: int = 0
    blocks_unmet: int = 0
    evaluation_budget_exhausted: bool = False


class TimetableOut(BaseModel):
    """Finished timetable of one generation run.

    ``schedule`` maps batch id -> day -> period label -> entry. Every batch of
    the snapshot is present; free periods are simply absent.
    """

    id: str
    generated_at: datetime
    is_complete: bool
    rooms_tracked: bool = False
    room_pool: list[str] = Field(default_factory=list)
    grid: GridConfig
    snapshot: EntitySnapshot
    assignments: list[AssignmentOut] = Field(default_factory=list)
    schedule: dict[str, dict[str, dict[str, SlotEntry]]] = Field(default_factory=dict)
    faculty_schedule: dict[str, dict[str, dict[str, FacultySlotEntry]]] = Field(default_factory=dict)
    completeness: CompletenessReport
    statistics: SearchStatistics = Field(default_factory=SearchStatistics)

    model_config = ConfigDict(frozen=True)


ViolationCode = Literal[
    "batch_double_booked",
    "faculty_double_booked",
    "room_double_booked",
    "quota_exceeded",
    "completeness_mismatch",
    "dangling_reference",
    "batch_mismatch",
    "faculty_mismatch",
    "unknown_slot",
    "room_missing",
]


class Violation(BaseModel):
    invariant: int = Field(ge=1, le=7)
    code: ViolationCode
    description: str
    entity_id: str
    slot: str | None = None


class ValidationResult(BaseModel):
    valid: bool
    violations: list[Violation] = Field(default_factory=list)


class GenerateTimetableRequest(BaseModel):
    snapshot: EntitySnapshot
    grid: GridConfig | None = None
    rooms: list[str] | None = None
    options: GenerationOptions | None = None
    persist: bool = False


class GenerateFromStoreRequest(BaseModel):
    department_ids: list[str] | None = None
    grid: GridConfig | None = None
    use_room_pool: bool = False
    options: GenerationOptions | None = None
    persist: bool = False


class GenerateTimetableResponse(BaseModel):
    timetable: TimetableOut
    validation: ValidationResult
    runtime_ms: int
    version_label: str | None = None
    version_id: str | None = None


class ValidateTimetableRequest(BaseModel):
    timetable: TimetableOut


class GridSlotOut(BaseModel):
    index: int
    day: str
    period_index: int
    label: str
    start_time: str
    end_time: str


class GridOut(BaseModel):
    config: GridConfig
    total_slots: int
    slots: list[GridSlotOut]
    double_slot_pairs: list[tuple[int, int]]


class GeneratedTimetableSummaryOut(BaseModel):
    id: str
    label: str
    is_complete: bool
    summary: dict
    created_at: datetime

    model_config = {"from_attributes": True}


class GeneratedTimetableOut(GeneratedTimetableSummaryOut):
    timetable: TimetableOut
