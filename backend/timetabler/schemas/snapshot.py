from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SubjectTypeValue = Literal["theory", "practical", "lab", "tutorial"]

DOUBLE_SLOT_TYPES = frozenset({"practical", "lab"})


class DepartmentPayload(BaseModel):
    id: str = Field(min_length=1, max_length=36)
    name: str = Field(min_length=1, max_length=200)
    code: str = Field(min_length=1, max_length=50)
    head: str | None = Field(default=None, max_length=200)

    model_config = ConfigDict(frozen=True, from_attributes=True)


class BatchPayload(BaseModel):
    id: str = Field(min_length=1, max_length=36)
    department_id: str = Field(min_length=1, max_length=36)
    name: str | None = Field(default=None, max_length=100)
    semester: int = Field(default=1, ge=1, le=20)
    student_count: int = Field(default=0, ge=0, le=5000)

    model_config = ConfigDict(frozen=True, from_attributes=True)


class SubjectPayload(BaseModel):
    id: str = Field(min_length=1, max_length=36)
    batch_id: str = Field(min_length=1, max_length=36)
    name: str | None = Field(default=None, max_length=200)
    code: str | None = Field(default=None, max_length=50)
    faculty: str = Field(min_length=1, max_length=200)
    subject_type: SubjectTypeValue = "theory"
    hours_per_week: int = Field(ge=1, le=60)

    model_config = ConfigDict(frozen=True, from_attributes=True)

    @field_validator("faculty")
    @classmethod
    def normalize_faculty(cls, value: str) -> str:
        cleaned = " ".join(value.split())
        if not cleaned:
            raise ValueError("faculty cannot be blank")
        return cleaned

    @field_validator("subject_type", mode="before")
    @classmethod
    def normalize_subject_type(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        # Accept the ORM enum as well as plain strings.
        return getattr(value, "value", value)

    @property
    def needs_double_slot(self) -> bool:
        return self.subject_type in DOUBLE_SLOT_TYPES


class EntitySnapshot(BaseModel):
    """Read-only view of the entities one generation run is built from."""

    departments: list[DepartmentPayload] = Field(default_factory=list)
    batches: list[BatchPayload] = Field(default_factory=list)
    subjects: list[SubjectPayload] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


def faculty_key(name: str) -> str:
    """Identity of a faculty member across batches and departments."""
    return " ".join(name.split()).casefold()
