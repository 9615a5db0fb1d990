import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from timetabler.db.base import Base


class SubjectType(str, Enum):
    theory = "theory"
    practical = "practical"
    lab = "lab"
    tutorial = "tutorial"


class Subject(Base):
    __tablename__ = "subjects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    batch_id: Mapped[str] = mapped_column(String(36), ForeignKey("batches.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    faculty: Mapped[str] = mapped_column(String(200), nullable=False)
    subject_type: Mapped[SubjectType] = mapped_column(
        SAEnum(SubjectType, name="subject_type"),
        nullable=False,
        default=SubjectType.theory,
    )
    hours_per_week: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())
