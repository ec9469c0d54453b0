import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from imscrc.db.base import Base


class ScheduleStatus(str, Enum):
    scheduled = "scheduled"
    confirmed = "confirmed"
    completed = "completed"
    cancelled = "cancelled"
    rescheduled = "rescheduled"


class ScheduleType(str, Enum):
    court = "court"
    visit = "visit"
    program = "program"
    medical = "medical"
    other = "other"


class Schedule(Base):
    __tablename__ = "schedules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    schedule_type: Mapped[ScheduleType] = mapped_column(
        SAEnum(ScheduleType, name="schedule_type"),
        nullable=False,
        default=ScheduleType.other,
    )
    pdl_id: Mapped[str] = mapped_column(ForeignKey("pdls.id", ondelete="RESTRICT"), nullable=False, index=True)
    facility_id: Mapped[str | None] = mapped_column(
        ForeignKey("facilities.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_datetime: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_datetime: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[ScheduleStatus] = mapped_column(
        SAEnum(ScheduleStatus, name="schedule_status"),
        nullable=False,
        default=ScheduleStatus.scheduled,
    )
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    responsible_officer: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    pdl = relationship("PDL")
    facility = relationship("Facility")

    __table_args__ = (
        Index("ix_schedules_start_end", "start_datetime", "end_datetime"),
    )

    def __repr__(self) -> str:
        return f"<Schedule {self.id} {self.schedule_type.value} {self.start_datetime}..{self.end_datetime}>"
