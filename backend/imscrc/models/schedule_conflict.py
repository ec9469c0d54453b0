import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from imscrc.db.base import Base


class ConflictType(str, Enum):
    subject_double_booking = "subject_double_booking"
    facility_double_booking = "facility_double_booking"
    officer_conflict = "officer_conflict"
    # Reserved in the schema, never produced by detection.
    resource_conflict = "resource_conflict"


class ConflictSeverity(str, Enum):
    # Declaration order is the severity order, lowest first.
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK: dict[ConflictSeverity, int] = {member: index for index, member in enumerate(ConflictSeverity)}


class ConflictStatus(str, Enum):
    detected = "detected"
    acknowledged = "acknowledged"
    resolved = "resolved"
    ignored = "ignored"


# Statuses still awaiting a decision. The unresolved queue is wider: anything
# not yet resolved, ignored conflicts included.
OPEN_STATUSES = frozenset({ConflictStatus.detected, ConflictStatus.acknowledged})


def make_pair_key(schedule_a_id: str, schedule_b_id: str) -> str:
    """Canonical key for an unordered pair of schedule ids."""
    first, second = sorted((str(schedule_a_id), str(schedule_b_id)))
    return f"{first}:{second}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ScheduleConflict(Base):
    __tablename__ = "schedule_conflicts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    schedule_1_id: Mapped[str] = mapped_column(
        ForeignKey("schedules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    schedule_2_id: Mapped[str] = mapped_column(
        ForeignKey("schedules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    pair_key: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)
    conflict_type: Mapped[ConflictType] = mapped_column(SAEnum(ConflictType, name="conflict_type"), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[ConflictSeverity] = mapped_column(
        SAEnum(ConflictSeverity, name="conflict_severity"),
        nullable=False,
        default=ConflictSeverity.medium,
    )
    status: Mapped[ConflictStatus] = mapped_column(
        SAEnum(ConflictStatus, name="conflict_status"),
        nullable=False,
        default=ConflictStatus.detected,
        index=True,
    )
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Python-side default keeps sub-second precision for newest-first ordering.
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utc_now)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    schedule_1 = relationship("Schedule", foreign_keys=[schedule_1_id])
    schedule_2 = relationship("Schedule", foreign_keys=[schedule_2_id])

    def involves(self, schedule_id: str) -> bool:
        return schedule_id in (self.schedule_1_id, self.schedule_2_id)
