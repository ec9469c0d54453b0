from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from imscrc.models.schedule import ScheduleStatus, ScheduleType
from imscrc.models.schedule_conflict import ConflictSeverity, ConflictStatus, ConflictType
from imscrc.schemas.common import to_utc


class DetectedConflictOut(BaseModel):
    """A collision found while saving a schedule, with the stored record it maps to."""

    conflict_id: str | None
    schedule_1_id: str
    schedule_2_id: str
    conflict_type: ConflictType
    description: str
    severity: ConflictSeverity
    is_new: bool

    model_config = {"from_attributes": True}


class ConflictOut(BaseModel):
    id: str
    schedule_1_id: str
    schedule_2_id: str
    conflict_type: ConflictType
    description: str
    severity: ConflictSeverity
    status: ConflictStatus
    resolution_notes: str | None
    resolved_by: str | None
    resolved_at: datetime | None
    created_at: datetime
    updated_at: datetime | None

    model_config = {"from_attributes": True}


class ConflictScheduleSummary(BaseModel):
    id: str
    title: str
    schedule_type: ScheduleType
    pdl_id: str
    facility_id: str | None
    start_datetime: datetime
    end_datetime: datetime
    status: ScheduleStatus

    model_config = {"from_attributes": True}


class ConflictDetailOut(ConflictOut):
    schedule_1: ConflictScheduleSummary | None = None
    schedule_2: ConflictScheduleSummary | None = None


class ConflictPageOut(BaseModel):
    data: list[ConflictOut]
    total: int
    page: int
    per_page: int
    last_page: int


class ConflictResolveRequest(BaseModel):
    resolution_notes: str | None = Field(default=None, max_length=5000)


class AvailabilityCheckRequest(BaseModel):
    pdl_id: str = Field(min_length=1, max_length=36)
    facility_id: str | None = Field(default=None, max_length=36)
    start_datetime: datetime
    end_datetime: datetime
    exclude_schedule_id: str | None = Field(default=None, max_length=36)

    @field_validator("start_datetime", "end_datetime")
    @classmethod
    def normalize_timezone(cls, value: datetime) -> datetime:
        return to_utc(value)

    @field_validator("facility_id", "exclude_schedule_id")
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @model_validator(mode="after")
    def validate_window(self) -> "AvailabilityCheckRequest":
        if self.end_datetime <= self.start_datetime:
            raise ValueError("end_datetime must be after start_datetime")
        return self


class AvailabilityOut(BaseModel):
    available: bool
    conflicts: list[str]


class ConflictStatisticsOut(BaseModel):
    total_conflicts: int
    unresolved_conflicts: int
    critical_conflicts: int
    conflicts_by_type: dict[str, int]
    conflicts_by_severity: dict[str, int]
