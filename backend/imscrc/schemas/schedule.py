from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from imscrc.models.schedule import ScheduleStatus, ScheduleType
from imscrc.schemas.common import to_utc
from imscrc.schemas.conflict import DetectedConflictOut

# Columns that may be omitted from an update but never cleared.
REQUIRED_ON_UPDATE = ("schedule_type", "pdl_id", "title", "start_datetime", "end_datetime", "status")


class ScheduleCreate(BaseModel):
    schedule_type: ScheduleType
    pdl_id: str = Field(min_length=1, max_length=36)
    title: str = Field(min_length=1, max_length=255)
    start_datetime: datetime
    end_datetime: datetime
    facility_id: str | None = Field(default=None, max_length=36)
    location: str | None = Field(default=None, max_length=255)
    responsible_officer: str | None = Field(default=None, max_length=255)
    description: str | None = None
    notes: str | None = None

    @field_validator("start_datetime", "end_datetime")
    @classmethod
    def normalize_timezone(cls, value: datetime) -> datetime:
        return to_utc(value)

    @field_validator("responsible_officer", "facility_id")
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @model_validator(mode="after")
    def validate_window(self) -> "ScheduleCreate":
        if self.end_datetime <= self.start_datetime:
            raise ValueError("end_datetime must be after start_datetime")
        return self


class ScheduleUpdate(BaseModel):
    schedule_type: ScheduleType | None = None
    pdl_id: str | None = Field(default=None, min_length=1, max_length=36)
    title: str | None = Field(default=None, min_length=1, max_length=255)
    start_datetime: datetime | None = None
    end_datetime: datetime | None = None
    facility_id: str | None = Field(default=None, max_length=36)
    location: str | None = Field(default=None, max_length=255)
    responsible_officer: str | None = Field(default=None, max_length=255)
    description: str | None = None
    notes: str | None = None
    status: ScheduleStatus | None = None

    @field_validator("start_datetime", "end_datetime")
    @classmethod
    def normalize_timezone(cls, value: datetime | None) -> datetime | None:
        return to_utc(value)

    @field_validator("responsible_officer", "facility_id")
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @model_validator(mode="after")
    def reject_null_required(self) -> "ScheduleUpdate":
        cleared = sorted(
            name for name in REQUIRED_ON_UPDATE if name in self.model_fields_set and getattr(self, name) is None
        )
        if cleared:
            raise ValueError(f"{', '.join(cleared)} cannot be null")
        return self

    @model_validator(mode="after")
    def validate_window(self) -> "ScheduleUpdate":
        if self.start_datetime and self.end_datetime and self.end_datetime <= self.start_datetime:
            raise ValueError("end_datetime must be after start_datetime")
        return self


class ScheduleOut(BaseModel):
    id: str
    schedule_type: ScheduleType
    pdl_id: str
    facility_id: str | None
    title: str
    description: str | None
    start_datetime: datetime
    end_datetime: datetime
    status: ScheduleStatus
    location: str | None
    responsible_officer: str | None
    notes: str | None
    created_by: str | None
    updated_by: str | None
    created_at: datetime | None
    updated_at: datetime | None

    model_config = {"from_attributes": True}


class ScheduleSaveResponse(BaseModel):
    data: ScheduleOut
    conflicts: list[DetectedConflictOut]
    message: str


class SchedulePage(BaseModel):
    data: list[ScheduleOut]
    total: int
    page: int
    per_page: int
    last_page: int


class CalendarEventOut(BaseModel):
    id: str
    title: str
    start: datetime
    end: datetime
    type: ScheduleType
    pdl: str
    facility: str | None
    status: ScheduleStatus
    location: str | None
