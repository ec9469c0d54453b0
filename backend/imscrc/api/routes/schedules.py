import logging
from collections.abc import Callable
from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from imscrc.api.deps import (
    CurrentUser,
    ensure_references,
    get_clock,
    get_conflict_service,
    get_current_user,
    get_db,
)
from imscrc.core.config import get_settings
from imscrc.core.exceptions import AppError, ResourceNotFoundError
from imscrc.models.schedule import Schedule, ScheduleStatus, ScheduleType
from imscrc.models.schedule_conflict import ScheduleConflict
from imscrc.schemas.common import page_count
from imscrc.schemas.conflict import ConflictOut, DetectedConflictOut
from imscrc.schemas.schedule import (
    CalendarEventOut,
    ScheduleCreate,
    ScheduleOut,
    SchedulePage,
    ScheduleSaveResponse,
    ScheduleUpdate,
)
from imscrc.services.audit import log_activity
from imscrc.services.conflict_detection import ConflictCandidate, ConflictDetectionService, as_naive_utc

logger = logging.getLogger(__name__)

router = APIRouter()

settings = get_settings()


def _get_schedule_or_404(db: Session, schedule_id: str) -> Schedule:
    schedule = db.get(Schedule, schedule_id)
    if schedule is None:
        raise ResourceNotFoundError("Schedule", schedule_id)
    return schedule


def _detected(candidates: list[ConflictCandidate]) -> list[DetectedConflictOut]:
    return [DetectedConflictOut.model_validate(candidate) for candidate in candidates]


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min)


@router.get("/schedules", response_model=SchedulePage)
def list_schedules(
    pdl_id: str | None = Query(default=None, max_length=36),
    facility_id: str | None = Query(default=None, max_length=36),
    schedule_status: ScheduleStatus | None = Query(default=None, alias="status"),
    schedule_type: ScheduleType | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    per_page: int | None = Query(default=None, ge=1),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SchedulePage:
    conditions = []
    if pdl_id is not None:
        conditions.append(Schedule.pdl_id == pdl_id)
    if facility_id is not None:
        conditions.append(Schedule.facility_id == facility_id)
    if schedule_status is not None:
        conditions.append(Schedule.status == schedule_status)
    if schedule_type is not None:
        conditions.append(Schedule.schedule_type == schedule_type)
    if start_date is not None:
        conditions.append(Schedule.start_datetime >= _day_start(start_date))
    if end_date is not None:
        conditions.append(Schedule.start_datetime < _day_start(end_date + timedelta(days=1)))

    size = min(per_page or settings.default_page_size, settings.max_page_size)
    total = db.execute(select(func.count()).select_from(Schedule).where(*conditions)).scalar_one()
    rows = db.execute(
        select(Schedule)
        .where(*conditions)
        .order_by(Schedule.start_datetime.asc())
        .offset((page - 1) * size)
        .limit(size)
    ).scalars()
    return SchedulePage(
        data=[ScheduleOut.model_validate(row) for row in rows],
        total=total,
        page=page,
        per_page=size,
        last_page=page_count(total, size),
    )


def _active_schedules():
    return (
        select(Schedule)
        .where(Schedule.status != ScheduleStatus.cancelled)
        .order_by(Schedule.start_datetime.asc())
    )


def _starting_between(first_day: date, last_day: date):
    return (
        Schedule.start_datetime >= _day_start(first_day),
        Schedule.start_datetime < _day_start(last_day + timedelta(days=1)),
    )


def _calendar_event(schedule: Schedule) -> CalendarEventOut:
    return CalendarEventOut(
        id=schedule.id,
        title=schedule.title,
        start=schedule.start_datetime,
        end=schedule.end_datetime,
        type=schedule.schedule_type,
        pdl=schedule.pdl.full_name if schedule.pdl is not None else schedule.pdl_id,
        facility=schedule.facility.name if schedule.facility is not None else None,
        status=schedule.status,
        location=schedule.location,
    )


@router.get("/schedules-calendar", response_model=list[CalendarEventOut])
def schedule_calendar(
    start_date: date = Query(...),
    end_date: date = Query(...),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[CalendarEventOut]:
    if end_date < start_date:
        raise AppError(
            "end_date must be on or after start_date",
            status_code=422,
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )
    rows = db.execute(_active_schedules().where(*_starting_between(start_date, end_date))).scalars()
    return [_calendar_event(row) for row in rows]


@router.get("/schedules-today", response_model=list[ScheduleOut])
def schedules_today(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> list[ScheduleOut]:
    today = as_naive_utc(clock()).date()
    return list(db.execute(_active_schedules().where(*_starting_between(today, today))).scalars())


@router.get("/schedules-upcoming", response_model=list[ScheduleOut])
def schedules_upcoming(
    limit: int = Query(default=10, ge=1, le=settings.max_page_size),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> list[ScheduleOut]:
    now = as_naive_utc(clock())
    query = _active_schedules().where(Schedule.start_datetime > now).limit(limit)
    return list(db.execute(query).scalars())


@router.post("/schedules", response_model=ScheduleSaveResponse, status_code=status.HTTP_201_CREATED)
def create_schedule(
    payload: ScheduleCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: ConflictDetectionService = Depends(get_conflict_service),
) -> ScheduleSaveResponse:
    ensure_references(db, payload.pdl_id, payload.facility_id)

    schedule = Schedule(
        **payload.model_dump(),
        status=ScheduleStatus.scheduled,
        created_by=current_user.id,
    )
    db.add(schedule)
    db.flush()

    conflicts = service.detect_conflicts(schedule)
    log_activity(
        db,
        user_id=current_user.id,
        action="schedule.create",
        entity_type="schedule",
        entity_id=schedule.id,
        details={"conflicts": len(conflicts)},
    )
    db.commit()
    db.refresh(schedule)
    return ScheduleSaveResponse(
        data=ScheduleOut.model_validate(schedule),
        conflicts=_detected(conflicts),
        message="Schedule created successfully",
    )


@router.get("/schedules/{schedule_id}", response_model=ScheduleOut)
def get_schedule(
    schedule_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ScheduleOut:
    return _get_schedule_or_404(db, schedule_id)


@router.put("/schedules/{schedule_id}", response_model=ScheduleSaveResponse)
def update_schedule(
    schedule_id: str,
    payload: ScheduleUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: ConflictDetectionService = Depends(get_conflict_service),
) -> ScheduleSaveResponse:
    schedule = _get_schedule_or_404(db, schedule_id)
    data = payload.model_dump(exclude_unset=True)
    ensure_references(db, data.get("pdl_id"), data.get("facility_id"))

    start = data.get("start_datetime", schedule.start_datetime)
    end = data.get("end_datetime", schedule.end_datetime)
    if as_naive_utc(end) <= as_naive_utc(start):
        raise AppError(
            "end_datetime must be after start_datetime",
            status_code=422,
            details={"start_datetime": start.isoformat(), "end_datetime": end.isoformat()},
        )

    for key, value in data.items():
        setattr(schedule, key, value)
    schedule.updated_by = current_user.id
    db.flush()

    conflicts = service.detect_conflicts(schedule)
    log_activity(
        db,
        user_id=current_user.id,
        action="schedule.update",
        entity_type="schedule",
        entity_id=schedule.id,
        details={"fields": sorted(data), "conflicts": len(conflicts)},
    )
    db.commit()
    db.refresh(schedule)
    return ScheduleSaveResponse(
        data=ScheduleOut.model_validate(schedule),
        conflicts=_detected(conflicts),
        message="Schedule updated successfully",
    )


@router.delete("/schedules/{schedule_id}")
def delete_schedule(
    schedule_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    schedule = _get_schedule_or_404(db, schedule_id)
    removed = db.execute(
        delete(ScheduleConflict).where(
            or_(
                ScheduleConflict.schedule_1_id == schedule_id,
                ScheduleConflict.schedule_2_id == schedule_id,
            )
        )
    ).rowcount
    db.delete(schedule)
    log_activity(
        db,
        user_id=current_user.id,
        action="schedule.delete",
        entity_type="schedule",
        entity_id=schedule_id,
        details={"conflicts_removed": removed},
    )
    db.commit()
    logger.info("Schedule %s deleted with %d conflict record(s)", schedule_id, removed)
    return {"message": "Schedule deleted successfully"}


@router.get("/schedules/{schedule_id}/conflicts", response_model=list[ConflictOut])
def list_schedule_conflicts(
    schedule_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: ConflictDetectionService = Depends(get_conflict_service),
) -> list[ConflictOut]:
    return service.conflicts_for_schedule(schedule_id)
