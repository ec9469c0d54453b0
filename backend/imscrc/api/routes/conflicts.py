from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from imscrc.api.deps import CurrentUser, ensure_references, get_conflict_service, get_current_user, get_db
from imscrc.core.config import get_settings
from imscrc.models.schedule_conflict import ConflictSeverity, ConflictType
from imscrc.schemas.conflict import (
    AvailabilityCheckRequest,
    AvailabilityOut,
    ConflictDetailOut,
    ConflictOut,
    ConflictPageOut,
    ConflictResolveRequest,
    ConflictStatisticsOut,
)
from imscrc.services.audit import log_activity
from imscrc.services.conflict_detection import ConflictDetectionService

router = APIRouter()

settings = get_settings()


@router.get("/conflicts", response_model=ConflictPageOut)
def list_conflicts(
    conflict_status: str | None = Query(default=None, alias="status", max_length=20),
    severity: ConflictSeverity | None = Query(default=None),
    conflict_type: ConflictType | None = Query(default=None, alias="type"),
    page: int = Query(default=1, ge=1),
    per_page: int | None = Query(default=None, ge=1),
    current_user: CurrentUser = Depends(get_current_user),
    service: ConflictDetectionService = Depends(get_conflict_service),
) -> ConflictPageOut:
    result = service.list_conflicts(
        status=conflict_status,
        severity=severity,
        conflict_type=conflict_type,
        page=page,
        per_page=min(per_page or settings.default_page_size, settings.max_page_size),
    )
    return ConflictPageOut(
        data=[ConflictOut.model_validate(item) for item in result.items],
        total=result.total,
        page=result.page,
        per_page=result.per_page,
        last_page=result.last_page,
    )


@router.get("/conflicts-unresolved", response_model=list[ConflictOut])
def unresolved_conflicts(
    current_user: CurrentUser = Depends(get_current_user),
    service: ConflictDetectionService = Depends(get_conflict_service),
) -> list[ConflictOut]:
    return service.get_unresolved_conflicts()


@router.post("/conflicts-check", response_model=AvailabilityOut)
def check_availability(
    payload: AvailabilityCheckRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: ConflictDetectionService = Depends(get_conflict_service),
) -> AvailabilityOut:
    ensure_references(db, payload.pdl_id, payload.facility_id)
    result = service.check_availability(
        payload.pdl_id,
        payload.facility_id,
        payload.start_datetime,
        payload.end_datetime,
        payload.exclude_schedule_id,
    )
    return AvailabilityOut(available=result.available, conflicts=result.conflicts)


@router.get("/conflicts-statistics", response_model=ConflictStatisticsOut)
def conflict_statistics(
    current_user: CurrentUser = Depends(get_current_user),
    service: ConflictDetectionService = Depends(get_conflict_service),
) -> ConflictStatisticsOut:
    return ConflictStatisticsOut(**service.get_statistics())


@router.get("/conflicts/{conflict_id}", response_model=ConflictDetailOut)
def get_conflict(
    conflict_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: ConflictDetectionService = Depends(get_conflict_service),
) -> ConflictDetailOut:
    return ConflictDetailOut.model_validate(service.get_conflict(conflict_id))


@router.post("/conflicts/{conflict_id}/resolve", response_model=ConflictOut)
def resolve_conflict(
    conflict_id: str,
    payload: ConflictResolveRequest | None = None,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: ConflictDetectionService = Depends(get_conflict_service),
) -> ConflictOut:
    notes = payload.resolution_notes if payload is not None else None
    conflict = service.resolve_conflict(conflict_id, current_user.id, notes)
    log_activity(
        db,
        user_id=current_user.id,
        action="conflict.resolve",
        entity_type="conflict",
        entity_id=conflict_id,
        details={"notes": notes},
    )
    db.commit()
    db.refresh(conflict)
    return conflict


@router.post("/conflicts/{conflict_id}/acknowledge", response_model=ConflictOut)
def acknowledge_conflict(
    conflict_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: ConflictDetectionService = Depends(get_conflict_service),
) -> ConflictOut:
    conflict = service.acknowledge_conflict(conflict_id)
    log_activity(
        db,
        user_id=current_user.id,
        action="conflict.acknowledge",
        entity_type="conflict",
        entity_id=conflict_id,
    )
    db.commit()
    db.refresh(conflict)
    return conflict


@router.post("/conflicts/{conflict_id}/ignore", response_model=ConflictOut)
def ignore_conflict(
    conflict_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: ConflictDetectionService = Depends(get_conflict_service),
) -> ConflictOut:
    conflict = service.ignore_conflict(conflict_id)
    log_activity(
        db,
        user_id=current_user.id,
        action="conflict.ignore",
        entity_type="conflict",
        entity_id=conflict_id,
    )
    db.commit()
    db.refresh(conflict)
    return conflict
