"""Scheduling conflict detection.

A schedule collides with another non-cancelled schedule when both share a
PDL, a facility or a responsible officer and their time windows overlap.
Intervals are closed: a visit ending at 10:00 collides with one starting at
10:00.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from imscrc.core.exceptions import AppError, ResourceNotFoundError
from imscrc.models.schedule import Schedule, ScheduleStatus, ScheduleType
from imscrc.models.schedule_conflict import (
    OPEN_STATUSES,
    ConflictSeverity,
    ConflictStatus,
    ConflictType,
    ScheduleConflict,
    make_pair_key,
)
from imscrc.schemas.common import page_count
from imscrc.services.stores import ConflictStore, ScheduleStore, SqlConflictStore, SqlScheduleStore

logger = logging.getLogger(__name__)

PDL_UNAVAILABLE = "PDL is not available during this time"
FACILITY_UNAVAILABLE = "Facility is not available during this time"


@dataclass
class ConflictCandidate:
    schedule_1_id: str
    schedule_2_id: str
    conflict_type: ConflictType
    description: str
    severity: ConflictSeverity
    # Filled in once the candidate has been matched to a stored row.
    conflict_id: str | None = None
    is_new: bool = False


@dataclass
class Availability:
    available: bool
    conflicts: list[str] = field(default_factory=list)


@dataclass
class ConflictPage:
    items: list[ScheduleConflict]
    total: int
    page: int
    per_page: int

    @property
    def last_page(self) -> int:
        return page_count(self.total, self.per_page)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_naive_utc(value: datetime) -> datetime:
    # SQLite hands back naive values, PostgreSQL aware ones.
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Closed-interval overlap, symmetric in its two intervals.

    Equivalent to: A starts inside B, or A ends inside B, or A contains B.
    An inverted interval (start after end) never overlaps anything.
    """
    a_start, a_end = as_naive_utc(a_start), as_naive_utc(a_end)
    b_start, b_end = as_naive_utc(b_start), as_naive_utc(b_end)
    if a_start > a_end or b_start > b_end:
        return False
    return a_start <= b_end and b_start <= a_end


def schedules_overlap(first: Schedule, second: Schedule) -> bool:
    return intervals_overlap(
        first.start_datetime,
        first.end_datetime,
        second.start_datetime,
        second.end_datetime,
    )


def calculate_severity(first: Schedule, second: Schedule) -> ConflictSeverity:
    if ScheduleType.court in (first.schedule_type, second.schedule_type):
        return ConflictSeverity.critical
    same_start = as_naive_utc(first.start_datetime) == as_naive_utc(second.start_datetime)
    same_end = as_naive_utc(first.end_datetime) == as_naive_utc(second.end_datetime)
    if same_start and same_end:
        return ConflictSeverity.high
    return ConflictSeverity.medium


def _pdl_label(schedule: Schedule) -> str:
    pdl = schedule.pdl
    return pdl.full_name if pdl is not None else str(schedule.pdl_id)


def _facility_label(schedule: Schedule) -> str:
    facility = schedule.facility
    return facility.name if facility is not None else str(schedule.facility_id)


class ConflictDetectionService:
    def __init__(
        self,
        schedules: ScheduleStore,
        conflicts: ConflictStore,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.schedules = schedules
        self.conflicts = conflicts
        self._clock = clock

    @classmethod
    def for_session(cls, db: Session) -> ConflictDetectionService:
        return cls(SqlScheduleStore(db), SqlConflictStore(db))

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect_conflicts(self, schedule: Schedule) -> list[ConflictCandidate]:
        if schedule.status == ScheduleStatus.cancelled:
            return []
        candidates = self._scan(
            schedule,
            "pdl_id",
            schedule.pdl_id,
            ConflictType.subject_double_booking,
            f"PDL {_pdl_label(schedule)} has overlapping schedules",
        )
        if schedule.facility_id:
            candidates += self._scan(
                schedule,
                "facility_id",
                schedule.facility_id,
                ConflictType.facility_double_booking,
                f"Facility {_facility_label(schedule)} is double booked",
            )
        if schedule.responsible_officer:
            candidates += self._scan(
                schedule,
                "responsible_officer",
                schedule.responsible_officer,
                ConflictType.officer_conflict,
                f"Officer {schedule.responsible_officer} has overlapping assignments",
            )

        for candidate in candidates:
            self.store_conflict(candidate)

        new_count = sum(1 for candidate in candidates if candidate.is_new)
        if candidates:
            logger.info(
                "Schedule %s: %d conflict(s) detected, %d newly recorded",
                schedule.id,
                len(candidates),
                new_count,
            )
        return candidates

    def _scan(
        self,
        schedule: Schedule,
        field_name: str,
        value: str,
        conflict_type: ConflictType,
        description: str,
    ) -> list[ConflictCandidate]:
        others = self.schedules.find_active(field_name, value, exclude_id=schedule.id)
        found: list[ConflictCandidate] = []
        for other in others:
            if other.id == schedule.id or not schedules_overlap(schedule, other):
                continue
            severity = calculate_severity(schedule, other)
            logger.debug(
                "%s between %s and %s (%s)",
                conflict_type.value,
                schedule.id,
                other.id,
                severity.value,
            )
            found.append(
                ConflictCandidate(
                    schedule_1_id=schedule.id,
                    schedule_2_id=other.id,
                    conflict_type=conflict_type,
                    description=description,
                    severity=severity,
                )
            )
        return found

    def store_conflict(self, candidate: ConflictCandidate) -> ScheduleConflict:
        """Persist ``candidate`` unless its pair is already recorded.

        The lookup matches both orderings of the pair and ignores the kind,
        so a pair keeps the first kind it was recorded with.
        """
        existing = self.conflicts.find_by_pair(candidate.schedule_1_id, candidate.schedule_2_id)
        if existing is not None:
            candidate.conflict_id = existing.id
            return existing

        record = ScheduleConflict(
            schedule_1_id=candidate.schedule_1_id,
            schedule_2_id=candidate.schedule_2_id,
            pair_key=make_pair_key(candidate.schedule_1_id, candidate.schedule_2_id),
            conflict_type=candidate.conflict_type,
            description=candidate.description,
            severity=candidate.severity,
            status=ConflictStatus.detected,
        )
        stored = self.conflicts.add(record)
        candidate.conflict_id = stored.id
        candidate.is_new = stored is record
        return stored

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    def check_availability(
        self,
        pdl_id: str,
        facility_id: str | None,
        start_time: datetime,
        end_time: datetime,
        exclude_schedule_id: str | None = None,
    ) -> Availability:
        reasons: list[str] = []
        if self._window_taken("pdl_id", pdl_id, start_time, end_time, exclude_schedule_id):
            reasons.append(PDL_UNAVAILABLE)
        if facility_id and self._window_taken("facility_id", facility_id, start_time, end_time, exclude_schedule_id):
            reasons.append(FACILITY_UNAVAILABLE)
        return Availability(available=not reasons, conflicts=reasons)

    def _window_taken(
        self,
        field_name: str,
        value: str,
        start_time: datetime,
        end_time: datetime,
        exclude_schedule_id: str | None,
    ) -> bool:
        return any(
            intervals_overlap(start_time, end_time, other.start_datetime, other.end_datetime)
            for other in self.schedules.find_active(field_name, value, exclude_id=exclude_schedule_id)
        )

    # ------------------------------------------------------------------
    # Conflict lifecycle
    # ------------------------------------------------------------------

    def get_conflict(self, conflict_id: str) -> ScheduleConflict:
        conflict = self.conflicts.get(conflict_id)
        if conflict is None:
            raise ResourceNotFoundError("Conflict", conflict_id)
        return conflict

    def get_unresolved_conflicts(self) -> list[ScheduleConflict]:
        return self.conflicts.list_unresolved()

    def list_conflicts(
        self,
        *,
        status: str | None = None,
        severity: ConflictSeverity | None = None,
        conflict_type: ConflictType | None = None,
        page: int = 1,
        per_page: int = 15,
    ) -> ConflictPage:
        page = max(1, page)
        per_page = max(1, per_page)
        items, total = self.conflicts.list_filtered(
            statuses=_status_filter(status),
            severity=severity,
            conflict_type=conflict_type,
            offset=(page - 1) * per_page,
            limit=per_page,
        )
        return ConflictPage(items=items, total=total, page=page, per_page=per_page)

    def conflicts_for_schedule(self, schedule_id: str) -> list[ScheduleConflict]:
        if self.schedules.get(schedule_id) is None:
            raise ResourceNotFoundError("Schedule", schedule_id)
        return self.conflicts.list_for_schedule(schedule_id)

    def get_statistics(self) -> dict:
        return self.conflicts.statistics()

    def resolve_conflict(self, conflict_id: str, user_id: str, notes: str | None = None) -> ScheduleConflict:
        conflict = self.get_conflict(conflict_id)
        conflict.status = ConflictStatus.resolved
        conflict.resolved_by = user_id
        conflict.resolved_at = self._clock()
        conflict.resolution_notes = notes
        logger.info("Conflict %s resolved by %s", conflict_id, user_id)
        return self.conflicts.save(conflict)

    def acknowledge_conflict(self, conflict_id: str) -> ScheduleConflict:
        return self._transition(conflict_id, ConflictStatus.acknowledged)

    def ignore_conflict(self, conflict_id: str) -> ScheduleConflict:
        return self._transition(conflict_id, ConflictStatus.ignored)

    def _transition(self, conflict_id: str, status: ConflictStatus) -> ScheduleConflict:
        conflict = self.get_conflict(conflict_id)
        conflict.status = status
        logger.info("Conflict %s marked %s", conflict_id, status.value)
        return self.conflicts.save(conflict)


def _status_filter(status: str | None) -> frozenset[ConflictStatus] | None:
    if status is None or status == "":
        return None
    if status == "unresolved":
        return OPEN_STATUSES
    try:
        return frozenset({ConflictStatus(status)})
    except ValueError as exc:
        raise AppError(
            f"Unknown conflict status filter '{status}'",
            status_code=422,
            details={"allowed": ["unresolved", *(item.value for item in ConflictStatus)]},
        ) from exc
