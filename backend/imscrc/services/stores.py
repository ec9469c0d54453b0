"""Storage seams used by conflict detection.

The detector only talks to the two protocols below. The SQLAlchemy
implementations flush but never commit; the request owns the transaction.
"""
from __future__ import annotations

import logging
from collections.abc import Collection
from typing import Protocol

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from imscrc.models.schedule import Schedule, ScheduleStatus
from imscrc.models.schedule_conflict import (
    OPEN_STATUSES,
    SEVERITY_RANK,
    ConflictSeverity,
    ConflictStatus,
    ConflictType,
    ScheduleConflict,
)

logger = logging.getLogger(__name__)

SCAN_FIELDS = {
    "pdl_id": Schedule.pdl_id,
    "facility_id": Schedule.facility_id,
    "responsible_officer": Schedule.responsible_officer,
}


class ScheduleStore(Protocol):
    def get(self, schedule_id: str) -> Schedule | None: ...

    def find_active(self, field: str, value: str, *, exclude_id: str | None = None) -> list[Schedule]: ...


class ConflictStore(Protocol):
    def get(self, conflict_id: str) -> ScheduleConflict | None: ...

    def find_by_pair(self, schedule_a_id: str, schedule_b_id: str) -> ScheduleConflict | None: ...

    def add(self, conflict: ScheduleConflict) -> ScheduleConflict: ...

    def save(self, conflict: ScheduleConflict) -> ScheduleConflict: ...

    def list_unresolved(self) -> list[ScheduleConflict]: ...

    def list_filtered(
        self,
        *,
        statuses: Collection[ConflictStatus] | None = None,
        severity: ConflictSeverity | None = None,
        conflict_type: ConflictType | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[ScheduleConflict], int]: ...

    def list_for_schedule(self, schedule_id: str) -> list[ScheduleConflict]: ...

    def statistics(self) -> dict: ...


def severity_order():
    """SQL expression ranking severities so that ``desc()`` puts critical first."""
    return case(
        {member: rank for member, rank in SEVERITY_RANK.items()},
        value=ScheduleConflict.severity,
        else_=-1,
    )


class SqlScheduleStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, schedule_id: str) -> Schedule | None:
        return self.db.get(Schedule, schedule_id)

    def find_active(self, field: str, value: str, *, exclude_id: str | None = None) -> list[Schedule]:
        try:
            column = SCAN_FIELDS[field]
        except KeyError as exc:
            raise ValueError(f"Unsupported schedule scan field: {field}") from exc

        query = select(Schedule).where(column == value, Schedule.status != ScheduleStatus.cancelled)
        if exclude_id is not None:
            query = query.where(Schedule.id != exclude_id)
        return list(self.db.execute(query.order_by(Schedule.start_datetime.asc())).scalars())


class SqlConflictStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, conflict_id: str) -> ScheduleConflict | None:
        return self.db.get(ScheduleConflict, conflict_id)

    def find_by_pair(self, schedule_a_id: str, schedule_b_id: str) -> ScheduleConflict | None:
        query = select(ScheduleConflict).where(
            or_(
                and_(
                    ScheduleConflict.schedule_1_id == schedule_a_id,
                    ScheduleConflict.schedule_2_id == schedule_b_id,
                ),
                and_(
                    ScheduleConflict.schedule_1_id == schedule_b_id,
                    ScheduleConflict.schedule_2_id == schedule_a_id,
                ),
            )
        )
        return self.db.execute(query.limit(1)).scalars().first()

    def add(self, conflict: ScheduleConflict) -> ScheduleConflict:
        # The unique pair_key settles races between concurrent detections.
        try:
            with self.db.begin_nested():
                self.db.add(conflict)
                self.db.flush()
        except IntegrityError:
            existing = self.find_by_pair(conflict.schedule_1_id, conflict.schedule_2_id)
            if existing is None:
                raise
            logger.info(
                "Conflict for pair %s was inserted concurrently; reusing %s",
                conflict.pair_key,
                existing.id,
            )
            return existing
        return conflict

    def save(self, conflict: ScheduleConflict) -> ScheduleConflict:
        self.db.add(conflict)
        self.db.flush()
        return conflict

    def _ordered(self, query):
        return query.order_by(severity_order().desc(), ScheduleConflict.created_at.desc())

    def list_unresolved(self) -> list[ScheduleConflict]:
        query = select(ScheduleConflict).where(ScheduleConflict.status != ConflictStatus.resolved)
        return list(self.db.execute(self._ordered(query)).scalars())

    def list_filtered(
        self,
        *,
        statuses: Collection[ConflictStatus] | None = None,
        severity: ConflictSeverity | None = None,
        conflict_type: ConflictType | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[ScheduleConflict], int]:
        conditions = []
        if statuses is not None:
            conditions.append(ScheduleConflict.status.in_(list(statuses)))
        if severity is not None:
            conditions.append(ScheduleConflict.severity == severity)
        if conflict_type is not None:
            conditions.append(ScheduleConflict.conflict_type == conflict_type)

        total = self.db.execute(
            select(func.count()).select_from(ScheduleConflict).where(*conditions)
        ).scalar_one()
        query = self._ordered(select(ScheduleConflict).where(*conditions)).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return list(self.db.execute(query).scalars()), total

    def list_for_schedule(self, schedule_id: str) -> list[ScheduleConflict]:
        query = select(ScheduleConflict).where(
            or_(
                ScheduleConflict.schedule_1_id == schedule_id,
                ScheduleConflict.schedule_2_id == schedule_id,
            )
        )
        return list(self.db.execute(self._ordered(query)).scalars())

    def statistics(self) -> dict:
        total = self.db.execute(select(func.count()).select_from(ScheduleConflict)).scalar_one()
        unresolved = self.db.execute(
            select(func.count())
            .select_from(ScheduleConflict)
            .where(ScheduleConflict.status.in_(list(OPEN_STATUSES)))
        ).scalar_one()
        critical = self.db.execute(
            select(func.count())
            .select_from(ScheduleConflict)
            .where(
                ScheduleConflict.severity == ConflictSeverity.critical,
                ScheduleConflict.status.in_(list(OPEN_STATUSES)),
            )
        ).scalar_one()
        by_type = self.db.execute(
            select(ScheduleConflict.conflict_type, func.count()).group_by(ScheduleConflict.conflict_type)
        ).all()
        by_severity = self.db.execute(
            select(ScheduleConflict.severity, func.count()).group_by(ScheduleConflict.severity)
        ).all()
        return {
            "total_conflicts": total,
            "unresolved_conflicts": unresolved,
            "critical_conflicts": critical,
            "conflicts_by_type": {kind.value: count for kind, count in by_type},
            "conflicts_by_severity": {severity.value: count for severity, count in by_severity},
        }
