from __future__ import annotations

from sqlalchemy.orm import Session

from imscrc.models.activity_log import ActivityLog


def log_activity(
    db: Session,
    *,
    user_id: str | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict | None = None,
) -> ActivityLog:
    record = ActivityLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details or {},
    )
    db.add(record)
    return record
