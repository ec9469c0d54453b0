from __future__ import annotations

import logging

from sqlalchemy import inspect

from imscrc.db.base import Base
from imscrc.db.session import engine
import imscrc.models  # noqa: F401

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "pdls": {"id", "first_name", "last_name"},
    "facilities": {"id", "name"},
    "schedules": {
        "id",
        "pdl_id",
        "facility_id",
        "responsible_officer",
        "schedule_type",
        "start_datetime",
        "end_datetime",
        "status",
    },
    "schedule_conflicts": {
        "id",
        "schedule_1_id",
        "schedule_2_id",
        "pair_key",
        "conflict_type",
        "severity",
        "status",
    },
}


def find_schema_gaps(connection) -> tuple[list[str], dict[str, list[str]]]:
    inspector = inspect(connection)
    table_names = set(inspector.get_table_names())
    missing_tables: list[str] = []
    missing_columns: dict[str, list[str]] = {}
    for table_name, required in REQUIRED_COLUMNS.items():
        if table_name not in table_names:
            missing_tables.append(table_name)
            continue
        existing = {item["name"] for item in inspector.get_columns(table_name)}
        missing = sorted(required - existing)
        if missing:
            missing_columns[table_name] = missing
    return sorted(missing_tables), missing_columns


def ensure_runtime_schema() -> None:
    try:
        # Missing tables are created; existing ones are left to Alembic.
        Base.metadata.create_all(bind=engine)
        with engine.connect() as connection:
            missing_tables, missing_columns = find_schema_gaps(connection)
    except Exception as exc:  # pragma: no cover - runtime environment dependent
        logger.exception("Runtime schema bootstrap failed")
        raise RuntimeError("Runtime schema bootstrap failed") from exc

    if missing_tables:
        raise RuntimeError(f"Missing required tables: {', '.join(missing_tables)}")
    if missing_columns:
        flattened = [f"{table}.{column}" for table, columns in missing_columns.items() for column in columns]
        raise RuntimeError(f"Missing required columns: {', '.join(flattened)}")
    logger.info("Runtime schema verified (%d tables)", len(REQUIRED_COLUMNS))
