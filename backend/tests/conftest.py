import os

# Keep the app's own engine off any real database during the test run.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")

from datetime import datetime

import pytest
from fastapi.testclient import TestClient  # fake http client that calls the FastAPI routes without a real server
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from imscrc.api.deps import get_db
from imscrc.core.security import create_access_token
from imscrc.db.base import Base
from imscrc.main import app
from imscrc.models import PDL, Facility, Schedule, ScheduleStatus, ScheduleType
from imscrc.services.conflict_detection import ConflictDetectionService


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def service(db_session):
    return ConflictDetectionService.for_session(db_session)


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers():
    token = create_access_token("officer-7", extra_claims={"name": "Duty Officer"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def pdl(db_session):
    record = PDL(id="42", pdl_number="PDL-0042", first_name="Juan", last_name="Dela Cruz")
    db_session.add(record)
    db_session.commit()
    return record


@pytest.fixture()
def facility(db_session):
    record = Facility(id="7", name="Visiting Hall A", type="visiting_area", capacity=30)
    db_session.add(record)
    db_session.commit()
    return record


@pytest.fixture()
def make_schedule(db_session, pdl):
    """Persist a schedule; times are ``HH:MM`` on 2025-01-10 unless full datetimes are given."""

    counter = {"n": 0}

    def _make(
        start="09:00",
        end="10:00",
        *,
        schedule_type=ScheduleType.visit,
        status=ScheduleStatus.scheduled,
        pdl_id=None,
        facility_id=None,
        responsible_officer=None,
        schedule_id=None,
    ) -> Schedule:
        counter["n"] += 1
        schedule = Schedule(
            id=schedule_id or f"s{counter['n']}",
            schedule_type=schedule_type,
            pdl_id=pdl_id or pdl.id,
            facility_id=facility_id,
            responsible_officer=responsible_officer,
            title=f"{schedule_type.value} #{counter['n']}",
            start_datetime=_at(start),
            end_datetime=_at(end),
            status=status,
        )
        db_session.add(schedule)
        db_session.commit()
        return schedule

    return _make


def _at(value):
    if isinstance(value, datetime):
        return value
    hour, minute = (int(part) for part in value.split(":"))
    return datetime(2025, 1, 10, hour, minute)
