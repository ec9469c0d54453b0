from datetime import datetime

from imscrc.models import PDL, ScheduleStatus
from imscrc.services.conflict_detection import FACILITY_UNAVAILABLE, PDL_UNAVAILABLE


def _window(start_hour, start_minute, end_hour, end_minute):
    return datetime(2025, 1, 10, start_hour, start_minute), datetime(2025, 1, 10, end_hour, end_minute)


def test_pdl_busy_window_is_reported(service, make_schedule, pdl):
    make_schedule("09:00", "10:00")
    start, end = _window(9, 45, 10, 15)

    result = service.check_availability(pdl.id, None, start, end)

    assert result.available is False
    assert result.conflicts == [PDL_UNAVAILABLE]


def test_facility_busy_window_is_reported(service, make_schedule, pdl, facility, db_session):
    db_session.add(PDL(id="43", pdl_number="PDL-0043", first_name="Maria", last_name="Santos"))
    db_session.commit()
    make_schedule("14:00", "15:00", pdl_id="43", facility_id=facility.id)
    start, end = _window(14, 30, 15, 30)

    result = service.check_availability(pdl.id, facility.id, start, end)

    assert result.available is False
    assert result.conflicts == [FACILITY_UNAVAILABLE]


def test_both_reasons_in_fixed_order(service, make_schedule, pdl, facility):
    make_schedule("09:00", "10:00", facility_id=facility.id)
    start, end = _window(9, 0, 10, 0)

    result = service.check_availability(pdl.id, facility.id, start, end)

    assert result.conflicts == [PDL_UNAVAILABLE, FACILITY_UNAVAILABLE]


def test_excluded_schedule_does_not_block_itself(service, make_schedule, pdl):
    existing = make_schedule("09:00", "10:00")
    start, end = _window(9, 30, 10, 30)

    result = service.check_availability(pdl.id, None, start, end, exclude_schedule_id=existing.id)

    assert result.available is True
    assert result.conflicts == []


def test_cancelled_entries_leave_window_open(service, make_schedule, pdl):
    make_schedule("09:00", "10:00", status=ScheduleStatus.cancelled)
    start, end = _window(9, 0, 10, 0)

    assert service.check_availability(pdl.id, None, start, end).available is True


def test_touching_window_counts_as_busy(service, make_schedule, pdl):
    make_schedule("09:00", "10:00")
    start, end = _window(10, 0, 11, 0)

    assert service.check_availability(pdl.id, None, start, end).available is False


def test_free_window_is_available(service, make_schedule, pdl, facility):
    make_schedule("09:00", "10:00", facility_id=facility.id)
    start, end = _window(13, 0, 14, 0)

    result = service.check_availability(pdl.id, facility.id, start, end)

    assert result.available is True
    assert result.conflicts == []
