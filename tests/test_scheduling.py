"""
Tests for the interval conflict checker and the free-slot finder.
"""

from datetime import datetime, timedelta

import pytest

from bookingbot.db_models import AppointmentStatus, DBAppointment
from bookingbot.scheduling import candidate_slots, find_free_slots, has_conflict, intervals_overlap, parse_hhmm
from conftest import NOW


def add_appointment(db, business, start, duration=30, status=AppointmentStatus.CONFIRMED, phone="+972500000001"):
    appt = DBAppointment(
        business_id=business.id,
        customer_phone=phone,
        customer_name="דנה",
        start_time=start,
        duration=duration,
        status=status,
    )
    db.add(appt)
    db.commit()
    db.refresh(appt)
    return appt


def test_intervals_overlap_half_open():
    s = datetime(2030, 3, 4, 15, 0)
    e = s + timedelta(minutes=30)
    assert intervals_overlap(s, e, s + timedelta(minutes=15), e + timedelta(minutes=15))
    assert not intervals_overlap(s, e, e, e + timedelta(minutes=30))
    assert not intervals_overlap(e, e + timedelta(minutes=30), s, e)


def test_partial_overlap_is_a_conflict(db, business):
    add_appointment(db, business, datetime(2030, 3, 4, 15, 0), duration=30)
    assert has_conflict(db, business.id, datetime(2030, 3, 4, 15, 15), 30)
    assert has_conflict(db, business.id, datetime(2030, 3, 4, 14, 45), 30)


def test_candidate_starting_at_existing_end_does_not_conflict(db, business):
    add_appointment(db, business, datetime(2030, 3, 4, 15, 0), duration=30)
    assert not has_conflict(db, business.id, datetime(2030, 3, 4, 15, 30), 30)
    assert not has_conflict(db, business.id, datetime(2030, 3, 4, 14, 30), 30)


def test_long_appointment_started_earlier_conflicts(db, business):
    add_appointment(db, business, datetime(2030, 3, 4, 9, 0), duration=240)
    assert has_conflict(db, business.id, datetime(2030, 3, 4, 12, 0), 30)


def test_inactive_appointments_do_not_conflict(db, business):
    add_appointment(db, business, datetime(2030, 3, 4, 15, 0), status=AppointmentStatus.CANCELLED)
    add_appointment(db, business, datetime(2030, 3, 4, 16, 0), status=AppointmentStatus.COMPLETED)
    assert not has_conflict(db, business.id, datetime(2030, 3, 4, 15, 0), 30)
    assert not has_conflict(db, business.id, datetime(2030, 3, 4, 16, 0), 30)


def test_pending_appointments_conflict(db, business):
    add_appointment(db, business, datetime(2030, 3, 4, 15, 0), status=AppointmentStatus.PENDING)
    assert has_conflict(db, business.id, datetime(2030, 3, 4, 15, 0), 30)


def test_other_business_does_not_conflict(db, business):
    from bookingbot.services import BusinessService

    other = BusinessService.create_business(db, name="אחר", whatsapp_number="+972509999999")
    add_appointment(db, other, datetime(2030, 3, 4, 15, 0))
    assert not has_conflict(db, business.id, datetime(2030, 3, 4, 15, 0), 30)


def test_exclude_appointment_id(db, business):
    appt = add_appointment(db, business, datetime(2030, 3, 4, 15, 0))
    assert has_conflict(db, business.id, datetime(2030, 3, 4, 15, 15), 30)
    assert not has_conflict(db, business.id, datetime(2030, 3, 4, 15, 15), 30, exclude_appointment_id=appt.id)


def test_conflict_check_is_idempotent(db, business):
    add_appointment(db, business, datetime(2030, 3, 4, 15, 0))
    first = has_conflict(db, business.id, datetime(2030, 3, 4, 15, 10), 30)
    second = has_conflict(db, business.id, datetime(2030, 3, 4, 15, 10), 30)
    assert first is second is True


def test_parse_hhmm_falls_back_on_garbage():
    from datetime import time

    assert parse_hhmm("10:30", time(9, 0)) == time(10, 30)
    assert parse_hhmm("", time(9, 0)) == time(9, 0)
    assert parse_hhmm("ten", time(9, 0)) == time(9, 0)


def test_candidate_slots_fit_before_closing(business):
    business.work_start = "09:00"
    business.work_end = "10:45"
    business.appointment_duration = 30

    slots = candidate_slots(business, NOW, NOW)
    first_day = [s for s in slots if s.date() == NOW.date()]
    assert [s.strftime("%H:%M") for s in first_day] == ["09:00", "09:30", "10:00"]


def test_candidate_slots_skip_non_working_days(business):
    business.working_days = "0"  # Mondays only
    slots = candidate_slots(business, NOW, NOW)
    assert slots
    assert all(s.weekday() == 0 for s in slots)


def test_find_free_slots_skips_booked_and_past(db, business):
    now = datetime(2030, 3, 4, 9, 10)
    add_appointment(db, business, datetime(2030, 3, 4, 9, 30))

    slots = find_free_slots(db, business, now, 3, now=now)
    assert slots == [datetime(2030, 3, 4, 10, 0), datetime(2030, 3, 4, 10, 30), datetime(2030, 3, 4, 11, 0)]


def test_find_free_slots_returns_fewer_under_scarcity(db, business):
    business.work_start = "09:00"
    business.work_end = "10:00"
    business.working_days = "0"
    db.commit()

    slots = find_free_slots(db, business, NOW, 10, now=NOW)
    # Two Mondays in a 14-day horizon, two slots each
    assert len(slots) == 4

    for slot in slots:
        add_appointment(db, business, slot)
    assert find_free_slots(db, business, NOW, 10, now=NOW) == []


def test_find_free_slots_prefers_hour_but_returns_chronological(db, business):
    slots = find_free_slots(db, business, NOW, 3, preferred_hour=15, now=NOW)
    assert len(slots) == 3
    assert slots == sorted(slots)
    assert all(abs(s.hour * 60 + s.minute - 15 * 60) <= 30 for s in slots)


def test_find_free_slots_never_returns_conflicting_slot(db, business):
    add_appointment(db, business, datetime(2030, 3, 4, 9, 15), duration=60)
    slots = find_free_slots(db, business, NOW, 5, now=NOW)
    for slot in slots:
        assert not has_conflict(db, business.id, slot, business.appointment_duration)
    assert datetime(2030, 3, 4, 9, 0) not in slots
    assert datetime(2030, 3, 4, 9, 30) not in slots
    assert datetime(2030, 3, 4, 10, 0) not in slots


@pytest.mark.parametrize("count", [0, 1])
def test_find_free_slots_respects_count(db, business, count):
    assert len(find_free_slots(db, business, NOW, count, now=NOW)) == count
