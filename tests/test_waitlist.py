from datetime import timedelta

import pytest

from conftest import NOW, at
from salon.errors import BookingError, PermissionDeniedError, SlotUnavailableError
from salon.models import WaitlistStatus
from salon.services import book_appointment, cancel_appointment, get_appointment
from salon.waitlist import (
    add_to_waitlist,
    cancel_waitlist_entry,
    cleanup_expired_entries,
    confirm_waitlist_booking,
    list_customer_waitlist,
    list_waitlist_entries,
    notify_next_in_waitlist,
)


@pytest.fixture
def queue(salon):
    """Carol holds Alice at 10:00, Dave and Erin queue behind her."""
    booked = book_appointment(salon.carol, salon.haircut, at(10), employee_id=salon.alice, now=NOW)
    dave = book_appointment(
        salon.dave, salon.haircut, at(10), employee_id=salon.alice, addon_ids=[salon.beard], now=NOW
    )
    erin = book_appointment(salon.erin, salon.haircut, at(10), employee_id=salon.alice, now=NOW)
    return booked.appointment_id, dave.waitlist_entry_id, erin.waitlist_entry_id


def _status(entry_id):
    return next(e["status"] for e in list_waitlist_entries() if e["id"] == entry_id)


def test_positions_follow_arrival(salon, queue):
    _, dave, erin = queue
    entries = {e["id"]: e for e in list_waitlist_entries(service_id=salon.haircut)}

    assert entries[dave]["position"] == 1
    assert entries[erin]["position"] == 2
    assert entries[dave]["total_price"] == pytest.approx(45.0)
    assert entries[dave]["duration"] == 45


def test_duplicate_entry_is_rejected(salon, queue):
    with pytest.raises(BookingError, match="already on the waitlist"):
        add_to_waitlist(salon.dave, salon.haircut, salon.alice, at(10), now=NOW)


def test_cancellation_notifies_first_in_line(salon, queue):
    appointment_id, dave, erin = queue
    cancel_appointment(appointment_id, salon.carol, "Cannot make it", now=NOW)

    assert _status(dave) == "notified"
    assert _status(erin) == "waiting"
    entry = next(e for e in list_customer_waitlist(salon.dave) if e["id"] == dave)
    assert entry["notification_expires_at"] == (NOW + timedelta(minutes=15)).isoformat()


def test_confirm_within_window_books_the_slot(salon, queue):
    appointment_id, dave, _ = queue
    cancel_appointment(appointment_id, salon.carol, "Cannot make it", now=NOW)

    result = confirm_waitlist_booking(dave, client_id=salon.dave, now=NOW + timedelta(minutes=5))

    assert result.ok
    assert _status(dave) == "confirmed"
    data = get_appointment(result.appointment_id)
    assert data["status"] == "confirmed"
    assert data["employee"]["id"] == salon.alice
    assert [a["name"] for a in data["addons"]] == ["Beard Trim"]


def test_expired_window_passes_the_turn(salon, queue):
    appointment_id, dave, erin = queue
    cancel_appointment(appointment_id, salon.carol, "Cannot make it", now=NOW)

    result = confirm_waitlist_booking(dave, client_id=salon.dave, now=NOW + timedelta(minutes=20))

    assert not result.ok
    assert _status(dave) == "expired"
    assert _status(erin) == "notified"


def test_only_notified_entries_can_confirm(salon, queue):
    _, dave, _ = queue
    with pytest.raises(BookingError, match="not in notified status"):
        confirm_waitlist_booking(dave, client_id=salon.dave, now=NOW)


def test_entries_belong_to_their_customer(salon, queue):
    _, dave, _ = queue
    with pytest.raises(PermissionDeniedError):
        confirm_waitlist_booking(dave, client_id=salon.erin, now=NOW)
    with pytest.raises(PermissionDeniedError):
        cancel_waitlist_entry(dave, client_id=salon.erin, now=NOW)


def test_confirm_rechecks_the_slot(salon, queue):
    appointment_id, dave, _ = queue
    cancel_appointment(appointment_id, salon.carol, "Cannot make it", now=NOW)
    # someone else takes the slot before Dave answers
    book_appointment(salon.carol, salon.haircut, at(10), employee_id=salon.alice, now=NOW)

    with pytest.raises(SlotUnavailableError):
        confirm_waitlist_booking(dave, client_id=salon.dave, now=NOW + timedelta(minutes=1))


def test_cancelling_a_notified_entry_notifies_the_next(salon, queue):
    appointment_id, dave, erin = queue
    cancel_appointment(appointment_id, salon.carol, "Cannot make it", now=NOW)

    result = cancel_waitlist_entry(dave, client_id=salon.dave, now=NOW)

    assert result.ok
    assert _status(dave) == "cancelled"
    assert _status(erin) == "notified"
    assert [e["id"] for e in list_customer_waitlist(salon.dave)] == []


def test_confirmed_entries_cannot_be_cancelled(salon, queue):
    appointment_id, dave, _ = queue
    cancel_appointment(appointment_id, salon.carol, "Cannot make it", now=NOW)
    confirm_waitlist_booking(dave, now=NOW)

    with pytest.raises(BookingError, match="confirmed"):
        cancel_waitlist_entry(dave, now=NOW)


def test_manual_notification(salon, queue):
    _, dave, _ = queue
    result = notify_next_in_waitlist(salon.haircut, salon.alice, at(10), now=NOW)
    assert result.ok and result.entry_id == dave

    empty = notify_next_in_waitlist(salon.haircut, salon.ben, at(10), now=NOW)
    assert not empty.ok


def test_cleanup_expires_stale_entries(salon, queue):
    _, dave, erin = queue

    assert cleanup_expired_entries(now=NOW + timedelta(days=1)) == 0
    assert cleanup_expired_entries(now=NOW + timedelta(days=8)) == 2
    assert _status(dave) == "expired"
    assert _status(erin) == "expired"
    assert list_waitlist_entries(status=WaitlistStatus.WAITING) == []


def test_cleanup_expires_unanswered_notifications(salon, queue):
    appointment_id, dave, erin = queue
    cancel_appointment(appointment_id, salon.carol, "Cannot make it", now=NOW)

    assert cleanup_expired_entries(now=NOW + timedelta(minutes=30)) == 1
    assert _status(dave) == "expired"
    assert _status(erin) == "notified"
