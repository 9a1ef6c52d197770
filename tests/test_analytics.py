from datetime import date, datetime

import pytest

from conftest import NOW, at
from salon.analytics import (
    build_peak_hours,
    calculate_peak_hours,
    default_range,
    format_off_peak,
    hour_label,
    status_label,
)
from salon.models import AppointmentStatus
from salon.services import book_appointment, update_appointment_status


def _cell(result, day, hour):
    return next(c for c in result["data"] if c["day_of_week"] == day and c["hour"] == hour)


def test_matrix_and_summary():
    starts = [datetime(2030, 1, 7, 10, m) for m in (0, 15, 30)]
    starts += [datetime(2030, 1, 7, 11, 0)]
    starts += [datetime(2030, 1, 8, 10, 0), datetime(2030, 1, 15, 10, 30)]

    result = build_peak_hours(starts)

    assert len(result["data"]) == 7 * 24
    assert result["max_count"] == 3
    assert result["min_count"] == 0
    assert result["average_count"] == pytest.approx(6 / 168)

    assert _cell(result, 0, 10)["status"] == "peak"
    assert _cell(result, 1, 10)["status"] == "high"
    assert _cell(result, 1, 10)["normalized_score"] == pytest.approx(0.6667)
    assert _cell(result, 0, 11)["status"] == "moderate"
    assert _cell(result, 3, 15)["status"] == "low"

    summary = result["summary"]
    assert summary["total_bookings"] == 6
    assert [(c["day_of_week"], c["hour"]) for c in summary["peak_hours"]] == [(0, 10)]
    assert summary["quiet_hours"] == []
    assert summary["busiest_day"] == 0
    assert summary["busiest_hour"] == 10
    assert len(result["suggested_off_peak"]) == 20
    assert all(c["booking_count"] == 0 for c in result["suggested_off_peak"])


def test_empty_history():
    result = build_peak_hours([])
    assert result["max_count"] == 0
    assert result["summary"]["total_bookings"] == 0
    assert result["summary"]["peak_hours"] == []
    assert all(c["status"] == "low" for c in result["data"])


def test_labels():
    assert hour_label(0) == "12 AM"
    assert hour_label(9) == "9 AM"
    assert hour_label(12) == "12 PM"
    assert hour_label(15) == "3 PM"
    assert status_label("high") == "Busy"
    assert status_label("bogus") == "Unknown"
    assert format_off_peak([{"day_of_week": 6, "hour": 18, "booking_count": 0, "status": "low"}]) == [
        {"day": "Sunday", "time": "6 PM", "bookings": 0, "status": "Quiet"}
    ]


def test_default_range_is_last_thirty_days():
    assert default_range(date(2030, 1, 31)) == (date(2030, 1, 1), date(2030, 1, 31))


def test_peak_hours_from_bookings(salon):
    book_appointment(salon.carol, salon.haircut, at(10), employee_id=salon.alice, now=NOW)
    book_appointment(salon.dave, salon.haircut, at(10), employee_id=salon.ben, now=NOW)
    cancelled = book_appointment(salon.erin, salon.colour, at(14), now=NOW)
    update_appointment_status(cancelled.appointment_id, AppointmentStatus.CANCELLED, "admin-1", now=NOW)

    result = calculate_peak_hours(date(2030, 1, 1), date(2030, 1, 13))

    assert result["summary"]["total_bookings"] == 2
    assert _cell(result, 0, 10)["booking_count"] == 2
    assert _cell(result, 0, 14)["booking_count"] == 0
    assert result["date_range"] == {"from": "2030-01-01", "to": "2030-01-13"}

    only_ben = calculate_peak_hours(date(2030, 1, 1), date(2030, 1, 13), employee_id=salon.ben)
    assert only_ben["summary"]["total_bookings"] == 1
    assert calculate_peak_hours(date(2030, 1, 8), date(2030, 1, 13))["summary"]["total_bookings"] == 0
