from datetime import date, datetime

import pytest

from salon.db import db_session
from salon.models import Appointment, AppointmentStatus
from salon.search import filter_slots_by_time_preference, parse_date_preference, search_availability
from salon.services import create_employee, create_service

MONDAY = date(2030, 1, 7)


@pytest.mark.parametrize(
    "pref,expected",
    [
        (None, MONDAY),
        ("today", MONDAY),
        ("Tomorrow please", date(2030, 1, 8)),
        ("next week", date(2030, 1, 14)),
        ("this weekend", date(2030, 1, 12)),
        ("next month", date(2030, 2, 6)),
        ("2030-02-01", date(2030, 2, 1)),
        ("whenever", MONDAY),
    ],
)
def test_date_preferences(pref, expected):
    assert parse_date_preference(pref, MONDAY) == expected


def test_weekend_on_a_weekend_means_the_next_one():
    assert parse_date_preference("weekend", date(2030, 1, 12)) == date(2030, 1, 19)
    assert parse_date_preference("weekend", date(2030, 1, 13)) == date(2030, 1, 19)


def _grid():
    return [{"time": f"{h:02d}:{m:02d}", "date": "2030-01-07", "status": "available"} for h in range(9, 18) for m in (0, 30)]


def _times(slots):
    return [s["time"] for s in slots]


def test_time_windows():
    assert _times(filter_slots_by_time_preference(_grid(), "morning")) == [
        "09:00", "09:30", "10:00", "10:30", "11:00", "11:30",
    ]
    assert _times(filter_slots_by_time_preference(_grid(), "afternoon"))[0] == "12:00"
    assert _times(filter_slots_by_time_preference(_grid(), "afternoon"))[-1] == "16:30"
    assert _times(filter_slots_by_time_preference(_grid(), "evening")) == ["17:00", "17:30"]


def test_explicit_time_within_an_hour():
    assert _times(filter_slots_by_time_preference(_grid(), "2 pm")) == [
        "13:00", "13:30", "14:00", "14:30", "15:00", "15:30",
    ]
    assert _times(filter_slots_by_time_preference(_grid(), "10:00")) == [
        "09:00", "09:30", "10:00", "10:30", "11:00", "11:30",
    ]


def test_no_time_preference_keeps_everything():
    assert len(filter_slots_by_time_preference(_grid(), "any")) == 18
    assert len(filter_slots_by_time_preference(_grid(), None)) == 18
    assert len(filter_slots_by_time_preference(_grid(), "soon")) == 18


def test_search_returns_filtered_slots(salon):
    result = search_availability(salon.haircut, "today", "morning", today=MONDAY)

    assert result["available"] is True
    assert result["date"] == "2030-01-07"
    assert result["total_slots"] == 18
    assert result["filtered_slots"] == 6


def test_fully_booked_day_offers_alternatives(salon):
    marathon = create_service("Marathon", 500.0, 600)
    frank = create_employee("Frank", service_ids=[marathon])

    # two overlapping bookings all day long: every slot is full
    with db_session() as s:
        for _ in range(2):
            s.add(
                Appointment(
                    client_id=salon.carol,
                    employee_id=frank,
                    service_id=marathon,
                    start_at=datetime(2030, 1, 7, 8, 0),
                    status=AppointmentStatus.CONFIRMED,
                )
            )

    result = search_availability(marathon, "today", None, today=MONDAY)

    assert result["available"] is False
    assert result["requested_date"] == "2030-01-07"
    assert [d["date"] for d in result["alternatives"]] == ["2030-01-08", "2030-01-09", "2030-01-10"]
    assert [s["time"] for s in result["alternatives"][0]["available_slots"]] == ["09:00", "09:30", "10:00"]
    assert result["alternatives"][0]["total_available"] == 18


def test_service_without_staff_has_no_alternatives(salon):
    result = search_availability(salon.nails, "today", None, today=MONDAY)
    assert result["available"] is False
    assert result["alternatives"] == []
