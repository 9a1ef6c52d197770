from datetime import date, datetime

import pytest

from salon.scheduling import (
    BusyInterval,
    SlotStatus,
    build_day_availability,
    classify_slot,
    day_slots,
    local_day_bounds,
    overlaps,
    suggest_slots,
    to_local,
    to_utc,
)

DAY = date(2030, 1, 7)


def test_default_grid_has_eighteen_slots():
    slots = day_slots()
    assert len(slots) == 18
    assert slots[0] == "09:00"
    assert slots[-1] == "17:30"


def test_grid_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        day_slots(interval_minutes=0)


def test_adjacent_intervals_do_not_overlap():
    a = datetime(2030, 1, 7, 10, 0)
    b = datetime(2030, 1, 7, 10, 30)
    c = datetime(2030, 1, 7, 11, 0)
    assert not overlaps(a, b, b, c)
    assert overlaps(a, c, b, c)


@pytest.mark.parametrize(
    "conflicts,busy,total,expected",
    [
        (0, 0, 1, SlotStatus.AVAILABLE),
        (1, 1, 1, SlotStatus.WAITLIST),
        (2, 1, 1, SlotStatus.FULL),
        (1, 1, 2, SlotStatus.AVAILABLE),
        (2, 2, 2, SlotStatus.WAITLIST),
        (0, 0, 0, SlotStatus.FULL),
    ],
)
def test_classify_slot(conflicts, busy, total, expected):
    assert classify_slot(conflicts, busy, total) == expected


def _by_label(slots):
    return {s.slot: s for s in slots}


def test_booked_slot_becomes_waitlist_for_single_employee():
    busy = [BusyInterval("e1", datetime(2030, 1, 7, 10, 0), datetime(2030, 1, 7, 10, 30))]
    slots = _by_label(build_day_availability(DAY, 30, ["e1"], busy, "UTC"))

    assert slots["09:30"].status == SlotStatus.AVAILABLE
    assert slots["10:00"].status == SlotStatus.WAITLIST
    assert slots["10:00"].available is True
    assert slots["10:00"].conflict_count == 1
    assert slots["10:30"].status == SlotStatus.AVAILABLE


def test_duration_extends_the_checked_window():
    busy = [BusyInterval("e1", datetime(2030, 1, 7, 10, 0), datetime(2030, 1, 7, 10, 30))]
    slots = _by_label(build_day_availability(DAY, 60, ["e1"], busy, "UTC"))

    assert slots["09:00"].status == SlotStatus.AVAILABLE
    assert slots["09:30"].status == SlotStatus.WAITLIST


def test_two_overlapping_bookings_make_the_slot_full():
    busy = [
        BusyInterval("e1", datetime(2030, 1, 7, 10, 0), datetime(2030, 1, 7, 10, 30)),
        BusyInterval("e1", datetime(2030, 1, 7, 10, 30), datetime(2030, 1, 7, 11, 0)),
    ]
    slots = _by_label(build_day_availability(DAY, 60, ["e1"], busy, "UTC"))

    assert slots["10:00"].status == SlotStatus.FULL
    assert slots["10:00"].available is False


def test_other_employees_keep_the_slot_available():
    busy = [BusyInterval("e1", datetime(2030, 1, 7, 10, 0), datetime(2030, 1, 7, 10, 30))]
    slots = _by_label(build_day_availability(DAY, 30, ["e1", "e2"], busy, "UTC"))

    assert slots["10:00"].status == SlotStatus.AVAILABLE
    assert slots["10:00"].free_employees == 1


def test_unqualified_employees_are_ignored():
    busy = [BusyInterval("other", datetime(2030, 1, 7, 10, 0), datetime(2030, 1, 7, 10, 30))]
    slots = _by_label(build_day_availability(DAY, 30, ["e1"], busy, "UTC"))
    assert slots["10:00"].conflict_count == 0


def test_slot_labels_are_local_time():
    # 10:00 in London during BST is 09:00 UTC
    busy = [BusyInterval("e1", datetime(2030, 7, 1, 9, 0), datetime(2030, 7, 1, 9, 30))]
    slots = _by_label(build_day_availability(date(2030, 7, 1), 30, ["e1"], busy, "Europe/London"))
    assert slots["10:00"].status == SlotStatus.WAITLIST
    assert slots["09:00"].status == SlotStatus.AVAILABLE


def test_timezone_round_trip_in_summer():
    utc = to_utc(datetime(2030, 7, 1, 10, 0), "Europe/London")
    assert utc == datetime(2030, 7, 1, 9, 0)
    assert to_local(utc, "Europe/London") == datetime(2030, 7, 1, 10, 0)


def test_local_day_bounds():
    start, end = local_day_bounds(date(2030, 7, 1), "Europe/London")
    assert start == datetime(2030, 6, 30, 23, 0)
    assert end == datetime(2030, 7, 1, 23, 0)


def test_suggestions_skip_full_slots():
    busy = [
        BusyInterval("e1", datetime(2030, 1, 7, 9, 0), datetime(2030, 1, 7, 9, 30)),
        BusyInterval("e1", datetime(2030, 1, 7, 9, 0), datetime(2030, 1, 7, 9, 30)),
    ]
    slots = build_day_availability(DAY, 30, ["e1"], busy, "UTC")
    suggested = suggest_slots(slots, limit=3)

    assert [s.slot for s in suggested] == ["09:30", "10:00", "10:30"]
