"""
Availability search from loose customer preferences
("tomorrow afternoon", "weekend", "2 pm", ...).
"""
from __future__ import annotations

import logging
import re
from datetime import date, timedelta
from typing import Iterable, Sequence

from .services import get_day_availability

logger = logging.getLogger(__name__)

NEXT_DAYS_WANTED = 3
NEXT_DAYS_HORIZON = 30
SLOTS_PER_DAY = 3

_TIME_RE = re.compile(r"(\d{1,2}):?(\d{2})?\s*(am|pm)?", re.IGNORECASE)


def parse_date_preference(pref: str | None, today: date) -> date:
    if not pref:
        return today
    lower = pref.lower().strip()

    if "today" in lower:
        return today
    if "tomorrow" in lower:
        return today + timedelta(days=1)
    if "next week" in lower:
        return today + timedelta(days=7)
    if "weekend" in lower:
        # Monday = 0 ... Saturday = 5, Sunday = 6
        wd = today.weekday()
        if wd >= 5:
            return today + timedelta(days=12 - wd)
        return today + timedelta(days=5 - wd)
    if "next month" in lower:
        return today + timedelta(days=30)

    try:
        return date.fromisoformat(lower)
    except ValueError:
        return today


def _hour(slot: dict) -> int:
    return int(slot["time"].split(":")[0])


def filter_slots_by_time_preference(slots: Sequence[dict], pref: str | None) -> list[dict]:
    """
    - morning 9-12, afternoon 12-17, evening 17-20
    - explicit time ("14:00", "2 pm"): slots within one hour
    - anything else: no filter
    """
    if not pref or pref.lower() == "any":
        return list(slots)
    lower = pref.lower()

    if "morning" in lower:
        return [x for x in slots if 9 <= _hour(x) < 12]
    if "afternoon" in lower:
        return [x for x in slots if 12 <= _hour(x) < 17]
    if "evening" in lower:
        return [x for x in slots if 17 <= _hour(x) <= 20]

    if "am" in lower or "pm" in lower or ":" in lower:
        m = _TIME_RE.search(pref)
        if m:
            hour = int(m.group(1))
            period = (m.group(3) or "").lower()
            if period == "pm" and hour != 12:
                hour += 12
            if period == "am" and hour == 12:
                hour = 0
            return [x for x in slots if abs(_hour(x) - hour) <= 1]

    return list(slots)


def bookable_slots(service_id: str, day: date, addon_ids: Iterable[str] = ()) -> list[dict]:
    availability = get_day_availability(service_id, day, addon_ids=tuple(addon_ids))
    return [
        {"time": x["slot"], "date": day.isoformat(), "status": x["status"]}
        for x in availability["slots"]
        if x["available"]
    ]


def find_next_available_days(
    service_id: str,
    after: date,
    count: int = NEXT_DAYS_WANTED,
    addon_ids: Iterable[str] = (),
) -> list[dict]:
    addon_ids = tuple(addon_ids)
    out: list[dict] = []
    day = after + timedelta(days=1)
    for _ in range(NEXT_DAYS_HORIZON):
        if len(out) >= count:
            break
        slots = bookable_slots(service_id, day, addon_ids)
        if slots:
            out.append(
                {
                    "date": day.isoformat(),
                    "day_name": day.strftime("%A, %d %B"),
                    "available_slots": slots[:SLOTS_PER_DAY],
                    "total_available": len(slots),
                }
            )
        day += timedelta(days=1)
    return out


def search_availability(
    service_id: str,
    date_preference: str | None,
    time_preference: str | None,
    today: date,
    addon_ids: Iterable[str] = (),
) -> dict:
    """
    Slots of the preferred day filtered by the time preference; a fully booked
    day returns the next days with availability instead.
    """
    addon_ids = tuple(addon_ids)
    target = parse_date_preference(date_preference, today)
    slots = bookable_slots(service_id, target, addon_ids)

    if not slots:
        logger.info("No availability for service %s on %s", service_id, target)
        return {
            "available": False,
            "requested_date": target.isoformat(),
            "alternatives": find_next_available_days(service_id, target, addon_ids=addon_ids),
            "message": f"Unfortunately, {target.strftime('%d %B')} is fully booked. "
            "Here are the next available dates:",
        }

    filtered = filter_slots_by_time_preference(slots, time_preference)
    return {
        "available": True,
        "date": target.isoformat(),
        "slots": filtered,
        "total_slots": len(slots),
        "filtered_slots": len(filtered),
    }
