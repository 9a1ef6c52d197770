"""
Slot arithmetic, free of any DB access.

Conventions:
- storage is naive UTC
- slot labels ("HH:MM") and client input are wall-clock in the salon timezone
- an appointment occupies the half-open interval [start, start + duration)
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Sequence
from zoneinfo import ZoneInfo


class SlotStatus(enum.Enum):
    AVAILABLE = "available"
    WAITLIST = "waitlist"
    FULL = "full"


@dataclass(frozen=True)
class BusyInterval:
    employee_id: str
    start: datetime
    end: datetime


@dataclass(frozen=True)
class SlotAvailability:
    slot: str
    available: bool
    conflict_count: int
    free_employees: int
    status: SlotStatus

    def as_dict(self) -> dict:
        return {
            "slot": self.slot,
            "available": self.available,
            "conflict_count": self.conflict_count,
            "free_employees": self.free_employees,
            "status": self.status.value,
        }


# =========================
# Time conversions
# =========================
def to_utc(value: datetime, tz_name: str) -> datetime:
    """Naive values are salon wall-clock; aware values keep their own offset."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=ZoneInfo(tz_name))
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_local(value: datetime, tz_name: str) -> datetime:
    return value.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name)).replace(tzinfo=None)


def local_day_bounds(day: date, tz_name: str) -> tuple[datetime, datetime]:
    start = to_utc(datetime.combine(day, time.min), tz_name)
    end = to_utc(datetime.combine(day + timedelta(days=1), time.min), tz_name)
    return start, end


def parse_hm(value: str) -> time:
    hours, minutes = map(int, value.split(":"))
    return time(hours, minutes)


# =========================
# Slots
# =========================
def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def day_slots(opening: str = "09:00", last_slot: str = "17:30", interval_minutes: int = 30) -> list[str]:
    """Slot labels from opening to last_slot, both included."""
    if interval_minutes <= 0:
        raise ValueError("interval_minutes must be positive")

    cur = datetime.combine(date.min, parse_hm(opening))
    last = datetime.combine(date.min, parse_hm(last_slot))

    out: list[str] = []
    while cur <= last:
        out.append(cur.strftime("%H:%M"))
        cur += timedelta(minutes=interval_minutes)
    return out


def classify_slot(conflict_count: int, busy_employees: int, total_employees: int) -> SlotStatus:
    """
    - available: at least one qualified employee is free
    - waitlist: everybody is busy but each with a single overlapping booking,
      so one cancellation frees the slot
    - full: otherwise
    """
    if total_employees <= 0:
        return SlotStatus.FULL
    if busy_employees < total_employees:
        return SlotStatus.AVAILABLE
    if conflict_count <= total_employees:
        return SlotStatus.WAITLIST
    return SlotStatus.FULL


def build_day_availability(
    day: date,
    duration_minutes: int,
    employee_ids: Sequence[str],
    busy: Iterable[BusyInterval],
    tz_name: str,
    opening: str = "09:00",
    last_slot: str = "17:30",
    interval_minutes: int = 30,
) -> list[SlotAvailability]:
    qualified = set(employee_ids)
    busy = [b for b in busy if b.employee_id in qualified]

    out: list[SlotAvailability] = []
    for label in day_slots(opening, last_slot, interval_minutes):
        start = to_utc(datetime.combine(day, parse_hm(label)), tz_name)
        end = start + timedelta(minutes=duration_minutes)

        conflicts = [b for b in busy if overlaps(start, end, b.start, b.end)]
        busy_employees = len({b.employee_id for b in conflicts})
        status = classify_slot(len(conflicts), busy_employees, len(qualified))

        out.append(
            SlotAvailability(
                slot=label,
                available=status != SlotStatus.FULL,
                conflict_count=len(conflicts),
                free_employees=len(qualified) - busy_employees,
                status=status,
            )
        )
    return out


def suggest_slots(slots: Iterable[SlotAvailability], limit: int = 5) -> list[SlotAvailability]:
    """Bookable slots (available or waitlist), earliest first."""
    return sorted((s for s in slots if s.status != SlotStatus.FULL), key=lambda s: s.slot)[:limit]
