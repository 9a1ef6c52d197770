from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Sequence

from sqlalchemy import and_, select

from . import config
from .db import db_session
from .models import WORKLOAD_STATUSES, Appointment
from .scheduling import local_day_bounds, to_local

logger = logging.getLogger(__name__)

# Monday = 0, like date.weekday()
DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

STATUS_LABELS = {"low": "Quiet", "moderate": "Moderate", "high": "Busy", "peak": "Peak"}


@dataclass
class PeakCell:
    day_of_week: int
    hour: int
    booking_count: int
    normalized_score: float = 0.0
    status: str = "low"

    def as_dict(self) -> dict:
        return {
            "day_of_week": self.day_of_week,
            "hour": self.hour,
            "booking_count": self.booking_count,
            "normalized_score": round(self.normalized_score, 4),
            "status": self.status,
        }


def _status(score: float) -> str:
    if score >= 0.8:
        return "peak"
    if score >= 0.6:
        return "high"
    if score >= 0.3:
        return "moderate"
    return "low"


def build_peak_hours(local_starts: Iterable[datetime]) -> dict:
    """
    7x24 matrix of bookings by (weekday, hour) of the local start times,
    with normalised scores and a summary.
    """
    counts = [[0] * 24 for _ in range(7)]
    for dt in local_starts:
        counts[dt.weekday()][dt.hour] += 1

    cells = [PeakCell(day, hour, counts[day][hour]) for day in range(7) for hour in range(24)]
    values = [c.booking_count for c in cells]
    max_count = max(values)
    total = sum(values)

    for c in cells:
        if max_count > 0:
            c.normalized_score = c.booking_count / max_count
        c.status = _status(c.normalized_score)

    peak = sorted((c for c in cells if c.status == "peak"), key=lambda c: -c.booking_count)[:10]
    quiet = sorted((c for c in cells if c.status == "low" and c.booking_count > 0), key=lambda c: c.booking_count)[:10]
    off_peak = sorted((c for c in cells if c.status == "low"), key=lambda c: c.booking_count)[:20]

    day_totals = [sum(counts[d]) for d in range(7)]
    hour_totals = [sum(counts[d][h] for d in range(7)) for h in range(24)]

    return {
        "data": [c.as_dict() for c in cells],
        "max_count": max_count,
        "min_count": min(values),
        "average_count": total / len(values),
        "suggested_off_peak": [c.as_dict() for c in off_peak],
        "summary": {
            "total_bookings": total,
            "peak_hours": [c.as_dict() for c in peak],
            "quiet_hours": [c.as_dict() for c in quiet],
            "busiest_day": day_totals.index(max(day_totals)),
            "busiest_hour": hour_totals.index(max(hour_totals)),
        },
    }


def calculate_peak_hours(
    date_from: date,
    date_to: date,
    service_id: str | None = None,
    employee_id: str | None = None,
) -> dict:
    """Peak hours of the active appointments between two local days (both included)."""
    tz = config.TIMEZONE
    start, _ = local_day_bounds(date_from, tz)
    _, end = local_day_bounds(date_to, tz)

    q = select(Appointment.start_at).where(
        and_(
            Appointment.start_at >= start,
            Appointment.start_at < end,
            Appointment.status.in_(WORKLOAD_STATUSES),
        )
    )
    if service_id:
        q = q.where(Appointment.service_id == service_id)
    if employee_id:
        q = q.where(Appointment.employee_id == employee_id)

    with db_session() as s:
        starts = [to_local(x, tz) for x in s.scalars(q)]

    logger.debug("Peak hours over %d appointments", len(starts))
    result = build_peak_hours(starts)
    result["date_range"] = {"from": date_from.isoformat(), "to": date_to.isoformat()}
    return result


def default_range(today: date) -> tuple[date, date]:
    """Last 30 days."""
    return today - timedelta(days=30), today


# =========================
# Formatting
# =========================
def day_name(day_of_week: int) -> str:
    return DAY_NAMES[day_of_week]


def hour_label(hour: int) -> str:
    if hour == 0:
        return "12 AM"
    if hour < 12:
        return f"{hour} AM"
    if hour == 12:
        return "12 PM"
    return f"{hour - 12} PM"


def status_label(status: str) -> str:
    return STATUS_LABELS.get(status, "Unknown")


def format_off_peak(cells: Sequence[dict]) -> list[dict]:
    return [
        {
            "day": day_name(c["day_of_week"]),
            "time": hour_label(c["hour"]),
            "bookings": c["booking_count"],
            "status": status_label(c["status"]),
        }
        for c in cells
    ]
