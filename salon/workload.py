from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session, selectinload

from . import config
from .db import db_session, utcnow
from .models import (
    ACTIVE_STATUSES,
    WORKLOAD_STATUSES,
    Appointment,
    AppointmentAddon,
    Employee,
    ServiceEmployee,
)
from .scheduling import BusyInterval, overlaps

logger = logging.getLogger(__name__)

# Bounds the lookback of overlap queries; catalogue writes enforce it
MAX_APPOINTMENT_SPAN = timedelta(minutes=config.MAX_APPOINTMENT_MINUTES)


@dataclass(frozen=True)
class WorkloadScore:
    workload_score: float
    booked_minutes: int
    max_minutes: int


@dataclass(frozen=True)
class WorkloadRecommendation:
    employee_id: str
    employee_name: str
    workload_score: float
    booked_minutes: int
    max_minutes: int
    is_conflict_free: bool
    last_assigned_at: datetime | None = None

    def as_dict(self) -> dict:
        return {
            "employee_id": self.employee_id,
            "employee_name": self.employee_name,
            "workload_score": round(self.workload_score, 4),
            "booked_minutes": self.booked_minutes,
            "max_minutes": self.max_minutes,
            "is_conflict_free": self.is_conflict_free,
            "last_assigned_at": self.last_assigned_at.isoformat() if self.last_assigned_at else None,
        }


def _with_durations(q):
    # duration = service + addons, loaded eagerly
    return q.options(
        selectinload(Appointment.service),
        selectinload(Appointment.addons).selectinload(AppointmentAddon.addon),
    )


# =========================
# Session-level helpers
# =========================
def active_intervals(
    s: Session,
    employee_ids: Sequence[str],
    start: datetime,
    end: datetime,
    exclude_appointment_id: str | None = None,
) -> list[BusyInterval]:
    """Active appointments of the given employees overlapping [start, end)."""
    if not employee_ids:
        return []

    q = select(Appointment).where(
        and_(
            Appointment.employee_id.in_(employee_ids),
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.start_at < end,
            Appointment.start_at >= start - MAX_APPOINTMENT_SPAN,
        )
    )
    if exclude_appointment_id:
        q = q.where(Appointment.id != exclude_appointment_id)

    out: list[BusyInterval] = []
    for a in s.scalars(_with_durations(q)):
        a_end = a.end_at
        if overlaps(a.start_at, a_end, start, end):
            out.append(BusyInterval(a.employee_id, a.start_at, a_end))
    return out


def has_conflict(
    s: Session,
    employee_id: str,
    start: datetime,
    duration_minutes: int,
    exclude_appointment_id: str | None = None,
) -> bool:
    end = start + timedelta(minutes=duration_minutes)
    return bool(active_intervals(s, [employee_id], start, end, exclude_appointment_id))


def workload_of(s: Session, employee_id: str, now: datetime) -> WorkloadScore:
    """WorkloadScore = booked minutes in the next WORKLOAD_WINDOW_DAYS / MAX_WEEKLY_MINUTES."""
    window_end = now + timedelta(days=config.WORKLOAD_WINDOW_DAYS)
    q = select(Appointment).where(
        and_(
            Appointment.employee_id == employee_id,
            Appointment.start_at >= now,
            Appointment.start_at < window_end,
            Appointment.status.in_(WORKLOAD_STATUSES),
        )
    )
    booked = sum(a.duration_minutes for a in s.scalars(_with_durations(q)))
    max_minutes = config.MAX_WEEKLY_MINUTES
    return WorkloadScore(workload_score=booked / max_minutes, booked_minutes=booked, max_minutes=max_minutes)


def last_assigned_at(s: Session, employee_id: str) -> datetime | None:
    return s.execute(
        select(func.max(Appointment.start_at)).where(Appointment.employee_id == employee_id)
    ).scalar_one_or_none()


def rank(recommendations: Iterable[WorkloadRecommendation]) -> list[WorkloadRecommendation]:
    """
    Preference order:
    1. conflict-free first
    2. lower workload score
    3. never assigned, then least recently assigned
    4. name / id, so that the order is stable
    """
    return sorted(
        recommendations,
        key=lambda r: (
            not r.is_conflict_free,
            r.workload_score,
            r.last_assigned_at is not None,
            r.last_assigned_at or datetime.min,
            r.employee_name,
            r.employee_id,
        ),
    )


def ranked_employees(
    s: Session,
    service_id: str,
    start: datetime,
    duration_minutes: int,
    now: datetime,
) -> list[WorkloadRecommendation]:
    employees = s.scalars(
        select(Employee)
        .join(ServiceEmployee, ServiceEmployee.employee_id == Employee.id)
        .where(and_(ServiceEmployee.service_id == service_id, Employee.is_active.is_(True)))
    ).all()

    recs: list[WorkloadRecommendation] = []
    for e in employees:
        score = workload_of(s, e.id, now)
        recs.append(
            WorkloadRecommendation(
                employee_id=e.id,
                employee_name=e.name or "Unknown Employee",
                workload_score=score.workload_score,
                booked_minutes=score.booked_minutes,
                max_minutes=score.max_minutes,
                is_conflict_free=not has_conflict(s, e.id, start, duration_minutes),
                last_assigned_at=last_assigned_at(s, e.id),
            )
        )
    return rank(recs)


# =========================
# Public API
# =========================
def calculate_workload_score(employee_id: str, now: datetime | None = None) -> WorkloadScore:
    with db_session() as s:
        return workload_of(s, employee_id, now or utcnow())


def check_time_conflict(employee_id: str, start: datetime, duration_minutes: int) -> bool:
    with db_session() as s:
        return has_conflict(s, employee_id, start, duration_minutes)


def recommend_employee(
    service_id: str,
    start: datetime,
    duration_minutes: int,
    now: datetime | None = None,
) -> WorkloadRecommendation | None:
    """
    Best employee for the service at `start`: the least loaded conflict-free one.
    If nobody is free, the least loaded one anyway (the booking will go to the waitlist).
    """
    recs = get_recommendations(service_id, start, duration_minutes, limit=1, now=now)
    return recs[0] if recs else None


def get_recommendations(
    service_id: str,
    start: datetime,
    duration_minutes: int,
    limit: int = 5,
    now: datetime | None = None,
) -> list[WorkloadRecommendation]:
    with db_session() as s:
        recs = ranked_employees(s, service_id, start, duration_minutes, now or utcnow())
    logger.debug("Ranked %d employees for service %s", len(recs), service_id)
    return recs[:limit]
