"""
Customer risk scoring.

The score is a weighted sum of normalised booking-history factors (0..100):
the level derived from it drives the mitigation policy applied at booking time
(manual approval, deposit, shorter advance booking window).
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .auth_models import User, UserRole
from .db import db_session, utcnow
from .models import Appointment, AppointmentStatus, CustomerRisk, RiskLevel

logger = logging.getLogger(__name__)

WEIGHTS = {
    "cancellation_rate": 0.30,
    "no_show_rate": 0.25,
    "last_minute_cancel_rate": 0.20,
    "consecutive_cancellations": 0.15,
    "booking_frequency": 0.10,
}

# lower bound (exclusive) of each level above LOW
THRESHOLDS = {
    RiskLevel.MEDIUM: 20,
    RiskLevel.HIGH: 40,
    RiskLevel.VERY_HIGH: 60,
}

LAST_MINUTE_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class RiskFactors:
    cancellation_rate: float
    no_show_rate: float
    last_minute_cancel_rate: float
    consecutive_cancellations: int
    average_booking_frequency: float | None
    total_bookings: int


@dataclass(frozen=True)
class RiskResult:
    risk_score: int
    risk_level: RiskLevel
    factors: RiskFactors
    recommendations: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RiskMitigation:
    requires_approval: bool
    deposit_required: bool
    max_advance_booking_days: int | None
    risk_level: RiskLevel
    risk_score: int

    def as_dict(self) -> dict:
        d = asdict(self)
        d["risk_level"] = self.risk_level.value
        return d


@dataclass(frozen=True)
class BookingMetrics:
    total_bookings: int
    completed_bookings: int
    cancelled_bookings: int
    no_show_bookings: int
    last_minute_cancellations: int
    cancellation_rate: float
    no_show_rate: float
    last_minute_cancel_rate: float
    consecutive_cancellations: int
    average_booking_frequency: float | None
    last_booking_date: datetime | None
    last_cancellation_date: datetime | None

    def factors(self) -> RiskFactors:
        return RiskFactors(
            cancellation_rate=self.cancellation_rate,
            no_show_rate=self.no_show_rate,
            last_minute_cancel_rate=self.last_minute_cancel_rate,
            consecutive_cancellations=self.consecutive_cancellations,
            average_booking_frequency=self.average_booking_frequency,
            total_bookings=self.total_bookings,
        )


# =========================
# Scoring (pure)
# =========================
def normalize_booking_frequency(frequency: float | None) -> float:
    """Average days between bookings -> 0..100; frequent customers are low risk.

    Unknown or zero (every booking on the same start) is neutral.
    """
    if not frequency:
        return 50
    if frequency <= 1:
        return 10
    if frequency <= 7:
        return 20
    if frequency <= 30:
        return 40
    if frequency <= 90:
        return 70
    return 90


def determine_risk_level(score: float) -> RiskLevel:
    if score < THRESHOLDS[RiskLevel.MEDIUM]:
        return RiskLevel.LOW
    if score < THRESHOLDS[RiskLevel.HIGH]:
        return RiskLevel.MEDIUM
    if score < THRESHOLDS[RiskLevel.VERY_HIGH]:
        return RiskLevel.HIGH
    return RiskLevel.VERY_HIGH


def generate_recommendations(level: RiskLevel, factors: RiskFactors) -> list[str]:
    out: list[str] = []

    if level == RiskLevel.LOW:
        out.append("Customer is reliable - no special measures needed")
    elif level == RiskLevel.MEDIUM:
        out.append("Monitor customer behavior closely")
        if factors.last_minute_cancel_rate > 0.3:
            out.append("Consider requiring 48-hour notice for cancellations")
    elif level == RiskLevel.HIGH:
        out.append("Require manual approval for new bookings")
        out.append("Consider requiring a deposit")
        if factors.consecutive_cancellations >= 2:
            out.append("Limit advance booking window to 7 days")
    else:
        out.append("Require full payment in advance")
        out.append("Manual approval required for all bookings")
        out.append("Consider suspending booking privileges")
        out.append("Add admin notes about customer behavior")

    if factors.no_show_rate > 0.5:
        out.append("Implement no-show penalties")
    if factors.cancellation_rate > 0.6:
        out.append("Require cancellation fees")

    return out


def calculate_risk_score(factors: RiskFactors) -> RiskResult:
    normalized = {
        "cancellation_rate": min(factors.cancellation_rate * 100, 100),
        "no_show_rate": min(factors.no_show_rate * 100, 100),
        "last_minute_cancel_rate": min(factors.last_minute_cancel_rate * 100, 100),
        # 5 in a row = 100
        "consecutive_cancellations": min(factors.consecutive_cancellations * 20, 100),
        "booking_frequency": normalize_booking_frequency(factors.average_booking_frequency),
    }
    score = sum(normalized[k] * w for k, w in WEIGHTS.items())
    level = determine_risk_level(score)

    return RiskResult(
        risk_score=round(score),
        risk_level=level,
        factors=factors,
        recommendations=generate_recommendations(level, factors),
    )


def mitigation_for(level: RiskLevel) -> tuple[bool, bool, int | None]:
    """(requires_approval, deposit_required, max_advance_booking_days)"""
    if level == RiskLevel.VERY_HIGH:
        return True, True, 7
    if level == RiskLevel.HIGH:
        return True, False, 14
    return False, False, None


# =========================
# Booking history (pure)
# =========================
def _is_client_cancellation(a) -> bool:
    # staff/admin cancellations are not the customer's fault
    return a.status == AppointmentStatus.CANCELLED and a.cancelled_by_role in (UserRole.CLIENT, None)


def _cancelled_at(a) -> datetime:
    return a.cancelled_at or a.updated_at


def compute_booking_metrics(appointments: Iterable, now: datetime) -> BookingMetrics:
    """
    `appointments`: objects with status, start_at, cancelled_by_role, cancelled_at, updated_at.
    """
    history = sorted(appointments, key=lambda a: a.start_at)
    total = len(history)

    completed = sum(1 for a in history if a.status == AppointmentStatus.COMPLETED)
    client_cancelled = [a for a in history if _is_client_cancellation(a)]
    no_shows = sum(
        1
        for a in history
        if a.status == AppointmentStatus.NO_SHOW
        or (a.status in (AppointmentStatus.CONFIRMED, AppointmentStatus.PENDING) and a.start_at < now)
    )
    last_minute = sum(1 for a in client_cancelled if a.start_at - _cancelled_at(a) <= LAST_MINUTE_WINDOW)

    cancellation_rate = len(client_cancelled) / total if total else 0.0
    no_show_rate = no_shows / total if total else 0.0
    last_minute_rate = last_minute / len(client_cancelled) if client_cancelled else 0.0

    # longest run of client cancellations, chronologically
    run = longest = 0
    for a in history:
        if _is_client_cancellation(a):
            run += 1
            longest = max(longest, run)
        else:
            run = 0

    booking_dates = [
        a.start_at for a in history if a.status in (AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED)
    ]
    frequency = None
    if len(booking_dates) > 1:
        span_days = (booking_dates[-1] - booking_dates[0]).total_seconds() / 86400
        frequency = span_days / (len(booking_dates) - 1)

    cancellation_dates = [_cancelled_at(a) for a in history if a.status == AppointmentStatus.CANCELLED]

    return BookingMetrics(
        total_bookings=total,
        completed_bookings=completed,
        cancelled_bookings=len(client_cancelled),
        no_show_bookings=no_shows,
        last_minute_cancellations=last_minute,
        cancellation_rate=cancellation_rate,
        no_show_rate=no_show_rate,
        last_minute_cancel_rate=last_minute_rate,
        consecutive_cancellations=longest,
        average_booking_frequency=frequency,
        last_booking_date=booking_dates[-1] if booking_dates else None,
        last_cancellation_date=max(cancellation_dates) if cancellation_dates else None,
    )


# =========================
# Persistence
# =========================
def risk_to_dict(r: CustomerRisk, user: User | None = None) -> dict:
    d = {
        "user_id": r.user_id,
        "total_bookings": r.total_bookings,
        "completed_bookings": r.completed_bookings,
        "cancelled_bookings": r.cancelled_bookings,
        "no_show_bookings": r.no_show_bookings,
        "last_minute_cancellations": r.last_minute_cancellations,
        "cancellation_rate": r.cancellation_rate,
        "no_show_rate": r.no_show_rate,
        "last_minute_cancel_rate": r.last_minute_cancel_rate,
        "risk_score": r.risk_score,
        "risk_level": r.risk_level.value,
        "average_booking_frequency": r.average_booking_frequency,
        "last_booking_date": r.last_booking_date.isoformat() if r.last_booking_date else None,
        "last_cancellation_date": r.last_cancellation_date.isoformat() if r.last_cancellation_date else None,
        "consecutive_cancellations": r.consecutive_cancellations,
        "requires_approval": r.requires_approval,
        "deposit_required": r.deposit_required,
        "max_advance_booking_days": r.max_advance_booking_days,
        "admin_notes": r.admin_notes,
        "last_calculated_at": r.last_calculated_at.isoformat(),
    }
    if user is not None:
        d["user"] = {"id": user.id, "name": user.name, "email": user.email}
    return d


def refresh_customer_risk(s: Session, user_id: str, now: datetime) -> CustomerRisk:
    """Recompute and upsert the risk record of one customer."""
    risk = s.execute(select(CustomerRisk).where(CustomerRisk.user_id == user_id)).scalar_one_or_none()
    appointments = s.scalars(select(Appointment).where(Appointment.client_id == user_id)).all()

    if not appointments:
        # default profile, created once
        if risk is None:
            risk = CustomerRisk(user_id=user_id, risk_score=0, risk_level=RiskLevel.LOW, last_calculated_at=now)
            s.add(risk)
            s.flush()
        return risk

    metrics = compute_booking_metrics(appointments, now)
    result = calculate_risk_score(metrics.factors())
    requires_approval, deposit_required, max_days = mitigation_for(result.risk_level)

    if risk is None:
        risk = CustomerRisk(user_id=user_id)
        s.add(risk)

    risk.total_bookings = metrics.total_bookings
    risk.completed_bookings = metrics.completed_bookings
    risk.cancelled_bookings = metrics.cancelled_bookings
    risk.no_show_bookings = metrics.no_show_bookings
    risk.last_minute_cancellations = metrics.last_minute_cancellations
    risk.cancellation_rate = metrics.cancellation_rate
    risk.no_show_rate = metrics.no_show_rate
    risk.last_minute_cancel_rate = metrics.last_minute_cancel_rate
    risk.risk_score = result.risk_score
    risk.risk_level = result.risk_level
    risk.average_booking_frequency = metrics.average_booking_frequency
    risk.last_booking_date = metrics.last_booking_date
    risk.last_cancellation_date = metrics.last_cancellation_date
    risk.consecutive_cancellations = metrics.consecutive_cancellations
    risk.requires_approval = requires_approval
    risk.deposit_required = deposit_required
    risk.max_advance_booking_days = max_days
    risk.last_calculated_at = now
    s.flush()

    return risk


def ensure_customer_risk(s: Session, user_id: str, now: datetime) -> CustomerRisk:
    risk = s.execute(select(CustomerRisk).where(CustomerRisk.user_id == user_id)).scalar_one_or_none()
    return risk if risk is not None else refresh_customer_risk(s, user_id, now)


def update_customer_risk(user_id: str, now: datetime | None = None) -> dict | None:
    with db_session() as s:
        user = s.get(User, user_id)
        if not user:
            return None
        risk = refresh_customer_risk(s, user_id, now or utcnow())
        logger.info("Risk for customer %s: %s (%d)", user_id, risk.risk_level.value, risk.risk_score)
        return risk_to_dict(risk, user)


def get_customer_risk(user_id: str, now: datetime | None = None) -> dict | None:
    """Risk record of the customer, created on first access."""
    with db_session() as s:
        user = s.get(User, user_id)
        if not user:
            return None
        return risk_to_dict(ensure_customer_risk(s, user_id, now or utcnow()), user)


def refresh_risk_quietly(user_id: str, now: datetime | None = None) -> None:
    """Refresh after an appointment change: failures are logged, never raised."""
    try:
        update_customer_risk(user_id, now=now)
    except Exception:
        logger.exception("Failed to update risk assessment for customer %s", user_id)


def _customers_with_appointments(s: Session, role: UserRole | None = None) -> Sequence[str]:
    q = select(Appointment.client_id).distinct()
    if role is not None:
        q = q.join(User, User.id == Appointment.client_id).where(User.role == role)
    return s.scalars(q).all()


def list_customers_with_risk(limit: int = 50, now: datetime | None = None) -> list[dict]:
    """Client customers by descending risk score; missing records are created first."""
    now = now or utcnow()
    with db_session() as s:
        for user_id in _customers_with_appointments(s, role=UserRole.CLIENT):
            ensure_customer_risk(s, user_id, now)

        rows = s.execute(
            select(CustomerRisk, User)
            .join(User, User.id == CustomerRisk.user_id)
            .where(User.role == UserRole.CLIENT)
            .order_by(CustomerRisk.risk_score.desc())
            .limit(limit)
        ).all()
        return [risk_to_dict(r, u) for r, u in rows]


def list_high_risk_customers(limit: int = 50, now: datetime | None = None) -> list[dict]:
    now = now or utcnow()
    with db_session() as s:
        for user_id in _customers_with_appointments(s):
            ensure_customer_risk(s, user_id, now)

        rows = s.execute(
            select(CustomerRisk, User)
            .join(User, User.id == CustomerRisk.user_id)
            .where(CustomerRisk.risk_level.in_((RiskLevel.HIGH, RiskLevel.VERY_HIGH)))
            .order_by(CustomerRisk.risk_score.desc())
            .limit(limit)
        ).all()
        return [risk_to_dict(r, u) for r, u in rows]


def update_admin_notes(user_id: str, notes: str, now: datetime | None = None) -> dict | None:
    with db_session() as s:
        user = s.get(User, user_id)
        if not user:
            return None
        risk = ensure_customer_risk(s, user_id, now or utcnow())
        risk.admin_notes = notes
        return risk_to_dict(risk, user)


def mitigation_of(s: Session, user_id: str, now: datetime) -> RiskMitigation:
    risk = ensure_customer_risk(s, user_id, now)
    return RiskMitigation(
        requires_approval=risk.requires_approval,
        deposit_required=risk.deposit_required,
        max_advance_booking_days=risk.max_advance_booking_days,
        risk_level=risk.risk_level,
        risk_score=risk.risk_score,
    )


def get_risk_mitigation(user_id: str, now: datetime | None = None) -> RiskMitigation | None:
    with db_session() as s:
        if not s.get(User, user_id):
            return None
        return mitigation_of(s, user_id, now or utcnow())


def requires_approval(user_id: str) -> bool:
    m = get_risk_mitigation(user_id)
    return bool(m and m.requires_approval)


def update_all_customer_risks(now: datetime | None = None) -> int:
    """Batch refresh; one failing customer does not stop the others."""
    now = now or utcnow()
    with db_session() as s:
        user_ids = list(_customers_with_appointments(s))

    logger.info("Starting batch risk assessment update for %d customers", len(user_ids))
    updated = 0
    for user_id in user_ids:
        try:
            update_customer_risk(user_id, now=now)
            updated += 1
        except Exception:
            logger.exception("Error updating risk for customer %s", user_id)

    logger.info("Batch risk assessment update completed: %d/%d", updated, len(user_ids))
    return updated


def risk_statistics() -> dict:
    with db_session() as s:
        rows = s.execute(
            select(CustomerRisk.risk_level, func.count(CustomerRisk.id)).group_by(CustomerRisk.risk_level)
        ).all()

    stats = {level.value: 0 for level in RiskLevel}
    for level, count in rows:
        stats[level.value] = count
    stats["total"] = sum(stats.values())
    return stats
