"""
Realistic demo data for the last 90 days: customers, appointments with a
plausible mix of outcomes, pending notifications and risk profiles.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import delete, select

from . import config
from .auth_models import User, UserRole
from .db import db_session, utcnow
from .models import (
    Appointment,
    AppointmentAddon,
    AppointmentStatus,
    CustomerRisk,
    Employee,
    Notification,
    NotificationType,
    Service,
    ServiceEmployee,
    WaitlistEntry,
)
from .risk import update_all_customer_risks
from .scheduling import day_slots, parse_hm, to_local, to_utc
from .seed import seed_base
from .services import init_db

logger = logging.getLogger(__name__)

# =========================
# Generation settings
# =========================
RANDOM_SEED = 42
CUSTOMERS_COUNT = 60
DAYS_BACK = 90

# Footfall by weekday (0=Mon...6=Sun)
FOOTFALL = {
    0: 0.70,
    1: 0.95,
    2: 1.00,
    3: 1.05,
    4: 1.20,
    5: 1.30,
    6: 0.00,  # closed
}

# Share of customers that tend to cancel or not show up
UNRELIABLE_SHARE = 0.15


@dataclass(frozen=True)
class Busy:
    start: datetime
    end: datetime


def _random_email(first: str, last: str) -> str:
    domains = ["mail.co.uk", "gmail.com", "outlook.com", "icloud.com"]
    return f"{first.lower()}.{last.lower()}{random.randint(1, 9999)}@{random.choice(domains)}"


def reset_db() -> None:
    """Delete bookings and customers (schema and catalogue are kept)."""
    with db_session() as s:
        # FK order
        s.execute(delete(Notification))
        s.execute(delete(WaitlistEntry))
        s.execute(delete(AppointmentAddon))
        s.execute(delete(Appointment))
        s.execute(delete(CustomerRisk))
        s.execute(delete(User).where(User.role == UserRole.CLIENT))


def seed_customers() -> list[str]:
    firsts = [
        "Oliver", "George", "Harry", "Jack", "Noah", "Leo", "Arthur", "Oscar",
        "Amelia", "Olivia", "Isla", "Ava", "Mia", "Ivy", "Lily", "Grace",
    ]
    lasts = [
        "Smith", "Jones", "Taylor", "Brown", "Williams", "Wilson", "Johnson", "Davies",
        "Patel", "Wright", "Walker", "Hughes", "Green", "Hall", "Clarke",
    ]
    ids: list[str] = []
    with db_session() as s:
        for _ in range(CUSTOMERS_COUNT):
            first, last = random.choice(firsts), random.choice(lasts)
            u = User(name=f"{first} {last}", email=_random_email(first, last), role=UserRole.CLIENT)
            s.add(u)
            s.flush()
            ids.append(u.id)
    return ids


def _status_for(day: date, today: date, unreliable: bool) -> tuple[AppointmentStatus, bool]:
    """(status, cancelled late) coherent with the appointment being in the past or not."""
    cancel_p, no_show_p = (0.30, 0.15) if unreliable else (0.06, 0.02)
    r = random.random()

    if day < today:
        if r < cancel_p:
            return AppointmentStatus.CANCELLED, random.random() < 0.5
        if r < cancel_p + no_show_p:
            return AppointmentStatus.NO_SHOW, False
        return AppointmentStatus.COMPLETED, False
    if r < cancel_p:
        return AppointmentStatus.CANCELLED, random.random() < 0.5
    return AppointmentStatus.CONFIRMED, False


def generate_appointments(customer_ids: list[str], today: date) -> int:
    tz = config.TIMEZONE
    unreliable = set(random.sample(customer_ids, k=max(1, int(len(customer_ids) * UNRELIABLE_SHARE))))
    labels = day_slots(config.OPENING_TIME, config.LAST_SLOT_TIME, config.SLOT_INTERVAL_MINUTES)
    now = utcnow()
    created = 0

    with db_session() as s:
        employees = list(s.scalars(select(Employee).where(Employee.is_active.is_(True))))
        services = {x.id: x for x in s.scalars(select(Service).where(Service.is_active.is_(True)))}
        qualified: dict[str, list[str]] = {}
        for link in s.scalars(select(ServiceEmployee)):
            if link.service_id in services:
                qualified.setdefault(link.employee_id, []).append(link.service_id)

        if not employees or not services:
            raise RuntimeError("Missing base data (services/employees). Run seed_base first.")

        base_occupancy = 0.45
        day = today - timedelta(days=DAYS_BACK)
        end_day = today + timedelta(days=14)

        while day <= end_day:
            factor = FOOTFALL.get(day.weekday(), 1.0)
            if factor <= 0:
                day += timedelta(days=1)
                continue

            occupancy = min(0.9, max(0.15, base_occupancy * factor + random.uniform(-0.08, 0.08)))
            if day > today:
                occupancy *= 0.5

            for e in employees:
                service_ids = qualified.get(e.id)
                if not service_ids:
                    continue

                timeline: list[Busy] = []
                for label in labels:
                    if random.random() > occupancy:
                        continue

                    svc = services[random.choice(service_ids)]
                    start = to_utc(datetime.combine(day, parse_hm(label)), tz)
                    end = start + timedelta(minutes=svc.duration)

                    # no overlap per employee
                    if any(b.start < end and b.end > start for b in timeline):
                        continue

                    client_id = random.choice(customer_ids)
                    status, late = _status_for(day, today, client_id in unreliable)

                    app = Appointment(
                        client_id=client_id,
                        employee_id=e.id,
                        service_id=svc.id,
                        start_at=start,
                        status=status,
                        total_price=svc.price,
                        created_at=start - timedelta(days=random.randint(2, 21)),
                        notes=random.choice([None, None, "First visit.", "Prefers quiet appointments."]),
                    )
                    if status == AppointmentStatus.CANCELLED:
                        app.cancelled_by = client_id
                        app.cancelled_by_role = UserRole.CLIENT
                        app.cancellation_reason = random.choice(["Schedule conflict", "Feeling unwell", "Other"])
                        app.cancelled_at = min(
                            now,
                            start - (timedelta(hours=random.randint(1, 20)) if late else timedelta(days=random.randint(2, 10))),
                        )
                    s.add(app)

                    # cancelled slots stay free
                    if status != AppointmentStatus.CANCELLED:
                        timeline.append(Busy(start, end))
                    created += 1

            day += timedelta(days=1)

    return created


def seed_pending_notifications(today: date) -> None:
    """Pending notifications for recent appointments, so the outbox is not empty."""
    cutoff = to_utc(datetime.combine(today - timedelta(days=2), parse_hm("00:00")), config.TIMEZONE)

    with db_session() as s:
        apps = list(s.scalars(select(Appointment).where(Appointment.start_at >= cutoff)))
        random.shuffle(apps)

        for app in apps[:60]:
            when = to_local(app.start_at, config.TIMEZONE).strftime("%d/%m/%Y %H:%M")
            if app.status == AppointmentStatus.CONFIRMED:
                s.add(
                    Notification(
                        type=NotificationType.BOOKING_CONFIRMED,
                        message=f"Appointment confirmed for {when}.",
                        recipient_id=app.client_id,
                        appointment_id=app.id,
                    )
                )
            elif app.status == AppointmentStatus.CANCELLED:
                s.add(
                    Notification(
                        type=NotificationType.CANCELLATION,
                        message=f"Appointment on {when} cancelled.",
                        recipient_id=app.client_id,
                        appointment_id=app.id,
                    )
                )


def main(reset: bool = True, seed: int = RANDOM_SEED) -> dict:
    random.seed(seed)
    init_db()

    if reset:
        reset_db()

    seed_base()
    today = to_local(utcnow(), config.TIMEZONE).date()
    customer_ids = seed_customers()
    created = generate_appointments(customer_ids, today)
    seed_pending_notifications(today)
    risks = update_all_customer_risks()

    logger.info("Demo data: %d customers, %d appointments", len(customer_ids), created)
    return {"customers": len(customer_ids), "appointments": created, "risk_profiles": risks}


if __name__ == "__main__":
    config.configure_logging()
    print(main(reset=True))
