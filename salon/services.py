from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Sequence

from sqlalchemy import and_, func, select, update
from sqlalchemy.orm import Session

from . import config
from .auth_models import User, UserRole
from .auth_service import create_user
from .db import Base, db_session, engine, utcnow
from .errors import BookingError, NotFoundError, PermissionDeniedError, SlotUnavailableError
from .models import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentAddon,
    AppointmentStatus,
    Employee,
    NotificationType,
    Service,
    ServiceAddon,
    ServiceEmployee,
    WaitlistEntry,
)
from .notifications import enqueue
from .pricing import PriceQuote, quote
from .risk import mitigation_of, refresh_risk_quietly, get_customer_risk
from .scheduling import build_day_availability, local_day_bounds, suggest_slots, to_local
from .waitlist import join_waitlist, notify_next
from .workload import active_intervals, has_conflict, ranked_employees

logger = logging.getLogger(__name__)


# =========================
# Bootstrap DB
# =========================
def init_db() -> None:
    """Create tables if they do not exist."""
    Base.metadata.create_all(bind=engine)


# =========================
# Helper / DTO
# =========================
@dataclass(frozen=True)
class BookingOutcome:
    ok: bool
    appointment_id: str | None
    waitlisted: bool
    message: str
    status: str | None = None
    employee_id: str | None = None
    total_price: float | None = None
    deposit_required: bool = False
    waitlist_entry_id: str | None = None
    waitlist_position: int | None = None

    def as_dict(self) -> dict:
        return asdict(self)


def _fmt(utc: datetime) -> str:
    return to_local(utc, config.TIMEZONE).strftime("%d/%m/%Y %H:%M")


def appointment_to_dict(a: Appointment) -> dict:
    tz = config.TIMEZONE
    return {
        "id": a.id,
        "client": {"id": a.client.id, "name": a.client.name, "email": a.client.email},
        "employee": {"id": a.employee.id, "name": a.employee.name},
        "service": {
            "id": a.service.id,
            "title": a.service.title,
            "price": a.service.price,
            "duration": a.service.duration,
        },
        "addons": [
            {"id": aa.addon.id, "name": aa.addon.name, "price": aa.addon.price, "duration": aa.addon.duration}
            for aa in a.addons
        ],
        "start": to_local(a.start_at, tz).isoformat(),
        "end": to_local(a.end_at, tz).isoformat(),
        "duration": a.duration_minutes,
        "status": a.status.value,
        "total_price": a.total_price,
        "notes": a.notes,
        "cancellation_reason": a.cancellation_reason,
        "cancelled_by_role": a.cancelled_by_role.value if a.cancelled_by_role else None,
    }


# =========================
# Catalogue CRUD
# =========================
def create_service(title: str, price: float, duration: int, description: str | None = None) -> str:
    if price < 0 or duration <= 0:
        raise BookingError("Price must be non-negative and duration positive.")
    if duration > config.MAX_APPOINTMENT_MINUTES:
        raise BookingError(f"Duration cannot exceed {config.MAX_APPOINTMENT_MINUTES} minutes.")
    with db_session() as s:
        if s.execute(select(Service.id).where(Service.title == title.strip())).first():
            raise BookingError("A service with this title already exists.")
        svc = Service(title=title.strip(), price=price, duration=duration, description=description)
        s.add(svc)
        s.flush()
        return svc.id


def create_addon(service_id: str, name: str, price: float, duration: int = 0) -> str:
    if price < 0 or duration < 0:
        raise BookingError("Price and duration must be non-negative.")
    with db_session() as s:
        service = s.get(Service, service_id)
        if not service:
            raise NotFoundError("Service not found")

        # any combination of addons must still fit the longest bookable span
        addons_total = s.execute(
            select(func.coalesce(func.sum(ServiceAddon.duration), 0)).where(
                and_(ServiceAddon.service_id == service_id, ServiceAddon.is_active.is_(True))
            )
        ).scalar_one()
        if service.duration + addons_total + duration > config.MAX_APPOINTMENT_MINUTES:
            raise BookingError(
                f"Service and addons together cannot exceed {config.MAX_APPOINTMENT_MINUTES} minutes."
            )
        addon = ServiceAddon(service_id=service_id, name=name.strip(), price=price, duration=duration)
        s.add(addon)
        s.flush()
        return addon.id


def create_employee(
    name: str,
    email: str | None = None,
    user_id: str | None = None,
    service_ids: Sequence[str] = (),
) -> str:
    with db_session() as s:
        e = Employee(name=name.strip(), email=email, user_id=user_id)
        s.add(e)
        s.flush()
        for service_id in service_ids:
            if not s.get(Service, service_id):
                raise NotFoundError("Service not found")
            s.add(ServiceEmployee(service_id=service_id, employee_id=e.id))
        return e.id


def assign_employee_to_service(employee_id: str, service_id: str) -> bool:
    """False if the employee was already qualified for the service."""
    with db_session() as s:
        if not s.get(Employee, employee_id):
            raise NotFoundError("Employee not found")
        if not s.get(Service, service_id):
            raise NotFoundError("Service not found")
        if s.get(ServiceEmployee, (service_id, employee_id)):
            return False
        s.add(ServiceEmployee(service_id=service_id, employee_id=employee_id))
        return True


def create_customer(name: str, email: str, password: str | None = None) -> str:
    return create_user(name, email, password, role=UserRole.CLIENT)


# =========================
# Queries
# =========================
def list_services_flat(active_only: bool = True) -> list[dict]:
    q = select(Service).order_by(Service.title)
    if active_only:
        q = q.where(Service.is_active.is_(True))
    with db_session() as s:
        return [
            {"id": x.id, "title": x.title, "description": x.description, "price": x.price, "duration": x.duration}
            for x in s.scalars(q)
        ]


def list_addons_flat(service_id: str) -> list[dict]:
    with db_session() as s:
        rows = s.scalars(
            select(ServiceAddon)
            .where(and_(ServiceAddon.service_id == service_id, ServiceAddon.is_active.is_(True)))
            .order_by(ServiceAddon.name)
        )
        return [{"id": a.id, "name": a.name, "price": a.price, "duration": a.duration} for a in rows]


def list_employees_flat(service_id: str | None = None) -> list[dict]:
    q = select(Employee.id, Employee.name, Employee.email).where(Employee.is_active.is_(True)).order_by(Employee.name)
    if service_id:
        q = q.join(ServiceEmployee, ServiceEmployee.employee_id == Employee.id).where(
            ServiceEmployee.service_id == service_id
        )
    with db_session() as s:
        return [{"id": r.id, "name": r.name, "email": r.email} for r in s.execute(q).all()]


def employee_for_user(user_id: str) -> str | None:
    with db_session() as s:
        return s.execute(select(Employee.id).where(Employee.user_id == user_id)).scalar_one_or_none()


def list_appointments_flat(
    employee_id: str | None = None,
    client_id: str | None = None,
    day: date | None = None,
) -> list[dict]:
    q = select(Appointment).order_by(Appointment.start_at.asc())
    if employee_id:
        q = q.where(Appointment.employee_id == employee_id)
    if client_id:
        q = q.where(Appointment.client_id == client_id)
    if day:
        start, end = local_day_bounds(day, config.TIMEZONE)
        q = q.where(and_(Appointment.start_at >= start, Appointment.start_at < end))

    with db_session() as s:
        return [appointment_to_dict(a) for a in s.scalars(q)]


def daily_agenda(employee_id: str, day: date) -> list[dict]:
    """
    Flat agenda of an employee for a local day (cancelled appointments excluded).
    """
    start, end = local_day_bounds(day, config.TIMEZONE)
    q = (
        select(Appointment)
        .where(
            and_(
                Appointment.employee_id == employee_id,
                Appointment.start_at >= start,
                Appointment.start_at < end,
                Appointment.status != AppointmentStatus.CANCELLED,
            )
        )
        .order_by(Appointment.start_at.asc())
    )
    with db_session() as s:
        return [
            {
                "start": to_local(a.start_at, config.TIMEZONE).strftime("%H:%M"),
                "end": to_local(a.end_at, config.TIMEZONE).strftime("%H:%M"),
                "status": a.status.value,
                "service": a.service.title,
                "client": a.client.name,
                "notes": a.notes,
            }
            for a in s.scalars(q)
        ]


# =========================
# Pricing & availability
# =========================
def quote_price(service_id: str, addon_ids: Sequence[str] = ()) -> PriceQuote:
    with db_session() as s:
        service = s.get(Service, service_id)
        if not service:
            raise NotFoundError("Service not found")
        return quote(s, service, addon_ids)


def _qualified_employee_ids(s: Session, service_id: str) -> list[str]:
    return list(
        s.scalars(
            select(Employee.id)
            .join(ServiceEmployee, ServiceEmployee.employee_id == Employee.id)
            .where(and_(ServiceEmployee.service_id == service_id, Employee.is_active.is_(True)))
        )
    )


def get_day_availability(
    service_id: str,
    day: date,
    addon_ids: Sequence[str] = (),
    include_suggestions: bool = False,
) -> dict:
    """
    Slot grid of a local day for a service. Each slot is compared with the
    active appointments of every qualified employee.
    """
    with db_session() as s:
        service = s.get(Service, service_id)
        if not service:
            raise NotFoundError("Service not found")

        duration = quote(s, service, addon_ids).total_duration
        employee_ids = _qualified_employee_ids(s, service_id)

        result: dict = {"date": day.isoformat(), "service_id": service_id, "duration": duration}
        if not employee_ids:
            result.update(slots=[], suggested_slots=[] if include_suggestions else None)
            return result

        day_start, day_end = local_day_bounds(day, config.TIMEZONE)
        busy = active_intervals(s, employee_ids, day_start, day_end + timedelta(minutes=duration))

    slots = build_day_availability(
        day,
        duration,
        employee_ids,
        busy,
        config.TIMEZONE,
        opening=config.OPENING_TIME,
        last_slot=config.LAST_SLOT_TIME,
        interval_minutes=config.SLOT_INTERVAL_MINUTES,
    )
    result["slots"] = [x.as_dict() for x in slots]
    result["suggested_slots"] = [x.as_dict() for x in suggest_slots(slots)] if include_suggestions else None
    return result


# =========================
# Booking (core use case)
# =========================
def book_appointment(
    client_id: str,
    service_id: str,
    start: datetime,
    employee_id: str | None = None,
    addon_ids: Sequence[str] = (),
    notes: str | None = None,
    join_waitlist_if_full: bool = True,
    now: datetime | None = None,
) -> BookingOutcome:
    """
    Use case: book an appointment (`start` is naive UTC).
    - duration and price from service + addons
    - risk policy: advance window, manual approval, deposit
    - employee: the given one (must be qualified) or the recommended one
    - slot taken: optional waitlist enrolment
    """
    now = now or utcnow()

    with db_session() as s:
        client = s.get(User, client_id)
        if not client or not client.is_active:
            raise NotFoundError("Client not found")
        service = s.get(Service, service_id)
        if not service or not service.is_active:
            raise NotFoundError("Service not found")

        if start < now:
            raise BookingError("Cannot book appointments in the past")

        q = quote(s, service, addon_ids)

        policy = mitigation_of(s, client_id, now)
        if policy.max_advance_booking_days is not None and start > now + timedelta(days=policy.max_advance_booking_days):
            raise BookingError(
                f"Bookings are limited to {policy.max_advance_booking_days} days in advance for this account"
            )

        if employee_id:
            employee = s.get(Employee, employee_id)
            if not employee or not employee.is_active:
                raise NotFoundError("Employee not found")
            if not s.get(ServiceEmployee, (service_id, employee_id)):
                raise BookingError("Employee not assigned to this service")
        else:
            ranked = ranked_employees(s, service_id, start, q.total_duration, now)
            if not ranked:
                raise BookingError("No qualified staff available for this service")
            employee_id = ranked[0].employee_id

        if has_conflict(s, employee_id, start, q.total_duration):
            if not join_waitlist_if_full:
                raise SlotUnavailableError("Time slot unavailable")

            entry = join_waitlist(
                s, client_id, service_id, employee_id, start, q.total_duration, q.addon_ids, q.total_price, now
            )
            return BookingOutcome(
                ok=True,
                appointment_id=None,
                waitlisted=True,
                message="This time slot is already booked. You have been added to the waitlist.",
                employee_id=employee_id,
                total_price=q.total_price,
                waitlist_entry_id=entry.id,
                waitlist_position=entry.position,
            )

        status = AppointmentStatus.PENDING if policy.requires_approval else AppointmentStatus.CONFIRMED
        app = Appointment(
            client_id=client_id,
            service_id=service_id,
            employee_id=employee_id,
            start_at=start,
            status=status,
            total_price=q.total_price,
            notes=notes,
        )
        s.add(app)
        for addon_id in q.addon_ids:
            app.addons.append(AppointmentAddon(addon_id=addon_id))
        s.flush()

        if status == AppointmentStatus.CONFIRMED:
            enqueue(
                s,
                NotificationType.BOOKING_CONFIRMED,
                f"Appointment confirmed for {_fmt(start)}.",
                recipient_id=client_id,
                appointment_id=app.id,
            )
            message = "Appointment confirmed."
        else:
            enqueue(
                s,
                NotificationType.BOOKING_PENDING_APPROVAL,
                f"Appointment for {_fmt(start)} received: it will be confirmed after review.",
                recipient_id=client_id,
                appointment_id=app.id,
            )
            message = "Appointment awaiting approval."

        outcome = BookingOutcome(
            ok=True,
            appointment_id=app.id,
            waitlisted=False,
            message=message,
            status=status.value,
            employee_id=employee_id,
            total_price=q.total_price,
            deposit_required=policy.deposit_required,
        )

    logger.info("Appointment %s booked (%s) for client %s", outcome.appointment_id, outcome.status, client_id)
    refresh_risk_quietly(client_id, now=now)
    return outcome


def _cancel(s: Session, app: Appointment, actor_id: str, role: UserRole, reason: str, now: datetime) -> None:
    """Cancel, notify the customer and offer the freed slot to the waitlist."""
    # completed or no-show appointments no longer hold their slot
    was_active = app.status in ACTIVE_STATUSES
    app.status = AppointmentStatus.CANCELLED
    app.cancelled_by = actor_id
    app.cancelled_by_role = role
    app.cancellation_reason = reason
    app.cancelled_at = now
    app.updated_at = now

    enqueue(
        s,
        NotificationType.CANCELLATION,
        f"Appointment on {_fmt(app.start_at)} cancelled. Reason: {reason}",
        recipient_id=app.client_id,
        appointment_id=app.id,
    )
    s.flush()

    if was_active and app.start_at > now:
        notify_next(s, app.service_id, app.employee_id, app.start_at, now)


def cancel_appointment(appointment_id: str, user_id: str, reason: str, now: datetime | None = None) -> dict:
    """
    Use case: a customer cancels one of their appointments.
    """
    if not reason or not reason.strip():
        raise BookingError("Cancellation reason is required")
    now = now or utcnow()

    with db_session() as s:
        app = s.get(Appointment, appointment_id)
        if not app:
            raise NotFoundError("Appointment not found")
        if app.client_id != user_id:
            raise PermissionDeniedError("You can only cancel your own appointments")
        if app.status == AppointmentStatus.CANCELLED:
            raise BookingError("Appointment is already cancelled")
        if app.status not in ACTIVE_STATUSES or app.start_at < now:
            raise BookingError("Cannot cancel past appointments")

        _cancel(s, app, user_id, UserRole.CLIENT, reason.strip(), now)
        data = appointment_to_dict(app)

    logger.info("Appointment %s cancelled by client %s", appointment_id, user_id)
    refresh_risk_quietly(user_id, now=now)
    return data


def update_appointment_status(
    appointment_id: str,
    status: AppointmentStatus,
    actor_id: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Use case: staff/admin changes the status of an appointment.
    Re-activating an appointment checks the slot again.
    """
    now = now or utcnow()

    with db_session() as s:
        app = s.get(Appointment, appointment_id)
        if not app:
            raise NotFoundError("Appointment not found")

        previous = app.status
        if status != previous:
            if status in ACTIVE_STATUSES and previous not in ACTIVE_STATUSES:
                if has_conflict(s, app.employee_id, app.start_at, app.duration_minutes, exclude_appointment_id=app.id):
                    raise SlotUnavailableError("Time slot unavailable")

            if status == AppointmentStatus.CANCELLED:
                _cancel(s, app, actor_id, UserRole.ADMIN, reason or "Cancelled by admin", now)
            else:
                app.status = status
                app.updated_at = now
                if status == AppointmentStatus.CONFIRMED:
                    enqueue(
                        s,
                        NotificationType.BOOKING_CONFIRMED,
                        f"Appointment confirmed for {_fmt(app.start_at)}.",
                        recipient_id=app.client_id,
                        appointment_id=app.id,
                    )
            s.flush()

        data = appointment_to_dict(app)
        client_id = app.client_id

    logger.info("Appointment %s: %s -> %s", appointment_id, previous.value, status.value)
    refresh_risk_quietly(client_id, now=now)
    return data


def delete_appointment(appointment_id: str, now: datetime | None = None) -> bool:
    now = now or utcnow()
    with db_session() as s:
        app = s.get(Appointment, appointment_id)
        if not app:
            raise NotFoundError("Appointment not found")

        client_id = app.client_id
        was_active = app.status in ACTIVE_STATUSES
        slot = (app.service_id, app.employee_id, app.start_at)

        enqueue(
            s,
            NotificationType.CANCELLATION,
            f"Appointment on {_fmt(app.start_at)} cancelled.",
            recipient_id=client_id,
        )
        # a converted waitlist entry keeps its history, not the reference
        s.execute(
            update(WaitlistEntry)
            .where(WaitlistEntry.converted_appointment_id == app.id)
            .values(converted_appointment_id=None)
        )
        s.delete(app)
        s.flush()

        if was_active and slot[2] > now:
            notify_next(s, *slot, now)

    logger.info("Appointment %s deleted", appointment_id)
    refresh_risk_quietly(client_id, now=now)
    return True


def get_appointment(appointment_id: str) -> dict:
    with db_session() as s:
        app = s.get(Appointment, appointment_id)
        if not app:
            raise NotFoundError("Appointment not found")
        return appointment_to_dict(app)


def get_appointment_with_risk(appointment_id: str, now: datetime | None = None) -> dict:
    appointment = get_appointment(appointment_id)
    return {
        "appointment": appointment,
        "customer_risk": get_customer_risk(appointment["client"]["id"], now=now),
    }
