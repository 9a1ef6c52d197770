from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from . import config
from .auth_models import User
from .db import db_session, utcnow
from .errors import BookingError, NotFoundError, PermissionDeniedError, SlotUnavailableError
from .models import (
    Appointment,
    AppointmentAddon,
    AppointmentStatus,
    Employee,
    NotificationType,
    Service,
    WaitlistEntry,
    WaitlistStatus,
)
from .notifications import enqueue
from .pricing import active_addons, quote
from .risk import refresh_risk_quietly
from .scheduling import to_local
from .workload import has_conflict

logger = logging.getLogger(__name__)

ACTIVE_WAITLIST = (WaitlistStatus.WAITING, WaitlistStatus.NOTIFIED)


@dataclass(frozen=True)
class WaitlistResult:
    ok: bool
    message: str
    entry_id: str | None = None
    appointment_id: str | None = None
    position: int | None = None


def _fmt(utc: datetime) -> str:
    return to_local(utc, config.TIMEZONE).strftime("%d/%m/%Y %H:%M")


def entry_to_dict(e: WaitlistEntry) -> dict:
    return {
        "id": e.id,
        "client_id": e.client_id,
        "service_id": e.service_id,
        "service_title": e.service.title,
        "employee_id": e.employee_id,
        "employee_name": e.employee.name,
        "requested_at": to_local(e.requested_at, config.TIMEZONE).isoformat(),
        "duration": e.duration,
        "position": e.position,
        "status": e.status.value,
        "expires_at": e.expires_at.isoformat(),
        "notification_expires_at": e.notification_expires_at.isoformat() if e.notification_expires_at else None,
        "selected_addon_ids": list(e.selected_addon_ids or []),
        "total_price": e.total_price,
        "converted_appointment_id": e.converted_appointment_id,
    }


# =========================
# Session-level helpers
# =========================
def join_waitlist(
    s: Session,
    client_id: str,
    service_id: str,
    employee_id: str,
    requested_at: datetime,
    duration: int,
    addon_ids: Sequence[str],
    total_price: float | None,
    now: datetime,
) -> WaitlistEntry:
    slot = and_(
        WaitlistEntry.service_id == service_id,
        WaitlistEntry.employee_id == employee_id,
        WaitlistEntry.requested_at == requested_at,
        WaitlistEntry.status.in_(ACTIVE_WAITLIST),
    )

    duplicate = s.execute(
        select(WaitlistEntry.id).where(and_(slot, WaitlistEntry.client_id == client_id)).limit(1)
    ).first()
    if duplicate:
        raise BookingError("You are already on the waitlist for this time slot")

    ahead = s.execute(select(func.count(WaitlistEntry.id)).where(slot)).scalar_one()

    entry = WaitlistEntry(
        client_id=client_id,
        service_id=service_id,
        employee_id=employee_id,
        requested_at=requested_at,
        duration=duration,
        position=ahead + 1,
        status=WaitlistStatus.WAITING,
        expires_at=now + timedelta(days=config.WAITLIST_ENTRY_TTL_DAYS),
        selected_addon_ids=list(addon_ids),
        total_price=total_price,
        created_at=now,
    )
    s.add(entry)
    s.flush()

    enqueue(
        s,
        NotificationType.WAITLIST_JOINED,
        f"You are number {entry.position} on the waitlist for {_fmt(requested_at)}: "
        "we will let you know when the slot frees up.",
        recipient_id=client_id,
    )
    logger.info("Client %s joined waitlist %s at position %d", client_id, entry.id, entry.position)
    return entry


def notify_next(
    s: Session,
    service_id: str,
    employee_id: str,
    requested_at: datetime,
    now: datetime,
) -> WaitlistEntry | None:
    """
    A slot freed up: the first waiting entry (lowest position, then oldest)
    gets a limited window to confirm.
    """
    q = (
        select(WaitlistEntry)
        .where(
            and_(
                WaitlistEntry.service_id == service_id,
                WaitlistEntry.employee_id == employee_id,
                WaitlistEntry.requested_at == requested_at,
                WaitlistEntry.status == WaitlistStatus.WAITING,
                WaitlistEntry.expires_at >= now,
            )
        )
        .order_by(WaitlistEntry.position.asc(), WaitlistEntry.created_at.asc())
        .limit(1)
    )
    entry = s.scalars(q).first()
    if not entry:
        return None

    entry.status = WaitlistStatus.NOTIFIED
    entry.notification_sent_at = now
    entry.notification_expires_at = now + timedelta(minutes=config.WAITLIST_NOTIFICATION_TTL_MINUTES)

    enqueue(
        s,
        NotificationType.WAITLIST_SLOT_AVAILABLE,
        f"A slot is available on {_fmt(requested_at)}: confirm within "
        f"{config.WAITLIST_NOTIFICATION_TTL_MINUTES} minutes to book it.",
        recipient_id=entry.client_id,
    )
    logger.info("Waitlist entry %s notified", entry.id)
    return entry


def _get_owned(s: Session, entry_id: str, client_id: str | None) -> WaitlistEntry:
    entry = s.get(WaitlistEntry, entry_id)
    if not entry:
        raise NotFoundError("Waitlist entry not found")
    if client_id is not None and entry.client_id != client_id:
        raise PermissionDeniedError("You can only manage your own waitlist entries")
    return entry


# =========================
# Use cases
# =========================
def add_to_waitlist(
    client_id: str,
    service_id: str,
    employee_id: str,
    requested_at: datetime,
    addon_ids: Sequence[str] = (),
    now: datetime | None = None,
) -> WaitlistResult:
    now = now or utcnow()
    with db_session() as s:
        if not s.get(User, client_id):
            raise NotFoundError("Client not found")
        service = s.get(Service, service_id)
        if not service:
            raise NotFoundError("Service not found")
        if not s.get(Employee, employee_id):
            raise NotFoundError("Employee not found")

        q = quote(s, service, addon_ids)
        entry = join_waitlist(
            s, client_id, service_id, employee_id, requested_at, q.total_duration, q.addon_ids, q.total_price, now
        )
        return WaitlistResult(True, "Added to the waitlist.", entry_id=entry.id, position=entry.position)


def list_waitlist_entries(
    service_id: str | None = None,
    employee_id: str | None = None,
    status: WaitlistStatus | None = None,
) -> list[dict]:
    q = select(WaitlistEntry)
    if service_id:
        q = q.where(WaitlistEntry.service_id == service_id)
    if employee_id:
        q = q.where(WaitlistEntry.employee_id == employee_id)
    if status:
        q = q.where(WaitlistEntry.status == status)
    q = q.order_by(WaitlistEntry.requested_at.asc(), WaitlistEntry.position.asc(), WaitlistEntry.created_at.asc())

    with db_session() as s:
        return [entry_to_dict(e) for e in s.scalars(q)]


def list_customer_waitlist(client_id: str) -> list[dict]:
    q = (
        select(WaitlistEntry)
        .where(and_(WaitlistEntry.client_id == client_id, WaitlistEntry.status.in_(ACTIVE_WAITLIST)))
        .order_by(WaitlistEntry.requested_at.asc(), WaitlistEntry.position.asc())
    )
    with db_session() as s:
        return [entry_to_dict(e) for e in s.scalars(q)]


def notify_next_in_waitlist(
    service_id: str,
    employee_id: str,
    requested_at: datetime,
    now: datetime | None = None,
) -> WaitlistResult:
    with db_session() as s:
        entry = notify_next(s, service_id, employee_id, requested_at, now or utcnow())
        if not entry:
            return WaitlistResult(False, "No one in waitlist for this time slot")
        return WaitlistResult(True, "Next customer notified.", entry_id=entry.id, position=entry.position)


def confirm_waitlist_booking(
    entry_id: str,
    client_id: str | None = None,
    now: datetime | None = None,
) -> WaitlistResult:
    """
    The notified customer takes the slot:
    - expired window: entry expires and the next customer is notified
    - otherwise a confirmed appointment is created with the selected addons
    """
    now = now or utcnow()
    with db_session() as s:
        entry = _get_owned(s, entry_id, client_id)

        if entry.status != WaitlistStatus.NOTIFIED:
            raise BookingError("Waitlist entry is not in notified status")

        if entry.notification_expires_at and now > entry.notification_expires_at:
            entry.status = WaitlistStatus.EXPIRED
            notify_next(s, entry.service_id, entry.employee_id, entry.requested_at, now)
            logger.info("Waitlist entry %s expired before confirmation", entry.id)
            return WaitlistResult(
                False,
                "Notification has expired. The slot has been offered to the next person in queue.",
                entry_id=entry.id,
            )

        if has_conflict(s, entry.employee_id, entry.requested_at, entry.duration):
            raise SlotUnavailableError("The time slot is no longer available")

        app = Appointment(
            client_id=entry.client_id,
            service_id=entry.service_id,
            employee_id=entry.employee_id,
            start_at=entry.requested_at,
            status=AppointmentStatus.CONFIRMED,
            total_price=entry.total_price,
            notes="Booked from waitlist.",
        )
        s.add(app)
        for addon in active_addons(s, entry.service_id, entry.selected_addon_ids or []):
            app.addons.append(AppointmentAddon(addon_id=addon.id))
        s.flush()

        entry.status = WaitlistStatus.CONFIRMED
        entry.converted_appointment_id = app.id
        entry.converted_at = now

        enqueue(
            s,
            NotificationType.WAITLIST_CONFIRMED,
            f"Your waitlist booking for {_fmt(entry.requested_at)} is confirmed.",
            recipient_id=entry.client_id,
            appointment_id=app.id,
        )
        result = WaitlistResult(True, "Appointment confirmed.", entry_id=entry.id, appointment_id=app.id)
        customer_id = entry.client_id

    logger.info("Waitlist entry %s converted to appointment %s", entry_id, result.appointment_id)
    refresh_risk_quietly(customer_id, now=now)
    return result


def cancel_waitlist_entry(
    entry_id: str,
    client_id: str | None = None,
    now: datetime | None = None,
) -> WaitlistResult:
    now = now or utcnow()
    with db_session() as s:
        entry = _get_owned(s, entry_id, client_id)

        if entry.status == WaitlistStatus.CONFIRMED:
            raise BookingError("Cannot cancel confirmed waitlist entry")

        was_notified = entry.status == WaitlistStatus.NOTIFIED
        entry.status = WaitlistStatus.CANCELLED

        # the turn passes to the next customer
        if was_notified:
            notify_next(s, entry.service_id, entry.employee_id, entry.requested_at, now)

        return WaitlistResult(True, "Waitlist entry cancelled.", entry_id=entry.id)


def cleanup_expired_entries(now: datetime | None = None) -> int:
    """Expire stale entries; expired notified entries hand the slot to the next customer."""
    now = now or utcnow()
    with db_session() as s:
        expired = s.scalars(
            select(WaitlistEntry).where(
                and_(
                    WaitlistEntry.status.in_(ACTIVE_WAITLIST),
                    or_(
                        WaitlistEntry.expires_at < now,
                        and_(
                            WaitlistEntry.status == WaitlistStatus.NOTIFIED,
                            WaitlistEntry.notification_expires_at < now,
                        ),
                    ),
                )
            )
        ).all()

        handoffs = []
        for entry in expired:
            if entry.status == WaitlistStatus.NOTIFIED:
                handoffs.append((entry.service_id, entry.employee_id, entry.requested_at))
            entry.status = WaitlistStatus.EXPIRED
        s.flush()

        for service_id, employee_id, requested_at in handoffs:
            notify_next(s, service_id, employee_id, requested_at, now)

        count = len(expired)

    logger.info("Waitlist cleanup: %d expired entries", count)
    return count
