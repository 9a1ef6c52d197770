from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from .db import db_session, utcnow
from .models import Notification, NotificationType


def enqueue(
    s: Session,
    kind: NotificationType,
    message: str,
    recipient_id: str | None = None,
    appointment_id: str | None = None,
) -> Notification:
    n = Notification(type=kind, message=message, recipient_id=recipient_id, appointment_id=appointment_id)
    s.add(n)
    return n


# =========================
# Outbox (read by an external delivery system)
# =========================
def pending_notifications(limit: int = 50) -> list[Notification]:
    """Notifications not yet 'sent' (sent_at is NULL)."""
    with db_session() as s:
        q = select(Notification).where(Notification.sent_at.is_(None)).order_by(Notification.created_at.asc(), Notification.id.asc()).limit(limit)
        return list(s.scalars(q))


def pending_notifications_flat(limit: int = 200) -> list[dict]:
    return [
        {
            "id": n.id,
            "type": n.type.value,
            "message": n.message,
            "recipient_id": n.recipient_id,
            "appointment_id": n.appointment_id,
            "created_at": n.created_at.isoformat(),
        }
        for n in pending_notifications(limit=limit)
    ]


def mark_sent(notification_id: int) -> bool:
    with db_session() as s:
        n = s.get(Notification, notification_id)
        if not n or n.sent_at is not None:
            return False
        n.sent_at = utcnow()
        return True
