from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, Response
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from pydantic import BaseModel, Field

from salon import config
from salon.analytics import calculate_peak_hours, default_range, format_off_peak
from salon.auth_models import User, UserRole
from salon.auth_security import create_access_token, get_subject
from salon.auth_service import authenticate, create_user, get_user_by_id
from salon.db import utcnow
from salon.errors import BookingError, PermissionDeniedError
from salon.invoice import build_invoice, check_appointment_access, render_invoice_pdf
from salon.models import AppointmentStatus, WaitlistStatus
from salon.notifications import mark_sent, pending_notifications_flat
from salon.risk import (
    get_customer_risk,
    get_risk_mitigation,
    list_customers_with_risk,
    list_high_risk_customers,
    risk_statistics,
    update_admin_notes,
    update_all_customer_risks,
    update_customer_risk,
)
from salon.scheduling import to_local, to_utc
from salon.search import search_availability
from salon.seed import seed_base
from salon.services import (
    assign_employee_to_service,
    book_appointment,
    cancel_appointment,
    create_addon,
    create_employee,
    create_service,
    daily_agenda,
    delete_appointment,
    employee_for_user,
    get_appointment,
    get_appointment_with_risk,
    get_day_availability,
    init_db,
    list_addons_flat,
    list_appointments_flat,
    list_employees_flat,
    list_services_flat,
    quote_price,
    update_appointment_status,
)
from salon.waitlist import (
    add_to_waitlist,
    cancel_waitlist_entry,
    cleanup_expired_entries,
    confirm_waitlist_booking,
    list_customer_waitlist,
    list_waitlist_entries,
)
from salon.workload import get_recommendations

logger = logging.getLogger(__name__)

# OAuth2 Bearer (Authorization: Bearer <token>)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

app = FastAPI(title="Salon Booking API", version="1.0.0")


# Startup

@app.on_event("startup")
def startup() -> None:
    # Create tables and base seed (idempotent)
    config.configure_logging()
    init_db()
    seed_base()


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


# Auth schemas

class RegisterIn(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MeOut(BaseModel):
    id: str
    name: str
    email: str
    role: str
    is_active: bool


# Domain schemas

class PriceIn(BaseModel):
    service_id: str
    addon_ids: list[str] = Field(default_factory=list)


class SearchIn(BaseModel):
    service_id: str
    date_preference: str | None = None
    time_preference: str | None = None
    addon_ids: list[str] = Field(default_factory=list)


class AppointmentIn(BaseModel):
    service_id: str
    # naive = salon local time
    start: datetime
    employee_id: str | None = None
    addon_ids: list[str] = Field(default_factory=list)
    notes: str | None = None
    join_waitlist_if_full: bool = True
    # admin only: book on behalf of a customer
    client_id: str | None = None


class CancelIn(BaseModel):
    reason: str = Field(..., min_length=1)


class StatusIn(BaseModel):
    status: AppointmentStatus
    reason: str | None = None


class WaitlistIn(BaseModel):
    service_id: str
    employee_id: str
    start: datetime
    addon_ids: list[str] = Field(default_factory=list)


class RecommendationIn(BaseModel):
    service_id: str
    start: datetime
    addon_ids: list[str] = Field(default_factory=list)
    duration: int | None = Field(default=None, gt=0)
    limit: int = Field(default=5, ge=1, le=50)


class ServiceIn(BaseModel):
    title: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    duration: int = Field(..., gt=0, le=config.MAX_APPOINTMENT_MINUTES)
    description: str | None = None


class AddonIn(BaseModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    duration: int = Field(default=0, ge=0, le=config.MAX_APPOINTMENT_MINUTES)


class EmployeeIn(BaseModel):
    name: str = Field(..., min_length=1)
    email: str | None = None
    user_id: str | None = None
    service_ids: list[str] = Field(default_factory=list)


class NotesIn(BaseModel):
    admin_notes: str


# Auth dependencies

def get_current_user(token: str = Depends(oauth2_scheme)) -> User:
    # strip stray spaces / quotes around the token
    token = token.strip().strip('"').strip("'")

    user_id = get_subject(token)
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    u = get_user_by_id(user_id)
    if not u or not u.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user")
    return u


def require_staff(user: User = Depends(get_current_user)) -> User:
    if user.role not in (UserRole.STAFF, UserRole.ADMIN):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Staff only")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != UserRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin only")
    return user


def _local_today() -> date:
    return to_local(utcnow(), config.TIMEZONE).date()


# AUTH endpoints

@app.post("/api/auth/register", response_model=dict)
def register(payload: RegisterIn) -> dict[str, Any]:
    try:
        user_id = create_user(payload.name, payload.email, payload.password)
        return {"ok": True, "user_id": user_id}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/auth/login", response_model=TokenOut)
def login(form: OAuth2PasswordRequestForm = Depends()) -> TokenOut:
    u = authenticate(form.username, form.password)
    if not u:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    token = create_access_token(subject=u.id, extra={"role": u.role.value})
    return TokenOut(access_token=token)


@app.get("/api/me", response_model=MeOut)
def me(user: User = Depends(get_current_user)) -> MeOut:
    return MeOut(id=user.id, name=user.name, email=user.email, role=user.role.value, is_active=user.is_active)


# PUBLIC endpoints (no JWT)

@app.get("/api/services")
def api_services() -> list[dict]:
    return list_services_flat()


@app.get("/api/services/{service_id}/addons")
def api_service_addons(service_id: str) -> list[dict]:
    return list_addons_flat(service_id)


@app.get("/api/employees")
def api_employees(service_id: str | None = None) -> list[dict]:
    return list_employees_flat(service_id)


@app.post("/api/addons/calculate-price")
def api_calculate_price(payload: PriceIn) -> dict[str, Any]:
    return quote_price(payload.service_id, payload.addon_ids).as_dict()


@app.get("/api/availability")
def api_availability(
    service_id: str = Query(...),
    day: date = Query(..., alias="date"),
    addon_ids: list[str] | None = Query(default=None),
    include_suggestions: bool = False,
) -> dict[str, Any]:
    return get_day_availability(service_id, day, addon_ids=addon_ids or (), include_suggestions=include_suggestions)


@app.post("/api/availability/search")
def api_availability_search(payload: SearchIn) -> dict[str, Any]:
    return search_availability(
        payload.service_id,
        payload.date_preference,
        payload.time_preference,
        today=_local_today(),
        addon_ids=payload.addon_ids,
    )


# PROTECTED endpoints (JWT)

@app.get("/api/appointments")
def api_appointments(
    day: date | None = Query(default=None, alias="date"),
    employee_id: str | None = None,
    client_id: str | None = None,
    user: User = Depends(get_current_user),
) -> list[dict]:
    """Customers see their own appointments, staff their agenda, admins everything."""
    if user.role == UserRole.ADMIN:
        return list_appointments_flat(employee_id=employee_id, client_id=client_id, day=day)
    if user.role == UserRole.STAFF:
        own = employee_for_user(user.id)
        return list_appointments_flat(employee_id=own, day=day) if own else []
    return list_appointments_flat(client_id=user.id, day=day)


@app.post("/api/appointments")
def api_book(payload: AppointmentIn, user: User = Depends(get_current_user)) -> dict[str, Any]:
    client_id = user.id
    if payload.client_id and payload.client_id != user.id:
        if user.role != UserRole.ADMIN:
            raise PermissionDeniedError("Only admins can book for other customers")
        client_id = payload.client_id

    outcome = book_appointment(
        client_id=client_id,
        service_id=payload.service_id,
        start=to_utc(payload.start, config.TIMEZONE),
        employee_id=payload.employee_id,
        addon_ids=payload.addon_ids,
        notes=payload.notes,
        join_waitlist_if_full=payload.join_waitlist_if_full,
    )
    return outcome.as_dict()


@app.get("/api/appointments/{appointment_id}")
def api_appointment(appointment_id: str, user: User = Depends(get_current_user)) -> dict[str, Any]:
    check_appointment_access(appointment_id, user.id, user.role)
    return get_appointment(appointment_id)


@app.post("/api/appointments/{appointment_id}/cancel")
def api_cancel(appointment_id: str, payload: CancelIn, user: User = Depends(get_current_user)) -> dict[str, Any]:
    return {"ok": True, "appointment": cancel_appointment(appointment_id, user.id, payload.reason)}


@app.get("/api/agenda")
def api_agenda(
    employee_id: str = Query(...),
    day: date = Query(..., alias="date"),
    user: User = Depends(require_staff),
) -> list[dict]:
    return daily_agenda(employee_id, day)


@app.get("/api/invoices/{appointment_id}", response_model=None)
def api_invoice(
    appointment_id: str,
    fmt: str = Query(default="pdf", alias="format", pattern="^(pdf|json)$"),
    user: User = Depends(get_current_user),
) -> Response | dict[str, Any]:
    """PDF attachment by default; `?format=json` returns the invoice data."""
    check_appointment_access(appointment_id, user.id, user.role)
    invoice = build_invoice(appointment_id, today=_local_today())
    if fmt == "json":
        return invoice

    return Response(
        content=render_invoice_pdf(invoice),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="invoice-{invoice["invoice_number"]}.pdf"'},
    )


@app.get("/api/waitlist")
def api_my_waitlist(user: User = Depends(get_current_user)) -> list[dict]:
    return list_customer_waitlist(user.id)


@app.post("/api/waitlist")
def api_join_waitlist(payload: WaitlistIn, user: User = Depends(get_current_user)) -> dict[str, Any]:
    result = add_to_waitlist(
        user.id,
        payload.service_id,
        payload.employee_id,
        to_utc(payload.start, config.TIMEZONE),
        addon_ids=payload.addon_ids,
    )
    return {"ok": result.ok, "message": result.message, "entry_id": result.entry_id, "position": result.position}


def _owner_scope(user: User) -> str | None:
    # admins may act on any entry
    return None if user.role == UserRole.ADMIN else user.id


@app.post("/api/waitlist/{entry_id}/confirm")
def api_confirm_waitlist(entry_id: str, user: User = Depends(get_current_user)) -> dict[str, Any]:
    result = confirm_waitlist_booking(entry_id, client_id=_owner_scope(user))
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=result.message)
    return {"ok": True, "message": result.message, "appointment_id": result.appointment_id}


@app.post("/api/waitlist/{entry_id}/cancel")
def api_cancel_waitlist(entry_id: str, user: User = Depends(get_current_user)) -> dict[str, Any]:
    result = cancel_waitlist_entry(entry_id, client_id=_owner_scope(user))
    return {"ok": result.ok, "message": result.message}


@app.get("/api/risk-assessment/check-approval")
def api_check_approval(user_id: str | None = None, user: User = Depends(get_current_user)) -> dict[str, Any]:
    target = user_id or user.id
    if target != user.id and user.role != UserRole.ADMIN:
        raise PermissionDeniedError("Forbidden")
    mitigation = get_risk_mitigation(target)
    if mitigation is None:
        raise HTTPException(status_code=404, detail="User not found")
    return mitigation.as_dict()


# ADMIN endpoints

@app.post("/api/services")
def api_create_service(payload: ServiceIn, user: User = Depends(require_admin)) -> dict[str, Any]:
    sid = create_service(payload.title, payload.price, payload.duration, payload.description)
    return {"ok": True, "service_id": sid}


@app.post("/api/services/{service_id}/addons")
def api_create_addon(service_id: str, payload: AddonIn, user: User = Depends(require_admin)) -> dict[str, Any]:
    aid = create_addon(service_id, payload.name, payload.price, payload.duration)
    return {"ok": True, "addon_id": aid}


@app.post("/api/employees")
def api_create_employee(payload: EmployeeIn, user: User = Depends(require_admin)) -> dict[str, Any]:
    eid = create_employee(payload.name, payload.email, payload.user_id, payload.service_ids)
    return {"ok": True, "employee_id": eid}


@app.post("/api/employees/{employee_id}/services/{service_id}")
def api_assign_service(employee_id: str, service_id: str, user: User = Depends(require_admin)) -> dict[str, Any]:
    return {"ok": True, "created": assign_employee_to_service(employee_id, service_id)}


@app.patch("/api/admin/appointments/{appointment_id}")
def api_update_status(appointment_id: str, payload: StatusIn, user: User = Depends(require_admin)) -> dict[str, Any]:
    return {"ok": True, "appointment": update_appointment_status(appointment_id, payload.status, user.id, payload.reason)}


@app.delete("/api/admin/appointments/{appointment_id}")
def api_delete_appointment(appointment_id: str, user: User = Depends(require_admin)) -> dict[str, Any]:
    return {"ok": delete_appointment(appointment_id)}


@app.get("/api/admin/appointments/{appointment_id}/risk")
def api_appointment_risk(appointment_id: str, user: User = Depends(require_admin)) -> dict[str, Any]:
    return get_appointment_with_risk(appointment_id)


@app.post("/api/recommendations/employee")
def api_recommend(payload: RecommendationIn, user: User = Depends(require_admin)) -> dict[str, Any]:
    duration = payload.duration or quote_price(payload.service_id, payload.addon_ids).total_duration
    recs = get_recommendations(payload.service_id, to_utc(payload.start, config.TIMEZONE), duration, limit=payload.limit)
    return {
        "recommended": recs[0].as_dict() if recs else None,
        "recommendations": [r.as_dict() for r in recs],
    }


@app.get("/api/admin/waitlist")
def api_admin_waitlist(
    service_id: str | None = None,
    employee_id: str | None = None,
    entry_status: WaitlistStatus | None = Query(default=None, alias="status"),
    user: User = Depends(require_admin),
) -> list[dict]:
    return list_waitlist_entries(service_id, employee_id, entry_status)


@app.post("/api/waitlist/cleanup")
def api_waitlist_cleanup(user: User = Depends(require_admin)) -> dict[str, Any]:
    return {"ok": True, "expired": cleanup_expired_entries()}


@app.get("/api/risk-assessment")
def api_risk_list(
    kind: str = Query(default="all", alias="type", pattern="^(all|high)$"),
    limit: int = Query(default=50, ge=1, le=500),
    user: User = Depends(require_admin),
) -> list[dict]:
    return list_high_risk_customers(limit) if kind == "high" else list_customers_with_risk(limit)


@app.post("/api/risk-assessment")
def api_risk_refresh_all(user: User = Depends(require_admin)) -> dict[str, Any]:
    return {"ok": True, "updated": update_all_customer_risks()}


@app.get("/api/risk-assessment/stats")
def api_risk_stats(user: User = Depends(require_admin)) -> dict[str, int]:
    return risk_statistics()


@app.get("/api/risk-assessment/{user_id}")
def api_risk_get(user_id: str, user: User = Depends(require_admin)) -> dict[str, Any]:
    risk = get_customer_risk(user_id)
    if risk is None:
        raise HTTPException(status_code=404, detail="User not found")
    return risk


@app.post("/api/risk-assessment/{user_id}")
def api_risk_recalculate(user_id: str, user: User = Depends(require_admin)) -> dict[str, Any]:
    risk = update_customer_risk(user_id)
    if risk is None:
        raise HTTPException(status_code=404, detail="User not found")
    return risk


@app.patch("/api/risk-assessment/{user_id}")
def api_risk_notes(user_id: str, payload: NotesIn, user: User = Depends(require_admin)) -> dict[str, Any]:
    risk = update_admin_notes(user_id, payload.admin_notes)
    if risk is None:
        raise HTTPException(status_code=404, detail="User not found")
    return risk


@app.get("/api/analytics/peak-hours")
def api_peak_hours(
    date_from: date | None = Query(default=None, alias="from"),
    date_to: date | None = Query(default=None, alias="to"),
    service_id: str | None = None,
    employee_id: str | None = None,
    user: User = Depends(require_admin),
) -> dict[str, Any]:
    default_from, default_to = default_range(_local_today())
    result = calculate_peak_hours(date_from or default_from, date_to or default_to, service_id, employee_id)
    result["off_peak_labels"] = format_off_peak(result["suggested_off_peak"])
    return result


@app.get("/api/notifications/pending")
def api_pending_notifications(limit: int = 200, user: User = Depends(require_admin)) -> list[dict]:
    return pending_notifications_flat(limit=limit)


@app.post("/api/notifications/{notification_id}/sent")
def api_mark_sent(notification_id: int, user: User = Depends(require_admin)) -> dict[str, Any]:
    return {"ok": mark_sent(notification_id)}


# CRON (shared secret)

def _check_cron_secret(authorization: str | None) -> None:
    if config.CRON_SECRET and authorization != f"Bearer {config.CRON_SECRET}":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@app.api_route("/api/cron/waitlist-cleanup", methods=["GET", "POST"])
def api_cron_waitlist_cleanup(authorization: str | None = Header(default=None)) -> dict[str, Any]:
    _check_cron_secret(authorization)
    expired = cleanup_expired_entries()
    logger.info("Cron waitlist cleanup: %d expired", expired)
    return {"ok": True, "expired": expired, "timestamp": utcnow().isoformat()}
