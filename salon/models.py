from __future__ import annotations

import enum
from datetime import datetime, timedelta

from sqlalchemy import JSON, Boolean, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .auth_models import User, UserRole, new_uuid
from .db import Base, utcnow


class AppointmentStatus(enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    WAITLIST = "waitlist"


# Statuses that occupy the employee's time
ACTIVE_STATUSES = (AppointmentStatus.CONFIRMED, AppointmentStatus.PENDING)
# Statuses counted in the workload window
WORKLOAD_STATUSES = (AppointmentStatus.CONFIRMED, AppointmentStatus.PENDING, AppointmentStatus.WAITLIST)


class WaitlistStatus(enum.Enum):
    WAITING = "waiting"
    NOTIFIED = "notified"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class RiskLevel(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


class NotificationType(enum.Enum):
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
    BOOKING_PENDING_APPROVAL = "BOOKING_PENDING_APPROVAL"
    CANCELLATION = "CANCELLATION"
    WAITLIST_JOINED = "WAITLIST_JOINED"
    WAITLIST_SLOT_AVAILABLE = "WAITLIST_SLOT_AVAILABLE"
    WAITLIST_CONFIRMED = "WAITLIST_CONFIRMED"


class Service(Base):
    __tablename__ = "services"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    title: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    addons: Mapped[list["ServiceAddon"]] = relationship(back_populates="service", cascade="all, delete-orphan")
    employees: Mapped[list["ServiceEmployee"]] = relationship(back_populates="service", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"Service({self.title}, {self.duration} min)"


class ServiceAddon(Base):
    __tablename__ = "service_addons"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    service_id: Mapped[str] = mapped_column(ForeignKey("services.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    service: Mapped["Service"] = relationship(back_populates="addons")


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str | None] = mapped_column(String(120), nullable=True)
    # optional staff login
    user_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    services: Mapped[list["ServiceEmployee"]] = relationship(back_populates="employee", cascade="all, delete-orphan")
    appointments: Mapped[list["Appointment"]] = relationship(back_populates="employee")

    def __repr__(self) -> str:
        return f"Employee({self.name})"


class ServiceEmployee(Base):
    __tablename__ = "service_employees"

    service_id: Mapped[str] = mapped_column(ForeignKey("services.id"), primary_key=True)
    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id"), primary_key=True)

    service: Mapped["Service"] = relationship(back_populates="employees")
    employee: Mapped["Employee"] = relationship(back_populates="services")


class Appointment(Base):
    __tablename__ = "appointments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)

    client_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id"), nullable=False, index=True)
    service_id: Mapped[str] = mapped_column(ForeignKey("services.id"), nullable=False)

    # UTC
    start_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus), default=AppointmentStatus.CONFIRMED, nullable=False
    )
    total_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    cancelled_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    cancelled_by_role: Mapped[UserRole | None] = mapped_column(Enum(UserRole), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    client: Mapped["User"] = relationship()
    employee: Mapped["Employee"] = relationship(back_populates="appointments")
    service: Mapped["Service"] = relationship()
    addons: Mapped[list["AppointmentAddon"]] = relationship(
        back_populates="appointment", cascade="all, delete-orphan"
    )

    @property
    def duration_minutes(self) -> int:
        return self.service.duration + sum(a.addon.duration for a in self.addons)

    @property
    def end_at(self) -> datetime:
        return self.start_at + timedelta(minutes=self.duration_minutes)


class AppointmentAddon(Base):
    __tablename__ = "appointment_addons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    appointment_id: Mapped[str] = mapped_column(ForeignKey("appointments.id"), nullable=False)
    addon_id: Mapped[str] = mapped_column(ForeignKey("service_addons.id"), nullable=False)

    appointment: Mapped["Appointment"] = relationship(back_populates="addons")
    addon: Mapped["ServiceAddon"] = relationship()


class WaitlistEntry(Base):
    __tablename__ = "waitlist"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    client_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    service_id: Mapped[str] = mapped_column(ForeignKey("services.id"), nullable=False)
    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id"), nullable=False)

    # UTC
    requested_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[WaitlistStatus] = mapped_column(
        Enum(WaitlistStatus), default=WaitlistStatus.WAITING, nullable=False
    )

    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    notification_sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    notification_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    selected_addon_ids: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    total_price: Mapped[float | None] = mapped_column(Float, nullable=True)

    converted_appointment_id: Mapped[str | None] = mapped_column(ForeignKey("appointments.id"), nullable=True)
    converted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    client: Mapped["User"] = relationship()
    service: Mapped["Service"] = relationship()
    employee: Mapped["Employee"] = relationship()


class CustomerRisk(Base):
    __tablename__ = "customer_risk"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, unique=True)

    total_bookings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_bookings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancelled_bookings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    no_show_bookings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_minute_cancellations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    cancellation_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    no_show_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    last_minute_cancel_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    risk_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    risk_level: Mapped[RiskLevel] = mapped_column(Enum(RiskLevel), default=RiskLevel.LOW, nullable=False)

    average_booking_frequency: Mapped[float | None] = mapped_column(Float, nullable=True)  # days
    last_booking_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_cancellation_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    consecutive_cancellations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    requires_approval: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deposit_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    max_advance_booking_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_calculated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    user: Mapped["User"] = relationship()


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[NotificationType] = mapped_column(Enum(NotificationType), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    recipient_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    # optional: notification about an appointment (no FK, the appointment may be deleted)
    appointment_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
