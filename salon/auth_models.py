from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from salon.db import Base, utcnow


def new_uuid() -> str:
    return str(uuid.uuid4())


class UserRole(enum.Enum):
    CLIENT = "client"
    STAFF = "staff"
    ADMIN = "admin"


class User(Base):
    """
    Application user.
    - email is unique and stored lower-cased
    - password_hash uses bcrypt (passlib); walk-in customers have none and cannot log in
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), default=UserRole.CLIENT, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"User({self.email}, {self.role.value})"
