from __future__ import annotations

import logging

from sqlalchemy import select

from salon.auth_models import User, UserRole
from salon.auth_security import hash_password, verify_password
from salon.db import db_session

logger = logging.getLogger(__name__)


def create_user(name: str, email: str, password: str | None = None, role: UserRole = UserRole.CLIENT) -> str:
    name = name.strip()
    email = email.strip().lower()
    if not name or not email:
        raise ValueError("Name and email are required.")

    with db_session() as s:
        exists = s.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if exists:
            raise ValueError("Email already registered.")

        u = User(
            name=name,
            email=email,
            password_hash=hash_password(password) if password else None,
            role=role,
            is_active=True,
        )
        s.add(u)
        s.flush()
        logger.info("Created %s user %s", role.value, u.id)
        return u.id


def authenticate(email: str, password: str) -> User | None:
    email = email.strip().lower()
    with db_session() as s:
        u = s.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if not u or not u.is_active or not u.password_hash:
            return None
        if not verify_password(password, u.password_hash):
            return None
        return u


def get_user_by_id(user_id: str) -> User | None:
    with db_session() as s:
        return s.get(User, user_id)


def set_role(email: str, role: UserRole) -> bool:
    email = email.strip().lower()
    with db_session() as s:
        u = s.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if not u:
            return False
        u.role = role
        logger.info("User %s is now %s", u.id, role.value)
        return True


def list_customers_flat() -> list[dict]:
    with db_session() as s:
        rows = s.execute(
            select(User.id, User.name, User.email)
            .where(User.role == UserRole.CLIENT)
            .order_by(User.name)
        ).all()
        return [{"id": r.id, "name": r.name, "email": r.email} for r in rows]
