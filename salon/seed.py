from __future__ import annotations

import logging

from sqlalchemy import select

from . import config
from .auth_models import User, UserRole
from .auth_security import hash_password
from .db import db_session
from .models import Employee, Service, ServiceAddon, ServiceEmployee

logger = logging.getLogger(__name__)

SERVICES = [
    ("Haircut", "Cut and finish", 35.0, 30),
    ("Colour", "Full colour with gloss", 85.0, 90),
    ("Blow Dry", "Wash and blow dry", 25.0, 30),
    ("Manicure", "Classic manicure", 30.0, 45),
]

ADDONS = {
    "Haircut": [("Beard Trim", 10.0, 15), ("Scalp Massage", 8.0, 10)],
    "Colour": [("Toner", 20.0, 15), ("Olaplex Treatment", 25.0, 0)],
    "Manicure": [("Gel Finish", 12.0, 15)],
}

EMPLOYEES = [
    ("Alice Moore", "alice@salon.local", ["Haircut", "Blow Dry", "Colour"]),
    ("Ben Carter", "ben@salon.local", ["Haircut", "Blow Dry"]),
    ("Chloe Evans", "chloe@salon.local", ["Manicure", "Colour"]),
]


def seed_base() -> None:
    """
    Minimal data (idempotent):
    - services and their addons
    - employees and their service assignments
    - admin user, when SALON_ADMIN_EMAIL / SALON_ADMIN_PASSWORD are set
    """
    with db_session() as s:
        for title, description, price, duration in SERVICES:
            if s.execute(select(Service).where(Service.title == title)).scalar_one_or_none() is None:
                s.add(Service(title=title, description=description, price=price, duration=duration))
        s.flush()

        services = {x.title: x for x in s.scalars(select(Service))}

        for title, addons in ADDONS.items():
            svc = services[title]
            for name, price, duration in addons:
                exists = s.execute(
                    select(ServiceAddon).where(ServiceAddon.service_id == svc.id, ServiceAddon.name == name)
                ).scalar_one_or_none()
                if exists is None:
                    s.add(ServiceAddon(service_id=svc.id, name=name, price=price, duration=duration))

        for name, email, titles in EMPLOYEES:
            e = s.execute(select(Employee).where(Employee.email == email)).scalar_one_or_none()
            if e is None:
                e = Employee(name=name, email=email)
                s.add(e)
                s.flush()

            for title in titles:
                svc = services[title]
                if s.get(ServiceEmployee, (svc.id, e.id)) is None:
                    s.add(ServiceEmployee(service_id=svc.id, employee_id=e.id))

        if config.ADMIN_EMAIL and config.ADMIN_PASSWORD:
            email = config.ADMIN_EMAIL.lower()
            if s.execute(select(User).where(User.email == email)).scalar_one_or_none() is None:
                s.add(
                    User(
                        name="Admin",
                        email=email,
                        password_hash=hash_password(config.ADMIN_PASSWORD),
                        role=UserRole.ADMIN,
                    )
                )
                logger.info("Admin user %s created", email)
