import os
import tempfile
from datetime import datetime
from types import SimpleNamespace

# Settings are read at import time: point them to a throwaway DB first
_DB_DIR = tempfile.mkdtemp(prefix="salon-tests-")
os.environ["SALON_DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.sqlite')}"
os.environ["SALON_TIMEZONE"] = "UTC"
os.environ["JWT_SECRET"] = "test-secret"
os.environ.pop("CRON_SECRET", None)
os.environ.pop("SALON_ADMIN_EMAIL", None)
os.environ.pop("SALON_ADMIN_PASSWORD", None)

import pytest

from salon import auth_models, models  # noqa: F401
from salon.db import Base, engine
from salon.services import create_addon, create_customer, create_employee, create_service

# Monday
NOW = datetime(2030, 1, 7, 8, 0)


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def salon():
    haircut = create_service("Haircut", 35.0, 30)
    colour = create_service("Colour", 85.0, 90)
    nails = create_service("Manicure", 30.0, 45)
    beard = create_addon(haircut, "Beard Trim", 10.0, 15)
    massage = create_addon(haircut, "Scalp Massage", 8.0, 10)

    alice = create_employee("Alice", "alice@salon.test", service_ids=[haircut, colour])
    ben = create_employee("Ben", "ben@salon.test", service_ids=[haircut])

    return SimpleNamespace(
        haircut=haircut,
        colour=colour,
        nails=nails,
        beard=beard,
        massage=massage,
        alice=alice,
        ben=ben,
        carol=create_customer("Carol", "carol@example.com"),
        dave=create_customer("Dave", "dave@example.com"),
        erin=create_customer("Erin", "erin@example.com"),
    )


def at(hour, minute=0, day=7):
    """Naive UTC datetime on January 2030."""
    return datetime(2030, 1, day, hour, minute)
