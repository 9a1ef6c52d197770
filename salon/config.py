from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# SQLite file next to the package unless configured
BASE_DIR = Path(__file__).resolve().parents[1]
DATABASE_URL = os.getenv("SALON_DATABASE_URL", f"sqlite:///{BASE_DIR / 'salon.sqlite'}")
SQL_ECHO = os.getenv("SALON_SQL_ECHO", "false").lower() == "true"

LOG_LEVEL = os.getenv("SALON_LOG_LEVEL", "INFO").upper()

# Opening hours and timezone (client times are local wall-clock)
TIMEZONE = os.getenv("SALON_TIMEZONE", "Europe/London")
OPENING_TIME = os.getenv("SALON_OPENING_TIME", "09:00")
LAST_SLOT_TIME = os.getenv("SALON_LAST_SLOT_TIME", "17:30")
SLOT_INTERVAL_MINUTES = int(os.getenv("SALON_SLOT_INTERVAL_MINUTES", "30"))

# Service + addons may not exceed a day: conflict queries look back this far
MAX_APPOINTMENT_MINUTES = 24 * 60

WORKLOAD_WINDOW_DAYS = 7
MAX_WEEKLY_MINUTES = 2400  # 40 hours

WAITLIST_ENTRY_TTL_DAYS = 7
WAITLIST_NOTIFICATION_TTL_MINUTES = 15

INVOICE_DUE_DAYS = 30
BUSINESS_NAME = os.getenv("SALON_BUSINESS_NAME", "The Salon")
CONTACT_EMAIL = os.getenv("SALON_CONTACT_EMAIL")
CURRENCY_SYMBOL = os.getenv("SALON_CURRENCY_SYMBOL", "\u00a3")

# In production: set these in the environment
JWT_SECRET = os.getenv("JWT_SECRET", "CHANGE_ME_DEV_SECRET")
JWT_ALG = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "60"))

CRON_SECRET = os.getenv("CRON_SECRET")

ADMIN_EMAIL = os.getenv("SALON_ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("SALON_ADMIN_PASSWORD")


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=level or LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
