"""
Salon booking backend.

Layout:
- config.py        : settings from environment / .env, logging setup
- db.py            : SQLAlchemy engine and sessions
- errors.py        : booking errors and their HTTP status codes
- models.py        : ORM models and enums (auth_models.py for users)
- scheduling.py    : slot grid, overlap and timezone arithmetic (no DB)
- pricing.py       : price and duration quotes for a service with addons
- workload.py      : conflict detection and workload-balanced staff recommendation
- risk.py          : customer risk scoring and booking policies
- waitlist.py      : waitlist queue, notification window, conversion to appointment
- services.py      : booking use cases (book, cancel, status changes, availability)
- search.py        : availability search from loose date/time preferences
- analytics.py     : peak hours matrix
- invoice.py       : invoice data for an appointment
- notifications.py : notification outbox
- seed.py          : base catalogue (services, addons, employees)
- demo_data.py     : 90 days of demo bookings
- api_main.py      : FastAPI app
- cli.py           : CLI standing in for external systems
"""
