from __future__ import annotations


class BookingError(ValueError):
    """Invalid request against the booking rules (HTTP 400)."""

    status_code = 400


class NotFoundError(BookingError):
    status_code = 404


class PermissionDeniedError(BookingError):
    status_code = 403


class SlotUnavailableError(BookingError):
    """The employee already has an active appointment overlapping the slot."""

    status_code = 409
