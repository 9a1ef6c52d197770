from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from conftest import NOW, at
from salon.auth_models import UserRole
from salon.models import AppointmentStatus, RiskLevel
from salon.risk import (
    RiskFactors,
    calculate_risk_score,
    compute_booking_metrics,
    determine_risk_level,
    get_customer_risk,
    get_risk_mitigation,
    list_customers_with_risk,
    list_high_risk_customers,
    mitigation_for,
    normalize_booking_frequency,
    risk_statistics,
    update_admin_notes,
    update_all_customer_risks,
    update_customer_risk,
)
from salon.services import book_appointment, cancel_appointment


def _factors(**kw):
    base = dict(
        cancellation_rate=0.0,
        no_show_rate=0.0,
        last_minute_cancel_rate=0.0,
        consecutive_cancellations=0,
        average_booking_frequency=None,
        total_bookings=0,
    )
    base.update(kw)
    return RiskFactors(**base)


def _appt(status, start, role=None, cancelled_at=None):
    return SimpleNamespace(
        status=status,
        start_at=start,
        cancelled_by_role=role,
        cancelled_at=cancelled_at,
        updated_at=cancelled_at or start,
    )


@pytest.mark.parametrize(
    "frequency,expected",
    [(None, 50), (0, 50), (0.5, 10), (1, 10), (5, 20), (30, 40), (60, 70), (120, 90)],
)
def test_booking_frequency_normalisation(frequency, expected):
    assert normalize_booking_frequency(frequency) == expected


@pytest.mark.parametrize(
    "score,level",
    [(0, RiskLevel.LOW), (19.9, RiskLevel.LOW), (20, RiskLevel.MEDIUM), (40, RiskLevel.HIGH), (60, RiskLevel.VERY_HIGH)],
)
def test_risk_levels(score, level):
    assert determine_risk_level(score) == level


def test_new_customer_scores_low():
    result = calculate_risk_score(_factors())
    assert result.risk_score == 5
    assert result.risk_level == RiskLevel.LOW
    assert result.recommendations == ["Customer is reliable - no special measures needed"]


def test_single_last_minute_cancellation_is_high_risk():
    result = calculate_risk_score(
        _factors(cancellation_rate=1.0, last_minute_cancel_rate=1.0, consecutive_cancellations=1, total_bookings=1)
    )
    # 30 + 20 + 3 + 5
    assert result.risk_score == 58
    assert result.risk_level == RiskLevel.HIGH
    assert "Require manual approval for new bookings" in result.recommendations
    assert "Require cancellation fees" in result.recommendations


def test_consecutive_cancellations_are_capped():
    capped = calculate_risk_score(_factors(consecutive_cancellations=5))
    beyond = calculate_risk_score(_factors(consecutive_cancellations=9))
    assert capped.risk_score == beyond.risk_score == 20


def test_mitigation_policies():
    assert mitigation_for(RiskLevel.VERY_HIGH) == (True, True, 7)
    assert mitigation_for(RiskLevel.HIGH) == (True, False, 14)
    assert mitigation_for(RiskLevel.MEDIUM) == (False, False, None)
    assert mitigation_for(RiskLevel.LOW) == (False, False, None)


def test_metrics_from_history():
    now = datetime(2030, 3, 1)
    history = [
        _appt(AppointmentStatus.COMPLETED, datetime(2030, 1, 1, 10)),
        _appt(AppointmentStatus.COMPLETED, datetime(2030, 1, 11, 10)),
        _appt(
            AppointmentStatus.CANCELLED,
            datetime(2030, 1, 20, 10),
            role=UserRole.CLIENT,
            cancelled_at=datetime(2030, 1, 20, 8),
        ),
        _appt(
            AppointmentStatus.CANCELLED,
            datetime(2030, 1, 25, 10),
            role=UserRole.CLIENT,
            cancelled_at=datetime(2030, 1, 20, 9),
        ),
        # the salon cancelled this one: not held against the customer
        _appt(AppointmentStatus.CANCELLED, datetime(2030, 2, 1, 10), role=UserRole.ADMIN),
        _appt(AppointmentStatus.NO_SHOW, datetime(2030, 2, 5, 10)),
        # confirmed but in the past: counted as a no-show
        _appt(AppointmentStatus.CONFIRMED, datetime(2030, 2, 10, 10)),
        _appt(AppointmentStatus.CONFIRMED, datetime(2030, 3, 10, 10)),
    ]
    m = compute_booking_metrics(history, now)

    assert m.total_bookings == 8
    assert m.completed_bookings == 2
    assert m.cancelled_bookings == 2
    assert m.no_show_bookings == 2
    assert m.last_minute_cancellations == 1
    assert m.cancellation_rate == pytest.approx(2 / 8)
    assert m.last_minute_cancel_rate == pytest.approx(0.5)
    assert m.consecutive_cancellations == 2
    # completed + confirmed: Jan 1 -> Mar 10 over 3 gaps
    assert m.average_booking_frequency == pytest.approx(68 / 3)
    assert m.last_booking_date == datetime(2030, 3, 10, 10)


def test_metrics_without_history():
    m = compute_booking_metrics([], NOW)
    assert m.total_bookings == 0
    assert m.cancellation_rate == 0.0
    assert m.average_booking_frequency is None


# =========================
# Persistence
# =========================
def test_default_profile_for_customer_without_bookings(salon):
    risk = get_customer_risk(salon.carol, now=NOW)
    assert risk["risk_level"] == "low"
    assert risk["risk_score"] == 0
    assert risk["requires_approval"] is False


def test_unknown_customer_has_no_profile(salon):
    assert get_customer_risk("missing") is None
    assert update_customer_risk("missing") is None
    assert get_risk_mitigation("missing") is None


def test_last_minute_cancellation_triggers_approval(salon):
    booked = book_appointment(salon.carol, salon.haircut, at(20), employee_id=salon.alice, now=NOW)
    cancel_appointment(booked.appointment_id, salon.carol, "Running late", now=NOW)

    risk = get_customer_risk(salon.carol, now=NOW)
    assert risk["risk_level"] == "high"
    assert risk["last_minute_cancellations"] == 1
    assert risk["requires_approval"] is True
    assert risk["max_advance_booking_days"] == 14

    mitigation = get_risk_mitigation(salon.carol, now=NOW)
    assert mitigation.requires_approval is True
    assert mitigation.deposit_required is False


def test_risk_listing_and_statistics(salon):
    booked = book_appointment(salon.carol, salon.haircut, at(20), employee_id=salon.alice, now=NOW)
    cancel_appointment(booked.appointment_id, salon.carol, "Running late", now=NOW)
    book_appointment(salon.dave, salon.haircut, at(11), now=NOW)

    assert update_all_customer_risks(now=NOW) == 2

    everyone = list_customers_with_risk(now=NOW)
    assert [r["user"]["name"] for r in everyone] == ["Carol", "Dave"]

    high = list_high_risk_customers(now=NOW)
    assert [r["user_id"] for r in high] == [salon.carol]

    stats = risk_statistics()
    assert stats["high"] == 1
    assert stats["low"] == 1
    assert stats["total"] == 2


def test_admin_notes(salon):
    risk = update_admin_notes(salon.dave, "Prefers mornings", now=NOW)
    assert risk["admin_notes"] == "Prefers mornings"
    assert get_customer_risk(salon.dave, now=NOW + timedelta(days=1))["admin_notes"] == "Prefers mornings"
