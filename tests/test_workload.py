from datetime import datetime

import pytest

from conftest import NOW, at
from salon.models import AppointmentStatus
from salon.services import book_appointment, update_appointment_status
from salon.workload import (
    WorkloadRecommendation,
    calculate_workload_score,
    check_time_conflict,
    get_recommendations,
    rank,
    recommend_employee,
)


def _rec(employee_id, score=0.0, free=True, last=None, name=None):
    return WorkloadRecommendation(
        employee_id=employee_id,
        employee_name=name or employee_id,
        workload_score=score,
        booked_minutes=int(score * 2400),
        max_minutes=2400,
        is_conflict_free=free,
        last_assigned_at=last,
    )


def test_rank_prefers_conflict_free_then_lower_workload():
    ranked = rank([_rec("busy", free=False), _rec("loaded", score=0.5), _rec("light", score=0.1)])
    assert [r.employee_id for r in ranked] == ["light", "loaded", "busy"]


def test_rank_ties_go_to_never_then_least_recently_assigned():
    ranked = rank(
        [
            _rec("recent", last=datetime(2030, 1, 5)),
            _rec("old", last=datetime(2029, 12, 1)),
            _rec("never"),
        ]
    )
    assert [r.employee_id for r in ranked] == ["never", "old", "recent"]


def test_rank_is_stable_by_name():
    ranked = rank([_rec("b", name="Zoe"), _rec("a", name="Amy")])
    assert [r.employee_name for r in ranked] == ["Amy", "Zoe"]


def test_workload_counts_upcoming_active_minutes(salon):
    book_appointment(salon.carol, salon.haircut, at(10), employee_id=salon.alice, addon_ids=[salon.beard], now=NOW)
    book_appointment(salon.dave, salon.colour, at(12), employee_id=salon.alice, now=NOW)
    # outside the 7 day window
    book_appointment(salon.erin, salon.haircut, at(10, day=20), employee_id=salon.alice, now=NOW)

    score = calculate_workload_score(salon.alice, now=NOW)
    assert score.booked_minutes == 45 + 90
    assert score.workload_score == pytest.approx(135 / 2400)


def test_cancelled_appointments_do_not_count(salon):
    outcome = book_appointment(salon.carol, salon.haircut, at(10), employee_id=salon.alice, now=NOW)
    update_appointment_status(outcome.appointment_id, AppointmentStatus.CANCELLED, "admin-1", now=NOW)

    assert calculate_workload_score(salon.alice, now=NOW).booked_minutes == 0
    assert check_time_conflict(salon.alice, at(10), 30) is False


def test_time_conflict_uses_half_open_intervals(salon):
    book_appointment(salon.carol, salon.haircut, at(10), employee_id=salon.alice, now=NOW)

    assert check_time_conflict(salon.alice, at(10), 30) is True
    assert check_time_conflict(salon.alice, at(9, 45), 30) is True
    assert check_time_conflict(salon.alice, at(10, 29), 5) is True
    assert check_time_conflict(salon.alice, at(9, 30), 30) is False
    assert check_time_conflict(salon.alice, at(10, 30), 30) is False
    assert check_time_conflict(salon.ben, at(10), 30) is False


def test_long_appointment_from_the_previous_day_conflicts(salon):
    book_appointment(salon.carol, salon.colour, datetime(2030, 1, 7, 23, 0), employee_id=salon.alice, now=NOW)
    assert check_time_conflict(salon.alice, datetime(2030, 1, 8, 0, 0), 30) is True


def test_recommendations_rank_qualified_staff(salon):
    book_appointment(salon.carol, salon.haircut, at(10), employee_id=salon.alice, now=NOW)

    recs = get_recommendations(salon.haircut, at(10), 30, now=NOW)
    assert [r.employee_id for r in recs] == [salon.ben, salon.alice]
    assert recs[0].is_conflict_free is True
    assert recs[1].is_conflict_free is False
    assert recs[1].as_dict()["booked_minutes"] == 30

    only_alice = get_recommendations(salon.colour, at(14), 90, now=NOW)
    assert [r.employee_id for r in only_alice] == [salon.alice]


def test_recommend_employee(salon):
    best = recommend_employee(salon.haircut, at(10), 30, now=NOW)
    assert best.employee_id == salon.alice
    assert recommend_employee(salon.nails, at(10), 45, now=NOW) is None


def test_limit(salon):
    assert len(get_recommendations(salon.haircut, at(10), 30, limit=1, now=NOW)) == 1
