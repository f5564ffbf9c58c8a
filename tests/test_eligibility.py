from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import Department, Porter  # noqa: E402
from eligibility import assignment_recommendations, eligible_porters  # noqa: E402
from rotation import ShiftGroupPhase  # noqa: E402

REFERENCE = datetime.date(2025, 5, 27)
PHASES = [
    ShiftGroupPhase("Day Shift A", REFERENCE, True, "day", "A"),
    ShiftGroupPhase("Day Shift B", REFERENCE, False, "day", "B"),
    ShiftGroupPhase("Night Shift A", REFERENCE, True, "night", "A"),
    ShiftGroupPhase("Night Shift B", REFERENCE, False, "night", "B"),
]


def _porter(porter_id, name, category="Regular", shift_group=None, active=True) -> Porter:
    return Porter(id=porter_id, name=name, porter_category=category, shift_group=shift_group, is_active=active)


def _department(name, category, *, support=False, minimum=1, days="") -> Department:
    return Department(
        id=100,
        name=name,
        department_category=category,
        requires_shift_support=support,
        min_porters_required=minimum,
        days_of_week=days,
        is_24_hour=category == "emergency_24h",
        display_order=1,
    )


@pytest.fixture()
def porters():
    return [
        _porter(1, "Alice", "Regular"),
        _porter(2, "bob", "Relief"),
        _porter(3, "Carol", "Supervisor"),
        _porter(4, "Dan", "Regular", "Day Shift A"),
        _porter(5, "Eve", "Regular", "Day Shift B"),
        _porter(6, "Finn", "Regular", "Night Shift A"),
        _porter(7, "Gail", "Regular", "Night Shift B"),
        _porter(8, "Hank", "Regular", active=False),
    ]


def _ids(rows):
    return [row.id for row in rows]


def test_shift_rotation_matches_category_and_relief(porters) -> None:
    department = _department("Night Shift A", "shift_rotation")
    assert department.rotation_category == "night"
    assert _ids(eligible_porters(department, porters)) == [2, 6, 7]


def test_twin_rotation_departments_share_candidates(porters) -> None:
    # Only day/night is compared, so both A and B day porters qualify for either twin.
    first = eligible_porters(_department("Day Shift A", "shift_rotation"), porters)
    second = eligible_porters(_department("Day Shift B", "shift_rotation"), porters)
    assert _ids(first) == _ids(second) == [2, 4, 5]


def test_rotation_department_without_pairing_accepts_everyone(porters) -> None:
    department = _department("Courier Rota", "shift_rotation")
    assert department.rotation_category is None
    assert _ids(eligible_porters(department, porters)) == [1, 2, 3, 4, 5, 6, 7]


def test_pts_departments_pair_with_day_shift(porters) -> None:
    department = _department("PTS B", "shift_rotation")
    assert (department.rotation_category, department.group_label) == ("day", "B")
    assert _ids(eligible_porters(department, porters)) == [2, 4, 5]


def test_relief_department_only_takes_relief(porters) -> None:
    assert _ids(eligible_porters(_department("Relief Pool", "relief"), porters)) == [2]


def test_standard_hours_takes_regular_and_relief(porters) -> None:
    rows = eligible_porters(_department("Pharmacy", "standard_hours"), porters)
    assert _ids(rows) == [1, 2, 4, 5, 6, 7]


def test_on_demand_takes_any_active_porter(porters) -> None:
    rows = eligible_porters(_department("Ad-Hoc", "on_demand"), porters)
    assert 3 in _ids(rows)
    assert 8 not in _ids(rows)


def test_excludes_already_assigned(porters) -> None:
    rows = eligible_porters(_department("Pharmacy", "standard_hours"), porters, already_assigned=[1, 4])
    assert _ids(rows) == [2, 5, 6, 7]


def test_sorted_by_name_case_insensitive(porters) -> None:
    rows = eligible_porters(_department("Pharmacy", "standard_hours"), porters)
    assert [row.name for row in rows][:2] == ["Alice", "bob"]


def test_emergency_with_support_adds_working_groups_once() -> None:
    pool = [
        _porter(1, "Ann", "Regular"),
        _porter(2, "Ben", "Relief"),
        _porter(3, "Cat", "Supervisor", "Day Shift A"),
        _porter(4, "Del", "Regular", "Day Shift A"),
        _porter(5, "Eli", "Supervisor", "Day Shift B"),
        _porter(6, "Fay", "Supervisor", "Night Shift A"),
    ]
    department = _department("A&E", "emergency_24h", support=True)
    rows = eligible_porters(department, pool, REFERENCE, phases=PHASES)
    ids = _ids(rows)
    assert len(ids) == len(set(ids))
    assert sorted(ids) == [1, 2, 3, 4, 6]


def test_emergency_without_date_uses_direct_staff_only() -> None:
    pool = [_porter(1, "Ann", "Regular"), _porter(3, "Cat", "Supervisor", "Day Shift A")]
    department = _department("A&E", "emergency_24h", support=True)
    assert _ids(eligible_porters(department, pool, None, phases=PHASES)) == [1]


def test_shift_support_on_a_date_needs_phases() -> None:
    pool = [_porter(1, "Ann", "Regular"), _porter(3, "Cat", "Supervisor", "Day Shift A")]
    department = _department("A&E", "emergency_24h", support=True)
    with pytest.raises(ValueError, match="phases are required"):
        eligible_porters(department, pool, REFERENCE)
    unsupported = _department("A&E", "emergency_24h")
    assert _ids(eligible_porters(unsupported, pool, REFERENCE)) == [1]


def test_recommendations_split_standard_hours(porters) -> None:
    department = _department("Pharmacy", "standard_hours", days="1,2,3,4,5")
    eligible = eligible_porters(department, porters)
    picks = assignment_recommendations(department, eligible)
    assert _ids(picks["recommended"]) == [1, 4, 5, 6, 7]
    assert _ids(picks["additional"]) == [2]
    assert picks["notes"][0].startswith("Operating Mon, Tue, Wed, Thu, Fri")


def test_recommendations_on_demand_uses_minimum(porters) -> None:
    department = _department("Ad-Hoc", "on_demand", minimum=2)
    eligible = eligible_porters(department, porters)
    picks = assignment_recommendations(department, eligible)
    assert len(picks["recommended"]) == 2
    assert len(picks["additional"]) == len(eligible) - 2
    assert picks["notes"] == ["On-demand departments operate as needed"]
