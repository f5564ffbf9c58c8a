"""Shift rotation arithmetic.

Every shift group follows the same 8-day cycle: four working days followed by
four days off. A group's phase is anchored to a reference date on which it is
either working (cycle days 1-4 are its working days) or off (cycle days 5-8
are its working days). Everything here is pure; callers supply the phases.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from errors import InvalidDateRangeError, ShiftPatternConfigError, UnknownShiftGroupError
from shift_groups import normalize_shift_type

CYCLE_LENGTH_DAYS = 8
WORKING_DAYS_PER_CYCLE = 4


@dataclass(frozen=True)
class ShiftGroupPhase:
    group_name: str
    reference_date: datetime.date
    is_working_on_reference: bool
    shift_category: str
    group_label: Optional[str] = None


@dataclass(frozen=True)
class ShiftStatus:
    is_working: bool
    cycle_day: int
    shift_type: str

    def to_dict(self) -> Dict[str, Any]:
        return {"is_working": self.is_working, "cycle_day": self.cycle_day, "shift_type": self.shift_type}


@dataclass(frozen=True)
class WorkingGroups:
    working_group: str
    off_group: str

    def to_dict(self) -> Dict[str, str]:
        return {"working_group": self.working_group, "off_group": self.off_group}


def as_date(value) -> datetime.date:
    """Accept a date, a datetime (date part) or an ISO ``YYYY-MM-DD`` string."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, str):
        return datetime.date.fromisoformat(value.strip())
    raise TypeError(f"Expected a date, datetime or ISO date string, got {type(value).__name__}.")


def cycle_position(reference_date, target_date) -> int:
    """Return the 0-based position of ``target_date`` in the cycle anchored at ``reference_date``."""
    days_difference = (as_date(target_date) - as_date(reference_date)).days
    return ((days_difference % CYCLE_LENGTH_DAYS) + CYCLE_LENGTH_DAYS) % CYCLE_LENGTH_DAYS


def calculate_shift_status(phase: ShiftGroupPhase, target_date) -> ShiftStatus:
    position = cycle_position(phase.reference_date, target_date)
    if phase.is_working_on_reference:
        is_working = position < WORKING_DAYS_PER_CYCLE
    else:
        is_working = position >= WORKING_DAYS_PER_CYCLE
    return ShiftStatus(is_working=is_working, cycle_day=position + 1, shift_type=phase.shift_category)


def find_phase(phases: Iterable[ShiftGroupPhase], group_name: Optional[str]) -> ShiftGroupPhase:
    for phase in phases:
        if phase.group_name == group_name:
            return phase
    raise UnknownShiftGroupError(group_name or "")


def shift_status_for_group(phases: Iterable[ShiftGroupPhase], group_name: str, target_date) -> ShiftStatus:
    return calculate_shift_status(find_phase(phases, group_name), target_date)


def _category_pair(phases: Iterable[ShiftGroupPhase], shift_category: str) -> Tuple[ShiftGroupPhase, ShiftGroupPhase]:
    members = [phase for phase in phases if phase.shift_category == shift_category]
    if not members:
        raise UnknownShiftGroupError(f"{shift_category} shift")
    working = [phase for phase in members if phase.is_working_on_reference]
    off = [phase for phase in members if not phase.is_working_on_reference]
    if len(members) != 2 or len(working) != 1 or len(off) != 1:
        raise ShiftPatternConfigError(
            f"{shift_category} shift needs exactly one group working and one off on the reference date; "
            f"found {', '.join(phase.group_name for phase in members)}."
        )
    return working[0], off[0]


def resolve_working_group(phases: Iterable[ShiftGroupPhase], shift_category: str, target_date) -> WorkingGroups:
    """Return which of the category's two groups is on duty on ``target_date``.

    The cycle position is computed once from the group that works on the
    reference date, so the pair always splits into exactly one working and one
    off group.
    """
    shift_category = normalize_shift_type(shift_category)
    first, second = _category_pair(list(phases), shift_category)
    if cycle_position(first.reference_date, target_date) < WORKING_DAYS_PER_CYCLE:
        return WorkingGroups(working_group=first.group_name, off_group=second.group_name)
    return WorkingGroups(working_group=second.group_name, off_group=first.group_name)


def iter_dates(start_date, end_date) -> Iterable[datetime.date]:
    start = as_date(start_date)
    end = as_date(end_date)
    if end < start:
        raise InvalidDateRangeError(start, end)
    current = start
    while current <= end:
        yield current
        current += datetime.timedelta(days=1)


def get_shift_schedule(
    phases: Iterable[ShiftGroupPhase],
    start_date,
    end_date,
    shift_group: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Return one entry per day in the inclusive range.

    With ``shift_group`` each entry is that group's status; without it each
    entry lists every known group under ``shifts``.
    """
    phase_list = list(phases)
    days = list(iter_dates(start_date, end_date))
    schedule: List[Dict[str, Any]] = []
    if shift_group:
        phase = find_phase(phase_list, shift_group)
        for day in days:
            status = calculate_shift_status(phase, day)
            schedule.append(
                {
                    "date": day.isoformat(),
                    "shift_group": phase.group_name,
                    "is_working": status.is_working,
                    "shift_type": status.shift_type,
                    "cycle_day": status.cycle_day,
                }
            )
        return schedule
    ordered = sorted(phase_list, key=lambda item: (item.shift_category, item.group_name))
    for day in days:
        shifts = []
        for phase in ordered:
            status = calculate_shift_status(phase, day)
            shifts.append(
                {
                    "shift_group": phase.group_name,
                    "is_working": status.is_working,
                    "shift_type": status.shift_type,
                    "cycle_day": status.cycle_day,
                }
            )
        schedule.append({"date": day.isoformat(), "shifts": shifts})
    return schedule
