from __future__ import annotations

import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from rotation import ShiftGroupPhase, resolve_working_group

DIRECT_STAFF_CATEGORIES = {"Regular", "Relief"}

RECOMMENDATION_NOTES: Dict[str, str] = {
    "shift_rotation": "Shift rotation departments follow 4-on/4-off schedule",
    "emergency_24h": "Emergency departments operate 24/7 and can utilize shift porters for additional support",
    "relief": "Relief porters provide coverage across all departments",
    "on_demand": "On-demand departments operate as needed",
}


def _sort_key(porter) -> tuple:
    return ((porter.name or "").lower(), porter.id or 0)


def _rotation_candidates(porters: Sequence, department) -> List:
    # Only the day/night half of the pairing is checked, so a porter from either
    # A or B twin is offered for both "Day Shift A" and "Day Shift B".
    category = getattr(department, "rotation_category", None)
    if not category:
        return list(porters)
    return [porter for porter in porters if porter.shift_category == category or porter.porter_category == "Relief"]


def _emergency_candidates(
    porters: Sequence,
    department,
    on_date: Optional[datetime.date],
    phases: Sequence[ShiftGroupPhase],
) -> List:
    direct = [porter for porter in porters if porter.porter_category in DIRECT_STAFF_CATEGORIES]
    if on_date is None or not department.requires_shift_support:
        return direct
    if not phases:
        raise ValueError(
            f"Shift group phases are required to find shift support for {department.name} on {on_date.isoformat()}."
        )
    working_groups = {
        resolve_working_group(phases, "day", on_date).working_group,
        resolve_working_group(phases, "night", on_date).working_group,
    }
    support = [porter for porter in porters if porter.shift_group in working_groups]
    seen: Set[int] = set()
    combined = []
    for porter in direct + support:
        if porter.id in seen:
            continue
        seen.add(porter.id)
        combined.append(porter)
    return combined


def eligible_porters(
    department,
    porters: Iterable,
    on_date: Optional[datetime.date] = None,
    already_assigned: Iterable[int] = (),
    *,
    phases: Iterable[ShiftGroupPhase] = (),
) -> List:
    """Return porters who may staff ``department``, sorted by name.

    Inactive porters and ids in ``already_assigned`` are never returned. Emergency
    departments that require shift support also draw on whichever day and night
    groups are on duty ``on_date``.
    Pass the seeded ``phases`` whenever ``on_date`` is given; without them such a
    department raises ``ValueError``.
    """
    excluded = {int(porter_id) for porter_id in already_assigned if porter_id is not None}
    pool = [porter for porter in porters if porter.is_active and porter.id not in excluded]
    category = department.department_category
    if category == "shift_rotation":
        candidates = _rotation_candidates(pool, department)
    elif category == "relief":
        candidates = [porter for porter in pool if porter.porter_category == "Relief"]
    elif category == "emergency_24h":
        candidates = _emergency_candidates(pool, department, on_date, list(phases))
    elif category == "standard_hours":
        candidates = [porter for porter in pool if porter.porter_category in DIRECT_STAFF_CATEGORIES]
    else:
        candidates = pool
    return sorted(candidates, key=_sort_key)


def assignment_recommendations(department, eligible: Sequence) -> Dict[str, Any]:
    """Split eligible porters into recommended and additional picks for display."""
    category = department.department_category
    notes: List[str] = []
    if category == "shift_rotation":
        target = department.rotation_category or "day"
        recommended = [porter for porter in eligible if porter.shift_category == target]
        additional = [porter for porter in eligible if porter.porter_category == "Relief" and porter not in recommended]
    elif category == "emergency_24h":
        recommended = [porter for porter in eligible if porter.porter_category == "Regular"]
        additional = [
            porter
            for porter in eligible
            if porter not in recommended and (porter.porter_category == "Relief" or porter.shift_group)
        ]
    elif category == "standard_hours":
        recommended = [porter for porter in eligible if porter.porter_category == "Regular"]
        additional = [porter for porter in eligible if porter.porter_category == "Relief"]
        notes.append(f"Operating {department.schedule_label}")
    elif category == "relief":
        recommended = [porter for porter in eligible if porter.porter_category == "Relief"]
        additional = []
    else:
        needed = max(0, int(department.min_porters_required or 0))
        recommended = list(eligible[:needed])
        additional = list(eligible[needed:])
    if category in RECOMMENDATION_NOTES:
        notes.append(RECOMMENDATION_NOTES[category])
    return {"recommended": recommended, "additional": additional, "notes": notes}
