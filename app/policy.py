from __future__ import annotations

import copy
import datetime
import logging
from typing import Any, Dict, List

from sqlalchemy import select

from database import ShiftPattern, get_active_policy, upsert_policy
from shift_groups import SHIFT_TYPES, group_label_for, normalize_shift_group, shift_category_for_group

logger = logging.getLogger(__name__)

# Tuesday 27th May 2025: Day Shift A and Night Shift A start their four days.
REFERENCE_DATE = "2025-05-27"

SHIFT_GROUP_DEFAULTS: List[Dict[str, Any]] = [
    {"shift_group": "Day Shift A", "shift_type": "day", "is_working_on_reference": True},
    {"shift_group": "Day Shift B", "shift_type": "day", "is_working_on_reference": False},
    {"shift_group": "Night Shift A", "shift_type": "night", "is_working_on_reference": True},
    {"shift_group": "Night Shift B", "shift_type": "night", "is_working_on_reference": False},
]

BASELINE_POLICY: Dict[str, Any] = {
    "name": "Porter Rotation",
    "description": "Seeded 4-on/4-off rotation shared by the day and night porter groups.",
    "rotation": {
        "reference_date": REFERENCE_DATE,
    },
    "shift_groups": SHIFT_GROUP_DEFAULTS,
    "staffing": {
        "default_shift_type": "day",
    },
}


def load_active_policy(conn) -> Dict:
    """Return the active policy payload as a dict."""
    if conn is None:
        return _normalize_policy({})
    if callable(conn):
        with conn() as session:
            policy = get_active_policy(session)
            return _normalize_policy(policy.params_dict() if policy else {})
    policy = get_active_policy(conn)
    return _normalize_policy(policy.params_dict() if policy else {})


def _normalize_policy(policy: Dict) -> Dict:
    """Fill missing sections from the baseline and drop malformed shift groups."""
    if not isinstance(policy, dict):
        policy = {}
    normalized = copy.deepcopy(policy)
    rotation_cfg = normalized.setdefault("rotation", {})
    try:
        reference = datetime.date.fromisoformat(str(rotation_cfg.get("reference_date") or REFERENCE_DATE))
    except ValueError:
        logger.warning("Invalid rotation reference date %r; using %s", rotation_cfg.get("reference_date"), REFERENCE_DATE)
        reference = datetime.date.fromisoformat(REFERENCE_DATE)
    rotation_cfg["reference_date"] = reference.isoformat()

    groups: List[Dict[str, Any]] = []
    raw_groups = normalized.get("shift_groups")
    if not isinstance(raw_groups, list) or not raw_groups:
        raw_groups = copy.deepcopy(SHIFT_GROUP_DEFAULTS)
    for entry in raw_groups:
        if not isinstance(entry, dict):
            continue
        name = normalize_shift_group(entry.get("shift_group"))
        shift_type = (entry.get("shift_type") or shift_category_for_group(name) or "").lower()
        if not name or shift_type not in SHIFT_TYPES:
            logger.warning("Dropping malformed shift group entry %r", entry)
            continue
        groups.append(
            {
                "shift_group": name,
                "shift_type": shift_type,
                "is_working_on_reference": bool(entry.get("is_working_on_reference")),
            }
        )
    normalized["shift_groups"] = groups

    staffing_cfg = normalized.setdefault("staffing", {})
    default_shift = (staffing_cfg.get("default_shift_type") or "day").lower()
    staffing_cfg["default_shift_type"] = default_shift if default_shift in SHIFT_TYPES else "day"
    return normalized


def build_default_policy() -> Dict[str, Any]:
    """Return a deepcopy so callers can mutate the policy safely."""
    return copy.deepcopy(BASELINE_POLICY)


def ensure_default_policy(session_factory) -> None:
    """Seed the baseline policy exactly once."""

    with session_factory() as session:
        if get_active_policy(session):
            return
        payload = build_default_policy()
        name = payload.get("name", "Porter Rotation")
        params = {key: value for key, value in payload.items() if key != "name"}
        upsert_policy(session, name, params, edited_by="system")


def ensure_shift_patterns(session_factory, policy: Dict | None = None) -> int:
    """Create the shift pattern rows from the policy if none exist yet.

    Patterns are immutable once written; returns the number of rows created.
    """
    with session_factory() as session:
        if session.scalars(select(ShiftPattern.id)).first() is not None:
            return 0
        payload = _normalize_policy(policy if policy is not None else load_active_policy(session))
        reference = datetime.date.fromisoformat(payload["rotation"]["reference_date"])
        created = 0
        for entry in payload["shift_groups"]:
            session.add(
                ShiftPattern(
                    shift_group=entry["shift_group"],
                    reference_date=reference,
                    is_working_on_reference=entry["is_working_on_reference"],
                    shift_type=entry["shift_type"],
                    group_label=group_label_for(entry["shift_group"]),
                )
            )
            created += 1
            logger.info("Seeded shift pattern %s (%s)", entry["shift_group"], entry["shift_type"])
        session.commit()
        return created


def default_shift_type(policy: Dict) -> str:
    staffing_cfg = policy.get("staffing") if isinstance(policy, dict) else {}
    value = (staffing_cfg or {}).get("default_shift_type") or "day"
    return value if value in SHIFT_TYPES else "day"
