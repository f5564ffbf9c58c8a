from __future__ import annotations

from typing import Dict, List, Optional, Tuple


SHIFT_TYPES: Tuple[str, ...] = ("day", "night")
PORTER_CATEGORIES: Tuple[str, ...] = ("Regular", "Relief", "Supervisor")
DEPARTMENT_CATEGORIES: Tuple[str, ...] = (
    "shift_rotation",  # Day/Night Shift A/B, PTS A/B - 4-on/4-off
    "relief",  # cover pool
    "emergency_24h",  # A&E, may borrow on-duty rotation porters
    "standard_hours",  # fixed days/hours
    "on_demand",  # Ad-Hoc, Training
)

_LABEL_ALIASES: Dict[str, str] = {
    "a": "A",
    "one": "A",
    "1": "A",
    "b": "B",
    "two": "B",
    "2": "B",
}

# Department names that follow a rotation, first match wins.
_ROTATION_KEYWORDS: List[Tuple[str, str]] = [
    ("night shift", "night"),
    ("day shift", "day"),
    ("pts", "day"),
]


def normalize_label(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def normalize_shift_group(name: Optional[str]) -> Optional[str]:
    cleaned = " ".join((name or "").split())
    return cleaned or None


def shift_category_for_group(name: Optional[str]) -> Optional[str]:
    label = normalize_label(name)
    if not label:
        return None
    if "night" in label:
        return "night"
    if "day" in label:
        return "day"
    return None


def group_label_for(name: Optional[str]) -> Optional[str]:
    parts = normalize_label(name).split()
    if len(parts) < 2:
        return None
    return _LABEL_ALIASES.get(parts[-1])


def parse_shift_group(name: Optional[str]) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """Return (group_name, shift_category, group_label) for a free-text group name."""
    cleaned = normalize_shift_group(name)
    if cleaned is None:
        return None, None, None
    return cleaned, shift_category_for_group(cleaned), group_label_for(cleaned)


def department_rotation_pairing(name: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Return (rotation_category, group_label) implied by a rotation department's name."""
    label = normalize_label(name)
    if not label:
        return None, None
    for keyword, category in _ROTATION_KEYWORDS:
        if keyword in label:
            return category, group_label_for(label)
    return None, None


def normalize_shift_type(value: Optional[str]) -> str:
    label = normalize_label(value)
    if label not in SHIFT_TYPES:
        raise ValueError(f"Unsupported shift type '{value}'. Expected one of {', '.join(SHIFT_TYPES)}.")
    return label


def normalize_porter_category(value: Optional[str]) -> str:
    label = normalize_label(value)
    for category in PORTER_CATEGORIES:
        if label == category.lower():
            return category
    raise ValueError(f"Unsupported porter category '{value}'.")


def normalize_department_category(value: Optional[str]) -> str:
    label = normalize_label(value).replace("-", "_").replace(" ", "_")
    if label not in DEPARTMENT_CATEGORIES:
        raise ValueError(f"Unsupported department category '{value}'.")
    return label
