from __future__ import annotations

import datetime
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence

from rotation import ShiftGroupPhase, as_date, calculate_shift_status

EXEMPT_CATEGORIES = {"on_demand"}


def validate_daily_staffing(
    records: Iterable,
    departments: Iterable,
    date,
    *,
    phases: Iterable[ShiftGroupPhase] = (),
) -> Dict[str, Any]:
    """Return staffing findings for one day's assignment records."""
    day = as_date(date)
    rows = list(records)
    department_map = {department.id: department for department in departments}
    phase_list = list(phases)
    issues: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []
    issues.extend(_understaffed_issues(rows, department_map, day, phase_list))
    warnings.extend(_closed_department_warnings(rows, department_map, day))
    warnings.extend(_double_booking_warnings(rows))
    checks = _build_validation_checklist(rows, issues=issues, warnings=warnings)
    return {
        "date": day.isoformat(),
        "checks": checks,
        "issues": issues,
        "warnings": warnings,
    }


def _filled(record) -> bool:
    return record.porter_id is not None or record.cover_porter_id is not None


def _rotation_on_duty(department, day: datetime.date, phases: Sequence[ShiftGroupPhase]) -> bool:
    """A rotation department only needs cover while its matching group is working."""
    for phase in phases:
        if phase.shift_category == department.rotation_category and phase.group_label == department.group_label:
            return calculate_shift_status(phase, day).is_working
    return True


def _understaffed_issues(
    records: List,
    departments: Dict[int, Any],
    day: datetime.date,
    phases: Sequence[ShiftGroupPhase],
) -> List[Dict[str, Any]]:
    issues: List[Dict[str, Any]] = []
    filled_counts: Dict[int, int] = defaultdict(int)
    for record in records:
        if _filled(record):
            filled_counts[record.department_id] += 1
    for department in sorted(departments.values(), key=lambda item: (item.display_order or 0, item.name)):
        required = int(department.min_porters_required or 0)
        if required <= 0 or department.department_category in EXEMPT_CATEGORIES:
            continue
        if not department.is_open_on(day):
            continue
        if department.department_category == "shift_rotation" and not _rotation_on_duty(department, day, phases):
            continue
        filled = filled_counts.get(department.id, 0)
        if filled >= required:
            continue
        issues.append(
            {
                "type": "understaffed",
                "severity": "error",
                "department_id": department.id,
                "department": department.name,
                "required": required,
                "filled": filled,
                "message": f"{department.name} has {filled} of {required} porters on {day.isoformat()}.",
            }
        )
    return issues


def _closed_department_warnings(records: List, departments: Dict[int, Any], day: datetime.date) -> List[Dict[str, Any]]:
    warnings: List[Dict[str, Any]] = []
    for record in records:
        department = departments.get(record.department_id)
        if department is None or department.is_open_on(day):
            continue
        warnings.append(
            {
                "type": "closed_department",
                "severity": "warning",
                "record_id": record.id,
                "department_id": department.id,
                "department": department.name,
                "message": f"{department.name} is closed on {day.strftime('%a %Y-%m-%d')} but has an assignment.",
            }
        )
    return warnings


def _double_booking_warnings(records: List) -> List[Dict[str, Any]]:
    warnings: List[Dict[str, Any]] = []
    slots: Dict[tuple, List[int]] = defaultdict(list)
    for record in records:
        for porter_id in {record.porter_id, record.cover_porter_id}:
            if porter_id is not None:
                slots[(porter_id, record.shift_type)].append(record.department_id)
    for (porter_id, shift_type), department_ids in sorted(slots.items()):
        if len(department_ids) < 2:
            continue
        warnings.append(
            {
                "type": "double_booked",
                "severity": "warning",
                "porter_id": porter_id,
                "shift_type": shift_type,
                "department_ids": sorted(department_ids),
                "message": f"Porter {porter_id} fills {len(department_ids)} {shift_type} slots.",
            }
        )
    return warnings


def _build_validation_checklist(
    records: List,
    *,
    issues: List[Dict[str, Any]],
    warnings: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    checks: List[Dict[str, Any]] = []

    def summarize(items: List[Dict[str, Any]], *, limit: int = 5) -> str:
        parts = [str(entry.get("message") or "").strip() for entry in items[:limit]]
        if len(items) > limit:
            parts.append(f"+{len(items) - limit} more")
        return "; ".join(part for part in parts if part)

    def add_check(label: str, ok: bool, *, details: str = "") -> None:
        checks.append({"label": label, "status": "ok" if ok else "fail", "details": details if not ok else ""})

    def of_type(items: List[Dict[str, Any]], type_name: Optional[str]) -> List[Dict[str, Any]]:
        return [item for item in items if item.get("type") == type_name]

    add_check("Assignments recorded?", bool(records), details="No assignments found.")
    understaffed = of_type(issues, "understaffed")
    add_check("Departments staffed?", not understaffed, details=summarize(understaffed))
    double_booked = of_type(warnings, "double_booked")
    add_check("No porter double booked?", not double_booked, details=summarize(double_booked))
    return checks
