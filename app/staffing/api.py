from __future__ import annotations

import datetime
import logging
from typing import Any, Callable, Dict, List, Optional

from .engine import DailyAssignmentExpander
from database import SessionLocal, StaffSessionLocal
from eligibility import assignment_recommendations
from errors import MissingDepartmentError
from policy import default_shift_type, load_active_policy
from rotation import as_date
from store import RotaStore
from validation import validate_daily_staffing

logger = logging.getLogger(__name__)


def build_expander(
    session_factory: Callable = SessionLocal,
    staff_session_factory: Callable = StaffSessionLocal,
) -> DailyAssignmentExpander:
    policy = load_active_policy(session_factory)
    store = RotaStore(session_factory, staff_session_factory)
    return DailyAssignmentExpander(store, default_shift_type=default_shift_type(policy))


def _porter_summary(porter) -> Optional[Dict[str, Any]]:
    if porter is None:
        return None
    return {
        "id": porter.id,
        "name": porter.name,
        "porter_category": porter.porter_category,
        "shift_group": porter.shift_group,
    }


def describe_daily_assignments(
    expander: DailyAssignmentExpander,
    value,
    shift_type: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Return the day's records with department and porter details attached."""
    records = expander.get_daily_assignments(value, shift_type)
    departments = {department.id: department for department in expander.store.list_departments()}
    porters = {porter.id: porter for porter in expander.store.list_porters()}
    rows: List[Dict[str, Any]] = []
    for record in records:
        department = departments.get(record.department_id)
        if department is None:
            logger.error("Daily assignment %s references missing department %s", record.id, record.department_id)
            raise MissingDepartmentError(record.department_id, f"daily assignment {record.id}")
        row = record.to_dict()
        row["department"] = {
            "id": department.id,
            "name": department.name,
            "department_category": department.department_category,
            "schedule": department.schedule_label,
        }
        row["porter"] = _porter_summary(porters.get(record.porter_id))
        row["cover_porter"] = _porter_summary(porters.get(record.cover_porter_id))
        rows.append(row)
    return rows


def department_recommendations(
    expander: DailyAssignmentExpander,
    department_id: int,
    value=None,
) -> Dict[str, Any]:
    department = expander.store.get_department(department_id)
    if department is None:
        raise MissingDepartmentError(department_id)
    eligible = expander.eligible_porters_for_department(department_id, value)
    picks = assignment_recommendations(department, eligible)
    return {
        "department_id": department.id,
        "department": department.name,
        "recommended": [_porter_summary(porter) for porter in picks["recommended"]],
        "additional": [_porter_summary(porter) for porter in picks["additional"]],
        "notes": picks["notes"],
    }


def staffing_report(expander: DailyAssignmentExpander, value) -> Dict[str, Any]:
    day: datetime.date = as_date(value)
    records = expander.get_daily_assignments(day)
    return validate_daily_staffing(
        records,
        expander.store.list_departments(),
        day,
        phases=expander.phases(),
    )
