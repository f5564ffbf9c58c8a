from __future__ import annotations

import datetime
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from database import DailyAssignment, PorterDepartmentAssignment
from eligibility import eligible_porters
from errors import MissingDepartmentError, MissingPorterError, UnknownShiftGroupError
from rotation import (
    ShiftGroupPhase,
    ShiftStatus,
    WorkingGroups,
    as_date,
    calculate_shift_status as _calculate_shift_status,
    find_phase,
    get_shift_schedule as _get_shift_schedule,
    resolve_working_group as _resolve_working_group,
)
from shift_groups import normalize_shift_type

logger = logging.getLogger(__name__)


def current_assignment_by_porter(
    assignments: Iterable[PorterDepartmentAssignment],
    on_date: datetime.date,
) -> Dict[int, PorterDepartmentAssignment]:
    """Pick each porter's in-effect assignment: latest start date, then highest id."""
    chosen: Dict[int, PorterDepartmentAssignment] = {}
    for assignment in assignments:
        if not assignment.is_in_effect(on_date):
            continue
        current = chosen.get(assignment.porter_id)
        if current is None or _assignment_rank(assignment) > _assignment_rank(current):
            chosen[assignment.porter_id] = assignment
    return chosen


def _assignment_rank(assignment: PorterDepartmentAssignment) -> tuple:
    return (assignment.start_date or datetime.date.min, assignment.id or 0)


class DailyAssignmentExpander:
    """Turn permanent porter assignments into per-day records.

    Each date is expanded at most once. Results are cached in memory and
    persisted through the store; a new expander over the same store picks up
    the persisted records instead of expanding again.
    """

    def __init__(self, store, *, default_shift_type: str = "day") -> None:
        self.store = store
        self.default_shift_type = normalize_shift_type(default_shift_type)
        self._cache: Dict[datetime.date, List[DailyAssignment]] = {}
        self._date_locks: Dict[datetime.date, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, day: datetime.date) -> threading.Lock:
        with self._guard:
            lock = self._date_locks.get(day)
            if lock is None:
                lock = threading.Lock()
                self._date_locks[day] = lock
            return lock

    def phases(self) -> List[ShiftGroupPhase]:
        return self.store.list_shift_group_phases()

    # Daily records

    def get_daily_assignments(self, value, shift_type: Optional[str] = None) -> List[DailyAssignment]:
        day = as_date(value)
        records = self._cache.get(day)
        if records is None:
            with self._lock_for(day):
                records = self._cache.get(day)
                if records is None:
                    records = self._load_or_expand(day)
                    self._cache[day] = records
        if shift_type:
            wanted = normalize_shift_type(shift_type)
            return [record for record in records if record.shift_type == wanted]
        return list(records)

    def _load_or_expand(self, day: datetime.date) -> List[DailyAssignment]:
        persisted = self.store.load_daily_assignments(day)
        if persisted:
            logger.debug("Loaded %d persisted assignments for %s", len(persisted), day)
            return persisted
        records = self._expand(day)
        if not records:
            logger.info("No daily assignments generated for %s", day)
            return []
        saved = self.store.persist_daily_assignments(records)
        logger.info("Generated %d daily assignments for %s", len(saved), day)
        return list(saved)

    def _expand(self, day: datetime.date) -> List[DailyAssignment]:
        phases = self.phases()
        departments = {department.id: department for department in self.store.list_departments()}
        porters = {porter.id: porter for porter in self.store.list_porters()}
        current = current_assignment_by_porter(self.store.list_permanent_assignments(), day)
        records: List[DailyAssignment] = []
        for assignment in sorted(current.values(), key=lambda item: item.id or 0):
            department = departments.get(assignment.department_id)
            if department is None:
                logger.warning("Skipping assignment %s: %s", assignment.id, MissingDepartmentError(assignment.department_id))
                continue
            porter = porters.get(assignment.porter_id)
            if porter is None or not porter.is_active:
                logger.warning(
                    "Skipping assignment %s: %s",
                    assignment.id,
                    MissingPorterError(assignment.porter_id),
                )
                continue
            shift_type = porter.shift_category or self.default_shift_type
            if department.department_category == "shift_rotation" and porter.shift_group:
                try:
                    status = _calculate_shift_status(find_phase(phases, porter.shift_group), day)
                except UnknownShiftGroupError as exc:
                    logger.warning("Porter %s: %s; assigning without rotation", porter.id, exc)
                else:
                    if not status.is_working:
                        continue
            records.append(
                DailyAssignment(
                    date=day,
                    department_id=department.id,
                    porter_id=porter.id,
                    cover_porter_id=None,
                    shift_type=shift_type,
                )
            )
        return records

    def set_daily_assignment(
        self,
        value,
        department_id: int,
        porter_id: Optional[int] = None,
        cover_porter_id: Optional[int] = None,
        shift_type: str = "day",
        actor: str = "system",
    ) -> DailyAssignment:
        """Override the porter or cover porter of one (date, department, shift) slot."""
        day = as_date(value)
        shift_type = normalize_shift_type(shift_type)
        self.get_daily_assignments(day)
        if self.store.get_department(department_id) is None:
            raise MissingDepartmentError(department_id, "cannot set daily assignment")
        porter_id = self._known_porter_id(porter_id, "porter")
        cover_porter_id = self._known_porter_id(cover_porter_id, "cover porter")
        with self._lock_for(day):
            record = self.store.upsert_daily_assignment(
                day,
                department_id,
                shift_type,
                porter_id=porter_id,
                cover_porter_id=cover_porter_id,
            )
            self._cache[day] = self.store.load_daily_assignments(day)
        self.store.record_audit(actor, "set_daily_assignment", record.id, record.to_dict())
        return record

    def _known_porter_id(self, porter_id: Optional[int], role: str) -> Optional[int]:
        if porter_id is None:
            return None
        porter = self.store.get_porter(porter_id)
        if porter is None or not porter.is_active:
            logger.warning("Leaving %s slot empty: %s", role, MissingPorterError(porter_id))
            return None
        return porter_id

    def remove_daily_assignment(self, record_id: int, actor: str = "system") -> bool:
        record = self.store.get_daily_assignment(record_id)
        if record is None:
            return False
        day = record.date
        with self._lock_for(day):
            removed = self.store.delete_daily_assignment(record_id)
            if removed and day in self._cache:
                self._cache[day] = [item for item in self._cache[day] if item.id != record_id]
        if removed:
            self.store.record_audit(actor, "remove_daily_assignment", record_id, record.to_dict())
        return removed

    # Rotation

    def calculate_shift_status(self, group_name: str, value) -> ShiftStatus:
        return _calculate_shift_status(find_phase(self.phases(), group_name), value)

    def resolve_working_group(self, shift_category: str, value) -> WorkingGroups:
        return _resolve_working_group(self.phases(), shift_category, value)

    def get_shift_schedule(self, start_date, end_date, shift_group: Optional[str] = None) -> List[Dict[str, Any]]:
        return _get_shift_schedule(self.phases(), start_date, end_date, shift_group)

    def _porters_by_duty(self, value, shift_type: Optional[str], on_duty: bool) -> List:
        day = as_date(value)
        wanted = normalize_shift_type(shift_type) if shift_type else None
        phases = self.phases()
        selected = []
        for porter in self.store.list_porters(only_active=True):
            if not porter.shift_group:
                continue
            if wanted and porter.shift_category != wanted:
                continue
            try:
                status = _calculate_shift_status(find_phase(phases, porter.shift_group), day)
            except UnknownShiftGroupError as exc:
                logger.debug("Porter %s ignored for duty lookup: %s", porter.id, exc)
                continue
            if status.is_working == on_duty:
                selected.append(porter)
        return selected

    def working_porters(self, value, shift_type: Optional[str] = None) -> List:
        return self._porters_by_duty(value, shift_type, True)

    def off_duty_porters(self, value, shift_type: Optional[str] = None) -> List:
        return self._porters_by_duty(value, shift_type, False)

    # Eligibility

    def eligible_porters_for_department(self, department_id: int, value=None) -> List:
        department = self.store.get_department(department_id)
        if department is None:
            raise MissingDepartmentError(department_id)
        day = as_date(value) if value is not None else None
        reference_day = day or datetime.date.today()
        already_assigned = {
            assignment.porter_id
            for assignment in self.store.list_permanent_assignments()
            if assignment.department_id == department_id and assignment.is_in_effect(reference_day)
        }
        return eligible_porters(
            department,
            self.store.list_porters(),
            day,
            already_assigned,
            phases=self.phases() if day is not None else (),
        )

    def is_valid_assignment(self, porter_id: int, department_id: int, value=None) -> Dict[str, Any]:
        porter = self.store.get_porter(porter_id)
        department = self.store.get_department(department_id)
        if porter is None or department is None:
            return {"valid": False, "reason": "Porter or department not found"}
        candidates = self.eligible_porters_for_department(department_id, value)
        if any(candidate.id == porter_id for candidate in candidates):
            return {"valid": True, "reason": None}
        return {
            "valid": False,
            "reason": f"{porter.name} is not suitable for {department.name} ({department.department_category})",
        }

    def porter_utilization(self, value=None) -> Dict[str, Any]:
        day = as_date(value) if value is not None else datetime.date.today()
        porters = self.store.list_porters()
        assigned_ids = set(current_assignment_by_porter(self.store.list_permanent_assignments(), day))
        by_category: Dict[str, Dict[str, int]] = {}
        for porter in porters:
            bucket = by_category.setdefault(porter.porter_category, {"assigned": 0, "total": 0})
            bucket["total"] += 1
            if porter.id in assigned_ids:
                bucket["assigned"] += 1
        assigned = sum(bucket["assigned"] for bucket in by_category.values())
        return {
            "total": len(porters),
            "assigned": assigned,
            "available": len(porters) - assigned,
            "by_category": by_category,
        }
