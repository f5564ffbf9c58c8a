from __future__ import annotations

import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from database import (
    DailyAssignment,
    Department,
    Porter,
    PorterDepartmentAssignment,
    SessionLocal,
    StaffSessionLocal,
    delete_daily_assignment,
    get_daily_assignments_for_date,
    get_department,
    get_porter,
    list_departments,
    list_permanent_assignments,
    list_porters,
    list_shift_patterns,
    record_audit_log,
    save_daily_assignments,
    upsert_daily_assignment,
)
from rotation import ShiftGroupPhase


class RotaStore:
    """Session-per-call access to the staff and rota databases.

    Rows handed back are detached; both session factories are expected to use
    ``expire_on_commit=False`` so attributes stay readable after the session closes.
    """

    def __init__(
        self,
        session_factory: Callable = SessionLocal,
        staff_session_factory: Callable = StaffSessionLocal,
    ) -> None:
        self.session_factory = session_factory
        self.staff_session_factory = staff_session_factory

    # Staff database

    def list_permanent_assignments(self) -> List[PorterDepartmentAssignment]:
        with self.staff_session_factory() as staff_session:
            return [row for row in list_permanent_assignments(staff_session) if row.is_permanent]

    def list_departments(self) -> List[Department]:
        with self.staff_session_factory() as staff_session:
            return list_departments(staff_session)

    def list_porters(self, only_active: bool = False) -> List[Porter]:
        with self.staff_session_factory() as staff_session:
            return list_porters(staff_session, only_active=only_active)

    def get_porter(self, porter_id: Optional[int]) -> Optional[Porter]:
        with self.staff_session_factory() as staff_session:
            return get_porter(staff_session, porter_id)

    def get_department(self, department_id: Optional[int]) -> Optional[Department]:
        with self.staff_session_factory() as staff_session:
            return get_department(staff_session, department_id)

    # Rota database

    def list_shift_group_phases(self) -> List[ShiftGroupPhase]:
        with self.session_factory() as session:
            return [pattern.to_phase() for pattern in list_shift_patterns(session)]

    def load_daily_assignments(self, value: datetime.date) -> List[DailyAssignment]:
        with self.session_factory() as session:
            return get_daily_assignments_for_date(session, value)

    def persist_daily_assignments(self, records: Iterable[DailyAssignment]) -> List[DailyAssignment]:
        with self.session_factory() as session:
            return save_daily_assignments(session, records)

    def upsert_daily_assignment(
        self,
        value: datetime.date,
        department_id: int,
        shift_type: str,
        *,
        porter_id: Optional[int] = None,
        cover_porter_id: Optional[int] = None,
    ) -> DailyAssignment:
        with self.session_factory() as session:
            return upsert_daily_assignment(
                session,
                value,
                department_id,
                shift_type,
                porter_id=porter_id,
                cover_porter_id=cover_porter_id,
            )

    def delete_daily_assignment(self, record_id: int) -> bool:
        with self.session_factory() as session:
            return delete_daily_assignment(session, record_id)

    def get_daily_assignment(self, record_id: int) -> Optional[DailyAssignment]:
        with self.session_factory() as session:
            return session.get(DailyAssignment, record_id)

    def record_audit(
        self,
        actor: str,
        action: str,
        target_id: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        with self.session_factory() as session:
            record_audit_log(session, actor or "system", action, "DailyAssignment", target_id, payload)
