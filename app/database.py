from __future__ import annotations

import datetime
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker, validates
from sqlalchemy.types import Time

from errors import MissingDepartmentError, MissingPorterError
from rotation import ShiftGroupPhase, as_date
from shift_groups import (
    department_rotation_pairing,
    normalize_department_category,
    normalize_porter_category,
    normalize_shift_type,
    parse_shift_group,
)


logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"
DATA_DIR.mkdir(parents=True, exist_ok=True)
STAFF_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'staff.db').as_posix()}"
ROTA_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'rota.db').as_posix()}"
DAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def sunday_based_weekday(value: datetime.date) -> int:
    """Return 0 for Sunday through 6 for Saturday."""
    return (value.weekday() + 1) % 7


class StaffBase(DeclarativeBase):
    """Standalone metadata for porter/department tables living in staff.db."""

    pass


class Base(DeclarativeBase):
    """Metadata for rota tables (patterns, daily assignments, policy, audit) living in rota.db."""

    pass


class Porter(StaffBase):
    __tablename__ = "porters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    porter_category: Mapped[str] = mapped_column(String(16), nullable=False, default="Regular")
    shift_group: Mapped[str | None] = mapped_column(String(40), nullable=True)
    shift_category: Mapped[str | None] = mapped_column(String(8), nullable=True)
    group_label: Mapped[str | None] = mapped_column(String(2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    @validates("porter_category")
    def _validate_category(self, _key: str, value: str) -> str:
        return normalize_porter_category(value)

    @validates("shift_group")
    def _derive_shift_fields(self, _key: str, value: Optional[str]) -> Optional[str]:
        group_name, category, label = parse_shift_group(value)
        self.shift_category = category
        self.group_label = label
        return group_name


class Department(StaffBase):
    __tablename__ = "departments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    department_category: Mapped[str] = mapped_column(String(24), nullable=False, default="standard_hours")
    days_of_week: Mapped[str] = mapped_column(String(40), nullable=False, default="")  # 0 = Sunday
    start_time: Mapped[datetime.time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[datetime.time | None] = mapped_column(Time, nullable=True)
    is_24_hour: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requires_shift_support: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    min_porters_required: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    rotation_category: Mapped[str | None] = mapped_column(String(8), nullable=True)
    group_label: Mapped[str | None] = mapped_column(String(2), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    @validates("name")
    def _derive_rotation_pairing(self, _key: str, value: str) -> str:
        cleaned = " ".join((value or "").split())
        if not cleaned:
            raise ValueError("Department name is required.")
        self.rotation_category, self.group_label = department_rotation_pairing(cleaned)
        return cleaned

    @validates("department_category")
    def _validate_category(self, _key: str, value: str) -> str:
        return normalize_department_category(value)

    @property
    def day_list(self) -> List[int]:
        days = []
        for token in (self.days_of_week or "").split(","):
            token = token.strip()
            if token.isdigit() and 0 <= int(token) <= 6:
                days.append(int(token))
        return sorted(set(days))

    @day_list.setter
    def day_list(self, days: Iterable[int]) -> None:
        self.days_of_week = ",".join(str(day) for day in sorted({int(day) for day in days if 0 <= int(day) <= 6}))

    def is_open_on(self, value: datetime.date) -> bool:
        days = self.day_list
        if not days:
            return True
        return sunday_based_weekday(as_date(value)) in days

    def is_operating(self, value: datetime.date, at_time: Optional[datetime.time] = None) -> bool:
        """Open on the given day and, when ``at_time`` is given, inside the opening hours.

        Hours are compared within a single day; a window that crosses midnight is not supported.
        """
        if not self.is_open_on(value):
            return False
        if self.is_24_hour or at_time is None:
            return True
        if self.start_time is None or self.end_time is None:
            return False
        return self.start_time <= at_time <= self.end_time

    @property
    def schedule_label(self) -> str:
        if self.is_24_hour:
            return "24 Hours"
        days = self.day_list
        day_label = "All Days" if not days else ", ".join(DAY_NAMES[day] for day in days)
        start = self.start_time.strftime("%H:%M") if self.start_time else "--:--"
        end = self.end_time.strftime("%H:%M") if self.end_time else "--:--"
        return f"{day_label} {start}-{end}"


class PorterDepartmentAssignment(StaffBase):
    __tablename__ = "porter_department_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    porter_id: Mapped[int] = mapped_column(ForeignKey("porters.id"), nullable=False)
    department_id: Mapped[int] = mapped_column(ForeignKey("departments.id"), nullable=False)
    is_permanent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    start_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def is_in_effect(self, value: datetime.date) -> bool:
        day = as_date(value)
        if self.start_date and day < self.start_date:
            return False
        if self.end_date and day > self.end_date:
            return False
        return True


class ShiftPattern(Base):
    __tablename__ = "shift_patterns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shift_group: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    reference_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    is_working_on_reference: Mapped[bool] = mapped_column(Boolean, nullable=False)
    shift_type: Mapped[str] = mapped_column(String(8), nullable=False)
    group_label: Mapped[str | None] = mapped_column(String(2), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def to_phase(self) -> ShiftGroupPhase:
        return ShiftGroupPhase(
            group_name=self.shift_group,
            reference_date=self.reference_date,
            is_working_on_reference=bool(self.is_working_on_reference),
            shift_category=self.shift_type,
            group_label=self.group_label,
        )


class DailyAssignment(Base):
    __tablename__ = "daily_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    department_id: Mapped[int] = mapped_column(Integer, nullable=False)
    porter_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cover_porter_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    shift_type: Mapped[str] = mapped_column(String(8), nullable=False, default="day")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (Index("ix_daily_assignment_slot", "date", "department_id", "shift_type"),)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat() if self.date else None,
            "department_id": self.department_id,
            "porter_id": self.porter_id,
            "cover_porter_id": self.cover_porter_id,
            "shift_type": self.shift_type,
        }


class Policy(Base):
    __tablename__ = "policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    paramsJSON: Mapped[str] = mapped_column(String(8000), nullable=False, default="{}")
    lastEditedBy: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    lastEditedAt: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (UniqueConstraint("name", name="uq_policies_name"),)

    def params_dict(self) -> Dict:
        try:
            value = json.loads(self.paramsJSON or "{}")
            if isinstance(value, dict):
                return value
        except json.JSONDecodeError:
            logger.warning("Policy %s has unreadable params; using empty payload", self.name)
        return {}


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="DailyAssignment")
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


staff_engine = create_engine(
    STAFF_DATABASE_URL,
    echo=False,
    future=True,
)
rota_engine = create_engine(
    ROTA_DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=rota_engine, expire_on_commit=False, future=True)
StaffSessionLocal = sessionmaker(bind=staff_engine, expire_on_commit=False, future=True)


def init_database() -> None:
    StaffBase.metadata.create_all(staff_engine)
    Base.metadata.create_all(rota_engine)


def _coerce_staff_session(session):
    """Return (staff_session, should_close) ensuring we talk to the staff database."""
    if session is None:
        return StaffSessionLocal(), True
    bind = getattr(session, "bind", None)
    if bind is rota_engine:
        return StaffSessionLocal(), True
    return session, False


# ---------------------------------------------------------------------------
# Porters


def list_porters(staff_session=None, only_active: bool = False) -> List[Porter]:
    staff_session, close_session = _coerce_staff_session(staff_session)
    try:
        stmt = select(Porter)
        if only_active:
            stmt = stmt.where(Porter.is_active.is_(True))
        stmt = stmt.order_by(Porter.name.asc(), Porter.id.asc())
        return list(staff_session.scalars(stmt))
    finally:
        if close_session:
            staff_session.close()


def get_porter(staff_session, porter_id: Optional[int]) -> Optional[Porter]:
    if porter_id is None:
        return None
    staff_session, close_session = _coerce_staff_session(staff_session)
    try:
        return staff_session.get(Porter, porter_id)
    finally:
        if close_session:
            staff_session.close()


def create_porter(
    staff_session,
    name: str,
    porter_category: str = "Regular",
    *,
    shift_group: Optional[str] = None,
    is_active: bool = True,
) -> Porter:
    if not (name or "").strip():
        raise ValueError("Porter name is required.")
    porter = Porter(
        name=name.strip(),
        porter_category=porter_category,
        shift_group=shift_group,
        is_active=is_active,
    )
    staff_session.add(porter)
    staff_session.commit()
    staff_session.refresh(porter)
    return porter


def set_porter_shift_group(staff_session, porter_id: int, shift_group: Optional[str]) -> Porter:
    porter = staff_session.get(Porter, porter_id)
    if not porter:
        raise MissingPorterError(porter_id)
    porter.shift_group = shift_group
    staff_session.commit()
    staff_session.refresh(porter)
    return porter


def deactivate_porter(staff_session, porter_id: int) -> Porter:
    """Soft delete: porters stay referenced by historical assignments."""
    porter = staff_session.get(Porter, porter_id)
    if not porter:
        raise MissingPorterError(porter_id)
    porter.is_active = False
    staff_session.commit()
    staff_session.refresh(porter)
    return porter


# ---------------------------------------------------------------------------
# Departments


def list_departments(staff_session=None) -> List[Department]:
    staff_session, close_session = _coerce_staff_session(staff_session)
    try:
        stmt = select(Department).order_by(Department.display_order.asc(), Department.name.asc())
        return list(staff_session.scalars(stmt))
    finally:
        if close_session:
            staff_session.close()


def list_departments_operating_on(
    staff_session,
    value: datetime.date,
    at_time: Optional[datetime.time] = None,
) -> List[Department]:
    return [department for department in list_departments(staff_session) if department.is_operating(value, at_time)]


def list_departments_requiring_shift_support(staff_session=None) -> List[Department]:
    staff_session, close_session = _coerce_staff_session(staff_session)
    try:
        stmt = (
            select(Department)
            .where(Department.requires_shift_support.is_(True))
            .order_by(Department.display_order.asc(), Department.name.asc())
        )
        return list(staff_session.scalars(stmt))
    finally:
        if close_session:
            staff_session.close()


def get_department(staff_session, department_id: Optional[int]) -> Optional[Department]:
    if department_id is None:
        return None
    staff_session, close_session = _coerce_staff_session(staff_session)
    try:
        return staff_session.get(Department, department_id)
    finally:
        if close_session:
            staff_session.close()


def create_department(
    staff_session,
    name: str,
    department_category: str = "standard_hours",
    *,
    days_of_week: Optional[Iterable[int]] = None,
    start_time: Optional[datetime.time] = None,
    end_time: Optional[datetime.time] = None,
    is_24_hour: bool = False,
    requires_shift_support: bool = False,
    min_porters_required: int = 1,
) -> Department:
    orders = [row for row in staff_session.scalars(select(Department.display_order))]
    department = Department(
        name=name,
        department_category=department_category,
        start_time=start_time,
        end_time=end_time,
        is_24_hour=is_24_hour,
        requires_shift_support=requires_shift_support,
        min_porters_required=max(0, int(min_porters_required or 0)),
        display_order=(max(orders) + 1) if orders else 1,
    )
    department.day_list = days_of_week or []
    staff_session.add(department)
    staff_session.commit()
    staff_session.refresh(department)
    return department


# ---------------------------------------------------------------------------
# Permanent assignments


def list_permanent_assignments(staff_session=None) -> List[PorterDepartmentAssignment]:
    staff_session, close_session = _coerce_staff_session(staff_session)
    try:
        stmt = select(PorterDepartmentAssignment).order_by(PorterDepartmentAssignment.id.asc())
        return list(staff_session.scalars(stmt))
    finally:
        if close_session:
            staff_session.close()


def assign_porter_to_department(
    staff_session,
    porter_id: int,
    department_id: int,
    *,
    start_date: Optional[datetime.date] = None,
    end_date: Optional[datetime.date] = None,
    is_permanent: bool = True,
) -> PorterDepartmentAssignment:
    if not staff_session.get(Porter, porter_id):
        raise MissingPorterError(porter_id)
    if not staff_session.get(Department, department_id):
        raise MissingDepartmentError(department_id)
    if start_date and end_date and end_date < start_date:
        raise ValueError("Assignment end date must not be before its start date.")
    existing = staff_session.scalars(
        select(PorterDepartmentAssignment).where(
            PorterDepartmentAssignment.porter_id == porter_id,
            PorterDepartmentAssignment.department_id == department_id,
            PorterDepartmentAssignment.end_date.is_(None),
        )
    ).first()
    if existing and end_date is None:
        return existing
    assignment = PorterDepartmentAssignment(
        porter_id=porter_id,
        department_id=department_id,
        is_permanent=is_permanent,
        start_date=start_date,
        end_date=end_date,
    )
    staff_session.add(assignment)
    staff_session.commit()
    staff_session.refresh(assignment)
    return assignment


def end_porter_assignment(staff_session, assignment_id: int, end_date: datetime.date) -> PorterDepartmentAssignment:
    assignment = staff_session.get(PorterDepartmentAssignment, assignment_id)
    if not assignment:
        raise ValueError(f"Assignment with id {assignment_id} was not found.")
    end_date = as_date(end_date)
    if assignment.start_date and end_date < assignment.start_date:
        raise ValueError("Assignment end date must not be before its start date.")
    assignment.end_date = end_date
    staff_session.commit()
    staff_session.refresh(assignment)
    return assignment


# ---------------------------------------------------------------------------
# Shift patterns and daily assignments


def list_shift_patterns(session) -> List[ShiftPattern]:
    stmt = select(ShiftPattern).order_by(ShiftPattern.shift_type.asc(), ShiftPattern.shift_group.asc())
    return list(session.scalars(stmt))


def get_daily_assignments_for_date(session, value: datetime.date) -> List[DailyAssignment]:
    stmt = (
        select(DailyAssignment)
        .where(DailyAssignment.date == as_date(value))
        .order_by(DailyAssignment.id.asc())
    )
    return list(session.scalars(stmt))


def save_daily_assignments(session, records: Iterable[DailyAssignment]) -> List[DailyAssignment]:
    rows = list(records)
    if not rows:
        return rows
    session.add_all(rows)
    session.commit()
    return rows


def upsert_daily_assignment(
    session,
    value: datetime.date,
    department_id: int,
    shift_type: str,
    *,
    porter_id: Optional[int] = None,
    cover_porter_id: Optional[int] = None,
) -> DailyAssignment:
    day = as_date(value)
    shift_type = normalize_shift_type(shift_type)
    existing = session.scalars(
        select(DailyAssignment)
        .where(
            DailyAssignment.date == day,
            DailyAssignment.department_id == department_id,
            DailyAssignment.shift_type == shift_type,
        )
        .order_by(DailyAssignment.id.asc())
    ).first()
    if existing:
        existing.porter_id = porter_id
        existing.cover_porter_id = cover_porter_id
        existing.updated_at = _utcnow()
        record = existing
    else:
        record = DailyAssignment(
            date=day,
            department_id=department_id,
            porter_id=porter_id,
            cover_porter_id=cover_porter_id,
            shift_type=shift_type,
        )
        session.add(record)
    session.commit()
    session.refresh(record)
    return record


def delete_daily_assignment(session, record_id: int) -> bool:
    record = session.get(DailyAssignment, record_id)
    if not record:
        return False
    session.delete(record)
    session.commit()
    return True


# ---------------------------------------------------------------------------
# Policy and audit


def get_active_policy(session) -> Optional[Policy]:
    stmt = select(Policy).order_by(Policy.lastEditedAt.desc(), Policy.id.desc())
    return session.scalars(stmt).first()


def upsert_policy(session, name: str, params_dict: Dict, *, edited_by: str = "system") -> Policy:
    existing: Optional[Policy] = session.execute(select(Policy).where(Policy.name == name)).scalars().first()
    payload = params_dict if isinstance(params_dict, dict) else {}
    if existing:
        existing.paramsJSON = json.dumps(payload)
        existing.lastEditedBy = edited_by
        existing.lastEditedAt = _utcnow()
        session.commit()
        session.refresh(existing)
        return existing
    policy = Policy(
        name=name,
        paramsJSON=json.dumps(payload),
        lastEditedBy=edited_by,
        lastEditedAt=_utcnow(),
    )
    session.add(policy)
    session.commit()
    session.refresh(policy)
    return policy


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "DailyAssignment",
    target_id: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}, default=str),
    )
    session.add(log)
    session.commit()
    return log
