"""FastAPI wrapper around the porter rota.

Rotation lookups, daily assignment expansion and staffing checks are served
from one shared expander so the per-date cache survives between requests.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import datetime
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

# Ensure absolute imports (e.g., "import database") resolve when served from the repo root.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import SessionLocal, StaffSessionLocal, init_database  # noqa: E402
from errors import InvalidDateRangeError, NotFoundError, ShiftPatternConfigError  # noqa: E402
from policy import ensure_default_policy, ensure_shift_patterns  # noqa: E402
from staffing.api import (  # noqa: E402
    build_expander,
    department_recommendations,
    describe_daily_assignments,
    staffing_report,
)
from staffing.engine import DailyAssignmentExpander  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

_expander: Optional[DailyAssignmentExpander] = None


@asynccontextmanager
async def lifespan(_: FastAPI):
    global _expander
    init_database()
    ensure_default_policy(SessionLocal)
    created = ensure_shift_patterns(SessionLocal)
    if created:
        logger.info("Seeded %d shift patterns", created)
    _expander = build_expander(SessionLocal, StaffSessionLocal)
    yield


app = FastAPI(title="Porter Rota API", version="0.1", lifespan=lifespan)


def get_expander() -> DailyAssignmentExpander:
    global _expander
    if _expander is None:
        _expander = build_expander(SessionLocal, StaffSessionLocal)
    return _expander


def _parse_date(value: Optional[str], label: str = "date") -> datetime.date:
    if not value:
        raise HTTPException(status_code=400, detail=f"{label} is required")
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{label} must be YYYY-MM-DD")


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ShiftPatternConfigError):
        logger.error("Shift pattern configuration error: %s", exc)
        return HTTPException(status_code=500, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _porter_payload(porter) -> Dict[str, Any]:
    return {
        "id": porter.id,
        "name": porter.name,
        "porter_category": porter.porter_category,
        "shift_group": porter.shift_group,
        "shift_category": porter.shift_category,
    }


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/daily-assignments/{day}")
def daily_assignments(
    day: str,
    shift_type: Optional[str] = Query(None),
    expander: DailyAssignmentExpander = Depends(get_expander),
) -> JSONResponse:
    target = _parse_date(day)
    try:
        rows = describe_daily_assignments(expander, target, shift_type)
    except (NotFoundError, ShiftPatternConfigError, ValueError) as exc:
        raise _http_error(exc) from exc
    return JSONResponse(content=jsonable_encoder({"date": target.isoformat(), "assignments": rows}))


@app.put("/api/v1/daily-assignments/{day}")
def set_daily_assignment(
    day: str,
    payload: Dict[str, Any],
    expander: DailyAssignmentExpander = Depends(get_expander),
) -> JSONResponse:
    target = _parse_date(day)
    department_id = payload.get("department_id")
    if department_id is None:
        raise HTTPException(status_code=400, detail="department_id is required")
    actor = (payload.get("actor") or "api").strip() or "api"
    try:
        record = expander.set_daily_assignment(
            target,
            int(department_id),
            porter_id=payload.get("porter_id"),
            cover_porter_id=payload.get("cover_porter_id"),
            shift_type=payload.get("shift_type") or "day",
            actor=actor,
        )
    except (NotFoundError, ShiftPatternConfigError, ValueError) as exc:
        raise _http_error(exc) from exc
    return JSONResponse(content=jsonable_encoder(record.to_dict()))


@app.delete("/api/v1/daily-assignments/record/{record_id}")
def remove_daily_assignment(
    record_id: int,
    actor: str = Query("api"),
    expander: DailyAssignmentExpander = Depends(get_expander),
) -> JSONResponse:
    if not expander.remove_daily_assignment(record_id, actor=actor):
        raise HTTPException(status_code=404, detail=f"Daily assignment {record_id} was not found")
    return JSONResponse(content={"deleted": record_id})


@app.get("/api/v1/shift-groups/working")
def working_groups(
    shift_type: str = Query(...),
    date: Optional[str] = Query(None),
    expander: DailyAssignmentExpander = Depends(get_expander),
) -> JSONResponse:
    target = _parse_date(date) if date else datetime.date.today()
    try:
        groups = expander.resolve_working_group(shift_type, target)
    except (NotFoundError, ShiftPatternConfigError, ValueError) as exc:
        raise _http_error(exc) from exc
    return JSONResponse(content=jsonable_encoder({"date": target.isoformat(), "shift_type": shift_type, **groups.to_dict()}))


@app.get("/api/v1/shift-groups/{name}/status")
def shift_group_status(
    name: str,
    date: Optional[str] = Query(None),
    expander: DailyAssignmentExpander = Depends(get_expander),
) -> JSONResponse:
    target = _parse_date(date) if date else datetime.date.today()
    try:
        status = expander.calculate_shift_status(name, target)
    except (NotFoundError, ValueError) as exc:
        raise _http_error(exc) from exc
    return JSONResponse(content=jsonable_encoder({"shift_group": name, "date": target.isoformat(), **status.to_dict()}))


@app.get("/api/v1/shift-schedule")
def shift_schedule(
    start: str = Query(...),
    end: str = Query(...),
    shift_group: Optional[str] = Query(None),
    expander: DailyAssignmentExpander = Depends(get_expander),
) -> JSONResponse:
    start_date = _parse_date(start, "start")
    end_date = _parse_date(end, "end")
    try:
        schedule = expander.get_shift_schedule(start_date, end_date, shift_group)
    except (NotFoundError, InvalidDateRangeError) as exc:
        raise _http_error(exc) from exc
    return JSONResponse(content=jsonable_encoder({"start": start, "end": end, "schedule": schedule}))


@app.get("/api/v1/departments/{department_id}/eligible-porters")
def eligible_porters(
    department_id: int,
    date: Optional[str] = Query(None),
    expander: DailyAssignmentExpander = Depends(get_expander),
) -> JSONResponse:
    target = _parse_date(date) if date else None
    try:
        porters = expander.eligible_porters_for_department(department_id, target)
    except (NotFoundError, ShiftPatternConfigError) as exc:
        raise _http_error(exc) from exc
    return JSONResponse(
        content=jsonable_encoder(
            {"department_id": department_id, "porters": [_porter_payload(porter) for porter in porters]}
        )
    )


@app.get("/api/v1/departments/{department_id}/recommendations")
def recommendations(
    department_id: int,
    date: Optional[str] = Query(None),
    expander: DailyAssignmentExpander = Depends(get_expander),
) -> JSONResponse:
    target = _parse_date(date) if date else None
    try:
        payload = department_recommendations(expander, department_id, target)
    except (NotFoundError, ShiftPatternConfigError) as exc:
        raise _http_error(exc) from exc
    return JSONResponse(content=jsonable_encoder(payload))


@app.get("/api/v1/staffing/{day}/validate")
def validate_staffing(
    day: str,
    expander: DailyAssignmentExpander = Depends(get_expander),
) -> JSONResponse:
    target = _parse_date(day)
    try:
        report = staffing_report(expander, target)
    except (NotFoundError, ShiftPatternConfigError) as exc:
        raise _http_error(exc) from exc
    return JSONResponse(content=jsonable_encoder(report))
