"""
farmhub.api.routes.admin — Admin operations (JWT‑protected)
============================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from farmhub.api.deps import get_current_admin, get_session
from farmhub.api.rate_limit import rate_limited_admin
from farmhub.services import admin_service
from farmhub.services.log_buffer import VALID_LEVELS, get_capture_level, get_logs, set_capture_level

router = APIRouter(prefix="/admin", tags=["admin"])


class LevelBody(BaseModel):
    level: str


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------
@router.get("/audit")
def audit_log(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    action_type: str | None = Query(None),
    target_table: str | None = Query(None),
    admin: dict = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    return admin_service.list_audit_log(
        session, page=page, page_size=page_size, action_type=action_type, target_table=target_table
    )


# ---------------------------------------------------------------------------
# Live Logs
# ---------------------------------------------------------------------------
@router.get("/logs")
def live_logs(
    tail: int = Query(200, ge=1, le=2000),
    level: str | None = Query(None),
    logger_prefix: str | None = Query(None, alias="logger"),
    after_seq: int | None = Query(None, ge=0),
    admin: dict = Depends(get_current_admin),
):
    """Return recent log entries captured in this process."""
    if level is not None and level.upper() not in VALID_LEVELS:
        raise HTTPException(400, detail=f"Invalid level. Must be one of: {', '.join(VALID_LEVELS)}")
    entries = get_logs(tail=tail, level=level, logger_prefix=logger_prefix, after_seq=after_seq)
    return {
        "entries": entries,
        "total": len(entries),
        "last_seq": entries[-1]["seq"] if entries else after_seq,
        "capture_level": get_capture_level(),
        "valid_levels": list(VALID_LEVELS),
    }


@router.put("/logs/level")
def change_log_level(body: LevelBody, admin: dict = Depends(rate_limited_admin)):
    try:
        new_level = set_capture_level(body.level)
    except ValueError as exc:
        raise HTTPException(400, detail=str(exc)) from exc
    return {"level": new_level}
