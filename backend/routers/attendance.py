import logging
import sqlite3

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from backend.context import PipelineContext
from backend.schemas import AttendanceRecordOut, AuditLogPage, ScanEventOut, ScanEventPage
from backend.services.event_source import SqliteScanSource
from database.db import (
    count_audit_log,
    get_attendance_records,
    get_audit_log,
    get_scan_events,
    get_scan_events_total,
)

logger = logging.getLogger(__name__)

router = APIRouter()
ALLOWED_SCAN_STATUSES: set[str] = {"pending", "processed", "rejected"}


def get_context(request: Request) -> PipelineContext:
    return request.app.state.ctx


@router.get("/attendance", response_model=list[AttendanceRecordOut])
def list_attendance(date: str | None = None, ctx: PipelineContext = Depends(get_context)):
    try:
        return get_attendance_records(date, db_path=ctx.db_path)
    except sqlite3.Error:
        logger.exception("Failed to fetch attendance records")
        raise HTTPException(status_code=500, detail="Failed to fetch attendance records.")


@router.get("/scans/latest", response_model=ScanEventOut)
def latest_scan(ctx: PipelineContext = Depends(get_context)):
    try:
        row = SqliteScanSource(ctx).latest()
    except sqlite3.Error:
        logger.exception("Failed to fetch latest RFID scan")
        raise HTTPException(status_code=500, detail="Failed to fetch latest RFID scan.")
    if not row:
        raise HTTPException(status_code=404, detail="No RFID scan recorded yet.")
    return row


@router.get("/scans", response_model=ScanEventPage)
def list_scans(
    status: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    ctx: PipelineContext = Depends(get_context),
):
    clean_status = status.strip().lower() if status else None
    if clean_status and clean_status not in ALLOWED_SCAN_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status filter.")

    try:
        rows = get_scan_events(status=clean_status, limit=limit, offset=offset, db_path=ctx.db_path)
        total = get_scan_events_total(status=clean_status, db_path=ctx.db_path)
    except sqlite3.Error:
        logger.exception("Failed to fetch scan events")
        raise HTTPException(status_code=500, detail="Failed to fetch scan events.")
    return {"rows": rows, "total": total, "limit": limit, "offset": offset}


@router.get("/audit-log", response_model=AuditLogPage)
def list_audit_log(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    ctx: PipelineContext = Depends(get_context),
):
    try:
        rows = get_audit_log(limit=limit, offset=offset, db_path=ctx.db_path)
        total = count_audit_log(db_path=ctx.db_path)
    except sqlite3.Error:
        logger.exception("Failed to fetch audit log")
        raise HTTPException(status_code=500, detail="Failed to fetch audit log.")
    return {"rows": rows, "total": total, "limit": limit, "offset": offset}
