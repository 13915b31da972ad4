import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Literal, Mapping, TypedDict

from backend.context import PipelineContext
from backend.services.identity import RoomRecord
from backend.services.schedule import ScheduledSession
from database.db import connect_db

logger = logging.getLogger(__name__)

AUDIT_EVENT_RFID_SCAN = "RFID Scan"
ATTENDANCE_STATUS_PRESENT = "present"

LedgerOutcome = Literal["inserted", "already_exists"]


class LedgerResult(TypedDict):
    outcome: LedgerOutcome
    attendance_id: int | None


def attendance_day(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d")


def _stamp(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S")


def _find_attendance_id(
    cur: sqlite3.Cursor,
    *,
    student_id: int,
    session_id: int,
    day: str,
) -> int | None:
    cur.execute(
        """
        SELECT id
        FROM attendance_records
        WHERE student_id = ?
          AND session_id = ?
          AND attendance_date = ?
        LIMIT 1
        """,
        (student_id, session_id, day),
    )
    row = cur.fetchone()
    return int(row[0]) if row else None


def attendance_exists(ctx: PipelineContext, student_id: int, session_id: int, day: str) -> bool:
    conn = connect_db(ctx.db_path, timeout=ctx.busy_timeout)
    try:
        found = _find_attendance_id(conn.cursor(), student_id=student_id, session_id=session_id, day=day)
    finally:
        conn.close()
    return found is not None


def try_record_attendance(
    ctx: PipelineContext,
    student_id: int,
    session: ScheduledSession,
    room: RoomRecord,
    now: datetime,
    payload: Mapping[str, Any] | None = None,
) -> LedgerResult:
    """
    Insert the attendance row and its audit entry in one transaction.

    The (student_id, session_id, attendance_date) unique constraint is what
    serializes competing scans: the loser of the race gets an IntegrityError
    and is reported as `already_exists`. Any other storage error rolls back
    both writes and propagates.
    """
    day = attendance_day(now)
    recorded_at = _stamp(now)
    detail = json.dumps(dict(payload or {}), default=str, sort_keys=True)

    conn = connect_db(ctx.db_path, timeout=ctx.busy_timeout)
    cur = conn.cursor()
    try:
        # Take the write lock up front so the busy timeout applies to the whole unit.
        cur.execute("BEGIN IMMEDIATE")
        try:
            cur.execute(
                """
                INSERT INTO attendance_records (
                    student_id,
                    session_id,
                    room_id,
                    attendance_date,
                    recorded_at,
                    status
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (student_id, session["id"], room["id"], day, recorded_at, ATTENDANCE_STATUS_PRESENT),
            )
        except sqlite3.IntegrityError:
            conn.rollback()
            existing_id = _find_attendance_id(cur, student_id=student_id, session_id=session["id"], day=day)
            if existing_id is None:
                # Not a duplicate (e.g. a foreign key violation).
                raise
            logger.info(
                "Attendance already recorded: student=%s session=%s day=%s",
                student_id,
                session["id"],
                day,
            )
            return {"outcome": "already_exists", "attendance_id": existing_id}

        attendance_id = int(cur.lastrowid)
        cur.execute(
            """
            INSERT INTO audit_log (event, detail, recorded_at)
            VALUES (?, ?, ?)
            """,
            (AUDIT_EVENT_RFID_SCAN, detail, recorded_at),
        )
        conn.commit()
        return {"outcome": "inserted", "attendance_id": attendance_id}
    except Exception:
        if conn.in_transaction:
            conn.rollback()
        raise
    finally:
        conn.close()
