from datetime import datetime
from typing import TypedDict

from backend.context import PipelineContext
from backend.services.identity import RoomRecord, StudentRecord
from database.db import WEEKDAY_NAMES, connect_db


class ScheduledSession(TypedDict):
    id: int
    program_id: int
    semester_id: int
    room_id: int
    weekday: str
    course_name: str | None


def weekday_name(moment: datetime) -> str:
    # Locale-independent, unlike strftime("%A").
    return WEEKDAY_NAMES[moment.weekday()]


def find_active_session(
    ctx: PipelineContext,
    student: StudentRecord,
    room: RoomRecord,
    now: datetime,
) -> ScheduledSession | None:
    """
    Return the first class schedule for the student's program/semester in this
    room on `now`'s weekday.

    Time of day is not considered: any session on the same weekday counts, and
    when several match the lowest id wins.
    """
    conn = connect_db(ctx.db_path, timeout=ctx.busy_timeout)
    try:
        row = conn.execute(
            """
            SELECT id, program_id, semester_id, room_id, weekday, course_name
            FROM class_schedules
            WHERE program_id = ?
              AND semester_id = ?
              AND room_id = ?
              AND weekday = ?
            ORDER BY id ASC
            LIMIT 1
            """,
            (student["program_id"], student["semester_id"], room["id"], weekday_name(now)),
        ).fetchone()
    finally:
        conn.close()

    if not row:
        return None
    return {
        "id": int(row[0]),
        "program_id": int(row[1]),
        "semester_id": int(row[2]),
        "room_id": int(row[3]),
        "weekday": str(row[4]),
        "course_name": str(row[5]) if row[5] is not None else None,
    }
