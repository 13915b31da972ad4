from typing import TypedDict

from backend.context import PipelineContext
from database.db import connect_db


class StudentRecord(TypedDict):
    id: int
    full_name: str
    rfid_tag: str
    program_id: int
    semester_id: int


class RoomRecord(TypedDict):
    id: int
    name: str
    reader_device_tag: str


def resolve_student(ctx: PipelineContext, tag: str) -> StudentRecord | None:
    """Exact-match lookup of a student by RFID tag. None when the tag is unknown."""
    conn = connect_db(ctx.db_path, timeout=ctx.busy_timeout)
    try:
        row = conn.execute(
            """
            SELECT id, full_name, rfid_tag, program_id, semester_id
            FROM students
            WHERE rfid_tag = ?
            LIMIT 1
            """,
            (tag,),
        ).fetchone()
    finally:
        conn.close()

    if not row:
        return None
    return {
        "id": int(row[0]),
        "full_name": str(row[1]),
        "rfid_tag": str(row[2]),
        "program_id": int(row[3]),
        "semester_id": int(row[4]),
    }


def resolve_room(ctx: PipelineContext, device_id: str) -> RoomRecord | None:
    """Exact-match lookup of the room a reader device is installed in."""
    conn = connect_db(ctx.db_path, timeout=ctx.busy_timeout)
    try:
        row = conn.execute(
            """
            SELECT id, name, reader_device_tag
            FROM rooms
            WHERE reader_device_tag = ?
            LIMIT 1
            """,
            (device_id,),
        ).fetchone()
    finally:
        conn.close()

    if not row:
        return None
    return {
        "id": int(row[0]),
        "name": str(row[1]),
        "reader_device_tag": str(row[2]),
    }
