import sqlite3
from pathlib import Path
from typing import Any

from backend.config import DB_BUSY_TIMEOUT_SECONDS, DB_PATH

SCHEMA_MIGRATION_FILE = Path(__file__).resolve().parent / "migrations" / "001_rfid_attendance.sql"
SCAN_STATUSES: set[str] = {"processed", "rejected"}
WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


def connect_db(db_path: Path | str | None = None, *, timeout: float | None = None) -> sqlite3.Connection:
    conn = sqlite3.connect(
        str(db_path or DB_PATH),
        timeout=DB_BUSY_TIMEOUT_SECONDS if timeout is None else timeout,
        check_same_thread=False,
    )
    # recommended with FK tables
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def ensure_schema(conn: sqlite3.Connection) -> None:
    """
    Apply `database/migrations/001_rfid_attendance.sql` (idempotent).
    """
    sql = SCHEMA_MIGRATION_FILE.read_text(encoding="utf-8")
    conn.executescript(sql)


def create_tables(db_path: Path | str | None = None) -> None:
    conn = connect_db(db_path)
    try:
        # WAL lets the read API and lookups run while a scan is committing.
        conn.execute("PRAGMA journal_mode = WAL;")
        ensure_schema(conn)
        conn.commit()
    finally:
        conn.close()


# -----------------------------
# Roster / facilities
# -----------------------------
def add_student(
    full_name: str,
    rfid_tag: str,
    program_id: int,
    semester_id: int,
    *,
    db_path: Path | str | None = None,
) -> int:
    conn = connect_db(db_path)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO students (full_name, rfid_tag, program_id, semester_id)
            VALUES (?, ?, ?, ?)
            """,
            (full_name, rfid_tag, program_id, semester_id),
        )
        student_id = int(cur.lastrowid)
        conn.commit()
        return student_id
    finally:
        conn.close()


def add_room(name: str, reader_device_tag: str, *, db_path: Path | str | None = None) -> int:
    conn = connect_db(db_path)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO rooms (name, reader_device_tag)
            VALUES (?, ?)
            """,
            (name, reader_device_tag),
        )
        room_id = int(cur.lastrowid)
        conn.commit()
        return room_id
    finally:
        conn.close()


def add_class_schedule(
    program_id: int,
    semester_id: int,
    room_id: int,
    weekday: str,
    *,
    course_name: str | None = None,
    db_path: Path | str | None = None,
) -> int:
    clean_weekday = weekday.strip().capitalize()
    if clean_weekday not in WEEKDAY_NAMES:
        raise ValueError(f"Unknown weekday: {weekday!r}")

    conn = connect_db(db_path)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO class_schedules (program_id, semester_id, room_id, weekday, course_name)
            VALUES (?, ?, ?, ?, ?)
            """,
            (program_id, semester_id, room_id, clean_weekday, course_name),
        )
        schedule_id = int(cur.lastrowid)
        conn.commit()
        return schedule_id
    finally:
        conn.close()


# -----------------------------
# Attendance + audit log (read side)
# -----------------------------
def get_attendance_records(date: str | None = None, *, db_path: Path | str | None = None) -> list[dict[str, Any]]:
    where = ["1=1"]
    params: list[Any] = []
    if date:
        where.append("ar.attendance_date = ?")
        params.append(date)

    conn = connect_db(db_path)
    try:
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT
                ar.id,
                ar.student_id,
                s.full_name,
                ar.session_id,
                cs.course_name,
                ar.room_id,
                r.name,
                ar.attendance_date,
                ar.recorded_at,
                ar.status
            FROM attendance_records ar
            LEFT JOIN students s ON s.id = ar.student_id
            LEFT JOIN class_schedules cs ON cs.id = ar.session_id
            LEFT JOIN rooms r ON r.id = ar.room_id
            WHERE {" AND ".join(where)}
            ORDER BY ar.recorded_at DESC, ar.id DESC
            """,
            params,
        )
        rows = cur.fetchall()
    finally:
        conn.close()

    return [
        {
            "id": row[0],
            "student_id": row[1],
            "student_name": row[2],
            "session_id": row[3],
            "course_name": row[4],
            "room_id": row[5],
            "room_name": row[6],
            "attendance_date": row[7],
            "recorded_at": row[8],
            "status": row[9],
        }
        for row in rows
    ]


def count_attendance_records(*, db_path: Path | str | None = None) -> int:
    conn = connect_db(db_path)
    try:
        row = conn.execute("SELECT COUNT(1) FROM attendance_records").fetchone()
    finally:
        conn.close()
    return int(row[0] or 0) if row else 0


def get_audit_log(
    *,
    limit: int = 100,
    offset: int = 0,
    db_path: Path | str | None = None,
) -> list[dict[str, Any]]:
    safe_limit = max(1, min(int(limit), 500))
    safe_offset = max(0, int(offset))

    conn = connect_db(db_path)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, event, detail, recorded_at
            FROM audit_log
            ORDER BY id DESC
            LIMIT ?
            OFFSET ?
            """,
            (safe_limit, safe_offset),
        )
        rows = cur.fetchall()
    finally:
        conn.close()

    return [
        {"id": row[0], "event": row[1], "detail": row[2], "recorded_at": row[3]}
        for row in rows
    ]


def count_audit_log(*, db_path: Path | str | None = None) -> int:
    conn = connect_db(db_path)
    try:
        row = conn.execute("SELECT COUNT(1) FROM audit_log").fetchone()
    finally:
        conn.close()
    return int(row[0] or 0) if row else 0


# -----------------------------
# Scan events (rfid_scans)
# -----------------------------
def _scan_row_to_dict(row: tuple) -> dict[str, Any]:
    return {
        "id": row[0],
        "tag": row[1],
        "device_id": row[2],
        "received_at": row[3],
        "status": row[4],
        "response": row[5],
        "processed_at": row[6],
    }


def insert_scan_event(
    tag: str | None,
    device_id: str | None,
    received_at: str,
    *,
    db_path: Path | str | None = None,
) -> int:
    """
    Append a raw scan as a pending event and return `rfid_scans.id`.
    """
    conn = connect_db(db_path)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO rfid_scans (tag, device_id, received_at)
            VALUES (?, ?, ?)
            """,
            (tag, device_id, received_at),
        )
        event_id = int(cur.lastrowid)
        conn.commit()
        return event_id
    finally:
        conn.close()


def get_pending_scan_events(
    *,
    after_id: int = 0,
    limit: int = 50,
    db_path: Path | str | None = None,
) -> list[dict[str, Any]]:
    conn = connect_db(db_path)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, tag, device_id, received_at, status, response, processed_at
            FROM rfid_scans
            WHERE status IS NULL
              AND id > ?
            ORDER BY id ASC
            LIMIT ?
            """,
            (after_id, max(1, int(limit))),
        )
        rows = cur.fetchall()
    finally:
        conn.close()
    return [_scan_row_to_dict(row) for row in rows]


def update_scan_outcome(
    event_id: int,
    *,
    status: str,
    response: str,
    processed_at: str,
    db_path: Path | str | None = None,
) -> bool:
    if status not in SCAN_STATUSES:
        raise ValueError(f"Invalid scan status: {status!r}")

    conn = connect_db(db_path)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            UPDATE rfid_scans
            SET status = ?,
                response = ?,
                processed_at = ?
            WHERE id = ?
            """,
            (status, response, processed_at, event_id),
        )
        updated = cur.rowcount > 0
        conn.commit()
        return updated
    finally:
        conn.close()


def get_latest_scan_event(*, db_path: Path | str | None = None) -> dict[str, Any] | None:
    conn = connect_db(db_path)
    try:
        row = conn.execute(
            """
            SELECT id, tag, device_id, received_at, status, response, processed_at
            FROM rfid_scans
            ORDER BY id DESC
            LIMIT 1
            """
        ).fetchone()
    finally:
        conn.close()
    return _scan_row_to_dict(row) if row else None


def _build_scan_events_where_clause(*, status: str | None = None) -> tuple[str, list[Any]]:
    where = ["1=1"]
    params: list[Any] = []

    if status == "pending":
        where.append("status IS NULL")
    elif status is not None:
        where.append("status = ?")
        params.append(status)

    return " AND ".join(where), params


def get_scan_events(
    *,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
    db_path: Path | str | None = None,
) -> list[dict[str, Any]]:
    where_sql, params = _build_scan_events_where_clause(status=status)
    params.extend([max(1, min(int(limit), 500)), max(0, int(offset))])

    conn = connect_db(db_path)
    try:
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT id, tag, device_id, received_at, status, response, processed_at
            FROM rfid_scans
            WHERE {where_sql}
            ORDER BY id DESC
            LIMIT ?
            OFFSET ?
            """,
            params,
        )
        rows = cur.fetchall()
    finally:
        conn.close()
    return [_scan_row_to_dict(row) for row in rows]


def get_scan_events_total(*, status: str | None = None, db_path: Path | str | None = None) -> int:
    where_sql, params = _build_scan_events_where_clause(status=status)
    conn = connect_db(db_path)
    try:
        row = conn.execute(
            f"""
            SELECT COUNT(1)
            FROM rfid_scans
            WHERE {where_sql}
            """,
            params,
        ).fetchone()
    finally:
        conn.close()
    return int(row[0] or 0) if row else 0
