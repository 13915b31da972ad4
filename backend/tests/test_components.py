import sqlite3
from datetime import timedelta

import pytest

import database.db as db
from backend.services.identity import resolve_room, resolve_student
from backend.services.ledger import attendance_exists, try_record_attendance
from backend.services.schedule import find_active_session, weekday_name
from backend.tests.helpers import FIXED_NOW, count_rows


def test_resolve_student_and_room(ctx, roster):
    student = resolve_student(ctx, "T100")
    room = resolve_room(ctx, "D9")

    assert student is not None
    assert student["id"] == roster["student_id"]
    assert (student["program_id"], student["semester_id"]) == (5, 2)
    assert room is not None
    assert room["id"] == roster["room_id"]

    assert resolve_student(ctx, "T999") is None
    assert resolve_room(ctx, "D9 ") is None


def test_weekday_name_is_locale_independent():
    assert weekday_name(FIXED_NOW) == "Monday"
    assert weekday_name(FIXED_NOW + timedelta(days=6)) == "Sunday"


def test_find_active_session_takes_first_of_several(ctx, roster, db_path):
    # A second class period in the same room on the same day.
    db.add_class_schedule(5, 2, roster["room_id"], "monday", course_name="Databases", db_path=db_path)
    student = resolve_student(ctx, "T100")
    room = resolve_room(ctx, "D9")

    session = find_active_session(ctx, student, room, FIXED_NOW)

    assert session is not None
    assert session["id"] == roster["session_id"]
    assert session["course_name"] == "Algorithms"


def test_find_active_session_requires_program_and_semester(ctx, roster, db_path):
    db.add_student("Other Program", "T200", 6, 2, db_path=db_path)
    db.add_student("Other Semester", "T300", 5, 3, db_path=db_path)
    room = resolve_room(ctx, "D9")

    assert find_active_session(ctx, resolve_student(ctx, "T200"), room, FIXED_NOW) is None
    assert find_active_session(ctx, resolve_student(ctx, "T300"), room, FIXED_NOW) is None


def test_add_class_schedule_rejects_unknown_weekday(db_path, roster):
    with pytest.raises(ValueError):
        db.add_class_schedule(5, 2, roster["room_id"], "Funday", db_path=db_path)


def test_ledger_insert_then_already_exists(ctx, roster):
    student = resolve_student(ctx, "T100")
    room = resolve_room(ctx, "D9")
    session = find_active_session(ctx, student, room, FIXED_NOW)

    first = try_record_attendance(ctx, student["id"], session, room, FIXED_NOW, payload={"tag": "T100"})
    second = try_record_attendance(ctx, student["id"], session, room, FIXED_NOW, payload={"tag": "T100"})

    assert first["outcome"] == "inserted"
    assert second["outcome"] == "already_exists"
    assert second["attendance_id"] == first["attendance_id"]
    assert attendance_exists(ctx, student["id"], session["id"], "2026-10-19")
    assert not attendance_exists(ctx, student["id"], session["id"], "2026-10-26")


def test_ledger_rolls_back_attendance_when_audit_write_fails(ctx, roster, db_path):
    student = resolve_student(ctx, "T100")
    room = resolve_room(ctx, "D9")
    session = find_active_session(ctx, student, room, FIXED_NOW)

    conn = db.connect_db(db_path)
    conn.execute("DROP TABLE audit_log")
    conn.commit()
    conn.close()

    with pytest.raises(sqlite3.OperationalError):
        try_record_attendance(ctx, student["id"], session, room, FIXED_NOW, payload={"tag": "T100"})

    assert count_rows(db_path, "attendance_records") == 0


def test_ledger_foreign_key_violation_is_not_a_duplicate(ctx, roster):
    room = resolve_room(ctx, "D9")
    ghost_session = {
        "id": 9999,
        "program_id": 5,
        "semester_id": 2,
        "room_id": room["id"],
        "weekday": "Monday",
        "course_name": None,
    }

    with pytest.raises(sqlite3.IntegrityError):
        try_record_attendance(ctx, roster["student_id"], ghost_session, room, FIXED_NOW)
