import pytest

import database.db as db
from backend.context import build_context
from backend.services.schedule import weekday_name
from backend.tests.helpers import FIXED_NOW


@pytest.fixture()
def db_path(tmp_path):
    path = tmp_path / "rfid_attendance_test.db"
    db.create_tables(path)
    return path


@pytest.fixture()
def ctx(db_path):
    return build_context(db_path=db_path, timezone="", reason_language="en", clock=lambda: FIXED_NOW)


@pytest.fixture()
def roster(db_path):
    student_id = db.add_student("Student One", "T100", 5, 2, db_path=db_path)
    room_id = db.add_room("R1", "D9", db_path=db_path)
    session_id = db.add_class_schedule(
        5,
        2,
        room_id,
        weekday_name(FIXED_NOW),
        course_name="Algorithms",
        db_path=db_path,
    )
    return {"student_id": student_id, "room_id": room_id, "session_id": session_id}
