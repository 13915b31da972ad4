from pydantic import BaseModel


class AttendanceRecordOut(BaseModel):
    id: int
    student_id: int
    student_name: str | None = None
    session_id: int
    course_name: str | None = None
    room_id: int
    room_name: str | None = None
    attendance_date: str
    recorded_at: str
    status: str


class ScanEventOut(BaseModel):
    id: int
    tag: str | None = None
    device_id: str | None = None
    received_at: str
    status: str | None = None
    response: str | None = None
    processed_at: str | None = None


class ScanEventPage(BaseModel):
    rows: list[ScanEventOut]
    total: int
    limit: int
    offset: int


class AuditLogEntryOut(BaseModel):
    id: int
    event: str
    detail: str | None = None
    recorded_at: str | None = None


class AuditLogPage(BaseModel):
    rows: list[AuditLogEntryOut]
    total: int
    limit: int
    offset: int
