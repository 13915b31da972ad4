import logging
from typing import Any, Literal, Mapping, TypedDict

from backend.context import PipelineContext
from backend.services.event_source import SqliteScanSource
from backend.services.identity import resolve_room, resolve_student
from backend.services.ledger import attendance_day, attendance_exists, try_record_attendance
from backend.services.schedule import find_active_session


logger = logging.getLogger(__name__)

PipelineState = Literal[
    "received",
    "validating-identity",
    "validating-schedule",
    "checking-duplicate",
    "committing",
    "processed",
    "rejected",
]
OutcomeStatus = Literal["processed", "rejected"]
DecisionCode = Literal[
    "INCOMPLETE_SCAN",
    "TAG_NOT_REGISTERED",
    "DEVICE_NOT_RECOGNIZED",
    "NO_ACTIVE_SCHEDULE",
    "ALREADY_RECORDED",
    "ATTENDANCE_SAVED",
    "ERROR",
]

DECISION_STATUS: dict[DecisionCode, OutcomeStatus] = {
    "INCOMPLETE_SCAN": "rejected",
    "TAG_NOT_REGISTERED": "rejected",
    "DEVICE_NOT_RECOGNIZED": "rejected",
    "NO_ACTIVE_SCHEDULE": "rejected",
    "ALREADY_RECORDED": "processed",
    "ATTENDANCE_SAVED": "processed",
    "ERROR": "rejected",
}

REASON_MESSAGES: dict[str, dict[DecisionCode, str]] = {
    "en": {
        "INCOMPLETE_SCAN": "incomplete scan data",
        "TAG_NOT_REGISTERED": "tag not registered",
        "DEVICE_NOT_RECOGNIZED": "device not recognized",
        "NO_ACTIVE_SCHEDULE": "no active schedule in this room",
        "ALREADY_RECORDED": "already recorded today",
        "ATTENDANCE_SAVED": "attendance saved",
        "ERROR": "server error",
    },
    "id": {
        "INCOMPLETE_SCAN": "Data scan tidak lengkap",
        "TAG_NOT_REGISTERED": "RFID tidak terdaftar",
        "DEVICE_NOT_RECOGNIZED": "Alat RFID tidak dikenali",
        "NO_ACTIVE_SCHEDULE": "Tidak ada jadwal aktif di ruangan ini",
        "ALREADY_RECORDED": "Absensi sudah tercatat hari ini",
        "ATTENDANCE_SAVED": "Absensi tersimpan",
        "ERROR": "Terjadi kesalahan server",
    },
}


class PipelineOutcome(TypedDict):
    status: OutcomeStatus
    reason: str
    decision_code: DecisionCode
    attendance_id: int | None


def reason_for(decision_code: DecisionCode, language: str = "en") -> str:
    messages = REASON_MESSAGES.get(language, REASON_MESSAGES["en"])
    return messages[decision_code]


def _outcome(
    ctx: PipelineContext,
    decision_code: DecisionCode,
    *,
    attendance_id: int | None = None,
) -> PipelineOutcome:
    return {
        "status": DECISION_STATUS[decision_code],
        "reason": reason_for(decision_code, ctx.reason_language),
        "decision_code": decision_code,
        "attendance_id": attendance_id,
    }


def _clean_field(scan: Mapping[str, Any], key: str) -> str | None:
    value = scan.get(key)
    if not isinstance(value, str) or not value:
        return None
    return value


def process_scan(ctx: PipelineContext, scan: Mapping[str, Any] | None) -> PipelineOutcome:
    """
    Run one scan through identity, schedule and duplicate checks, then commit.

    Steps run in order and the first failing check decides the outcome.
    Never raises: unexpected errors are logged and reported as "server error".
    """
    state: PipelineState = "received"
    try:
        tag = _clean_field(scan, "tag") if scan else None
        device_id = _clean_field(scan, "device_id") if scan else None
        if tag is None or device_id is None:
            return _outcome(ctx, "INCOMPLETE_SCAN")

        state = "validating-identity"
        student = resolve_student(ctx, tag)
        if student is None:
            return _outcome(ctx, "TAG_NOT_REGISTERED")
        room = resolve_room(ctx, device_id)
        if room is None:
            return _outcome(ctx, "DEVICE_NOT_RECOGNIZED")

        state = "validating-schedule"
        now = ctx.now()
        session = find_active_session(ctx, student, room, now)
        if session is None:
            return _outcome(ctx, "NO_ACTIVE_SCHEDULE")

        state = "checking-duplicate"
        if attendance_exists(ctx, student["id"], session["id"], attendance_day(now)):
            return _outcome(ctx, "ALREADY_RECORDED")

        state = "committing"
        result = try_record_attendance(ctx, student["id"], session, room, now, payload=scan)
        if result["outcome"] == "already_exists":
            return _outcome(ctx, "ALREADY_RECORDED", attendance_id=result["attendance_id"])
        return _outcome(ctx, "ATTENDANCE_SAVED", attendance_id=result["attendance_id"])
    except Exception:
        logger.exception("Scan pipeline failed while %s: scan=%r", state, scan)
        return _outcome(ctx, "ERROR")


def handle_scan_event(
    ctx: PipelineContext,
    source: SqliteScanSource,
    event: Mapping[str, Any],
) -> PipelineOutcome:
    """Process a delivered scan event and write its outcome back once (best effort)."""
    outcome = process_scan(ctx, event)
    logger.info(
        "Scan %s -> %s (%s)",
        event.get("id"),
        outcome["status"],
        outcome["decision_code"],
    )
    try:
        source.write_outcome(event["id"], outcome)
    except Exception:
        logger.exception("Failed to write outcome back to scan %s", event.get("id"))
    return outcome
