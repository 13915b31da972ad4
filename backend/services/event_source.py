from datetime import datetime
from typing import Any, Mapping

from backend.context import PipelineContext
from database.db import (
    get_latest_scan_event,
    get_pending_scan_events,
    insert_scan_event,
    update_scan_outcome,
)


class SqliteScanSource:
    """
    Scan event source backed by the `rfid_scans` table.

    The reader transport appends rows; the worker polls rows that have no
    outcome yet and writes `{status, response}` back onto them.
    """

    def __init__(self, ctx: PipelineContext) -> None:
        self.ctx = ctx

    def append(self, tag: str | None, device_id: str | None, received_at: datetime | None = None) -> int:
        stamp = (received_at or self.ctx.now()).strftime("%Y-%m-%d %H:%M:%S")
        return insert_scan_event(tag, device_id, stamp, db_path=self.ctx.db_path)

    def poll_pending(self, *, after_id: int = 0, limit: int = 50) -> list[dict[str, Any]]:
        return get_pending_scan_events(after_id=after_id, limit=limit, db_path=self.ctx.db_path)

    def write_outcome(self, event_id: int, outcome: Mapping[str, Any]) -> bool:
        return update_scan_outcome(
            int(event_id),
            status=str(outcome["status"]),
            response=str(outcome["reason"]),
            processed_at=self.ctx.now().strftime("%Y-%m-%d %H:%M:%S"),
            db_path=self.ctx.db_path,
        )

    def latest(self) -> dict[str, Any] | None:
        return get_latest_scan_event(db_path=self.ctx.db_path)
