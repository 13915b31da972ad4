import threading
import time
from concurrent.futures import wait

import backend.services.scan_worker as scan_worker
import database.db as db
from backend.services.event_source import SqliteScanSource
from backend.services.scan_worker import QUEUE_DEPTH_FACTOR, ScanWorker
from backend.tests.helpers import FIXED_NOW, count_rows


def _scans_by_id(db_path):
    return {row["id"]: row for row in db.get_scan_events(db_path=db_path)}


def test_poll_once_processes_each_pending_event_and_writes_back(ctx, roster, db_path):
    source = SqliteScanSource(ctx)
    saved_id = source.append("T100", "D9")
    duplicate_id = source.append("T100", "D9")
    unknown_id = source.append("T999", "D9")
    incomplete_id = source.append(None, "D9")

    worker = ScanWorker(ctx, source, max_concurrency=1)
    try:
        futures = worker.poll_once()
        while futures:
            wait(futures, timeout=30)
            futures = worker.poll_once()
    finally:
        worker.stop()

    scans = _scans_by_id(db_path)
    assert (scans[saved_id]["status"], scans[saved_id]["response"]) == ("processed", "attendance saved")
    assert (scans[duplicate_id]["status"], scans[duplicate_id]["response"]) == (
        "processed",
        "already recorded today",
    )
    assert (scans[unknown_id]["status"], scans[unknown_id]["response"]) == ("rejected", "tag not registered")
    assert (scans[incomplete_id]["status"], scans[incomplete_id]["response"]) == (
        "rejected",
        "incomplete scan data",
    )
    assert all(row["processed_at"] == "2026-10-19 08:30:00" for row in scans.values())
    assert count_rows(db_path, "attendance_records") == 1

    status = worker.status()
    assert status["dispatched"] == 4
    assert status["processed"] == 2
    assert status["rejected"] == 2
    assert status["failed"] == 0
    assert status["in_flight"] == 0
    assert status["state"] == "stopped"


def test_already_answered_events_are_not_redelivered(ctx, roster, db_path):
    source = SqliteScanSource(ctx)
    answered = source.append("T100", "D9")
    db.update_scan_outcome(
        answered,
        status="rejected",
        response="server error",
        processed_at="2026-10-19 08:00:00",
        db_path=db_path,
    )

    worker = ScanWorker(ctx, source)
    try:
        assert worker.poll_once() == []
    finally:
        worker.stop()

    assert count_rows(db_path, "attendance_records") == 0


def test_running_worker_picks_up_new_scans(ctx, roster, db_path):
    source = SqliteScanSource(ctx)
    worker = ScanWorker(ctx, source, poll_interval=0.05)
    assert worker.start() is True
    assert worker.start() is False

    try:
        event_id = source.append("T100", "D9", received_at=FIXED_NOW)
        deadline = time.monotonic() + 10
        while time.monotonic() < deadline:
            if _scans_by_id(db_path)[event_id]["status"] is not None:
                break
            time.sleep(0.05)
    finally:
        worker.stop()

    row = _scans_by_id(db_path)[event_id]
    assert row["status"] == "processed"
    assert row["response"] == "attendance saved"
    assert row["received_at"] == "2026-10-19 08:30:00"
    assert worker.status()["last_event_id"] == event_id


def test_latest_returns_most_recent_scan(ctx, db_path):
    source = SqliteScanSource(ctx)
    assert source.latest() is None

    source.append("T1", "D1")
    last_id = source.append("T2", "D2")

    latest = source.latest()
    assert latest["id"] == last_id
    assert latest["tag"] == "T2"
    assert latest["status"] is None


def test_poll_once_holds_back_while_pool_is_saturated(ctx, roster, db_path, monkeypatch):
    release = threading.Event()
    real_handle = scan_worker.handle_scan_event

    def slow_handle(ctx, source, event):
        release.wait(30)
        return real_handle(ctx, source, event)

    monkeypatch.setattr(scan_worker, "handle_scan_event", slow_handle)
    source = SqliteScanSource(ctx)
    ids = [source.append("T100", "D9") for _ in range(5)]

    worker = ScanWorker(ctx, source, max_concurrency=1)
    try:
        first = worker.poll_once()
        assert len(first) == QUEUE_DEPTH_FACTOR
        # No free slots: nothing is fetched and the cursor stays put.
        assert worker.poll_once() == []
        assert worker.status()["dispatched"] == QUEUE_DEPTH_FACTOR
        assert worker.status()["last_event_id"] == ids[QUEUE_DEPTH_FACTOR - 1]

        release.set()
        wait(first, timeout=30)
        futures = worker.poll_once()
        while futures:
            wait(futures, timeout=30)
            futures = worker.poll_once()
    finally:
        release.set()
        worker.stop()

    scans = _scans_by_id(db_path)
    assert all(scans[i]["status"] == "processed" for i in ids)
    assert count_rows(db_path, "attendance_records") == 1
    status = worker.status()
    assert status["dispatched"] == 5
    assert status["in_flight"] == 0


class _GatedSource(SqliteScanSource):
    """Blocks inside poll_pending until released."""

    def __init__(self, ctx):
        super().__init__(ctx)
        self.entered = threading.Event()
        self.release = threading.Event()

    def poll_pending(self, *, after_id=0, limit=50):
        self.entered.set()
        self.release.wait(30)
        return super().poll_pending(after_id=after_id, limit=limit)


def test_stop_timeout_keeps_pool_until_poll_thread_exits(ctx, roster, db_path):
    source = _GatedSource(ctx)
    event_id = source.append("T100", "D9")

    worker = ScanWorker(ctx, source, poll_interval=0.05)
    worker.start()
    try:
        assert source.entered.wait(10)
        assert worker.stop(timeout=0.05) is False
        assert worker.status()["state"] == "stopping"
    finally:
        source.release.set()

    assert worker.stop(timeout=10) is True

    row = _scans_by_id(db_path)[event_id]
    assert row["status"] == "processed"
    assert row["response"] == "attendance saved"
    status = worker.status()
    assert status["state"] == "stopped"
    assert status["dispatched"] == 1
    assert status["in_flight"] == 0
    assert status["last_error"] is None
