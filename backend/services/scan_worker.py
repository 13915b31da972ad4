import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Any

from backend.config import (
    WORKER_BATCH_SIZE,
    WORKER_MAX_CONCURRENCY,
    WORKER_POLL_INTERVAL_SECONDS,
)
from backend.context import PipelineContext
from backend.services.event_source import SqliteScanSource
from backend.services.scan_pipeline import PipelineOutcome, handle_scan_event

logger = logging.getLogger(__name__)

# Submitted-but-unfinished events allowed per pool thread.
QUEUE_DEPTH_FACTOR = 2


class ScanWorker:
    """
    Polls the scan event source and runs each new event through the pipeline
    as its own task on a bounded thread pool.

    Every event is dispatched at most once per worker lifetime: the poll cursor
    moves past an event as soon as it is submitted. Rows that never got an
    outcome stay pending and are picked up again after a restart.
    """

    def __init__(
        self,
        ctx: PipelineContext,
        source: SqliteScanSource | None = None,
        *,
        poll_interval: float = WORKER_POLL_INTERVAL_SECONDS,
        batch_size: int = WORKER_BATCH_SIZE,
        max_concurrency: int = WORKER_MAX_CONCURRENCY,
    ) -> None:
        self.ctx = ctx
        self.source = source or SqliteScanSource(ctx)
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency

        self._cursor = 0
        self._cursor_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._status_lock = threading.Lock()
        self._status: dict[str, Any] = {
            "state": "idle",          # idle | running | stopping | stopped
            "started_at": None,       # ISO string
            "last_poll_at": None,     # ISO string
            "last_event_id": 0,
            "dispatched": 0,
            "processed": 0,
            "rejected": 0,
            "failed": 0,
            "in_flight": 0,
            "last_error": None,
        }

    # -----------------------------
    # Lifecycle
    # -----------------------------
    def start(self) -> bool:
        if self._thread is not None and self._thread.is_alive():
            return False
        self._stop.clear()
        self._ensure_executor()
        self._thread = threading.Thread(target=self._run, name="scan-worker", daemon=True)
        with self._status_lock:
            self._status["state"] = "running"
            self._status["started_at"] = datetime.now().isoformat(timespec="seconds")
        self._thread.start()
        logger.info(
            "Scan worker started (poll=%.2fs, batch=%d, concurrency=%d)",
            self.poll_interval,
            self.batch_size,
            self.max_concurrency,
        )
        return True

    def stop(self, timeout: float | None = None) -> bool:
        """Stop polling and drain in-flight scans. Returns False if the poll thread is still alive."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                # The pool stays up until the poll thread has exited.
                logger.warning("Scan worker poll thread did not exit within %ss", timeout)
                with self._status_lock:
                    self._status["state"] = "stopping"
                return False
            self._thread = None
        if self._executor is not None:
            # in-flight scans run to their terminal outcome
            self._executor.shutdown(wait=True)
            self._executor = None
        with self._status_lock:
            self._status["state"] = "stopped"
        logger.info("Scan worker stopped")
        return True

    def _ensure_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_concurrency,
                thread_name_prefix="scan-pipeline",
            )
        return self._executor

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception as exc:
                logger.exception("Scan worker poll failed")
                with self._status_lock:
                    self._status["last_error"] = f"{exc.__class__.__name__}: {exc}"
            self._stop.wait(self.poll_interval)

    # -----------------------------
    # Dispatch
    # -----------------------------
    def poll_once(self) -> list["Future[PipelineOutcome | None]"]:
        """
        Fetch pending events past the cursor and submit one task per event.

        At most `max_concurrency * QUEUE_DEPTH_FACTOR` events are in flight at
        once; a poll with no free slots fetches nothing and leaves the cursor.
        """
        executor = self._ensure_executor()
        with self._status_lock:
            free = self.max_concurrency * QUEUE_DEPTH_FACTOR - self._status["in_flight"]
        if free <= 0:
            with self._status_lock:
                self._status["last_poll_at"] = datetime.now().isoformat(timespec="seconds")
            return []

        with self._cursor_lock:
            events = self.source.poll_pending(after_id=self._cursor, limit=min(self.batch_size, free))
            if events:
                self._cursor = max(int(e["id"]) for e in events)

        futures: list[Future[PipelineOutcome | None]] = []
        for event in events:
            with self._status_lock:
                self._status["dispatched"] += 1
                self._status["in_flight"] += 1
                self._status["last_event_id"] = int(event["id"])
            futures.append(executor.submit(self._handle, event))

        with self._status_lock:
            self._status["last_poll_at"] = datetime.now().isoformat(timespec="seconds")
        return futures

    def _handle(self, event: dict[str, Any]) -> PipelineOutcome | None:
        try:
            outcome = handle_scan_event(self.ctx, self.source, event)
        except Exception as exc:
            logger.exception("Scan task crashed for event %s", event.get("id"))
            with self._status_lock:
                self._status["failed"] += 1
                self._status["in_flight"] -= 1
                self._status["last_error"] = f"{exc.__class__.__name__}: {exc}"
            return None

        with self._status_lock:
            self._status["in_flight"] -= 1
            if outcome["decision_code"] == "ERROR":
                self._status["failed"] += 1
            elif outcome["status"] == "processed":
                self._status["processed"] += 1
            else:
                self._status["rejected"] += 1
        return outcome

    def status(self) -> dict[str, Any]:
        with self._status_lock:
            return dict(self._status)
