import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from pathlib import Path
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from backend.config import (
    ATTENDANCE_TIMEZONE,
    DB_BUSY_TIMEOUT_SECONDS,
    DB_PATH,
    REASON_LANGUAGE,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(dt_timezone.utc)


def _system_clock(
    tz: ZoneInfo | None,
    utcnow: Callable[[], datetime] = _utcnow,
) -> Callable[[], datetime]:
    def now() -> datetime:
        if tz is None:
            return datetime.now()
        # Naive wall-clock time in the configured zone.
        return utcnow().astimezone(tz).replace(tzinfo=None)

    return now


def _load_timezone(name: str) -> ZoneInfo | None:
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        logger.warning("Unknown RFIDATT_TIMEZONE %r; using server local time", name)
        return None


@dataclass(frozen=True)
class PipelineContext:
    """
    Everything a pipeline component needs to reach the store and read the clock.

    Built once at startup (see `build_context`) and passed explicitly to the
    identity resolver, schedule matcher, ledger, event source and worker.
    """

    db_path: Path
    busy_timeout: float = 30.0
    timezone: str = ""
    reason_language: str = "en"
    clock: Callable[[], datetime] = field(default=datetime.now, compare=False)

    def now(self) -> datetime:
        return self.clock()


def build_context(
    *,
    db_path: Path | str | None = None,
    timezone: str | None = None,
    reason_language: str | None = None,
    clock: Callable[[], datetime] | None = None,
    utcnow: Callable[[], datetime] | None = None,
) -> PipelineContext:
    tz_name = ATTENDANCE_TIMEZONE if timezone is None else timezone.strip()
    tz = _load_timezone(tz_name)
    return PipelineContext(
        db_path=Path(db_path) if db_path is not None else DB_PATH,
        busy_timeout=DB_BUSY_TIMEOUT_SECONDS,
        timezone=tz_name if tz is not None else "",
        reason_language=reason_language or REASON_LANGUAGE,
        clock=clock or _system_clock(tz, utcnow or _utcnow),
    )
