import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

from edgeflow.utils.exception_logging import format_exception_message

logger = logging.getLogger("uvicorn.error")

LEVELS = {
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class ActivitySink(ABC):
    """
    Fire-and-forget activity log. ``record`` never raises: a failure to log
    must not fail the request it describes.
    """

    def record(
        self, level: str, message: str, metadata: Optional[Mapping[str, Any]] = None
    ) -> None:
        try:
            self._write(level, message, dict(metadata or {}))
        except Exception as e:
            try:
                logger.warning(
                    f"[Activity] Failed to log activity '{message}': {format_exception_message(e)}"
                )
            except Exception:
                pass

    @abstractmethod
    def _write(self, level: str, message: str, metadata: dict) -> None:
        pass


class LoggingActivitySink(ActivitySink):
    def _write(self, level: str, message: str, metadata: dict) -> None:
        logger.log(
            LEVELS.get(level, logging.INFO),
            f"[Activity] [{level.upper()}] {message} {json.dumps(metadata, default=str)}",
        )


class SqliteActivitySink(ActivitySink):
    """Stores activity rows with an expiry; purging them is left to retention jobs."""

    def __init__(self, db_path: Path, ttl_days: int = 7):
        self.db_path = Path(db_path)
        self.ttl = timedelta(days=ttl_days)
        if not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS proxy_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    level TEXT NOT NULL,
                    message TEXT NOT NULL,
                    metadata TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
            """
            )
            conn.commit()

    def _write(self, level: str, message: str, metadata: dict) -> None:
        now = datetime.now(timezone.utc)
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO proxy_logs (timestamp, level, message, metadata, expires_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    now.isoformat(),
                    level,
                    message,
                    json.dumps(metadata, default=str),
                    (now + self.ttl).isoformat(),
                ),
            )
            conn.commit()


class CompositeActivitySink(ActivitySink):
    def __init__(self, *sinks: ActivitySink):
        self.sinks = sinks

    def _write(self, level: str, message: str, metadata: dict) -> None:
        for sink in self.sinks:
            sink.record(level, message, metadata)
