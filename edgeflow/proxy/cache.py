"""
Server-side response cache.

Eligibility is decided by ``is_cacheable``. Entries are written through a
``CacheStore`` under a key produced by a ``CacheKeyPolicy``. The default
``TimestampedKeyPolicy`` puts the write time into the key, so every cacheable
response for a URL adds a new row that lives until its TTL runs out; storage
grows with request volume rather than with the number of URLs. Select
``UrlKeyPolicy`` (CACHE_KEY_STRATEGY=url) for one upserted entry per URL,
which also makes entries readable by URL.
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional

from edgeflow.proxy.content import decode_body
from edgeflow.proxy.models import ProxyResponse
from edgeflow.utils import short_url

logger = logging.getLogger("uvicorn.error")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_cacheable(status: int, headers: Mapping[str, str], content_type: str = "") -> bool:
    """
    Allow-most policy: errors, explicit no-cache/no-store and JSON (API-shaped)
    responses are never cached; everything else is.
    """
    if status >= 400:
        return False
    lowered = {k.lower(): v for k, v in headers.items()}
    cache_control = lowered.get("cache-control", "").lower()
    if "no-cache" in cache_control or "no-store" in cache_control:
        return False
    content_type = (content_type or lowered.get("content-type", "")).lower()
    if "application/json" in content_type:
        return False
    return True


@dataclass
class CacheEntry:
    key: str
    content: bytes
    content_type: str
    status: int
    expires_at: datetime
    status_text: str = ""
    headers: Dict[str, str] = field(default_factory=dict)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class CacheKeyPolicy(ABC):
    @abstractmethod
    def write_key(self, url: str, now: datetime) -> str:
        pass

    def read_key(self, url: str) -> Optional[str]:
        """Key under which an entry for ``url`` can be read back, if the policy allows it."""
        return None


class TimestampedKeyPolicy(CacheKeyPolicy):
    def write_key(self, url: str, now: datetime) -> str:
        return f"proxy:{url}:{int(now.timestamp() * 1000)}"


class UrlKeyPolicy(CacheKeyPolicy):
    def write_key(self, url: str, now: datetime) -> str:
        return f"proxy:{url}"

    def read_key(self, url: str) -> Optional[str]:
        return f"proxy:{url}"


def key_policy(name: str = "timestamped") -> CacheKeyPolicy:
    if name == "timestamped":
        return TimestampedKeyPolicy()
    if name == "url":
        return UrlKeyPolicy()
    raise ValueError(f"Unknown cache key strategy: {name}")


class CacheStore(ABC):
    """Persistent store for server-tier entries. Expired entries must not be returned."""

    @abstractmethod
    def put(self, key: str, entry: CacheEntry, ttl: int) -> None:
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        pass


class InMemoryCacheStore(CacheStore):
    def __init__(self, clock: Clock = utc_now):
        self.clock = clock
        self.entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def put(self, key: str, entry: CacheEntry, ttl: int) -> None:
        with self._lock:
            self.entries[key] = entry

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self.entries.get(key)
            if entry is not None and entry.is_expired(self.clock()):
                self.entries.pop(key, None)
                return None
            return entry


class SqliteCacheStore(CacheStore):
    def __init__(self, db_path: Path, clock: Clock = utc_now):
        self.db_path = Path(db_path)
        self.clock = clock
        if not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS proxy_cache (
                    cache_key TEXT PRIMARY KEY,
                    content BLOB NOT NULL,
                    content_type TEXT NOT NULL,
                    status INTEGER NOT NULL,
                    status_text TEXT NOT NULL,
                    headers TEXT NOT NULL,
                    expires_at REAL NOT NULL
                )
            """
            )
            conn.commit()

    def put(self, key: str, entry: CacheEntry, ttl: int) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO proxy_cache
                (cache_key, content, content_type, status, status_text, headers, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(cache_key) DO UPDATE SET
                    content=excluded.content,
                    content_type=excluded.content_type,
                    status=excluded.status,
                    status_text=excluded.status_text,
                    headers=excluded.headers,
                    expires_at=excluded.expires_at
                """,
                (
                    key,
                    entry.content,
                    entry.content_type,
                    entry.status,
                    entry.status_text,
                    json.dumps(entry.headers),
                    entry.expires_at.timestamp(),
                ),
            )
            conn.commit()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT cache_key, content, content_type, status, status_text, headers, expires_at "
                "FROM proxy_cache WHERE cache_key = ? AND expires_at > ?",
                (key, self.clock().timestamp()),
            ).fetchone()
        if row is None:
            return None
        return CacheEntry(
            key=row[0],
            content=bytes(row[1]),
            content_type=row[2],
            status=row[3],
            status_text=row[4],
            headers=json.loads(row[5]),
            expires_at=datetime.fromtimestamp(row[6], tz=timezone.utc),
        )

    def count(self, prefix: str = "") -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM proxy_cache WHERE cache_key LIKE ?",
                (prefix + "%",),
            ).fetchone()
        return int(row[0])


class ServerCache:
    """Writes cacheable responses to the server tier under the original URL."""

    def __init__(
        self,
        store: CacheStore,
        policy: Optional[CacheKeyPolicy] = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.policy = policy or TimestampedKeyPolicy()
        self.clock = clock

    def write(self, url: str, response: ProxyResponse, ttl: int) -> Optional[CacheEntry]:
        now = self.clock()
        entry = CacheEntry(
            key=self.policy.write_key(url, now),
            content=response.content,
            content_type=response.content_type,
            status=response.status,
            status_text=response.status_text,
            headers=dict(response.headers),
            expires_at=now + timedelta(seconds=ttl),
        )
        try:
            self.store.put(entry.key, entry, ttl)
        except Exception as e:
            logger.warning(f"[Cache] Failed to store {short_url(url)}: {e}")
            return None
        logger.debug(f"[Cache] Stored {short_url(entry.key)} until {entry.expires_at.isoformat()}")
        return entry

    def lookup(self, url: str) -> Optional[ProxyResponse]:
        key = self.policy.read_key(url)
        if key is None:
            return None
        try:
            entry = self.store.get(key)
        except Exception as e:
            logger.warning(f"[Cache] Lookup failed for {short_url(url)}: {e}")
            return None
        if entry is None:
            return None
        headers = dict(entry.headers)
        headers["x-cache-status"] = "HIT"
        return ProxyResponse(
            body=decode_body(entry.content, entry.content_type),
            content_type=entry.content_type,
            status=entry.status,
            status_text=entry.status_text,
            headers=headers,
            cacheable=True,
        )
