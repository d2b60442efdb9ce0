import logging
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

import httpx

from edgeflow.vars import CLIENT_CACHE_SIZE

logger = logging.getLogger("uvicorn.error")


def request_identity(request: httpx.Request) -> str:
    """The original, unrewritten identity of an outbound request."""
    return f"{request.method} {request.url}"


@dataclass(frozen=True)
class CachedResponse:
    status: int
    reason: str
    headers: Tuple[Tuple[str, str], ...]
    content: bytes

    @classmethod
    def from_parts(
        cls, status: int, reason: str, headers: Mapping[str, str], content: bytes
    ) -> "CachedResponse":
        return cls(status, reason, tuple(headers.items()), content)

    def to_response(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            status_code=self.status,
            headers=list(self.headers),
            content=self.content,
            request=request,
            extensions={"reason_phrase": self.reason.encode("ascii", "replace")},
        )


class ClientCacheStore(ABC):
    """Client-resident cache, consulted only when forwarding fails."""

    @abstractmethod
    def put(self, identity: str, response: CachedResponse) -> None:
        pass

    @abstractmethod
    def match(self, identity: str) -> Optional[CachedResponse]:
        pass


class InMemoryClientCache(ClientCacheStore):
    """Bounded store with LRU eviction; a fresh put overwrites the previous entry."""

    def __init__(self, maxsize: int = CLIENT_CACHE_SIZE):
        self.cache: "OrderedDict[str, CachedResponse]" = OrderedDict()
        self.maxsize = maxsize
        self.hits = 0
        self.misses = 0
        self._lock = threading.Lock()

    def put(self, identity: str, response: CachedResponse) -> None:
        with self._lock:
            if identity in self.cache:
                self.cache.move_to_end(identity)
            self.cache[identity] = response
            if len(self.cache) > self.maxsize:
                evicted = self.cache.popitem(last=False)[0]
                logger.debug(f"[ClientCache] Evicted {evicted}")

    def match(self, identity: str) -> Optional[CachedResponse]:
        with self._lock:
            cached = self.cache.get(identity)
            if cached is None:
                self.misses += 1
                return None
            self.hits += 1
            self.cache.move_to_end(identity)
            return cached

    def get_stats(self) -> dict:
        total = self.hits + self.misses
        hit_rate = (self.hits / total * 100) if total > 0 else 0
        return {
            "size": len(self.cache),
            "maxsize": self.maxsize,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": f"{hit_rate:.1f}%",
        }

    def __len__(self) -> int:
        return len(self.cache)

    def __contains__(self, identity: str) -> bool:
        return identity in self.cache
