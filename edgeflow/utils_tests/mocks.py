import random
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

import httpx

from edgeflow.activity import ActivitySink
from edgeflow.config import ConfigProvider, ProxyConfig
from edgeflow.proxy.cache import InMemoryCacheStore, ServerCache
from edgeflow.proxy.fetcher import OriginFetcher
from edgeflow.proxy.service import ProxyService

FIXED_NOW = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


class RecordingActivitySink(ActivitySink):
    def __init__(self):
        self.records: List[Tuple[str, str, dict]] = []

    def _write(self, level: str, message: str, metadata: dict) -> None:
        self.records.append((level, message, metadata))

    def messages(self, level: Optional[str] = None) -> List[str]:
        return [m for lvl, m, _ in self.records if level is None or lvl == level]


class BrokenActivitySink(ActivitySink):
    def _write(self, level: str, message: str, metadata: dict) -> None:
        raise RuntimeError("log store offline")


class ChunkStream(httpx.AsyncByteStream):
    """Body without a content-length that counts how far it was consumed."""

    def __init__(self, chunks: List[bytes]):
        self.chunks = chunks
        self.yielded = 0

    async def __aiter__(self):
        for chunk in self.chunks:
            self.yielded += 1
            yield chunk


def build_service(
    handler: Callable,
    config: Optional[ProxyConfig] = None,
    store: Optional[InMemoryCacheStore] = None,
    activity: Optional[ActivitySink] = None,
    timeout: float = 5.0,
    seed: int = 7,
    clock: Callable[[], datetime] = lambda: FIXED_NOW,
    policy=None,
) -> ProxyService:
    """ProxyService whose origin is an httpx.MockTransport handler."""
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), follow_redirects=True
    )
    return ProxyService(
        config_provider=ConfigProvider(default=config or ProxyConfig()),
        server_cache=ServerCache(
            store if store is not None else InMemoryCacheStore(clock=clock),
            policy,
            clock=clock,
        ),
        fetcher=OriginFetcher(client=client, timeout=timeout),
        activity=activity or RecordingActivitySink(),
        rng=random.Random(seed),
    )
