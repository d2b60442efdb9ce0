from functools import lru_cache

from edgeflow.activity import (
    ActivitySink,
    CompositeActivitySink,
    LoggingActivitySink,
    SqliteActivitySink,
)
from edgeflow.config import ConfigProvider, JsonFileConfigStore, SqliteConfigStore
from edgeflow.proxy.cache import ServerCache, SqliteCacheStore, key_policy
from edgeflow.proxy.fetcher import OriginFetcher
from edgeflow.proxy.service import ProxyService
from edgeflow.vars import (
    ACTIVITY_LOG_TTL_DAYS,
    CACHE_DB_PATH,
    CACHE_KEY_STRATEGY,
    CONFIG_PATH,
    PROXY_TIMEOUT,
)


@lru_cache(maxsize=1)
def get_config_provider() -> ConfigProvider:
    return ConfigProvider(
        [SqliteConfigStore(CACHE_DB_PATH), JsonFileConfigStore(CONFIG_PATH)]
    )


@lru_cache(maxsize=1)
def get_activity_sink() -> ActivitySink:
    return CompositeActivitySink(
        LoggingActivitySink(),
        SqliteActivitySink(CACHE_DB_PATH, ttl_days=ACTIVITY_LOG_TTL_DAYS),
    )


@lru_cache(maxsize=1)
def get_proxy_service() -> ProxyService:
    return ProxyService(
        config_provider=get_config_provider(),
        server_cache=ServerCache(
            SqliteCacheStore(CACHE_DB_PATH), key_policy(CACHE_KEY_STRATEGY)
        ),
        fetcher=OriginFetcher(timeout=PROXY_TIMEOUT),
        activity=get_activity_sink(),
    )
