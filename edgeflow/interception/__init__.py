from .client_cache import (
    CachedResponse,
    ClientCacheStore,
    InMemoryClientCache,
    request_identity,
)
from .interceptor import (
    InterceptState,
    InterceptedCall,
    InterceptingTransport,
    Interceptor,
    UNAVAILABLE_BODY,
)

__all__ = [
    "CachedResponse",
    "ClientCacheStore",
    "InMemoryClientCache",
    "request_identity",
    "InterceptState",
    "InterceptedCall",
    "InterceptingTransport",
    "Interceptor",
    "UNAVAILABLE_BODY",
]
