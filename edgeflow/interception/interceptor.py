"""
Client-side interception.

Each outbound request either passes straight through (exempt) or is
serialized and forwarded to the proxy endpoint as a single call. When
forwarding fails for any reason the client tier is consulted, and a fixed
503 response is returned when it has nothing. A request accepted for
forwarding therefore always gets a terminal response.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional

import httpx

from edgeflow.interception.client_cache import (
    CachedResponse,
    ClientCacheStore,
    InMemoryClientCache,
    request_identity,
)
from edgeflow.proxy.content import decode_wire
from edgeflow.utils import short_url
from edgeflow.utils.exception_logging import log_exception_with_details
from edgeflow.vars import (
    PROXY_CONTROL_HOST,
    PROXY_ENDPOINT_URL,
    PROXY_MANAGEMENT_PREFIXES,
    PROXY_TIMEOUT,
)

logger = logging.getLogger("uvicorn.error")

NETWORK_SCHEMES = {"http", "https"}
UNAVAILABLE_BODY = b"Proxy temporarily unavailable"
CALL_EXTENSION = "edgeflow.call"


class InterceptState(str, Enum):
    IDLE = "IDLE"
    DECIDING = "DECIDING"
    FORWARDING = "FORWARDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


@dataclass
class InterceptedCall:
    identity: str
    state: InterceptState = InterceptState.IDLE
    history: List[InterceptState] = field(default_factory=list)
    intercepted: bool = False
    served_from_cache: bool = False
    error: Optional[str] = None

    def transition(self, state: InterceptState) -> None:
        self.state = state
        self.history.append(state)


class ForwardingError(Exception):
    """The proxy endpoint answered, but not with a usable proxied response."""


class Interceptor:
    def __init__(
        self,
        forward_client: Optional[httpx.AsyncClient] = None,
        endpoint_url: str = PROXY_ENDPOINT_URL,
        client_cache: Optional[ClientCacheStore] = None,
        passthrough: Optional[httpx.AsyncBaseTransport] = None,
        control_host: str = PROXY_CONTROL_HOST,
        management_prefixes: Iterable[str] = PROXY_MANAGEMENT_PREFIXES,
        timeout: float = PROXY_TIMEOUT + 5,
    ):
        self._owns_client = forward_client is None
        self.forward_client = forward_client or httpx.AsyncClient()
        self.endpoint_url = endpoint_url
        self.client_cache = client_cache or InMemoryClientCache()
        self.passthrough = passthrough or httpx.AsyncHTTPTransport()
        self.control_host = (control_host or "").lower()
        self.management_prefixes = tuple(management_prefixes)
        self.timeout = timeout

    def is_exempt(self, url: httpx.URL) -> bool:
        """
        Requests that never go through the proxy: non-network schemes, the
        proxy's own host and management namespace, and paths containing a
        dot (treated as static assets).
        """
        if url.scheme.lower() not in NETWORK_SCHEMES:
            return True
        if self.control_host and url.host.lower() == self.control_host:
            return True
        path = url.path or "/"
        if any(path.startswith(prefix) for prefix in self.management_prefixes):
            return True
        return "." in path

    async def handle(self, request: httpx.Request) -> httpx.Response:
        call = InterceptedCall(identity=request_identity(request))
        call.transition(InterceptState.DECIDING)

        if self.is_exempt(request.url):
            response = await self.passthrough.handle_async_request(request)
            response.extensions[CALL_EXTENSION] = call
            return response

        call.intercepted = True
        call.transition(InterceptState.FORWARDING)
        logger.debug(f"[Interceptor] Intercepting request: {short_url(str(request.url))}")
        try:
            response = await self._forward(request, call)
        except Exception as e:
            call.error = f"{type(e).__name__}: {e}"
            call.transition(InterceptState.FAILED)
            log_exception_with_details(
                logger, "[Interceptor] Proxy request failed", e, level=logging.WARNING
            )
            response = self._fallback(request, call)
        else:
            call.transition(InterceptState.SUCCEEDED)
        response.extensions[CALL_EXTENSION] = call
        return response

    async def _forward(self, request: httpx.Request, call: InterceptedCall) -> httpx.Response:
        body = None
        if request.method != "GET":
            body = (await request.aread()).decode("utf-8", errors="replace")
        payload = {
            "url": str(request.url),
            "method": request.method,
            "headers": dict(request.headers),
            "body": body,
        }
        reply = await self.forward_client.post(
            self.endpoint_url,
            json=payload,
            headers={
                "x-original-url": str(request.url),
                "x-original-method": request.method,
            },
            timeout=self.timeout,
        )
        if not reply.is_success:
            raise ForwardingError(f"Edge function responded with {reply.status_code}")

        data = reply.json()
        if not isinstance(data, dict) or "status" not in data:
            raise ForwardingError("Edge function returned an unexpected payload")

        content = decode_wire(data.get("content") or "", data.get("encoding"))
        headers = {str(k).lower(): str(v) for k, v in (data.get("headers") or {}).items()}
        headers.setdefault("content-type", data.get("contentType") or "text/plain")
        cached = CachedResponse.from_parts(
            status=int(data["status"]),
            reason=data.get("statusText") or "",
            headers=headers,
            content=content,
        )
        if data.get("cacheable"):
            self.client_cache.put(call.identity, cached)
        return cached.to_response(request)

    def _fallback(self, request: httpx.Request, call: InterceptedCall) -> httpx.Response:
        cached = self.client_cache.match(call.identity)
        if cached is not None:
            logger.info(f"[Interceptor] Serving from cache: {short_url(str(request.url))}")
            call.served_from_cache = True
            return cached.to_response(request)
        return httpx.Response(
            status_code=503,
            headers={"content-type": "text/plain"},
            content=UNAVAILABLE_BODY,
            request=request,
            extensions={"reason_phrase": b"Service Unavailable"},
        )

    async def aclose(self) -> None:
        await self.passthrough.aclose()
        if self._owns_client:
            await self.forward_client.aclose()


class InterceptingTransport(httpx.AsyncBaseTransport):
    """Plugs an Interceptor into an ``httpx.AsyncClient``."""

    def __init__(self, interceptor: Interceptor):
        self.interceptor = interceptor

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self.interceptor.handle(request)

    async def aclose(self) -> None:
        await self.interceptor.aclose()
