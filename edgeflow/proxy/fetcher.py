import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Mapping, Optional

import httpx

from edgeflow.proxy.errors import FailureKind, FetchFailure
from edgeflow.utils import short_url
from edgeflow.vars import PROXY_TIMEOUT

logger = logging.getLogger("uvicorn.error")

# Response headers that must not propagate past the proxy. httpx hands back
# decoded bytes, so the origin's encoding and length no longer apply either.
STRIPPED_RESPONSE_HEADERS = {
    "set-cookie",
    "connection",
    "transfer-encoding",
    "keep-alive",
    "content-encoding",
    "content-length",
}

BODYLESS_METHODS = {"GET", "HEAD"}


@dataclass
class RawResponse:
    status: int
    status_text: str
    content: bytes
    content_type: str = "text/plain"
    headers: Dict[str, str] = field(default_factory=dict)


def filter_response_headers(headers: httpx.Headers) -> Dict[str, str]:
    return {
        name.lower(): value
        for name, value in headers.items()
        if name.lower() not in STRIPPED_RESPONSE_HEADERS
    }


def encode_headers(headers: Mapping[str, str]) -> Dict[str, bytes]:
    """UTF-8 encode values; httpx only accepts non-ASCII header values as bytes."""
    return {name: value.encode("utf-8") for name, value in headers.items()}


class OriginFetcher:
    """
    Performs the outbound call to the origin.

    The whole exchange (connect, headers and body) runs under one wall-clock
    timeout. The body is streamed and abandoned as soon as it exceeds the
    size cap, so memory stays bounded by the cap rather than by the origin.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = PROXY_TIMEOUT,
    ):
        self.client = client
        self.timeout = timeout

    @asynccontextmanager
    async def _session(self, timeout: float) -> AsyncIterator[httpx.AsyncClient]:
        if self.client is not None:
            yield self.client
            return
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(timeout), follow_redirects=True
        ) as client:
            yield client

    async def fetch(
        self,
        url: str,
        method: str,
        headers: Mapping[str, str],
        body: Optional[str],
        max_bytes: int,
        timeout: Optional[float] = None,
    ) -> RawResponse:
        timeout = timeout if timeout is not None else self.timeout
        try:
            return await asyncio.wait_for(
                self._exchange(url, method, headers, body, max_bytes, timeout),
                timeout,
            )
        except FetchFailure:
            raise
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.error(f"[Fetcher] Timeout after {timeout:g}s for {short_url(url)}: {e}")
            raise FetchFailure(
                FailureKind.TIMEOUT, f"Origin did not respond within {timeout:g}s"
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"[Fetcher] Network error for {short_url(url)}: {e}")
            raise FetchFailure(
                FailureKind.NETWORK, f"Failed to reach origin: {type(e).__name__}"
            ) from e

    async def _exchange(
        self,
        url: str,
        method: str,
        headers: Mapping[str, str],
        body: Optional[str],
        max_bytes: int,
        timeout: float,
    ) -> RawResponse:
        content = None
        if body is not None and method.upper() not in BODYLESS_METHODS:
            content = body.encode("utf-8")

        async with self._session(timeout) as client:
            request = client.build_request(
                method, url, headers=encode_headers(headers), content=content
            )
            response = await client.send(request, stream=True)
            try:
                declared = response.headers.get("content-length", "")
                if declared.isdigit() and int(declared) > max_bytes:
                    raise self._too_large(url, max_bytes)

                buffer = bytearray()
                async for chunk in response.aiter_bytes():
                    buffer.extend(chunk)
                    if len(buffer) > max_bytes:
                        raise self._too_large(url, max_bytes)
            finally:
                await response.aclose()

        logger.debug(
            f"[Fetcher] {method} {short_url(url)} -> {response.status_code} ({len(buffer)} bytes)"
        )
        return RawResponse(
            status=response.status_code,
            status_text=response.reason_phrase,
            content=bytes(buffer),
            content_type=response.headers.get("content-type") or "text/plain",
            headers=filter_response_headers(response.headers),
        )

    @staticmethod
    def _too_large(url: str, max_bytes: int) -> FetchFailure:
        logger.warning(f"[Fetcher] Body of {short_url(url)} exceeds {max_bytes} bytes")
        return FetchFailure(FailureKind.TOO_LARGE, "Content too large")
