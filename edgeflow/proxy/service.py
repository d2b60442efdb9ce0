import logging
import random
import time
from typing import Optional

from opentelemetry import trace
from prometheus_client import Counter

from edgeflow.activity import ActivitySink, LoggingActivitySink
from edgeflow.config import ConfigProvider
from edgeflow.proxy.cache import ServerCache, is_cacheable
from edgeflow.proxy.content import ResponseTransformer, decode_body
from edgeflow.proxy.errors import ErrorCode, FetchFailure, ProxyError
from edgeflow.proxy.fetcher import OriginFetcher
from edgeflow.proxy.models import ProxyRequest, ProxyResponse
from edgeflow.proxy.rewrite import Rejected, RewritePipeline
from edgeflow.utils import host_of, short_url
from edgeflow.utils.exception_logging import log_exception_with_details
from edgeflow.utils.traced_requests import traced_request

logger = logging.getLogger("uvicorn.error")
tracer = trace.get_tracer(__name__)

PROXY_REQUESTS = Counter(
    "edgeflow_proxy_requests_total",
    "Proxied requests by outcome",
    ["outcome"],
)
CACHE_WRITES = Counter(
    "edgeflow_cache_writes_total",
    "Server-tier cache writes by result",
    ["result"],
)

# The server tier is keyed by URL alone, so only safe reads go through it
SERVER_CACHED_METHODS = {"GET"}


class ProxyService:
    """
    Runs one request through rewrite, fetch, transform and cache.

    Returns a ProxyResponse or raises ProxyError; nothing else leaves
    ``handle``.
    """

    def __init__(
        self,
        config_provider: ConfigProvider,
        server_cache: ServerCache,
        fetcher: Optional[OriginFetcher] = None,
        activity: Optional[ActivitySink] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config_provider = config_provider
        self.server_cache = server_cache
        self.fetcher = fetcher or OriginFetcher()
        self.activity = activity or LoggingActivitySink()
        self.pipeline = RewritePipeline(rng=rng, activity=self.activity)
        self.transformer = ResponseTransformer(on_error=self.pipeline.report_rule_error)

    async def handle(self, request: ProxyRequest) -> ProxyResponse:
        with traced_request(
            tracer,
            operation="proxy_request",
            url=request.target_url,
            method=request.method,
            start_message=f"[Proxy] {request.method} {short_url(request.target_url)}",
        ) as span:
            try:
                response = await self._handle(request, span)
            except ProxyError as e:
                span.set_attribute("proxy.error", e.code.value)
                PROXY_REQUESTS.labels(outcome=e.code.value.lower()).inc()
                raise
            except Exception as e:
                log_exception_with_details(logger, "[Proxy]", e)
                span.set_attribute("proxy.error", ErrorCode.UNCLASSIFIED.value)
                PROXY_REQUESTS.labels(outcome="unclassified").inc()
                raise ProxyError(ErrorCode.UNCLASSIFIED, "Proxy request failed") from e
            span.set_attribute("proxy.status_code", response.status)
            PROXY_REQUESTS.labels(outcome="success").inc()
            return response

    async def _handle(self, request: ProxyRequest, span) -> ProxyResponse:
        config = self.config_provider.resolve()
        if not config.enabled:
            raise ProxyError(ErrorCode.SERVICE_DISABLED, "Proxy service is disabled")

        result = self.pipeline.rewrite(request, config)
        if isinstance(result, Rejected):
            error = ProxyError.from_rejection(result.reason)
            self.activity.record(
                "warn",
                error.message,
                {"url": request.target_url, "reason": result.reason.value},
            )
            raise error

        span.set_attribute("proxy.rewritten_url", short_url(result.url))
        logger.debug(
            f"[Proxy] Proxying request: {request.method} {short_url(request.target_url)} -> {short_url(result.url)}"
        )

        server_tier = request.method in SERVER_CACHED_METHODS
        cached = self.server_cache.lookup(request.target_url) if server_tier else None
        if cached is not None:
            span.set_attribute("proxy.cache", "hit")
            return cached

        started = time.monotonic()
        try:
            raw = await self.fetcher.fetch(
                result.url,
                request.method,
                result.headers,
                request.body,
                max_bytes=config.max_content_bytes,
            )
        except FetchFailure as e:
            self.activity.record(
                "error",
                e.message,
                {"url": request.target_url, "failure": e.kind.value},
            )
            raise

        body = self.transformer.transform(
            decode_body(raw.content, raw.content_type), config.transform_rules
        )
        headers = dict(raw.headers)
        headers["x-proxied-by"] = "edgeflow"
        headers["x-cache-status"] = "MISS"
        cacheable = is_cacheable(raw.status, raw.headers, raw.content_type)

        response = ProxyResponse(
            body=body,
            content_type=raw.content_type,
            status=raw.status,
            status_text=raw.status_text,
            headers=headers,
            cacheable=cacheable,
        )

        if cacheable and server_tier:
            entry = self.server_cache.write(
                request.target_url, response, config.cache_ttl_seconds
            )
            CACHE_WRITES.labels(result="stored" if entry else "failed").inc()

        self.activity.record(
            "info",
            "Request proxied",
            {
                "url": request.target_url,
                "host": host_of(request.target_url),
                "statusCode": raw.status,
                "responseTime": round((time.monotonic() - started) * 1000),
                "cacheable": cacheable,
            },
        )
        return response

