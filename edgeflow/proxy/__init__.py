"""
Request-rewriting proxy core.

- Rule engine for URL, header and content rules plus domain policy
- Rewrite pipeline with header sanitization and best-effort fronting
- Bounded origin fetcher (wall-clock timeout, streamed size cap)
- Content-type aware response transformer
- Server-tier cache with a replaceable key policy
"""

from .errors import ErrorCode, FailureKind, FetchFailure, ProxyError, RejectReason
from .models import ProxyRequest, ProxyResponse
from .service import ProxyService

__all__ = [
    "ErrorCode",
    "FailureKind",
    "FetchFailure",
    "ProxyError",
    "RejectReason",
    "ProxyRequest",
    "ProxyResponse",
    "ProxyService",
]
