from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    POLICY_REJECTED = "POLICY_REJECTED"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"
    UPSTREAM_NETWORK_ERROR = "UPSTREAM_NETWORK_ERROR"
    CONTENT_TOO_LARGE = "CONTENT_TOO_LARGE"
    SERVICE_DISABLED = "SERVICE_DISABLED"
    UNCLASSIFIED = "UNCLASSIFIED"


STATUS_BY_CODE = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.POLICY_REJECTED: 403,
    ErrorCode.UPSTREAM_TIMEOUT: 503,
    ErrorCode.UPSTREAM_NETWORK_ERROR: 503,
    ErrorCode.CONTENT_TOO_LARGE: 413,
    ErrorCode.SERVICE_DISABLED: 503,
    ErrorCode.UNCLASSIFIED: 500,
}


class RejectReason(str, Enum):
    INVALID_URL = "INVALID_URL"
    DOMAIN_BLOCKED = "DOMAIN_BLOCKED"
    DOMAIN_NOT_ALLOWED = "DOMAIN_NOT_ALLOWED"


REJECT_MESSAGES = {
    RejectReason.INVALID_URL: "Invalid URL format",
    RejectReason.DOMAIN_BLOCKED: "Domain is blocked",
    RejectReason.DOMAIN_NOT_ALLOWED: "Domain is not allowed",
}


class FailureKind(str, Enum):
    TIMEOUT = "TIMEOUT"
    NETWORK = "NETWORK"
    TOO_LARGE = "TOO_LARGE"


CODE_BY_FAILURE = {
    FailureKind.TIMEOUT: ErrorCode.UPSTREAM_TIMEOUT,
    FailureKind.NETWORK: ErrorCode.UPSTREAM_NETWORK_ERROR,
    FailureKind.TOO_LARGE: ErrorCode.CONTENT_TOO_LARGE,
}


class ProxyError(Exception):
    """A classified failure that is rendered as a structured error payload."""

    def __init__(self, code: ErrorCode, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status if status is not None else STATUS_BY_CODE[code]

    def to_payload(self) -> dict:
        return {"error": self.message, "code": self.code.value}

    @classmethod
    def from_rejection(cls, reason: RejectReason) -> "ProxyError":
        code = (
            ErrorCode.INVALID_INPUT
            if reason is RejectReason.INVALID_URL
            else ErrorCode.POLICY_REJECTED
        )
        return cls(code, REJECT_MESSAGES[reason])


class FetchFailure(ProxyError):
    """Raised by the origin fetcher for timeouts, network errors and oversized bodies."""

    def __init__(self, kind: FailureKind, message: str):
        super().__init__(CODE_BY_FAILURE[kind], message)
        self.kind = kind
