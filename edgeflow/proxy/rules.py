"""
Rule engine: ordered regex transformations and domain policy.

Every function here is a pure function of its arguments. Rules of one kind
compose sequentially (each rule sees the output of the previous one) and each
rule replaces every occurrence of its pattern. A rule that fails to compile
or substitute is skipped and reported through ``on_error``; the remaining
rules still apply.
"""

import logging
import random
import re
from functools import lru_cache
from typing import Callable, Iterable, Mapping, Optional, Pattern, Sequence

from edgeflow.config.models import ProxyConfig, RuleKind, TransformRule
from edgeflow.proxy.errors import RejectReason
from edgeflow.vars import PROXY_ENGINE_NAME

logger = logging.getLogger("uvicorn.error")

RuleErrorHandler = Callable[[TransformRule, re.error], None]

# Headers that correlate a request with the person sending it
IDENTITY_HEADERS = {"cookie", "referer", "origin"}

# Connection-level headers that must not be forwarded to the origin
TRANSPORT_HEADERS = {
    "host",
    "content-length",
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36",
)


@lru_cache(maxsize=512)
def _compile(pattern: str) -> Pattern[str]:
    return re.compile(pattern)


def _report(rule: TransformRule, exc: re.error, on_error: Optional[RuleErrorHandler]):
    logger.error(
        f"[Rules] Skipping invalid {rule.kind.value} rule {rule.pattern!r}: {exc}"
    )
    if on_error is not None:
        on_error(rule, exc)


def _substitute(
    text: str, rules: Iterable[TransformRule], on_error: Optional[RuleErrorHandler]
) -> str:
    for rule in rules:
        try:
            text = _compile(rule.pattern).sub(rule.replacement, text)
        except re.error as exc:
            _report(rule, exc, on_error)
    return text


def _of_kind(rules: Sequence[TransformRule], kind: RuleKind):
    return [rule for rule in rules if rule.kind is kind]


def apply_url_rules(
    url: str,
    rules: Sequence[TransformRule],
    on_error: Optional[RuleErrorHandler] = None,
) -> str:
    return _substitute(url, _of_kind(rules, RuleKind.URL), on_error)


def apply_content_rules(
    body: str,
    rules: Sequence[TransformRule],
    on_error: Optional[RuleErrorHandler] = None,
) -> str:
    return _substitute(body, _of_kind(rules, RuleKind.CONTENT), on_error)


def apply_header_policy(
    headers: Mapping[str, str],
    config: ProxyConfig,
    rng: random.Random,
    on_error: Optional[RuleErrorHandler] = None,
    engine_name: str = PROXY_ENGINE_NAME,
) -> dict[str, str]:
    """
    Sanitize outbound headers.

    Identity-correlating and transport headers are dropped, the user agent is
    replaced by one of a fixed pool and a synthetic forwarding address is
    injected. The random picks are cosmetic: they do not provide anonymity.
    HEADER rules then run over every remaining header value.
    """
    sanitized: dict[str, str] = {}
    for name, value in headers.items():
        name_lower = name.lower()
        if name_lower in IDENTITY_HEADERS or name_lower in TRANSPORT_HEADERS:
            continue
        sanitized[name_lower] = value

    sanitized["user-agent"] = rng.choice(USER_AGENTS)
    sanitized["x-forwarded-for"] = f"192.168.{rng.randrange(256)}.{rng.randrange(256)}"
    sanitized["x-proxy-engine"] = engine_name

    for rule in config.rules_of(RuleKind.HEADER):
        try:
            pattern = _compile(rule.pattern)
            sanitized = {
                name: pattern.sub(rule.replacement, value)
                for name, value in sanitized.items()
            }
        except re.error as exc:
            _report(rule, exc, on_error)
    return sanitized


def matches_domain(host: str, domains: Iterable[str]) -> bool:
    """Substring match, so ``example.com`` also covers ``cdn.example.com``."""
    host = (host or "").lower()
    return any(domain and domain in host for domain in domains)


def check_domain_policy(host: str, config: ProxyConfig) -> Optional[RejectReason]:
    if matches_domain(host, config.blocked_domains):
        return RejectReason.DOMAIN_BLOCKED
    if config.allowed_domains and not matches_domain(host, config.allowed_domains):
        return RejectReason.DOMAIN_NOT_ALLOWED
    return None
