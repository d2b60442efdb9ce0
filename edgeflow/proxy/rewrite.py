import logging
import random
import re
from dataclasses import dataclass, field
from typing import Optional, Union
from urllib.parse import quote, urlsplit

from edgeflow.activity import ActivitySink
from edgeflow.config.models import ProxyConfig, TransformRule
from edgeflow.proxy.errors import RejectReason
from edgeflow.proxy.models import ProxyRequest
from edgeflow.proxy.rules import (
    apply_header_policy,
    apply_url_rules,
    check_domain_policy,
    matches_domain,
)

logger = logging.getLogger("uvicorn.error")

NETWORK_SCHEMES = {"http", "https"}


@dataclass(frozen=True)
class RewriteResult:
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    fronted: bool = False


@dataclass(frozen=True)
class Rejected:
    reason: RejectReason
    host: str = ""


def parse_target(url: str) -> Optional[str]:
    """Return the lower-cased host of an absolute http(s) URL, or None if malformed."""
    try:
        parts = urlsplit(url.strip())
        host = parts.hostname
        # Accessing the port validates it
        parts.port
    except (ValueError, AttributeError):
        return None
    if parts.scheme.lower() not in NETWORK_SCHEMES or not host:
        return None
    return host.lower()


def apply_fronting(url: str, front_host: str) -> str:
    """
    Route the request through ``front_host`` and carry the real URL as a
    query parameter. Obfuscation only: TLS SNI, DNS and the front itself
    still see enough to identify the destination.
    """
    return f"https://{front_host}/proxy?url={quote(url, safe='')}"


class RewritePipeline:
    """
    Validates an inbound request against the domain policy and produces the
    outbound URL and headers.

    The random source is injectable so tests can make the cosmetic header
    randomization and front selection deterministic.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        activity: Optional[ActivitySink] = None,
    ):
        self.rng = rng or random.Random()
        self.activity = activity

    def rewrite(
        self, request: ProxyRequest, config: ProxyConfig
    ) -> Union[RewriteResult, Rejected]:
        host = parse_target(request.target_url)
        if host is None:
            return Rejected(RejectReason.INVALID_URL)

        reason = check_domain_policy(host, config)
        if reason is not None:
            return Rejected(reason, host)

        url = apply_url_rules(
            request.target_url, config.transform_rules, self.report_rule_error
        )

        fronted = False
        rewritten_host = parse_target(url) or host
        if config.front_domains and matches_domain(
            rewritten_host, config.sensitive_domains
        ):
            front = self.rng.choice(config.front_domains)
            url = apply_fronting(url, front)
            fronted = True
            logger.debug(f"[Rewrite] Fronting {rewritten_host} through {front}")

        headers = apply_header_policy(
            request.headers, config, self.rng, self.report_rule_error
        )
        return RewriteResult(url=url, headers=headers, fronted=fronted)

    def report_rule_error(self, rule: TransformRule, exc: re.error) -> None:
        if self.activity is not None:
            self.activity.record(
                "error",
                "Transform rule failed",
                {"pattern": rule.pattern, "kind": rule.kind.value, "error": str(exc)},
            )
