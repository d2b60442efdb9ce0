from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_SENSITIVE_DOMAINS = frozenset({"blocked-site.com", "restricted-content.org"})
DEFAULT_FRONT_DOMAINS = ("google.com", "cloudflare.com", "aws.amazon.com")


def _clean_hosts(values) -> list:
    return [str(item).strip().lower() for item in values if str(item).strip()]


class RuleKind(str, Enum):
    URL = "url"
    HEADER = "header"
    CONTENT = "content"


class TransformRule(BaseModel):
    """A regex substitution applied to URLs, outbound header values or text bodies."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    pattern: str
    replacement: str = ""
    kind: RuleKind = Field(alias="type")

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class ProxyConfig(BaseModel):
    """
    Read-only snapshot of the proxy behaviour, resolved once per request.

    A non-empty ``allowed_domains`` turns the domain policy into an allow-list;
    ``blocked_domains`` wins over any allow-list match.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enabled: bool = True
    cache_ttl_seconds: int = Field(default=3600, alias="cacheTTL", ge=0)
    max_content_bytes: int = Field(
        default=10 * 1024 * 1024, alias="maxContentLength", gt=0
    )
    allowed_domains: frozenset[str] = Field(
        default_factory=frozenset, alias="allowedDomains"
    )
    blocked_domains: frozenset[str] = Field(
        default_factory=frozenset, alias="blockedDomains"
    )
    transform_rules: tuple[TransformRule, ...] = Field(
        default_factory=tuple, alias="transformRules"
    )
    sensitive_domains: frozenset[str] = Field(
        default=DEFAULT_SENSITIVE_DOMAINS, alias="sensitiveDomains"
    )
    front_domains: tuple[str, ...] = Field(
        default=DEFAULT_FRONT_DOMAINS, alias="frontDomains"
    )

    @field_validator(
        "allowed_domains", "blocked_domains", "sensitive_domains", mode="before"
    )
    @classmethod
    def _clean_domains(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(_clean_hosts(value))
        return value

    @field_validator("front_domains", mode="before")
    @classmethod
    def _clean_front_domains(cls, value: Any) -> Any:
        # Order is kept; the random pick indexes into it
        if isinstance(value, (list, tuple)):
            return tuple(_clean_hosts(value))
        return value

    def rules_of(self, kind: RuleKind) -> tuple[TransformRule, ...]:
        return tuple(rule for rule in self.transform_rules if rule.kind is kind)

    def to_payload(self) -> dict:
        """JSON-ready form using the camelCase field names of the stored documents."""
        payload = self.model_dump(mode="json", by_alias=True)
        for key in ("allowedDomains", "blockedDomains", "sensitiveDomains"):
            payload[key] = sorted(payload[key])
        return payload


DEFAULT_CONFIG = ProxyConfig()
