from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from edgeflow.proxy.content import Body, TextBody


class ProxyRequest(BaseModel):
    """The logical request handed to the proxy, as posted to ``/api/proxy``."""

    model_config = ConfigDict(populate_by_name=True)

    target_url: str = Field(alias="url", min_length=1)
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None

    @field_validator("target_url", mode="before")
    @classmethod
    def _strip_url(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        if value is None:
            return "GET"
        return str(value).strip().upper() or "GET"

    @field_validator("headers", mode="before")
    @classmethod
    def _lower_header_names(cls, value: Any) -> Any:
        if value is None:
            return {}
        if not isinstance(value, dict):
            return value
        # Later duplicates that differ only in case win
        return {str(k).lower(): str(v) for k, v in value.items()}


@dataclass
class ProxyResponse:
    body: Body
    content_type: str
    status: int
    status_text: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    cacheable: bool = False

    @property
    def content(self) -> bytes:
        return self.body.to_bytes()

    @property
    def text(self) -> Optional[str]:
        return self.body.text if isinstance(self.body, TextBody) else None

    def to_payload(self) -> dict:
        content, encoding = self.body.to_wire()
        return {
            "content": content,
            "contentType": self.content_type,
            "status": self.status,
            "statusText": self.status_text,
            "headers": dict(self.headers),
            "cacheable": self.cacheable,
            "encoding": encoding,
        }
