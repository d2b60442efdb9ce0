import base64
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from edgeflow.config.models import TransformRule
from edgeflow.proxy.rules import RuleErrorHandler, apply_content_rules

logger = logging.getLogger("uvicorn.error")

TEXT_SUBTYPES = ("json", "xml", "javascript", "ecmascript", "x-www-form-urlencoded")


@dataclass(frozen=True)
class TextBody:
    text: str
    encoding: str = "utf-8"

    def to_bytes(self) -> bytes:
        return self.text.encode(self.encoding, errors="replace")

    def to_wire(self) -> tuple[str, str]:
        return self.text, "utf-8"


@dataclass(frozen=True)
class BinaryBody:
    data: bytes

    def to_bytes(self) -> bytes:
        return self.data

    def to_wire(self) -> tuple[str, str]:
        return base64.b64encode(self.data).decode("ascii"), "base64"


Body = Union[TextBody, BinaryBody]


def media_type(content_type: Optional[str]) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def charset_of(content_type: Optional[str]) -> Optional[str]:
    for param in (content_type or "").split(";")[1:]:
        key, _, value = param.partition("=")
        if key.strip().lower() == "charset" and value.strip():
            return value.strip().strip('"').lower()
    return None


def is_textual(content_type: Optional[str]) -> bool:
    mtype = media_type(content_type)
    if not mtype:
        # Untyped bodies are treated as text, matching the text/plain default
        return True
    if mtype.startswith("text/"):
        return True
    if mtype.endswith("+json") or mtype.endswith("+xml"):
        return True
    return mtype.startswith("application/") and any(
        sub in mtype for sub in TEXT_SUBTYPES
    )


def decode_body(data: bytes, content_type: Optional[str]) -> Body:
    """
    Pick the body representation from the content type. Text decodes with the
    declared charset (UTF-8 when absent or unknown), replacing invalid bytes.
    """
    if not is_textual(content_type):
        return BinaryBody(data)
    encoding = charset_of(content_type) or "utf-8"
    try:
        return TextBody(data.decode(encoding, errors="replace"), encoding)
    except LookupError:
        logger.debug(f"[Content] Unknown charset {encoding!r}, decoding as utf-8")
        return TextBody(data.decode("utf-8", errors="replace"), "utf-8")


def decode_wire(content: str, encoding: Optional[str]) -> bytes:
    if encoding == "base64":
        return base64.b64decode(content)
    return (content or "").encode("utf-8")


class ResponseTransformer:
    """Applies CONTENT rules to text bodies; binary bodies pass through untouched."""

    def __init__(self, on_error: Optional[RuleErrorHandler] = None):
        self.on_error = on_error

    def transform(self, body: Body, rules: Sequence[TransformRule]) -> Body:
        if isinstance(body, BinaryBody) or not rules:
            return body
        text = apply_content_rules(body.text, rules, self.on_error)
        if text == body.text:
            return body
        return TextBody(text, body.encoding)
