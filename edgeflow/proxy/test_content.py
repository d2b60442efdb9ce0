import base64

import pytest

from edgeflow.config import RuleKind, TransformRule
from edgeflow.proxy.content import (
    BinaryBody,
    ResponseTransformer,
    TextBody,
    decode_body,
    decode_wire,
    is_textual,
)


@pytest.mark.parametrize(
    "content_type,expected",
    [
        ("text/html; charset=utf-8", True),
        ("application/json", True),
        ("application/ld+json", True),
        ("image/svg+xml", True),
        ("application/javascript", True),
        ("", True),
        ("image/png", False),
        ("application/octet-stream", False),
        ("font/woff2", False),
    ],
)
def test_is_textual(content_type, expected):
    assert is_textual(content_type) is expected


def test_invalid_utf8_is_replaced_not_fatal():
    body = decode_body(b"ok \xff\xfe end", "text/plain")
    assert isinstance(body, TextBody)
    assert body.text.startswith("ok ")
    assert "�" in body.text


def test_declared_charset_used():
    body = decode_body("café".encode("latin-1"), "text/html; charset=ISO-8859-1")
    assert body.text == "café"
    assert body.encoding == "iso-8859-1"


def test_unknown_charset_falls_back_to_utf8():
    body = decode_body(b"abc", "text/plain; charset=made-up")
    assert body == TextBody("abc", "utf-8")


def test_binary_survives_transformation_byte_for_byte():
    data = bytes(range(256))
    rules = [TransformRule(pattern=".", replacement="x", kind=RuleKind.CONTENT)]
    body = ResponseTransformer().transform(decode_body(data, "image/png"), rules)
    assert isinstance(body, BinaryBody)
    assert body.to_bytes() == data


def test_content_rules_applied_to_text():
    rules = [TransformRule(pattern="foo", replacement="bar", kind=RuleKind.CONTENT)]
    body = ResponseTransformer().transform(TextBody("foo foo"), rules)
    assert body.text == "bar bar"


def test_wire_forms():
    assert TextBody("hi").to_wire() == ("hi", "utf-8")
    encoded, encoding = BinaryBody(b"\x00\x01").to_wire()
    assert encoding == "base64"
    assert base64.b64decode(encoded) == b"\x00\x01"
    assert decode_wire(encoded, "base64") == b"\x00\x01"
    assert decode_wire("hi", "utf-8") == b"hi"
    assert decode_wire("hi", None) == b"hi"
