import base64

import httpx
import pytest
from fastapi.testclient import TestClient

from edgeflow.config import ProxyConfig
from edgeflow.dependencies import get_proxy_service
from edgeflow.server import app
from edgeflow.utils_tests.mocks import build_service


def origin(request):
    if request.url.path.endswith(".png"):
        return httpx.Response(
            200, headers={"content-type": "image/png"}, content=b"\x89PNG\x00\x01"
        )
    return httpx.Response(
        200, headers={"content-type": "text/html"}, text=f"<p>{request.url.path}</p>"
    )


@pytest.fixture
def client():
    service = build_service(origin, config=ProxyConfig(blocked_domains=["evil.test"]))
    app.dependency_overrides[get_proxy_service] = lambda: service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_proxy_service, None)


def test_post_returns_wrapped_response(client):
    response = client.post("/api/proxy", json={"url": "https://example.com/hello"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["content"] == "<p>/hello</p>"
    assert payload["status"] == 200
    assert payload["statusText"] == "OK"
    assert payload["contentType"] == "text/html"
    assert payload["cacheable"] is True
    assert payload["encoding"] == "utf-8"
    assert payload["headers"]["x-proxied-by"] == "edgeflow"


def test_get_matches_post(client):
    via_get = client.get("/api/proxy", params={"url": "https://example.com/same"})
    via_post = client.post("/api/proxy", json={"url": "https://example.com/same"})
    assert via_get.status_code == via_post.status_code == 200
    assert via_get.json()["content"] == via_post.json()["content"]


def test_binary_content_is_base64(client):
    response = client.get("/api/proxy", params={"url": "https://example.com/logo.png"})
    payload = response.json()
    assert payload["encoding"] == "base64"
    assert base64.b64decode(payload["content"]) == b"\x89PNG\x00\x01"


@pytest.mark.parametrize(
    "body,message",
    [
        ({}, "URL is required"),
        ({"url": ""}, "URL is required"),
        ({"url": "https://example.com", "headers": "nope"}, "Malformed request body"),
        (["https://example.com"], "Malformed request body"),
    ],
)
def test_post_invalid_input(client, body, message):
    response = client.post("/api/proxy", json=body)
    assert response.status_code == 400
    assert response.json() == {"error": message, "code": "INVALID_INPUT"}


def test_post_invalid_json(client):
    response = client.post(
        "/api/proxy", content=b"{not json", headers={"content-type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_INPUT"


def test_get_without_url(client):
    response = client.get("/api/proxy")
    assert response.status_code == 400
    assert response.json() == {
        "error": "URL parameter is required",
        "code": "INVALID_INPUT",
    }


def test_blocked_domain_is_403(client):
    response = client.get("/api/proxy", params={"url": "https://evil.test/"})
    assert response.status_code == 403
    assert response.json() == {"error": "Domain is blocked", "code": "POLICY_REJECTED"}


def test_invalid_url_is_400(client):
    response = client.post("/api/proxy", json={"url": "not a url"})
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid URL format"
