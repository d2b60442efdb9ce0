import asyncio
import base64
import json

import httpx
import pytest

from edgeflow.dependencies import get_proxy_service
from edgeflow.interception import (
    CachedResponse,
    InMemoryClientCache,
    InterceptState,
    InterceptingTransport,
    Interceptor,
    UNAVAILABLE_BODY,
)
from edgeflow.server import app
from edgeflow.utils_tests.mocks import build_service

ENDPOINT = "http://edge.test/api/proxy"


def proxied(content="<p>proxied</p>", status=200, cacheable=True, **extra):
    payload = {
        "content": content,
        "contentType": "text/html",
        "status": status,
        "statusText": "OK" if status == 200 else "Not Found",
        "headers": {"content-type": "text/html", "x-cache-status": "MISS"},
        "cacheable": cacheable,
        "encoding": "utf-8",
    }
    payload.update(extra)
    return payload


def passthrough_handler(request):
    return httpx.Response(200, text=f"direct {request.url.path}")


def make_interceptor(endpoint_handler, cache=None):
    return Interceptor(
        forward_client=httpx.AsyncClient(transport=httpx.MockTransport(endpoint_handler)),
        endpoint_url=ENDPOINT,
        client_cache=cache if cache is not None else InMemoryClientCache(maxsize=8),
        passthrough=httpx.MockTransport(passthrough_handler),
        control_host="edge.test",
        management_prefixes=["/api/", "/_edgeflow/"],
        timeout=1.0,
    )


def client_for(interceptor):
    return httpx.AsyncClient(transport=InterceptingTransport(interceptor))


def endpoint_unreachable(request):
    raise httpx.ConnectError("edge function down", request=request)


class TestExemptions:
    @pytest.mark.parametrize(
        "url",
        [
            "http://edge.test/anything",
            "https://example.com/api/config",
            "https://example.com/_edgeflow/status",
            "https://example.com/static/app.js",
            "https://example.com/favicon.ico",
        ],
    )
    def test_exempt(self, url):
        assert make_interceptor(endpoint_unreachable).is_exempt(httpx.URL(url))

    @pytest.mark.parametrize(
        "url", ["https://example.com/", "https://example.com/articles/42", "http://a.org"]
    )
    def test_intercepted(self, url):
        assert not make_interceptor(endpoint_unreachable).is_exempt(httpx.URL(url))

    @pytest.mark.asyncio
    async def test_exempt_requests_bypass_forwarding(self):
        async with client_for(make_interceptor(endpoint_unreachable)) as client:
            response = await client.get("https://example.com/static/app.js")

        assert response.text == "direct /static/app.js"
        call = response.extensions["edgeflow.call"]
        assert not call.intercepted
        assert call.history == [InterceptState.DECIDING]


class TestForwarding:
    @pytest.mark.asyncio
    async def test_forwarded_call_is_serialized(self):
        seen = {}

        def endpoint(request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["payload"] = json.loads(request.content)
            return httpx.Response(200, json=proxied(content="created", status=200))

        async with client_for(make_interceptor(endpoint)) as client:
            response = await client.post(
                "https://example.com/items?x=1", content=b'{"a": 1}'
            )

        assert response.status_code == 200
        assert response.text == "created"
        assert seen["url"] == ENDPOINT
        assert seen["headers"]["x-original-url"] == "https://example.com/items?x=1"
        assert seen["headers"]["x-original-method"] == "POST"
        assert seen["payload"]["url"] == "https://example.com/items?x=1"
        assert seen["payload"]["method"] == "POST"
        assert seen["payload"]["body"] == '{"a": 1}'

    @pytest.mark.asyncio
    async def test_successful_call_states_and_client_cache(self):
        cache = InMemoryClientCache(maxsize=8)
        endpoint = lambda request: httpx.Response(200, json=proxied())

        async with client_for(make_interceptor(endpoint, cache)) as client:
            response = await client.get("https://example.com/page")

        assert response.status_code == 200
        assert response.reason_phrase == "OK"
        assert response.headers["content-type"] == "text/html"
        call = response.extensions["edgeflow.call"]
        assert call.history == [
            InterceptState.DECIDING,
            InterceptState.FORWARDING,
            InterceptState.SUCCEEDED,
        ]
        assert "GET https://example.com/page" in cache

    @pytest.mark.asyncio
    async def test_non_cacheable_reply_not_stored(self):
        cache = InMemoryClientCache(maxsize=8)
        endpoint = lambda request: httpx.Response(
            200, json=proxied(content="gone", status=404, cacheable=False)
        )

        async with client_for(make_interceptor(endpoint, cache)) as client:
            response = await client.get("https://example.com/missing")

        assert response.status_code == 404
        assert response.text == "gone"
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_base64_content_is_decoded(self):
        data = bytes(range(256))
        endpoint = lambda request: httpx.Response(
            200,
            json=proxied(
                content=base64.b64encode(data).decode("ascii"),
                contentType="image/png",
                headers={"content-type": "image/png"},
                encoding="base64",
            ),
        )

        async with client_for(make_interceptor(endpoint)) as client:
            response = await client.get("https://example.com/logo")

        assert response.content == data


class TestFallback:
    @pytest.mark.asyncio
    async def test_cache_hit_served_when_forwarding_fails(self):
        cache = InMemoryClientCache(maxsize=8)
        cache.put(
            "GET https://example.com/page",
            CachedResponse.from_parts(200, "OK", {"content-type": "text/html"}, b"old copy"),
        )

        async with client_for(make_interceptor(endpoint_unreachable, cache)) as client:
            response = await client.get("https://example.com/page")

        assert response.status_code == 200
        assert response.content == b"old copy"
        call = response.extensions["edgeflow.call"]
        assert call.state is InterceptState.FAILED
        assert call.served_from_cache
        assert "ConnectError" in call.error

    @pytest.mark.asyncio
    async def test_cache_miss_gets_fixed_unavailable_response(self):
        async with client_for(make_interceptor(endpoint_unreachable)) as client:
            response = await client.get("https://example.com/never-seen")

        assert response.status_code == 503
        assert response.headers["content-type"] == "text/plain"
        assert response.content == UNAVAILABLE_BODY
        assert not response.extensions["edgeflow.call"].served_from_cache

    @pytest.mark.parametrize(
        "reply",
        [
            httpx.Response(503, json={"error": "Origin did not respond", "code": "UPSTREAM_TIMEOUT"}),
            httpx.Response(200, text="<html>not json</html>"),
            httpx.Response(200, json=["unexpected"]),
        ],
    )
    @pytest.mark.asyncio
    async def test_unusable_replies_fall_back(self, reply):
        async with client_for(make_interceptor(lambda request: reply)) as client:
            response = await client.get("https://example.com/page")

        assert response.status_code == 503
        assert response.content == UNAVAILABLE_BODY

    @pytest.mark.asyncio
    async def test_cache_is_keyed_by_method_and_url(self):
        cache = InMemoryClientCache(maxsize=8)
        cache.put(
            "GET https://example.com/page",
            CachedResponse.from_parts(200, "OK", {}, b"get copy"),
        )

        async with client_for(make_interceptor(endpoint_unreachable, cache)) as client:
            response = await client.post("https://example.com/page", content=b"x")

        assert response.status_code == 503


class TestClientCache:
    def test_lru_eviction(self):
        cache = InMemoryClientCache(maxsize=2)
        entry = CachedResponse.from_parts(200, "OK", {}, b"")
        cache.put("GET a", entry)
        cache.put("GET b", entry)
        cache.match("GET a")
        cache.put("GET c", entry)

        assert "GET a" in cache
        assert "GET b" not in cache
        assert "GET c" in cache

    def test_put_overwrites(self):
        cache = InMemoryClientCache(maxsize=2)
        cache.put("GET a", CachedResponse.from_parts(200, "OK", {}, b"v1"))
        cache.put("GET a", CachedResponse.from_parts(200, "OK", {}, b"v2"))
        assert cache.match("GET a").content == b"v2"
        assert len(cache) == 1

    def test_stats(self):
        cache = InMemoryClientCache(maxsize=4)
        cache.put("GET a", CachedResponse.from_parts(200, "OK", {}, b""))
        cache.match("GET a")
        cache.match("GET missing")
        assert cache.get_stats() == {
            "size": 1,
            "maxsize": 4,
            "hits": 1,
            "misses": 1,
            "hit_rate": "50.0%",
        }


@pytest.mark.asyncio
async def test_end_to_end_serves_client_cache_when_origin_times_out():
    origin_state = {"slow": False}

    async def origin(request):
        if origin_state["slow"]:
            await asyncio.sleep(5)
        return httpx.Response(
            200, headers={"content-type": "text/html"}, text="<h1>example</h1>"
        )

    service = build_service(origin, timeout=0.05)
    app.dependency_overrides[get_proxy_service] = lambda: service
    cache = InMemoryClientCache(maxsize=8)
    interceptor = Interceptor(
        forward_client=httpx.AsyncClient(transport=httpx.ASGITransport(app=app)),
        endpoint_url=ENDPOINT,
        client_cache=cache,
        passthrough=httpx.MockTransport(passthrough_handler),
        control_host="edge.test",
    )
    try:
        async with client_for(interceptor) as client:
            first = await client.get("https://example.com/article")
            origin_state["slow"] = True
            second = await client.get("https://example.com/article")
            unseen = await client.get("https://example.com/other")
    finally:
        app.dependency_overrides.pop(get_proxy_service, None)

    assert first.status_code == 200
    assert first.text == "<h1>example</h1>"
    assert first.headers["x-proxied-by"] == "edgeflow"

    assert second.status_code == 200
    assert second.text == "<h1>example</h1>"
    assert second.extensions["edgeflow.call"].served_from_cache

    assert unseen.status_code == 503
    assert unseen.content == UNAVAILABLE_BODY
