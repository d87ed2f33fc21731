"""
End-to-end tests for the HTTP surface through FastAPI's TestClient.

Outbound fetches use a recording ``httpx.MockTransport`` and the headless
route uses a mocked Playwright driver, both injected via dependency overrides.
"""

from unittest.mock import Mock

import httpx
import pytest
from fastapi.testclient import TestClient
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from embed_proxy.browser.session import BrowserSession, BrowserSettings
from embed_proxy.models import ResponseAlreadySent, RewrittenResponse
from embed_proxy.routes import _respond, get_session_factory, get_upstream_transport
from embed_proxy.server import app


@pytest.fixture
def calls():
    return []


@pytest.fixture
def upstream(calls):
    """Programmable upstream: set ``upstream.response`` or ``upstream.exc``."""

    class Upstream:
        response = httpx.Response(200, text="ok")
        exc = None

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if Upstream.exc is not None:
            raise Upstream.exc
        return Upstream.response

    transport = httpx.MockTransport(handler)
    app.dependency_overrides[get_upstream_transport] = lambda: transport
    yield Upstream
    app.dependency_overrides.pop(get_upstream_transport, None)


@pytest.fixture
def headless_session():
    settings = BrowserSettings(settle_seconds=0, timeout_ms=5000)
    app.dependency_overrides[get_session_factory] = lambda: (
        lambda: BrowserSession(settings)
    )
    yield settings
    app.dependency_overrides.pop(get_session_factory, None)


@pytest.fixture
def client():
    with TestClient(app, follow_redirects=False) as c:
        yield c


class TestProxyRoute:
    def test_missing_url_is_400_without_outbound_calls(self, client, upstream, calls):
        r = client.get("/proxy")

        assert r.status_code == 400, f"Unexpected status code: {r.status_code}, {r.text}"
        assert r.text == "Missing target URL parameter"
        assert calls == []

    def test_relative_url_is_400(self, client, upstream, calls):
        r = client.get("/proxy", params={"url": "/just/a/path"})

        assert r.status_code == 400
        assert calls == []

    def test_success_rewrites_body(self, client, upstream, calls):
        upstream.response = httpx.Response(
            200,
            headers={"content-type": "text/html", "x-frame-options": "DENY"},
            text='<a href="http://origin.example/a">a</a> http://origin.example',
        )

        r = client.get("/proxy", params={"url": "http://origin.example/page"})

        assert r.status_code == 200
        assert r.text.count("http://testserver/proxy?url=http%3A%2F%2Forigin.example") == 2
        assert "x-frame-options" not in r.headers
        assert r.headers["content-type"] == "text/html"
        assert str(calls[0].url) == "http://origin.example/page"

    def test_upstream_404_forwarded(self, client, upstream):
        upstream.response = httpx.Response(
            404, headers={"content-type": "text/plain"}, text="gone"
        )

        r = client.get("/proxy", params={"url": "http://origin.example/missing"})

        assert r.status_code == 404
        assert r.text == "gone"
        # Only the length of the body actually sent, never the upstream's
        assert r.headers["content-length"] == str(len(b"gone"))

    def test_redirect_bounces_through_proxy(self, client, upstream, calls):
        upstream.response = httpx.Response(302, headers={"location": "/next"})

        r = client.get("/proxy", params={"url": "https://origin.example/start"})

        assert r.status_code == 302
        assert r.headers["location"] == "/proxy?url=https%3A%2F%2Forigin.example%2Fnext"
        assert len(calls) == 1

    def test_transport_failure_is_500(self, client, upstream):
        upstream.exc = httpx.ConnectError("Connection refused")

        r = client.get("/proxy", params={"url": "http://origin.example/"})

        assert r.status_code == 500
        assert r.text == "Proxy error: Connection refused"

    def test_cors_header_present(self, client, upstream):
        r = client.get(
            "/proxy",
            params={"url": "http://origin.example/"},
            headers={"Origin": "https://embedder.example"},
        )

        assert r.headers["access-control-allow-origin"] == "*"


class TestProxyHeadlessRoute:
    def test_missing_url_is_400(self, client, fake_playwright, headless_session):
        fakes = fake_playwright()

        r = client.get("/proxy-headless")

        assert r.status_code == 400
        assert r.text == "Missing target URL parameter"
        fakes.playwright.chromium.launch.assert_not_awaited()

    def test_success_returns_rendered_html(self, client, fake_playwright, headless_session):
        fakes = fake_playwright(
            headers={"x-frame-options": "DENY", "content-security-policy": "default-src *"},
            html="<html><body>after script</body></html>",
        )

        r = client.get("/proxy-headless", params={"url": "https://origin.example/app"})

        assert r.status_code == 200
        assert r.text == "<html><body>after script</body></html>"
        assert r.headers["content-type"] == "text/html; charset=utf-8"
        assert "x-frame-options" not in r.headers
        assert "content-security-policy" not in r.headers
        fakes.browser.close.assert_awaited_once()

    def test_navigation_timeout_is_500_and_torn_down_once(
        self, client, fake_playwright, headless_session
    ):
        fakes = fake_playwright()
        fakes.page.goto.side_effect = PlaywrightTimeoutError(
            "Timeout 5000ms exceeded."
        )

        r = client.get("/proxy-headless", params={"url": "https://origin.example/slow"})

        assert r.status_code == 500
        assert r.text.startswith("Headless proxy error: ")
        assert "Timeout 5000ms exceeded." in r.text
        fakes.browser.close.assert_awaited_once()
        fakes.page.content.assert_not_awaited()

    def test_navigation_status_forwarded(self, client, fake_playwright, headless_session):
        fakes = fake_playwright(status=404, ok=False)

        r = client.get("/proxy-headless", params={"url": "https://origin.example/nope"})

        assert r.status_code == 404
        assert r.text == "Failed to load page: Status 404"
        fakes.browser.close.assert_awaited_once()


def test_healthz(client):
    r = client.get("/healthz")

    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


class TestRespond:
    @pytest.mark.asyncio
    async def test_sent_response_is_never_replaced_by_an_error(self):
        rewritten = RewrittenResponse(status_code=200, headers=[], body="ok")
        rewritten.to_response()

        async def produce():
            return rewritten

        span = Mock()
        with pytest.raises(ResponseAlreadySent):
            await _respond(produce, "Proxy error", span)

        span.set_attribute.assert_not_called()

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_plain_text_500(self):
        async def produce():
            raise ConnectionResetError("upstream hung up")

        response = await _respond(produce, "Proxy error", Mock())

        assert response.status_code == 500
        assert response.body == b"Proxy error: upstream hung up"
