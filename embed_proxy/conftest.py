from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import pytest

from embed_proxy.browser.session import BrowserSettings


@pytest.fixture
def fast_settings():
    """Settings that skip the post-navigation settle delay."""
    return BrowserSettings(settle_seconds=0, timeout_ms=5000)


@pytest.fixture
def fake_playwright():
    """
    Patch ``async_playwright`` with a mock driver.

    Returns a namespace exposing the playwright, browser, context, page and the
    navigation response so tests can program failures and assert teardown.
    """
    patchers = []

    def _create(status=200, ok=True, headers=None, html="<html><body>rendered</body></html>"):
        response = Mock()
        response.status = status
        response.ok = ok
        response.headers = headers or {"content-type": "text/html"}

        page = Mock()
        page.url = "https://origin.example/start"
        page.route = AsyncMock()
        page.goto = AsyncMock(return_value=response)
        page.content = AsyncMock(return_value=html)

        context = Mock()
        context.new_page = AsyncMock(return_value=page)

        browser = Mock()
        browser.new_context = AsyncMock(return_value=context)
        browser.close = AsyncMock()

        playwright = Mock()
        playwright.chromium.launch = AsyncMock(return_value=browser)
        playwright.stop = AsyncMock()

        starter = Mock()
        starter.start = AsyncMock(return_value=playwright)

        patcher = patch(
            "embed_proxy.browser.session.async_playwright", return_value=starter
        )
        patcher.start()
        fakes = SimpleNamespace(
            playwright=playwright,
            browser=browser,
            context=context,
            page=page,
            response=response,
        )
        patchers.append(patcher)
        return fakes

    yield _create
    for p in patchers:
        p.stop()
