"""
Headless Chromium session scoped to a single request.

A ``BrowserSession`` owns one browser process for the duration of an
``async with`` block. Whatever happens inside the block, leaving it terminates
the process; close failures are logged and never replace the primary result
or exception.

Lifecycle::

    UNINITIALIZED -> LAUNCHING -> PAGE_CREATED -> NAVIGATING -> CONTENT_READY -> CLOSED

``CLOSED`` is reachable from every state.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Dict, Optional, Tuple, TypeVar

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    Route,
    async_playwright,
)

from embed_proxy.models import NavigationFailed
from embed_proxy.utils.exception_logging import log_exception_with_details
from embed_proxy.vars import (
    BROWSER_EXECUTABLE_PATH,
    DEFAULT_USER_AGENT,
    HEADLESS_SETTLE_SECONDS,
    HEADLESS_TIMEOUT_MS,
)

logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")

# Sandboxing is disabled only because containerized hosts cannot provide it
LAUNCH_ARGS: Tuple[str, ...] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-software-rasterizer",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-default-apps",
    "--disable-sync",
    "--disable-translate",
    "--hide-scrollbars",
    "--metrics-recording-only",
    "--mute-audio",
    "--no-first-run",
    "--safebrowsing-disable-auto-update",
    "--ignore-certificate-errors",
    "--ignore-certificate-errors-spki-list",
    "--disable-features=site-per-process,TranslateUI,Translate",
    "--disable-breakpad",
    "--disable-crash-reporter",
    "--js-flags=--max-old-space-size=460",
)

BLOCKED_RESOURCE_TYPES = frozenset({"image", "stylesheet", "font", "media"})


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    LAUNCHING = "launching"
    PAGE_CREATED = "page_created"
    NAVIGATING = "navigating"
    CONTENT_READY = "content_ready"
    CLOSED = "closed"


@dataclass(frozen=True)
class BrowserSettings:
    executable_path: Optional[str] = BROWSER_EXECUTABLE_PATH or None
    timeout_ms: int = HEADLESS_TIMEOUT_MS
    settle_seconds: float = HEADLESS_SETTLE_SECONDS
    viewport_width: int = 1024
    viewport_height: int = 768
    launch_args: Tuple[str, ...] = LAUNCH_ARGS
    blocked_resource_types: frozenset = BLOCKED_RESOURCE_TYPES

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


@dataclass
class RenderResult:
    status_code: int
    html: str
    headers: Dict[str, str] = field(default_factory=dict)


class BrowserSession:
    def __init__(self, settings: Optional[BrowserSettings] = None):
        self.settings = settings or BrowserSettings()
        self.state = SessionState.UNINITIALIZED
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    async def __aenter__(self) -> "BrowserSession":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
        return False

    def _transition(self, state: SessionState):
        logger.debug(f"[Headless] Session state {self.state.value} -> {state.value}")
        self.state = state

    async def _bounded(self, operation: Awaitable[T]) -> T:
        """Await a driver call that has no timeout of its own."""
        return await asyncio.wait_for(operation, timeout=self.settings.timeout_seconds)

    async def _block_heavy_resources(self, route: Route):
        if route.request.resource_type in self.settings.blocked_resource_types:
            await route.abort()
        else:
            await route.continue_()

    async def launch(self):
        if self.state is not SessionState.UNINITIALIZED:
            raise RuntimeError(f"Cannot launch a session in state {self.state.value}")
        self._transition(SessionState.LAUNCHING)
        executable_path = self.settings.executable_path
        logger.info(
            f"[Headless] Launching Chromium with executable: {executable_path or 'default'}"
        )
        self._playwright = await self._bounded(async_playwright().start())
        self._browser = await self._playwright.chromium.launch(
            headless=True,
            args=list(self.settings.launch_args),
            executable_path=executable_path,
            timeout=self.settings.timeout_ms,
        )
        logger.info("[Headless] Browser launched.")

    async def new_page(self, user_agent: Optional[str] = None) -> Page:
        self._context = await self._bounded(
            self._browser.new_context(
                viewport={
                    "width": self.settings.viewport_width,
                    "height": self.settings.viewport_height,
                },
                device_scale_factor=1,
                user_agent=user_agent or DEFAULT_USER_AGENT,
                ignore_https_errors=True,
            )
        )
        self._context.set_default_timeout(self.settings.timeout_ms)
        self._context.set_default_navigation_timeout(self.settings.timeout_ms)
        self._page = await self._bounded(self._context.new_page())
        await self._bounded(self._page.route("**/*", self._block_heavy_resources))
        self._transition(SessionState.PAGE_CREATED)
        logger.info("[Headless] Page created and configured.")
        return self._page

    async def navigate(self, target_url: str):
        self._transition(SessionState.NAVIGATING)
        logger.info(f"[Headless] Navigating to {target_url}...")
        # DOM parsed rather than network idle; polling pages never go idle
        response = await self._page.goto(
            target_url,
            wait_until="domcontentloaded",
            timeout=self.settings.timeout_ms,
        )
        status = response.status if response is not None else None
        logger.info(f"[Headless] Navigation response status: {status}")
        if response is None or not response.ok:
            raise NavigationFailed(status)
        return response

    async def snapshot(self) -> str:
        # Let deferred scripts mutate the DOM before serializing it
        await asyncio.sleep(self.settings.settle_seconds)
        html = await self._bounded(self._page.content())
        self._transition(SessionState.CONTENT_READY)
        return html

    async def render(self, target_url: str, user_agent: Optional[str] = None) -> RenderResult:
        """Launch, navigate and capture the post-script DOM of ``target_url``."""
        try:
            await self.launch()
            await self.new_page(user_agent)
            response = await self.navigate(target_url)
            html = await self.snapshot()
            return RenderResult(
                status_code=response.status,
                html=html,
                headers=dict(response.headers),
            )
        except Exception:
            self._log_page_diagnostics(target_url)
            raise

    def _log_page_diagnostics(self, target_url: str):
        if self._page is None:
            return
        try:
            logger.error(
                f"[Headless] Page URL at time of error for {target_url}: {self._page.url}"
            )
        except Exception as e:
            log_exception_with_details(
                logger, "[Headless] Could not read page diagnostics;", e, logging.WARNING
            )

    async def close(self):
        """Terminate the browser process. Safe to call more than once; never raises."""
        if self.state is SessionState.CLOSED:
            return
        self._transition(SessionState.CLOSED)
        browser, playwright = self._browser, self._playwright
        self._page = self._context = self._browser = self._playwright = None

        if browser is not None:
            logger.info("[Headless] Closing browser...")
            try:
                await asyncio.wait_for(
                    browser.close(), timeout=self.settings.timeout_seconds
                )
                logger.info("[Headless] Browser closed.")
            except Exception as e:
                log_exception_with_details(logger, "[Headless] Error closing browser;", e)
        if playwright is not None:
            try:
                await asyncio.wait_for(
                    playwright.stop(), timeout=self.settings.timeout_seconds
                )
            except Exception as e:
                log_exception_with_details(logger, "[Headless] Error stopping Playwright;", e)


async def render(
    target_url: str,
    user_agent: Optional[str] = None,
    settings: Optional[BrowserSettings] = None,
) -> RenderResult:
    """One-shot render with guaranteed teardown."""
    async with BrowserSession(settings) as session:
        return await session.render(target_url, user_agent)
