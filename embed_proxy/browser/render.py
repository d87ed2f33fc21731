import asyncio
import contextlib
import logging
from typing import Callable, Optional

from opentelemetry import trace

from embed_proxy.browser.session import BrowserSession
from embed_proxy.headers.policy import HEADLESS_POLICY, sanitize_headers
from embed_proxy.models import (
    NavigationFailed,
    ProxyError,
    ProxyRequest,
    RenderError,
    RewrittenResponse,
    validate_target_url,
)
from embed_proxy.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from embed_proxy.vars import DEFAULT_USER_AGENT, HEADLESS_MAX_CONCURRENCY

logger = logging.getLogger("uvicorn.error")

_render_slots: Optional[asyncio.Semaphore] = None


def admission_limiter():
    """
    Bound the number of concurrent browser processes.

    ``HEADLESS_MAX_CONCURRENCY`` of 0 leaves renders unbounded.
    """
    global _render_slots
    if HEADLESS_MAX_CONCURRENCY <= 0:
        return contextlib.nullcontext()
    if _render_slots is None:
        _render_slots = asyncio.Semaphore(HEADLESS_MAX_CONCURRENCY)
    return _render_slots


async def handle_headless_render(
    proxy_request: ProxyRequest,
    session_factory: Callable[[], BrowserSession] = BrowserSession,
) -> RewrittenResponse:
    """
    Render the target in headless Chromium and return the post-script DOM.

    Links are not rewritten on this path; only the header policy is applied.
    The browser is torn down by the session scope on every exit path.
    """
    target_url = validate_target_url(proxy_request.target_url)
    user_agent = proxy_request.header("user-agent", DEFAULT_USER_AGENT)
    span = trace.get_current_span()

    logger.info(f"[Headless] Headless proxying request for: {target_url}")
    try:
        async with admission_limiter():
            async with session_factory() as session:
                result = await session.render(target_url, user_agent)
    except NavigationFailed as e:
        logger.error(
            f"[Headless] Headless proxy failed during navigation for {target_url}: Status {e.observed_status}"
        )
        span.set_attribute("proxy.status_code", e.status_code)
        return RewrittenResponse(
            status_code=e.status_code,
            headers=[],
            body=str(e),
            media_type="text/plain",
        )
    except ProxyError:
        raise
    except Exception as e:
        log_exception_with_details(
            logger, f"[Headless] Headless proxy error for {target_url}:", e
        )
        raise RenderError(format_exception_message(e)) from e

    span.set_attribute("proxy.status_code", 200)
    logger.info(f"[Headless] Successfully proxied {target_url}")
    return RewrittenResponse(
        status_code=200,
        headers=sanitize_headers(result.headers, target_url, HEADLESS_POLICY),
        body=result.html,
        media_type="text/html",
    )
