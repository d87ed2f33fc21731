import logging
from typing import Awaitable, Callable, Optional

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse, Response
from opentelemetry import trace

from embed_proxy.browser.render import handle_headless_render
from embed_proxy.browser.session import BrowserSession
from embed_proxy.fetch.direct_fetch import handle_direct_fetch
from embed_proxy.models import (
    InvalidTargetUrl,
    ProxyError,
    ProxyRequest,
    RewrittenResponse,
)
from embed_proxy.utils.exception_logging import format_exception_message
from embed_proxy.utils.traced_requests import traced_request

router = APIRouter()

logger = logging.getLogger("uvicorn.error")

tracer = trace.get_tracer(__name__)


def get_upstream_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Transport for outbound fetches; ``None`` uses httpx's default network transport."""
    return None


def get_session_factory() -> Callable[[], BrowserSession]:
    return BrowserSession


async def _respond(
    produce: Callable[[], Awaitable[RewrittenResponse]],
    error_prefix: str,
    span,
) -> Response:
    try:
        rewritten = await produce()
    except InvalidTargetUrl as e:
        span.set_attribute("proxy.error", "invalid_target")
        return PlainTextResponse(str(e), status_code=400)
    except Exception as e:
        status_code = e.status_code if isinstance(e, ProxyError) else 500
        message = format_exception_message(e)
        span.set_attribute("proxy.error", message)
        span.set_attribute("proxy.status_code", status_code)
        logger.error(f"{error_prefix}: {message}")
        return PlainTextResponse(f"{error_prefix}: {message}", status_code=status_code)
    # Errors past this point propagate; Starlette writes the response after the return
    return rewritten.to_response()


@router.get("/proxy")
async def proxy(
    request: Request,
    url: Optional[str] = Query(None, description="Absolute http(s) URL to fetch"),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_upstream_transport),
):
    with traced_request(
        tracer,
        operation="proxy_direct",
        target_url=url,
        mode="direct",
        start_message=f"[Proxy] Request for: {url}",
    ) as span:
        return await _respond(
            lambda: handle_direct_fetch(
                ProxyRequest.from_request(request, url), transport
            ),
            "Proxy error",
            span,
        )


@router.get("/proxy-headless")
async def proxy_headless(
    request: Request,
    url: Optional[str] = Query(None, description="Absolute http(s) URL to render"),
    session_factory: Callable[[], BrowserSession] = Depends(get_session_factory),
):
    with traced_request(
        tracer,
        operation="proxy_headless",
        target_url=url,
        mode="headless",
        start_message=f"[Headless] Request for: {url}",
    ) as span:
        return await _respond(
            lambda: handle_headless_render(
                ProxyRequest.from_request(request, url), session_factory
            ),
            "Headless proxy error",
            span,
        )


@router.get("/healthz")
async def healthz():
    return {"status": "ok"}
