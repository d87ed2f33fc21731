import logging
from typing import Dict, Optional
from urllib.parse import urljoin

import httpx
from opentelemetry import trace

from embed_proxy.headers.policy import (
    DIRECT_POLICY,
    ERROR_POLICY,
    proxy_path,
    sanitize_headers,
)
from embed_proxy.models import (
    ProxyRequest,
    RewrittenResponse,
    UpstreamError,
    UpstreamResponse,
    validate_target_url,
)
from embed_proxy.rewrite.url_rewriter import rewrite_body
from embed_proxy.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from embed_proxy.vars import DEFAULT_USER_AGENT, PROXY_TIMEOUT

logger = logging.getLogger("uvicorn.error")

DEFAULT_ACCEPT = "*/*"
DEFAULT_ACCEPT_ENCODING = "gzip, deflate, br"
DEFAULT_ACCEPT_LANGUAGE = "en-US,en;q=0.9"


def build_upstream_headers(proxy_request: ProxyRequest) -> Dict[str, str]:
    """
    Curated outbound header set.

    Only content negotiation headers are taken from the caller. Cookies and
    credentials are never forwarded to the target.
    """
    return {
        "User-Agent": proxy_request.header("user-agent", DEFAULT_USER_AGENT),
        "Accept": proxy_request.header("accept", DEFAULT_ACCEPT),
        "Accept-Encoding": proxy_request.header(
            "accept-encoding", DEFAULT_ACCEPT_ENCODING
        ),
        "Accept-Language": proxy_request.header(
            "accept-language", DEFAULT_ACCEPT_LANGUAGE
        ),
        # Some origins check that the referer is their own site
        "Referer": proxy_request.target_url,
    }


async def fetch_upstream(
    proxy_request: ProxyRequest,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> UpstreamResponse:
    """Single GET against the target; redirects are surfaced, never followed."""
    try:
        async with httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(PROXY_TIMEOUT),
            follow_redirects=False,
        ) as client:
            response = await client.get(
                proxy_request.target_url,
                headers=build_upstream_headers(proxy_request),
            )
            return UpstreamResponse.from_httpx(response)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise UpstreamError(format_exception_message(e)) from e


def redirect_response(upstream: UpstreamResponse, target_url: str) -> RewrittenResponse:
    raw_location = upstream.headers["location"].strip()
    try:
        location = urljoin(target_url, raw_location)
    except ValueError as e:
        log_exception_with_details(
            logger,
            f"[Proxy] Could not resolve redirect location {raw_location!r};",
            e,
            logging.WARNING,
        )
        location = raw_location
    logger.info(f"[Proxy] Redirecting to: {location}")
    return RewrittenResponse(
        status_code=302,
        headers=[("location", proxy_path(location))],
        body="",
    )


async def handle_direct_fetch(
    proxy_request: ProxyRequest,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RewrittenResponse:
    """
    Fetch the target and make the result embeddable.

    - 3xx with a location bounces the caller to ``/proxy?url=<target>``
    - other non-2xx statuses are forwarded with their original body
    - 2xx bodies have target-origin URLs rewritten to re-enter the proxy
    """
    target_url = validate_target_url(proxy_request.target_url)
    span = trace.get_current_span()

    logger.info(f"[Proxy] Proxying request for: {target_url}")
    upstream = await fetch_upstream(proxy_request, transport)
    span.set_attribute("proxy.status_code", upstream.status_code)

    if upstream.is_redirect:
        return redirect_response(upstream, target_url)

    if not upstream.ok:
        logger.error(
            f"[Proxy] Proxy failed for {target_url}: {upstream.status_code} {upstream.reason_phrase}"
        )
        return RewrittenResponse(
            status_code=upstream.status_code,
            headers=sanitize_headers(upstream.headers, target_url, ERROR_POLICY),
            body=upstream.body_text,
            encoding=upstream.encoding,
        )

    body = rewrite_body(upstream.body_text, target_url, proxy_request.proxy_base)
    return RewrittenResponse(
        status_code=upstream.status_code,
        headers=sanitize_headers(upstream.headers, target_url, DIRECT_POLICY),
        body=body,
        encoding=upstream.encoding,
    )
