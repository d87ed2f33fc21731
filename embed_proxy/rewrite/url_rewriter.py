"""
Best-effort rewriting of absolute target-origin URLs in response bodies.

This is a plain text substitution, not a document parse: occurrences inside
scripts, attributes and text nodes are all rewritten alike, and text that
merely looks like the origin is rewritten too. Structural HTML/CSS/JS parsing
is out of scope.
"""

import logging
import re
from typing import Iterable, Optional, Tuple
from urllib.parse import quote, urlparse

from embed_proxy.utils.exception_logging import log_exception_with_details
from embed_proxy.vars import ORIGIN_ALIASES

logger = logging.getLogger("uvicorn.error")


def origin_of(url: str) -> str:
    """``scheme://host[:port]`` of an absolute URL, without any userinfo."""
    parsed = urlparse(url)
    host = parsed.hostname
    if not parsed.scheme or not host:
        raise ValueError(f"Not an absolute URL: {url!r}")
    if ":" in host:
        host = f"[{host}]"
    if parsed.port is not None:
        host = f"{host}:{parsed.port}"
    return f"{parsed.scheme}://{host}"


def proxied_origin(proxy_base: str, origin: str) -> str:
    return f"{proxy_base.rstrip('/')}/proxy?url={quote(origin, safe='')}"


def rewrite_body(
    body: str,
    target_url: str,
    proxy_base: str,
    aliases: Optional[Iterable[Tuple[str, str]]] = None,
) -> str:
    """
    Replace absolute references to the target's origin with proxy URLs.

    Every literal occurrence of the target origin becomes
    ``{proxy_base}/proxy?url=<encoded origin>``, so paths that follow it end
    up inside the ``url`` query value. Each ``(pattern, origin)`` alias then
    catches origins the page references under a different name than the one
    requested. On any failure the body is returned unmodified.
    """
    if not body:
        return body
    if aliases is None:
        aliases = ORIGIN_ALIASES

    try:
        target_origin = origin_of(target_url)
        replacement = proxied_origin(proxy_base, target_origin)
        rewritten = re.sub(
            re.escape(target_origin), lambda _m: replacement, body
        )

        # Already-proxied origins are percent-encoded, so aliases cannot match them twice
        for pattern, alias_origin in aliases:
            alias_replacement = proxied_origin(proxy_base, alias_origin)
            rewritten = re.sub(pattern, lambda _m: alias_replacement, rewritten)
        return rewritten
    except Exception as e:
        log_exception_with_details(
            logger, f"[Rewrite] URL rewriting failed for {target_url}; body left unmodified.", e
        )
        return body
