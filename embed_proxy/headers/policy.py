"""
Response header policy for embeddable responses.

A policy is an immutable table keyed by lower-cased header name. Each rule
either drops the header, rewrites each of its values, or passes it through.
Headers without a rule fall back to the policy's ``"*"`` rule, or pass through
unchanged when the policy has none.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Callable, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import quote, urljoin

from embed_proxy.utils.exception_logging import log_exception_with_details

logger = logging.getLogger("uvicorn.error")

HeaderPairs = List[Tuple[str, str]]
# (value, target_url) -> new value, or None to drop the value
Rewriter = Callable[[str, str], Optional[str]]


class HeaderAction(Enum):
    DROP = "drop"
    REWRITE = "rewrite"
    PASS = "pass"


@dataclass(frozen=True)
class HeaderRule:
    action: HeaderAction
    rewrite: Optional[Rewriter] = None


def proxy_path(url: str) -> str:
    """Self-referential path that re-enters the direct fetch route."""
    return f"/proxy?url={quote(url, safe='')}"


def strip_frame_ancestors(value: str, target_url: str) -> Optional[str]:
    directives = [d.strip() for d in value.split(";")]
    kept = [
        d
        for d in directives
        if d and d.split(None, 1)[0].lower() != "frame-ancestors"
    ]
    return "; ".join(kept) if kept else None


def rewrite_location(value: str, target_url: str) -> str:
    return proxy_path(urljoin(target_url, value.strip()))


DROP = HeaderRule(HeaderAction.DROP)
PASS = HeaderRule(HeaderAction.PASS)
DEFAULT_RULE_KEY = "*"

# Body was decoded and possibly rewritten, so stale framing would corrupt it
TRANSPORT_HEADERS = ("content-encoding", "transfer-encoding", "connection", "content-length")
HEADLESS_ALLOWED_HEADERS = ("cache-control", "expires", "last-modified", "content-language")

DIRECT_POLICY: Mapping[str, HeaderRule] = MappingProxyType(
    {
        **{name: DROP for name in TRANSPORT_HEADERS},
        "x-frame-options": DROP,
        "content-security-policy": HeaderRule(
            HeaderAction.REWRITE, strip_frame_ancestors
        ),
        "location": HeaderRule(HeaderAction.REWRITE, rewrite_location),
    }
)

ERROR_POLICY: Mapping[str, HeaderRule] = MappingProxyType(
    {
        **{name: DROP for name in TRANSPORT_HEADERS},
        "x-frame-options": DROP,
        "content-security-policy": DROP,
    }
)

HEADLESS_POLICY: Mapping[str, HeaderRule] = MappingProxyType(
    {
        # Only caching and language metadata reach the caller
        DEFAULT_RULE_KEY: DROP,
        **{name: PASS for name in HEADLESS_ALLOWED_HEADERS},
    }
)


def _items(headers) -> Iterable[Tuple[str, str]]:
    if hasattr(headers, "multi_items"):
        return headers.multi_items()
    if hasattr(headers, "items"):
        pairs = []
        for name, value in headers.items():
            if isinstance(value, (list, tuple)):
                pairs.extend((name, v) for v in value)
            else:
                pairs.append((name, value))
        return pairs
    return headers


def sanitize_headers(
    headers,
    target_url: str,
    policy: Mapping[str, HeaderRule] = DIRECT_POLICY,
) -> HeaderPairs:
    """
    Apply a header policy to upstream response headers.

    Accepts an ``httpx.Headers``, a mapping of name to value or list of values,
    or an iterable of pairs. Multi-value headers come back as repeated pairs in
    their original order. A failing rewrite only affects its own header, which
    is passed through unchanged.
    """
    result: HeaderPairs = []
    for name, value in _items(headers):
        rule = policy.get(name.lower(), policy.get(DEFAULT_RULE_KEY))
        if rule is None or rule.action is HeaderAction.PASS:
            result.append((name, value))
            continue
        if rule.action is HeaderAction.DROP:
            continue
        try:
            rewritten = rule.rewrite(value, target_url)
        except Exception as e:
            log_exception_with_details(
                logger, f"[Headers] Failed to rewrite {name}={value!r};", e
            )
            result.append((name, value))
            continue
        if rewritten is not None:
            result.append((name, rewritten))
    return result
