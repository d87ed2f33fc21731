from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Tuple
from urllib.parse import urlparse

import httpx
from fastapi import Request
from fastapi.responses import Response

from embed_proxy.vars import PUBLIC_URL

ALLOWED_SCHEMES = ("http", "https")


class ProxyError(Exception):
    """Base class for failures the routes translate into plain-text responses."""

    status_code = 500


class InvalidTargetUrl(ProxyError):
    status_code = 400

    def __init__(self, target_url: Optional[str] = None):
        self.target_url = target_url
        if target_url:
            message = f"Invalid target URL parameter: {target_url}"
        else:
            message = "Missing target URL parameter"
        super().__init__(message)


class UpstreamError(ProxyError):
    """Transport-level failure talking to the target (DNS, refused, timeout)."""


class NavigationFailed(ProxyError):
    """The headless navigation produced no response or a non-ok one."""

    def __init__(self, status_code: Optional[int]):
        self.observed_status = status_code
        self.status_code = status_code or 500
        super().__init__(f"Failed to load page: Status {status_code}")


class RenderError(ProxyError):
    """Launch, protocol or timeout failure inside the headless browser."""


class ResponseAlreadySent(ProxyError):
    pass


def validate_target_url(target_url: Optional[str]) -> str:
    """Return the target URL if it is an absolute http(s) URI, raise otherwise."""
    if not target_url or not target_url.strip():
        raise InvalidTargetUrl()
    target_url = target_url.strip()
    try:
        parsed = urlparse(target_url)
    except ValueError:
        raise InvalidTargetUrl(target_url)
    if parsed.scheme.lower() not in ALLOWED_SCHEMES or not parsed.netloc:
        raise InvalidTargetUrl(target_url)
    return target_url


@dataclass
class ProxyRequest:
    target_url: str
    caller_headers: Mapping[str, str]
    caller_host: str
    scheme: str = "http"
    public_url: str = ""

    def __post_init__(self):
        # Case-insensitive lookups regardless of what the caller handed in
        self.caller_headers = httpx.Headers(dict(self.caller_headers or {}))

    @property
    def proxy_base(self) -> str:
        if self.public_url:
            return self.public_url
        return f"{self.scheme}://{self.caller_host}"

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        value = self.caller_headers.get(name)
        return value if value else default

    @classmethod
    def from_request(cls, request: Request, target_url: Optional[str]) -> "ProxyRequest":
        host = request.headers.get("host")
        if not host:
            host = request.url.netloc
        return cls(
            target_url=validate_target_url(target_url),
            caller_headers=request.headers,
            caller_host=host,
            scheme=request.url.scheme,
            public_url=PUBLIC_URL,
        )


@dataclass
class UpstreamResponse:
    status_code: int
    reason_phrase: str
    headers: httpx.Headers
    body_text: str
    encoding: str = "utf-8"

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_redirect(self) -> bool:
        return 300 <= self.status_code < 400 and "location" in self.headers

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> "UpstreamResponse":
        return cls(
            status_code=response.status_code,
            reason_phrase=response.reason_phrase,
            headers=response.headers,
            body_text=response.text,
            encoding=response.encoding or "utf-8",
        )


@dataclass
class RewrittenResponse:
    """Transformed response, written to the caller exactly once."""

    status_code: int
    headers: List[Tuple[str, str]]
    body: str
    encoding: str = "utf-8"
    media_type: Optional[str] = None
    _sent: bool = field(default=False, init=False, repr=False)

    @property
    def sent(self) -> bool:
        return self._sent

    def to_response(self) -> Response:
        if self._sent:
            raise ResponseAlreadySent("Response has already been sent to the caller")
        self._sent = True
        response = Response(
            content=self.body.encode(self.encoding, errors="replace"),
            status_code=self.status_code,
            media_type=self.media_type,
        )
        for name, value in self.headers:
            response.headers.append(name, value)
        return response
