import os
import re

SERVICE_NAME = os.getenv("SERVICE_NAME", "embed-proxy")
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "3001"))

# Comma separated; "*" allows any origin
CORS_ORIGIN = os.environ.get("CORS_ORIGIN", "*")
CORS_ORIGINS = [o.strip() for o in CORS_ORIGIN.split(",") if o.strip()] or ["*"]

# Public-facing base used for self-referential URLs; derived per request when empty
PUBLIC_URL = os.environ.get("PUBLIC_URL", "").rstrip("/")
PROXY_TIMEOUT = float(os.environ.get("PROXY_TIMEOUT", "30"))

DEFAULT_USER_AGENT = os.getenv(
    "DEFAULT_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/90.0.4430.212 Safari/537.36",
)

BROWSER_EXECUTABLE_PATH = os.getenv(
    "BROWSER_EXECUTABLE_PATH", os.getenv("PUPPETEER_EXECUTABLE_PATH", "")
)
HEADLESS_TIMEOUT_MS = int(os.getenv("HEADLESS_TIMEOUT_MS", "60000"))
HEADLESS_SETTLE_SECONDS = float(os.getenv("HEADLESS_SETTLE_SECONDS", "2"))
HEADLESS_MAX_CONCURRENCY = int(os.getenv("HEADLESS_MAX_CONCURRENCY", "0"))

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

DEFAULT_ORIGIN_ALIASES = r"https?://(www\.)?reddit\.com\b=https://www.reddit.com"


def _parse_origin_aliases(raw: str) -> list[tuple[str, str]]:
    """
    Parse ``pattern=origin`` pairs separated by commas.

    Commas inside a ``{m,n}`` quantifier belong to the pattern. A pattern may
    not contain a bare comma outside braces.
    """
    aliases: list[tuple[str, str]] = []
    if not raw:
        return aliases
    for entry in re.split(r",(?![^{}]*\})", raw):
        entry = entry.strip()
        if not entry:
            continue
        if "=" in entry:
            pattern, origin = entry.rsplit("=", 1)
            pattern = pattern.strip()
            origin = origin.strip().rstrip("/")
            if pattern and origin:
                aliases.append((pattern, origin))
    return aliases


ORIGIN_ALIASES = _parse_origin_aliases(
    os.getenv("ORIGIN_ALIASES", DEFAULT_ORIGIN_ALIASES)
)
