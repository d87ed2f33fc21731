from .policy import (
    DIRECT_POLICY,
    ERROR_POLICY,
    HEADLESS_POLICY,
    HeaderAction,
    HeaderRule,
    sanitize_headers,
)

__all__ = [
    "DIRECT_POLICY",
    "ERROR_POLICY",
    "HEADLESS_POLICY",
    "HeaderAction",
    "HeaderRule",
    "sanitize_headers",
]
