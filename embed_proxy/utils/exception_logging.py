"""
Exception logging helpers that never raise themselves.

Used at every isolate-and-degrade boundary (header rewrites, body rewriting,
browser teardown) where a logging failure must not mask the primary result.
"""

import logging


def _safe_str(obj) -> str:
    """
    Convert an object to string, falling back when ``__str__`` or ``__repr__`` fail.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def format_exception_message(exception: BaseException) -> str:
    """
    Human readable message for an exception.

    Transport and browser exceptions frequently carry an empty message (e.g. a
    bare ``httpx.ReadTimeout``); the exception type name is used instead so the
    caller never receives an empty error body. Exception groups list their
    sub-exceptions.

    Args:
        exception: The exception to format

    Returns:
        A non-empty description of the exception
    """
    try:
        if exception is None:
            return "None"
        message = _safe_str(exception).strip() or type(exception).__name__
        sub_exceptions = list(getattr(exception, "exceptions", None) or [])
        if sub_exceptions:
            parts = "; ".join(
                f"{type(sub).__name__}: {format_exception_message(sub)}"
                for sub in sub_exceptions
            )
            return f"{message} (Sub-exceptions: {parts})"
        return message
    except Exception:
        return "<exception (formatting failed)>"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with its traceback, including sub-exceptions of groups.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]", "[Headless]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        logger.log(
            level,
            f"{prefix} Exception: {format_exception_message(exception)}",
            exc_info=exception if exception is not None else False,
        )
        for i, sub_exc in enumerate(getattr(exception, "exceptions", None) or []):
            logger.log(
                level,
                f"{prefix} Sub-exception {i + 1}: {type(sub_exc).__name__}: {_safe_str(sub_exc)}",
                exc_info=sub_exc,
            )
    except Exception:
        try:
            logger.log(logging.ERROR, f"{prefix} Exception (logging failed)")
        except Exception:
            # Logging is best effort here
            pass
