"""
Helpers for logging request-scoped failures without letting the logging
itself fail the request.
"""

import logging

import httpx


def _safe_str(obj) -> str:
    """
    Convert an object to string, falling back when ``__str__`` or ``__repr__``
    raise.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _safe_get_exceptions(exception_group) -> list:
    try:
        return list(exception_group.exceptions)
    except Exception:
        return []


def error_kind(exception: BaseException) -> str:
    """
    Short label for an upstream failure, used in span attributes and logs.

    Walks the ``__cause__`` chain so wrapped httpx errors keep their label.
    """
    seen = set()
    current = exception
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, httpx.TimeoutException):
            return "timeout"
        if isinstance(current, httpx.ConnectError):
            return "connection_failed"
        if isinstance(current, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
            return "invalid_url"
        if isinstance(current, httpx.RemoteProtocolError):
            return "protocol_error"
        if isinstance(current, httpx.ReadError):
            return "read_failed"
        current = current.__cause__
    return type(exception).__name__


def format_exception_message(exception: BaseException) -> str:
    """
    Format an exception message, including sub-exceptions of exception groups.
    Never raises.
    """
    if exception is None:
        return "None"
    sub_exceptions = _safe_get_exceptions(exception) if hasattr(exception, "exceptions") else []
    main_str = _safe_str(exception)
    if not sub_exceptions:
        return main_str
    parts = [f"{type(sub).__name__}: {_safe_str(sub)}" for sub in sub_exceptions]
    return f"{main_str} (Sub-exceptions: {'; '.join(parts)})"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
    with_traceback: bool = False,
) -> None:
    """
    Log an exception as ``<prefix> <kind>: <message>``.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Upstream]", "[Staging]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
        with_traceback: Attach the traceback to the record
    """
    try:
        message = (
            f"{prefix} {error_kind(exception)}: {format_exception_message(exception)}"
        )
        logger.log(level, message, exc_info=exception if with_traceback else False)
    except Exception:
        try:
            logger.log(level, f"{prefix} Exception (logging failed)")
        except Exception:
            pass
