from .exception_logging import (
    error_kind,
    format_exception_message,
    log_exception_with_details,
)

__all__ = ["error_kind", "format_exception_message", "log_exception_with_details"]
