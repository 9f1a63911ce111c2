"""Error formatting and reporting helpers."""

import json
import traceback
from typing import Any, Dict, Optional

from .log import Log

log = Log.create({"service": "error"})


def format_error(error: Any) -> str | None:
    """Format known application errors into user-friendly messages.

    Returns None if the error type is not recognized, allowing
    fallback to format_unknown_error.
    """
    code = getattr(error, "code", None)
    message = getattr(error, "message", None)
    if isinstance(code, str) and isinstance(message, str):
        field = getattr(error, "field", None)
        if field:
            return f"[{code}] {message} ({field})"
        return f"[{code}] {message}"

    status = getattr(error, "status_code", None)
    if isinstance(status, int) and isinstance(error, Exception):
        return f"HTTP {status}: {error}"

    return None


def format_unknown_error(error: Any) -> str:
    """Format any error into a string representation."""
    if isinstance(error, BaseException):
        if error.__traceback__:
            return ''.join(traceback.format_exception(type(error), error, error.__traceback__))
        return f"{error.__class__.__name__}: {error}"

    if isinstance(error, (dict, list)):
        try:
            return json.dumps(error, indent=2)
        except (TypeError, ValueError):
            return "Unexpected error (unserializable)"

    return str(error)


def log_error(
    error: Any,
    context: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """Report a failure with its call-site context.

    Used wherever an error is deliberately caught and not propagated, so
    the failure stays visible in the log.
    """
    extra: Dict[str, Any] = {"context": context, "error": format_error(error) or error}
    if isinstance(error, BaseException):
        extra["type"] = type(error).__name__
    if metadata:
        extra["metadata"] = metadata
    log.error("error", extra)
