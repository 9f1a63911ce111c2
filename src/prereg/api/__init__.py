"""API envelope, errors, models and form validation."""

from .errors import (
    ApiError,
    ErrorCode,
    create_api_error,
    handle_backend_error,
    handle_network_error,
    to_api_error,
    with_retry,
)
from .response import ApiResponse

__all__ = [
    "ApiError",
    "ApiResponse",
    "ErrorCode",
    "create_api_error",
    "handle_backend_error",
    "handle_network_error",
    "to_api_error",
    "with_retry",
]
