"""Request/response envelope shared by every remote operation."""

from __future__ import annotations

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict

from .errors import ApiError

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """``success`` with ``data``, or failure with ``error``."""

    data: Optional[T] = None
    error: Optional[ApiError] = None
    success: bool = False

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @classmethod
    def ok(cls, data: T) -> "ApiResponse[T]":
        return cls(data=data, error=None, success=True)

    @classmethod
    def fail(cls, error: ApiError) -> "ApiResponse[T]":
        return cls(data=None, error=error, success=False)
