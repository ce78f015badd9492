"""Shared / generic schemas."""

from typing import Any

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Error envelope for domain errors that escape the routers."""

    success: bool = False
    error_code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessResponse(BaseModel):
    """Generic success wrapper."""

    success: bool = True
    message: str = "ok"
    data: dict[str, Any] | None = None
