from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class ApiResponse(BaseModel):
    success: bool = True
    message: str = "Success"
    data: Any = None


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    errors: list[str] | None = None


def ok(data: Any = None, message: str = "Success") -> ApiResponse:
    return ApiResponse(success=True, message=message, data=data)
