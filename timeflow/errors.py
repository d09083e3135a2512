from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str | None = None,
        *,
        reason: str | None = None,
    ):
        super().__init__(message or code)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.reason = reason

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "error": self.code}
        if self.reason:
            payload["reason"] = self.reason
        if self.message:
            payload["message"] = self.message
        return payload


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str | None = None,
    reason: str | None = None,
) -> JSONResponse:
    payload = ApiError(status_code, code, message, reason=reason).to_payload()
    payload["request_id"] = get_request_id(request)
    return JSONResponse(status_code=status_code, content=payload)
