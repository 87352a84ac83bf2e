"""
API response envelopes.

Every endpoint answers with ``{success, statusCode, data, message}`` and
every error with ``{success, statusCode, error: {code, message, details}, message}``.
"""

from typing import Any

from fastapi.responses import JSONResponse
from pydantic_core import to_jsonable_python


def success_envelope(data: Any = None, message: str = "OK", status_code: int = 200) -> dict[str, Any]:
    return {
        "success": True,
        "statusCode": status_code,
        "data": to_jsonable_python(data),
        "message": message,
    }


def error_envelope(
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "success": False,
        "statusCode": status_code,
        "error": {"code": code, "message": message, "details": to_jsonable_python(details or {})},
        "message": message,
    }


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content=error_envelope(status_code, code, message, details)
    )


__all__ = ["success_envelope", "error_envelope", "error_response"]
