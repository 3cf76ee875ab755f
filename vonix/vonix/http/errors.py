from __future__ import annotations

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

USER_NOT_FOUND = "USER_NOT_FOUND"


class ApiError(HTTPException):
    """HTTP error rendered as ``{"error": ..., "code": ...}``.

    ``code`` is a machine readable marker for failures the client must not
    treat as transient, such as :data:`USER_NOT_FOUND`.
    """

    def __init__(self, status_code: int, error: str, code: str | None = None) -> None:
        super().__init__(status_code=status_code, detail=error)
        self.code = code


async def http_error_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    body: dict[str, object] = {"error": exc.detail}
    code = getattr(exc, "code", None)
    if code:
        body["code"] = code
    return JSONResponse(
        body, status_code=exc.status_code, headers=getattr(exc, "headers", None)
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request validation failures in the ``{"error": ...}`` shape."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        error = f"{field}: {first.get('msg', 'invalid value')}" if field else first.get("msg")
    else:
        error = "Invalid request"
    return JSONResponse({"error": error or "Invalid request"}, status_code=422)
