"""Shared mapping from service errors to HTTP responses."""

from fastapi import HTTPException
from fastapi.responses import JSONResponse

from services.errors import NotFoundError, PreconditionError, UpstreamError


def precondition_response(exc: PreconditionError) -> JSONResponse:
    if exc.reason == "cooldown":
        return JSONResponse(
            {"detail": str(exc), "reason": exc.reason, "retry_after_seconds": exc.retry_after_seconds},
            status_code=429,
            headers={"Retry-After": str(max(1, exc.retry_after_seconds))},
        )
    return JSONResponse({"detail": str(exc), "reason": exc.reason}, status_code=409)


def not_found(exc: NotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(exc))


def upstream_error(exc: UpstreamError) -> HTTPException:
    """Pass an upstream HTTP status through; network failures become 502."""
    status = exc.status_code if exc.status_code and 400 <= exc.status_code < 600 else 502
    return HTTPException(status_code=status, detail=str(exc))
