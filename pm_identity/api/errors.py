"""Translation of workflow results into HTTP responses."""

from __future__ import annotations

from fastapi import status
from fastapi.responses import JSONResponse

from ..domain.results import AuthFailure, ConflictFailure, Failure, NotFoundFailure, ValidationFailure


def failure_response(failure: Failure) -> JSONResponse:
    """Map a failure variant to its status code and a ``{"detail", "errors"}`` body."""
    if isinstance(failure, ValidationFailure):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "One or more validation errors occurred", "errors": failure.errors},
        )
    if isinstance(failure, AuthFailure):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": failure.reason},
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(failure, ConflictFailure):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": failure.message, "errors": {failure.field: [failure.message]}},
        )
    if isinstance(failure, NotFoundFailure):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": failure.message},
        )
    raise TypeError(f"unsupported result type {type(failure).__name__}")
