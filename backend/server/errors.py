"""Planner errors → HTTP responses."""

from fastapi import HTTPException

from brain.errors import (
    ConfigurationError,
    ConstraintViolation,
    GenerationError,
    NotFoundError,
    ParseError,
    PlannerError,
    QuotaExceededError,
    ValidationError,
)


def to_http_exception(exc: PlannerError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConfigurationError):
        detail = {"message": str(exc), "hint": exc.hint} if exc.hint else str(exc)
        return HTTPException(status_code=503, detail=detail)
    if isinstance(exc, QuotaExceededError):
        return HTTPException(status_code=402 if exc.payment_required else 429, detail=str(exc))
    if isinstance(exc, (ParseError, GenerationError)):
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, ConstraintViolation):
        return HTTPException(
            status_code=409, detail={"message": str(exc), "overflow_hours": exc.overflow_hours}
        )
    return HTTPException(status_code=500, detail=str(exc))
