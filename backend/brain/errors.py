"""Typed failures raised by the planning pipeline.

Every public operation either returns an invariant-satisfying result or
raises one of these. The HTTP layer maps them to status codes.
"""
from __future__ import annotations


class PlannerError(Exception):
    """Base class for all planning failures."""


class ConfigurationError(PlannerError):
    """Missing or rejected credentials for the oracle or calendar provider."""

    def __init__(self, message: str, hint: str = ""):
        super().__init__(message)
        self.hint = hint


class ParseError(PlannerError):
    """Oracle response could not be decoded into the expected shape."""

    def __init__(self, message: str, raw_response: str = ""):
        super().__init__(message)
        self.raw_response = raw_response


class QuotaExceededError(PlannerError):
    """Oracle or provider rate / billing limit."""

    def __init__(self, message: str, payment_required: bool = False):
        super().__init__(message)
        self.payment_required = payment_required


class GenerationError(PlannerError):
    """Oracle call failed (timeout, connection, server error)."""


class ValidationError(PlannerError):
    """Input rejected before any network call."""


class NotFoundError(PlannerError):
    """Requested record does not exist in the store."""


class ConstraintViolation(PlannerError):
    """Packing cannot satisfy the constraints within the maximum horizon."""

    def __init__(self, message: str, overflow_hours: float = 0.0):
        super().__init__(message)
        self.overflow_hours = overflow_hours


class ExportPartialFailure(PlannerError):
    """Some sessions were rejected by the calendar provider."""

    def __init__(self, message: str, failures: list):
        super().__init__(message)
        self.failures = failures
