"""
Error taxonomy shared by every operation of the ratings API.

Each error carries a stable ``kind`` string; the HTTP layer maps it to a
status code and renders :class:`ErrorResponse`.
"""

from typing import List, Optional

from pydantic import BaseModel


class Violation(BaseModel):
    """A single violated field rule."""

    field: str
    rule: str
    message: str


class ErrorResponse(BaseModel):
    error: str
    message: str
    violations: List[Violation] = []


class ServiceError(Exception):
    kind = "internal"
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: Optional[str] = None, violations: Optional[List[Violation]] = None):
        self.message = message or self.default_message
        self.violations = list(violations or [])
        super().__init__(self.message)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=self.kind, message=self.message, violations=self.violations)


class Unauthenticated(ServiceError):
    kind = "unauthenticated"
    status_code = 401
    default_message = "Could not validate credentials"


class Forbidden(ServiceError):
    kind = "forbidden"
    status_code = 403
    default_message = "Insufficient permissions"


class ValidationFailed(ServiceError):
    kind = "validation_failed"
    status_code = 422
    default_message = "Validation failed"


class Conflict(ServiceError):
    kind = "conflict"
    status_code = 409
    default_message = "Resource already exists"


class NotFound(ServiceError):
    kind = "not_found"
    status_code = 404
    default_message = "Not found"


class InvalidRating(ServiceError):
    kind = "invalid_rating"
    status_code = 400
    default_message = "Rating must be an integer between 1 and 5"


class Internal(ServiceError):
    pass
