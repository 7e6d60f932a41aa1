"""
Error Types

Typed failures raised by the service layer, plus their mapping onto HTTP
errors for whatever request handler sits in front of the services.
"""

from typing import Dict, List, Optional

from fastapi import HTTPException, status


GENERIC_FAILURE_MESSAGE = "Operation failed"


class BankingError(ValueError):
    """Base class for all service-layer failures"""
    status_code = status.HTTP_400_BAD_REQUEST


class ValidationError(BankingError):
    """One or more input fields failed validation"""
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, errors: Dict[str, List[str]]):
        self.errors = errors
        summary = "; ".join(
            f"{field}: {', '.join(messages)}" for field, messages in errors.items()
        )
        super().__init__(f"Validation failed - {summary}")

    @classmethod
    def for_field(cls, field: str, message: str) -> 'ValidationError':
        return cls({field: [message]})


class ConflictError(BankingError):
    """Resource already exists, e.g. a second checking account"""
    status_code = status.HTTP_409_CONFLICT


class AuthenticationError(BankingError):
    """Credentials or session token were not accepted"""
    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(BankingError):
    """Resource is missing or is not owned by the caller"""
    status_code = status.HTTP_404_NOT_FOUND


class BadRequestError(BankingError):
    """Request is well-formed but not allowed in the current state"""
    status_code = status.HTTP_400_BAD_REQUEST


class InternalError(BankingError):
    """Persistence did not do what it reported"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http_exception(error: BankingError) -> HTTPException:
    """
    Convert a service error into an HTTPException.

    Validation errors keep their per-field messages. Internal errors are
    reduced to a generic message so nothing about storage leaks out.
    """
    if isinstance(error, ValidationError):
        detail: Optional[object] = {"message": "Validation failed", "errors": error.errors}
    elif isinstance(error, InternalError):
        detail = GENERIC_FAILURE_MESSAGE
    else:
        detail = str(error)
    return HTTPException(status_code=error.status_code, detail=detail)
