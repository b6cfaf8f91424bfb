# backend/tutorlink/core/exceptions.py
"""
Domain-specific exceptions for the TutorLink platform.

These exceptions provide clear, business-focused error messages that can be
caught and handled at the service boundary (session operations convert them
into structured results) or at the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class UnauthorizedException(DomainException):
    """Raised when user is not authenticated."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Session lifecycle taxonomy. Codes are stable and surface in API results.


class SessionNotFoundException(NotFoundException):
    def __init__(self, message: str = "Session not found") -> None:
        super().__init__(message=message, code="SESSION_NOT_FOUND")


class SessionUnauthorizedException(ForbiddenException):
    """Raised when the caller is not a party allowed to act on the session."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message=message, code="UNAUTHORIZED")


class InvalidStateTransitionException(BusinessRuleException):
    def __init__(self, message: str, *, current_status: Optional[str] = None) -> None:
        super().__init__(
            message=message,
            code="INVALID_STATE_TRANSITION",
            details={"current_status": current_status} if current_status else {},
        )


class SessionAlreadyFinishedException(BusinessRuleException):
    def __init__(self, message: str = "Session is already finished") -> None:
        super().__init__(message=message, code="ALREADY_FINISHED")


class TimeConflictException(ConflictException):
    """Raised when the tutor already has an active session at the requested time."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message or "Tutor is already booked at this time",
            code="TIME_CONFLICT",
            details=details or {},
        )


class InsufficientPointsException(BusinessRuleException):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            message=f"Insufficient points. Required: {required}, Available: {available}",
            code="INSUFFICIENT_POINTS",
            details={"required": required, "available": available},
        )


class InvalidScheduleException(ValidationException):
    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_SCHEDULE")


class InvalidTutorException(ValidationException):
    def __init__(self, message: str = "Invalid tutor") -> None:
        super().__init__(message=message, code="INVALID_TUTOR")


class InvalidTuteeException(ValidationException):
    def __init__(self, message: str = "Invalid tutee") -> None:
        super().__init__(message=message, code="INVALID_TUTEE")


class SessionValidationException(ValidationException):
    """Raised for missing or malformed session fields."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")


class TransferFailedException(BusinessRuleException):
    def __init__(self, message: str = "Failed to transfer points") -> None:
        super().__init__(message=message, code="TRANSFER_FAILED")


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """


def is_db_pool_exhaustion(exc: Exception) -> bool:
    """
    Check if an exception indicates DB connection pool exhaustion.

    This is a common failure mode under high load when all database
    connections are in use and new requests time out waiting.
    """
    error_str = str(exc).lower()
    return "queuepool" in error_str or (
        "timeout" in error_str and ("connection" in error_str or "pool" in error_str)
    )


def raise_503_if_pool_exhaustion(exc: Exception) -> None:
    """
    Convert DB pool exhaustion errors to HTTP 503 (Service Unavailable).

    Raises:
        HTTPException: 503 if pool exhaustion detected
        Does not raise if not pool exhaustion (caller should re-raise original)
    """
    if is_db_pool_exhaustion(exc):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service temporarily overloaded. Please retry.",
            headers={"Retry-After": "2"},
        )
