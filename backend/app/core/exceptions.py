"""
Domain-specific exceptions for the update-delivery backend.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status


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


class UnauthorizedException(DomainException):
    """Raised when user is not authenticated."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Not authenticated", **kwargs: Any) -> None:
        kwargs.setdefault("code", "UNAUTHORIZED")
        super().__init__(message, **kwargs)


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Forbidden", **kwargs: Any) -> None:
        kwargs.setdefault("code", "FORBIDDEN")
        super().__init__(message, **kwargs)


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Update-delivery exceptions


class StoreUnavailable(ServiceException):
    """The update log rejected or could not process an append or read."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Update log unavailable", **kwargs: Any) -> None:
        kwargs.setdefault("code", "STORE_UNAVAILABLE")
        super().__init__(message, **kwargs)


class TransportUnavailable(ServiceException):
    """A pub/sub publish or subscribe failed."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Pub/sub transport unavailable", **kwargs: Any) -> None:
        kwargs.setdefault("code", "TRANSPORT_UNAVAILABLE")
        super().__init__(message, **kwargs)


class InvalidOffset(ValidationException):
    """Raised for a negative or non-integer offset, or an out-of-range limit."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "INVALID_OFFSET")
        super().__init__(message, **kwargs)


class ConnectionClosed(DomainException):
    """Operation attempted against a stream that already closed.

    Never surfaced to callers: closed connections treat writes as no-ops.
    """

    def __init__(self, connection_id: str) -> None:
        super().__init__(
            f"Connection {connection_id} is closed",
            code="CONNECTION_CLOSED",
            details={"connection_id": connection_id},
        )


class FanoutIncomplete(ServiceException):
    """Some recipients of a durable publish did not get an envelope."""

    def __init__(self, event_type: str, failed_user_ids: List[str]) -> None:
        super().__init__(
            f"Failed to append {event_type} for {len(failed_user_ids)} recipient(s)",
            code="FANOUT_INCOMPLETE",
            details={"event_type": event_type, "failed_user_ids": list(failed_user_ids)},
        )


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
