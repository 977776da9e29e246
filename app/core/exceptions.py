"""
Base exception classes for application-wide error handling.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── NotFoundError - Resource not found
    └── ConflictError - State conflicts (duplicates, illegal transitions)

Every error carries a machine-readable ``error_code``, a ``details`` dict and
the HTTP status a view should answer with. Views render errors with
``to_dict()``:

    try:
        handle = PaymentSessionService(adapter).create_session(request)
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=e.http_status)

Note:
    These exceptions are for domain/business logic errors.
    DRF handles API-layer exceptions (serialization, authentication, etc.).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (identifiers, processor codes)
        http_status: Status code used when the error reaches a view

    Example:
        try:
            profile = MerchantProfileService.get_profile(merchant_id)
        except NotFoundError as e:
            logger.warning("Merchant missing", extra={"error_code": e.error_code})
            return Response(e.to_dict(), status=e.http_status)
    """

    default_error_code: str = "APPLICATION_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        ``code`` mirrors the HTTP status so callers that only understand
        ``{code, message}`` payloads keep working.

        Example:
            {
                "code": 401,
                "message": "Merchant cannot accept payments",
                "error": "Merchant cannot accept payments",
                "error_code": "MERCHANT_NOT_PAYABLE",
                "details": {"merchant_id": "..."}
            }
        """
        result: dict[str, Any] = {
            "code": self.http_status,
            "message": self.message,
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Example:
        merchant = Merchant.objects.filter(id=merchant_id).first()
        if not merchant:
            raise NotFoundError(
                f"Merchant {merchant_id} not found",
                error_code="MERCHANT_NOT_FOUND",
                details={"merchant_id": str(merchant_id)},
            )
    """

    default_error_code: str = "NOT_FOUND"
    http_status: int = 404


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for duplicate entries, concurrent modification and invalid state
    transitions. HTTP 409 Conflict is the appropriate status.
    """

    default_error_code: str = "CONFLICT"
    http_status: int = 409
