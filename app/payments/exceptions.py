"""
Settlement exceptions.

Every exception carries a ``kind`` drawn from the closed ErrorKind set.
Callers branch on the kind, never on message text:

    VALIDATION      Bad input or failed precondition. Fatal, never retried.
    TRANSIENT       Network or processor outage. Retried with bounded backoff,
                    then surfaced with enough context to replay manually.
    BUSINESS_STATE  The world is not in a state that allows the operation
                    (merchant not chargeable, balance too low). Routed to an
                    explicit policy or surfaced as its own error type.
    INTEGRITY       Signature mismatch, stale webhook, idempotency conflict,
                    broken credentials, failed fallback refund. Rejected and
                    logged, never processed.

Exception Hierarchy:
    PaymentError (base for settlement domain)
    ├── PaymentNotFoundError - Local record lookup failures
    ├── PaymentValidationError - Amount / breakdown validation failures
    │   └── RefundAmountExceededError - Refund above remaining refundable
    ├── MerchantNotPayableError - No active, chargeable account
    ├── InvalidWebhookSignatureError - Signature mismatch or stale timestamp
    ├── RefundFallbackFailedError - Non-reversing refund also failed
    └── PaymentProcessingError - Processor call failures
        ├── ProvisioningError - Account provisioning failure with replay context
        │   ├── ProvisioningValidationError - Profile lacks a required legal field
        │   └── ProvisioningInProgressError - Concurrent provisioning, retry shortly
        └── StripeError - Base for all Stripe errors
            ├── StripeCardDeclinedError - Card declined (permanent)
            ├── StripeInsufficientFundsError - Balance too low (business state)
            ├── StripeInvalidAccountError - Invalid connected account (permanent)
            ├── StripeInvalidRequestError - Invalid request params (permanent)
            ├── StripeIdempotencyConflictError - Key reused with other params
            ├── StripeAuthenticationError - Bad API key (fatal)
            ├── StripeRateLimitError - Rate limited (transient, retry)
            ├── StripeAPIUnavailableError - API unavailable (transient, retry)
            └── StripeTimeoutError - Request timeout (transient, retry)

    InvalidStateTransitionError - Status transition not allowed (ConflictError)

Usage:
    from payments.exceptions import ErrorKind, StripeError

    try:
        adapter.create_refund(...)
    except StripeError as e:
        if e.kind is ErrorKind.BUSINESS_STATE:
            ...  # fall back
        raise
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError

if TYPE_CHECKING:
    from typing import Any


class ErrorKind(str, enum.Enum):
    """Closed set of failure categories used across the settlement subsystem."""

    VALIDATION = "validation"
    TRANSIENT = "transient"
    BUSINESS_STATE = "business_state"
    INTEGRITY = "integrity"


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for all settlement operations.

    Example:
        try:
            orchestrator.refund(request)
        except PaymentError as e:
            logger.error("Refund failed", extra={"error_kind": e.kind.value})
            return Response(e.to_dict(), status=e.http_status)
    """

    default_error_code: str = "PAYMENT_ERROR"
    kind: ErrorKind = ErrorKind.BUSINESS_STATE
    http_status: int = 400

    @property
    def is_retryable(self) -> bool:
        """Only transient failures may be retried."""
        return self.kind is ErrorKind.TRANSIENT

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["kind"] = self.kind.value
        return result


class PaymentNotFoundError(PaymentError):
    """
    Raised when a local settlement record cannot be found.

    Example:
        record = PaymentRecord.objects.filter(payment_intent_id=ref).first()
        if not record:
            raise PaymentNotFoundError(
                f"No payment record for {ref}",
                details={"payment_intent_id": ref},
            )
    """

    default_error_code: str = "PAYMENT_NOT_FOUND"
    kind: ErrorKind = ErrorKind.VALIDATION
    http_status: int = 404


class PaymentValidationError(PaymentError):
    """
    Raised when amounts or fee policies fail validation.

    Use for:
    - Non-positive base amounts
    - Negative fee or tax policies
    - An application fee that would exceed the gross charge
    """

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"
    kind: ErrorKind = ErrorKind.VALIDATION


class RefundAmountExceededError(PaymentValidationError):
    """
    Raised when a refund asks for more than the charge has left to refund.

    The processor's own ledger is the source of truth for the remaining
    refundable amount; ``details`` carries both numbers.
    """

    default_error_code: str = "REFUND_AMOUNT_EXCEEDED"


class MerchantNotPayableError(PaymentError):
    """
    Merchant has no active, chargeable settlement account.

    Checkout must not be offered. This is actionable by the agency (finish
    onboarding, resolve restrictions) and is deliberately distinct from
    transient failures, which the payer can simply retry.
    """

    default_error_code: str = "MERCHANT_NOT_PAYABLE"
    kind: ErrorKind = ErrorKind.BUSINESS_STATE
    http_status: int = 401


class InvalidWebhookSignatureError(PaymentError):
    """
    Webhook signature did not verify, or its timestamp is outside tolerance.

    The event is rejected outright: no retry, no processing.
    """

    default_error_code: str = "INVALID_SIGNATURE"
    kind: ErrorKind = ErrorKind.INTEGRITY
    http_status: int = 400


class RefundFallbackFailedError(PaymentError):
    """
    The non-reversing fallback refund failed after the reversing path was ruled out.

    This is a financial exception: the customer has not been refunded and
    nothing will retry automatically. It is logged at CRITICAL and escalated
    to the finance team for manual intervention.
    """

    default_error_code: str = "REFUND_FALLBACK_FAILED"
    kind: ErrorKind = ErrorKind.INTEGRITY
    http_status: int = 500


class PaymentProcessingError(PaymentError):
    """
    Raised when a call to the payment processor fails.
    """

    default_error_code: str = "PAYMENT_PROCESSING_ERROR"
    kind: ErrorKind = ErrorKind.TRANSIENT
    http_status: int = 500


# =============================================================================
# Provisioning Exceptions
# =============================================================================


class ProvisioningError(PaymentProcessingError):
    """
    Account provisioning failed at the processor.

    Wraps the underlying processor error with the context needed to replay
    the call by hand: merchant id, country and the shape (keys only, never
    values) of the payload that was submitted. Kind and HTTP status follow
    the wrapped error.

    Example:
        raise ProvisioningError.wrap(
            e,
            merchant_id=merchant_id,
            country="US",
            payload_shape={"individual": ["first_name", "dob"]},
        )
    """

    default_error_code: str = "PROVISIONING_FAILED"

    @classmethod
    def wrap(
        cls,
        cause: PaymentError,
        merchant_id: Any,
        country: str,
        payload_shape: dict[str, Any] | None = None,
    ) -> ProvisioningError:
        error = cls(
            f"Could not provision settlement account for merchant {merchant_id}: "
            f"{cause.message}",
            details={
                "merchant_id": str(merchant_id),
                "country": country,
                "payload_shape": payload_shape or {},
                "cause_error_code": cause.error_code,
                **cause.details,
            },
        )
        error.kind = cause.kind
        error.http_status = cause.http_status
        return error


class ProvisioningValidationError(ProvisioningError):
    """
    The merchant profile lacks a field the processor legally requires.

    Guessed defaults are never substituted for legal fields; the agency
    must complete its profile first.
    """

    default_error_code: str = "PROVISIONING_PROFILE_INCOMPLETE"
    kind: ErrorKind = ErrorKind.VALIDATION
    http_status: int = 400


class ProvisioningInProgressError(ProvisioningError):
    """
    Another request is already provisioning this merchant's account.

    Callers should retry shortly; the in-flight request will have persisted
    the account by then.
    """

    default_error_code: str = "PROVISIONING_IN_PROGRESS"
    kind: ErrorKind = ErrorKind.TRANSIENT
    http_status: int = 503


# =============================================================================
# Stripe-Specific Exceptions
# =============================================================================


class StripeError(PaymentProcessingError):
    """
    Base exception for all Stripe-related errors.

    Provides common attributes for Stripe error handling:
    - stripe_code: Stripe's internal error code
    - decline_code: Card decline code (if applicable)
    - is_retryable: True only for TRANSIENT kinds

    Example:
        try:
            adapter.retrieve_balance("acct_123")
        except StripeError as e:
            if e.is_retryable:
                schedule_retry(e)
            else:
                raise
    """

    default_error_code: str = "STRIPE_ERROR"
    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class StripeCardDeclinedError(StripeError):
    """
    Card was declined by the issuing bank.

    The decline_code attribute contains the specific reason.
    """

    default_error_code: str = "CARD_DECLINED"
    kind: ErrorKind = ErrorKind.VALIDATION
    http_status: int = 402


class StripeInsufficientFundsError(StripeError):
    """
    Insufficient funds to complete the operation.

    For refunds this means the connected account's balance cannot cover a
    reversing refund. RefundOrchestrator treats it as the authoritative
    fallback trigger, not as a failure.
    """

    default_error_code: str = "INSUFFICIENT_FUNDS"
    kind: ErrorKind = ErrorKind.BUSINESS_STATE
    http_status: int = 402


class StripeInvalidAccountError(StripeError):
    """
    Invalid Stripe Connect account.

    Raised when the account is not found, disabled or restricted. Requires
    manual intervention to resolve the account status.
    """

    default_error_code: str = "INVALID_STRIPE_ACCOUNT"
    kind: ErrorKind = ErrorKind.VALIDATION


class StripeInvalidRequestError(StripeError):
    """
    Invalid request parameters sent to Stripe.

    The request is malformed and will never succeed with the same
    parameters. This usually indicates a bug in our code, not a user error.
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"
    kind: ErrorKind = ErrorKind.VALIDATION


class StripeIdempotencyConflictError(StripeError):
    """
    An idempotency key was reused with different parameters.

    Account provisioning recovers from this once by searching the processor
    for an account already tagged with the merchant id.
    """

    default_error_code: str = "IDEMPOTENCY_CONFLICT"
    kind: ErrorKind = ErrorKind.INTEGRITY
    http_status: int = 409


class StripeAuthenticationError(StripeError):
    """
    Stripe rejected our API key.

    Operational problem, fatal everywhere: nothing succeeds until the key
    is fixed.
    """

    default_error_code: str = "STRIPE_AUTHENTICATION_FAILED"
    kind: ErrorKind = ErrorKind.INTEGRITY


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with backoff)
# -----------------------------------------------------------------------------


class StripeRateLimitError(StripeError):
    """
    Rate limited by Stripe API.

    The adapter retries these itself with exponential backoff, bounded by
    STRIPE_MAX_RETRIES.
    """

    default_error_code: str = "STRIPE_RATE_LIMITED"
    kind: ErrorKind = ErrorKind.TRANSIENT
    http_status: int = 503


class StripeAPIUnavailableError(StripeError):
    """
    Stripe API is temporarily unavailable.

    This covers network connectivity issues, Stripe server errors (5xx)
    and TLS failures.
    """

    default_error_code: str = "STRIPE_UNAVAILABLE"
    kind: ErrorKind = ErrorKind.TRANSIENT
    http_status: int = 503


class StripeTimeoutError(StripeError):
    """
    Stripe API call timed out.

    IMPORTANT: The operation may have succeeded on Stripe's side. Retries
    reuse the same idempotency key so Stripe returns the original response.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    kind: ErrorKind = ErrorKind.TRANSIENT
    http_status: int = 503


# =============================================================================
# State Machine Exceptions
# =============================================================================


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a status transition is not allowed.

    Attributes:
        details: Contains current_state and target_state

    Example:
        if not record.can_transition_to(PaymentRecordStatus.COMPLETED):
            raise InvalidStateTransitionError(
                f"Cannot complete payment from '{record.status}'",
                details={"current_state": record.status, "target_state": "completed"},
            )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"
    kind: ErrorKind = ErrorKind.BUSINESS_STATE


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    "ErrorKind",
    # Payment domain
    "PaymentError",
    "PaymentNotFoundError",
    "PaymentValidationError",
    "RefundAmountExceededError",
    "MerchantNotPayableError",
    "InvalidWebhookSignatureError",
    "RefundFallbackFailedError",
    "PaymentProcessingError",
    # Provisioning
    "ProvisioningError",
    "ProvisioningValidationError",
    "ProvisioningInProgressError",
    # Stripe-specific
    "StripeError",
    "StripeCardDeclinedError",
    "StripeInsufficientFundsError",
    "StripeInvalidAccountError",
    "StripeInvalidRequestError",
    "StripeIdempotencyConflictError",
    "StripeAuthenticationError",
    "StripeRateLimitError",
    "StripeAPIUnavailableError",
    "StripeTimeoutError",
    # State machine
    "InvalidStateTransitionError",
]
