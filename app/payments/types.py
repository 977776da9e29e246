"""
Typed requests and responses for the settlement entry points.

REST serializers validate raw payloads into these dataclasses; services
only ever receive them, never loosely-typed dicts.

Types:
    RequestContext: Who accepted the processor's terms, and from where
    ProvisionRequest: Provision a merchant's settlement account
    CheckoutRequest: Start a checkout for a booking
    PaymentSessionHandle: What checkout returns to the booking flow
    RefundRequest: Refund a prior payment
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from payments.exceptions import PaymentValidationError
from payments.services.fee_calculator import PaymentBreakdown, PlatformFeePolicy, TaxPolicy


@dataclass(frozen=True)
class RequestContext:
    """
    Caller context recorded as the processor's terms-of-service acceptance.

    Attributes:
        client_ip: Accepting user's IP address
        user_agent: Accepting user's browser user agent
    """

    client_ip: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class ProvisionRequest:
    merchant_id: uuid.UUID
    country: str
    business_type: str
    context: RequestContext = field(default_factory=RequestContext)


@dataclass(frozen=True)
class CheckoutRequest:
    """
    Checkout start for one booking.

    Attributes:
        merchant_id: Merchant receiving the net amount
        booking_id: Booking being paid
        base_amount_cents: Booking base price in minor units
        currency: ISO 4217 code
        payer_email / payer_name: Payer contact
        platform_fee: Platform fee policy (default: commission from settings only)
        tax: Tax policy (default: no tax)
    """

    merchant_id: uuid.UUID
    booking_id: str
    base_amount_cents: int
    currency: str = "usd"
    payer_email: str | None = None
    payer_name: str | None = None
    platform_fee: PlatformFeePolicy | None = None
    tax: TaxPolicy | None = None

    def __post_init__(self) -> None:
        if not self.booking_id:
            raise PaymentValidationError("booking_id is required")
        if isinstance(self.base_amount_cents, bool) or not isinstance(self.base_amount_cents, int):
            raise PaymentValidationError(
                "base_amount_cents must be an integer",
                details={"base_amount_cents": repr(self.base_amount_cents)},
            )
        if self.base_amount_cents <= 0:
            raise PaymentValidationError(
                "base_amount_cents must be positive",
                details={"base_amount_cents": self.base_amount_cents},
            )
        if len(self.currency or "") != 3:
            raise PaymentValidationError(
                "currency must be a three-letter ISO code",
                details={"currency": self.currency},
            )
        object.__setattr__(self, "currency", self.currency.lower())


@dataclass(frozen=True)
class PaymentSessionHandle:
    """
    Returned to the booking flow after checkout starts.

    Attributes:
        session_id: Processor checkout session id (cs_xxx)
        client_handle: Opaque handle for the payer-facing step
            (client secret for embedded checkout, else the hosted URL)
        payment_record_id: Local PaymentRecord id
        breakdown: Frozen fee breakdown of the charge
    """

    session_id: str
    client_handle: str
    payment_record_id: uuid.UUID
    breakdown: PaymentBreakdown


@dataclass(frozen=True)
class RefundRequest:
    """
    Refund against a PaymentIntent.

    Attributes:
        payment_intent_id: PaymentIntent being refunded (pi_xxx)
        amount_cents: Amount to refund, None for the full refundable amount
        refund_application_fee: Also refund the platform's application fee
        reverse_transfer: Claw the amount back from the merchant when possible
        reason: Processor refund reason
    """

    payment_intent_id: str
    amount_cents: int | None = None
    refund_application_fee: bool = False
    reverse_transfer: bool = True
    reason: str | None = None

    def __post_init__(self) -> None:
        if not self.payment_intent_id:
            raise PaymentValidationError("payment_intent_id is required")
        if self.amount_cents is not None and self.amount_cents <= 0:
            raise PaymentValidationError(
                "amount_cents must be positive",
                details={"amount_cents": self.amount_cents},
            )
