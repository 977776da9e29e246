"""
PaymentSessionService: destination-charge checkout for a booking.

Flow:
    1. Resolve the merchant's settlement account; refuse checkout with
       MerchantNotPayableError unless it is active and chargeable.
    2. Compute the PaymentBreakdown.
    3. Create a hosted Checkout Session charging the total, keeping the
       application fee and routing the rest to the merchant's account.
    4. Persist an open PaymentRecord with the full breakdown, then return
       the handle.

The stored breakdown is what the merchant is owed. Nothing downstream
recomputes it from Stripe's records.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings

from core.services import BaseService

from payments.adapters.stripe_adapter import (
    CheckoutLineItem,
    CreateCheckoutSessionParams,
    IdempotencyKeyGenerator,
)
from payments.exceptions import MerchantNotPayableError
from payments.models import PaymentRecord
from payments.services.fee_calculator import (
    PaymentBreakdown,
    PlatformFeePolicy,
    ProcessorPricing,
    TaxPolicy,
    compute_breakdown,
)
from payments.stores import MerchantAccountStore
from payments.types import CheckoutRequest, PaymentSessionHandle

if TYPE_CHECKING:
    from payments.adapters.stripe_adapter import StripeAdapter
    from payments.models import MerchantAccount


class PaymentSessionService(BaseService):
    """Starts checkout sessions for bookings."""

    def __init__(
        self,
        adapter: StripeAdapter,
        store: type[MerchantAccountStore] = MerchantAccountStore,
        pricing: ProcessorPricing | None = None,
    ):
        self.adapter = adapter
        self.store = store
        self.pricing = pricing

    def create_session(self, request: CheckoutRequest) -> PaymentSessionHandle:
        """
        Create a checkout session for a booking.

        Raises:
            MerchantNotPayableError: Merchant has no active, chargeable account
            PaymentValidationError: Breakdown is invalid
            StripeError: Session creation failed
        """
        logger = self.get_logger()
        account = self._payable_account(request.merchant_id)

        breakdown = compute_breakdown(
            request.base_amount_cents,
            request.platform_fee or self.default_fee_policy(),
            request.tax or TaxPolicy(),
            self.pricing or ProcessorPricing.from_settings(),
        )

        record_id = uuid.uuid4()
        session = self.adapter.create_checkout_session(
            CreateCheckoutSessionParams(
                amount_cents=breakdown.total_amount_cents,
                currency=request.currency,
                line_items=self._line_items(request, breakdown),
                application_fee_cents=breakdown.application_fee_cents,
                destination_account=account.processor_account_id,
                success_url=settings.CHECKOUT_SUCCESS_URL,
                cancel_url=settings.CHECKOUT_CANCEL_URL,
                idempotency_key=IdempotencyKeyGenerator.generate("checkout", record_id),
                customer_email=request.payer_email,
                metadata={
                    "booking_id": request.booking_id,
                    "merchant_id": str(request.merchant_id),
                    "processor_account_id": account.processor_account_id,
                    "payment_record_id": str(record_id),
                    **breakdown.to_metadata(),
                },
            )
        )
        client_handle = session.client_secret or session.url or ""

        record = PaymentRecord.objects.create(
            id=record_id,
            booking_id=request.booking_id,
            merchant_id=request.merchant_id,
            merchant_account=account,
            session_id=session.id,
            payment_intent_id=session.payment_intent_id or "",
            base_amount_cents=breakdown.base_amount_cents,
            platform_fee_cents=breakdown.platform_fee_cents,
            commission_cents=breakdown.commission_cents,
            tax_cents=breakdown.tax_cents,
            total_amount_cents=breakdown.total_amount_cents,
            processor_fee_estimate_cents=breakdown.processor_fee_estimate_cents,
            application_fee_cents=breakdown.application_fee_cents,
            currency=request.currency,
            client_secret=client_handle,
            payer_email=request.payer_email or "",
            payer_name=request.payer_name or "",
        )

        logger.info(
            "Checkout session created",
            extra={
                "payment_record_id": str(record.id),
                "session_id": session.id,
                "booking_id": request.booking_id,
                "merchant_id": str(request.merchant_id),
                "total_amount_cents": breakdown.total_amount_cents,
                "application_fee_cents": breakdown.application_fee_cents,
            },
        )
        return PaymentSessionHandle(
            session_id=session.id,
            client_handle=client_handle,
            payment_record_id=record.id,
            breakdown=breakdown,
        )

    @staticmethod
    def default_fee_policy() -> PlatformFeePolicy:
        return PlatformFeePolicy.none(
            commission_percent=Decimal(str(settings.PLATFORM_COMMISSION_PERCENT))
        )

    def _payable_account(self, merchant_id: uuid.UUID) -> MerchantAccount:
        account = self.store.get_for_merchant(merchant_id)
        if account is None or not account.is_payable:
            status = account.status if account is not None else None
            self.get_logger().warning(
                "Checkout refused, merchant not payable",
                extra={"merchant_id": str(merchant_id), "account_status": status},
            )
            raise MerchantNotPayableError(
                "Merchant cannot currently accept payment",
                details={"merchant_id": str(merchant_id), "account_status": status},
            )
        return account

    @staticmethod
    def _line_items(request: CheckoutRequest, breakdown: PaymentBreakdown) -> list[CheckoutLineItem]:
        items = [
            CheckoutLineItem(
                name=f"Booking {request.booking_id}",
                amount_cents=breakdown.base_amount_cents,
            )
        ]
        if breakdown.fees_and_taxes_cents:
            items.append(
                CheckoutLineItem(name="Fees and taxes", amount_cents=breakdown.fees_and_taxes_cents)
            )
        return items
