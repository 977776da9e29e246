"""
RefundOrchestrator: refunds against destination charges.

Each refund attempt walks these steps in order:

    START           Load the PaymentIntent (Stripe's ledger is the truth for
                    what is still refundable) and the local PaymentRecord.
    BALANCE_CHECK   Read the merchant's balance (available + pending). If it
                    cannot cover the amount, skip straight to FALLBACK.
    REVERSE_ATTEMPT Refund with reverse_transfer, pulling the money back
                    from the merchant. Insufficient funds here means the
                    balance moved since the check; go to FALLBACK.
    FALLBACK        Refund without reverse_transfer; the platform absorbs it.
    DONE            RefundRecord completed.

The balance check is an optimization only. Stripe's insufficient-funds
rejection is what decides the fallback. Any other processor error during
REVERSE_ATTEMPT is fatal and never retried here, so refunds are not
silently duplicated. A failed FALLBACK is a financial exception: logged at
CRITICAL, escalated to the finance team, and raised.
"""

from __future__ import annotations

import enum
from decimal import Decimal
from typing import TYPE_CHECKING

from core.services import BaseService

from payments.adapters.stripe_adapter import IdempotencyKeyGenerator
from payments.exceptions import (
    RefundAmountExceededError,
    RefundFallbackFailedError,
    StripeAuthenticationError,
    StripeError,
    StripeInsufficientFundsError,
)
from payments.models import PaymentRecord, RefundRecord
from payments.services.fee_calculator import application_fee_portion, round_half_away_from_zero
from payments.services.notifications import EmailNotificationGateway
from payments.stores import MerchantAccountStore

if TYPE_CHECKING:
    from payments.adapters.stripe_adapter import PaymentIntentResult, RefundResult, StripeAdapter
    from payments.services.notifications import NotificationGateway
    from payments.types import RefundRequest

FALLBACK_REASON_LOW_BALANCE = "insufficient balance in connected account"
FALLBACK_REASON_REVERSAL_REJECTED = "reversal rejected by processor: insufficient funds"


class RefundStep(str, enum.Enum):
    START = "start"
    BALANCE_CHECK = "balance_check"
    REVERSE_ATTEMPT = "reverse_attempt"
    FALLBACK = "fallback"
    DONE = "done"


class RefundOrchestrator(BaseService):
    """Issues refunds, falling back to the platform balance when needed."""

    def __init__(self, adapter: StripeAdapter, notifier: NotificationGateway | None = None):
        self.adapter = adapter
        self.notifier = notifier or EmailNotificationGateway()

    def refund(self, request: RefundRequest) -> RefundRecord:
        """
        Refund a PaymentIntent, fully or partially.

        Returns:
            The completed RefundRecord (used_fallback tells which mode ran)

        Raises:
            RefundAmountExceededError: Amount above what Stripe still allows
            RefundFallbackFailedError: Both reversing and fallback refunds failed
            StripeError: Fatal processor error (record marked failed)
        """
        logger = self.get_logger()

        # START
        intent = self.adapter.retrieve_payment_intent(request.payment_intent_id)
        payment_record = (
            PaymentRecord.objects.select_related("merchant_account")
            .filter(payment_intent_id=request.payment_intent_id)
            .first()
        )
        refundable = intent.refundable_amount_cents
        amount = request.amount_cents if request.amount_cents is not None else refundable
        if amount <= 0 or amount > refundable:
            raise RefundAmountExceededError(
                "Refund amount exceeds the remaining refundable amount",
                details={
                    "payment_intent_id": intent.id,
                    "requested_amount_cents": amount,
                    "refundable_amount_cents": refundable,
                },
            )

        refund_application_fee = request.refund_application_fee and bool(intent.application_fee_amount)
        reverse_transfer = request.reverse_transfer and bool(intent.destination)
        merchant_account = (
            payment_record.merchant_account
            if payment_record is not None
            else (
                MerchantAccountStore.get_by_processor_account_id(intent.destination)
                if intent.destination
                else None
            )
        )

        record = RefundRecord.objects.create(
            payment_intent_id=intent.id,
            payment_record=payment_record,
            merchant_account=merchant_account,
            requested_amount_cents=amount,
            currency=intent.currency,
            refund_application_fee=refund_application_fee,
            application_fee_refund_cents=(
                self._fee_portion(intent, payment_record, amount) if refund_application_fee else 0
            ),
            reverse_transfer=reverse_transfer,
            reason=request.reason or "",
        )
        log_context = {
            "refund_record_id": str(record.id),
            "payment_intent_id": intent.id,
            "amount_cents": amount,
            "destination_account": intent.destination,
        }
        logger.info("Refund started", extra={**log_context, "step": RefundStep.START.value})

        if not reverse_transfer:
            result = self._attempt(record, intent, amount, reverse=False, attempt=1, request=request)
            return self._done(record, result, used_fallback=False, fallback_reason="")

        # BALANCE_CHECK
        fallback_reason = self._check_balance(record, intent, amount, log_context)

        # REVERSE_ATTEMPT
        if fallback_reason is None:
            try:
                result = self._attempt(record, intent, amount, reverse=True, attempt=1, request=request)
                return self._done(record, result, used_fallback=False, fallback_reason="")
            except StripeInsufficientFundsError:
                logger.warning(
                    "Reversing refund rejected for insufficient funds, falling back",
                    extra={**log_context, "step": RefundStep.REVERSE_ATTEMPT.value},
                )
                fallback_reason = FALLBACK_REASON_REVERSAL_REJECTED

        # FALLBACK
        try:
            result = self.adapter.create_refund(
                payment_intent_id=intent.id,
                idempotency_key=IdempotencyKeyGenerator.generate("refund", record.id, attempt=2),
                amount_cents=amount,
                reverse_transfer=False,
                refund_application_fee=refund_application_fee,
                reason=request.reason,
                metadata=self._metadata(record),
            )
        except StripeError as e:
            record.fail(f"Fallback refund failed: {e.message}")
            record.save()
            logger.critical(
                "Fallback refund failed, manual intervention required",
                extra={**log_context, "step": RefundStep.FALLBACK.value, "error_code": e.error_code},
            )
            self.notifier.escalate_to_team(
                "Fallback refund failed",
                "A refund could not be issued from the merchant or the platform balance.",
                {**log_context, "fallback_reason": fallback_reason, "error": e.message},
            )
            raise RefundFallbackFailedError(
                "Refund failed on both the reversing and the fallback path",
                details={**log_context, "cause_error_code": e.error_code},
            ) from e

        logger.warning(
            "Refund absorbed by platform balance",
            extra={**log_context, "step": RefundStep.FALLBACK.value, "fallback_reason": fallback_reason},
        )
        return self._done(record, result, used_fallback=True, fallback_reason=fallback_reason)

    # =========================================================================
    # Steps
    # =========================================================================

    def _check_balance(
        self,
        record: RefundRecord,
        intent: PaymentIntentResult,
        amount: int,
        log_context: dict,
    ) -> str | None:
        """Return a fallback reason when the merchant balance cannot cover the refund."""
        try:
            balance = self.adapter.retrieve_balance(intent.destination)
        except StripeAuthenticationError:
            raise
        except StripeError as e:
            # Stripe's own rejection still triggers the fallback
            self.get_logger().warning(
                "Balance check failed, attempting reversing refund",
                extra={**log_context, "step": RefundStep.BALANCE_CHECK.value, "error_code": e.error_code},
            )
            return None

        observed = balance.total_for(intent.currency)
        record.observed_balance_cents = observed
        record.save(update_fields=["observed_balance_cents", "updated_at"])
        if observed < amount:
            self.get_logger().warning(
                "Merchant balance below refund amount, skipping reversal",
                extra={
                    **log_context,
                    "step": RefundStep.BALANCE_CHECK.value,
                    "observed_balance_cents": observed,
                },
            )
            return FALLBACK_REASON_LOW_BALANCE
        return None

    def _attempt(
        self,
        record: RefundRecord,
        intent: PaymentIntentResult,
        amount: int,
        reverse: bool,
        attempt: int,
        request: RefundRequest,
    ) -> RefundResult:
        """Refund once; anything but insufficient funds fails the record."""
        try:
            return self.adapter.create_refund(
                payment_intent_id=intent.id,
                idempotency_key=IdempotencyKeyGenerator.generate("refund", record.id, attempt=attempt),
                amount_cents=amount,
                reverse_transfer=reverse,
                refund_application_fee=record.refund_application_fee,
                reason=request.reason,
                metadata=self._metadata(record),
            )
        except StripeInsufficientFundsError:
            if reverse:
                raise
            self._fail(record, "Refund rejected for insufficient funds")
            raise
        except StripeError as e:
            self._fail(record, e.message)
            self.get_logger().error(
                "Refund failed",
                extra={
                    "refund_record_id": str(record.id),
                    "payment_intent_id": intent.id,
                    "error_code": e.error_code,
                    "error_kind": e.kind.value,
                },
            )
            raise

    def _done(
        self,
        record: RefundRecord,
        result: RefundResult,
        used_fallback: bool,
        fallback_reason: str,
    ) -> RefundRecord:
        record.complete(result.id, used_fallback=used_fallback, fallback_reason=fallback_reason)
        record.save()
        self.get_logger().info(
            "Refund completed",
            extra={
                "refund_record_id": str(record.id),
                "processor_refund_id": result.id,
                "used_fallback": used_fallback,
                "step": RefundStep.DONE.value,
            },
        )
        return record

    @staticmethod
    def _fail(record: RefundRecord, message: str) -> None:
        record.fail(message)
        record.save()

    @staticmethod
    def _fee_portion(
        intent: PaymentIntentResult,
        payment_record: PaymentRecord | None,
        amount: int,
    ) -> int:
        if payment_record is not None:
            return application_fee_portion(payment_record.breakdown, amount)
        if not intent.amount_cents:
            return 0
        return round_half_away_from_zero(
            Decimal(intent.application_fee_amount or 0) * amount / intent.amount_cents
        )

    @staticmethod
    def _metadata(record: RefundRecord) -> dict[str, str]:
        metadata = {"refund_record_id": str(record.id)}
        if record.payment_record_id:
            metadata["payment_record_id"] = str(record.payment_record_id)
        return metadata
