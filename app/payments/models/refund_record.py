"""
RefundRecord model: one row per refund attempt made by RefundOrchestrator.

Records both the requested mode (reverse_transfer) and the mode actually
used (used_fallback), so finance can see which refunds were absorbed by
the platform instead of being clawed back from the merchant.

Usage:
    from payments.models import RefundRecord

    absorbed = RefundRecord.objects.filter(used_fallback=True)
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.exceptions import InvalidStateTransitionError
from payments.state_machines import RefundRecordStatus


class RefundRecord(UUIDPrimaryKeyMixin, BaseModel):
    """
    A refund issued against a prior payment.

    State Flow:
        PROCESSING -> COMPLETED
        PROCESSING -> FAILED

    Fields:
        payment_intent_id: Stripe PaymentIntent being refunded
        payment_record: Local PaymentRecord, when the charge came from checkout
        merchant_account: Settlement account the charge was routed to
        requested_amount_cents: Amount requested (<= remaining refundable)
        refund_application_fee: Whether the platform fee is refunded too
        application_fee_refund_cents: Locally computed fee share refunded
        reverse_transfer: Requested mode (claw back from the merchant)
        used_fallback: Actual mode (platform absorbed the refund)
        fallback_reason: Why the fallback path was taken
        observed_balance_cents: Merchant balance seen at the balance check
        processor_refund_id: Stripe Refund ID (re_xxx)

    Invariant:
        used_fallback implies reverse_transfer.
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    payment_intent_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Stripe PaymentIntent ID (pi_xxx) being refunded",
    )

    payment_record = models.ForeignKey(
        "payments.PaymentRecord",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="refunds",
        help_text="Checkout payment record being refunded, if known locally",
    )

    merchant_account = models.ForeignKey(
        "payments.MerchantAccount",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="refunds",
        help_text="Settlement account the original charge was routed to",
    )

    # ==========================================================================
    # Request
    # ==========================================================================

    requested_amount_cents = models.PositiveBigIntegerField(
        help_text="Refund amount requested in minor currency units",
    )

    currency = models.CharField(
        max_length=3,
        help_text="ISO 4217 currency code (lowercase)",
    )

    refund_application_fee = models.BooleanField(
        default=False,
        help_text="Whether the platform's application fee is refunded as well",
    )

    application_fee_refund_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Share of the application fee attributable to this refund",
    )

    reverse_transfer = models.BooleanField(
        default=True,
        help_text="Requested mode: pull the amount back from the merchant balance",
    )

    reason = models.CharField(
        max_length=64,
        blank=True,
        default="",
        help_text="Stripe refund reason (requested_by_customer, duplicate, fraudulent)",
    )

    # ==========================================================================
    # Outcome
    # ==========================================================================

    used_fallback = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Actual mode: refund was absorbed by the platform balance",
    )

    fallback_reason = models.TextField(
        blank=True,
        default="",
        help_text="Human-readable reason the fallback path was used",
    )

    observed_balance_cents = models.BigIntegerField(
        null=True,
        blank=True,
        help_text="Merchant balance (available + pending) seen at the balance check",
    )

    processor_refund_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Stripe Refund ID (re_xxx)",
    )

    status = models.CharField(
        max_length=20,
        choices=RefundRecordStatus.choices,
        default=RefundRecordStatus.PROCESSING,
        db_index=True,
        help_text="Refund status",
    )

    failure_message = models.TextField(
        blank=True,
        default="",
        help_text="Processor error when the refund failed",
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the refund completed",
    )

    failed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the refund failed",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Refund Record"
        verbose_name_plural = "Refund Records"
        constraints = [
            models.CheckConstraint(
                condition=Q(requested_amount_cents__gt=0),
                name="refund_record_amount_positive",
            ),
            models.CheckConstraint(
                condition=Q(used_fallback=False) | Q(reverse_transfer=True),
                name="refund_record_fallback_requires_reverse",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "created_at"]),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.requested_amount_cents / 100:.2f} {self.currency.upper()}"
        return f"RefundRecord({self.payment_intent_id}, {self.status}, {amount_display})"

    # ==========================================================================
    # Transitions
    # ==========================================================================

    def _ensure_processing(self, target: str) -> None:
        if self.status != RefundRecordStatus.PROCESSING:
            raise InvalidStateTransitionError(
                f"Cannot move refund from '{self.status}' to '{target}'",
                details={
                    "refund_record_id": str(self.pk),
                    "current_state": self.status,
                    "target_state": target,
                },
            )

    def complete(
        self,
        processor_refund_id: str,
        used_fallback: bool = False,
        fallback_reason: str = "",
    ) -> None:
        """
        Mark the refund completed.

        Transition: PROCESSING -> COMPLETED

        Note: Does not save - caller must save after calling.
        """
        self._ensure_processing(RefundRecordStatus.COMPLETED)
        if used_fallback and not self.reverse_transfer:
            raise InvalidStateTransitionError(
                "Fallback refunds only follow a requested reversing refund",
                details={"refund_record_id": str(self.pk)},
            )
        self.status = RefundRecordStatus.COMPLETED
        self.processor_refund_id = processor_refund_id
        self.used_fallback = used_fallback
        self.fallback_reason = fallback_reason
        self.completed_at = timezone.now()

    def fail(self, message: str) -> None:
        """
        Mark the refund failed.

        Transition: PROCESSING -> FAILED

        Note: Does not save - caller must save after calling.
        """
        self._ensure_processing(RefundRecordStatus.FAILED)
        self.status = RefundRecordStatus.FAILED
        self.failure_message = message
        self.failed_at = timezone.now()

    @property
    def is_complete(self) -> bool:
        return self.status == RefundRecordStatus.COMPLETED
