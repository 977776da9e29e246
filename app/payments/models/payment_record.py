"""
PaymentRecord model: the local copy of a checkout session and its breakdown.

The breakdown stored here is frozen when the session is created and is the
single source of truth for what the merchant is owed. It is never
recomputed from the processor's records.

Usage:
    from payments.models import PaymentRecord

    record = PaymentRecord.objects.get(session_id="cs_test_123")
    record.mark_completed(payment_intent_id="pi_123")
    record.save()
"""

from __future__ import annotations

from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.exceptions import InvalidStateTransitionError
from payments.services.fee_calculator import PaymentBreakdown
from payments.state_machines import PaymentRecordStatus

# Fields that may not change once the record exists
FROZEN_FIELDS = (
    "base_amount_cents",
    "platform_fee_cents",
    "commission_cents",
    "tax_cents",
    "total_amount_cents",
    "processor_fee_estimate_cents",
    "application_fee_cents",
    "currency",
)


class PaymentRecord(UUIDPrimaryKeyMixin, BaseModel):
    """
    A checkout payment session and its frozen fee breakdown.

    Fields:
        booking_id: Booking this payment settles (owned by the booking app)
        merchant: Merchant receiving the net amount
        merchant_account: Destination settlement account
        session_id: Stripe Checkout Session ID (cs_xxx)
        payment_intent_id: Stripe PaymentIntent ID, known once paid
        *_cents: Breakdown in minor currency units
        status: open / completed / failed
        client_secret: Opaque handle for the payer-facing step

    Invariants:
        - total_amount_cents == base + platform fee + tax
        - application_fee_cents <= total_amount_cents
        - breakdown fields are immutable after creation
        - terminal records are never modified
    """

    # ==========================================================================
    # Identity
    # ==========================================================================

    booking_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Booking this payment settles",
    )

    merchant = models.ForeignKey(
        "merchants.Merchant",
        on_delete=models.PROTECT,
        related_name="payment_records",
        help_text="Merchant receiving the net amount",
    )

    merchant_account = models.ForeignKey(
        "payments.MerchantAccount",
        on_delete=models.PROTECT,
        related_name="payment_records",
        help_text="Destination settlement account",
    )

    session_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Checkout Session ID (cs_xxx)",
    )

    payment_intent_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Stripe PaymentIntent ID (pi_xxx), set when the session completes",
    )

    # ==========================================================================
    # Breakdown (frozen at creation)
    # ==========================================================================

    base_amount_cents = models.PositiveBigIntegerField(
        help_text="Booking base price in minor currency units",
    )

    platform_fee_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Platform fee charged to the payer",
    )

    commission_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Platform commission taken from the total",
    )

    tax_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Tax on the base price",
    )

    total_amount_cents = models.PositiveBigIntegerField(
        help_text="Gross charge: base + platform fee + tax",
    )

    processor_fee_estimate_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Estimated Stripe processing cost",
    )

    application_fee_cents = models.PositiveBigIntegerField(
        help_text="Amount retained by the platform from the gross charge",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    # ==========================================================================
    # Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=PaymentRecordStatus.choices,
        default=PaymentRecordStatus.OPEN,
        db_index=True,
        help_text="Payment status",
    )

    client_secret = models.TextField(
        blank=True,
        default="",
        help_text="Opaque handle for the payer-facing checkout step",
    )

    payer_email = models.EmailField(
        blank=True,
        default="",
        help_text="Payer email passed to checkout",
    )

    payer_name = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Payer name",
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payment completed",
    )

    failed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payment failed",
    )

    failure_reason = models.TextField(
        blank=True,
        default="",
        help_text="Why the payment, or its last declined attempt, failed",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Record"
        verbose_name_plural = "Payment Records"
        constraints = [
            models.CheckConstraint(
                condition=Q(application_fee_cents__lte=F("total_amount_cents")),
                name="payment_record_fee_within_total",
            ),
            models.CheckConstraint(
                condition=Q(
                    total_amount_cents=F("base_amount_cents")
                    + F("platform_fee_cents")
                    + F("tax_cents")
                ),
                name="payment_record_total_matches_breakdown",
            ),
            models.CheckConstraint(
                condition=Q(base_amount_cents__gt=0),
                name="payment_record_base_positive",
            ),
        ]
        indexes = [
            models.Index(fields=["merchant", "status"]),
        ]

    def __str__(self) -> str:
        return f"PaymentRecord({self.session_id}, {self.status})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_breakdown = {
            name: getattr(instance, name)
            for name in FROZEN_FIELDS
            if name in instance.__dict__
        }
        instance._loaded_status = instance.__dict__.get("status")
        return instance

    def save(self, *args, **kwargs):
        """
        Save, refusing to alter the breakdown or a terminal record.
        """
        if not self._state.adding:
            loaded = getattr(self, "_loaded_breakdown", {})
            changed = [name for name, value in loaded.items() if getattr(self, name) != value]
            if changed:
                raise InvalidStateTransitionError(
                    "Payment breakdown is immutable once the session exists",
                    details={"payment_record_id": str(self.pk), "fields": changed},
                )
            loaded_status = getattr(self, "_loaded_status", None)
            if loaded_status in (PaymentRecordStatus.COMPLETED, PaymentRecordStatus.FAILED):
                raise InvalidStateTransitionError(
                    f"PaymentRecord is terminal ({loaded_status}) and cannot change",
                    details={"payment_record_id": str(self.pk), "current_state": loaded_status},
                )
        super().save(*args, **kwargs)
        self._loaded_breakdown = {name: getattr(self, name) for name in FROZEN_FIELDS}
        self._loaded_status = self.status

    # ==========================================================================
    # Transitions
    # ==========================================================================

    @property
    def is_terminal(self) -> bool:
        return self.status in (PaymentRecordStatus.COMPLETED, PaymentRecordStatus.FAILED)

    @property
    def merchant_net_cents(self) -> int:
        """Amount routed to the merchant's settlement account."""
        return self.total_amount_cents - self.application_fee_cents

    @property
    def breakdown(self) -> PaymentBreakdown:
        """The frozen breakdown as a PaymentBreakdown."""
        return PaymentBreakdown(
            base_amount_cents=self.base_amount_cents,
            platform_fee_cents=self.platform_fee_cents,
            commission_cents=self.commission_cents,
            tax_cents=self.tax_cents,
            total_amount_cents=self.total_amount_cents,
            processor_fee_estimate_cents=self.processor_fee_estimate_cents,
            application_fee_cents=self.application_fee_cents,
        )

    def _ensure_open(self, target: str) -> None:
        if self.status != PaymentRecordStatus.OPEN:
            raise InvalidStateTransitionError(
                f"Cannot move payment from '{self.status}' to '{target}'",
                details={
                    "payment_record_id": str(self.pk),
                    "current_state": self.status,
                    "target_state": target,
                },
            )

    def mark_completed(self, payment_intent_id: str) -> None:
        """
        Mark the payment completed.

        Note: Does not save - caller must save after calling.
        """
        self._ensure_open(PaymentRecordStatus.COMPLETED)
        self.status = PaymentRecordStatus.COMPLETED
        self.payment_intent_id = payment_intent_id or self.payment_intent_id
        self.completed_at = timezone.now()

    def mark_failed(self, reason: str) -> None:
        """
        Mark the payment failed.

        Note: Does not save - caller must save after calling.
        """
        self._ensure_open(PaymentRecordStatus.FAILED)
        self.status = PaymentRecordStatus.FAILED
        self.failure_reason = reason
        self.failed_at = timezone.now()

    def record_declined_attempt(self, payment_intent_id: str, reason: str) -> None:
        """
        Note a declined attempt while the checkout session stays open.

        The payer can retry inside the same session, so the record stays
        open until the session completes or expires.

        Note: Does not save - caller must save after calling.
        """
        self._ensure_open(PaymentRecordStatus.OPEN)
        self.payment_intent_id = payment_intent_id or self.payment_intent_id
        self.failure_reason = reason
