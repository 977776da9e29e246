"""
PayoutFailureEvent model: audit row for each failed merchant payout.

Written once by the payout.failed webhook handler and never updated.
The unique processor event id keeps redelivered webhooks from creating a
second row.
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import AppendOnlyMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import EscalationLevel

# Failure codes that point to a problem with the merchant's bank account
# itself; retrying the payout will not help until the merchant acts.
NON_TRANSIENT_FAILURE_CODES = frozenset(
    {
        "account_closed",
        "account_frozen",
        "bank_account_restricted",
        "bank_account_unusable",
        "invalid_account_number",
        "no_account",
    }
)


class PayoutFailureEvent(UUIDPrimaryKeyMixin, AppendOnlyMixin, BaseModel):
    """
    A payout to a merchant's bank account that the processor reported as failed.

    Fields:
        processor_event_id: Stripe Event ID (evt_xxx) that reported the failure
        payout_id: Stripe Payout ID (po_xxx)
        merchant: Merchant resolved from the connected account on the event
        merchant_account: Settlement account the payout left from
        amount_cents: Payout amount in minor currency units
        currency: ISO 4217 currency code
        failure_code: Stripe failure code
        failure_message: Stripe failure message
        escalation_level: How far the failure was escalated (fixed at creation)
    """

    processor_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Event ID (evt_xxx) that reported this failure",
    )

    payout_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Stripe Payout ID (po_xxx)",
    )

    merchant = models.ForeignKey(
        "merchants.Merchant",
        on_delete=models.PROTECT,
        related_name="payout_failures",
        help_text="Merchant whose payout failed",
    )

    merchant_account = models.ForeignKey(
        "payments.MerchantAccount",
        on_delete=models.PROTECT,
        related_name="payout_failures",
        help_text="Settlement account the payout was sent from",
    )

    amount_cents = models.BigIntegerField(
        help_text="Payout amount in minor currency units",
    )

    currency = models.CharField(
        max_length=3,
        help_text="ISO 4217 currency code (lowercase)",
    )

    failure_code = models.CharField(
        max_length=100,
        blank=True,
        default="",
        db_index=True,
        help_text="Stripe payout failure code",
    )

    failure_message = models.TextField(
        blank=True,
        default="",
        help_text="Stripe payout failure message",
    )

    escalation_level = models.CharField(
        max_length=32,
        choices=EscalationLevel.choices,
        help_text="How far this failure was escalated",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payout Failure Event"
        verbose_name_plural = "Payout Failure Events"
        indexes = [
            models.Index(fields=["merchant", "created_at"]),
        ]

    def __str__(self) -> str:
        return f"PayoutFailureEvent({self.payout_id}, {self.failure_code})"

    @staticmethod
    def is_non_transient(failure_code: str | None) -> bool:
        """True when the failure code indicates a banking problem the merchant must fix."""
        return (failure_code or "") in NON_TRANSIENT_FAILURE_CODES
