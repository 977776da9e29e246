"""
MerchantAccount model for Stripe Connect settlement accounts.

One row per merchant settlement account. Rows are created by account
provisioning and refreshed by the sync path (API sync, account webhooks,
stale-account task). Checkout and refund flows only read them.
Rows are never hard-deleted; they are kept for audit.

Usage:
    from payments.models import MerchantAccount

    account = MerchantAccount.objects.active_for_merchant(merchant_id)
    if account is None or not account.is_payable:
        raise MerchantNotPayableError(...)
"""

from __future__ import annotations

from django.db import models
from django.db.models import F, Q

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import MerchantAccountStatus, PaymentIssue


class MerchantAccountQuerySet(models.QuerySet):
    def for_merchant(self, merchant_id):
        return self.filter(merchant_id=merchant_id)

    def active_for_merchant(self, merchant_id) -> MerchantAccount | None:
        return self.filter(
            merchant_id=merchant_id,
            status=MerchantAccountStatus.ACTIVE,
        ).first()


class MerchantAccount(UUIDPrimaryKeyMixin, BaseModel):
    """
    A merchant's connected settlement account on the processor.

    Fields:
        merchant: The owning tenant
        processor_account_id: Stripe Account ID (acct_xxx), unique
        status: pending / active / restricted, derived from processor state
        charges_enabled: Processor capability flag for accepting charges
        payouts_enabled: Processor capability flag for paying out
        details_submitted: Whether onboarding details were submitted
        requirements_*: Ordered requirement codes reported by the processor
        disabled_reason: Processor reason code when the account is disabled
        requires_review: Set when a payout failure shows a bank problem
        payment_issue: Outstanding settlement problem code
        last_sync_at: When processor state was last pulled
        version: Optimistic locking version field

    Invariants:
        - processor_account_id is globally unique
        - a merchant has at most one ACTIVE account
    """

    # ==========================================================================
    # Identity
    # ==========================================================================

    merchant = models.ForeignKey(
        "merchants.Merchant",
        on_delete=models.PROTECT,
        related_name="settlement_accounts",
        help_text="Merchant (agency) that owns this settlement account",
    )

    processor_account_id = models.CharField(
        max_length=255,
        unique=True,
        db_index=True,
        help_text="Stripe Account ID (acct_xxx)",
    )

    # ==========================================================================
    # Processor State
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=MerchantAccountStatus.choices,
        default=MerchantAccountStatus.PENDING,
        db_index=True,
        help_text="Settlement status derived from processor capability flags",
    )

    charges_enabled = models.BooleanField(
        default=False,
        help_text="Whether Stripe has enabled charges for this account",
    )

    payouts_enabled = models.BooleanField(
        default=False,
        help_text="Whether Stripe has enabled payouts for this account",
    )

    details_submitted = models.BooleanField(
        default=False,
        help_text="Whether the merchant submitted onboarding details",
    )

    requirements_currently_due = models.JSONField(
        default=list,
        blank=True,
        help_text="Requirement codes currently due, in processor order",
    )

    requirements_past_due = models.JSONField(
        default=list,
        blank=True,
        help_text="Requirement codes past due, in processor order",
    )

    requirements_eventually_due = models.JSONField(
        default=list,
        blank=True,
        help_text="Requirement codes eventually due, in processor order",
    )

    disabled_reason = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Processor reason code when the account is disabled",
    )

    # ==========================================================================
    # Descriptive
    # ==========================================================================

    country = models.CharField(
        max_length=2,
        help_text="ISO 3166-1 alpha-2 country of the account",
    )

    business_type = models.CharField(
        max_length=32,
        blank=True,
        default="",
        help_text="Legal entity type registered with the processor",
    )

    bank_account_last4 = models.CharField(
        max_length=4,
        blank=True,
        default="",
        help_text="Last four digits of the payout bank account",
    )

    bank_name = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Name of the payout bank",
    )

    payout_currency = models.CharField(
        max_length=3,
        blank=True,
        default="",
        help_text="Currency of the payout bank account",
    )

    # ==========================================================================
    # Review Flags
    # ==========================================================================

    requires_review = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Set when a payout failure indicates a non-transient bank problem",
    )

    payment_issue = models.CharField(
        max_length=32,
        choices=PaymentIssue.choices,
        blank=True,
        default=PaymentIssue.NONE,
        help_text="Outstanding settlement problem",
    )

    # ==========================================================================
    # Bookkeeping
    # ==========================================================================

    last_sync_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When processor state was last pulled",
    )

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    objects = MerchantAccountQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Merchant Account"
        verbose_name_plural = "Merchant Accounts"
        constraints = [
            models.UniqueConstraint(
                fields=["merchant", "processor_account_id"],
                name="merchant_account_unique_pair",
            ),
            models.UniqueConstraint(
                fields=["merchant"],
                condition=Q(status=MerchantAccountStatus.ACTIVE),
                name="merchant_account_one_active_per_merchant",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "last_sync_at"]),
        ]

    def __str__(self) -> str:
        return f"MerchantAccount({self.processor_account_id}, {self.status})"

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.
        """
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            # Refresh to get actual version value after F() expression
            self.refresh_from_db(fields=["version"])

    @staticmethod
    def derive_status(charges_enabled: bool, disabled_reason: str | None) -> str:
        """
        Map processor state to a settlement status.

        A disabled reason wins over capability flags: the processor can
        report charges enabled while a restriction is pending.
        """
        if disabled_reason:
            return MerchantAccountStatus.RESTRICTED
        if charges_enabled:
            return MerchantAccountStatus.ACTIVE
        return MerchantAccountStatus.PENDING

    @property
    def is_payable(self) -> bool:
        """True when checkout may route money to this account."""
        return self.status == MerchantAccountStatus.ACTIVE and self.charges_enabled

    @property
    def is_fully_enabled(self) -> bool:
        """
        True when the account can take charges and pay out, with nothing disabled.
        """
        return (
            self.charges_enabled
            and self.payouts_enabled
            and self.details_submitted
            and not self.disabled_reason
        )
