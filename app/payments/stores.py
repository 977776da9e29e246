"""
MerchantAccountStore: the only writer of MerchantAccount rows.

Writes are single-row upserts keyed by processor_account_id. Provisioning,
account sync and the webhook handlers go through here; checkout and refund
flows only read.

Usage:
    from payments.stores import MerchantAccountStore

    account = MerchantAccountStore.upsert_from_processor(merchant_id, account_result)
"""

from __future__ import annotations

import logging
import uuid

from django.db import transaction
from django.utils import timezone

from payments.adapters.stripe_adapter import AccountResult
from payments.models import MerchantAccount
from payments.state_machines import MerchantAccountStatus, PaymentIssue

logger = logging.getLogger(__name__)


class MerchantAccountStore:
    """Persistence for merchant settlement accounts."""

    @staticmethod
    def get_for_merchant(merchant_id: uuid.UUID | str) -> MerchantAccount | None:
        """
        The merchant's settlement account.

        Prefers the active account; otherwise the most recently created one.
        """
        active = MerchantAccount.objects.active_for_merchant(merchant_id)
        if active is not None:
            return active
        return MerchantAccount.objects.for_merchant(merchant_id).order_by("-created_at").first()

    @staticmethod
    def get_by_processor_account_id(processor_account_id: str) -> MerchantAccount | None:
        return (
            MerchantAccount.objects.select_related("merchant")
            .filter(processor_account_id=processor_account_id)
            .first()
        )

    @staticmethod
    @transaction.atomic
    def upsert_from_processor(
        merchant_id: uuid.UUID | str,
        result: AccountResult,
    ) -> MerchantAccount:
        """
        Create or refresh the row for a processor account.

        Status is derived from the processor's flags. Review flags set by
        payout failures are left untouched.
        """
        status = MerchantAccount.derive_status(result.charges_enabled, result.disabled_reason)
        defaults = {
            "status": status,
            "charges_enabled": result.charges_enabled,
            "payouts_enabled": result.payouts_enabled,
            "details_submitted": result.details_submitted,
            "requirements_currently_due": result.requirements_currently_due,
            "requirements_past_due": result.requirements_past_due,
            "requirements_eventually_due": result.requirements_eventually_due,
            "disabled_reason": result.disabled_reason or "",
            "bank_account_last4": result.bank_account_last4,
            "bank_name": result.bank_name,
            "payout_currency": result.bank_account_currency,
            "last_sync_at": timezone.now(),
        }
        if result.country:
            defaults["country"] = result.country.upper()
        if result.business_type:
            defaults["business_type"] = result.business_type

        account = (
            MerchantAccount.objects.select_for_update()
            .filter(processor_account_id=result.id)
            .first()
        )
        if account is None:
            account = MerchantAccount(
                merchant_id=merchant_id,
                processor_account_id=result.id,
                **defaults,
            )
            account.save()
            logger.info(
                "Merchant account stored",
                extra={
                    "merchant_id": str(merchant_id),
                    "processor_account_id": result.id,
                    "status": status,
                },
            )
            return account

        previous_status = account.status
        for name, value in defaults.items():
            setattr(account, name, value)
        account.save()
        if previous_status != status:
            logger.info(
                "Merchant account status changed",
                extra={
                    "merchant_id": str(account.merchant_id),
                    "processor_account_id": result.id,
                    "from_status": previous_status,
                    "to_status": status,
                },
            )
        return account

    @staticmethod
    def mark_requires_review(account: MerchantAccount, issue: str = PaymentIssue.BANK_PROBLEM) -> bool:
        """
        Flag the account for review.

        Returns:
            False when the account was already flagged with the same issue
        """
        if account.requires_review and account.payment_issue == issue:
            return False
        account.requires_review = True
        account.payment_issue = issue
        account.save(update_fields=["requires_review", "payment_issue", "version", "updated_at"])
        return True

    @staticmethod
    def mark_restricted(account: MerchantAccount, reason: str) -> None:
        account.status = MerchantAccountStatus.RESTRICTED
        account.charges_enabled = False
        account.payouts_enabled = False
        account.disabled_reason = reason
        account.last_sync_at = timezone.now()
        account.save()
