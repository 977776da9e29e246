"""
AccountSyncService: pull connected account state from Stripe.

Used by the account.updated webhook, the provisioning self-healing read and
the periodic stale-account task. Every sync goes through
MerchantAccountStore, so status derivation stays in one place.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from core.services import BaseService

from payments.exceptions import PaymentNotFoundError, StripeError
from payments.models import MerchantAccount
from payments.stores import MerchantAccountStore

if TYPE_CHECKING:
    from payments.adapters.stripe_adapter import AccountResult, StripeAdapter


class AccountSyncService(BaseService):
    """Refreshes MerchantAccount rows from the processor."""

    def __init__(self, adapter: StripeAdapter, store: type[MerchantAccountStore] = MerchantAccountStore):
        self.adapter = adapter
        self.store = store

    def sync(self, processor_account_id: str) -> MerchantAccount:
        """
        Retrieve the account from Stripe and store its state.

        Raises:
            PaymentNotFoundError: No local row for this account
            StripeError: Retrieval failed
        """
        account = self.store.get_by_processor_account_id(processor_account_id)
        if account is None:
            raise PaymentNotFoundError(
                f"No merchant account for {processor_account_id}",
                details={"processor_account_id": processor_account_id},
            )
        result = self.adapter.retrieve_account(processor_account_id)
        return self.apply(account, result)

    def apply(self, account: MerchantAccount, result: AccountResult) -> MerchantAccount:
        """Store already-fetched processor state (e.g. from a webhook payload)."""
        return self.store.upsert_from_processor(account.merchant_id, result)

    def sync_stale_accounts(self, limit: int = 100) -> dict[str, int]:
        """
        Resync accounts not refreshed within MERCHANT_ACCOUNT_STALE_AFTER_HOURS.

        Failures are counted and logged; one bad account does not stop the batch.
        """
        logger = self.get_logger()
        cutoff = timezone.now() - timedelta(hours=settings.MERCHANT_ACCOUNT_STALE_AFTER_HOURS)
        stale = (
            MerchantAccount.objects.filter(Q(last_sync_at__isnull=True) | Q(last_sync_at__lt=cutoff))
            .order_by("last_sync_at")
            .values_list("processor_account_id", flat=True)[:limit]
        )

        synced = 0
        failed = 0
        for processor_account_id in stale:
            try:
                self.sync(processor_account_id)
                synced += 1
            except StripeError as e:
                failed += 1
                logger.warning(
                    "Stale account sync failed",
                    extra={
                        "processor_account_id": processor_account_id,
                        "error_code": e.error_code,
                        "error_kind": e.kind.value,
                    },
                )

        logger.info("Stale account sync finished", extra={"synced": synced, "failed": failed})
        return {"synced": synced, "failed": failed}
