"""
Tests for MerchantAccountStore.
"""

from datetime import timedelta

import pytest

from payments.models import MerchantAccount
from payments.state_machines import MerchantAccountStatus, PaymentIssue
from payments.stores import MerchantAccountStore
from payments.tests.factories import MerchantAccountFactory


@pytest.mark.django_db
class TestUpsertFromProcessor:
    """Tests for MerchantAccountStore.upsert_from_processor."""

    def test_creates_row(self, merchant, account_result):
        result = account_result(
            id="acct_new",
            charges_enabled=False,
            payouts_enabled=False,
            details_submitted=False,
            currently_due=["external_account", "representative.dob.day"],
        )

        account = MerchantAccountStore.upsert_from_processor(merchant.id, result)

        assert account.merchant_id == merchant.id
        assert account.processor_account_id == "acct_new"
        assert account.status == MerchantAccountStatus.PENDING
        assert account.requirements_currently_due == ["external_account", "representative.dob.day"]
        assert account.last_sync_at is not None

    def test_updates_existing_row_by_processor_id(self, pending_account, account_result):
        result = account_result(id=pending_account.processor_account_id)

        account = MerchantAccountStore.upsert_from_processor(pending_account.merchant_id, result)

        assert account.pk == pending_account.pk
        assert account.status == MerchantAccountStatus.ACTIVE
        assert account.charges_enabled is True
        assert MerchantAccount.objects.count() == 1

    def test_disabled_reason_restricts(self, active_account, account_result):
        result = account_result(
            id=active_account.processor_account_id,
            disabled_reason="requirements.past_due",
        )

        account = MerchantAccountStore.upsert_from_processor(active_account.merchant_id, result)

        assert account.status == MerchantAccountStatus.RESTRICTED
        assert account.disabled_reason == "requirements.past_due"

    def test_review_flag_survives_sync(self, account_result):
        account = MerchantAccountFactory(requires_review=True, payment_issue=PaymentIssue.BANK_PROBLEM)

        updated = MerchantAccountStore.upsert_from_processor(
            account.merchant_id, account_result(id=account.processor_account_id)
        )

        assert updated.requires_review is True
        assert updated.payment_issue == PaymentIssue.BANK_PROBLEM


@pytest.mark.django_db
class TestGetForMerchant:
    """Tests for MerchantAccountStore.get_for_merchant."""

    def test_prefers_active(self, merchant):
        MerchantAccountFactory(merchant=merchant, restricted=True)
        active = MerchantAccountFactory(merchant=merchant)
        MerchantAccountFactory(merchant=merchant, pending=True)

        assert MerchantAccountStore.get_for_merchant(merchant.id) == active

    def test_falls_back_to_latest(self, merchant):
        older = MerchantAccountFactory(merchant=merchant, restricted=True)
        latest = MerchantAccountFactory(merchant=merchant, pending=True)
        MerchantAccount.objects.filter(pk=older.pk).update(
            created_at=latest.created_at - timedelta(days=1)
        )

        assert MerchantAccountStore.get_for_merchant(merchant.id) == latest

    def test_none_without_accounts(self, merchant):
        assert MerchantAccountStore.get_for_merchant(merchant.id) is None


@pytest.mark.django_db
class TestReviewAndRestriction:
    """Tests for the review flag and restriction writers."""

    def test_mark_requires_review(self, active_account):
        assert MerchantAccountStore.mark_requires_review(active_account) is True

        active_account.refresh_from_db()
        assert active_account.requires_review is True
        assert active_account.payment_issue == PaymentIssue.BANK_PROBLEM

    def test_mark_requires_review_is_idempotent(self, active_account):
        MerchantAccountStore.mark_requires_review(active_account)

        assert MerchantAccountStore.mark_requires_review(active_account) is False

    def test_mark_restricted(self, active_account):
        MerchantAccountStore.mark_restricted(active_account, "deauthorized")

        active_account.refresh_from_db()
        assert active_account.status == MerchantAccountStatus.RESTRICTED
        assert active_account.charges_enabled is False
        assert active_account.disabled_reason == "deauthorized"
        assert active_account.is_payable is False
