"""
Pytest fixtures for settlement tests.

This module provides model fixtures in the states the services care about
and a MagicMock standing in for StripeAdapter. Services take the adapter
through their constructor, so tests hand them ``mock_adapter`` directly.

Usage:
    def test_refund(mock_adapter, payment_record):
        mock_adapter.retrieve_payment_intent.return_value = intent_result(...)
        RefundOrchestrator(mock_adapter, notifier).refund(request)
"""

from unittest.mock import MagicMock

import pytest

from merchants.tests.factories import MerchantFactory
from payments.adapters.stripe_adapter import (
    AccountResult,
    BalanceResult,
    CheckoutSessionResult,
    PaymentIntentResult,
    RefundResult,
    StripeAdapter,
)
from payments.services.notifications import NotificationGateway
from payments.tests.factories import MerchantAccountFactory, PaymentRecordFactory


# =============================================================================
# Merchant Fixtures
# =============================================================================


@pytest.fixture
def merchant(db):
    """Create a merchant with a complete profile."""
    return MerchantFactory()


@pytest.fixture
def active_account(db, merchant):
    """Create an active, chargeable settlement account."""
    return MerchantAccountFactory(merchant=merchant)


@pytest.fixture
def pending_account(db, merchant):
    """Create an account that has not finished onboarding."""
    return MerchantAccountFactory(merchant=merchant, pending=True)


@pytest.fixture
def payment_record(db, active_account):
    """Create an open payment record routed to the active account."""
    return PaymentRecordFactory(merchant_account=active_account)


# =============================================================================
# Collaborator Fixtures
# =============================================================================


@pytest.fixture
def mock_adapter():
    """MagicMock with StripeAdapter's interface."""
    return MagicMock(spec=StripeAdapter)


@pytest.fixture
def notifier():
    """MagicMock with NotificationGateway's interface."""
    return MagicMock(spec=NotificationGateway)


# =============================================================================
# Processor Result Builders
# =============================================================================


@pytest.fixture
def account_result():
    """Build AccountResult instances."""

    def _create(
        id: str = "acct_test000001",
        merchant_id=None,
        charges_enabled: bool = True,
        payouts_enabled: bool = True,
        details_submitted: bool = True,
        disabled_reason: str | None = None,
        currently_due: list | None = None,
        country: str = "US",
    ) -> AccountResult:
        return AccountResult(
            id=id,
            charges_enabled=charges_enabled,
            payouts_enabled=payouts_enabled,
            details_submitted=details_submitted,
            requirements_currently_due=currently_due or [],
            disabled_reason=disabled_reason,
            country=country,
            business_type="company",
            metadata={"merchant_id": str(merchant_id)} if merchant_id else {},
        )

    return _create


@pytest.fixture
def intent_result():
    """Build PaymentIntentResult instances for a destination charge."""

    def _create(
        id: str = "pi_test_000001",
        amount_cents: int = 21100,
        amount_refunded: int = 0,
        application_fee_amount: int | None = 1142,
        destination: str | None = "acct_test000001",
        currency: str = "usd",
    ) -> PaymentIntentResult:
        return PaymentIntentResult(
            id=id,
            status="succeeded",
            amount_cents=amount_cents,
            currency=currency,
            amount_received=amount_cents,
            amount_refunded=amount_refunded,
            application_fee_amount=application_fee_amount,
            destination=destination,
        )

    return _create


@pytest.fixture
def refund_result():
    """Build RefundResult instances."""

    def _create(id: str = "re_test_000001", amount_cents: int = 5000) -> RefundResult:
        return RefundResult(
            id=id,
            amount_cents=amount_cents,
            currency="usd",
            status="succeeded",
            payment_intent_id="pi_test_000001",
        )

    return _create


@pytest.fixture
def balance_result():
    """Build a BalanceResult holding ``available`` + ``pending`` USD cents."""

    def _create(available: int = 0, pending: int = 0) -> BalanceResult:
        return BalanceResult(available={"usd": available}, pending={"usd": pending})

    return _create


@pytest.fixture
def session_result():
    """Build CheckoutSessionResult instances."""

    def _create(id: str = "cs_test_a1b2c3", amount_total: int = 21100) -> CheckoutSessionResult:
        return CheckoutSessionResult(
            id=id,
            status="open",
            amount_total=amount_total,
            currency="usd",
            url=f"https://checkout.stripe.com/c/pay/{id}",
            client_secret=f"{id}_secret_xyz",
        )

    return _create
