"""
Pytest fixtures for Stripe adapter tests.

This module provides an adapter with a recording sleep, mock Stripe API
objects, and real Stripe SDK exceptions for the translation tests.

Sections:
    - Adapter Fixtures
    - Mock Stripe Response Fixtures
    - Mock Stripe Error Fixtures
"""

from dataclasses import dataclass
from typing import Any
from unittest.mock import MagicMock

import pytest
import stripe

from payments.adapters import StripeAdapter

WEBHOOK_SECRET = "whsec_test_secret"


# =============================================================================
# Adapter Fixtures
# =============================================================================


@pytest.fixture
def sleep():
    """Stands in for time.sleep so retries run instantly."""
    return MagicMock()


@pytest.fixture
def adapter(sleep):
    return StripeAdapter(
        api_key="sk_test_adapter",
        webhook_secret=WEBHOOK_SECRET,
        webhook_tolerance=300,
        max_retries=3,
        sleep=sleep,
    )


# =============================================================================
# Mock Stripe Response Fixtures
# =============================================================================


@dataclass
class MockStripeObject:
    """Mock Stripe API object with to_dict support."""

    data: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "data":
            return self.__dict__["data"]
        return self.data.get(name)

    def to_dict(self) -> dict[str, Any]:
        return self.data


@dataclass
class MockStripeList:
    """Mock Stripe list response with data attribute."""

    items: list[MockStripeObject]
    has_more: bool = False

    @property
    def data(self) -> list[MockStripeObject]:
        return self.items

    def auto_paging_iter(self):
        return iter(self.items)


@pytest.fixture
def mock_account():
    """Create a mock Account response."""

    def _create(
        id: str = "acct_test123456",
        charges_enabled: bool = False,
        payouts_enabled: bool = False,
        currently_due: list | None = None,
        disabled_reason: str | None = None,
        metadata: dict | None = None,
        external_accounts: list | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "account",
                "country": "US",
                "business_type": "company",
                "charges_enabled": charges_enabled,
                "payouts_enabled": payouts_enabled,
                "details_submitted": charges_enabled,
                "requirements": {
                    "currently_due": currently_due or [],
                    "past_due": [],
                    "eventually_due": [],
                    "disabled_reason": disabled_reason,
                },
                "metadata": metadata or {},
                "external_accounts": {"object": "list", "data": external_accounts or []},
            }
        )

    return _create


@pytest.fixture
def mock_payment_intent():
    """Create a mock PaymentIntent response with an expanded latest charge."""

    def _create(
        id: str = "pi_test123456",
        amount: int = 21100,
        amount_refunded: int = 0,
        application_fee_amount: int | None = 1142,
        destination: str | None = "acct_dest123",
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "payment_intent",
                "status": "succeeded",
                "amount": amount,
                "amount_received": amount,
                "currency": "usd",
                "application_fee_amount": application_fee_amount,
                "transfer_data": {"destination": destination} if destination else None,
                "latest_charge": {"id": "ch_test123", "amount_refunded": amount_refunded},
                "metadata": {},
            }
        )

    return _create


@pytest.fixture
def mock_refund():
    """Create a mock Refund response."""

    def _create(
        id: str = "re_test123456",
        amount: int = 5000,
        status: str = "succeeded",
        payment_intent: str = "pi_test123456",
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "refund",
                "amount": amount,
                "currency": "usd",
                "status": status,
                "payment_intent": payment_intent,
                "metadata": {},
            }
        )

    return _create


# =============================================================================
# Mock Stripe Error Fixtures
# =============================================================================


@pytest.fixture
def card_error():
    """Create a Stripe CardError."""

    def _create(
        message: str = "Your card was declined.",
        code: str = "card_declined",
        decline_code: str | None = "generic_decline",
    ) -> stripe.CardError:
        error = stripe.CardError(message=message, param=None, code=code)
        error.decline_code = decline_code
        return error

    return _create


@pytest.fixture
def invalid_request_error():
    """Create a Stripe InvalidRequestError."""

    def _create(
        message: str = "Invalid payment intent ID",
        param: str | None = "payment_intent",
        code: str | None = "resource_missing",
    ) -> stripe.InvalidRequestError:
        return stripe.InvalidRequestError(message=message, param=param, code=code)

    return _create


@pytest.fixture
def rate_limit_error():
    return stripe.RateLimitError(message="Too many requests hit the API too quickly.")


@pytest.fixture
def api_connection_error():
    return stripe.APIConnectionError(message="Could not connect to Stripe.")


@pytest.fixture
def api_error():
    return stripe.APIError(message="Something went wrong on Stripe's end.")


@pytest.fixture
def authentication_error():
    return stripe.AuthenticationError(message="Invalid API Key provided.")
