"""
Pytest fixtures for webhook tests.

Provides a real StripeAdapter with a known signing secret, signed request
helpers, WebhookEvent fixtures in each status, and a HandlerContext with a
mocked notifier.
"""

import hashlib
import hmac
import json
import time
from unittest.mock import MagicMock

import pytest

from merchants.tests.factories import MerchantFactory
from payments.adapters import StripeAdapter, set_stripe_adapter
from payments.services.notifications import NotificationGateway
from payments.state_machines import WebhookEventStatus
from payments.tests.factories import MerchantAccountFactory, PaymentRecordFactory, WebhookEventFactory
from payments.webhooks.handlers import HandlerContext

WEBHOOK_SECRET = "whsec_webhook_tests"


# =============================================================================
# Adapter and Signing Fixtures
# =============================================================================


@pytest.fixture
def webhook_adapter():
    """A real adapter so signatures are verified end to end."""
    return StripeAdapter(api_key="sk_test_webhooks", webhook_secret=WEBHOOK_SECRET, sleep=MagicMock())


@pytest.fixture
def installed_adapter(webhook_adapter):
    """Install ``webhook_adapter`` as the process-wide adapter."""
    set_stripe_adapter(webhook_adapter)
    yield webhook_adapter
    set_stripe_adapter(None)


def sign(body: str, timestamp: int | None = None, secret: str = WEBHOOK_SECRET) -> str:
    """Build a Stripe-Signature header for ``body``."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signature = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{body}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def stripe_event():
    """Build a Stripe event envelope."""

    def _create(
        event_type: str,
        data_object: dict,
        event_id: str = "evt_test_000001",
        account: str | None = None,
    ) -> dict:
        event = {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "data": {"object": data_object},
        }
        if account:
            event["account"] = account
        return event

    return _create


@pytest.fixture
def signed_body():
    """Serialize an event and sign it. Returns (body, signature header)."""

    def _create(event: dict, timestamp: int | None = None, secret: str = WEBHOOK_SECRET) -> tuple[str, str]:
        body = json.dumps(event)
        return body, sign(body, timestamp=timestamp, secret=secret)

    return _create


# =============================================================================
# Domain Fixtures
# =============================================================================


@pytest.fixture
def merchant(db):
    return MerchantFactory(name="Harbor Kayak Tours", contact_email="owner@harborkayak.example")


@pytest.fixture
def active_account(db, merchant):
    return MerchantAccountFactory(merchant=merchant, processor_account_id="acct_harbor")


@pytest.fixture
def payment_record(db, active_account):
    return PaymentRecordFactory(
        merchant_account=active_account,
        session_id="cs_test_harbor",
        payment_intent_id="",
    )


@pytest.fixture
def notifier():
    return MagicMock(spec=NotificationGateway)


@pytest.fixture
def handler_context(notifier):
    return HandlerContext(adapter=MagicMock(spec=StripeAdapter), notifier=notifier)


# =============================================================================
# Webhook Event Fixtures
# =============================================================================


@pytest.fixture
def pending_webhook_event(db):
    """Create a WebhookEvent in PENDING status."""
    return WebhookEventFactory(
        processor_event_id="evt_test_pending_123",
        event_type="checkout.session.expired",
        data_object={"id": "cs_test_unknown", "object": "checkout.session"},
    )


@pytest.fixture
def processing_webhook_event(db):
    """Create a WebhookEvent in PROCESSING status."""
    return WebhookEventFactory(
        processor_event_id="evt_test_processing_456",
        status=WebhookEventStatus.PROCESSING,
        retry_count=1,
    )


@pytest.fixture
def processed_webhook_event(db):
    """Create a WebhookEvent that was already processed."""
    event = WebhookEventFactory(processor_event_id="evt_test_processed_789", retry_count=1)
    event.mark_processed()
    event.save()
    return event


@pytest.fixture
def failed_webhook_event(db):
    """Create a failed WebhookEvent with attempts left."""
    return WebhookEventFactory(
        processor_event_id="evt_test_failed_012",
        event_type="checkout.session.expired",
        data_object={"id": "cs_test_unknown"},
        status=WebhookEventStatus.FAILED,
        retry_count=2,
        error_message="Previous failure",
    )
