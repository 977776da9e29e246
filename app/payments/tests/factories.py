"""
Factory Boy factories for settlement test data.

This module provides factories for creating test instances of settlement
models. Factories generate realistic test data while allowing easy
customization.

Usage:
    from payments.tests.factories import (
        MerchantAccountFactory,
        PaymentRecordFactory,
        RefundRecordFactory,
        WebhookEventFactory,
    )

    # An active, chargeable account for a new merchant
    account = MerchantAccountFactory()

    # An account still in onboarding
    account = MerchantAccountFactory(pending=True)

    # A completed payment against an existing account
    record = PaymentRecordFactory(merchant_account=account, status=PaymentRecordStatus.COMPLETED)
"""

import factory
from django.utils import timezone

from merchants.tests.factories import MerchantFactory
from payments.models import (
    MerchantAccount,
    PaymentRecord,
    PayoutFailureEvent,
    RefundRecord,
    WebhookEvent,
)
from payments.state_machines import (
    EscalationLevel,
    MerchantAccountStatus,
    PaymentRecordStatus,
    RefundRecordStatus,
    WebhookEventStatus,
)


class MerchantAccountFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating MerchantAccount instances.

    Defaults to an active account with charges and payouts enabled.

    Traits:
        pending: Onboarding not finished, charges disabled
        restricted: Disabled by the processor
    """

    class Meta:
        model = MerchantAccount

    merchant = factory.SubFactory(MerchantFactory)
    processor_account_id = factory.Sequence(lambda n: f"acct_test{n:06d}")
    status = MerchantAccountStatus.ACTIVE
    charges_enabled = True
    payouts_enabled = True
    details_submitted = True
    country = "US"
    business_type = "company"
    bank_account_last4 = "6789"
    bank_name = "STRIPE TEST BANK"
    payout_currency = "usd"
    last_sync_at = factory.LazyFunction(timezone.now)

    class Params:
        pending = factory.Trait(
            status=MerchantAccountStatus.PENDING,
            charges_enabled=False,
            payouts_enabled=False,
            details_submitted=False,
            requirements_currently_due=["external_account", "tos_acceptance.date"],
        )
        restricted = factory.Trait(
            status=MerchantAccountStatus.RESTRICTED,
            charges_enabled=False,
            payouts_enabled=False,
            disabled_reason="requirements.past_due",
        )


class PaymentRecordFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating PaymentRecord instances.

    The default breakdown is a 200.00 booking with a 5.00 platform fee and
    3% tax under standard card pricing.
    """

    class Meta:
        model = PaymentRecord

    merchant_account = factory.SubFactory(MerchantAccountFactory)
    merchant = factory.SelfAttribute("merchant_account.merchant")
    booking_id = factory.Sequence(lambda n: f"bk_{n:06d}")
    session_id = factory.Sequence(lambda n: f"cs_test_{n:06d}")
    payment_intent_id = factory.Sequence(lambda n: f"pi_test_{n:06d}")
    base_amount_cents = 20000
    platform_fee_cents = 500
    commission_cents = 0
    tax_cents = 600
    total_amount_cents = 21100
    processor_fee_estimate_cents = 642
    application_fee_cents = 1142
    currency = "usd"
    status = PaymentRecordStatus.OPEN
    client_secret = factory.LazyAttribute(lambda o: f"{o.session_id}_secret")
    payer_email = "payer@example.com"


class RefundRecordFactory(factory.django.DjangoModelFactory):
    """Factory for creating RefundRecord instances."""

    class Meta:
        model = RefundRecord

    payment_record = factory.SubFactory(PaymentRecordFactory)
    merchant_account = factory.SelfAttribute("payment_record.merchant_account")
    payment_intent_id = factory.SelfAttribute("payment_record.payment_intent_id")
    requested_amount_cents = 5000
    currency = "usd"
    reverse_transfer = True
    status = RefundRecordStatus.PROCESSING


class PayoutFailureEventFactory(factory.django.DjangoModelFactory):
    """Factory for creating PayoutFailureEvent instances."""

    class Meta:
        model = PayoutFailureEvent

    merchant_account = factory.SubFactory(MerchantAccountFactory)
    merchant = factory.SelfAttribute("merchant_account.merchant")
    processor_event_id = factory.Sequence(lambda n: f"evt_payout_{n:06d}")
    payout_id = factory.Sequence(lambda n: f"po_test_{n:06d}")
    amount_cents = 15000
    currency = "usd"
    failure_code = "insufficient_funds"
    failure_message = "The bank account has insufficient funds."
    escalation_level = EscalationLevel.INTERNAL_NOTIFIED


class WebhookEventFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating WebhookEvent instances.

    The payload mirrors Stripe's event envelope; pass ``data_object`` to
    set ``payload["data"]["object"]``.
    """

    class Meta:
        model = WebhookEvent

    processor_event_id = factory.Sequence(lambda n: f"evt_test_{n:06d}")
    event_type = "payout.failed"
    connected_account_id = ""
    payload = factory.LazyAttribute(
        lambda o: {
            "id": o.processor_event_id,
            "type": o.event_type,
            "account": o.connected_account_id or None,
            "data": {"object": o.data_object},
        }
    )
    status = WebhookEventStatus.PENDING

    class Params:
        data_object = factory.LazyFunction(dict)
