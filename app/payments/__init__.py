"""
Payments app: settlement between the platform and its merchants.

This app handles:
- Connected settlement account provisioning and sync (Stripe Connect)
- Destination-charge checkout sessions with a frozen fee breakdown
- Refunds that claw back from the merchant, or fall back to the platform
- Webhook reconciliation (payout failures, account updates, checkout results)

Related apps:
    - merchants: Merchant profiles used to prefill connected accounts

Usage:
    from payments.adapters import get_stripe_adapter
    from payments.services.refunds import RefundOrchestrator
    from payments.types import RefundRequest

    record = RefundOrchestrator(get_stripe_adapter()).refund(
        RefundRequest(payment_intent_id="pi_123", amount_cents=5000)
    )
"""
