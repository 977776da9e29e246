"""
Payment adapters for external services.

All Stripe API calls go through one StripeAdapter instance. The payments
app builds it once at startup (PaymentsConfig.ready) and services receive
it through their constructors.

Usage:
    from payments.adapters import get_stripe_adapter
    from payments.services.refunds import RefundOrchestrator

    orchestrator = RefundOrchestrator(adapter=get_stripe_adapter())
"""

from __future__ import annotations

from payments.adapters.stripe_adapter import (
    AccountResult,
    AccountSessionResult,
    BalanceResult,
    CheckoutLineItem,
    CheckoutSessionResult,
    CreateAccountParams,
    CreateCheckoutSessionParams,
    IdempotencyKeyGenerator,
    PaymentIntentResult,
    PayoutSchedule,
    RefundResult,
    StripeAdapter,
    backoff_delay,
    is_retryable_stripe_error,
)

_adapter: StripeAdapter | None = None


def get_stripe_adapter() -> StripeAdapter:
    """Return the process-wide adapter, building it from settings on first use."""
    global _adapter
    if _adapter is None:
        _adapter = StripeAdapter.from_settings()
    return _adapter


def set_stripe_adapter(adapter: StripeAdapter | None) -> None:
    """Install (or clear, with None) the process-wide adapter."""
    global _adapter
    _adapter = adapter


__all__ = [
    "AccountResult",
    "AccountSessionResult",
    "BalanceResult",
    "CheckoutLineItem",
    "CheckoutSessionResult",
    "CreateAccountParams",
    "CreateCheckoutSessionParams",
    "IdempotencyKeyGenerator",
    "PaymentIntentResult",
    "PayoutSchedule",
    "RefundResult",
    "StripeAdapter",
    "backoff_delay",
    "get_stripe_adapter",
    "is_retryable_stripe_error",
    "set_stripe_adapter",
]
