"""
Webhook event handlers for Stripe events.

This module provides a handler registry and the handlers for the events
the settlement subsystem reacts to:

    payout.failed                              Record, notify, flag bank problems
    account.updated                            Refresh the stored account
    account.application.deauthorized           Mark the account restricted
    checkout.session.completed                 Complete the PaymentRecord when paid
    checkout.session.async_payment_succeeded   Complete a delayed payment
    checkout.session.async_payment_failed      Fail a delayed payment
    checkout.session.expired                   Fail the PaymentRecord
    payment_intent.payment_failed              Note a declined attempt (record stays open)

Unknown event types are accepted and ignored.

Handlers run inside the reconciler's transaction. Returning a failed
ServiceResult marks the event failed for a later retry; raising rolls the
handler's writes back.

Usage:
    from payments.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event, context) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event, context)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.conf import settings

from core.services import ServiceResult

from payments.adapters.stripe_adapter import AccountResult
from payments.models import PaymentRecord, PayoutFailureEvent, WebhookEvent
from payments.services.account_sync import AccountSyncService
from payments.services.notifications import PayoutFailureNotice
from payments.state_machines import EscalationLevel, PaymentIssue
from payments.stores import MerchantAccountStore

if TYPE_CHECKING:
    from payments.adapters.stripe_adapter import StripeAdapter
    from payments.services.notifications import NotificationGateway


logger = logging.getLogger(__name__)


@dataclass
class HandlerContext:
    """Collaborators handed to every handler."""

    adapter: StripeAdapter
    notifier: NotificationGateway


# =============================================================================
# Handler Registry
# =============================================================================


WebhookHandler = Callable[[WebhookEvent, HandlerContext], ServiceResult]

# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, WebhookHandler] = {}


def register_handler(event_type: str) -> Callable[[WebhookHandler], WebhookHandler]:
    """
    Decorator to register a webhook event handler.

    Args:
        event_type: The Stripe event type (e.g., "payout.failed")
    """

    def decorator(func: WebhookHandler) -> WebhookHandler:
        WEBHOOK_HANDLERS[event_type] = func
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent, context: HandlerContext) -> ServiceResult:
    """
    Dispatch a webhook event to its handler.

    Returns success when no handler is registered, so new Stripe event
    types never fail delivery.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"processor_event_id": webhook_event.processor_event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"processor_event_id": webhook_event.processor_event_id},
    )
    return handler(webhook_event, context)


# =============================================================================
# Payout Handlers
# =============================================================================


@register_handler("payout.failed")
def handle_payout_failed(webhook_event: WebhookEvent, context: HandlerContext) -> ServiceResult:
    """
    Handle a failed payout to a merchant's bank account.

    1. Resolve the merchant from the connected account on the event
    2. Persist a PayoutFailureEvent (once per event id)
    3. Notify the merchant's contact address
    4. Notify support
    5. For non-transient bank codes, flag the account for review and
       escalate to the finance team

    A failed payout from the platform's own account has no merchant; it is
    logged at CRITICAL and escalated only.
    """
    payout = webhook_event.data_object
    account_id = webhook_event.connected_account_id
    notice = PayoutFailureNotice(
        payout_id=payout.get("id") or "",
        amount_cents=payout.get("amount") or 0,
        currency=payout.get("currency") or "",
        failure_code=payout.get("failure_code") or "",
        failure_message=payout.get("failure_message") or "",
        processor_account_id=account_id or None,
    )
    log_context = {
        "processor_event_id": webhook_event.processor_event_id,
        "payout_id": notice.payout_id,
        "processor_account_id": account_id,
        "failure_code": notice.failure_code,
    }

    if not account_id:
        logger.critical("Platform payout failed", extra=log_context)
        context.notifier.escalate_to_team(
            "Platform payout failed",
            f"Payout {notice.payout_id} of {notice.amount_display} from the platform account failed.",
            {**log_context, "failure_message": notice.failure_message},
        )
        return ServiceResult.success({"escalation_level": None})

    account = MerchantAccountStore.get_by_processor_account_id(account_id)
    if account is None:
        logger.error("Payout failure for unknown connected account", extra=log_context)
        return ServiceResult.failure(
            f"No merchant account for {account_id}",
            error_code="MERCHANT_ACCOUNT_NOT_FOUND",
        )

    if PayoutFailureEvent.objects.filter(processor_event_id=webhook_event.processor_event_id).exists():
        logger.info("Payout failure already recorded", extra=log_context)
        return ServiceResult.success({"duplicate": True})

    merchant = account.merchant
    notice = PayoutFailureNotice(
        payout_id=notice.payout_id,
        amount_cents=notice.amount_cents,
        currency=notice.currency,
        failure_code=notice.failure_code,
        failure_message=notice.failure_message,
        merchant_id=str(merchant.id),
        merchant_name=merchant.name,
        processor_account_id=account_id,
    )
    non_transient = PayoutFailureEvent.is_non_transient(notice.failure_code)

    escalation = EscalationLevel.AGENCY_NOTIFIED
    if settings.SUPPORT_EMAIL:
        escalation = EscalationLevel.INTERNAL_NOTIFIED
    if non_transient:
        escalation = EscalationLevel.FLAGGED_FOR_REVIEW

    failure = PayoutFailureEvent.objects.create(
        processor_event_id=webhook_event.processor_event_id,
        payout_id=notice.payout_id,
        merchant=merchant,
        merchant_account=account,
        amount_cents=notice.amount_cents,
        currency=notice.currency,
        failure_code=notice.failure_code,
        failure_message=notice.failure_message,
        escalation_level=escalation,
    )

    if merchant.contact_email:
        context.notifier.notify_merchant_payout_failed(merchant.contact_email, notice)
    else:
        logger.warning("Merchant has no contact email for payout failure", extra=log_context)
    context.notifier.notify_support_payout_failed(notice)

    if non_transient:
        MerchantAccountStore.mark_requires_review(account, PaymentIssue.BANK_PROBLEM)
        context.notifier.escalate_to_team(
            "Merchant bank problem",
            f"Payout {notice.payout_id} to {merchant.name} failed with a non-transient bank error.",
            {**log_context, "merchant_id": str(merchant.id), "failure_message": notice.failure_message},
        )

    logger.info(
        "Payout failure recorded",
        extra={**log_context, "merchant_id": str(merchant.id), "escalation_level": escalation},
    )
    return ServiceResult.success({"payout_failure_id": str(failure.id), "escalation_level": escalation})


# =============================================================================
# Account Handlers
# =============================================================================


@register_handler("account.updated")
def handle_account_updated(webhook_event: WebhookEvent, context: HandlerContext) -> ServiceResult:
    """Store the account state carried in the event."""
    data = webhook_event.data_object
    account = MerchantAccountStore.get_by_processor_account_id(data.get("id") or "")
    if account is None:
        logger.info(
            "account.updated for an account we do not track",
            extra={"processor_event_id": webhook_event.processor_event_id, "processor_account_id": data.get("id")},
        )
        return ServiceResult.success(None)

    account = AccountSyncService(context.adapter).apply(account, AccountResult.from_stripe(data))
    return ServiceResult.success({"status": account.status})


@register_handler("account.application.deauthorized")
def handle_account_deauthorized(webhook_event: WebhookEvent, context: HandlerContext) -> ServiceResult:
    """The merchant disconnected the platform; the account can no longer be charged."""
    account = MerchantAccountStore.get_by_processor_account_id(webhook_event.connected_account_id)
    if account is None:
        return ServiceResult.success(None)

    MerchantAccountStore.mark_restricted(account, "deauthorized")
    logger.warning(
        "Merchant account deauthorized",
        extra={
            "processor_event_id": webhook_event.processor_event_id,
            "processor_account_id": account.processor_account_id,
            "merchant_id": str(account.merchant_id),
        },
    )
    return ServiceResult.success({"status": account.status})


# =============================================================================
# Checkout Handlers
# =============================================================================


def _find_payment_record(session: dict) -> PaymentRecord | None:
    record = PaymentRecord.objects.filter(session_id=session.get("id") or "").first()
    if record is None and session.get("payment_intent"):
        record = PaymentRecord.objects.filter(payment_intent_id=session["payment_intent"]).first()
    return record


def _is_ours(data: dict) -> bool:
    return bool((data.get("metadata") or {}).get("payment_record_id"))


@register_handler("checkout.session.completed")
def handle_checkout_completed(webhook_event: WebhookEvent, context: HandlerContext) -> ServiceResult:
    """Mark the PaymentRecord completed and store its PaymentIntent id."""
    session = webhook_event.data_object
    record = _find_payment_record(session)
    if record is None:
        if not _is_ours(session):
            return ServiceResult.success(None)
        logger.error(
            "PaymentRecord not found for completed session",
            extra={"processor_event_id": webhook_event.processor_event_id, "session_id": session.get("id")},
        )
        return ServiceResult.failure(
            "PaymentRecord not found for session",
            error_code="PAYMENT_RECORD_NOT_FOUND",
        )

    if record.is_terminal:
        logger.info(
            "PaymentRecord already terminal, ignoring completion",
            extra={"payment_record_id": str(record.id), "status": record.status},
        )
        return ServiceResult.success({"status": record.status})

    if session.get("payment_status") not in ("paid", "no_payment_required"):
        # Delayed payment methods settle through the async_payment events
        return ServiceResult.success({"status": record.status})

    return _complete(record, session)


def _complete(record: PaymentRecord, session: dict) -> ServiceResult:
    record.mark_completed(payment_intent_id=session.get("payment_intent") or "")
    record.save()
    logger.info(
        "Payment completed",
        extra={
            "payment_record_id": str(record.id),
            "payment_intent_id": record.payment_intent_id,
            "booking_id": record.booking_id,
        },
    )
    return ServiceResult.success({"status": record.status})


def _fail(record: PaymentRecord, reason: str) -> ServiceResult:
    record.mark_failed(reason)
    record.save()
    logger.info(
        "Payment failed",
        extra={"payment_record_id": str(record.id), "reason": reason},
    )
    return ServiceResult.success({"status": record.status})


@register_handler("checkout.session.async_payment_succeeded")
def handle_async_payment_succeeded(webhook_event: WebhookEvent, context: HandlerContext) -> ServiceResult:
    """Complete a record whose delayed payment method has settled."""
    session = webhook_event.data_object
    record = _find_payment_record(session)
    if record is None or record.is_terminal:
        return ServiceResult.success(None)
    return _complete(record, session)


@register_handler("checkout.session.async_payment_failed")
def handle_async_payment_failed(webhook_event: WebhookEvent, context: HandlerContext) -> ServiceResult:
    session = webhook_event.data_object
    record = _find_payment_record(session)
    if record is None or record.is_terminal:
        return ServiceResult.success(None)

    if session.get("payment_intent"):
        record.payment_intent_id = session["payment_intent"]
    return _fail(record, "Delayed payment failed")


@register_handler("checkout.session.expired")
def handle_checkout_expired(webhook_event: WebhookEvent, context: HandlerContext) -> ServiceResult:
    record = _find_payment_record(webhook_event.data_object)
    if record is None or record.is_terminal:
        return ServiceResult.success(None)
    return _fail(record, "Checkout session expired")


@register_handler("payment_intent.payment_failed")
def handle_payment_failed(webhook_event: WebhookEvent, context: HandlerContext) -> ServiceResult:
    """
    Note a declined attempt on the record.

    The hosted session stays open after a decline so the payer can try
    again. The record fails only when the session expires or its delayed
    payment fails.
    """
    intent = webhook_event.data_object
    record = PaymentRecord.objects.filter(payment_intent_id=intent.get("id") or "").first()
    if record is None:
        record_id = (intent.get("metadata") or {}).get("payment_record_id")
        if record_id:
            record = PaymentRecord.objects.filter(id=record_id).first()
    if record is None or record.is_terminal:
        return ServiceResult.success(None)

    error = intent.get("last_payment_error") or {}
    record.record_declined_attempt(
        payment_intent_id=intent.get("id") or "",
        reason=error.get("message") or "Payment failed",
    )
    record.save()
    logger.info(
        "Payment attempt declined, session still open",
        extra={"payment_record_id": str(record.id), "payment_intent_id": record.payment_intent_id},
    )
    return ServiceResult.success({"status": record.status})
