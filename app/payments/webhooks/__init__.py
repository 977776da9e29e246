"""
Webhook handling for settlement events from Stripe.

Webhooks are verified, stored idempotently by event id, and processed
in the request by WebhookReconciler. Failed events are retried by the
retry_failed_webhooks Celery task.

Usage:
    # In urls.py
    from payments.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from payments.webhooks.handlers import HandlerContext, dispatch_webhook, register_handler
from payments.webhooks.reconciler import WebhookReconciler
from payments.webhooks.views import stripe_webhook

__all__ = [
    "HandlerContext",
    "WebhookReconciler",
    "dispatch_webhook",
    "register_handler",
    "stripe_webhook",
]
