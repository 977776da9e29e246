"""
Webhook endpoint view for Stripe.

The view verifies, records and processes the event in the request, and
answers with a status Stripe understands:

    200  Event processed, skipped as a duplicate, or left for the retry task
    400  Missing/invalid/stale signature, or an event without id or type
    500  A handler raised; Stripe redelivers later

Usage:
    # In urls.py
    from payments.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.adapters import get_stripe_adapter
from payments.exceptions import InvalidWebhookSignatureError, PaymentValidationError
from payments.webhooks.reconciler import WebhookReconciler

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive a Stripe webhook event.

    Security:
    - Signature verification (with timestamp tolerance) prevents spoofed
      and replayed webhooks
    - CSRF exemption required for external webhooks
    - Only POST requests accepted

    Example Stripe-Signature header:
        t=1614556800,v1=xxx,v0=yyy
    """
    reconciler = WebhookReconciler(get_stripe_adapter())

    try:
        webhook_event = reconciler.handle(request.body, request.headers.get("Stripe-Signature"))
    except InvalidWebhookSignatureError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error": e.message},
        )
        return HttpResponse("Invalid signature", status=400)
    except PaymentValidationError as e:
        logger.warning("Webhook missing required fields", extra={"error": e.message})
        return HttpResponse("Invalid event", status=400)
    except Exception as e:
        logger.error(
            f"Webhook processing failed: {type(e).__name__}",
            exc_info=True,
        )
        return HttpResponse("Processing error", status=500)

    return HttpResponse(webhook_event.status, status=200)
