"""
WebhookReconciler: verify, deduplicate and dispatch Stripe webhooks.

Processing is synchronous so the HTTP status reflects the outcome:
Stripe redelivers anything that did not get a 2xx. The WebhookEvent table
is the processed-event-id store; a redelivered event that was already
processed returns without touching any handler.

Flow:
    1. Verify the signature (InvalidWebhookSignatureError -> 400)
    2. get_or_create the WebhookEvent by processor event id
    3. Lock the row, skip it if processed or being processed
    4. Dispatch inside a savepoint
    5. Mark processed, or mark failed and re-raise

Usage:
    from payments.webhooks.reconciler import WebhookReconciler

    reconciler = WebhookReconciler(get_stripe_adapter())
    event = reconciler.handle(request.body, request.headers.get("Stripe-Signature"))
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from django.db import transaction

from core.services import BaseService

from payments.exceptions import PaymentValidationError
from payments.models import WebhookEvent
from payments.services.notifications import EmailNotificationGateway
from payments.state_machines import WebhookEventStatus
from payments.webhooks.handlers import HandlerContext, dispatch_webhook

if TYPE_CHECKING:
    import uuid

    from payments.adapters.stripe_adapter import StripeAdapter
    from payments.services.notifications import NotificationGateway


class WebhookReconciler(BaseService):
    """Turns verified Stripe events into local state changes exactly once."""

    def __init__(self, adapter: StripeAdapter, notifier: NotificationGateway | None = None):
        self.adapter = adapter
        self.context = HandlerContext(
            adapter=adapter,
            notifier=notifier or EmailNotificationGateway(),
        )

    def handle(self, payload: bytes | str, signature: str | None) -> WebhookEvent:
        """
        Verify and process one webhook delivery.

        Raises:
            InvalidWebhookSignatureError: Signature missing, invalid or stale
            PaymentValidationError: Event has no id or type
            Exception: Whatever the handler raised (event marked failed)
        """
        logger = self.get_logger()
        event_data = self.adapter.verify_webhook_signature(payload, signature)
        webhook_event = self.record(event_data)

        if webhook_event.is_processed:
            logger.info(
                "Webhook already processed, skipping",
                extra={"processor_event_id": webhook_event.processor_event_id},
            )
            return webhook_event

        return self.process(webhook_event.pk)

    def record(self, event_data: dict[str, Any]) -> WebhookEvent:
        """Store the event, or return the row from an earlier delivery."""
        processor_event_id = event_data.get("id")
        event_type = event_data.get("type")
        if not processor_event_id or not event_type:
            raise PaymentValidationError(
                "Webhook event is missing id or type",
                details={"processor_event_id": processor_event_id, "event_type": event_type},
            )

        webhook_event, created = WebhookEvent.objects.get_or_create(
            processor_event_id=processor_event_id,
            defaults={
                "event_type": event_type,
                "connected_account_id": event_data.get("account") or "",
                "payload": event_data,
                "status": WebhookEventStatus.PENDING,
            },
        )
        self.get_logger().info(
            f"Received Stripe webhook: {event_type}",
            extra={
                "processor_event_id": processor_event_id,
                "connected_account_id": webhook_event.connected_account_id,
                "created": created,
            },
        )
        return webhook_event

    def process(self, webhook_event_id: uuid.UUID) -> WebhookEvent:
        """
        Dispatch a stored event to its handler.

        Also used by the retry task for failed events.
        """
        logger = self.get_logger()
        webhook_event, claimed = self._claim(webhook_event_id)
        if not claimed:
            return webhook_event

        log_context = {
            "processor_event_id": webhook_event.processor_event_id,
            "event_type": webhook_event.event_type,
            "attempt": webhook_event.retry_count,
        }
        try:
            with transaction.atomic():
                result = dispatch_webhook(webhook_event, self.context)
                if result.success:
                    webhook_event.mark_processed()
                else:
                    webhook_event.mark_failed(result.error or "Handler failed")
                webhook_event.save()
        except Exception as e:
            webhook_event.mark_failed(f"{type(e).__name__}: {e}")
            webhook_event.save(update_fields=["status", "error_message", "updated_at"])
            logger.error("Webhook handler raised", extra=log_context, exc_info=True)
            raise

        if webhook_event.is_failed:
            logger.warning(
                "Webhook handler failed",
                extra={**log_context, "error": webhook_event.error_message},
            )
        else:
            logger.info("Webhook processed", extra=log_context)
        return webhook_event

    @transaction.atomic
    def _claim(self, webhook_event_id: uuid.UUID) -> tuple[WebhookEvent, bool]:
        """Lock the event and move it to PROCESSING unless another delivery owns it."""
        webhook_event = WebhookEvent.objects.select_for_update().get(pk=webhook_event_id)
        if webhook_event.status in (WebhookEventStatus.PROCESSED, WebhookEventStatus.PROCESSING):
            self.get_logger().info(
                f"Webhook not claimed, status is {webhook_event.status}",
                extra={"processor_event_id": webhook_event.processor_event_id},
            )
            return webhook_event, False

        webhook_event.mark_processing()
        webhook_event.save(update_fields=["status", "retry_count", "updated_at"])
        return webhook_event, True
