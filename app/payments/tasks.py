"""
Celery tasks for settlement processing.

This module provides async tasks for:
- Sending notification emails queued by the notification gateway
- Reprocessing stored webhook events
- Retrying failed webhook events
- Periodic cleanup of old/stuck events
- Resyncing stale merchant accounts

Usage:
    from payments.tasks import send_notification_email

    # Queue an email (normally done by EmailNotificationGateway on commit)
    send_notification_email.delay(recipients=["ops@example.com"], subject="...", body="...")

    # Periodic tasks are scheduled in CELERY_BEAT_SCHEDULE
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail
from django.utils import timezone

from payments.models import WebhookEvent
from payments.models.webhook_event import MAX_WEBHOOK_ATTEMPTS
from payments.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

STUCK_PROCESSING_THRESHOLD_MINUTES = 30
MAX_EMAIL_RETRIES = 5


# =============================================================================
# Notification Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(OSError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_kwargs={"max_retries": MAX_EMAIL_RETRIES},
)
def send_notification_email(self, recipients: list[str], subject: str, body: str) -> dict:
    """
    Send one notification email.

    SMTP and connection errors (OSError) are retried with backoff.
    """
    sent = send_mail(
        subject=subject,
        message=body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=recipients,
    )
    logger.info(
        "Notification email sent",
        extra={"subject": subject, "recipient_count": len(recipients), "sent": sent},
    )
    return {"sent": sent}


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(bind=True, acks_late=True)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Reprocess a stored Stripe webhook event.

    Args:
        webhook_event_id: UUID of the WebhookEvent to process

    Returns:
        Dict with processing result status
    """
    from payments.adapters import get_stripe_adapter
    from payments.webhooks.reconciler import WebhookReconciler

    if isinstance(webhook_event_id, str):
        webhook_event_id = UUID(webhook_event_id)

    if not WebhookEvent.objects.filter(id=webhook_event_id).exists():
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    webhook_event = WebhookReconciler(get_stripe_adapter()).process(webhook_event_id)
    return {
        "status": webhook_event.status,
        "webhook_event_id": str(webhook_event_id),
        "processor_event_id": webhook_event.processor_event_id,
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Periodic task to retry failed webhook events.

    Finds failed webhooks that haven't exhausted their attempts and
    re-queues them for processing.

    Returns:
        Dict with count of webhooks queued for retry
    """
    failed_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retry_count__lt=MAX_WEBHOOK_ATTEMPTS,
    ).order_by("created_at")[:100]

    queued_count = 0
    for webhook in failed_webhooks:
        process_webhook_event.delay(str(webhook.id))
        queued_count += 1
        logger.info(
            "Queued failed webhook for retry",
            extra={
                "webhook_event_id": str(webhook.id),
                "processor_event_id": webhook.processor_event_id,
                "retry_count": webhook.retry_count,
            },
        )

    logger.info(
        f"Queued {queued_count} failed webhooks for retry",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """
    Periodic task to reset stuck webhooks.

    Finds webhooks that have been in PROCESSING status for too long
    and resets them to FAILED so they can be retried. This covers a
    request or worker that died mid-dispatch.
    """
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)
    stuck_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    )

    reset_count = 0
    for webhook in stuck_webhooks:
        stuck_since = webhook.updated_at
        webhook.mark_failed("Processing timed out - reset for retry")
        webhook.save()
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={
                "webhook_event_id": str(webhook.id),
                "processor_event_id": webhook.processor_event_id,
                "stuck_since": stuck_since.isoformat(),
            },
        )

    return {"reset_count": reset_count}


@shared_task
def cleanup_old_webhooks(days: int = 90) -> dict:
    """
    Periodic task to clean up old processed webhook events.

    Only PROCESSED events are removed; failed ones stay for debugging.
    """
    cutoff = timezone.now() - timedelta(days=days)
    deleted_count, _ = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSED,
        processed_at__lt=cutoff,
    ).delete()

    if deleted_count > 0:
        logger.info(
            f"Deleted {deleted_count} old webhook events",
            extra={"deleted_count": deleted_count, "cutoff_date": cutoff.isoformat()},
        )
    return {"deleted_count": deleted_count}


# =============================================================================
# Merchant Account Tasks
# =============================================================================


@shared_task
def sync_stale_merchant_accounts(limit: int = 100) -> dict:
    """Resync connected accounts whose stored state has gone stale."""
    from payments.adapters import get_stripe_adapter
    from payments.services.account_sync import AccountSyncService

    return AccountSyncService(get_stripe_adapter()).sync_stale_accounts(limit=limit)
