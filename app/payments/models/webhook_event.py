"""
WebhookEvent model: the processed-event-id store for Stripe webhooks.

Every verified webhook is recorded here before any side effect runs. The
unique processor_event_id lets WebhookReconciler detect redeliveries and
skip them, so a payout failure delivered twice notifies the merchant once.

Usage:
    from payments.models import WebhookEvent

    event, created = WebhookEvent.objects.get_or_create(
        processor_event_id="evt_1234567890",
        defaults={"event_type": "payout.failed", "payload": payload},
    )
    if event.is_processed:
        return  # redelivery
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import WebhookEventStatus

MAX_WEBHOOK_ATTEMPTS = 5


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks Stripe webhook events for idempotent processing.

    Processing Flow:
        1. Webhook arrives, signature verified
        2. Insert/get WebhookEvent with processor_event_id
        3. If PROCESSED -> duplicate, nothing to do
        4. Set status to PROCESSING, dispatch to handler
        5. Set status to PROCESSED or FAILED
        6. FAILED events are retried by a periodic task

    Fields:
        processor_event_id: Unique Stripe Event ID (evt_xxx)
        event_type: Type of webhook event
        connected_account_id: Stripe account the event came from, if any
        payload: Full JSON payload from Stripe
        status: Processing status
        processed_at: When event was successfully processed
        error_message: Error details if processing failed
        retry_count: Number of processing attempts
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    processor_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Stripe event type (e.g., 'payout.failed')",
    )

    connected_account_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Connected account (acct_xxx) the event originated from",
    )

    # ==========================================================================
    # Payload
    # ==========================================================================

    payload = models.JSONField(
        help_text="Full webhook payload from Stripe (JSON)",
    )

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
        help_text="Current processing status",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When event was successfully processed",
    )

    error_message = models.TextField(
        blank=True,
        default="",
        help_text="Error message if processing failed",
    )

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"]),
            models.Index(fields=["event_type", "created_at"]),
            models.Index(fields=["status", "retry_count"]),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.processor_event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def is_failed(self) -> bool:
        return self.status == WebhookEventStatus.FAILED

    @property
    def can_retry(self) -> bool:
        """Check if event can be retried (failed with attempts left)."""
        return self.is_failed and self.retry_count < MAX_WEBHOOK_ATTEMPTS

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    def mark_processing(self) -> None:
        """
        Mark event as being processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        """
        Mark event as successfully processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = ""

    def mark_failed(self, error_message: str) -> None:
        """
        Mark event as failed with error message.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message

    @property
    def data_object(self) -> dict:
        """The event's ``data.object`` payload, or an empty dict."""
        data = (self.payload or {}).get("data") or {}
        return data.get("object") or {}

    def get_object_id(self) -> str | None:
        return self.data_object.get("id")
