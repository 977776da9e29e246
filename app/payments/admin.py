"""
Payment admin configuration.

Registers the settlement models with the Django admin. State changes go
through the services and webhooks; most fields here are read-only.
"""

from django.contrib import admin

from payments.models import (
    MerchantAccount,
    PaymentRecord,
    PayoutFailureEvent,
    RefundRecord,
    WebhookEvent,
)
from payments.state_machines import WebhookEventStatus

__all__ = [
    "MerchantAccountAdmin",
    "PaymentRecordAdmin",
    "RefundRecordAdmin",
    "PayoutFailureEventAdmin",
    "WebhookEventAdmin",
]


@admin.register(MerchantAccount)
class MerchantAccountAdmin(admin.ModelAdmin):
    """
    Admin configuration for MerchantAccount.

    Provides visibility into Stripe Connect account status and lets support
    clear the review flag once a bank problem is fixed.
    """

    list_display = [
        "id",
        "merchant",
        "processor_account_id",
        "status",
        "charges_enabled",
        "payouts_enabled",
        "requires_review",
        "last_sync_at",
    ]
    list_filter = ["status", "charges_enabled", "payouts_enabled", "requires_review", "country"]
    search_fields = ["id", "processor_account_id", "merchant__name", "merchant__contact_email"]
    readonly_fields = [
        "id",
        "merchant",
        "processor_account_id",
        "status",
        "charges_enabled",
        "payouts_enabled",
        "details_submitted",
        "requirements_currently_due",
        "requirements_past_due",
        "requirements_eventually_due",
        "disabled_reason",
        "country",
        "business_type",
        "bank_account_last4",
        "bank_name",
        "payout_currency",
        "last_sync_at",
        "created_at",
        "updated_at",
        "version",
    ]
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "merchant", "processor_account_id", "country", "business_type"),
            },
        ),
        (
            "Status",
            {
                "fields": (
                    "status",
                    "charges_enabled",
                    "payouts_enabled",
                    "details_submitted",
                    "disabled_reason",
                ),
            },
        ),
        (
            "Requirements",
            {
                "fields": (
                    "requirements_currently_due",
                    "requirements_past_due",
                    "requirements_eventually_due",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Bank Account",
            {
                "fields": ("bank_account_last4", "bank_name", "payout_currency"),
            },
        ),
        (
            "Review",
            {
                "fields": ("requires_review", "payment_issue"),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("last_sync_at", "created_at", "updated_at", "version"),
            },
        ),
    )


@admin.register(PaymentRecord)
class PaymentRecordAdmin(admin.ModelAdmin):
    """
    Admin configuration for PaymentRecord.

    The fee breakdown is frozen at creation and never editable.
    """

    list_display = [
        "id",
        "booking_id",
        "merchant",
        "total_amount_cents",
        "currency",
        "status",
        "created_at",
    ]
    list_filter = ["status", "currency", "created_at"]
    search_fields = ["id", "booking_id", "session_id", "payment_intent_id", "payer_email"]
    readonly_fields = [
        "id",
        "booking_id",
        "merchant",
        "merchant_account",
        "session_id",
        "payment_intent_id",
        "base_amount_cents",
        "platform_fee_cents",
        "commission_cents",
        "tax_cents",
        "total_amount_cents",
        "processor_fee_estimate_cents",
        "application_fee_cents",
        "currency",
        "status",
        "payer_email",
        "payer_name",
        "completed_at",
        "failed_at",
        "failure_reason",
        "created_at",
        "updated_at",
    ]
    exclude = ["client_secret"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(RefundRecord)
class RefundRecordAdmin(admin.ModelAdmin):
    """Admin configuration for RefundRecord (read-only audit)."""

    list_display = [
        "id",
        "payment_intent_id",
        "requested_amount_cents",
        "currency",
        "status",
        "used_fallback",
        "created_at",
    ]
    list_filter = ["status", "used_fallback", "currency", "created_at"]
    search_fields = ["id", "payment_intent_id", "processor_refund_id"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(PayoutFailureEvent)
class PayoutFailureEventAdmin(admin.ModelAdmin):
    """Admin configuration for PayoutFailureEvent (append-only)."""

    list_display = [
        "id",
        "payout_id",
        "merchant",
        "amount_cents",
        "currency",
        "failure_code",
        "escalation_level",
        "created_at",
    ]
    list_filter = ["escalation_level", "failure_code", "created_at"]
    search_fields = ["id", "payout_id", "processor_event_id", "merchant__name"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Provides visibility into webhook processing status.
    Webhook events are immutable once received.
    """

    list_display = [
        "id",
        "processor_event_id",
        "event_type",
        "connected_account_id",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "processor_event_id", "event_type", "connected_account_id"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "processor_event_id",
        "event_type",
        "connected_account_id",
        "payload",
        "processed_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["retry_events"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "processor_event_id", "event_type", "connected_account_id", "status"),
            },
        ),
        (
            "Processing",
            {
                "fields": ("processed_at", "retry_count"),
            },
        ),
        (
            "Error Info",
            {
                "fields": ("error_message",),
                "classes": ("collapse",),
            },
        ),
        (
            "Payload",
            {
                "fields": ("payload",),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    @admin.action(description="Queue selected failed events for reprocessing")
    def retry_events(self, request, queryset):
        from payments.tasks import process_webhook_event

        failed = queryset.filter(status=WebhookEventStatus.FAILED)
        for webhook_event in failed:
            process_webhook_event.delay(str(webhook_event.id))
        self.message_user(request, f"Queued {failed.count()} event(s) for reprocessing.")

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for webhook events (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        """Disable adding webhook events through admin."""
        return False
