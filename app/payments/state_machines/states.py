"""
State enums for settlement models.

These are Django TextChoices for database storage and admin integration.
Allowed transitions are enforced by guarded methods on the models
(``PaymentRecord.mark_completed()`` and friends), not by a library.

State Machines Overview:

MerchantAccount Status (derived from processor state on every sync):
    pending ⇄ active ⇄ restricted

PaymentRecord Status:
    open → completed
    open → failed

RefundRecord Status:
    processing → completed
    processing → failed

WebhookEvent Status:
    pending → processing → processed
    pending → processing → failed → processing (retry)
"""

from django.db import models


class MerchantAccountStatus(models.TextChoices):
    """
    Status of a merchant's connected settlement account.

    Derivation (see MerchantAccount.derive_status):
        RESTRICTED: the processor reports a disabled reason
        ACTIVE: charges are enabled
        PENDING: anything else (onboarding incomplete)
    """

    PENDING = "pending", "Pending"
    ACTIVE = "active", "Active"
    RESTRICTED = "restricted", "Restricted"


class PaymentIssue(models.TextChoices):
    """Outstanding settlement problem recorded on a merchant account."""

    NONE = "", "None"
    BANK_PROBLEM = "bank_problem", "Bank problem"


class PaymentRecordStatus(models.TextChoices):
    """
    Status of a checkout payment record.

    Terminal states: COMPLETED, FAILED. A terminal record is never modified.
    """

    OPEN = "open", "Open"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class RefundRecordStatus(models.TextChoices):
    """
    Status of a refund attempt.

    State Flow:
        PROCESSING → COMPLETED (reversing or fallback refund succeeded)
        PROCESSING → FAILED (fatal processor error, manual follow-up)
    """

    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class EscalationLevel(models.TextChoices):
    """
    How far a payout failure was escalated.

    Fixed when the PayoutFailureEvent is written:
        AGENCY_NOTIFIED: merchant was told, support could not be reached
        INTERNAL_NOTIFIED: merchant and support were told
        FLAGGED_FOR_REVIEW: non-transient bank problem, account flagged and
            the finance team escalated
    """

    AGENCY_NOTIFIED = "agency_notified", "Agency notified"
    INTERNAL_NOTIFIED = "internal_notified", "Internal notified"
    FLAGGED_FOR_REVIEW = "flagged_for_review", "Flagged for review"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"
