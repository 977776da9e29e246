"""
Settlement domain models.

- MerchantAccount: A merchant's Stripe Connect settlement account
- PaymentRecord: Checkout session with its frozen fee breakdown
- RefundRecord: Refund attempt and the path (reversing or fallback) taken
- PayoutFailureEvent: Audit row for a failed merchant payout
- WebhookEvent: Processed-event-id store for Stripe webhooks
- ProvisioningClaim: Single-flight marker for account provisioning
"""

from payments.models.merchant_account import MerchantAccount
from payments.models.payment_record import PaymentRecord
from payments.models.payout_failure import PayoutFailureEvent
from payments.models.provisioning_claim import ProvisioningClaim
from payments.models.refund_record import RefundRecord
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "MerchantAccount",
    "PaymentRecord",
    "PayoutFailureEvent",
    "ProvisioningClaim",
    "RefundRecord",
    "WebhookEvent",
]
