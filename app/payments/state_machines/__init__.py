"""
State enums for settlement models.
"""

from payments.state_machines.states import (
    EscalationLevel,
    MerchantAccountStatus,
    PaymentIssue,
    PaymentRecordStatus,
    RefundRecordStatus,
    WebhookEventStatus,
)

__all__ = [
    "EscalationLevel",
    "MerchantAccountStatus",
    "PaymentIssue",
    "PaymentRecordStatus",
    "RefundRecordStatus",
    "WebhookEventStatus",
]
