"""
Notification gateway for settlement events.

Services depend on the NotificationGateway protocol. The default
EmailNotificationGateway queues the send_notification_email Celery task
once the surrounding transaction commits, so a rolled-back webhook never
emails anyone.

Recipients (settings):
    SUPPORT_EMAIL: Support channel for every payout failure
    FINANCE_TEAM_EMAIL: Team queue for escalations (bank problems,
        failed fallback refunds, platform payout failures)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from django.conf import settings
from django.db import transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayoutFailureNotice:
    """What a payout failure notification says."""

    payout_id: str
    amount_cents: int
    currency: str
    failure_code: str
    failure_message: str
    merchant_id: str | None = None
    merchant_name: str | None = None
    processor_account_id: str | None = None

    @property
    def amount_display(self) -> str:
        return f"{self.amount_cents / 100:.2f} {self.currency.upper()}"


class NotificationGateway(Protocol):
    def notify_merchant_payout_failed(self, recipient: str, notice: PayoutFailureNotice) -> None: ...

    def notify_support_payout_failed(self, notice: PayoutFailureNotice) -> None: ...

    def escalate_to_team(self, subject: str, message: str, context: dict[str, Any]) -> None: ...


class EmailNotificationGateway:
    """Sends settlement notifications by email through Celery."""

    def notify_merchant_payout_failed(self, recipient: str, notice: PayoutFailureNotice) -> None:
        body = (
            f"Hello {notice.merchant_name or ''},\n\n"
            f"A payout of {notice.amount_display} to your bank account could not be completed.\n"
            f"Payout: {notice.payout_id}\n"
            f"Reason: {notice.failure_message or notice.failure_code}\n\n"
            "Please review your bank details. Our support team has been notified."
        )
        self._queue([recipient], "Your payout could not be completed", body)

    def notify_support_payout_failed(self, notice: PayoutFailureNotice) -> None:
        body = (
            f"Payout {notice.payout_id} failed.\n"
            f"Merchant: {notice.merchant_name} ({notice.merchant_id})\n"
            f"Account: {notice.processor_account_id}\n"
            f"Amount: {notice.amount_display}\n"
            f"Code: {notice.failure_code}\n"
            f"Message: {notice.failure_message}"
        )
        self._queue([settings.SUPPORT_EMAIL], f"Payout failed: {notice.payout_id}", body)

    def escalate_to_team(self, subject: str, message: str, context: dict[str, Any]) -> None:
        details = "\n".join(f"{key}: {value}" for key, value in sorted(context.items()))
        self._queue([settings.FINANCE_TEAM_EMAIL], f"[Escalation] {subject}", f"{message}\n\n{details}")

    @staticmethod
    def _queue(recipients: list[str], subject: str, body: str) -> None:
        from payments.tasks import send_notification_email

        recipients = [r for r in recipients if r]
        if not recipients:
            logger.warning("Notification dropped, no recipient configured", extra={"subject": subject})
            return
        transaction.on_commit(
            lambda: send_notification_email.delay(recipients=recipients, subject=subject, body=body)
        )
