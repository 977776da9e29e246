"""
MerchantAccountSettingsService: onboarding and payout settings for a
merchant's connected account.

Accounts are created with requirement collection owned by the platform, so
merchants clear outstanding requirements through Stripe's embedded
onboarding component. This service starts those sessions and reads or
changes the account's payout schedule.

Usage:
    from payments.adapters import get_stripe_adapter
    from payments.services.account_settings import MerchantAccountSettingsService

    service = MerchantAccountSettingsService(get_stripe_adapter())
    session = service.create_onboarding_session(merchant_id)
    info = service.get_payout_info(merchant_id)
"""

from __future__ import annotations

import calendar
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import TYPE_CHECKING

from django.utils import timezone

from core.services import BaseService

from payments.adapters.stripe_adapter import WEEKDAYS, PayoutSchedule
from payments.exceptions import PaymentNotFoundError
from payments.models import MerchantAccount
from payments.stores import MerchantAccountStore

if TYPE_CHECKING:
    from payments.adapters.stripe_adapter import AccountResult, AccountSessionResult, StripeAdapter


@dataclass(frozen=True)
class PayoutSettings:
    """Payout schedule and destination bank of a connected account."""

    processor_account_id: str
    schedule: PayoutSchedule
    payouts_enabled: bool
    charges_enabled: bool
    bank_account_last4: str = ""
    bank_name: str = ""
    payout_currency: str = ""


@dataclass(frozen=True)
class PayoutInfo:
    """
    Balance and upcoming payout of a connected account.

    Balances are per currency in minor units. next_payout_date is None for
    manual schedules.
    """

    settings: PayoutSettings
    available: dict[str, int] = field(default_factory=dict)
    pending: dict[str, int] = field(default_factory=dict)
    next_payout_date: date | None = None

    @property
    def total(self) -> dict[str, int]:
        return {
            currency: self.available.get(currency, 0) + self.pending.get(currency, 0)
            for currency in {**self.available, **self.pending}
        }


def next_payout_date(schedule: PayoutSchedule, today: date) -> date | None:
    """
    Estimate the next payout date for a schedule.

    The next anchor strictly after today, pushed back by delay_days.
    """
    if schedule.interval == "manual":
        return None

    if schedule.interval == "daily":
        anchor = today + timedelta(days=1)
    elif schedule.interval == "weekly":
        days_ahead = (WEEKDAYS.index(schedule.weekly_anchor) - today.weekday()) % 7 or 7
        anchor = today + timedelta(days=days_ahead)
    else:
        anchor = _next_month_day(today, schedule.monthly_anchor)

    return anchor + timedelta(days=schedule.delay_days)


def _next_month_day(today: date, day: int) -> date:
    # Anchors past the end of a month fall on its last day
    this_month = today.replace(day=min(day, calendar.monthrange(today.year, today.month)[1]))
    if this_month > today:
        return this_month
    year, month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


class MerchantAccountSettingsService(BaseService):
    """Onboarding sessions and payout settings for merchant accounts."""

    def __init__(self, adapter: StripeAdapter, store: type[MerchantAccountStore] = MerchantAccountStore):
        self.adapter = adapter
        self.store = store

    def create_onboarding_session(self, merchant_id: uuid.UUID | str) -> AccountSessionResult:
        """
        Start an embedded onboarding session for the merchant's account.

        Raises:
            PaymentNotFoundError: Merchant has no settlement account
            StripeError: Session creation failed
        """
        account = self._require_account(merchant_id)
        session = self.adapter.create_account_session(account.processor_account_id)
        self.get_logger().info(
            "Onboarding session created",
            extra={
                "merchant_id": str(merchant_id),
                "processor_account_id": account.processor_account_id,
                "requirements_currently_due": len(account.requirements_currently_due),
            },
        )
        return session

    def get_payout_settings(self, merchant_id: uuid.UUID | str) -> PayoutSettings:
        """Fetch the live schedule and bank account, refreshing the stored row."""
        account = self._require_account(merchant_id)
        result = self.adapter.retrieve_account(account.processor_account_id)
        return self._to_settings(self.store.upsert_from_processor(account.merchant_id, result), result)

    def update_payout_schedule(self, merchant_id: uuid.UUID | str, schedule: PayoutSchedule) -> PayoutSettings:
        """
        Replace the account's payout schedule.

        Raises:
            PaymentNotFoundError: Merchant has no settlement account
            StripeInvalidRequestError: Stripe rejected the schedule
        """
        account = self._require_account(merchant_id)
        result = self.adapter.update_payout_schedule(account.processor_account_id, schedule)
        self.get_logger().info(
            "Payout schedule updated",
            extra={
                "merchant_id": str(merchant_id),
                "processor_account_id": account.processor_account_id,
                "interval": schedule.interval,
                "delay_days": schedule.delay_days,
            },
        )
        return self._to_settings(self.store.upsert_from_processor(account.merchant_id, result), result)

    def get_payout_info(self, merchant_id: uuid.UUID | str) -> PayoutInfo:
        """Balance per currency plus the estimated next payout date."""
        payout_settings = self.get_payout_settings(merchant_id)
        balance = self.adapter.retrieve_balance(payout_settings.processor_account_id)
        return PayoutInfo(
            settings=payout_settings,
            available=balance.available,
            pending=balance.pending,
            next_payout_date=next_payout_date(payout_settings.schedule, timezone.localdate()),
        )

    def _require_account(self, merchant_id: uuid.UUID | str) -> MerchantAccount:
        account = self.store.get_for_merchant(merchant_id)
        if account is None:
            raise PaymentNotFoundError(
                "Merchant has no settlement account",
                error_code="MERCHANT_ACCOUNT_NOT_FOUND",
                details={"merchant_id": str(merchant_id)},
            )
        return account

    @staticmethod
    def _to_settings(account: MerchantAccount, result: AccountResult) -> PayoutSettings:
        return PayoutSettings(
            processor_account_id=account.processor_account_id,
            schedule=result.payout_schedule or PayoutSchedule(),
            payouts_enabled=account.payouts_enabled,
            charges_enabled=account.charges_enabled,
            bank_account_last4=account.bank_account_last4,
            bank_name=account.bank_name,
            payout_currency=account.payout_currency,
        )
