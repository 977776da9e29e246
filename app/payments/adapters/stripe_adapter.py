"""
Stripe API adapter for settlement operations.

This module provides the StripeAdapter class which encapsulates all
Stripe Connect interactions. All Stripe calls go through one adapter
instance so error handling, timeouts, retries, idempotency and
observability stay consistent.

Features:
- Constructed once and injected, so tests substitute a fake
- Secret key passed per request, never assigned to module globals
- Bounded retry with exponential backoff for transient failures
- Automatic error translation to domain exceptions
- Structured logging with timing metrics

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_WEBHOOK_TOLERANCE_SECONDS: Webhook timestamp tolerance (default: 300)
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: Total attempts for transient failures (default: 3)

Usage:
    from payments.adapters import get_stripe_adapter

    adapter = get_stripe_adapter()
    balance = adapter.retrieve_balance("acct_123")
    balance.total_for("usd")
"""

from __future__ import annotations

import hashlib
import json
import logging
import random
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import stripe
from django.conf import settings

from payments.exceptions import (
    InvalidWebhookSignatureError,
    StripeAPIUnavailableError,
    StripeAuthenticationError,
    StripeCardDeclinedError,
    StripeError,
    StripeIdempotencyConflictError,
    StripeInsufficientFundsError,
    StripeInvalidAccountError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
)

T = TypeVar("T")

BUSINESS_TYPES = ("individual", "company", "non_profit", "government_entity")

# Invalid-request codes Stripe uses when a connected balance cannot cover
# a reversal
INSUFFICIENT_FUNDS_CODES = frozenset({"insufficient_funds", "balance_insufficient"})


# =============================================================================
# Data Types
# =============================================================================


PAYOUT_INTERVALS = ("manual", "daily", "weekly", "monthly")
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass
class PayoutSchedule:
    """
    When a connected account's available balance is paid out.

    Attributes:
        interval: manual, daily, weekly or monthly
        delay_days: Days a charge waits before it can be paid out
        weekly_anchor: Payout weekday for weekly schedules
        monthly_anchor: Payout day of month (1-31) for monthly schedules
    """

    interval: str = "manual"
    delay_days: int = 0
    weekly_anchor: str | None = None
    monthly_anchor: int | None = None

    def __post_init__(self) -> None:
        if self.interval not in PAYOUT_INTERVALS:
            raise ValueError(f"interval must be one of {', '.join(PAYOUT_INTERVALS)}")
        if self.delay_days < 0:
            raise ValueError("delay_days cannot be negative")
        if self.interval == "weekly" and self.weekly_anchor not in WEEKDAYS:
            raise ValueError("weekly schedules need a weekday weekly_anchor")
        if self.interval == "monthly" and not (self.monthly_anchor and 1 <= self.monthly_anchor <= 31):
            raise ValueError("monthly schedules need a monthly_anchor between 1 and 31")

    def to_stripe_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"interval": self.interval, "delay_days": self.delay_days}
        if self.interval == "weekly":
            params["weekly_anchor"] = self.weekly_anchor
        if self.interval == "monthly":
            params["monthly_anchor"] = self.monthly_anchor
        return params

    @classmethod
    def from_stripe(cls, data: dict[str, Any] | None) -> PayoutSchedule | None:
        if not data:
            return None
        interval = data.get("interval") or "manual"
        return cls(
            interval=interval,
            delay_days=int(data.get("delay_days") or 0),
            weekly_anchor=data.get("weekly_anchor") if interval == "weekly" else None,
            monthly_anchor=data.get("monthly_anchor") if interval == "monthly" else None,
        )


# Schedule every new account starts with
DEFAULT_PAYOUT_SCHEDULE = PayoutSchedule(interval="weekly", delay_days=5, weekly_anchor="monday")


@dataclass
class CreateAccountParams:
    """
    Parameters for creating a Stripe Connect account.

    Only sections with real profile data are sent; nothing is defaulted
    for legal fields.

    Attributes:
        merchant_id: Owning merchant, stored in account metadata
        country: ISO 3166-1 alpha-2 country code
        business_type: individual, company, non_profit or government_entity
        idempotency_key: Key for this creation attempt
        email: Account email
        business_profile: name / url / support_email / support_phone
        individual: Individual section (individual businesses only)
        company: Company section (every other business type)
        tos_acceptance: date / ip / user_agent / service_agreement
        capabilities: Requested capabilities
    """

    merchant_id: str
    country: str
    business_type: str
    idempotency_key: str
    email: str | None = None
    business_profile: dict[str, Any] = field(default_factory=dict)
    individual: dict[str, Any] = field(default_factory=dict)
    company: dict[str, Any] = field(default_factory=dict)
    tos_acceptance: dict[str, Any] = field(default_factory=dict)
    capabilities: dict[str, Any] = field(
        default_factory=lambda: {"transfers": {"requested": True}}
    )

    def __post_init__(self) -> None:
        """Validate parameters after initialization."""
        if not self.merchant_id:
            raise ValueError("merchant_id is required")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if not self.country or len(self.country) != 2:
            raise ValueError("country must be a two-letter ISO code")
        if self.business_type not in BUSINESS_TYPES:
            raise ValueError(f"business_type must be one of {', '.join(BUSINESS_TYPES)}")

    def to_stripe_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {
            "country": self.country,
            "business_type": self.business_type,
            "capabilities": self.capabilities,
            "controller": {
                "stripe_dashboard": {"type": "none"},
                "fees": {"payer": "application"},
                "losses": {"payments": "application"},
                "requirement_collection": "application",
            },
            "metadata": {"merchant_id": self.merchant_id},
            "settings": {
                "payouts": {"schedule": DEFAULT_PAYOUT_SCHEDULE.to_stripe_params()},
            },
        }
        if self.email:
            params["email"] = self.email
        for section in ("business_profile", "individual", "company", "tos_acceptance"):
            value = getattr(self, section)
            if value:
                params[section] = value
        return params

    def shape(self) -> dict[str, Any]:
        """Payload keys without values, safe for logs and error details."""
        return {
            key: sorted(value) if isinstance(value, dict) else "set"
            for key, value in self.to_stripe_params().items()
        }


@dataclass
class AccountResult:
    """
    Result from Stripe Account operations.

    Attributes:
        id: Account ID (acct_xxx)
        charges_enabled / payouts_enabled / details_submitted: Capability flags
        requirements_*: Requirement codes in Stripe's order
        disabled_reason: Stripe's reason code when requirements disable the account
        metadata: Attached metadata (merchant_id)
        bank_account_*: Summary of the first external bank account
        payout_schedule: Current payout schedule, when Stripe returns settings
        raw_response: Full Stripe response dict (for debugging)
    """

    id: str
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False
    requirements_currently_due: list[str] = field(default_factory=list)
    requirements_past_due: list[str] = field(default_factory=list)
    requirements_eventually_due: list[str] = field(default_factory=list)
    disabled_reason: str | None = None
    country: str = ""
    business_type: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    bank_account_last4: str = ""
    bank_name: str = ""
    bank_account_currency: str = ""
    payout_schedule: PayoutSchedule | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def merchant_id(self) -> str | None:
        return self.metadata.get("merchant_id")

    @classmethod
    def from_stripe(cls, data: dict[str, Any]) -> AccountResult:
        requirements = data.get("requirements") or {}
        external_accounts = (data.get("external_accounts") or {}).get("data") or []
        bank = external_accounts[0] if external_accounts else {}
        return cls(
            id=data["id"],
            charges_enabled=bool(data.get("charges_enabled")),
            payouts_enabled=bool(data.get("payouts_enabled")),
            details_submitted=bool(data.get("details_submitted")),
            requirements_currently_due=list(requirements.get("currently_due") or []),
            requirements_past_due=list(requirements.get("past_due") or []),
            requirements_eventually_due=list(requirements.get("eventually_due") or []),
            disabled_reason=requirements.get("disabled_reason") or None,
            country=data.get("country") or "",
            business_type=data.get("business_type") or "",
            metadata=dict(data.get("metadata") or {}),
            bank_account_last4=bank.get("last4") or "",
            bank_name=bank.get("bank_name") or "",
            bank_account_currency=bank.get("currency") or "",
            payout_schedule=PayoutSchedule.from_stripe(
                ((data.get("settings") or {}).get("payouts") or {}).get("schedule")
            ),
            raw_response=data,
        )


@dataclass
class CheckoutLineItem:
    name: str
    amount_cents: int
    quantity: int = 1


@dataclass
class CreateCheckoutSessionParams:
    """
    Parameters for a hosted Checkout Session with destination charge.

    The gross charge is the sum of the line items. application_fee_cents
    stays with the platform and the rest goes to destination_account.

    Attributes:
        amount_cents: Gross charge, must equal the line item sum
        currency: ISO 4217 currency code
        line_items: Items shown to the payer
        application_fee_cents: Amount retained by the platform
        destination_account: Merchant's connected account (acct_xxx)
        success_url / cancel_url: Payer redirect targets
        idempotency_key: Unique key for idempotent creation
        customer_email: Payer email prefilled on the checkout page
        metadata: Copied onto the session and its PaymentIntent
    """

    amount_cents: int
    currency: str
    line_items: list[CheckoutLineItem]
    application_fee_cents: int
    destination_account: str
    success_url: str
    cancel_url: str
    idempotency_key: str
    customer_email: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate parameters after initialization."""
        if self.amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not self.currency:
            raise ValueError("currency is required")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if not self.destination_account:
            raise ValueError("destination_account is required")
        if sum(item.amount_cents * item.quantity for item in self.line_items) != self.amount_cents:
            raise ValueError("line items must add up to amount_cents")
        if not 0 <= self.application_fee_cents <= self.amount_cents:
            raise ValueError("application_fee_cents must be between 0 and amount_cents")

    def to_stripe_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {"name": item.name},
                        "unit_amount": item.amount_cents,
                    },
                    "quantity": item.quantity,
                }
                for item in self.line_items
            ],
            "payment_intent_data": {
                "application_fee_amount": self.application_fee_cents,
                "transfer_data": {"destination": self.destination_account},
                "metadata": self.metadata,
            },
            "metadata": self.metadata,
            "success_url": self.success_url,
            "cancel_url": self.cancel_url,
        }
        if self.customer_email:
            params["customer_email"] = self.customer_email
        return params


@dataclass
class CheckoutSessionResult:
    id: str
    status: str
    amount_total: int
    currency: str
    url: str | None = None
    client_secret: str | None = None
    payment_intent_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentIntentResult:
    """
    Result from Stripe PaymentIntent retrieval.

    Attributes:
        id: PaymentIntent ID (pi_xxx)
        status: Current status
        amount_cents: Amount in cents
        amount_received: Amount actually captured
        amount_refunded: Amount already refunded on the latest charge
        currency: Currency code
        application_fee_amount: Platform fee on the charge, if any
        destination: Connected account the charge was routed to, if any
        metadata: Attached metadata
        raw_response: Full Stripe response dict
    """

    id: str
    status: str
    amount_cents: int
    currency: str
    amount_received: int = 0
    amount_refunded: int = 0
    application_fee_amount: int | None = None
    destination: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def refundable_amount_cents(self) -> int:
        """Remaining refundable amount according to Stripe's ledger."""
        return max(self.amount_received - self.amount_refunded, 0)

    @classmethod
    def from_stripe(cls, data: dict[str, Any]) -> PaymentIntentResult:
        latest_charge = data.get("latest_charge")
        amount_refunded = latest_charge.get("amount_refunded", 0) if isinstance(latest_charge, dict) else 0
        transfer_data = data.get("transfer_data") or {}
        return cls(
            id=data["id"],
            status=data.get("status") or "",
            amount_cents=data.get("amount") or 0,
            currency=data.get("currency") or "",
            amount_received=data.get("amount_received") or 0,
            amount_refunded=amount_refunded or 0,
            application_fee_amount=data.get("application_fee_amount"),
            destination=transfer_data.get("destination"),
            metadata=dict(data.get("metadata") or {}),
            raw_response=data,
        )


@dataclass
class BalanceResult:
    """
    Connected account balance, summed per currency.

    Attributes:
        available: currency -> cents available for payout
        pending: currency -> cents not yet available
    """

    available: dict[str, int] = field(default_factory=dict)
    pending: dict[str, int] = field(default_factory=dict)

    def total_for(self, currency: str) -> int:
        currency = currency.lower()
        return self.available.get(currency, 0) + self.pending.get(currency, 0)

    @classmethod
    def from_stripe(cls, data: dict[str, Any]) -> BalanceResult:
        def _sum(entries: list[dict[str, Any]] | None) -> dict[str, int]:
            totals: dict[str, int] = {}
            for entry in entries or []:
                currency = (entry.get("currency") or "").lower()
                totals[currency] = totals.get(currency, 0) + (entry.get("amount") or 0)
            return totals

        return cls(available=_sum(data.get("available")), pending=_sum(data.get("pending")))


@dataclass
class AccountSessionResult:
    """
    Short-lived session for Stripe's embedded onboarding component.

    Attributes:
        account_id: Connected account being onboarded
        client_secret: Handed to the embedded component, never stored
        expires_at: Unix timestamp after which the secret is dead
    """

    account_id: str
    client_secret: str
    expires_at: int


@dataclass
class RefundResult:
    """
    Result from Stripe Refund operations.

    Attributes:
        id: Refund ID (re_xxx)
        amount_cents: Refunded amount in cents
        currency: Currency code
        status: Refund status (succeeded, pending, failed)
        payment_intent_id: Original PaymentIntent ID
        metadata: Attached metadata
        raw_response: Full Stripe response dict
    """

    id: str
    amount_cents: int
    currency: str
    status: str
    payment_intent_id: str
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The hash component provides uniqueness across service restarts
    while the structured format aids debugging and correlation.

    Example:
        key = IdempotencyKeyGenerator.generate(
            operation="refund",
            entity_id=refund_record.id,
            attempt=1,
        )
        # Result: "refund:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        """
        Generate a unique idempotency key.

        Args:
            operation: The Stripe operation (checkout, refund, etc.)
            entity_id: The domain entity ID
            attempt: Attempt number for retries (default: 1)

        Returns:
            Formatted idempotency key string
        """
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"

    @staticmethod
    def timestamped(operation: str, entity_id: uuid.UUID | str) -> str:
        """
        Key embedding the entity and the creation time in epoch milliseconds.

        Used for account creation: a provisioning cycle retried after a long
        outage gets a fresh key instead of colliding with the first attempt
        forever.

        Example:
            IdempotencyKeyGenerator.timestamped("acct", merchant.id)
            # "acct_550e8400-..._1718000000000"
        """
        return f"{operation}_{entity_id}_{int(time.time() * 1000)}"


# =============================================================================
# Retry Logic Helpers
# =============================================================================


def is_retryable_stripe_error(error: Exception) -> bool:
    """
    Check if a Stripe error is retryable.

    Use this in Celery tasks to decide whether to retry:

        @shared_task(bind=True, max_retries=3)
        def sync_account(self, account_id):
            try:
                AccountSyncService(get_stripe_adapter()).sync(account_id)
            except Exception as e:
                if is_retryable_stripe_error(e):
                    raise self.retry(exc=e, countdown=backoff_delay(self.request.retries))
                raise

    Args:
        error: The exception to check

    Returns:
        True if the error is a transient Stripe error that can be retried
    """
    if isinstance(error, StripeError):
        return error.is_retryable
    return False


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Jitter spreads out retries from concurrent workers.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)

    Returns:
        Delay in seconds with jitter (0-25% of calculated delay)

    Example:
        # Attempt 0: 1.0 - 1.25 seconds
        # Attempt 1: 2.0 - 2.5 seconds
        # Attempt 2: 4.0 - 5.0 seconds
        delay = backoff_delay(attempt=2)
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe Connect operations.

    Holds its own credentials and retry policy. Build one per process with
    from_settings() and pass it to services; tests pass a MagicMock or a
    StripeAdapter with a no-op sleep.

    Usage:
        adapter = StripeAdapter.from_settings()
        account = adapter.retrieve_account("acct_123")
    """

    def __init__(
        self,
        api_key: str,
        webhook_secret: str = "",
        webhook_tolerance: int = 300,
        max_retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.webhook_tolerance = webhook_tolerance
        self.max_retries = max(1, max_retries)
        self._sleep = sleep

    @classmethod
    def from_settings(cls) -> StripeAdapter:
        """Build the adapter from Django settings and configure the HTTP client."""
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
        # Retries are handled here so they stay bounded and logged
        stripe.max_network_retries = 0
        return cls(
            api_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            webhook_tolerance=getattr(settings, "STRIPE_WEBHOOK_TOLERANCE_SECONDS", 300),
            max_retries=getattr(settings, "STRIPE_MAX_RETRIES", 3),
        )

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # Connected Accounts
    # =========================================================================

    def create_connected_account(self, params: CreateAccountParams) -> AccountResult:
        """
        Create a Connect account for a merchant.

        Raises:
            StripeIdempotencyConflictError: Key reused with different parameters
            StripeInvalidRequestError: Payload rejected by Stripe
            StripeAuthenticationError: API key rejected
        """
        log_context = {
            "operation": "create_connected_account",
            "merchant_id": params.merchant_id,
            "country": params.country,
            "business_type": params.business_type,
            "idempotency_key": params.idempotency_key,
        }
        account = self._call(
            log_context,
            lambda: stripe.Account.create(
                api_key=self.api_key,
                idempotency_key=params.idempotency_key,
                **params.to_stripe_params(),
            ),
        )
        return AccountResult.from_stripe(account.to_dict())

    def retrieve_account(self, account_id: str) -> AccountResult:
        log_context = {"operation": "retrieve_account", "processor_account_id": account_id}
        account = self._call(
            log_context,
            lambda: stripe.Account.retrieve(account_id, api_key=self.api_key),
        )
        return AccountResult.from_stripe(account.to_dict())

    def find_account_by_merchant_id(self, merchant_id: uuid.UUID | str) -> AccountResult | None:
        """
        Search the platform's accounts for one tagged with this merchant id.

        Covers accounts created upstream whose local write never happened.
        Pages through every account, 100 per request, newest first.
        """
        log_context = {"operation": "find_account_by_merchant_id", "merchant_id": str(merchant_id)}

        def search() -> dict[str, Any] | None:
            listing = stripe.Account.list(limit=100, api_key=self.api_key)
            for account in listing.auto_paging_iter():
                data = account.to_dict()
                if (data.get("metadata") or {}).get("merchant_id") == str(merchant_id):
                    return data
            return None

        found = self._call(log_context, search)
        return AccountResult.from_stripe(found) if found else None

    def create_person(
        self,
        account_id: str,
        person: dict[str, Any],
        idempotency_key: str,
    ) -> str:
        """Create a person (representative) on a Connect account. Returns the person id."""
        log_context = {
            "operation": "create_person",
            "processor_account_id": account_id,
            "idempotency_key": idempotency_key,
        }
        created = self._call(
            log_context,
            lambda: stripe.Account.create_person(
                account_id,
                api_key=self.api_key,
                idempotency_key=idempotency_key,
                **person,
            ),
        )
        return created.to_dict()["id"]

    def create_account_session(self, account_id: str) -> AccountSessionResult:
        """
        Start an onboarding session for a connected account.

        The merchant completes outstanding requirements through Stripe's
        embedded onboarding component using the returned client secret.
        """
        log_context = {"operation": "create_account_session", "processor_account_id": account_id}
        session = self._call(
            log_context,
            lambda: stripe.AccountSession.create(
                api_key=self.api_key,
                account=account_id,
                components={"account_onboarding": {"enabled": True}},
            ),
        )
        data = session.to_dict()
        return AccountSessionResult(
            account_id=data.get("account") or account_id,
            client_secret=data["client_secret"],
            expires_at=int(data.get("expires_at") or 0),
        )

    def update_payout_schedule(self, account_id: str, schedule: PayoutSchedule) -> AccountResult:
        """
        Replace a connected account's payout schedule.

        Raises:
            StripeInvalidRequestError: Stripe rejected the schedule (e.g. delay
                below the account's minimum)
        """
        log_context = {
            "operation": "update_payout_schedule",
            "processor_account_id": account_id,
            "interval": schedule.interval,
        }
        account = self._call(
            log_context,
            lambda: stripe.Account.modify(
                account_id,
                api_key=self.api_key,
                settings={"payouts": {"schedule": schedule.to_stripe_params()}},
            ),
        )
        return AccountResult.from_stripe(account.to_dict())

    # =========================================================================
    # Checkout and Charges
    # =========================================================================

    def create_checkout_session(self, params: CreateCheckoutSessionParams) -> CheckoutSessionResult:
        """
        Create a hosted Checkout Session routed to a connected account.

        Raises:
            StripeInvalidAccountError: Destination account unusable
            StripeInvalidRequestError: Invalid parameters
            StripeAPIUnavailableError: Stripe unavailable after retries
        """
        log_context = {
            "operation": "create_checkout_session",
            "amount_cents": params.amount_cents,
            "application_fee_cents": params.application_fee_cents,
            "currency": params.currency,
            "destination_account": params.destination_account,
            "idempotency_key": params.idempotency_key,
        }
        session = self._call(
            log_context,
            lambda: stripe.checkout.Session.create(
                api_key=self.api_key,
                idempotency_key=params.idempotency_key,
                **params.to_stripe_params(),
            ),
        )
        data = session.to_dict()
        payment_intent = data.get("payment_intent")
        return CheckoutSessionResult(
            id=data["id"],
            status=data.get("status") or "",
            amount_total=data.get("amount_total") or params.amount_cents,
            currency=data.get("currency") or params.currency,
            url=data.get("url"),
            client_secret=data.get("client_secret"),
            payment_intent_id=payment_intent if isinstance(payment_intent, str) else None,
            metadata=dict(data.get("metadata") or {}),
            raw_response=data,
        )

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentResult:
        """Retrieve a PaymentIntent with its latest charge expanded."""
        log_context = {
            "operation": "retrieve_payment_intent",
            "payment_intent_id": payment_intent_id,
        }
        intent = self._call(
            log_context,
            lambda: stripe.PaymentIntent.retrieve(
                payment_intent_id,
                api_key=self.api_key,
                expand=["latest_charge"],
            ),
        )
        return PaymentIntentResult.from_stripe(intent.to_dict())

    def retrieve_balance(self, stripe_account: str) -> BalanceResult:
        """Retrieve a connected account's balance."""
        log_context = {"operation": "retrieve_balance", "processor_account_id": stripe_account}
        balance = self._call(
            log_context,
            lambda: stripe.Balance.retrieve(api_key=self.api_key, stripe_account=stripe_account),
        )
        return BalanceResult.from_stripe(balance.to_dict())

    def create_refund(
        self,
        payment_intent_id: str,
        idempotency_key: str,
        amount_cents: int | None = None,
        reverse_transfer: bool = False,
        refund_application_fee: bool = False,
        reason: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        """
        Create a refund for a PaymentIntent.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx)
            idempotency_key: Unique key for idempotent refund
            amount_cents: Amount to refund (None for full refund)
            reverse_transfer: Pull the amount back from the destination account
            refund_application_fee: Refund the platform's application fee too
            reason: Refund reason (duplicate, fraudulent, requested_by_customer)
            metadata: Optional metadata dict

        Raises:
            StripeInsufficientFundsError: Destination balance cannot cover the reversal
            StripeInvalidRequestError: Refund not possible
        """
        log_context = {
            "operation": "create_refund",
            "payment_intent_id": payment_intent_id,
            "amount_cents": amount_cents,
            "reverse_transfer": reverse_transfer,
            "refund_application_fee": refund_application_fee,
            "idempotency_key": idempotency_key,
        }
        refund_params: dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "metadata": metadata or {},
        }
        if amount_cents is not None:
            refund_params["amount"] = amount_cents
        if reverse_transfer:
            refund_params["reverse_transfer"] = True
        if refund_application_fee:
            refund_params["refund_application_fee"] = True
        if reason:
            refund_params["reason"] = reason

        refund = self._call(
            log_context,
            lambda: stripe.Refund.create(
                api_key=self.api_key,
                idempotency_key=idempotency_key,
                **refund_params,
            ),
        )
        data = refund.to_dict()
        return RefundResult(
            id=data["id"],
            amount_cents=data.get("amount") or 0,
            currency=data.get("currency") or "",
            status=data.get("status") or "",
            payment_intent_id=data.get("payment_intent") or payment_intent_id,
            metadata=dict(data.get("metadata") or {}),
            raw_response=data,
        )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(
        self,
        payload: bytes | str,
        signature: str | None,
        tolerance: int | None = None,
    ) -> dict[str, Any]:
        """
        Verify and parse a Stripe webhook event.

        Args:
            payload: Raw, unparsed webhook body
            signature: Stripe-Signature header value
            tolerance: Max age of the signed timestamp in seconds
                (default: the adapter's webhook tolerance)

        Returns:
            Parsed event dict

        Raises:
            InvalidWebhookSignatureError: Bad, missing or stale signature
        """
        if tolerance is None:
            tolerance = self.webhook_tolerance
        if not signature:
            raise InvalidWebhookSignatureError("Missing Stripe-Signature header")
        if isinstance(payload, (bytes, bytearray)):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                self.get_logger().warning("Webhook payload is not valid UTF-8")
                raise InvalidWebhookSignatureError("Webhook payload is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(
                payload,
                signature,
                self.webhook_secret,
                tolerance=tolerance,
            )
        except stripe.SignatureVerificationError as e:
            self.get_logger().warning(
                "Webhook signature rejected",
                extra={"reason": e.user_message, "tolerance": tolerance},
            )
            raise InvalidWebhookSignatureError(
                "Invalid webhook signature",
                details={"reason": e.user_message},
            ) from e

        try:
            return json.loads(payload)
        except ValueError as e:
            raise InvalidWebhookSignatureError("Webhook payload is not valid JSON") from e

    # =========================================================================
    # Call Wrapper
    # =========================================================================

    def _call(self, log_context: dict[str, Any], request: Callable[[], T]) -> T:
        """
        Run one Stripe request with timing, logging and bounded retry.

        Transient errors are retried up to max_retries total attempts with
        backoff_delay between them. Everything else raises immediately.
        """
        logger = self.get_logger()
        attempt = 0
        while True:
            start_time = time.time()
            logger.info("Starting Stripe operation", extra={**log_context, "attempt": attempt + 1})
            try:
                response = request()
            except stripe.StripeError as e:
                duration_ms = (time.time() - start_time) * 1000
                error = self._translate_stripe_error(e, log_context, duration_ms)
                if error.is_retryable and attempt + 1 < self.max_retries:
                    delay = backoff_delay(attempt)
                    logger.warning(
                        "Retrying Stripe operation",
                        extra={**log_context, "attempt": attempt + 1, "delay_seconds": delay},
                    )
                    self._sleep(delay)
                    attempt += 1
                    continue
                raise error from e

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={**log_context, "attempt": attempt + 1, "duration_ms": duration_ms},
            )
            return response

    # =========================================================================
    # Error Handling
    # =========================================================================

    def _translate_stripe_error(
        self,
        error: stripe.StripeError,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> StripeError:
        """
        Translate Stripe SDK exceptions to domain exceptions.

        Returns:
            StripeCardDeclinedError: Card was declined
            StripeInsufficientFundsError: Insufficient funds (card or balance)
            StripeInvalidAccountError: Invalid Connect account
            StripeInvalidRequestError: Invalid request parameters
            StripeIdempotencyConflictError: Idempotency key reused
            StripeAuthenticationError: API key rejected
            StripeRateLimitError: Rate limited
            StripeTimeoutError: Request timed out
            StripeAPIUnavailableError: API unavailable or unknown error
        """
        logger = self.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms, "stripe_code": error.code}
        message = error.user_message or str(error)

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None) or getattr(
                error.error, "decline_code", None
            )
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )
            if decline_code == "insufficient_funds":
                return StripeInsufficientFundsError(
                    message, stripe_code=error.code, decline_code=decline_code
                )
            return StripeCardDeclinedError(
                message, stripe_code=error.code, decline_code=decline_code
            )

        if isinstance(error, stripe.InvalidRequestError):
            if error.code in INSUFFICIENT_FUNDS_CODES:
                logger.warning("Insufficient balance reported by Stripe", extra=log_context)
                return StripeInsufficientFundsError(message, stripe_code=error.code)

            logger.error("Invalid request to Stripe", extra=log_context)
            if "account" in message.lower():
                return StripeInvalidAccountError(message, stripe_code=error.code)
            return StripeInvalidRequestError(message, stripe_code=error.code)

        if isinstance(error, stripe.IdempotencyError):
            logger.warning("Idempotency conflict from Stripe", extra=log_context)
            return StripeIdempotencyConflictError(message, stripe_code="idempotency_error")

        if isinstance(error, stripe.AuthenticationError):
            logger.critical("Stripe authentication failed - check API key", extra=log_context)
            return StripeAuthenticationError(
                "Stripe authentication failed", stripe_code="authentication_error"
            )

        if isinstance(error, stripe.PermissionError):
            logger.error("Stripe denied access to the account", extra=log_context)
            return StripeInvalidAccountError(message, stripe_code="permission_error")

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            return StripeRateLimitError(
                "Stripe rate limit exceeded. Please retry.", stripe_code="rate_limit"
            )

        if isinstance(error, stripe.APIConnectionError):
            if "timeout" in str(error).lower():
                logger.error("Stripe request timed out", extra=log_context)
                return StripeTimeoutError(
                    "Stripe request timed out. Please retry.", stripe_code="timeout"
                )
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            return StripeAPIUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            )

        if isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            return StripeAPIUnavailableError(
                "Stripe service error. Please retry.", stripe_code="api_error"
            )

        logger.error(
            f"Unexpected error from Stripe: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        return StripeAPIUnavailableError(
            f"Unexpected Stripe error: {message}", stripe_code="unknown_error"
        )
