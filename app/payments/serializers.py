"""
DRF serializers for the payments app.

This module provides serializers for:
- Checkout session requests and the returned session handle
- Refund requests
- Merchant account provisioning requests and account state
- Onboarding sessions and payout settings

Request serializers validate raw payloads and hand services a typed
request from payments.types via ``to_request()``.

Related files:
    - types.py: CheckoutRequest, RefundRequest, ProvisionRequest
    - views.py: Payment API views

Usage:
    serializer = CheckoutRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    handle = service.create_session(serializer.to_request())
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from rest_framework import serializers

from payments.adapters.stripe_adapter import BUSINESS_TYPES, PAYOUT_INTERVALS, WEEKDAYS, PayoutSchedule
from payments.models import MerchantAccount
from payments.services.fee_calculator import PlatformFeeKind, PlatformFeePolicy, TaxPolicy
from payments.types import CheckoutRequest, ProvisionRequest, RefundRequest, RequestContext

STRIPE_REFUND_REASONS = ("duplicate", "fraudulent", "requested_by_customer")


# =============================================================================
# Checkout
# =============================================================================


class CheckoutRequestSerializer(serializers.Serializer):
    """
    Serializer for starting a booking checkout.

    Fields:
        merchant_id: Merchant receiving the booking's net amount
        booking_id: Booking being paid
        base_amount_cents: Booking base price in minor units
        currency: ISO 4217 code (default usd)
        payer_email / payer_name: Payer contact
        platform_fee_kind: none, fixed or percentage
        platform_fee_amount_cents: Fee for fixed policies
        platform_fee_percent: Fee percentage for percentage policies
        commission_percent: Hidden commission (default PLATFORM_COMMISSION_PERCENT)
        tax_percent: Tax on the base price
    """

    merchant_id = serializers.UUIDField()
    booking_id = serializers.CharField(max_length=255)
    base_amount_cents = serializers.IntegerField(min_value=1)
    currency = serializers.CharField(min_length=3, max_length=3, default="usd")
    payer_email = serializers.EmailField(required=False, allow_blank=True)
    payer_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    platform_fee_kind = serializers.ChoiceField(
        choices=[kind.value for kind in PlatformFeeKind],
        default=PlatformFeeKind.NONE.value,
    )
    platform_fee_amount_cents = serializers.IntegerField(min_value=0, default=0)
    platform_fee_percent = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=Decimal("0"), max_value=Decimal("100"), default=Decimal("0")
    )
    commission_percent = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=Decimal("0"), max_value=Decimal("100"), required=False
    )
    tax_percent = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=Decimal("0"), default=Decimal("0")
    )

    def to_request(self) -> CheckoutRequest:
        data = self.validated_data
        commission = data.get("commission_percent")
        if commission is None:
            commission = Decimal(str(settings.PLATFORM_COMMISSION_PERCENT))

        return CheckoutRequest(
            merchant_id=data["merchant_id"],
            booking_id=data["booking_id"],
            base_amount_cents=data["base_amount_cents"],
            currency=data["currency"],
            payer_email=data.get("payer_email") or None,
            payer_name=data.get("payer_name") or None,
            platform_fee=PlatformFeePolicy(
                kind=PlatformFeeKind(data["platform_fee_kind"]),
                amount_cents=data["platform_fee_amount_cents"],
                percent=data["platform_fee_percent"],
                commission_percent=commission,
            ),
            tax=TaxPolicy(percent=data["tax_percent"]),
        )


class BreakdownSerializer(serializers.Serializer):
    base_amount_cents = serializers.IntegerField()
    platform_fee_cents = serializers.IntegerField()
    commission_cents = serializers.IntegerField()
    tax_cents = serializers.IntegerField()
    total_amount_cents = serializers.IntegerField()
    processor_fee_estimate_cents = serializers.IntegerField()
    application_fee_cents = serializers.IntegerField()
    merchant_net_cents = serializers.IntegerField()


class PaymentSessionSerializer(serializers.Serializer):
    """Response for a started checkout (serializes a PaymentSessionHandle)."""

    session_id = serializers.CharField()
    client_handle = serializers.CharField()
    payment_record_id = serializers.UUIDField()
    breakdown = BreakdownSerializer()


# =============================================================================
# Refunds
# =============================================================================


class RefundRequestSerializer(serializers.Serializer):
    """
    Serializer for refunding a payment.

    Omit amount_cents for a full refund of what remains refundable.
    """

    payment_intent_id = serializers.CharField(max_length=255)
    amount_cents = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    refund_application_fee = serializers.BooleanField(default=False)
    reverse_transfer = serializers.BooleanField(default=True)
    reason = serializers.ChoiceField(choices=STRIPE_REFUND_REASONS, required=False, allow_null=True)

    def to_request(self) -> RefundRequest:
        data = self.validated_data
        return RefundRequest(
            payment_intent_id=data["payment_intent_id"],
            amount_cents=data.get("amount_cents"),
            refund_application_fee=data["refund_application_fee"],
            reverse_transfer=data["reverse_transfer"],
            reason=data.get("reason"),
        )


# =============================================================================
# Merchant Accounts
# =============================================================================


class ProvisionRequestSerializer(serializers.Serializer):
    """Serializer for provisioning a merchant's settlement account."""

    merchant_id = serializers.UUIDField()
    country = serializers.CharField(min_length=2, max_length=2)
    business_type = serializers.ChoiceField(choices=BUSINESS_TYPES)

    def validate_country(self, value: str) -> str:
        return value.upper()

    def to_request(self, context: RequestContext | None = None) -> ProvisionRequest:
        data = self.validated_data
        return ProvisionRequest(
            merchant_id=data["merchant_id"],
            country=data["country"],
            business_type=data["business_type"],
            context=context or RequestContext(),
        )


class MerchantAccountSerializer(serializers.ModelSerializer):
    is_payable = serializers.BooleanField(read_only=True)

    class Meta:
        model = MerchantAccount
        fields = [
            "id",
            "merchant",
            "processor_account_id",
            "status",
            "is_payable",
            "charges_enabled",
            "payouts_enabled",
            "details_submitted",
            "requirements_currently_due",
            "requirements_past_due",
            "disabled_reason",
            "country",
            "business_type",
            "bank_account_last4",
            "bank_name",
            "payout_currency",
            "requires_review",
            "payment_issue",
            "last_sync_at",
        ]
        read_only_fields = fields


class OnboardingSessionSerializer(serializers.Serializer):
    """Response for an embedded onboarding session (serializes an AccountSessionResult)."""

    processor_account_id = serializers.CharField(source="account_id")
    client_secret = serializers.CharField()
    expires_at = serializers.IntegerField()


# =============================================================================
# Payout Settings
# =============================================================================


class PayoutScheduleSerializer(serializers.Serializer):
    """
    Serializer for a connected account's payout schedule.

    weekly_anchor is required for weekly schedules and monthly_anchor for
    monthly ones.
    """

    interval = serializers.ChoiceField(choices=PAYOUT_INTERVALS)
    delay_days = serializers.IntegerField(min_value=0, default=0)
    weekly_anchor = serializers.ChoiceField(choices=WEEKDAYS, required=False, allow_null=True)
    monthly_anchor = serializers.IntegerField(min_value=1, max_value=31, required=False, allow_null=True)

    def validate(self, attrs):
        if attrs["interval"] == "weekly" and not attrs.get("weekly_anchor"):
            raise serializers.ValidationError({"weekly_anchor": "Required for weekly payouts."})
        if attrs["interval"] == "monthly" and not attrs.get("monthly_anchor"):
            raise serializers.ValidationError({"monthly_anchor": "Required for monthly payouts."})
        return attrs

    def to_schedule(self) -> PayoutSchedule:
        data = self.validated_data
        return PayoutSchedule(
            interval=data["interval"],
            delay_days=data["delay_days"],
            weekly_anchor=data.get("weekly_anchor") if data["interval"] == "weekly" else None,
            monthly_anchor=data.get("monthly_anchor") if data["interval"] == "monthly" else None,
        )


class PayoutSettingsSerializer(serializers.Serializer):
    """Response for payout settings (serializes a PayoutSettings)."""

    processor_account_id = serializers.CharField()
    schedule = PayoutScheduleSerializer()
    payouts_enabled = serializers.BooleanField()
    charges_enabled = serializers.BooleanField()
    bank_account_last4 = serializers.CharField()
    bank_name = serializers.CharField()
    payout_currency = serializers.CharField()


class PayoutInfoSerializer(serializers.Serializer):
    """Response for payout info: balances per currency and the next payout."""

    settings = PayoutSettingsSerializer()
    available = serializers.DictField(child=serializers.IntegerField())
    pending = serializers.DictField(child=serializers.IntegerField())
    total = serializers.DictField(child=serializers.IntegerField())
    next_payout_date = serializers.DateField(allow_null=True)
