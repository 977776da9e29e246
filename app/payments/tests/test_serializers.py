"""
Tests for payment request serializers.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from payments.serializers import (
    CheckoutRequestSerializer,
    ProvisionRequestSerializer,
    RefundRequestSerializer,
)
from payments.services.fee_calculator import PlatformFeeKind
from payments.types import RequestContext


class TestCheckoutRequestSerializer:
    """Tests for CheckoutRequestSerializer."""

    def test_to_request(self, settings):
        settings.PLATFORM_COMMISSION_PERCENT = "0"
        merchant_id = uuid4()
        serializer = CheckoutRequestSerializer(
            data={
                "merchant_id": str(merchant_id),
                "booking_id": "bk_2041",
                "base_amount_cents": 20000,
                "currency": "EUR",
                "platform_fee_kind": "percentage",
                "platform_fee_percent": "2.5",
                "tax_percent": "3",
            }
        )
        assert serializer.is_valid(), serializer.errors

        request = serializer.to_request()

        assert request.merchant_id == merchant_id
        assert request.currency == "eur"
        assert request.payer_email is None
        assert request.platform_fee.kind is PlatformFeeKind.PERCENTAGE
        assert request.platform_fee.percent == Decimal("2.5")
        assert request.platform_fee.commission_percent == Decimal("0")
        assert request.tax.percent == Decimal("3")

    def test_commission_defaults_to_setting(self, settings):
        settings.PLATFORM_COMMISSION_PERCENT = "7.5"
        serializer = CheckoutRequestSerializer(
            data={"merchant_id": str(uuid4()), "booking_id": "bk_1", "base_amount_cents": 1000}
        )
        assert serializer.is_valid(), serializer.errors

        request = serializer.to_request()

        assert request.platform_fee.kind is PlatformFeeKind.NONE
        assert request.platform_fee.commission_percent == Decimal("7.5")

    def test_explicit_commission_wins(self, settings):
        settings.PLATFORM_COMMISSION_PERCENT = "7.5"
        serializer = CheckoutRequestSerializer(
            data={
                "merchant_id": str(uuid4()),
                "booking_id": "bk_1",
                "base_amount_cents": 1000,
                "commission_percent": "0",
            }
        )
        assert serializer.is_valid(), serializer.errors

        assert serializer.to_request().platform_fee.commission_percent == Decimal("0")

    @pytest.mark.parametrize(
        "field,value",
        [
            ("base_amount_cents", 0),
            ("currency", "dollars"),
            ("platform_fee_kind", "tiered"),
            ("platform_fee_percent", "101"),
            ("tax_percent", "-1"),
        ],
    )
    def test_rejects_invalid_values(self, field, value):
        data = {"merchant_id": str(uuid4()), "booking_id": "bk_1", "base_amount_cents": 1000, field: value}

        serializer = CheckoutRequestSerializer(data=data)

        assert not serializer.is_valid()
        assert field in serializer.errors


class TestRefundRequestSerializer:
    def test_full_refund_defaults(self):
        serializer = RefundRequestSerializer(data={"payment_intent_id": "pi_123"})
        assert serializer.is_valid(), serializer.errors

        request = serializer.to_request()

        assert request.amount_cents is None
        assert request.reverse_transfer is True
        assert request.refund_application_fee is False
        assert request.reason is None

    def test_rejects_unknown_reason(self):
        serializer = RefundRequestSerializer(data={"payment_intent_id": "pi_123", "reason": "changed_mind"})

        assert not serializer.is_valid()
        assert "reason" in serializer.errors


class TestProvisionRequestSerializer:
    def test_country_uppercased(self):
        serializer = ProvisionRequestSerializer(
            data={"merchant_id": str(uuid4()), "country": "gb", "business_type": "individual"}
        )
        assert serializer.is_valid(), serializer.errors

        request = serializer.to_request(RequestContext(client_ip="203.0.113.7"))

        assert request.country == "GB"
        assert request.business_type == "individual"
        assert request.context.client_ip == "203.0.113.7"
