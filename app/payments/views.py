"""
DRF views for the payments app.

This module provides API views for:
- Checkout session creation for bookings
- Admin refunds
- Admin merchant account provisioning and lookup
- Admin onboarding sessions and payout settings

Related files:
    - services/: PaymentSessionService, RefundOrchestrator, MerchantAccountProvisioner,
      MerchantAccountSettingsService
    - serializers.py: Request/response serializers
    - urls.py: URL routing
    - webhooks/views.py: Stripe webhook endpoint

Endpoints:
    POST /api/v1/payments/checkout/ - Start a checkout for a booking
    POST /api/v1/payments/refunds/ - Refund a payment (admin)
    POST /api/v1/payments/merchant-accounts/ - Provision a settlement account (admin)
    GET /api/v1/payments/merchant-accounts/<merchant_id>/ - Account state (admin)
    POST /api/v1/payments/merchant-accounts/<merchant_id>/onboarding-session/ - Onboarding session (admin)
    GET/PUT /api/v1/payments/merchant-accounts/<merchant_id>/payout-settings/ - Payout schedule (admin)
    GET /api/v1/payments/merchant-accounts/<merchant_id>/payout-info/ - Balance and next payout (admin)

Errors:
    PaymentError subclasses are returned as their to_dict() body with their
    http_status: 401 merchant not payable, 503 transient processor trouble,
    500 other processor failures, 400 validation.
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import serializers, status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import BaseApplicationError
from core.helpers import get_client_ip, get_user_agent
from merchants.exceptions import MerchantNotFoundError

from payments.adapters import get_stripe_adapter
from payments.exceptions import PaymentError
from payments.serializers import (
    CheckoutRequestSerializer,
    MerchantAccountSerializer,
    OnboardingSessionSerializer,
    PaymentSessionSerializer,
    PayoutInfoSerializer,
    PayoutScheduleSerializer,
    PayoutSettingsSerializer,
    ProvisionRequestSerializer,
    RefundRequestSerializer,
)
from payments.services.account_settings import MerchantAccountSettingsService
from payments.services.checkout import PaymentSessionService
from payments.services.provisioning import MerchantAccountProvisioner
from payments.services.refunds import RefundOrchestrator
from payments.stores import MerchantAccountStore
from payments.types import RequestContext

logger = logging.getLogger(__name__)


class ErrorSerializer(serializers.Serializer):
    code = serializers.IntegerField()
    message = serializers.CharField()
    error_code = serializers.CharField()
    details = serializers.DictField(required=False)


class RefundResponseSerializer(serializers.Serializer):
    refund_id = serializers.CharField()
    refund_record_id = serializers.UUIDField()
    status = serializers.CharField()
    amount_cents = serializers.IntegerField()
    used_fallback = serializers.BooleanField()
    fallback_reason = serializers.CharField(allow_null=True)


def error_response(error: BaseApplicationError) -> Response:
    """Render a domain error as its ``{code, message, ...}`` body."""
    return Response(error.to_dict(), status=error.http_status)


class CheckoutSessionView(APIView):
    """
    Start a checkout for a booking.

    POST /api/v1/payments/checkout/

    Request body:
        {
            "merchant_id": "uuid",
            "booking_id": "bk_123",
            "base_amount_cents": 20000,
            "currency": "usd",
            "payer_email": "payer@example.com",
            "platform_fee_kind": "fixed",
            "platform_fee_amount_cents": 500,
            "tax_percent": "3"
        }

    Returns:
        {"session_id": "cs_...", "client_handle": "...", "payment_record_id": "uuid", "breakdown": {...}}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Start booking checkout",
        description=(
            "Creates a destination-charge checkout session. Returns 401 when the "
            "merchant cannot currently accept payment and 503 on a temporary "
            "processor failure."
        ),
        tags=["Payments"],
        request=CheckoutRequestSerializer,
        responses={
            201: PaymentSessionSerializer,
            400: ErrorSerializer,
            401: OpenApiResponse(ErrorSerializer, description="Merchant not payable"),
            503: OpenApiResponse(ErrorSerializer, description="Temporary failure, retry later"),
        },
    )
    def post(self, request):
        serializer = CheckoutRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            handle = PaymentSessionService(get_stripe_adapter()).create_session(serializer.to_request())
        except PaymentError as e:
            logger.warning(
                "Checkout failed",
                extra={"error_code": e.error_code, "error_kind": e.kind.value},
            )
            return error_response(e)

        return Response(
            PaymentSessionSerializer(
                {
                    "session_id": handle.session_id,
                    "client_handle": handle.client_handle,
                    "payment_record_id": handle.payment_record_id,
                    "breakdown": {
                        "base_amount_cents": handle.breakdown.base_amount_cents,
                        "platform_fee_cents": handle.breakdown.platform_fee_cents,
                        "commission_cents": handle.breakdown.commission_cents,
                        "tax_cents": handle.breakdown.tax_cents,
                        "total_amount_cents": handle.breakdown.total_amount_cents,
                        "processor_fee_estimate_cents": handle.breakdown.processor_fee_estimate_cents,
                        "application_fee_cents": handle.breakdown.application_fee_cents,
                        "merchant_net_cents": handle.breakdown.merchant_net_cents,
                    },
                }
            ).data,
            status=status.HTTP_201_CREATED,
        )


class RefundView(APIView):
    """
    Refund a payment, falling back to the platform balance when the
    merchant's balance cannot cover it.

    POST /api/v1/payments/refunds/

    Request body:
        {"payment_intent_id": "pi_...", "amount_cents": 5000, "refund_application_fee": true}

    Returns:
        {"refund_id": "re_...", "used_fallback": false, "fallback_reason": null, ...}
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        summary="Refund a payment",
        tags=["Payments - Admin"],
        request=RefundRequestSerializer,
        responses={201: RefundResponseSerializer, 400: ErrorSerializer, 500: ErrorSerializer},
    )
    def post(self, request):
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            record = RefundOrchestrator(get_stripe_adapter()).refund(serializer.to_request())
        except PaymentError as e:
            return error_response(e)

        return Response(
            RefundResponseSerializer(
                {
                    "refund_id": record.processor_refund_id,
                    "refund_record_id": record.id,
                    "status": record.status,
                    "amount_cents": record.requested_amount_cents,
                    "used_fallback": record.used_fallback,
                    "fallback_reason": record.fallback_reason or None,
                }
            ).data,
            status=status.HTTP_201_CREATED,
        )


class MerchantAccountProvisionView(APIView):
    """
    Provision (or return) a merchant's settlement account.

    POST /api/v1/payments/merchant-accounts/

    Idempotent: repeated calls return the same account. A concurrent call
    for the same merchant gets 503 and should retry shortly.
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        summary="Provision merchant settlement account",
        tags=["Payments - Admin"],
        request=ProvisionRequestSerializer,
        responses={
            200: MerchantAccountSerializer,
            400: ErrorSerializer,
            404: ErrorSerializer,
            503: OpenApiResponse(ErrorSerializer, description="Provisioning in progress, retry shortly"),
        },
    )
    def post(self, request):
        serializer = ProvisionRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        provision = serializer.to_request(
            RequestContext(client_ip=get_client_ip(request), user_agent=get_user_agent(request))
        )

        try:
            account = MerchantAccountProvisioner(get_stripe_adapter()).provision(
                provision.merchant_id,
                provision.country,
                provision.business_type,
                provision.context,
            )
        except (PaymentError, MerchantNotFoundError) as e:
            return error_response(e)

        return Response(MerchantAccountSerializer(account).data)


class MerchantAccountDetailView(APIView):
    """
    Stored settlement account state for a merchant.

    GET /api/v1/payments/merchant-accounts/<merchant_id>/
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        summary="Get merchant settlement account",
        tags=["Payments - Admin"],
        responses={200: MerchantAccountSerializer, 404: OpenApiResponse(description="No account")},
    )
    def get(self, request, merchant_id):
        account = MerchantAccountStore.get_for_merchant(merchant_id)
        if account is None:
            return Response({"detail": "No settlement account"}, status=status.HTTP_404_NOT_FOUND)
        return Response(MerchantAccountSerializer(account).data)


class OnboardingSessionView(APIView):
    """
    Start an embedded onboarding session for a merchant's account.

    POST /api/v1/payments/merchant-accounts/<merchant_id>/onboarding-session/

    The returned client_secret initializes Stripe's account onboarding
    component, where the merchant clears outstanding requirements.

    Returns:
        {"processor_account_id": "acct_...", "client_secret": "...", "expires_at": 1700000000}
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        summary="Create onboarding session",
        tags=["Payments - Admin"],
        request=None,
        responses={201: OnboardingSessionSerializer, 404: ErrorSerializer, 503: ErrorSerializer},
    )
    def post(self, request, merchant_id):
        try:
            session = MerchantAccountSettingsService(get_stripe_adapter()).create_onboarding_session(merchant_id)
        except PaymentError as e:
            return error_response(e)

        return Response(OnboardingSessionSerializer(session).data, status=status.HTTP_201_CREATED)


class PayoutSettingsView(APIView):
    """
    Read or change a merchant's payout schedule.

    GET /api/v1/payments/merchant-accounts/<merchant_id>/payout-settings/
    PUT /api/v1/payments/merchant-accounts/<merchant_id>/payout-settings/

    Request body (PUT):
        {"interval": "weekly", "delay_days": 5, "weekly_anchor": "friday"}
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        summary="Get payout settings",
        tags=["Payments - Admin"],
        responses={200: PayoutSettingsSerializer, 404: ErrorSerializer, 503: ErrorSerializer},
    )
    def get(self, request, merchant_id):
        try:
            payout_settings = MerchantAccountSettingsService(get_stripe_adapter()).get_payout_settings(merchant_id)
        except PaymentError as e:
            return error_response(e)

        return Response(PayoutSettingsSerializer(payout_settings).data)

    @extend_schema(
        summary="Update payout schedule",
        tags=["Payments - Admin"],
        request=PayoutScheduleSerializer,
        responses={200: PayoutSettingsSerializer, 400: ErrorSerializer, 404: ErrorSerializer},
    )
    def put(self, request, merchant_id):
        serializer = PayoutScheduleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            payout_settings = MerchantAccountSettingsService(get_stripe_adapter()).update_payout_schedule(
                merchant_id, serializer.to_schedule()
            )
        except PaymentError as e:
            return error_response(e)

        return Response(PayoutSettingsSerializer(payout_settings).data)


class PayoutInfoView(APIView):
    """
    Balance, payout destination and next payout date for a merchant.

    GET /api/v1/payments/merchant-accounts/<merchant_id>/payout-info/

    Returns:
        {
            "settings": {"schedule": {...}, "bank_account_last4": "6789", ...},
            "available": {"usd": 12000},
            "pending": {"usd": 3000},
            "next_payout_date": "2026-10-26"
        }
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        summary="Get payout info",
        tags=["Payments - Admin"],
        responses={200: PayoutInfoSerializer, 404: ErrorSerializer, 503: ErrorSerializer},
    )
    def get(self, request, merchant_id):
        try:
            info = MerchantAccountSettingsService(get_stripe_adapter()).get_payout_info(merchant_id)
        except PaymentError as e:
            return error_response(e)

        return Response(PayoutInfoSerializer(info).data)
