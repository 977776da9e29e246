"""
URL configuration for the payments app.

Routes:
    - POST /checkout/ - Start a booking checkout
    - POST /refunds/ - Refund a payment (admin)
    - POST /merchant-accounts/ - Provision a settlement account (admin)
    - GET /merchant-accounts/<merchant_id>/ - Settlement account state (admin)
    - POST /merchant-accounts/<merchant_id>/onboarding-session/ - Embedded onboarding session (admin)
    - GET/PUT /merchant-accounts/<merchant_id>/payout-settings/ - Payout schedule (admin)
    - GET /merchant-accounts/<merchant_id>/payout-info/ - Balance and next payout (admin)
    - POST /webhooks/stripe/ - Stripe webhook endpoint

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("payments/", include("payments.urls")),
    ]
"""

from django.urls import path

from payments.views import (
    CheckoutSessionView,
    MerchantAccountDetailView,
    MerchantAccountProvisionView,
    OnboardingSessionView,
    PayoutInfoView,
    PayoutSettingsView,
    RefundView,
)
from payments.webhooks.views import stripe_webhook

app_name = "payments"

urlpatterns = [
    path("checkout/", CheckoutSessionView.as_view(), name="checkout"),
    path("refunds/", RefundView.as_view(), name="refunds"),
    path("merchant-accounts/", MerchantAccountProvisionView.as_view(), name="merchant_account_provision"),
    path(
        "merchant-accounts/<uuid:merchant_id>/",
        MerchantAccountDetailView.as_view(),
        name="merchant_account_detail",
    ),
    path(
        "merchant-accounts/<uuid:merchant_id>/onboarding-session/",
        OnboardingSessionView.as_view(),
        name="merchant_account_onboarding_session",
    ),
    path(
        "merchant-accounts/<uuid:merchant_id>/payout-settings/",
        PayoutSettingsView.as_view(),
        name="merchant_account_payout_settings",
    ),
    path(
        "merchant-accounts/<uuid:merchant_id>/payout-info/",
        PayoutInfoView.as_view(),
        name="merchant_account_payout_info",
    ),
    # Webhook endpoints
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
]
