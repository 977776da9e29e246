"""
Tests for payment API views.

The process-wide adapter is replaced with ``mock_adapter`` so requests run
the real services against a mocked Stripe.
"""

from unittest.mock import patch
from uuid import uuid4

import pytest
from django.urls import reverse
from freezegun import freeze_time
from rest_framework import status

from merchants.exceptions import MerchantNotFoundError
from payments.adapters import AccountSessionResult, PayoutSchedule, set_stripe_adapter
from payments.exceptions import (
    ProvisioningInProgressError,
    StripeAPIUnavailableError,
    StripeInvalidRequestError,
)
from payments.models import PaymentRecord, RefundRecord
from payments.services.refunds import FALLBACK_REASON_LOW_BALANCE
from payments.tests.factories import MerchantAccountFactory


@pytest.fixture(autouse=True)
def installed_adapter(mock_adapter):
    set_stripe_adapter(mock_adapter)
    yield mock_adapter
    set_stripe_adapter(None)


@pytest.fixture
def user(django_user_model):
    return django_user_model.objects.create_user(username="booker", password="unused-password")


@pytest.fixture
def user_client(api_client, user):
    api_client.force_authenticate(user=user)
    return api_client


@pytest.fixture
def admin_client(api_client, admin_user):
    api_client.force_authenticate(user=admin_user)
    return api_client


# =============================================================================
# Checkout
# =============================================================================


@pytest.mark.django_db
class TestCheckoutSessionView:
    """Tests for POST /api/v1/payments/checkout/."""

    url = "/api/v1/payments/checkout/"

    @pytest.fixture
    def payload(self, active_account):
        return {
            "merchant_id": str(active_account.merchant_id),
            "booking_id": "bk_2041",
            "base_amount_cents": 20000,
            "currency": "USD",
            "payer_email": "payer@example.com",
            "platform_fee_kind": "fixed",
            "platform_fee_amount_cents": 500,
            "tax_percent": "3",
        }

    def test_creates_session(self, user_client, mock_adapter, session_result, payload, settings):
        settings.PLATFORM_COMMISSION_PERCENT = "0"
        mock_adapter.create_checkout_session.return_value = session_result(id="cs_test_view")

        response = user_client.post(self.url, payload, format="json")

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["session_id"] == "cs_test_view"
        breakdown = response.data["breakdown"]
        assert breakdown["platform_fee_cents"] == 500
        assert breakdown["tax_cents"] == 600
        assert breakdown["total_amount_cents"] == 21100
        record = PaymentRecord.objects.get(pk=response.data["payment_record_id"])
        assert record.session_id == "cs_test_view"
        assert record.currency == "usd"

    def test_merchant_not_payable(self, user_client, mock_adapter, payload):
        pending = MerchantAccountFactory(pending=True)
        payload["merchant_id"] = str(pending.merchant_id)

        response = user_client.post(self.url, payload, format="json")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.data["code"] == 401
        assert response.data["error_code"] == "MERCHANT_NOT_PAYABLE"
        mock_adapter.create_checkout_session.assert_not_called()

    def test_transient_processor_error(self, user_client, mock_adapter, payload):
        mock_adapter.create_checkout_session.side_effect = StripeAPIUnavailableError("down")

        response = user_client.post(self.url, payload, format="json")

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.data["error_code"] == "STRIPE_UNAVAILABLE"
        assert PaymentRecord.objects.count() == 0

    def test_invalid_amount(self, user_client, payload):
        payload["base_amount_cents"] = 0

        response = user_client.post(self.url, payload, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "base_amount_cents" in response.data

    def test_requires_authentication(self, api_client, payload):
        response = api_client.post(self.url, payload, format="json")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


# =============================================================================
# Refunds
# =============================================================================


@pytest.mark.django_db
class TestRefundView:
    """Tests for POST /api/v1/payments/refunds/."""

    url = "/api/v1/payments/refunds/"

    @pytest.fixture
    def charge(self, mock_adapter, payment_record, intent_result, refund_result):
        mock_adapter.retrieve_payment_intent.return_value = intent_result(
            id=payment_record.payment_intent_id,
            destination=payment_record.merchant_account.processor_account_id,
        )
        mock_adapter.create_refund.return_value = refund_result(id="re_view")
        return payment_record

    def test_refund_with_fallback(self, admin_client, mock_adapter, charge, balance_result):
        mock_adapter.retrieve_balance.return_value = balance_result(available=100)

        response = admin_client.post(
            self.url,
            {"payment_intent_id": charge.payment_intent_id, "amount_cents": 5000},
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["refund_id"] == "re_view"
        assert response.data["amount_cents"] == 5000
        assert response.data["used_fallback"] is True
        assert response.data["fallback_reason"] == FALLBACK_REASON_LOW_BALANCE

    def test_refund_without_fallback(self, admin_client, mock_adapter, charge, balance_result):
        mock_adapter.retrieve_balance.return_value = balance_result(available=50000)

        response = admin_client.post(self.url, {"payment_intent_id": charge.payment_intent_id}, format="json")

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["used_fallback"] is False
        assert response.data["fallback_reason"] is None
        assert RefundRecord.objects.get().requested_amount_cents == 21100

    def test_amount_exceeded(self, admin_client, charge):
        response = admin_client.post(
            self.url,
            {"payment_intent_id": charge.payment_intent_id, "amount_cents": 99999},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "REFUND_AMOUNT_EXCEEDED"

    def test_requires_admin(self, user_client, mock_adapter):
        response = user_client.post(self.url, {"payment_intent_id": "pi_123"}, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        mock_adapter.retrieve_payment_intent.assert_not_called()


# =============================================================================
# Merchant Accounts
# =============================================================================


@pytest.mark.django_db
class TestMerchantAccountProvisionView:
    """Tests for POST /api/v1/payments/merchant-accounts/."""

    url = "/api/v1/payments/merchant-accounts/"

    def test_returns_account(self, admin_client, active_account):
        with patch("payments.views.MerchantAccountProvisioner") as mock_provisioner:
            mock_provisioner.return_value.provision.return_value = active_account

            response = admin_client.post(
                self.url,
                {"merchant_id": str(active_account.merchant_id), "country": "us", "business_type": "company"},
                format="json",
                HTTP_X_FORWARDED_FOR="203.0.113.7, 10.0.0.1",
                HTTP_USER_AGENT="admin-console/1.0",
            )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["processor_account_id"] == active_account.processor_account_id
        assert response.data["is_payable"] is True

        merchant_id, country, business_type, context = mock_provisioner.return_value.provision.call_args.args
        assert str(merchant_id) == str(active_account.merchant_id)
        assert country == "US"
        assert business_type == "company"
        assert context.client_ip == "203.0.113.7"
        assert context.user_agent == "admin-console/1.0"

    def test_unknown_merchant(self, admin_client):
        merchant_id = uuid4()
        with patch("payments.views.MerchantAccountProvisioner") as mock_provisioner:
            mock_provisioner.return_value.provision.side_effect = MerchantNotFoundError(
                "Merchant not found", details={"merchant_id": str(merchant_id)}
            )

            response = admin_client.post(
                self.url,
                {"merchant_id": str(merchant_id), "country": "US", "business_type": "company"},
                format="json",
            )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error_code"] == "MERCHANT_NOT_FOUND"

    def test_in_progress(self, admin_client, merchant):
        with patch("payments.views.MerchantAccountProvisioner") as mock_provisioner:
            mock_provisioner.return_value.provision.side_effect = ProvisioningInProgressError(
                "Provisioning already in progress"
            )

            response = admin_client.post(
                self.url,
                {"merchant_id": str(merchant.id), "country": "US", "business_type": "company"},
                format="json",
            )

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.data["code"] == 503

    def test_invalid_business_type(self, admin_client, merchant):
        response = admin_client.post(
            self.url,
            {"merchant_id": str(merchant.id), "country": "US", "business_type": "partnership"},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "business_type" in response.data

    def test_requires_admin(self, user_client, merchant):
        response = user_client.post(
            self.url,
            {"merchant_id": str(merchant.id), "country": "US", "business_type": "company"},
            format="json",
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.django_db
class TestMerchantAccountDetailView:
    """Tests for GET /api/v1/payments/merchant-accounts/<merchant_id>/."""

    def test_returns_account(self, admin_client, pending_account):
        url = reverse("payments:merchant_account_detail", args=[pending_account.merchant_id])

        response = admin_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == "pending"
        assert response.data["is_payable"] is False
        assert response.data["requirements_currently_due"] == ["external_account", "tos_acceptance.date"]

    def test_no_account(self, admin_client, merchant):
        url = reverse("payments:merchant_account_detail", args=[merchant.id])

        response = admin_client.get(url)

        assert response.status_code == status.HTTP_404_NOT_FOUND


# =============================================================================
# Onboarding and Payout Settings
# =============================================================================


@pytest.mark.django_db
class TestOnboardingSessionView:
    """Tests for POST /api/v1/payments/merchant-accounts/<merchant_id>/onboarding-session/."""

    def test_returns_client_secret(self, admin_client, mock_adapter, pending_account):
        mock_adapter.create_account_session.return_value = AccountSessionResult(
            account_id=pending_account.processor_account_id,
            client_secret="accs_secret_abc",
            expires_at=1772447400,
        )
        url = reverse("payments:merchant_account_onboarding_session", args=[pending_account.merchant_id])

        response = admin_client.post(url)

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data == {
            "processor_account_id": pending_account.processor_account_id,
            "client_secret": "accs_secret_abc",
            "expires_at": 1772447400,
        }

    def test_no_account(self, admin_client, mock_adapter, merchant):
        url = reverse("payments:merchant_account_onboarding_session", args=[merchant.id])

        response = admin_client.post(url)

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error_code"] == "MERCHANT_ACCOUNT_NOT_FOUND"
        mock_adapter.create_account_session.assert_not_called()

    def test_requires_admin(self, user_client, pending_account):
        url = reverse("payments:merchant_account_onboarding_session", args=[pending_account.merchant_id])

        response = user_client.post(url)

        assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.django_db
class TestPayoutSettingsView:
    """Tests for GET/PUT /api/v1/payments/merchant-accounts/<merchant_id>/payout-settings/."""

    @pytest.fixture
    def url(self, active_account):
        return reverse("payments:merchant_account_payout_settings", args=[active_account.merchant_id])

    def test_get(self, admin_client, mock_adapter, active_account, account_result, url):
        result = account_result(id=active_account.processor_account_id)
        result.payout_schedule = PayoutSchedule(interval="weekly", delay_days=5, weekly_anchor="monday")
        mock_adapter.retrieve_account.return_value = result

        response = admin_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["schedule"]["interval"] == "weekly"
        assert response.data["schedule"]["weekly_anchor"] == "monday"
        assert response.data["processor_account_id"] == active_account.processor_account_id

    def test_put(self, admin_client, mock_adapter, active_account, account_result, url):
        result = account_result(id=active_account.processor_account_id)
        result.payout_schedule = PayoutSchedule(interval="weekly", delay_days=7, weekly_anchor="friday")
        mock_adapter.update_payout_schedule.return_value = result

        response = admin_client.put(
            url,
            {"interval": "weekly", "delay_days": 7, "weekly_anchor": "friday", "monthly_anchor": 12},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["schedule"]["weekly_anchor"] == "friday"
        account_id, schedule = mock_adapter.update_payout_schedule.call_args.args
        assert account_id == active_account.processor_account_id
        assert schedule == PayoutSchedule(interval="weekly", delay_days=7, weekly_anchor="friday")

    def test_put_weekly_without_anchor(self, admin_client, mock_adapter, url):
        response = admin_client.put(url, {"interval": "weekly", "delay_days": 7}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "weekly_anchor" in response.data
        mock_adapter.update_payout_schedule.assert_not_called()

    def test_put_rejected_by_processor(self, admin_client, mock_adapter, url):
        mock_adapter.update_payout_schedule.side_effect = StripeInvalidRequestError("delay_days too short")

        response = admin_client.put(url, {"interval": "daily", "delay_days": 0}, format="json")

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.data["error_code"] == "INVALID_STRIPE_REQUEST"

    def test_requires_admin(self, user_client, url):
        response = user_client.get(url)

        assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.django_db
class TestPayoutInfoView:
    """Tests for GET /api/v1/payments/merchant-accounts/<merchant_id>/payout-info/."""

    @freeze_time("2026-03-04 12:00:00")
    def test_returns_balance_and_next_payout(
        self, admin_client, mock_adapter, active_account, account_result, balance_result
    ):
        result = account_result(id=active_account.processor_account_id)
        result.payout_schedule = PayoutSchedule(interval="daily", delay_days=2)
        result.bank_account_last4 = "6789"
        mock_adapter.retrieve_account.return_value = result
        mock_adapter.retrieve_balance.return_value = balance_result(available=12000, pending=3000)
        url = reverse("payments:merchant_account_payout_info", args=[active_account.merchant_id])

        response = admin_client.get(url)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["available"] == {"usd": 12000}
        assert response.data["pending"] == {"usd": 3000}
        assert response.data["total"] == {"usd": 15000}
        assert response.data["next_payout_date"] == "2026-03-07"
        assert response.data["settings"]["bank_account_last4"] == "6789"

    def test_no_account(self, admin_client, merchant):
        url = reverse("payments:merchant_account_payout_info", args=[merchant.id])

        response = admin_client.get(url)

        assert response.status_code == status.HTTP_404_NOT_FOUND
