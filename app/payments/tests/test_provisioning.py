"""
Tests for MerchantAccountProvisioner.

The adapter is a MagicMock; the store, claim table and merchant profiles
are real.
"""

import uuid
from datetime import datetime, timedelta, timezone as dt_timezone

import pytest
from django.test import override_settings
from django.utils import timezone
from freezegun import freeze_time

from merchants.exceptions import MerchantNotFoundError
from merchants.tests.factories import MerchantFactory
from payments.exceptions import (
    ErrorKind,
    ProvisioningError,
    ProvisioningInProgressError,
    ProvisioningValidationError,
    StripeAPIUnavailableError,
    StripeAuthenticationError,
    StripeIdempotencyConflictError,
    StripeInvalidRequestError,
)
from payments.models import MerchantAccount, ProvisioningClaim
from payments.services.provisioning import MerchantAccountProvisioner
from payments.state_machines import MerchantAccountStatus
from payments.types import RequestContext

FROZEN_NOW = datetime(2026, 3, 2, 9, 30, tzinfo=dt_timezone.utc)


@pytest.fixture
def provisioner(mock_adapter):
    return MerchantAccountProvisioner(mock_adapter)


@pytest.fixture
def new_account(mock_adapter, account_result):
    """Adapter state for a merchant with nothing at the processor yet."""

    def _setup(merchant, account_id="acct_created"):
        mock_adapter.find_account_by_merchant_id.return_value = None
        mock_adapter.create_connected_account.return_value = account_result(
            id=account_id,
            merchant_id=merchant.id,
            charges_enabled=False,
            payouts_enabled=False,
            details_submitted=False,
            currently_due=["external_account"],
        )
        mock_adapter.create_person.return_value = "person_123"

    return _setup


# =============================================================================
# Existing Accounts
# =============================================================================


@pytest.mark.django_db
class TestProvisionExistingAccount:
    """A merchant that already has a stored account."""

    def test_refreshes_and_returns_stored_account(self, provisioner, mock_adapter, pending_account, account_result):
        """Should re-fetch state and never create a second account."""
        mock_adapter.retrieve_account.return_value = account_result(id=pending_account.processor_account_id)

        account = provisioner.provision(pending_account.merchant_id, "US", "company")

        assert account.pk == pending_account.pk
        assert account.status == MerchantAccountStatus.ACTIVE
        mock_adapter.retrieve_account.assert_called_once_with(pending_account.processor_account_id)
        mock_adapter.create_connected_account.assert_not_called()

    def test_refresh_failure_returns_stored_row(self, provisioner, mock_adapter, pending_account):
        """A processor outage during refresh is not an error."""
        mock_adapter.retrieve_account.side_effect = StripeAPIUnavailableError("down")

        account = provisioner.provision(pending_account.merchant_id, "US", "company")

        assert account.pk == pending_account.pk
        assert account.status == MerchantAccountStatus.PENDING

    def test_refresh_authentication_failure_is_fatal(self, provisioner, mock_adapter, active_account):
        mock_adapter.retrieve_account.side_effect = StripeAuthenticationError("bad key")

        with pytest.raises(StripeAuthenticationError):
            provisioner.provision(active_account.merchant_id, "US", "company")

    def test_repeated_calls_return_same_account(self, provisioner, mock_adapter, merchant, new_account, account_result):
        """Provisioning twice yields one account."""
        new_account(merchant)
        first = provisioner.provision(merchant.id, "US", "company")
        mock_adapter.retrieve_account.return_value = account_result(id=first.processor_account_id)

        second = provisioner.provision(merchant.id, "US", "company")

        assert second.pk == first.pk
        assert mock_adapter.create_connected_account.call_count == 1
        assert MerchantAccount.objects.filter(merchant=merchant).count() == 1


@pytest.mark.django_db
class TestProvisionUpstreamRecovery:
    """Accounts that exist at the processor but not locally."""

    def test_stores_account_found_upstream(self, provisioner, mock_adapter, merchant, account_result):
        mock_adapter.find_account_by_merchant_id.return_value = account_result(
            id="acct_upstream", merchant_id=merchant.id
        )

        account = provisioner.provision(merchant.id, "US", "company")

        assert account.processor_account_id == "acct_upstream"
        assert account.merchant_id == merchant.id
        mock_adapter.create_connected_account.assert_not_called()

    def test_idempotency_conflict_recovers_by_search(self, provisioner, mock_adapter, merchant, account_result):
        """A conflict on create should re-run the search once."""
        mock_adapter.find_account_by_merchant_id.side_effect = [
            None,
            account_result(id="acct_raced", merchant_id=merchant.id),
        ]
        mock_adapter.create_connected_account.side_effect = StripeIdempotencyConflictError("key reused")

        account = provisioner.provision(merchant.id, "US", "company")

        assert account.processor_account_id == "acct_raced"
        assert mock_adapter.find_account_by_merchant_id.call_count == 2

    def test_idempotency_conflict_without_account_raises(self, provisioner, mock_adapter, merchant):
        mock_adapter.find_account_by_merchant_id.return_value = None
        mock_adapter.create_connected_account.side_effect = StripeIdempotencyConflictError("key reused")

        with pytest.raises(ProvisioningError) as exc_info:
            provisioner.provision(merchant.id, "US", "company")

        assert exc_info.value.kind is ErrorKind.INTEGRITY
        assert exc_info.value.http_status == 409
        assert exc_info.value.details["cause_error_code"] == "IDEMPOTENCY_CONFLICT"


# =============================================================================
# Account Creation
# =============================================================================


@pytest.mark.django_db
@freeze_time(FROZEN_NOW)
class TestProvisionCreatesAccount:
    """New accounts built from the merchant profile."""

    def test_company_payload(self, provisioner, mock_adapter, merchant, new_account):
        new_account(merchant)

        account = provisioner.provision(
            merchant.id,
            "us",
            "company",
            RequestContext(client_ip="203.0.113.7", user_agent="Mozilla/5.0"),
        )

        assert account.processor_account_id == "acct_created"
        assert account.status == MerchantAccountStatus.PENDING
        assert account.requirements_currently_due == ["external_account"]

        params = mock_adapter.create_connected_account.call_args.args[0]
        assert params.merchant_id == str(merchant.id)
        assert params.country == "US"
        assert params.idempotency_key == f"acct_{merchant.id}_{int(FROZEN_NOW.timestamp() * 1000)}"
        assert params.company == {
            "name": merchant.legal_name,
            "tax_id": "000000000",
            "phone": "+14155550100",
            "address": {
                "line1": "1 Market St",
                "city": "San Francisco",
                "state": "CA",
                "postal_code": "94105",
                "country": "US",
            },
        }
        assert params.individual == {}
        assert params.business_profile["name"] == merchant.name
        assert params.capabilities == {
            "transfers": {"requested": True},
            "card_payments": {"requested": True},
        }

    @override_settings(STRIPE_FULL_SERVICE_COUNTRIES=["US"])
    def test_full_service_tos_acceptance(self, provisioner, mock_adapter, merchant, new_account):
        new_account(merchant)

        provisioner.provision(
            merchant.id, "US", "company", RequestContext(client_ip="203.0.113.7", user_agent="Mozilla/5.0")
        )

        params = mock_adapter.create_connected_account.call_args.args[0]
        assert params.tos_acceptance == {
            "date": int(FROZEN_NOW.timestamp()),
            "ip": "203.0.113.7",
            "user_agent": "Mozilla/5.0",
        }

    @override_settings(STRIPE_FULL_SERVICE_COUNTRIES=["US"])
    def test_recipient_tos_outside_full_service_countries(self, provisioner, mock_adapter, new_account):
        merchant = MerchantFactory(country="FR")
        new_account(merchant)

        provisioner.provision(merchant.id, "FR", "company", RequestContext(client_ip="203.0.113.7"))

        params = mock_adapter.create_connected_account.call_args.args[0]
        assert params.tos_acceptance["service_agreement"] == "recipient"
        assert "user_agent" not in params.tos_acceptance
        assert "card_payments" not in params.capabilities
        assert params.company["address"]["country"] == "FR"

    @override_settings(STRIPE_TOS_FALLBACK_IP="198.51.100.1")
    @pytest.mark.parametrize("client_ip", [None, "", "127.0.0.1", "::1", "not-an-ip"])
    def test_tos_ip_falls_back(self, provisioner, mock_adapter, merchant, new_account, client_ip):
        """Loopback, missing or garbage addresses are replaced."""
        new_account(merchant)

        provisioner.provision(merchant.id, "US", "company", RequestContext(client_ip=client_ip))

        params = mock_adapter.create_connected_account.call_args.args[0]
        assert params.tos_acceptance["ip"] == "198.51.100.1"

    def test_individual_payload(self, provisioner, mock_adapter, new_account):
        merchant = MerchantFactory(business_type="individual")
        new_account(merchant)

        provisioner.provision(merchant.id, "US", "individual")

        params = mock_adapter.create_connected_account.call_args.args[0]
        assert params.company == {}
        assert params.individual["first_name"] == "Ada"
        assert params.individual["last_name"] == "Lovelace"
        assert params.individual["dob"] == {"day": 10, "month": 12, "year": 1985}
        mock_adapter.create_person.assert_not_called()

    def test_missing_profile_fields_are_not_sent(self, provisioner, mock_adapter, new_account):
        """Nothing is guessed for legal fields the agency has not filled in."""
        merchant = MerchantFactory(tax_id="", phone="", address="", website="", legal_name="")
        new_account(merchant)

        provisioner.provision(merchant.id, "US", "company")

        params = mock_adapter.create_connected_account.call_args.args[0]
        assert params.company == {"name": merchant.name}
        assert "url" not in params.business_profile
        assert "support_phone" not in params.business_profile

    def test_company_gets_representative(self, provisioner, mock_adapter, merchant, new_account):
        new_account(merchant)

        provisioner.provision(merchant.id, "US", "company")

        account_id, person = mock_adapter.create_person.call_args.args
        assert account_id == "acct_created"
        assert person["first_name"] == "Ada"
        assert person["relationship"] == {"owner": True, "director": True, "representative": True}
        assert person["email"] == "ada@example.com"

    def test_no_representative_without_dob(self, provisioner, mock_adapter, new_account):
        merchant = MerchantFactory(representative_dob=None)
        new_account(merchant)

        provisioner.provision(merchant.id, "US", "company")

        mock_adapter.create_person.assert_not_called()

    def test_representative_failure_keeps_account(self, provisioner, mock_adapter, merchant, new_account):
        new_account(merchant)
        mock_adapter.create_person.side_effect = StripeInvalidRequestError("bad dob")

        account = provisioner.provision(merchant.id, "US", "company")

        assert account.processor_account_id == "acct_created"

    def test_processor_rejection_is_wrapped(self, provisioner, mock_adapter, merchant):
        mock_adapter.find_account_by_merchant_id.return_value = None
        mock_adapter.create_connected_account.side_effect = StripeInvalidRequestError(
            "Invalid tax id", stripe_code="parameter_invalid"
        )

        with pytest.raises(ProvisioningError) as exc_info:
            provisioner.provision(merchant.id, "US", "company")

        error = exc_info.value
        assert error.kind is ErrorKind.VALIDATION
        assert error.http_status == 500
        assert error.details["merchant_id"] == str(merchant.id)
        assert error.details["country"] == "US"
        assert error.details["stripe_code"] == "parameter_invalid"
        assert "company" in error.details["payload_shape"]
        # Shape only, never values
        assert "000000000" not in str(error.details)

    def test_authentication_failure_is_not_wrapped(self, provisioner, mock_adapter, merchant):
        mock_adapter.find_account_by_merchant_id.return_value = None
        mock_adapter.create_connected_account.side_effect = StripeAuthenticationError("bad key")

        with pytest.raises(StripeAuthenticationError):
            provisioner.provision(merchant.id, "US", "company")


# =============================================================================
# Single-flight Claim
# =============================================================================


@pytest.mark.django_db
class TestProvisioningClaim:
    """Concurrent provisioning of one merchant."""

    def test_held_claim_rejects_second_request(self, provisioner, mock_adapter, merchant):
        ProvisioningClaim.objects.create(
            merchant=merchant,
            token="other-request",
            expires_at=timezone.now() + timedelta(minutes=5),
        )

        with pytest.raises(ProvisioningInProgressError) as exc_info:
            provisioner.provision(merchant.id, "US", "company")

        assert exc_info.value.http_status == 503
        assert exc_info.value.is_retryable is True
        mock_adapter.find_account_by_merchant_id.assert_not_called()
        mock_adapter.create_connected_account.assert_not_called()

    def test_expired_claim_is_taken_over(self, provisioner, mock_adapter, merchant, new_account):
        ProvisioningClaim.objects.create(
            merchant=merchant,
            token="crashed-request",
            expires_at=timezone.now() - timedelta(seconds=1),
        )
        new_account(merchant)

        account = provisioner.provision(merchant.id, "US", "company")

        assert account.processor_account_id == "acct_created"
        assert not ProvisioningClaim.objects.filter(merchant=merchant).exists()

    def test_claim_released_after_failure(self, provisioner, mock_adapter, merchant):
        mock_adapter.find_account_by_merchant_id.side_effect = StripeAPIUnavailableError("down")

        with pytest.raises(ProvisioningError) as exc_info:
            provisioner.provision(merchant.id, "US", "company")

        assert exc_info.value.http_status == 503
        assert not ProvisioningClaim.objects.filter(merchant=merchant).exists()


# =============================================================================
# Validation
# =============================================================================


@pytest.mark.django_db
class TestProvisionValidation:
    """Input and profile checks."""

    @pytest.mark.parametrize("country", ["USA", "U", "", "1A"])
    def test_bad_country(self, provisioner, merchant, country):
        with pytest.raises(ProvisioningValidationError):
            provisioner.provision(merchant.id, country, "company")

    def test_bad_business_type(self, provisioner, merchant):
        with pytest.raises(ProvisioningValidationError, match="llc"):
            provisioner.provision(merchant.id, "US", "llc")

    def test_country_differs_from_profile(self, provisioner, mock_adapter, merchant):
        """The account country must match the country of the profile address."""
        with pytest.raises(ProvisioningValidationError) as exc_info:
            provisioner.provision(merchant.id, "GB", "company")

        assert exc_info.value.error_code == "PROVISIONING_COUNTRY_MISMATCH"
        assert exc_info.value.details["profile_country"] == "US"
        assert exc_info.value.http_status == 400
        mock_adapter.create_connected_account.assert_not_called()
        assert not ProvisioningClaim.objects.filter(merchant=merchant).exists()

    def test_unknown_merchant(self, provisioner, mock_adapter):
        with pytest.raises(MerchantNotFoundError):
            provisioner.provision(uuid.uuid4(), "US", "company")

        mock_adapter.create_connected_account.assert_not_called()

