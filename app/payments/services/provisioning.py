"""
MerchantAccountProvisioner: idempotent creation of settlement accounts.

Provisioning order for a merchant:
    1. A stored account exists: refresh it from Stripe and return it.
    2. Stripe already has an account tagged with the merchant id (created
       upstream, local write lost): store it and return it.
    3. Create a new Connect account from the merchant profile, sending
       only fields that are present, and store it.
    4. An idempotency conflict on creation re-runs step 2 once.

Steps 2 to 4 run under a ProvisioningClaim row. A concurrent request for
the same merchant fails to insert its own claim and gets
ProvisioningInProgressError ("retry shortly") instead of racing a second
account creation.

Usage:
    from payments.adapters import get_stripe_adapter
    from payments.services.provisioning import MerchantAccountProvisioner
    from payments.types import RequestContext

    account = MerchantAccountProvisioner(get_stripe_adapter()).provision(
        merchant_id, "US", "company", RequestContext(client_ip="203.0.113.7"),
    )
"""

from __future__ import annotations

import ipaddress
import time
import uuid
from datetime import date
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from core.helpers import generate_token
from core.services import BaseService
from merchants.models import BusinessType
from merchants.services import MerchantProfile, MerchantProfileService

from payments.adapters.stripe_adapter import (
    AccountResult,
    CreateAccountParams,
    IdempotencyKeyGenerator,
)
from payments.exceptions import (
    ProvisioningError,
    ProvisioningInProgressError,
    ProvisioningValidationError,
    StripeAuthenticationError,
    StripeError,
    StripeIdempotencyConflictError,
)
from payments.models import MerchantAccount, ProvisioningClaim
from payments.stores import MerchantAccountStore
from payments.types import RequestContext

if TYPE_CHECKING:
    from payments.adapters.stripe_adapter import StripeAdapter

# Business types that get a representative person after account creation
REPRESENTATIVE_BUSINESS_TYPES = (BusinessType.COMPANY, BusinessType.NON_PROFIT)


def _present(fields: dict[str, Any]) -> dict[str, Any]:
    """Drop empty values; nothing is ever defaulted for legal fields."""
    return {key: value for key, value in fields.items() if value not in (None, "", {}, [])}


def _dob(value: date | None) -> dict[str, int] | None:
    if value is None:
        return None
    return {"day": value.day, "month": value.month, "year": value.year}


class MerchantAccountProvisioner(BaseService):
    """Creates or recovers a merchant's connected settlement account."""

    def __init__(
        self,
        adapter: StripeAdapter,
        store: type[MerchantAccountStore] = MerchantAccountStore,
        profiles: type[MerchantProfileService] = MerchantProfileService,
    ):
        self.adapter = adapter
        self.store = store
        self.profiles = profiles

    def provision(
        self,
        merchant_id: uuid.UUID | str,
        country: str,
        business_type: str,
        request_context: RequestContext | None = None,
    ) -> MerchantAccount:
        """
        Return the merchant's settlement account, creating it if needed.

        Args:
            merchant_id: Merchant to provision
            country: ISO 3166-1 alpha-2 country of the account
            business_type: individual, company, non_profit or government_entity
            request_context: IP and user agent recorded as ToS acceptance

        Raises:
            MerchantNotFoundError: No merchant profile (fatal)
            ProvisioningValidationError: Bad country or business type, or a
                country that differs from the profile
            ProvisioningInProgressError: Another request holds the claim
            StripeAuthenticationError: API key rejected (fatal)
            ProvisioningError: Any other processor failure, with replay context
        """
        logger = self.get_logger()
        country = (country or "").upper()
        request_context = request_context or RequestContext()
        self._validate(merchant_id, country, business_type)

        profile = self.profiles.get_profile(merchant_id)

        existing = self.store.get_for_merchant(merchant_id)
        if existing is not None:
            return self._refresh(existing)

        if profile.country and profile.country != country:
            raise ProvisioningValidationError(
                "Account country does not match the merchant profile country",
                error_code="PROVISIONING_COUNTRY_MISMATCH",
                details={
                    "merchant_id": str(merchant_id),
                    "country": country,
                    "profile_country": profile.country,
                },
            )

        claim = self._acquire_claim(merchant_id)
        try:
            # Another request may have finished between our check and the claim
            existing = self.store.get_for_merchant(merchant_id)
            if existing is not None:
                return self._refresh(existing)

            found = self._find_upstream(merchant_id, country)
            if found is not None:
                logger.info(
                    "Recovered processor account created upstream",
                    extra={"merchant_id": str(merchant_id), "processor_account_id": found.id},
                )
                return self.store.upsert_from_processor(merchant_id, found)

            params = self.build_account_params(profile, country, business_type, request_context)
            result = self._create(params)
            account = self.store.upsert_from_processor(merchant_id, result)
            self._create_representative(profile, result.id, business_type)

            logger.info(
                "Merchant account provisioned",
                extra={
                    "merchant_id": str(merchant_id),
                    "processor_account_id": result.id,
                    "country": country,
                    "status": account.status,
                },
            )
            return account
        finally:
            self._release_claim(claim)

    # =========================================================================
    # Payload
    # =========================================================================

    def build_account_params(
        self,
        profile: MerchantProfile,
        country: str,
        business_type: str,
        request_context: RequestContext,
    ) -> CreateAccountParams:
        """Assemble the account payload from the profile, present fields only."""
        address = profile.address.to_processor_dict(country) if profile.address else None

        individual: dict[str, Any] = {}
        company: dict[str, Any] = {}
        if business_type == BusinessType.INDIVIDUAL:
            individual = _present(
                {
                    "first_name": profile.representative_first_name,
                    "last_name": profile.representative_last_name,
                    "email": profile.contact_email,
                    "phone": profile.phone,
                    "dob": _dob(profile.representative_dob),
                    "address": address,
                }
            )
        else:
            company = _present(
                {
                    "name": profile.legal_name or profile.name,
                    "tax_id": profile.tax_id,
                    "phone": profile.phone,
                    "address": address,
                }
            )

        capabilities: dict[str, Any] = {"transfers": {"requested": True}}
        if country == "US":
            capabilities["card_payments"] = {"requested": True}

        return CreateAccountParams(
            merchant_id=str(profile.merchant_id),
            country=country,
            business_type=business_type,
            idempotency_key=IdempotencyKeyGenerator.timestamped("acct", profile.merchant_id),
            email=profile.contact_email,
            business_profile=_present(
                {
                    "name": profile.name,
                    "url": profile.website,
                    "support_email": profile.contact_email,
                    "support_phone": profile.phone,
                }
            ),
            individual=individual,
            company=company,
            tos_acceptance=self._tos_acceptance(country, request_context),
            capabilities=capabilities,
        )

    @staticmethod
    def _tos_acceptance(country: str, request_context: RequestContext) -> dict[str, Any]:
        ip = request_context.client_ip
        try:
            if not ip or ipaddress.ip_address(ip).is_loopback:
                ip = settings.STRIPE_TOS_FALLBACK_IP
        except ValueError:
            ip = settings.STRIPE_TOS_FALLBACK_IP

        tos: dict[str, Any] = {"date": int(time.time()), "ip": ip}
        if country in settings.STRIPE_FULL_SERVICE_COUNTRIES:
            tos["user_agent"] = request_context.user_agent or "unknown"
        else:
            tos["service_agreement"] = "recipient"
        return tos

    # =========================================================================
    # Processor Calls
    # =========================================================================

    def _refresh(self, account: MerchantAccount) -> MerchantAccount:
        """Re-fetch a stored account; on a processor outage return the stored row."""
        try:
            result = self.adapter.retrieve_account(account.processor_account_id)
        except StripeAuthenticationError:
            raise
        except StripeError as e:
            self.get_logger().warning(
                "Could not refresh merchant account, returning stored state",
                extra={
                    "merchant_id": str(account.merchant_id),
                    "processor_account_id": account.processor_account_id,
                    "error_code": e.error_code,
                },
            )
            return account
        return self.store.upsert_from_processor(account.merchant_id, result)

    def _find_upstream(self, merchant_id: uuid.UUID | str, country: str) -> AccountResult | None:
        try:
            return self.adapter.find_account_by_merchant_id(merchant_id)
        except StripeAuthenticationError:
            raise
        except StripeError as e:
            raise ProvisioningError.wrap(e, merchant_id=merchant_id, country=country) from e

    def _create(self, params: CreateAccountParams) -> AccountResult:
        logger = self.get_logger()
        try:
            return self.adapter.create_connected_account(params)
        except StripeIdempotencyConflictError as e:
            logger.warning(
                "Idempotency conflict creating account, searching processor",
                extra={"merchant_id": params.merchant_id, "idempotency_key": params.idempotency_key},
            )
            found = self._find_upstream(params.merchant_id, params.country)
            if found is not None:
                return found
            raise ProvisioningError.wrap(
                e,
                merchant_id=params.merchant_id,
                country=params.country,
                payload_shape=params.shape(),
            ) from e
        except StripeAuthenticationError:
            raise
        except StripeError as e:
            logger.error(
                "Processor rejected account creation",
                extra={
                    "merchant_id": params.merchant_id,
                    "country": params.country,
                    "payload_shape": params.shape(),
                    "error_code": e.error_code,
                },
            )
            raise ProvisioningError.wrap(
                e,
                merchant_id=params.merchant_id,
                country=params.country,
                payload_shape=params.shape(),
            ) from e

    def _create_representative(
        self,
        profile: MerchantProfile,
        account_id: str,
        business_type: str,
    ) -> str | None:
        if business_type not in REPRESENTATIVE_BUSINESS_TYPES:
            return None
        if not profile.representative_name or not profile.representative_dob:
            return None

        person = _present(
            {
                "first_name": profile.representative_first_name,
                "last_name": profile.representative_last_name,
                "dob": _dob(profile.representative_dob),
                "relationship": {"owner": True, "director": True, "representative": True},
                "email": profile.representative_email or profile.contact_email,
                "phone": profile.phone,
            }
        )
        try:
            return self.adapter.create_person(
                account_id,
                person,
                idempotency_key=IdempotencyKeyGenerator.generate("person", account_id),
            )
        except StripeError as e:
            # The account stays usable; onboarding collects the person later
            self.get_logger().error(
                "Could not create representative person",
                extra={
                    "merchant_id": str(profile.merchant_id),
                    "processor_account_id": account_id,
                    "error_code": e.error_code,
                },
                exc_info=True,
            )
            return None

    # =========================================================================
    # Single-flight Claim
    # =========================================================================

    def _acquire_claim(self, merchant_id: uuid.UUID | str) -> ProvisioningClaim:
        token = generate_token(16)
        try:
            with transaction.atomic():
                claim, created = ProvisioningClaim.objects.get_or_create(
                    merchant_id=merchant_id,
                    defaults={"token": token, "expires_at": ProvisioningClaim.default_expiry()},
                )
        except IntegrityError:
            created = False

        if created:
            return claim

        taken_over = ProvisioningClaim.objects.filter(
            merchant_id=merchant_id,
            expires_at__lte=timezone.now(),
        ).update(token=token, expires_at=ProvisioningClaim.default_expiry())
        if taken_over:
            self.get_logger().warning(
                "Took over abandoned provisioning claim",
                extra={"merchant_id": str(merchant_id)},
            )
            return ProvisioningClaim.objects.get(merchant_id=merchant_id)

        raise ProvisioningInProgressError(
            "Settlement account provisioning already in progress, retry shortly",
            details={"merchant_id": str(merchant_id)},
        )

    @staticmethod
    def _release_claim(claim: ProvisioningClaim) -> None:
        ProvisioningClaim.objects.filter(pk=claim.pk, token=claim.token).delete()

    @staticmethod
    def _validate(merchant_id: uuid.UUID | str, country: str, business_type: str) -> None:
        if len(country) != 2 or not country.isalpha():
            raise ProvisioningValidationError(
                "Country must be a two-letter ISO code",
                details={"merchant_id": str(merchant_id), "country": country},
            )
        if business_type not in BusinessType.values:
            raise ProvisioningValidationError(
                f"Unsupported business type '{business_type}'",
                details={"merchant_id": str(merchant_id), "business_type": business_type},
            )
