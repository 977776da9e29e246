"""
Read access to merchant profiles for the settlement subsystem.

Payments code depends on the typed ``MerchantProfile`` snapshot returned
here rather than on the Merchant model, so account provisioning and payout
notifications never touch profile rows directly.

Usage:
    from merchants.services import MerchantProfileService

    profile = MerchantProfileService.get_profile(merchant_id)
    if profile.representative_dob:
        ...
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date

from core.services import BaseService

from merchants.exceptions import MerchantNotFoundError
from merchants.models import Merchant


@dataclass(frozen=True)
class PostalAddress:
    """Address parsed from the profile's comma-separated address string."""

    line1: str
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None

    @classmethod
    def parse(cls, raw: str) -> PostalAddress | None:
        """
        Parse "line1, city, state, postal code" into its parts.

        Missing trailing parts stay None; an empty string yields None.
        """
        parts = [part.strip() for part in (raw or "").split(",") if part.strip()]
        if not parts:
            return None
        padded = parts + [None] * (4 - len(parts))
        return cls(
            line1=padded[0],
            city=padded[1],
            state=padded[2],
            postal_code=padded[3],
        )

    def to_processor_dict(self, country: str) -> dict[str, str]:
        """Return the address as processor fields, skipping empty parts."""
        fields = {
            "line1": self.line1,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": country,
        }
        return {key: value for key, value in fields.items() if value}


@dataclass(frozen=True)
class MerchantProfile:
    """
    Immutable snapshot of a merchant's profile.

    Empty strings from the database are normalized to None so callers can
    test presence with a plain truthiness check.
    """

    merchant_id: uuid.UUID
    name: str
    legal_name: str | None
    business_type: str
    country: str
    contact_email: str | None
    phone: str | None
    website: str | None
    address: PostalAddress | None
    tax_id: str | None
    representative_name: str | None
    representative_email: str | None
    representative_dob: date | None

    @property
    def representative_first_name(self) -> str | None:
        if not self.representative_name:
            return None
        return self.representative_name.split()[0]

    @property
    def representative_last_name(self) -> str | None:
        if not self.representative_name:
            return None
        parts = self.representative_name.split()
        return " ".join(parts[1:]) or None


class MerchantProfileService(BaseService):
    """Loads merchant profiles as MerchantProfile snapshots."""

    @classmethod
    def get_profile(cls, merchant_id: uuid.UUID | str) -> MerchantProfile:
        """
        Load the profile for ``merchant_id``.

        Raises:
            MerchantNotFoundError: No merchant with this id
        """
        merchant = Merchant.objects.filter(id=merchant_id).first()
        if merchant is None:
            cls.get_logger().warning(
                "Merchant profile not found",
                extra={"merchant_id": str(merchant_id)},
            )
            raise MerchantNotFoundError(
                f"Merchant {merchant_id} not found",
                details={"merchant_id": str(merchant_id)},
            )
        return cls.to_profile(merchant)

    @staticmethod
    def to_profile(merchant: Merchant) -> MerchantProfile:
        return MerchantProfile(
            merchant_id=merchant.id,
            name=merchant.name,
            legal_name=merchant.legal_name or None,
            business_type=merchant.business_type,
            country=merchant.country.upper(),
            contact_email=merchant.contact_email or None,
            phone=merchant.phone or None,
            website=merchant.website or None,
            address=PostalAddress.parse(merchant.address),
            tax_id=merchant.tax_id or None,
            representative_name=merchant.representative_name or None,
            representative_email=merchant.representative_email or None,
            representative_dob=merchant.representative_dob,
        )
