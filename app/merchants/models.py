"""
Merchant model: the tenant (agency) that receives settlement funds.

Profile fields are optional because agencies complete their profile over
time. Account provisioning only forwards the fields that are present.
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class BusinessType(models.TextChoices):
    """Legal entity types accepted by the processor."""

    INDIVIDUAL = "individual", "Individual"
    COMPANY = "company", "Company"
    NON_PROFIT = "non_profit", "Non-profit"
    GOVERNMENT_ENTITY = "government_entity", "Government entity"


class Merchant(UUIDPrimaryKeyMixin, BaseModel):
    """
    An agency operating on the platform.

    Fields:
        name: Commercial name shown to customers
        legal_name: Registered legal name (company payloads)
        business_type: Legal entity type
        country: ISO 3166-1 alpha-2 country code
        contact_email: Address for payout and account notifications
        phone: Support phone number
        website: Public website
        address: Free-form "line1, city, state, postal_code" string
        tax_id: Company tax identifier
        representative_name: Legal representative's full name
        representative_email: Legal representative's email
        representative_dob: Legal representative's date of birth
    """

    name = models.CharField(
        max_length=255,
        help_text="Commercial name shown to customers",
    )
    legal_name = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Registered legal name",
    )
    business_type = models.CharField(
        max_length=32,
        choices=BusinessType.choices,
        default=BusinessType.COMPANY,
        help_text="Legal entity type",
    )
    country = models.CharField(
        max_length=2,
        help_text="ISO 3166-1 alpha-2 country code",
    )

    # ==========================================================================
    # Contact
    # ==========================================================================

    contact_email = models.EmailField(
        blank=True,
        default="",
        help_text="Address for payout and account notifications",
    )
    phone = models.CharField(
        max_length=32,
        blank=True,
        default="",
        help_text="Support phone number",
    )
    website = models.URLField(
        blank=True,
        default="",
        help_text="Public website",
    )
    address = models.CharField(
        max_length=512,
        blank=True,
        default="",
        help_text="Comma-separated address: line1, city, state, postal code",
    )
    tax_id = models.CharField(
        max_length=64,
        blank=True,
        default="",
        help_text="Company tax identifier",
    )

    # ==========================================================================
    # Legal representative
    # ==========================================================================

    representative_name = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Legal representative's full name",
    )
    representative_email = models.EmailField(
        blank=True,
        default="",
        help_text="Legal representative's email",
    )
    representative_dob = models.DateField(
        null=True,
        blank=True,
        help_text="Legal representative's date of birth",
    )

    class Meta:
        ordering = ["name"]
        verbose_name = "Merchant"
        verbose_name_plural = "Merchants"

    def __str__(self) -> str:
        return f"Merchant({self.name}, {self.country})"
