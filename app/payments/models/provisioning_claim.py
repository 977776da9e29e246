"""
ProvisioningClaim model: single-flight marker for account provisioning.

A row exists while one request is creating a merchant's connected account.
The unique merchant constraint makes a second concurrent insert fail, and
that request is told to retry shortly instead of racing a second account
creation at the processor.
"""

from __future__ import annotations

from datetime import timedelta

from django.db import models
from django.utils import timezone

from core.models import BaseModel

# A claim older than this is assumed abandoned (worker crash mid-request)
CLAIM_TTL = timedelta(minutes=5)


class ProvisioningClaim(BaseModel):
    """
    In-progress provisioning marker, one per merchant.

    Fields:
        merchant: Merchant being provisioned (unique)
        token: Random token identifying the claiming request
        expires_at: After this the claim may be taken over
    """

    merchant = models.OneToOneField(
        "merchants.Merchant",
        on_delete=models.CASCADE,
        related_name="provisioning_claim",
        help_text="Merchant whose account is being provisioned",
    )

    token = models.CharField(
        max_length=64,
        help_text="Token of the request holding the claim",
    )

    expires_at = models.DateTimeField(
        help_text="When the claim is considered abandoned",
    )

    class Meta:
        verbose_name = "Provisioning Claim"
        verbose_name_plural = "Provisioning Claims"

    def __str__(self) -> str:
        return f"ProvisioningClaim({self.merchant_id}, expires {self.expires_at:%H:%M:%S})"

    @property
    def is_expired(self) -> bool:
        return timezone.now() >= self.expires_at

    @staticmethod
    def default_expiry():
        return timezone.now() + CLAIM_TTL
