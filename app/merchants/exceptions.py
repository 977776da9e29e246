"""
Merchant-specific exceptions.
"""

from __future__ import annotations

from core.exceptions import NotFoundError


class MerchantNotFoundError(NotFoundError):
    """
    Raised when a merchant profile cannot be loaded.

    Account provisioning treats this as fatal: without a profile there is
    nothing to prefill and no tenant to attach the account to.
    """

    default_error_code: str = "MERCHANT_NOT_FOUND"
