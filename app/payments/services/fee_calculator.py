"""
Fee calculation for destination-charge checkouts.

Converts a booking's base price, the platform fee policy and the tax policy
into a PaymentBreakdown and the application fee the platform keeps from
the gross charge. Pure functions, no I/O.

Money is handled as integer minor units (cents). Intermediate products use
Decimal and are rounded half away from zero back to whole cents, so no
fractional cent ever leaves this module.

Formulas:
    platform_fee    = fixed amount | round(base * percent / 100) | 0
    tax             = round(base * tax_percent / 100)
    total           = base + platform_fee + tax
    commission      = round(total * commission_percent / 100)
    processor_fee   = round(total * processor_rate) + processor_fixed
    application_fee = platform_fee + commission + processor_fee
    merchant_net    = total - application_fee

Usage:
    from payments.services.fee_calculator import (
        PlatformFeePolicy,
        TaxPolicy,
        compute_breakdown,
    )

    breakdown = compute_breakdown(
        20000,
        PlatformFeePolicy.fixed(500),
        TaxPolicy(percent=Decimal("3")),
    )
    breakdown.total_amount_cents      # 21100
    breakdown.application_fee_cents   # 1142
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings

from payments.exceptions import PaymentValidationError

HUNDRED = Decimal("100")


def round_half_away_from_zero(value: Decimal) -> int:
    """Round a Decimal amount of cents to a whole cent, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _as_decimal(value: Decimal | int | float | str, field_name: str) -> Decimal:
    try:
        # str() first so floats like 2.9 do not drag binary noise along
        return Decimal(str(value))
    except ArithmeticError as e:
        raise PaymentValidationError(
            f"{field_name} is not a number",
            details={field_name: str(value)},
        ) from e


# =============================================================================
# Policies
# =============================================================================


class PlatformFeeKind(str, enum.Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    NONE = "none"


@dataclass(frozen=True)
class PlatformFeePolicy:
    """
    How the platform fee charged to the payer is computed.

    Attributes:
        kind: FIXED amount, PERCENTAGE of the base price, or NONE
        amount_cents: Fee for FIXED policies
        percent: Percentage of base for PERCENTAGE policies (e.g. Decimal("10"))
        commission_percent: Extra platform commission on the total, kept out
            of the merchant's net but never shown to the payer
    """

    kind: PlatformFeeKind = PlatformFeeKind.NONE
    amount_cents: int = 0
    percent: Decimal = Decimal("0")
    commission_percent: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", PlatformFeeKind(self.kind))
        object.__setattr__(self, "percent", _as_decimal(self.percent, "percent"))
        object.__setattr__(
            self,
            "commission_percent",
            _as_decimal(self.commission_percent, "commission_percent"),
        )
        if self.amount_cents < 0:
            raise PaymentValidationError(
                "Platform fee amount cannot be negative",
                details={"amount_cents": self.amount_cents},
            )
        if not Decimal("0") <= self.percent <= HUNDRED:
            raise PaymentValidationError(
                "Platform fee percent must be between 0 and 100",
                details={"percent": str(self.percent)},
            )
        if not Decimal("0") <= self.commission_percent <= HUNDRED:
            raise PaymentValidationError(
                "Commission percent must be between 0 and 100",
                details={"commission_percent": str(self.commission_percent)},
            )

    @classmethod
    def fixed(cls, amount_cents: int, commission_percent: Decimal | str = "0") -> PlatformFeePolicy:
        return cls(
            kind=PlatformFeeKind.FIXED,
            amount_cents=amount_cents,
            commission_percent=Decimal(str(commission_percent)),
        )

    @classmethod
    def percentage(
        cls, percent: Decimal | str | int, commission_percent: Decimal | str = "0"
    ) -> PlatformFeePolicy:
        return cls(
            kind=PlatformFeeKind.PERCENTAGE,
            percent=Decimal(str(percent)),
            commission_percent=Decimal(str(commission_percent)),
        )

    @classmethod
    def none(cls, commission_percent: Decimal | str = "0") -> PlatformFeePolicy:
        return cls(commission_percent=Decimal(str(commission_percent)))

    def fee_for(self, base_amount_cents: int) -> int:
        if self.kind is PlatformFeeKind.FIXED:
            return self.amount_cents
        if self.kind is PlatformFeeKind.PERCENTAGE:
            return round_half_away_from_zero(base_amount_cents * self.percent / HUNDRED)
        return 0


@dataclass(frozen=True)
class TaxPolicy:
    """Tax as a percentage of the base price only, never of the platform fee."""

    percent: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        object.__setattr__(self, "percent", _as_decimal(self.percent, "tax_percent"))
        if self.percent < 0:
            raise PaymentValidationError(
                "Tax percent cannot be negative",
                details={"tax_percent": str(self.percent)},
            )

    def tax_for(self, base_amount_cents: int) -> int:
        return round_half_away_from_zero(base_amount_cents * self.percent / HUNDRED)


@dataclass(frozen=True)
class ProcessorPricing:
    """
    Linear model of the processor's own transaction pricing.

    Defaults match Stripe's standard card pricing (2.9% + 30c). Deployments
    override it through STRIPE_PROCESSOR_RATE / STRIPE_PROCESSOR_FIXED_CENTS.
    """

    rate: Decimal = Decimal("0.029")
    fixed_cents: int = 30

    def __post_init__(self) -> None:
        object.__setattr__(self, "rate", _as_decimal(self.rate, "processor_rate"))
        if self.rate < 0 or self.fixed_cents < 0:
            raise PaymentValidationError(
                "Processor pricing cannot be negative",
                details={"rate": str(self.rate), "fixed_cents": self.fixed_cents},
            )

    @classmethod
    def from_settings(cls) -> ProcessorPricing:
        return cls(
            rate=Decimal(str(settings.STRIPE_PROCESSOR_RATE)),
            fixed_cents=int(settings.STRIPE_PROCESSOR_FIXED_CENTS),
        )

    def estimate(self, total_amount_cents: int) -> int:
        return round_half_away_from_zero(total_amount_cents * self.rate) + self.fixed_cents


# =============================================================================
# Breakdown
# =============================================================================


@dataclass(frozen=True)
class PaymentBreakdown:
    """
    Frozen split of one gross charge.

    All amounts are integer minor currency units.
    """

    base_amount_cents: int
    platform_fee_cents: int
    commission_cents: int
    tax_cents: int
    total_amount_cents: int
    processor_fee_estimate_cents: int
    application_fee_cents: int

    @property
    def merchant_net_cents(self) -> int:
        return self.total_amount_cents - self.application_fee_cents

    @property
    def fees_and_taxes_cents(self) -> int:
        """Amount shown to the payer on top of the base price."""
        return self.platform_fee_cents + self.tax_cents

    def to_metadata(self) -> dict[str, str]:
        """Breakdown as processor metadata (string values only)."""
        return {
            "base_amount_cents": str(self.base_amount_cents),
            "platform_fee_cents": str(self.platform_fee_cents),
            "commission_cents": str(self.commission_cents),
            "tax_cents": str(self.tax_cents),
            "processor_fee_estimate_cents": str(self.processor_fee_estimate_cents),
            "application_fee_cents": str(self.application_fee_cents),
        }


def compute_breakdown(
    base_amount_cents: int,
    platform_fee_policy: PlatformFeePolicy,
    tax_policy: TaxPolicy,
    pricing: ProcessorPricing | None = None,
) -> PaymentBreakdown:
    """
    Compute the payment breakdown for a destination charge.

    Args:
        base_amount_cents: Booking base price, positive integer cents
        platform_fee_policy: Platform fee and commission policy
        tax_policy: Tax on the base price
        pricing: Processor pricing model (defaults to settings)

    Returns:
        PaymentBreakdown with application_fee_cents <= total_amount_cents

    Raises:
        PaymentValidationError: Non-positive base, or fees that would
            exceed the gross charge
    """
    if isinstance(base_amount_cents, bool) or not isinstance(base_amount_cents, int):
        raise PaymentValidationError(
            "Base amount must be an integer number of cents",
            details={"base_amount_cents": repr(base_amount_cents)},
        )
    if base_amount_cents <= 0:
        raise PaymentValidationError(
            "Base amount must be positive",
            details={"base_amount_cents": base_amount_cents},
        )

    pricing = pricing or ProcessorPricing.from_settings()

    platform_fee = platform_fee_policy.fee_for(base_amount_cents)
    tax = tax_policy.tax_for(base_amount_cents)
    total = base_amount_cents + platform_fee + tax
    commission = round_half_away_from_zero(
        total * platform_fee_policy.commission_percent / HUNDRED
    )
    processor_fee = pricing.estimate(total)
    application_fee = platform_fee + commission + processor_fee

    if application_fee > total:
        raise PaymentValidationError(
            "Application fee would exceed the gross charge",
            details={
                "total_amount_cents": total,
                "application_fee_cents": application_fee,
            },
        )

    return PaymentBreakdown(
        base_amount_cents=base_amount_cents,
        platform_fee_cents=platform_fee,
        commission_cents=commission,
        tax_cents=tax,
        total_amount_cents=total,
        processor_fee_estimate_cents=processor_fee,
        application_fee_cents=application_fee,
    )


def application_fee_portion(breakdown: PaymentBreakdown, refund_amount_cents: int) -> int:
    """
    Share of the application fee attributable to a refund.

    Proportional to the refunded share of the gross charge; a full refund
    returns the whole application fee.

    Raises:
        PaymentValidationError: Refund is not within (0, total]
    """
    total = breakdown.total_amount_cents
    if refund_amount_cents <= 0 or refund_amount_cents > total:
        raise PaymentValidationError(
            "Refund amount must be positive and within the original charge",
            details={
                "refund_amount_cents": refund_amount_cents,
                "total_amount_cents": total,
            },
        )
    if refund_amount_cents == total:
        return breakdown.application_fee_cents
    return round_half_away_from_zero(
        Decimal(breakdown.application_fee_cents) * refund_amount_cents / total
    )
