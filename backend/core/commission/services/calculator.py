"""Pure commission arithmetic.

Nothing in this module touches the database. Rules arrive as `RuleTerms`, a
tagged variant keyed by `kind`, and `calculate()` switches on that tag.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping, Sequence

from commission.services.errors import CommissionRuleError

_HUNDRED = Decimal("100")
_CENT = Decimal("0.01")
_ZERO = Decimal("0")

KIND_PERCENTAGE = "percentage"
KIND_FIXED = "fixed"
KIND_TIERED = "tiered"

# Largest amount a DecimalField(14, 2) money column holds.
MAX_MONEY = Decimal("999999999999.99")


def to_decimal(value: Any, *, field: str) -> Decimal:
    try:
        if value is None or value == "":
            raise CommissionRuleError(f"Missing {field}.")
        if isinstance(value, bool):
            raise CommissionRuleError(f"Invalid decimal for {field}.")
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise CommissionRuleError(f"Invalid decimal for {field}.") from exc
    # NaN and Infinity parse but break every comparison after this point.
    if not number.is_finite():
        raise CommissionRuleError(f"Invalid decimal for {field}.")
    return number


def fits_digits(value: Decimal, *, max_digits: int, decimal_places: int) -> bool:
    """True when `value` fits a DecimalField(max_digits, decimal_places) column."""

    if abs(value) >= Decimal(10) ** (max_digits - decimal_places):
        return False
    return value == value.quantize(Decimal(1).scaleb(-decimal_places))


def round_money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class Tier:
    min_amount: Decimal
    max_amount: Decimal | None
    rate: Decimal

    def contains(self, amount: Decimal) -> bool:
        if amount < self.min_amount:
            return False
        return self.max_amount is None or amount < self.max_amount


@dataclass(frozen=True, slots=True)
class RuleTerms:
    kind: str
    value: Decimal | None = None
    tiers: tuple[Tier, ...] = ()

    @classmethod
    def from_rule(cls, rule: Any) -> "RuleTerms":
        kind = str(rule.type)
        if kind in (KIND_PERCENTAGE, KIND_FIXED):
            return cls(kind=kind, value=to_decimal(rule.value, field="value"))
        if kind == KIND_TIERED:
            return cls(kind=kind, tiers=parse_tiers(rule.tiers))
        raise CommissionRuleError(f"Unknown commission type '{kind}'.")


@dataclass(frozen=True, slots=True)
class CommissionBreakdown:
    commission_amount: Decimal
    vendor_earning: Decimal
    applied_rate: Decimal | None
    tier_level: int | None


def parse_tiers(raw_tiers: Sequence[Mapping[str, Any]] | None) -> tuple[Tier, ...]:
    tiers = []
    for entry in raw_tiers or ():
        if not isinstance(entry, Mapping):
            raise CommissionRuleError("Each tier must be a mapping.")
        max_raw = entry.get("max_amount")
        tiers.append(
            Tier(
                min_amount=to_decimal(entry.get("min_amount"), field="tiers.min_amount"),
                max_amount=None if max_raw in (None, "") else to_decimal(max_raw, field="tiers.max_amount"),
                rate=to_decimal(entry.get("rate"), field="tiers.rate"),
            )
        )
    tiers.sort(key=lambda tier: tier.min_amount)
    return tuple(tiers)


def select_tier(tiers: Sequence[Tier], period_sales: Decimal) -> int:
    """Index of the tier governing a sale made after `period_sales` of prior volume.

    Tiers are scanned ascending. The tier whose [min, max) holds `period_sales`
    wins; across a gap, or beyond every bound, the last tier already reached is
    used. Volume below the first tier falls into tier 0.
    """

    if not tiers:
        raise CommissionRuleError("Tiered rule has no tiers.")

    reached = 0
    for index, tier in enumerate(tiers):
        if tier.contains(period_sales):
            return index
        if period_sales >= tier.min_amount:
            reached = index
    return reached


def _split(sale_amount: Decimal, commission_amount: Decimal, rate: Decimal | None, tier_level: int | None):
    # Earnings are derived, never rounded on their own, so the two always add up.
    return CommissionBreakdown(
        commission_amount=commission_amount,
        vendor_earning=sale_amount - commission_amount,
        applied_rate=rate,
        tier_level=tier_level,
    )


def _percentage_of(sale_amount: Decimal, rate: Decimal) -> Decimal:
    return round_money(sale_amount * rate / _HUNDRED)


def normalize_sale_amount(sale_amount: Any) -> Decimal:
    amount = to_decimal(sale_amount, field="sale_amount")
    if amount < _ZERO:
        raise CommissionRuleError("sale_amount must be >= 0.")
    if amount > MAX_MONEY:
        raise CommissionRuleError(f"sale_amount must not exceed {MAX_MONEY}.")
    return round_money(amount)


def calculate(terms: RuleTerms, sale_amount: Any, period_sales: Any = _ZERO) -> CommissionBreakdown:
    """Split a sale into platform commission and vendor earning.

    `period_sales` is the vendor's volume *before* this sale and only matters
    for tiered terms.
    """

    amount = normalize_sale_amount(sale_amount)

    if terms.kind == KIND_PERCENTAGE:
        return _split(amount, _percentage_of(amount, terms.value), terms.value, None)

    if terms.kind == KIND_FIXED:
        # A fixed fee never exceeds the sale it is charged on.
        return _split(amount, round_money(min(terms.value, amount)), terms.value, None)

    if terms.kind == KIND_TIERED:
        prior = to_decimal(period_sales, field="period_sales")
        level = select_tier(terms.tiers, prior)
        rate = terms.tiers[level].rate
        return _split(amount, _percentage_of(amount, rate), rate, level)

    raise CommissionRuleError(f"Unknown commission type '{terms.kind}'.")


def calculate_fallback(rate: Any, sale_amount: Any) -> CommissionBreakdown:
    """Plan-default path: the vendor's plan rate with the percentage formula."""

    return calculate(RuleTerms(kind=KIND_PERCENTAGE, value=to_decimal(rate, field="plan rate")), sale_amount)
