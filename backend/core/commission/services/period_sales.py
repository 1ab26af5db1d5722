from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from django.db import DatabaseError
from django.db.models import Sum

from commission.models import CommissionRule, OrderCommission
from commission.services.calculator import round_money
from commission.services.errors import CommissionRuleError, CommissionUnavailableError
from commission.services.resolver import as_date

_ZERO = Decimal("0.00")


def period_start(period: str, as_of: date) -> date | None:
    """First day of the calendar window anchored at `as_of`; None for per-order tiers."""

    if period == CommissionRule.TierPeriod.MONTHLY:
        return as_of.replace(day=1)
    if period == CommissionRule.TierPeriod.YEARLY:
        return as_of.replace(month=1, day=1)
    if period == CommissionRule.TierPeriod.PER_ORDER:
        return None
    raise CommissionRuleError(f"Unknown tier period '{period}'.")


class PeriodSalesAggregator:
    """Vendor sales volume to date within a tiering window, from active ledger rows."""

    def get_vendor_period_sales(self, vendor_id: Any, period: str, as_of: Any = None) -> Decimal:
        as_of_date = as_date(as_of)
        start = period_start(str(period), as_of_date)
        if start is None:
            # Per-order tiers look only at the order being priced, never at history.
            return _ZERO

        try:
            total = (
                OrderCommission.objects.filter(
                    vendor_id=vendor_id,
                    status=OrderCommission.Status.ACTIVE,
                    created_at__date__gte=start,
                    created_at__date__lte=as_of_date,
                ).aggregate(total=Sum("sale_amount"))["total"]
            )
        except DatabaseError as exc:
            raise CommissionUnavailableError("Commission ledger storage is unavailable.") from exc
        return round_money(total) if total is not None else _ZERO
