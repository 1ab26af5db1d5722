from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from django.conf import settings

from catalog.models import Vendor


@dataclass(frozen=True, slots=True)
class PlanRate:
    rate: Decimal
    plan_name: str

    def snapshot(self) -> dict:
        return {
            "source": "plan_default",
            "rule_id": None,
            "name": f"{self.plan_name} Plan Rate",
            "scope": "platform",
            "scope_ref": None,
            "type": "percentage",
            "value": str(self.rate),
            "tiers": [],
            "tier_period": None,
        }


class PlanFallbackProvider(Protocol):
    def rate_for(self, vendor: Vendor) -> PlanRate:
        ...


class VendorPlanFallbackProvider:
    """Reads the vendor's subscription plan; vendors without one get the configured default."""

    def __init__(self, *, default_rate: Decimal | None = None):
        self.default_rate = (
            default_rate if default_rate is not None else Decimal(settings.COMMISSION_DEFAULT_PLAN_RATE)
        )

    def rate_for(self, vendor: Vendor) -> PlanRate:
        plan = vendor.plan
        if plan is None or not plan.is_active:
            return PlanRate(rate=self.default_rate, plan_name="Default")
        return PlanRate(rate=plan.commission_rate, plan_name=plan.name)
