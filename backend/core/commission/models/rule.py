from __future__ import annotations

from datetime import date
from typing import Any

from django.conf import settings
from django.db import models
from django.db.models import F, Q


class CommissionRule(models.Model):
    """Commission rule definition.

    Writes go through `commission.services.rule_store`, which validates the
    scope reference and tier table before anything reaches this model.
    """

    class Scope(models.TextChoices):
        PLATFORM = "platform", "Platform"
        VENDOR = "vendor", "Vendor"
        CATEGORY = "category", "Category"
        PRODUCT = "product", "Product"

    class Type(models.TextChoices):
        PERCENTAGE = "percentage", "Percentage"
        FIXED = "fixed", "Fixed"
        TIERED = "tiered", "Tiered"

    class TierPeriod(models.TextChoices):
        PER_ORDER = "per_order", "Per order"
        MONTHLY = "monthly", "Monthly"
        YEARLY = "yearly", "Yearly"

    # Higher wins; always compared before priority.
    SPECIFICITY = {
        "product": 4,
        "vendor": 3,
        "category": 2,
        "platform": 1,
    }

    name = models.CharField(max_length=100)
    description = models.TextField(max_length=500, blank=True)
    scope = models.CharField(max_length=20, choices=Scope.choices, db_index=True)
    scope_ref = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Id of the vendor, category or product the rule targets. Empty for platform rules.",
    )
    type = models.CharField(max_length=20, choices=Type.choices)
    value = models.DecimalField(
        max_digits=14,
        decimal_places=4,
        null=True,
        blank=True,
        help_text="Percentage (10 = 10%) or fixed amount. Empty for tiered rules.",
    )
    tiers = models.JSONField(
        default=list,
        blank=True,
        help_text='Ascending list of {"min_amount", "max_amount", "rate"}; max_amount null = unbounded.',
    )
    tier_period = models.CharField(
        max_length=20,
        choices=TierPeriod.choices,
        default=TierPeriod.MONTHLY,
    )
    include_subcategories = models.BooleanField(default=True)
    start_date = models.DateField(null=True, blank=True)
    end_date = models.DateField(null=True, blank=True)
    priority = models.IntegerField(default=0, help_text="Higher values win within the same scope.")
    is_active = models.BooleanField(default=True, db_index=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="+",
        null=True,
        blank=True,
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="+",
        null=True,
        blank=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("scope", "-priority", "created_at", "id")
        verbose_name = "Commission Rule"
        verbose_name_plural = "Commission Rules"
        constraints = [
            models.CheckConstraint(
                condition=Q(start_date__isnull=True)
                | Q(end_date__isnull=True)
                | Q(end_date__gte=F("start_date")),
                name="ck_commission_rule_window",
            ),
        ]
        indexes = [
            models.Index(fields=("scope", "is_active"), name="idx_comm_rule_scope_active"),
            models.Index(fields=("scope", "scope_ref"), name="idx_comm_rule_scope_ref"),
            models.Index(
                fields=("is_active", "start_date", "end_date"),
                name="idx_comm_rule_window",
            ),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.name} [{self.scope}:{self.scope_ref or '*'}]"

    @property
    def specificity(self) -> int:
        return self.SPECIFICITY.get(str(self.scope), 0)

    def is_effective_on(self, as_of: date) -> bool:
        if self.start_date is not None and as_of < self.start_date:
            return False
        if self.end_date is not None and as_of > self.end_date:
            return False
        return True

    def snapshot(self) -> dict[str, Any]:
        """Copy of the fields a ledger row freezes at calculation time."""

        return {
            "source": "rule",
            "rule_id": self.pk,
            "name": self.name,
            "scope": self.scope,
            "scope_ref": self.scope_ref,
            "type": self.type,
            "value": None if self.value is None else str(self.value),
            "tiers": list(self.tiers or []),
            "tier_period": self.tier_period,
        }
