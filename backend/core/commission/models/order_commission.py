from __future__ import annotations

from django.core.exceptions import ValidationError
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone

from commission.models.rule import CommissionRule


class OrderCommission(models.Model):
    """Immutable commission fact for one order line item.

    Amounts and the rule snapshot are frozen at insert time. The only allowed
    change afterwards is the active -> cancelled transition (with its timestamp
    and reason); rows are never deleted.
    """

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        CANCELLED = "cancelled", "Cancelled"

    class CommissionType(models.TextChoices):
        PERCENTAGE = "percentage", "Percentage"
        FIXED = "fixed", "Fixed"
        TIERED = "tiered", "Tiered"
        PLAN_DEFAULT = "plan_default", "Plan default"

    MUTABLE_FIELDS = frozenset({"status", "cancelled_at", "cancel_reason"})

    order_ref = models.CharField(max_length=64, db_index=True)
    order_item_ref = models.CharField(max_length=64)
    vendor = models.ForeignKey(
        "catalog.Vendor",
        on_delete=models.PROTECT,
        related_name="order_commissions",
    )
    product = models.ForeignKey(
        "catalog.Product",
        on_delete=models.PROTECT,
        related_name="order_commissions",
    )

    sale_amount = models.DecimalField(max_digits=14, decimal_places=2)
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=14, decimal_places=2)

    commission_rule = models.ForeignKey(
        CommissionRule,
        on_delete=models.PROTECT,
        related_name="order_commissions",
        null=True,
        blank=True,
    )
    commission_type = models.CharField(max_length=20, choices=CommissionType.choices)
    commission_rate = models.DecimalField(max_digits=14, decimal_places=4, null=True, blank=True)
    tier_level = models.PositiveSmallIntegerField(null=True, blank=True)
    commission_amount = models.DecimalField(max_digits=14, decimal_places=2)
    vendor_earning = models.DecimalField(max_digits=14, decimal_places=2)
    applied_rule_snapshot = models.JSONField(default=dict, encoder=DjangoJSONEncoder)

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.ACTIVE,
        db_index=True,
    )
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancel_reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True, editable=False)

    class Meta:
        ordering = ("-created_at", "-id")
        verbose_name = "Order Commission"
        verbose_name_plural = "Order Commissions"
        constraints = [
            models.UniqueConstraint(
                fields=("order_ref", "order_item_ref"),
                name="uq_order_commission_item",
            ),
        ]
        indexes = [
            models.Index(
                fields=("vendor", "status", "created_at"),
                name="idx_order_comm_vendor_period",
            ),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.order_ref}/{self.order_item_ref} {self.commission_amount} ({self.status})"

    def save(self, *args, **kwargs):
        if self._state.adding:
            return super().save(*args, **kwargs)

        update_fields = kwargs.get("update_fields")
        if update_fields is None or not set(update_fields) <= self.MUTABLE_FIELDS:
            raise ValidationError(
                "Order commissions are immutable; only the cancellation fields may change."
            )
        if "status" in update_fields:
            current = (
                type(self).objects.filter(pk=self.pk).values_list("status", flat=True).first()
            )
            if current == self.Status.CANCELLED and self.status != self.Status.CANCELLED:
                raise ValidationError("A cancelled order commission cannot be reactivated.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Order commissions are immutable; deletes are not allowed.")
