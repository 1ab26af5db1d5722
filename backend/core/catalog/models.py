from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models


class TimestampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class VendorPlan(TimestampedModel):
    """Subscription plan; its rate is the fallback when no commission rule applies."""

    name = models.CharField(max_length=100, unique=True)
    commission_rate = models.DecimalField(
        max_digits=7,
        decimal_places=4,
        validators=[MinValueValidator(Decimal("0")), MaxValueValidator(Decimal("100"))],
        help_text="Percentage of each sale kept by the platform.",
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ("name",)

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.name} ({self.commission_rate}%)"


class Vendor(TimestampedModel):
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="vendor",
        null=True,
        blank=True,
    )
    store_name = models.CharField(max_length=150)
    plan = models.ForeignKey(
        VendorPlan,
        on_delete=models.SET_NULL,
        related_name="vendors",
        null=True,
        blank=True,
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ("store_name", "id")

    def __str__(self) -> str:  # pragma: no cover
        return self.store_name


class Category(TimestampedModel):
    """Product category tree.

    `ancestor_ids` is a precomputed, nearest-first list of ancestor ids so rule
    resolution never walks the tree. It is rebuilt on save and pushed down to
    descendants whenever a category moves.
    """

    name = models.CharField(max_length=120)
    parent = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        related_name="children",
        null=True,
        blank=True,
    )
    ancestor_ids = models.JSONField(default=list, blank=True, editable=False)

    class Meta:
        ordering = ("name", "id")
        verbose_name_plural = "Categories"

    def __str__(self) -> str:  # pragma: no cover
        return self.name

    def _compute_ancestor_ids(self) -> list[int]:
        if self.parent_id is None:
            return []
        parent = Category.objects.only("id", "ancestor_ids").get(pk=self.parent_id)
        ancestors = [parent.id, *parent.ancestor_ids]
        if self.pk is not None and self.pk in ancestors:
            raise ValidationError({"parent": "A category cannot be its own ancestor."})
        return ancestors

    def save(self, *args, **kwargs):
        previous = list(self.ancestor_ids or [])
        self.ancestor_ids = self._compute_ancestor_ids()
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "ancestor_ids" not in update_fields:
            kwargs["update_fields"] = (*update_fields, "ancestor_ids")
        is_move = self.pk is not None and previous != self.ancestor_ids
        super().save(*args, **kwargs)
        if is_move:
            for child in self.children.all():
                child.save(update_fields=("ancestor_ids", "updated_at"))


class Product(TimestampedModel):
    name = models.CharField(max_length=255)
    vendor = models.ForeignKey(
        Vendor,
        on_delete=models.PROTECT,
        related_name="products",
    )
    category = models.ForeignKey(
        Category,
        on_delete=models.PROTECT,
        related_name="products",
    )
    price = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0"))],
    )

    class Meta:
        ordering = ("name", "id")
        indexes = [
            models.Index(fields=("vendor", "category"), name="idx_product_vendor_category"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return self.name
