from django.conf import settings
from django.db import migrations, models
import django.core.serializers.json
import django.db.models.deletion
import django.utils.timezone


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="CommissionRule",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=100)),
                ("description", models.TextField(blank=True, max_length=500)),
                ("scope", models.CharField(choices=[("platform", "Platform"), ("vendor", "Vendor"), ("category", "Category"), ("product", "Product")], db_index=True, max_length=20)),
                ("scope_ref", models.PositiveBigIntegerField(blank=True, help_text="Id of the vendor, category or product the rule targets. Empty for platform rules.", null=True)),
                ("type", models.CharField(choices=[("percentage", "Percentage"), ("fixed", "Fixed"), ("tiered", "Tiered")], max_length=20)),
                ("value", models.DecimalField(blank=True, decimal_places=4, help_text="Percentage (10 = 10%) or fixed amount. Empty for tiered rules.", max_digits=14, null=True)),
                ("tiers", models.JSONField(blank=True, default=list, help_text='Ascending list of {"min_amount", "max_amount", "rate"}; max_amount null = unbounded.')),
                ("tier_period", models.CharField(choices=[("per_order", "Per order"), ("monthly", "Monthly"), ("yearly", "Yearly")], default="monthly", max_length=20)),
                ("include_subcategories", models.BooleanField(default=True)),
                ("start_date", models.DateField(blank=True, null=True)),
                ("end_date", models.DateField(blank=True, null=True)),
                ("priority", models.IntegerField(default=0, help_text="Higher values win within the same scope.")),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("created_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="+", to=settings.AUTH_USER_MODEL)),
                ("updated_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="+", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name": "Commission Rule",
                "verbose_name_plural": "Commission Rules",
                "ordering": ("scope", "-priority", "created_at", "id"),
                "indexes": [
                    models.Index(fields=["scope", "is_active"], name="idx_comm_rule_scope_active"),
                    models.Index(fields=["scope", "scope_ref"], name="idx_comm_rule_scope_ref"),
                    models.Index(fields=["is_active", "start_date", "end_date"], name="idx_comm_rule_window"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("start_date__isnull", True), ("end_date__isnull", True), ("end_date__gte", models.F("start_date")), _connector="OR"),
                        name="ck_commission_rule_window",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="OrderCommission",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("order_ref", models.CharField(db_index=True, max_length=64)),
                ("order_item_ref", models.CharField(max_length=64)),
                ("sale_amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("quantity", models.PositiveIntegerField()),
                ("unit_price", models.DecimalField(decimal_places=2, max_digits=14)),
                ("commission_type", models.CharField(choices=[("percentage", "Percentage"), ("fixed", "Fixed"), ("tiered", "Tiered"), ("plan_default", "Plan default")], max_length=20)),
                ("commission_rate", models.DecimalField(blank=True, decimal_places=4, max_digits=14, null=True)),
                ("tier_level", models.PositiveSmallIntegerField(blank=True, null=True)),
                ("commission_amount", models.DecimalField(decimal_places=2, max_digits=14)),
                ("vendor_earning", models.DecimalField(decimal_places=2, max_digits=14)),
                ("applied_rule_snapshot", models.JSONField(default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ("status", models.CharField(choices=[("active", "Active"), ("cancelled", "Cancelled")], db_index=True, default="active", max_length=20)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancel_reason", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now, editable=False)),
                ("commission_rule", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="order_commissions", to="commission.commissionrule")),
                ("product", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="order_commissions", to="catalog.product")),
                ("vendor", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="order_commissions", to="catalog.vendor")),
            ],
            options={
                "verbose_name": "Order Commission",
                "verbose_name_plural": "Order Commissions",
                "ordering": ("-created_at", "-id"),
                "indexes": [
                    models.Index(fields=["vendor", "status", "created_at"], name="idx_order_comm_vendor_period"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("order_ref", "order_item_ref"), name="uq_order_commission_item"),
                ],
            },
        ),
    ]
