from django.contrib import admin

from commission.models import CommissionRule, OrderCommission


@admin.register(CommissionRule)
class CommissionRuleAdmin(admin.ModelAdmin):
    """Read-only view; rule writes go through the API so they are validated and audited."""

    list_display = ("id", "name", "scope", "scope_ref", "type", "value", "priority", "is_active", "created_at")
    list_filter = ("scope", "type", "is_active")
    search_fields = ("name",)
    ordering = ("scope", "-priority", "created_at", "id")
    readonly_fields = [field.name for field in CommissionRule._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(OrderCommission)
class OrderCommissionAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "order_ref",
        "order_item_ref",
        "vendor",
        "commission_type",
        "sale_amount",
        "commission_amount",
        "vendor_earning",
        "status",
        "created_at",
    )
    list_filter = ("status", "commission_type")
    search_fields = ("order_ref", "order_item_ref")
    ordering = ("-created_at", "-id")
    readonly_fields = [field.name for field in OrderCommission._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
