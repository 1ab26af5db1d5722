from django.contrib import admin

from catalog.models import Category, Product, Vendor, VendorPlan


@admin.register(VendorPlan)
class VendorPlanAdmin(admin.ModelAdmin):
    list_display = ("name", "commission_rate", "is_active", "updated_at")
    list_filter = ("is_active",)


@admin.register(Vendor)
class VendorAdmin(admin.ModelAdmin):
    list_display = ("store_name", "plan", "user", "is_active", "created_at")
    list_filter = ("is_active", "plan")
    search_fields = ("store_name",)


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ("name", "parent", "ancestor_ids")
    search_fields = ("name",)
    readonly_fields = ("ancestor_ids",)


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("name", "vendor", "category", "price")
    list_filter = ("category",)
    search_fields = ("name",)
