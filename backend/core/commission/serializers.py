from rest_framework import serializers

from commission.models import CommissionRule, OrderCommission


class CommissionRuleSerializer(serializers.ModelSerializer):
    specificity = serializers.IntegerField(read_only=True)
    created_by_username = serializers.CharField(source="created_by.username", read_only=True, default=None)
    updated_by_username = serializers.CharField(source="updated_by.username", read_only=True, default=None)

    class Meta:
        model = CommissionRule
        fields = (
            "id",
            "name",
            "description",
            "scope",
            "scope_ref",
            "type",
            "value",
            "tiers",
            "tier_period",
            "include_subcategories",
            "start_date",
            "end_date",
            "priority",
            "is_active",
            "specificity",
            "created_by_username",
            "updated_by_username",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class OrderCommissionSerializer(serializers.ModelSerializer):
    vendor_name = serializers.CharField(source="vendor.store_name", read_only=True)
    product_name = serializers.CharField(source="product.name", read_only=True)

    class Meta:
        model = OrderCommission
        fields = (
            "id",
            "order_ref",
            "order_item_ref",
            "vendor",
            "vendor_name",
            "product",
            "product_name",
            "sale_amount",
            "quantity",
            "unit_price",
            "commission_rule",
            "commission_type",
            "commission_rate",
            "tier_level",
            "commission_amount",
            "vendor_earning",
            "applied_rule_snapshot",
            "status",
            "cancelled_at",
            "cancel_reason",
            "created_at",
        )
        read_only_fields = fields


class RuleListQuerySerializer(serializers.Serializer):
    scope = serializers.ChoiceField(choices=CommissionRule.Scope.choices, required=False)
    type = serializers.ChoiceField(choices=CommissionRule.Type.choices, required=False)
    is_active = serializers.BooleanField(required=False, allow_null=True, default=None)


class CalculateItemSerializer(serializers.Serializer):
    product_id = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1, default=1)
    unit_price = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0, required=False)
    vendor_id = serializers.IntegerField(min_value=1, required=False)


class CalculateRequestSerializer(serializers.Serializer):
    items = CalculateItemSerializer(many=True, allow_empty=False)
    as_of = serializers.DateField(required=False)


class VendorSummaryQuerySerializer(serializers.Serializer):
    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False)

    def validate(self, attrs):
        start, end = attrs.get("start_date"), attrs.get("end_date")
        if start and end and start > end:
            raise serializers.ValidationError({"end_date": "End date must be on or after start date."})
        return attrs


class PeriodSalesQuerySerializer(serializers.Serializer):
    period = serializers.ChoiceField(
        choices=CommissionRule.TierPeriod.choices,
        default=CommissionRule.TierPeriod.MONTHLY,
    )
    as_of = serializers.DateField(required=False)


class CancelCommissionSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
