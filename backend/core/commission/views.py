from decimal import Decimal

from django.conf import settings
from rest_framework import status, viewsets
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from catalog.models import Product
from commission.permissions import IsStaffOrOwningVendor, IsStaffOrVendor, vendor_id_for
from commission.serializers import (
    CalculateRequestSerializer,
    CancelCommissionSerializer,
    CommissionRuleSerializer,
    OrderCommissionSerializer,
    PeriodSalesQuerySerializer,
    RuleListQuerySerializer,
    VendorSummaryQuerySerializer,
)
from commission.services import CommissionLedger, CommissionNotFoundError, RuleStore, build_commission_engine


def _decimals_as_strings(value):
    # Money leaves the API as strings, the same way DecimalField serializes it.
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {key: _decimals_as_strings(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_decimals_as_strings(item) for item in value]
    return value


class CommissionRulePagination(PageNumberPagination):
    page_size_query_param = "page_size"
    max_page_size = 200

    def __init__(self):
        self.page_size = getattr(settings, "COMMISSION_RULES_PAGE_SIZE", 50)


class CommissionRuleViewSet(viewsets.ViewSet):
    permission_classes = [IsAdminUser]

    def _get_rule(self, pk):
        try:
            rule_id = int(pk)
        except (TypeError, ValueError):
            raise CommissionNotFoundError(f"Commission rule {pk} not found.") from None
        return RuleStore().get(rule_id)

    def list(self, request):
        query = RuleListQuerySerializer(data=request.query_params.dict())
        query.is_valid(raise_exception=True)
        filters = query.validated_data

        rules = RuleStore().list_rules(
            scope=filters.get("scope"),
            rule_type=filters.get("type"),
            is_active=filters.get("is_active"),
        ).select_related("created_by", "updated_by")
        paginator = CommissionRulePagination()
        page = paginator.paginate_queryset(rules, request, view=self)
        return paginator.get_paginated_response(CommissionRuleSerializer(page, many=True).data)

    def retrieve(self, request, pk=None):
        return Response(CommissionRuleSerializer(self._get_rule(pk)).data)

    def create(self, request):
        rule = RuleStore().create(data=request.data, actor=request.user, request=request)
        return Response(CommissionRuleSerializer(rule).data, status=status.HTTP_201_CREATED)

    def update(self, request, pk=None):
        rule = self._get_rule(pk)
        rule = RuleStore().update(rule, data=request.data, actor=request.user, request=request)
        return Response(CommissionRuleSerializer(rule).data)

    def partial_update(self, request, pk=None):
        return self.update(request, pk=pk)

    def destroy(self, request, pk=None):
        rule = self._get_rule(pk)
        result = RuleStore().delete(rule, actor=request.user, request=request)
        return Response(
            {"deleted": result.deleted, "deactivated": result.deactivated, "detail": result.detail},
            status=status.HTTP_200_OK,
        )


class ProductApplicableRuleAPIView(APIView):
    permission_classes = [IsStaffOrOwningVendor]

    def get_owner_vendor_id(self):
        return (
            Product.objects.filter(pk=self.kwargs["product_id"])
            .values_list("vendor_id", flat=True)
            .first()
        )

    def get(self, request, product_id):
        return Response(_decimals_as_strings(build_commission_engine().describe_applicable_rule(product_id)))


class CommissionCalculateAPIView(APIView):
    permission_classes = [IsStaffOrVendor]

    def post(self, request):
        serializer = CalculateRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payload = serializer.validated_data

        items = payload["items"]
        user = request.user
        if not (user.is_staff or user.is_superuser):
            # Vendors preview only their own catalogue.
            own_vendor = vendor_id_for(user)
            product_ids = {item["product_id"] for item in items}
            foreign = Product.objects.filter(pk__in=product_ids).exclude(vendor_id=own_vendor).exists()
            if foreign or any(item.get("vendor_id") not in (None, own_vendor) for item in items):
                return Response(
                    {"detail": "You can only preview commissions for your own products."},
                    status=status.HTTP_403_FORBIDDEN,
                )

        result = build_commission_engine().calculate_commission(items, as_of=payload.get("as_of"))
        return Response(_decimals_as_strings(result))


class VendorCommissionSummaryAPIView(APIView):
    permission_classes = [IsStaffOrOwningVendor]

    def get(self, request, vendor_id):
        query = VendorSummaryQuerySerializer(data=request.query_params.dict())
        query.is_valid(raise_exception=True)
        summary = build_commission_engine().get_vendor_commission_summary(
            vendor_id,
            query.validated_data.get("start_date"),
            query.validated_data.get("end_date"),
        )
        return Response(_decimals_as_strings(summary))


class VendorPeriodSalesAPIView(APIView):
    permission_classes = [IsStaffOrOwningVendor]

    def get(self, request, vendor_id):
        query = PeriodSalesQuerySerializer(data=request.query_params.dict())
        query.is_valid(raise_exception=True)
        period = query.validated_data["period"]
        as_of = query.validated_data.get("as_of")
        total = build_commission_engine().get_vendor_period_sales(vendor_id, period, as_of)
        return Response(
            {
                "vendor_id": vendor_id,
                "period": period,
                "as_of": as_of.isoformat() if as_of else None,
                "period_sales": str(total),
            }
        )


class OrderCommissionListAPIView(APIView):
    permission_classes = [IsAdminUser]

    def get(self, request, order_ref):
        records = build_commission_engine().list_order_commissions(order_ref)
        return Response(OrderCommissionSerializer(records, many=True).data)


class OrderCommissionCancelAPIView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request, pk):
        serializer = CancelCommissionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        record = CommissionLedger().cancel(
            pk,
            reason=serializer.validated_data["reason"],
            actor=request.user,
            request=request,
        )
        return Response(OrderCommissionSerializer(record).data)
