from django.urls import include, path
from rest_framework.routers import DefaultRouter

from commission.views import (
    CommissionCalculateAPIView,
    CommissionRuleViewSet,
    OrderCommissionCancelAPIView,
    OrderCommissionListAPIView,
    ProductApplicableRuleAPIView,
    VendorCommissionSummaryAPIView,
    VendorPeriodSalesAPIView,
)

router = DefaultRouter()
router.register(r"rules", CommissionRuleViewSet, basename="commission-rules")

urlpatterns = [
    path(
        "rules/product/<int:product_id>/",
        ProductApplicableRuleAPIView.as_view(),
        name="commission-rule-for-product",
    ),
    path("calculate/", CommissionCalculateAPIView.as_view(), name="commission-calculate"),
    path(
        "vendors/<int:vendor_id>/summary/",
        VendorCommissionSummaryAPIView.as_view(),
        name="commission-vendor-summary",
    ),
    path(
        "vendors/<int:vendor_id>/period-sales/",
        VendorPeriodSalesAPIView.as_view(),
        name="commission-vendor-period-sales",
    ),
    path("orders/<str:order_ref>/", OrderCommissionListAPIView.as_view(), name="commission-order-records"),
    path(
        "records/<int:pk>/cancel/",
        OrderCommissionCancelAPIView.as_view(),
        name="commission-record-cancel",
    ),
    path("", include(router.urls)),
]
