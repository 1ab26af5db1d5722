from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import TestCase
from rest_framework.test import APIClient
from unittest import mock

from commission.models import CommissionRule, OrderCommission
from commission.services import build_commission_engine
from commission.tests.factories import CatalogMixin, make_product, make_rule, make_vendor


class CommissionAPITestBase(CatalogMixin, TestCase):
    def setUp(self):
        super().setUp()
        User = get_user_model()
        self.staff = User.objects.create_user(username="staff", password="pw", is_staff=True)
        self.vendor_user = User.objects.create_user(username="seller", password="pw")
        self.vendor.user = self.vendor_user
        self.vendor.save()
        self.outsider = User.objects.create_user(username="shopper", password="pw")
        self.client = APIClient()


class CommissionRuleAPITests(CommissionAPITestBase):
    def test_rules_require_staff(self):
        self.assertEqual(self.client.get("/api/commission/rules/").status_code, 401)
        self.client.force_authenticate(self.vendor_user)
        self.assertEqual(self.client.get("/api/commission/rules/").status_code, 403)

    def test_create_list_update(self):
        self.client.force_authenticate(self.staff)
        response = self.client.post(
            "/api/commission/rules/",
            {"name": "Phones", "scope": "category", "scope_ref": self.leaf.pk, "type": "percentage", "value": "8"},
            format="json",
        )
        self.assertEqual(response.status_code, 201, response.data)
        rule_id = response.data["id"]
        self.assertEqual(response.data["specificity"], 2)

        response = self.client.get("/api/commission/rules/", {"scope": "category"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["count"], 1)
        self.assertEqual(response.data["results"][0]["id"], rule_id)

        response = self.client.patch(f"/api/commission/rules/{rule_id}/", {"priority": 3}, format="json")
        self.assertEqual(response.status_code, 200, response.data)
        self.assertEqual(response.data["priority"], 3)

    def test_invalid_rule_returns_field_errors(self):
        self.client.force_authenticate(self.staff)
        response = self.client.post(
            "/api/commission/rules/",
            {"name": "Bad", "scope": "platform", "type": "percentage", "value": "150"},
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("value", response.data["errors"])

    def test_missing_rule_is_404(self):
        self.client.force_authenticate(self.staff)
        self.assertEqual(self.client.get("/api/commission/rules/999999/").status_code, 404)

    def test_rule_edits_reach_the_next_calculation(self):
        self.client.force_authenticate(self.staff)
        response = self.client.post(
            "/api/commission/rules/",
            {"name": "Platform", "scope": "platform", "type": "percentage", "value": "10"},
            format="json",
        )
        rule_id = response.data["id"]
        applicable = f"/api/commission/rules/product/{self.product.pk}/"
        self.assertEqual(self.client.get(applicable).data["value"], "10.0000")

        self.client.patch(f"/api/commission/rules/{rule_id}/", {"value": "20"}, format="json")
        self.assertEqual(self.client.get(applicable).data["value"], "20.0000")

        self.client.delete(f"/api/commission/rules/{rule_id}/")
        self.assertEqual(self.client.get(applicable).data["source"], "plan_default")

    def test_delete_reports_degraded_delete(self):
        self.client.force_authenticate(self.staff)
        unused = make_rule(name="Unused")
        response = self.client.delete(f"/api/commission/rules/{unused.pk}/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["deleted"], True)

        used = make_rule(name="Used", priority=1)
        build_commission_engine().calculate_order_commissions(
            {"id": "API-1", "items": [{"id": 1, "product": self.product, "quantity": 1}]}
        )
        response = self.client.delete(f"/api/commission/rules/{used.pk}/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["deleted"], False)
        self.assertEqual(response.data["deactivated"], True)
        self.assertTrue(CommissionRule.objects.filter(pk=used.pk, is_active=False).exists())

    def test_applicable_rule_for_own_product_only(self):
        self.client.force_authenticate(self.vendor_user)
        response = self.client.get(f"/api/commission/rules/product/{self.product.pk}/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["source"], "plan_default")
        self.assertEqual(response.data["value"], "12.0000")

        other = make_product(make_vendor("Other"), self.leaf, name="Other")
        response = self.client.get(f"/api/commission/rules/product/{other.pk}/")
        self.assertEqual(response.status_code, 403)


class CommissionCalculateAPITests(CommissionAPITestBase):
    def test_vendor_preview(self):
        make_rule(value=Decimal("10"))
        self.client.force_authenticate(self.vendor_user)
        response = self.client.post(
            "/api/commission/calculate/",
            {"items": [{"product_id": self.product.pk, "quantity": 2}]},
            format="json",
        )
        self.assertEqual(response.status_code, 200, response.data)
        self.assertEqual(response.data["summary"]["total_commission"], "200.00")
        self.assertEqual(response.data["items"][0]["vendor_earning"], "1800.00")
        self.assertFalse(OrderCommission.objects.exists())

    def test_vendor_cannot_preview_foreign_products(self):
        other = make_product(make_vendor("Other"), self.leaf, name="Other")
        self.client.force_authenticate(self.vendor_user)
        response = self.client.post(
            "/api/commission/calculate/",
            {"items": [{"product_id": other.pk}]},
            format="json",
        )
        self.assertEqual(response.status_code, 403)

    def test_shoppers_cannot_preview(self):
        self.client.force_authenticate(self.outsider)
        response = self.client.post("/api/commission/calculate/", {"items": []}, format="json")
        self.assertEqual(response.status_code, 403)

    def test_unavailable_error_maps_to_503(self):
        self.client.force_authenticate(self.staff)
        with mock.patch.object(OrderCommission.objects, "filter", side_effect=DatabaseError("down")):
            response = self.client.get(
                f"/api/commission/vendors/{self.vendor.pk}/period-sales/", {"period": "monthly"}
            )
        self.assertEqual(response.status_code, 503)


class VendorReportingAPITests(CommissionAPITestBase):
    def setUp(self):
        super().setUp()
        make_rule(value=Decimal("10"))
        build_commission_engine().calculate_order_commissions(
            {"id": "R-1", "items": [{"id": 1, "product": self.product, "quantity": 1}]}
        )
        self.record = OrderCommission.objects.get(order_ref="R-1")

    def test_vendor_sees_own_summary(self):
        self.client.force_authenticate(self.vendor_user)
        response = self.client.get(f"/api/commission/vendors/{self.vendor.pk}/summary/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["total_commission"], "100.00")
        self.assertEqual(response.data["record_count"], 1)

    def test_vendor_cannot_see_other_vendor(self):
        other = make_vendor("Other")
        self.client.force_authenticate(self.vendor_user)
        response = self.client.get(f"/api/commission/vendors/{other.pk}/summary/")
        self.assertEqual(response.status_code, 403)

    def test_summary_rejects_inverted_window(self):
        self.client.force_authenticate(self.staff)
        response = self.client.get(
            f"/api/commission/vendors/{self.vendor.pk}/summary/",
            {"start_date": "2024-02-01", "end_date": "2024-01-01"},
        )
        self.assertEqual(response.status_code, 400)

    def test_period_sales(self):
        self.client.force_authenticate(self.vendor_user)
        response = self.client.get(f"/api/commission/vendors/{self.vendor.pk}/period-sales/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["period"], "monthly")
        self.assertEqual(response.data["period_sales"], "1000.00")

    def test_order_records_and_cancel(self):
        self.client.force_authenticate(self.staff)
        response = self.client.get("/api/commission/orders/R-1/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["applied_rule_snapshot"]["value"], "10.0000")

        response = self.client.post(
            f"/api/commission/records/{self.record.pk}/cancel/", {"reason": "refund"}, format="json"
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], "cancelled")

    def test_cancel_requires_staff(self):
        self.client.force_authenticate(self.vendor_user)
        response = self.client.post(f"/api/commission/records/{self.record.pk}/cancel/", {}, format="json")
        self.assertEqual(response.status_code, 403)

    def test_cancel_unknown_record(self):
        self.client.force_authenticate(self.staff)
        response = self.client.post("/api/commission/records/999999/cancel/", {}, format="json")
        self.assertEqual(response.status_code, 404)
