from datetime import date, datetime, timezone as dt_timezone
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.test import TestCase

from audit.models import AuditEntry
from audit.services import verify_chain
from commission.models import OrderCommission
from commission.services import CommissionLedger, CommissionNotFoundError, PeriodSalesAggregator
from commission.services.period_sales import period_start
from commission.tests.factories import CatalogMixin, record_sale


def at(year, month, day):
    return datetime(year, month, day, 12, 0, tzinfo=dt_timezone.utc)


class OrderCommissionImmutabilityTests(CatalogMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.row = record_sale(self.vendor, self.product, "100")

    def test_amounts_cannot_be_edited(self):
        self.row.commission_amount = Decimal("1.00")
        with self.assertRaises(ValidationError):
            self.row.save()
        with self.assertRaises(ValidationError):
            self.row.save(update_fields=["commission_amount"])

    def test_rows_cannot_be_deleted(self):
        with self.assertRaises(ValidationError):
            self.row.delete()
        self.assertTrue(OrderCommission.objects.filter(pk=self.row.pk).exists())

    def test_cancelled_row_cannot_be_reactivated(self):
        CommissionLedger().cancel(self.row.pk, reason="refund")
        self.row.refresh_from_db()
        self.row.status = OrderCommission.Status.ACTIVE
        with self.assertRaises(ValidationError):
            self.row.save(update_fields=["status"])


class CommissionLedgerTests(CatalogMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.ledger = CommissionLedger()

    def test_cancel_keeps_amounts_and_writes_audit(self):
        row = record_sale(self.vendor, self.product, "100", order_ref="O-1")
        cancelled = self.ledger.cancel(row.pk, reason="  customer return  ")

        cancelled.refresh_from_db()
        self.assertEqual(cancelled.status, OrderCommission.Status.CANCELLED)
        self.assertEqual(cancelled.cancel_reason, "customer return")
        self.assertIsNotNone(cancelled.cancelled_at)
        self.assertEqual(cancelled.commission_amount, Decimal("10.00"))

        entry = AuditEntry.objects.get(event_type="commission.order_commission.cancel")
        self.assertEqual(entry.resource_pk, str(row.pk))
        self.assertEqual(entry.data_after["order_ref"], "O-1")
        self.assertEqual(verify_chain(entry.chain_id), [])

    def test_cancel_twice_is_a_no_op(self):
        row = record_sale(self.vendor, self.product, "100")
        first = self.ledger.cancel(row.pk, reason="a")
        second = self.ledger.cancel(row.pk, reason="b")
        self.assertEqual(second.cancel_reason, "a")
        self.assertEqual(first.cancelled_at, second.cancelled_at)
        self.assertEqual(AuditEntry.objects.filter(resource_pk=str(row.pk)).count(), 1)

    def test_cancel_unknown_row(self):
        with self.assertRaises(CommissionNotFoundError):
            self.ledger.cancel(999999)

    def test_cancel_order_cancels_every_active_row(self):
        record_sale(self.vendor, self.product, "100", order_ref="O-2", item_ref="1")
        record_sale(self.vendor, self.product, "50", order_ref="O-2", item_ref="2")
        cancelled = self.ledger.cancel_order("O-2", reason="order voided")
        self.assertEqual(len(cancelled), 2)
        self.assertFalse(OrderCommission.objects.filter(order_ref="O-2", status="active").exists())

    def test_list_for_order(self):
        record_sale(self.vendor, self.product, "100", order_ref="O-3", item_ref="1")
        record_sale(self.vendor, self.product, "50", order_ref="O-3", item_ref="2")
        record_sale(self.vendor, self.product, "70", order_ref="O-4", item_ref="1")
        self.assertEqual([r.order_item_ref for r in self.ledger.list_for_order("O-3")], ["1", "2"])


class PeriodSalesTests(CatalogMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.aggregator = PeriodSalesAggregator()
        record_sale(self.vendor, self.product, "100", item_ref="dec", created_at=at(2023, 12, 31))
        record_sale(self.vendor, self.product, "200", item_ref="jan", created_at=at(2024, 1, 15))
        record_sale(self.vendor, self.product, "300", item_ref="feb1", created_at=at(2024, 2, 1))
        record_sale(self.vendor, self.product, "400", item_ref="feb20", created_at=at(2024, 2, 20))

    def test_period_start(self):
        self.assertEqual(period_start("monthly", date(2024, 2, 17)), date(2024, 2, 1))
        self.assertEqual(period_start("yearly", date(2024, 2, 17)), date(2024, 1, 1))
        self.assertIsNone(period_start("per_order", date(2024, 2, 17)))

    def test_monthly_window(self):
        total = self.aggregator.get_vendor_period_sales(self.vendor.pk, "monthly", date(2024, 2, 10))
        self.assertEqual(total, Decimal("300.00"))

    def test_yearly_window(self):
        total = self.aggregator.get_vendor_period_sales(self.vendor.pk, "yearly", date(2024, 2, 28))
        self.assertEqual(total, Decimal("900.00"))

    def test_cancelled_rows_are_excluded(self):
        row = OrderCommission.objects.get(order_item_ref="feb20")
        CommissionLedger().cancel(row.pk)
        total = self.aggregator.get_vendor_period_sales(self.vendor.pk, "monthly", date(2024, 2, 28))
        self.assertEqual(total, Decimal("300.00"))

    def test_empty_window(self):
        total = self.aggregator.get_vendor_period_sales(self.vendor.pk, "monthly", date(2024, 3, 5))
        self.assertEqual(total, Decimal("0.00"))
