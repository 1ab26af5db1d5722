from __future__ import annotations

import logging
import threading
from collections import defaultdict
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from functools import partial
from typing import Any, Iterable, Iterator, Mapping

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Count, Sum
from django.db.models.functions import TruncMonth

from catalog.models import Product, Vendor
from commission.models import CommissionRule, OrderCommission
from commission.services.calculator import (
    CommissionBreakdown,
    RuleTerms,
    calculate,
    calculate_fallback,
    normalize_sale_amount,
    round_money,
    to_decimal,
)
from commission.services.errors import (
    CommissionNotFoundError,
    CommissionRuleError,
    CommissionUnavailableError,
)
from commission.services.fallback import PlanFallbackProvider, PlanRate, VendorPlanFallbackProvider
from commission.services.ledger import CommissionLedger
from commission.services.period_sales import PeriodSalesAggregator
from commission.services.resolver import RuleResolver, as_date
from commission.services.rule_cache import RuleCache
from commission.services.rule_store import RuleStore

logger = logging.getLogger(__name__)

_ZERO = Decimal("0.00")
_HUNDRED = Decimal("100")
SUMMARY_MONTHS = 12

_vendor_mutexes: dict[str, threading.Lock] = {}
_vendor_mutexes_guard = threading.Lock()


@contextmanager
def vendor_mutex(vendor_id: Any) -> Iterator[None]:
    """Process-wide mutex around one vendor's tiered volume.

    Between processes the vendor row lock does this job on PostgreSQL and
    IMMEDIATE transactions do it on SQLite. Threads sharing a SQLite file
    need this one as well.
    """

    with _vendor_mutexes_guard:
        mutex = _vendor_mutexes.setdefault(str(vendor_id), threading.Lock())
    with mutex:
        yield


@dataclass(frozen=True, slots=True)
class PreparedLine:
    """An item with its catalogue data and resolved rule, not yet priced."""

    product: Product
    vendor: Vendor
    quantity: int
    unit_price: Decimal
    sale_amount: Decimal
    rule: CommissionRule | None

    @property
    def tiered(self) -> bool:
        return self.rule is not None and self.rule.type == CommissionRule.Type.TIERED


@dataclass(frozen=True, slots=True)
class PricedLine:
    product: Product
    vendor: Vendor
    quantity: int
    unit_price: Decimal
    sale_amount: Decimal
    rule: CommissionRule | None
    plan_rate: PlanRate | None
    breakdown: CommissionBreakdown

    @property
    def commission_type(self) -> str:
        if self.rule is None:
            return OrderCommission.CommissionType.PLAN_DEFAULT
        return self.rule.type

    def as_preview(self) -> dict[str, Any]:
        if self.rule is not None:
            applied = {"source": "rule", "rule_id": self.rule.pk, "rule_name": self.rule.name}
        else:
            applied = {"source": "plan_default", "rule_id": None, "rule_name": f"{self.plan_rate.plan_name} Plan Rate"}
        return {
            "product_id": self.product.pk,
            "vendor_id": self.vendor.pk,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "sale_amount": self.sale_amount,
            "commission_type": self.commission_type,
            "commission_rate": self.breakdown.applied_rate,
            "tier_level": self.breakdown.tier_level,
            "commission_amount": self.breakdown.commission_amount,
            "vendor_earning": self.breakdown.vendor_earning,
            **applied,
        }


@dataclass(frozen=True, slots=True)
class ItemFailure:
    order_item_ref: str
    error: str


@dataclass(slots=True)
class OrderCommissionBatch:
    order_ref: str
    records: list[OrderCommission] = field(default_factory=list)
    failures: list[ItemFailure] = field(default_factory=list)
    skipped: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures


def _extract(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _ref(value: Any) -> Any:
    # Items may carry model instances or bare ids.
    if value is None:
        return None
    return getattr(value, "pk", value)


def _clean_quantity(raw: Any) -> int:
    if isinstance(raw, bool):
        raise CommissionRuleError("quantity must be a positive integer.")
    try:
        quantity = int(raw)
    except (TypeError, ValueError) as exc:
        raise CommissionRuleError("quantity must be a positive integer.") from exc
    if quantity < 1 or str(quantity) != str(raw).strip():
        raise CommissionRuleError("quantity must be a positive integer.")
    return quantity


def summarize(lines: Iterable[PricedLine]) -> dict[str, Any]:
    total_sale = _ZERO
    total_commission = _ZERO
    total_earning = _ZERO
    count = 0
    for line in lines:
        total_sale += line.sale_amount
        total_commission += line.breakdown.commission_amount
        total_earning += line.breakdown.vendor_earning
        count += 1
    effective = round_money(total_commission * _HUNDRED / total_sale) if total_sale > 0 else _ZERO
    return {
        "item_count": count,
        "total_sale_amount": total_sale,
        "total_commission": total_commission,
        "total_vendor_earning": total_earning,
        "effective_rate": effective,
    }


class CommissionEngine:
    """Orchestrates rule resolution, tier volume, calculation and the ledger.

    `build_commission_engine()` wires the default collaborators.
    """

    def __init__(
        self,
        *,
        store: RuleStore,
        resolver: RuleResolver,
        aggregator: PeriodSalesAggregator,
        ledger: CommissionLedger,
        fallback: PlanFallbackProvider,
    ):
        self.store = store
        self.resolver = resolver
        self.aggregator = aggregator
        self.ledger = ledger
        self.fallback = fallback

    def _load_product(self, product_id: Any) -> Product:
        try:
            return Product.objects.select_related("category", "vendor__plan").get(pk=product_id)
        except (Product.DoesNotExist, ValueError, TypeError):
            raise CommissionNotFoundError(f"Product {product_id} not found.") from None
        except DatabaseError as exc:
            raise CommissionUnavailableError("Catalog storage is unavailable.") from exc

    def _load_vendor(self, vendor_id: Any) -> Vendor:
        try:
            return Vendor.objects.select_related("plan").get(pk=vendor_id)
        except (Vendor.DoesNotExist, ValueError, TypeError):
            raise CommissionNotFoundError(f"Vendor {vendor_id} not found.") from None
        except DatabaseError as exc:
            raise CommissionUnavailableError("Catalog storage is unavailable.") from exc

    def _vendor_for(self, product: Product, vendor_ref: Any) -> Vendor:
        if vendor_ref is None or str(vendor_ref) == str(product.vendor_id):
            return product.vendor
        return self._load_vendor(vendor_ref)

    def _resolve_rule(self, product: Product, vendor: Vendor, as_of: date) -> CommissionRule | None:
        return self.resolver.resolve(
            product_id=product.pk,
            category_id=product.category_id,
            category_ancestors=product.category.ancestor_ids or (),
            vendor_id=vendor.pk,
            as_of=as_of,
        )

    def _lock_vendor(self, vendor_id: Any) -> None:
        """Serialize tiered calculations per vendor until the surrounding transaction ends."""

        try:
            Vendor.objects.select_for_update().filter(pk=vendor_id).values_list("pk", flat=True).first()
        except DatabaseError as exc:
            raise CommissionUnavailableError("Catalog storage is unavailable.") from exc

    def _vendor_guard(self, prepared: PreparedLine):
        if prepared.tiered:
            return vendor_mutex(prepared.vendor.pk)
        return nullcontext()

    def _prepare(self, item: Any, *, as_of: date) -> PreparedLine:
        product_ref = _ref(_extract(item, "product_id")) or _ref(_extract(item, "product"))
        if product_ref is None:
            raise CommissionRuleError("product_id is required.")
        quantity = _clean_quantity(_extract(item, "quantity", 1))

        product = self._load_product(product_ref)
        vendor = self._vendor_for(product, _ref(_extract(item, "vendor_id")) or _ref(_extract(item, "vendor")))

        raw_price = _extract(item, "unit_price")
        if raw_price is None:
            raw_price = _extract(item, "price")
        unit_price = normalize_sale_amount(product.price if raw_price is None else raw_price)
        sale_amount = normalize_sale_amount(unit_price * quantity)

        rule = self._resolve_rule(product, vendor, as_of)
        return PreparedLine(product, vendor, quantity, unit_price, sale_amount, rule)

    def _price(
        self,
        prepared: PreparedLine,
        *,
        as_of: date,
        pending_sales: Mapping[Any, Decimal],
        include_pending_in_period: bool,
        lock: bool,
    ) -> PricedLine:
        product, vendor, rule = prepared.product, prepared.vendor, prepared.rule
        line = partial(PricedLine, product, vendor, prepared.quantity, prepared.unit_price, prepared.sale_amount)
        if rule is None:
            plan_rate = self.fallback.rate_for(vendor)
            return line(None, plan_rate, calculate_fallback(plan_rate.rate, prepared.sale_amount))

        terms = RuleTerms.from_rule(rule)
        period_sales = _ZERO
        if prepared.tiered:
            if lock:
                self._lock_vendor(vendor.pk)
            period_sales = self.aggregator.get_vendor_period_sales(vendor.pk, rule.tier_period, as_of)
            pending = pending_sales.get(vendor.pk, _ZERO)
            if rule.tier_period == CommissionRule.TierPeriod.PER_ORDER or include_pending_in_period:
                period_sales += pending
        return line(rule, None, calculate(terms, prepared.sale_amount, period_sales))

    def calculate_order_commissions(self, order: Any) -> OrderCommissionBatch:
        """Record one immutable ledger row per order line item.

        Each item runs in its own savepoint: a missing product or an invalid
        item is logged and reported without blocking its siblings. Storage
        outages abort the call. Items already recorded for the order are
        returned as-is, so re-delivery of the same order is harmless, even
        when two deliveries race each other.

        Tiered items hold the vendor mutex and the vendor row lock while
        volume is read and the row appended.
        """

        order_ref = _extract(order, "order_ref") or _extract(order, "id")
        if order_ref in (None, ""):
            raise CommissionRuleError("order id is required.")
        order_ref = str(order_ref)
        as_of = as_date(_extract(order, "created_at"))
        items = _extract(order, "items") or ()
        if hasattr(items, "all"):
            items = items.all()

        batch = OrderCommissionBatch(order_ref=order_ref)
        order_sales: dict[Any, Decimal] = defaultdict(lambda: _ZERO)

        for position, item in enumerate(items, start=1):
            item_ref = _extract(item, "order_item_ref") or _extract(item, "id") or position
            item_ref = str(item_ref)
            try:
                existing = self.ledger.find(order_ref, item_ref)
                if existing is None:
                    prepared = self._prepare(item, as_of=as_of)
                    with self._vendor_guard(prepared), transaction.atomic():
                        # Recorded rows from earlier items already count toward
                        # monthly and yearly volume through the ledger itself.
                        line = self._price(
                            prepared,
                            as_of=as_of,
                            pending_sales=order_sales,
                            include_pending_in_period=False,
                            lock=True,
                        )
                        record = self.ledger.record(
                            order_ref=order_ref,
                            order_item_ref=item_ref,
                            vendor=line.vendor,
                            product=line.product,
                            sale_amount=line.sale_amount,
                            quantity=line.quantity,
                            unit_price=line.unit_price,
                            rule=line.rule,
                            breakdown=line.breakdown,
                            plan_rate=line.plan_rate,
                        )
            except IntegrityError as exc:
                # Another delivery of the same order inserted this item first.
                existing = self.ledger.find(order_ref, item_ref)
                if existing is None:
                    raise CommissionUnavailableError("Commission ledger storage is unavailable.") from exc
            except (CommissionNotFoundError, CommissionRuleError) as exc:
                logger.warning("commission skipped for order=%s item=%s: %s", order_ref, item_ref, exc)
                batch.failures.append(ItemFailure(order_item_ref=item_ref, error=str(exc)))
                continue

            if existing is not None:
                logger.info("order %s item %s already recorded; skipping", order_ref, item_ref)
                batch.records.append(existing)
                batch.skipped += 1
                if existing.status == OrderCommission.Status.ACTIVE:
                    order_sales[existing.vendor_id] += existing.sale_amount
                continue

            batch.records.append(record)
            order_sales[line.vendor.pk] += line.sale_amount

        logger.info(
            "order %s commissions: %s recorded, %s already present, %s failed",
            order_ref,
            len(batch.records) - batch.skipped,
            batch.skipped,
            len(batch.failures),
        )
        return batch

    def calculate_commission(self, items: Iterable[Any], *, as_of: Any = None) -> dict[str, Any]:
        """Dry run of the order flow. Nothing is written and nothing is locked."""

        as_of_date = as_date(as_of)
        pending: dict[Any, Decimal] = defaultdict(lambda: _ZERO)
        priced: list[PricedLine] = []
        results: list[dict[str, Any]] = []

        for item in items or ():
            try:
                line = self._price(
                    self._prepare(item, as_of=as_of_date),
                    as_of=as_of_date,
                    pending_sales=pending,
                    include_pending_in_period=True,
                    lock=False,
                )
            except (CommissionNotFoundError, CommissionRuleError) as exc:
                results.append({"product_id": _ref(_extract(item, "product_id")), "error": str(exc)})
                continue
            priced.append(line)
            pending[line.vendor.pk] += line.sale_amount
            results.append(line.as_preview())

        return {"items": results, "summary": summarize(priced)}

    def describe_applicable_rule(self, product_id: Any, *, as_of: Any = None) -> dict[str, Any]:
        product = self._load_product(product_id)
        rule = self._resolve_rule(product, product.vendor, as_date(as_of))
        if rule is None:
            plan_rate = self.fallback.rate_for(product.vendor)
            return {
                "product_id": product.pk,
                "source": "plan_default",
                "rule_id": None,
                "name": f"{plan_rate.plan_name} Plan Rate",
                "type": OrderCommission.CommissionType.PERCENTAGE.value,
                "value": plan_rate.rate,
                "tiers": [],
                "tier_period": None,
            }
        return {
            "product_id": product.pk,
            "source": rule.scope,
            "rule_id": rule.pk,
            "name": rule.name,
            "type": rule.type,
            "value": rule.value,
            "tiers": list(rule.tiers or []),
            "tier_period": rule.tier_period if rule.type == CommissionRule.Type.TIERED else None,
        }

    def list_order_commissions(self, order_ref: str) -> list[OrderCommission]:
        try:
            return list(self.ledger.list_for_order(order_ref))
        except DatabaseError as exc:
            raise CommissionUnavailableError("Commission ledger storage is unavailable.") from exc

    def get_vendor_period_sales(self, vendor_id: Any, period: str, as_of: Any = None) -> Decimal:
        self._load_vendor(vendor_id)
        return self.aggregator.get_vendor_period_sales(vendor_id, period, as_of)

    def get_vendor_commission_summary(
        self,
        vendor_id: Any,
        start_date: Any = None,
        end_date: Any = None,
    ) -> dict[str, Any]:
        """Totals over active rows plus the most recent monthly breakdown."""

        vendor = self._load_vendor(vendor_id)
        qs = OrderCommission.objects.filter(vendor=vendor)
        if start_date is not None:
            qs = qs.filter(created_at__date__gte=as_date(start_date))
        if end_date is not None:
            qs = qs.filter(created_at__date__lte=as_date(end_date))
        active = qs.filter(status=OrderCommission.Status.ACTIVE)

        try:
            totals = active.aggregate(
                total_sales=Sum("sale_amount"),
                total_commission=Sum("commission_amount"),
                total_earnings=Sum("vendor_earning"),
                record_count=Count("id"),
            )
            cancelled_count = qs.filter(status=OrderCommission.Status.CANCELLED).count()
            monthly = list(
                active.annotate(month=TruncMonth("created_at"))
                .values("month")
                .annotate(
                    sales=Sum("sale_amount"),
                    commission=Sum("commission_amount"),
                    earnings=Sum("vendor_earning"),
                    records=Count("id"),
                )
                .order_by("-month")[:SUMMARY_MONTHS]
            )
        except DatabaseError as exc:
            raise CommissionUnavailableError("Commission ledger storage is unavailable.") from exc

        total_sales = round_money(to_decimal(totals["total_sales"] or _ZERO, field="total_sales"))
        total_commission = round_money(to_decimal(totals["total_commission"] or _ZERO, field="total_commission"))
        total_earnings = round_money(to_decimal(totals["total_earnings"] or _ZERO, field="total_earnings"))
        return {
            "vendor_id": vendor.pk,
            "start_date": as_date(start_date).isoformat() if start_date is not None else None,
            "end_date": as_date(end_date).isoformat() if end_date is not None else None,
            "total_sales": total_sales,
            "total_commission": total_commission,
            "total_earnings": total_earnings,
            "record_count": totals["record_count"] or 0,
            "cancelled_count": cancelled_count,
            "effective_rate": (
                round_money(total_commission * _HUNDRED / total_sales) if total_sales > 0 else _ZERO
            ),
            "monthly": [
                {
                    "month": row["month"].strftime("%Y-%m") if row["month"] else None,
                    "sales": round_money(to_decimal(row["sales"] or _ZERO, field="sales")),
                    "commission": round_money(to_decimal(row["commission"] or _ZERO, field="commission")),
                    "earnings": round_money(to_decimal(row["earnings"] or _ZERO, field="earnings")),
                    "records": row["records"],
                }
                for row in monthly
            ],
        }


def build_commission_engine(
    *,
    cache: RuleCache | None = None,
    fallback: PlanFallbackProvider | None = None,
) -> CommissionEngine:
    store = RuleStore(cache=cache)
    return CommissionEngine(
        store=store,
        resolver=RuleResolver(store=store),
        aggregator=PeriodSalesAggregator(),
        ledger=CommissionLedger(),
        fallback=fallback or VendorPlanFallbackProvider(),
    )


def calculate_order_commissions(order: Any) -> OrderCommissionBatch:
    """Entry point for order confirmation."""

    return build_commission_engine().calculate_order_commissions(order)
