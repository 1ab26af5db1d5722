from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from audit.models import AuditEntry
from audit.services import append_audit_entry
from catalog.models import Product, Vendor
from commission.models import CommissionRule, OrderCommission
from commission.services.calculator import CommissionBreakdown
from commission.services.errors import CommissionNotFoundError, CommissionUnavailableError
from commission.services.fallback import PlanRate

logger = logging.getLogger(__name__)

_RESOURCE_LABEL = "commission.OrderCommission"


class CommissionLedger:
    """Append-only store of per-line-item commission facts."""

    def find(self, order_ref: str, order_item_ref: str) -> OrderCommission | None:
        try:
            return OrderCommission.objects.filter(
                order_ref=str(order_ref), order_item_ref=str(order_item_ref)
            ).first()
        except DatabaseError as exc:
            raise CommissionUnavailableError("Commission ledger storage is unavailable.") from exc

    def list_for_order(self, order_ref: str):
        return (
            OrderCommission.objects.filter(order_ref=str(order_ref))
            .select_related("vendor", "product", "commission_rule")
            .order_by("id")
        )

    def record(
        self,
        *,
        order_ref: str,
        order_item_ref: str,
        vendor: Vendor,
        product: Product,
        sale_amount: Decimal,
        quantity: int,
        unit_price: Decimal,
        rule: CommissionRule | None,
        breakdown: CommissionBreakdown,
        plan_rate: PlanRate | None = None,
        created_at: Any = None,
    ) -> OrderCommission:
        """Persist one immutable row, freezing the rule as it is right now."""

        if rule is not None:
            commission_type = rule.type
            snapshot = rule.snapshot()
        elif plan_rate is not None:
            commission_type = OrderCommission.CommissionType.PLAN_DEFAULT
            snapshot = plan_rate.snapshot()
        else:
            raise ValueError("Either a resolved rule or a plan rate is required.")

        record = OrderCommission(
            order_ref=str(order_ref),
            order_item_ref=str(order_item_ref),
            vendor=vendor,
            product=product,
            sale_amount=sale_amount,
            quantity=quantity,
            unit_price=unit_price,
            commission_rule=rule,
            commission_type=commission_type,
            commission_rate=breakdown.applied_rate,
            tier_level=breakdown.tier_level,
            commission_amount=breakdown.commission_amount,
            vendor_earning=breakdown.vendor_earning,
            applied_rule_snapshot=snapshot,
            created_at=created_at or timezone.now(),
        )
        try:
            with transaction.atomic():
                record.save(force_insert=True)
        except IntegrityError:
            # A duplicate (order_ref, order_item_ref) means another writer won; callers re-read.
            raise
        except DatabaseError as exc:
            raise CommissionUnavailableError("Commission ledger storage is unavailable.") from exc

        logger.info(
            "commission recorded order=%s item=%s vendor=%s type=%s amount=%s",
            record.order_ref,
            record.order_item_ref,
            vendor.pk,
            commission_type,
            record.commission_amount,
        )
        return record

    def cancel(self, order_commission_id: Any, *, reason: str = "", actor=None, request=None) -> OrderCommission:
        """Flip a row to cancelled; amounts and snapshot stay untouched.

        Cancelling an already-cancelled row is a no-op.
        """

        try:
            with transaction.atomic():
                record = (
                    OrderCommission.objects.select_for_update()
                    .filter(pk=order_commission_id)
                    .first()
                )
                if record is None:
                    raise CommissionNotFoundError(f"Order commission {order_commission_id} not found.")
                if record.status == OrderCommission.Status.CANCELLED:
                    return record

                record.status = OrderCommission.Status.CANCELLED
                record.cancelled_at = timezone.now()
                record.cancel_reason = (reason or "").strip()[:255]
                record.save(update_fields=("status", "cancelled_at", "cancel_reason"))
                append_audit_entry(
                    actor=actor,
                    action=AuditEntry.ACTION_UPDATE,
                    event_type="commission.order_commission.cancel",
                    resource_label=_RESOURCE_LABEL,
                    resource_pk=str(record.pk),
                    request=request,
                    data_before={"status": OrderCommission.Status.ACTIVE.value},
                    data_after={
                        "status": record.status,
                        "cancel_reason": record.cancel_reason,
                        "order_ref": record.order_ref,
                        "order_item_ref": record.order_item_ref,
                    },
                )
        except DatabaseError as exc:
            raise CommissionUnavailableError("Commission ledger storage is unavailable.") from exc

        logger.info("commission %s cancelled (order=%s)", record.pk, record.order_ref)
        return record

    def cancel_order(self, order_ref: str, *, reason: str = "", actor=None, request=None) -> list[OrderCommission]:
        try:
            ids = list(
                OrderCommission.objects.filter(
                    order_ref=str(order_ref), status=OrderCommission.Status.ACTIVE
                ).values_list("id", flat=True)
            )
        except DatabaseError as exc:
            raise CommissionUnavailableError("Commission ledger storage is unavailable.") from exc
        return [self.cancel(pk, reason=reason, actor=actor, request=request) for pk in ids]
