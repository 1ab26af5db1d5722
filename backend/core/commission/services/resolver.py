from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Iterable, Sequence

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from commission.models import CommissionRule
from commission.services.errors import CommissionRuleError
from commission.services.rule_store import RuleStore

logger = logging.getLogger(__name__)


def as_date(value: Any) -> date:
    if value is None:
        return timezone.localdate()
    if isinstance(value, datetime):
        if timezone.is_aware(value):
            return timezone.localtime(value).date()
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        # Order payloads usually carry ISO strings straight from JSON.
        try:
            parsed = parse_datetime(value.strip()) or parse_date(value.strip())
        except ValueError:
            parsed = None
        if parsed is not None:
            return as_date(parsed)
    raise CommissionRuleError(f"Invalid date value {value!r}.")


def _same_id(ref: int | None, entity_id: Any) -> bool:
    return ref is not None and entity_id is not None and str(ref) == str(entity_id)


def rule_matches(
    rule: CommissionRule,
    *,
    product_id: Any,
    category_id: Any,
    category_ancestors: Iterable[Any],
    vendor_id: Any,
) -> bool:
    if rule.scope == CommissionRule.Scope.PLATFORM:
        return True
    if rule.scope == CommissionRule.Scope.VENDOR:
        return _same_id(rule.scope_ref, vendor_id)
    if rule.scope == CommissionRule.Scope.PRODUCT:
        return _same_id(rule.scope_ref, product_id)
    if rule.scope == CommissionRule.Scope.CATEGORY:
        if _same_id(rule.scope_ref, category_id):
            return True
        # Ancestor rules only reach down when they opt in.
        return rule.include_subcategories and any(
            _same_id(rule.scope_ref, ancestor) for ancestor in category_ancestors
        )
    return False


def ranking_key(rule: CommissionRule) -> tuple:
    # Sorted ascending: most specific scope, then highest priority, then oldest.
    return (-rule.specificity, -int(rule.priority or 0), rule.created_at, rule.pk or 0)


class RuleResolver:
    """Select the single rule governing a sale, or None for the plan fallback."""

    def __init__(self, *, store: RuleStore):
        self.store = store

    def candidates(
        self,
        *,
        product_id: Any,
        category_id: Any,
        category_ancestors: Sequence[Any] = (),
        vendor_id: Any,
        as_of: Any = None,
    ) -> list[CommissionRule]:
        as_of_date = as_date(as_of)
        ancestors = tuple(category_ancestors or ())
        matched = [
            rule
            for rule in self.store.active_rules()
            if rule.is_active
            and rule.is_effective_on(as_of_date)
            and rule_matches(
                rule,
                product_id=product_id,
                category_id=category_id,
                category_ancestors=ancestors,
                vendor_id=vendor_id,
            )
        ]
        matched.sort(key=ranking_key)
        return matched

    def resolve(
        self,
        *,
        product_id: Any,
        category_id: Any,
        category_ancestors: Sequence[Any] = (),
        vendor_id: Any,
        as_of: Any = None,
    ) -> CommissionRule | None:
        """Highest-ranked candidate; specificity always dominates priority.

        Storage errors propagate as `CommissionUnavailableError` and are never
        read as "no rule".
        """

        ranked = self.candidates(
            product_id=product_id,
            category_id=category_id,
            category_ancestors=category_ancestors,
            vendor_id=vendor_id,
            as_of=as_of,
        )
        if not ranked:
            logger.debug(
                "no commission rule for product=%s vendor=%s; plan fallback applies",
                product_id,
                vendor_id,
            )
            return None
        return ranked[0]
