from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping

from django.db import DatabaseError, transaction
from django.db.models import ProtectedError
from django.utils.dateparse import parse_date

from audit.models import AuditEntry
from audit.services import append_audit_entry
from catalog.models import Category, Product, Vendor
from commission.models import CommissionRule, OrderCommission
from commission.services.calculator import fits_digits, to_decimal
from commission.services.errors import (
    CommissionNotFoundError,
    CommissionRuleError,
    CommissionUnavailableError,
    RuleDeletionResult,
    RuleValidationError,
)
from commission.services.rule_cache import RuleCache

logger = logging.getLogger(__name__)

_RESOURCE_LABEL = "commission.CommissionRule"
_HUNDRED = Decimal("100")
_ZERO = Decimal("0")

SCOPE_MODELS = {
    "vendor": Vendor,
    "category": Category,
    "product": Product,
}

WRITABLE_FIELDS = (
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
)

# Retargeting a rule would rewrite which sales it governed; create a new rule instead.
IMMUTABLE_AFTER_CREATE = ("scope", "scope_ref")


def rule_snapshot(rule: CommissionRule) -> dict:
    return {
        "id": rule.pk,
        "name": rule.name,
        "description": rule.description,
        "scope": rule.scope,
        "scope_ref": rule.scope_ref,
        "type": rule.type,
        "value": None if rule.value is None else str(rule.value),
        "tiers": list(rule.tiers or []),
        "tier_period": rule.tier_period,
        "include_subcategories": rule.include_subcategories,
        "start_date": rule.start_date.isoformat() if rule.start_date else None,
        "end_date": rule.end_date.isoformat() if rule.end_date else None,
        "priority": rule.priority,
        "is_active": rule.is_active,
    }


class _Errors(dict):
    def add(self, field: str, message: str) -> None:
        self.setdefault(field, []).append(message)


def _as_choice(raw: Any) -> str | None:
    # Persist plain strings even when callers pass TextChoices members.
    return None if raw in (None, "") else str(raw)


def _clean_decimal(raw: Any, *, field: str, errors: _Errors) -> Decimal | None:
    try:
        return to_decimal(raw, field=field)
    except CommissionRuleError:
        errors.add(field, "A valid number is required.")
        return None


def _clean_date(raw: Any, *, field: str, errors: _Errors) -> date | None:
    if raw in (None, ""):
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        parsed = parse_date(str(raw))
    except ValueError:
        parsed = None
    if parsed is None:
        errors.add(field, "Enter a valid date (YYYY-MM-DD).")
    return parsed


def _clean_tiers(raw: Any, errors: _Errors) -> list[dict]:
    if not isinstance(raw, (list, tuple)) or not raw:
        errors.add("tiers", "Tiers are required for tiered commission type.")
        return []

    parsed: list[tuple[Decimal, Decimal | None, Decimal]] = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, Mapping):
            errors.add("tiers", f"Tier {index} must be an object.")
            continue
        tier_errors = _Errors()
        min_amount = _clean_decimal(entry.get("min_amount"), field="min_amount", errors=tier_errors)
        max_raw = entry.get("max_amount")
        max_amount = None
        if max_raw not in (None, ""):
            max_amount = _clean_decimal(max_raw, field="max_amount", errors=tier_errors)
        rate = _clean_decimal(entry.get("rate"), field="rate", errors=tier_errors)
        if tier_errors:
            for field, messages in tier_errors.items():
                errors.add("tiers", f"Tier {index} {field}: {' '.join(messages)}")
            continue
        if min_amount < _ZERO:
            errors.add("tiers", f"Tier {index} min_amount must be >= 0.")
        for field, amount in (("min_amount", min_amount), ("max_amount", max_amount)):
            if amount is not None and not fits_digits(amount, max_digits=14, decimal_places=2):
                errors.add("tiers", f"Tier {index} {field} must be an amount below 10^12 with at most 2 decimals.")
        if max_amount is not None and max_amount <= min_amount:
            errors.add("tiers", f"Tier {index} max_amount must be greater than min_amount.")
        if rate < _ZERO or rate > _HUNDRED:
            errors.add("tiers", f"Tier {index} rate must be between 0 and 100.")
        elif not fits_digits(rate, max_digits=7, decimal_places=4):
            errors.add("tiers", f"Tier {index} rate allows at most 4 decimals.")
        parsed.append((min_amount, max_amount, rate))

    if "tiers" in errors:
        return []

    parsed.sort(key=lambda item: item[0])
    for (low_min, low_max, _rate), (high_min, _max, _rate2) in zip(parsed, parsed[1:]):
        if low_max is None or low_max > high_min:
            errors.add(
                "tiers",
                f"Tier starting at {low_min} overlaps the tier starting at {high_min}.",
            )

    return [
        {
            "min_amount": str(min_amount),
            "max_amount": None if max_amount is None else str(max_amount),
            "rate": str(rate),
        }
        for min_amount, max_amount, rate in parsed
    ]


def validate_rule_data(data: Mapping[str, Any], *, instance: CommissionRule | None = None) -> dict:
    """Validate a full or partial rule payload and return normalized field values.

    For updates the payload is merged over the stored rule and the merged state
    is validated as a whole.
    """

    errors = _Errors()
    unknown = sorted(set(data) - set(WRITABLE_FIELDS))
    for field in unknown:
        errors.add(field, "Unknown field.")

    merged: dict[str, Any] = {}
    if instance is not None:
        merged.update({field: getattr(instance, field) for field in WRITABLE_FIELDS})
        for field in IMMUTABLE_AFTER_CREATE:
            if field in data and str(data[field]) != str(getattr(instance, field)):
                errors.add(field, "Cannot be changed after creation; create a new rule instead.")
    merged.update({key: value for key, value in data.items() if key in WRITABLE_FIELDS})

    cleaned: dict[str, Any] = {}

    name = str(merged.get("name") or "").strip()
    if not name:
        errors.add("name", "This field is required.")
    elif len(name) > 100:
        errors.add("name", "Ensure this field has no more than 100 characters.")
    cleaned["name"] = name

    description = str(merged.get("description") or "").strip()
    if len(description) > 500:
        errors.add("description", "Ensure this field has no more than 500 characters.")
    cleaned["description"] = description

    scope = _as_choice(merged.get("scope"))
    if scope not in CommissionRule.Scope.values:
        errors.add("scope", f"Must be one of: {', '.join(CommissionRule.Scope.values)}.")
    cleaned["scope"] = scope

    scope_ref = merged.get("scope_ref")
    if scope == CommissionRule.Scope.PLATFORM:
        cleaned["scope_ref"] = None
    elif scope in SCOPE_MODELS:
        if scope_ref in (None, ""):
            errors.add("scope_ref", "Scope reference is required for non-platform rules.")
            cleaned["scope_ref"] = None
        else:
            try:
                ref_id = int(scope_ref)
                if isinstance(scope_ref, bool) or ref_id <= 0:
                    raise ValueError(scope_ref)
            except (TypeError, ValueError):
                errors.add("scope_ref", "Must be a positive integer id.")
                ref_id = None
            if ref_id is not None:
                model = SCOPE_MODELS[scope]
                try:
                    exists = model.objects.filter(pk=ref_id).exists()
                except DatabaseError as exc:
                    raise CommissionUnavailableError("Catalog storage is unavailable.") from exc
                if not exists:
                    errors.add("scope_ref", f"{model.__name__} {ref_id} does not exist.")
            cleaned["scope_ref"] = ref_id

    rule_type = _as_choice(merged.get("type"))
    if rule_type not in CommissionRule.Type.values:
        errors.add("type", f"Must be one of: {', '.join(CommissionRule.Type.values)}.")
    cleaned["type"] = rule_type

    if rule_type == CommissionRule.Type.TIERED:
        cleaned["value"] = None
        cleaned["tiers"] = _clean_tiers(merged.get("tiers"), errors)
    elif rule_type in (CommissionRule.Type.PERCENTAGE, CommissionRule.Type.FIXED):
        cleaned["tiers"] = []
        raw_value = merged.get("value")
        if raw_value in (None, ""):
            errors.add("value", "Value is required for fixed/percentage commission type.")
            cleaned["value"] = None
        else:
            value = _clean_decimal(raw_value, field="value", errors=errors)
            if value is not None:
                if value < _ZERO:
                    errors.add("value", "Must be >= 0.")
                elif rule_type == CommissionRule.Type.PERCENTAGE and value > _HUNDRED:
                    errors.add("value", "A percentage cannot exceed 100.")
                elif not fits_digits(value, max_digits=14, decimal_places=4):
                    errors.add("value", "Use at most 10 digits before the decimal point and 4 after it.")
            cleaned["value"] = value

    tier_period = _as_choice(merged.get("tier_period")) or CommissionRule.TierPeriod.MONTHLY.value
    if tier_period not in CommissionRule.TierPeriod.values:
        errors.add("tier_period", f"Must be one of: {', '.join(CommissionRule.TierPeriod.values)}.")
    cleaned["tier_period"] = tier_period

    include_subcategories = merged.get("include_subcategories", True)
    if not isinstance(include_subcategories, bool):
        errors.add("include_subcategories", "Must be a boolean.")
    cleaned["include_subcategories"] = bool(include_subcategories) and scope == CommissionRule.Scope.CATEGORY

    start_date = _clean_date(merged.get("start_date"), field="start_date", errors=errors)
    end_date = _clean_date(merged.get("end_date"), field="end_date", errors=errors)
    if start_date and end_date and start_date > end_date:
        errors.add("end_date", "End date must be on or after start date.")
    cleaned["start_date"] = start_date
    cleaned["end_date"] = end_date

    priority = merged.get("priority", 0)
    if priority in (None, ""):
        priority = 0
    if isinstance(priority, bool):
        errors.add("priority", "Must be an integer.")
    else:
        try:
            priority = int(priority)
        except (TypeError, ValueError):
            errors.add("priority", "Must be an integer.")
    cleaned["priority"] = priority

    is_active = merged.get("is_active", True)
    if not isinstance(is_active, bool):
        errors.add("is_active", "Must be a boolean.")
    cleaned["is_active"] = is_active

    if errors:
        raise RuleValidationError(errors)
    return cleaned


class RuleStore:
    """Persistence and validation for commission rules.

    Every write invalidates the injected `RuleCache` and leaves an audit entry.
    Storage failures surface as `CommissionUnavailableError`.
    """

    def __init__(self, *, cache: RuleCache | None = None):
        self.cache = cache if cache is not None else RuleCache()

    def _invalidate(self) -> None:
        self.cache.invalidate()
        # Loads that ran before an enclosing transaction commits saw the old rules.
        transaction.on_commit(self.cache.invalidate)

    def list_rules(self, *, scope: str | None = None, rule_type: str | None = None, is_active: bool | None = None):
        qs = CommissionRule.objects.all()
        if scope:
            qs = qs.filter(scope=scope)
        if rule_type:
            qs = qs.filter(type=rule_type)
        if is_active is not None:
            qs = qs.filter(is_active=is_active)
        return qs.order_by("scope", "-priority", "created_at", "id")

    def list_active(self) -> list[CommissionRule]:
        try:
            return list(CommissionRule.objects.filter(is_active=True).order_by("created_at", "id"))
        except DatabaseError as exc:
            raise CommissionUnavailableError("Commission rule storage is unavailable.") from exc

    def active_rules(self) -> tuple[CommissionRule, ...]:
        return self.cache.get_or_load(self.list_active)

    def get(self, rule_id: int) -> CommissionRule:
        try:
            return CommissionRule.objects.get(pk=rule_id)
        except CommissionRule.DoesNotExist:
            raise CommissionNotFoundError(f"Commission rule {rule_id} not found.") from None
        except DatabaseError as exc:
            raise CommissionUnavailableError("Commission rule storage is unavailable.") from exc

    def create(self, *, data: Mapping[str, Any], actor=None, request=None) -> CommissionRule:
        cleaned = validate_rule_data(data)
        user = actor if getattr(actor, "is_authenticated", False) else None
        try:
            with transaction.atomic():
                rule = CommissionRule(**cleaned, created_by=user, updated_by=user)
                rule.save()
                append_audit_entry(
                    actor=actor,
                    action=AuditEntry.ACTION_CREATE,
                    event_type="commission.rule.create",
                    resource_label=_RESOURCE_LABEL,
                    resource_pk=str(rule.pk),
                    request=request,
                    data_before=None,
                    data_after=rule_snapshot(rule),
                )
        except DatabaseError as exc:
            raise CommissionUnavailableError("Commission rule storage is unavailable.") from exc
        self._invalidate()
        logger.info("commission rule %s created (scope=%s type=%s)", rule.pk, rule.scope, rule.type)
        return rule

    def update(self, rule: CommissionRule, *, data: Mapping[str, Any], actor=None, request=None) -> CommissionRule:
        cleaned = validate_rule_data(data, instance=rule)
        before = rule_snapshot(rule)
        try:
            with transaction.atomic():
                for key, value in cleaned.items():
                    setattr(rule, key, value)
                if getattr(actor, "is_authenticated", False):
                    rule.updated_by = actor
                rule.save()
                append_audit_entry(
                    actor=actor,
                    action=AuditEntry.ACTION_UPDATE,
                    event_type="commission.rule.update",
                    resource_label=_RESOURCE_LABEL,
                    resource_pk=str(rule.pk),
                    request=request,
                    data_before=before,
                    data_after=rule_snapshot(rule),
                )
        except DatabaseError as exc:
            raise CommissionUnavailableError("Commission rule storage is unavailable.") from exc
        self._invalidate()
        logger.info("commission rule %s updated", rule.pk)
        return rule

    def deactivate(self, rule: CommissionRule, *, actor=None, request=None) -> CommissionRule:
        before = rule_snapshot(rule)
        try:
            with transaction.atomic():
                rule.is_active = False
                update_fields = ["is_active", "updated_at"]
                if getattr(actor, "is_authenticated", False):
                    rule.updated_by = actor
                    update_fields.append("updated_by")
                rule.save(update_fields=update_fields)
                append_audit_entry(
                    actor=actor,
                    action=AuditEntry.ACTION_UPDATE,
                    event_type="commission.rule.deactivate",
                    resource_label=_RESOURCE_LABEL,
                    resource_pk=str(rule.pk),
                    request=request,
                    data_before=before,
                    data_after=rule_snapshot(rule),
                )
        except DatabaseError as exc:
            raise CommissionUnavailableError("Commission rule storage is unavailable.") from exc
        self._invalidate()
        logger.info("commission rule %s deactivated", rule.pk)
        return rule

    def delete(self, rule: CommissionRule, *, actor=None, request=None) -> RuleDeletionResult:
        """Delete an unused rule; deactivate one that ledger rows already reference."""

        try:
            in_use = OrderCommission.objects.filter(commission_rule=rule).exists()
        except DatabaseError as exc:
            raise CommissionUnavailableError("Commission ledger storage is unavailable.") from exc

        if not in_use:
            before = rule_snapshot(rule)
            rule_id = rule.pk
            try:
                with transaction.atomic():
                    rule.delete()
                    append_audit_entry(
                        actor=actor,
                        action=AuditEntry.ACTION_DELETE,
                        event_type="commission.rule.delete",
                        resource_label=_RESOURCE_LABEL,
                        resource_pk=str(rule_id),
                        request=request,
                        data_before=before,
                        data_after=None,
                    )
            except ProtectedError:
                # A ledger row referenced the rule after the usage check.
                in_use = True
            except DatabaseError as exc:
                raise CommissionUnavailableError("Commission rule storage is unavailable.") from exc
            else:
                self._invalidate()
                logger.info("commission rule %s deleted", rule_id)
                return RuleDeletionResult(deleted=True, deactivated=False)

        self.deactivate(rule, actor=actor, request=request)
        logger.info("commission rule %s has ledger history; deactivated instead of deleted", rule.pk)
        return RuleDeletionResult(deleted=False, deactivated=True)
