from commission.services.calculator import (
    CommissionBreakdown,
    RuleTerms,
    Tier,
    calculate,
    calculate_fallback,
    select_tier,
)
from commission.services.commission_engine import (
    CommissionEngine,
    ItemFailure,
    OrderCommissionBatch,
    build_commission_engine,
    calculate_order_commissions,
)
from commission.services.errors import (
    CommissionEngineError,
    CommissionNotFoundError,
    CommissionRuleError,
    CommissionUnavailableError,
    RuleDeletionResult,
    RuleValidationError,
)
from commission.services.fallback import PlanRate, VendorPlanFallbackProvider
from commission.services.ledger import CommissionLedger
from commission.services.period_sales import PeriodSalesAggregator
from commission.services.resolver import RuleResolver
from commission.services.rule_cache import RuleCache
from commission.services.rule_store import RuleStore, validate_rule_data

__all__ = [
    "CommissionBreakdown",
    "RuleTerms",
    "Tier",
    "calculate",
    "calculate_fallback",
    "select_tier",
    "CommissionEngine",
    "ItemFailure",
    "OrderCommissionBatch",
    "build_commission_engine",
    "calculate_order_commissions",
    "CommissionEngineError",
    "CommissionNotFoundError",
    "CommissionRuleError",
    "CommissionUnavailableError",
    "RuleDeletionResult",
    "RuleValidationError",
    "PlanRate",
    "VendorPlanFallbackProvider",
    "CommissionLedger",
    "PeriodSalesAggregator",
    "RuleResolver",
    "RuleCache",
    "RuleStore",
    "validate_rule_data",
]
