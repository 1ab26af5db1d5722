from commission.models.order_commission import OrderCommission
from commission.models.rule import CommissionRule

__all__ = [
    "CommissionRule",
    "OrderCommission",
]
