"""Order pricing: totals, VAT and delivery fees."""
from .schedule import PricingSchedule, DEFAULT_SCHEDULE
from .money import OrderTotals, compute_totals, total_weight
from .delivery import DeliveryFeePolicy, DeliveryQuote, DeliveryType

__all__ = [
    "PricingSchedule",
    "DEFAULT_SCHEDULE",
    "OrderTotals",
    "compute_totals",
    "total_weight",
    "DeliveryFeePolicy",
    "DeliveryQuote",
    "DeliveryType",
]
