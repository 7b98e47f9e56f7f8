"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel, OrderItemModel, DeliveryInfoModel
from .payment import PaymentTransactionModel
from .product import ProductModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "OrderItemModel",
    "DeliveryInfoModel",
    "PaymentTransactionModel",
    "ProductModel",
]
