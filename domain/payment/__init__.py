"""Payment transaction aggregate."""
from .entity import PaymentTransaction, TransactionStatus, REFUND_WINDOW
from .repository import PaymentTransactionRepository
from .service import PaymentDomainService, new_txn_ref

__all__ = [
    "PaymentTransaction",
    "TransactionStatus",
    "REFUND_WINDOW",
    "PaymentTransactionRepository",
    "PaymentDomainService",
    "new_txn_ref",
]
