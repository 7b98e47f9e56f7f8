"""
支付领域实体 - 支付交易（一次支付尝试）
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException


REFUND_WINDOW = timedelta(days=30)


class TransactionStatus(str, Enum):
    """支付交易状态枚举"""
    PENDING = "pending"        # 已创建，等待网关回调
    SUCCESS = "success"        # 支付成功（权威记录）
    FAILED = "failed"          # 支付失败
    REFUNDED = "refunded"      # 已退款
    CANCELLED = "cancelled"    # 已取消


# 单调状态转换：不允许 SUCCESS -> PENDING 之类的回退
_ALLOWED = {
    TransactionStatus.PENDING: frozenset({
        TransactionStatus.SUCCESS,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
    }),
    TransactionStatus.SUCCESS: frozenset({TransactionStatus.REFUNDED}),
    TransactionStatus.FAILED: frozenset(),
    TransactionStatus.REFUNDED: frozenset(),
    TransactionStatus.CANCELLED: frozenset(),
}


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class PaymentTransaction:
    """
    支付交易聚合根

    业务规则：
    1. 金额必须大于0，创建后不可修改
    2. 状态转换单调（见 _ALLOWED）
    3. 同一订单可有多条交易（重试），最多一条到达 SUCCESS
    4. txn_ref 为发送给网关的 vnp_TxnRef，全局唯一
    """

    id: Optional[int]
    order_id: str
    txn_ref: str
    amount: int
    status: TransactionStatus = TransactionStatus.PENDING
    provider: str = "vnpay"
    currency: str = "VND"

    provider_txn_no: Optional[str] = None
    bank_code: Optional[str] = None
    response_code: Optional[str] = None
    message: Optional[str] = None
    pay_date: Optional[datetime] = None
    # 网关要求的 yyyyMMddHHmmss 原始创建时间，查询/退款时回传
    gateway_create_date: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    def __post_init__(self):
        if self.amount is None or self.amount <= 0:
            raise DomainValidationException(
                f"Payment amount must be positive: {self.amount}",
                field="amount",
            )
        if not self.txn_ref:
            raise DomainValidationException("Transaction reference is required", field="txn_ref")
        self.created_at = _ensure_utc(self.created_at) or datetime.now(timezone.utc)
        self.updated_at = _ensure_utc(self.updated_at) or self.created_at
        self.pay_date = _ensure_utc(self.pay_date)

    def __setattr__(self, name, value):
        # 金额创建后不可修改
        if name == "amount" and "amount" in self.__dict__ and self.__dict__["amount"] != value:
            raise DomainValidationException("Payment amount is immutable", field="amount")
        super().__setattr__(name, value)

    def can_transition(self, target: TransactionStatus) -> bool:
        return target in _ALLOWED[self.status]

    def _move_to(self, target: TransactionStatus) -> None:
        if not self.can_transition(target):
            raise DomainValidationException(
                f"Cannot change payment status from {self.status.value} to {target.value}",
                field="status",
            )
        self.status = target
        self.updated_at = datetime.now(timezone.utc)

    def mark_succeeded(
        self,
        provider_txn_no: Optional[str],
        pay_date: Optional[datetime] = None,
        bank_code: Optional[str] = None,
        response_code: str = "00",
    ) -> None:
        """标记支付成功，记录网关交易号与支付时间"""
        self._move_to(TransactionStatus.SUCCESS)
        self.provider_txn_no = provider_txn_no
        self.pay_date = _ensure_utc(pay_date) or self.updated_at
        if bank_code:
            self.bank_code = bank_code
        self.response_code = response_code
        self.message = None

    def mark_failed(
        self,
        response_code: Optional[str],
        message: Optional[str] = None,
        provider_txn_no: Optional[str] = None,
    ) -> None:
        """标记支付失败"""
        self._move_to(TransactionStatus.FAILED)
        self.response_code = response_code
        self.message = message
        if provider_txn_no:
            self.provider_txn_no = provider_txn_no

    def mark_cancelled(self, message: Optional[str] = None) -> None:
        """放弃的支付尝试（订单取消/改单/网关会话过期）"""
        self._move_to(TransactionStatus.CANCELLED)
        if message:
            self.message = message

    def can_refund(self, now: Optional[datetime] = None) -> bool:
        """只有成功且在 30 天内的交易可退款"""
        if self.status != TransactionStatus.SUCCESS:
            return False
        now = now or datetime.now(timezone.utc)
        paid = self.pay_date or self.created_at
        return now - paid <= REFUND_WINDOW

    def mark_refunded(self, message: Optional[str] = None) -> None:
        if not self.can_refund():
            raise DomainValidationException(
                f"Payment {self.txn_ref} is not refundable (status={self.status.value})",
                field="status",
            )
        self._move_to(TransactionStatus.REFUNDED)
        if message:
            self.message = message

    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING

    def is_expired(self, window: timedelta, now: Optional[datetime] = None) -> bool:
        """网关支付会话（vnp_ExpireDate）是否已过期"""
        now = now or datetime.now(timezone.utc)
        return now - self.created_at > window
