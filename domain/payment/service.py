"""
支付领域服务 - 支付交易的创建与结果落地
"""
import secrets
from datetime import datetime
from typing import List, Optional

from .entity import PaymentTransaction, TransactionStatus
from .repository import PaymentTransactionRepository
from .events import PaymentCancelled, PaymentSucceeded, PaymentFailed, PaymentRefunded


def new_txn_ref(order_id: str) -> str:
    """每次支付尝试一个独立的网关引用：<订单ID>-<8位随机数>"""
    return f"{order_id}-{secrets.randbelow(10 ** 8):08d}"


class PaymentDomainService:
    """
    支付领域服务

    职责：
    1. 创建 PENDING 交易（支付意图）
    2. 将网关结果应用到交易上（成功/失败/退款）
    3. 订单取消或改单时作废仍在 PENDING 的交易
    4. 产生领域事件
    """

    def __init__(self, payment_repository: PaymentTransactionRepository):
        self.payment_repository = payment_repository
        self.events: List = []  # 领域事件收集

    async def create_intent(
        self,
        order_id: str,
        amount: int,
        gateway_create_date: Optional[str] = None,
        txn_ref: Optional[str] = None,
    ) -> PaymentTransaction:
        transaction = PaymentTransaction(
            id=None,
            order_id=order_id,
            txn_ref=txn_ref or new_txn_ref(order_id),
            amount=amount,
            status=TransactionStatus.PENDING,
            gateway_create_date=gateway_create_date,
        )
        return await self.payment_repository.create(transaction)

    async def mark_succeeded(
        self,
        transaction: PaymentTransaction,
        provider_txn_no: Optional[str],
        pay_date: Optional[datetime],
        bank_code: Optional[str],
    ) -> PaymentTransaction:
        transaction.mark_succeeded(provider_txn_no, pay_date, bank_code)
        updated = await self.payment_repository.update(transaction)
        self.events.append(PaymentSucceeded(
            order_id=transaction.order_id,
            txn_ref=transaction.txn_ref,
            provider_txn_no=provider_txn_no,
            amount=transaction.amount,
        ))
        return updated

    async def mark_failed(
        self,
        transaction: PaymentTransaction,
        response_code: Optional[str],
        message: Optional[str],
        provider_txn_no: Optional[str] = None,
    ) -> PaymentTransaction:
        transaction.mark_failed(response_code, message, provider_txn_no)
        updated = await self.payment_repository.update(transaction)
        self.events.append(PaymentFailed(
            order_id=transaction.order_id,
            txn_ref=transaction.txn_ref,
            provider_txn_no=provider_txn_no,
            response_code=response_code,
            reason=message,
        ))
        return updated

    async def mark_refunded(
        self,
        transaction: PaymentTransaction,
        request_id: str,
        message: Optional[str] = None,
    ) -> PaymentTransaction:
        transaction.mark_refunded(message)
        updated = await self.payment_repository.update(transaction)
        self.events.append(PaymentRefunded(
            order_id=transaction.order_id,
            txn_ref=transaction.txn_ref,
            provider_txn_no=transaction.provider_txn_no,
            amount=transaction.amount,
            request_id=request_id,
        ))
        return updated

    async def mark_cancelled(
        self,
        transaction: PaymentTransaction,
        reason: Optional[str] = None,
    ) -> PaymentTransaction:
        transaction.mark_cancelled(reason)
        updated = await self.payment_repository.update(transaction)
        self.events.append(PaymentCancelled(
            order_id=transaction.order_id,
            txn_ref=transaction.txn_ref,
            amount=transaction.amount,
            reason=reason,
        ))
        return updated

    async def cancel_pending_for_order(self, order_id: str, reason: str) -> List[PaymentTransaction]:
        """
        作废订单下所有 PENDING 交易

        订单金额变化或订单取消后，旧金额的支付尝试不能再确认订单。
        """
        cancelled = []
        for transaction in await self.payment_repository.list_by_order(order_id):
            if transaction.is_pending():
                cancelled.append(await self.mark_cancelled(transaction, reason))
        return cancelled

    def clear_events(self) -> List:
        """清空并返回领域事件"""
        events = self.events.copy()
        self.events.clear()
        return events
