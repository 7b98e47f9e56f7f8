"""
支付交易仓储接口 - 定义支付数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from .entity import PaymentTransaction


class PaymentTransactionRepository(ABC):
    """支付交易仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, transaction: PaymentTransaction) -> PaymentTransaction:
        """创建支付交易记录"""
        pass

    @abstractmethod
    async def get_by_txn_ref(self, txn_ref: str) -> Optional[PaymentTransaction]:
        """根据网关交易引用（vnp_TxnRef）获取交易"""
        pass

    @abstractmethod
    async def list_by_order(self, order_id: str) -> List[PaymentTransaction]:
        """获取订单的全部支付尝试（按创建时间倒序）"""
        pass

    @abstractmethod
    async def get_successful_for_order(self, order_id: str) -> Optional[PaymentTransaction]:
        """获取订单已成功的交易（至多一条）"""
        pass

    @abstractmethod
    async def list_pending_older_than(
        self,
        before: datetime,
        limit: int = 100,
    ) -> List[PaymentTransaction]:
        """获取创建时间早于 before 且仍为 PENDING 的交易"""
        pass

    @abstractmethod
    async def update(self, transaction: PaymentTransaction) -> PaymentTransaction:
        """更新支付交易；版本号不一致时抛出并发冲突"""
        pass
