"""
订单仓储接口 - 定义订单数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from typing import Optional, List

from .entity import Order, OrderStatus


class OrderRepository(ABC):
    """订单仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """创建订单（连同订单行与收货信息）"""
        pass

    @abstractmethod
    async def get_by_id(self, order_id: int) -> Optional[Order]:
        """根据ID获取订单"""
        pass

    @abstractmethod
    async def list_by_customer(
        self,
        customer_id: str,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Order]:
        """获取客户订单列表（按创建时间倒序）"""
        pass

    @abstractmethod
    async def list_by_status(
        self,
        status: OrderStatus,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Order]:
        """根据状态获取订单列表"""
        pass

    @abstractmethod
    async def update(self, order: Order) -> Order:
        """更新订单；版本号不一致时抛出并发冲突"""
        pass
