"""
商品目录仓储接口 - 下单流程只需要查询商品与可用库存
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Product


class ProductRepository(ABC):
    """商品仓储抽象接口"""

    @abstractmethod
    async def get_by_id(self, product_id: int) -> Optional[Product]:
        """根据ID获取商品"""
        pass

    @abstractmethod
    async def is_available(self, product_id: int, quantity: int) -> bool:
        """库存是否满足请求数量"""
        pass
