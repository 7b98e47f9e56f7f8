"""SQLAlchemy Unit of Work 实现

一个工作单元对应一个会话和一个事务：订单状态与支付交易在同一事务内提交，
要么都落库，要么都不落库。
"""
from __future__ import annotations

from typing import Optional, Callable

from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.order_repository import SQLAlchemyOrderRepository
from infrastructure.repositories.payment_repository import SQLAlchemyPaymentTransactionRepository
from infrastructure.repositories.product_repository import SQLAlchemyProductRepository


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work

    Args:
        session_factory: 会话工厂，默认使用全局 AsyncSessionLocal
        session: 外部传入的会话（测试或嵌套调用），由调用方负责关闭
        readonly: 只读模式不开启显式事务，退出时也不提交
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._owns_session = session is None
        self.session: Optional[AsyncSession] = session
        self._transaction: Optional[AsyncSessionTransaction] = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self.order_repository = SQLAlchemyOrderRepository(self.session)
        self.payment_repository = SQLAlchemyPaymentTransactionRepository(self.session)
        self.product_repository = SQLAlchemyProductRepository(self.session)
        if not self._readonly:
            self._transaction = await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self._transaction is not None and self._transaction.is_active:
                await self._transaction.rollback()
            self._transaction = None
            if self._owns_session and self.session is not None:
                await self.session.close()
                self.session = None

    async def commit(self) -> None:
        if self._readonly:
            self._committed = True
            return
        if self.session is not None and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session is not None and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False
