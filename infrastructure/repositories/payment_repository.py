"""
支付交易仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from typing import Optional, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.exceptions import ConcurrentModificationException, PaymentNotFoundException
from domain.payment.entity import PaymentTransaction, TransactionStatus
from domain.payment.repository import PaymentTransactionRepository
from infrastructure.models.payment import PaymentTransactionModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyPaymentTransactionRepository(PaymentTransactionRepository):
    """支付交易仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentTransactionModel) -> PaymentTransaction:
        """将数据库模型转换为领域实体"""
        return PaymentTransaction(
            id=model.id,
            order_id=model.order_id,
            txn_ref=model.txn_ref,
            amount=model.amount,
            status=TransactionStatus(model.status),
            provider=model.provider,
            currency=model.currency,
            provider_txn_no=model.provider_txn_no,
            bank_code=model.bank_code,
            response_code=model.response_code,
            message=model.message,
            pay_date=model.pay_date,
            gateway_create_date=model.gateway_create_date,
            created_at=model.created_at,
            updated_at=model.updated_at,
            version=model.version,
        )

    def _to_model(self, entity: PaymentTransaction) -> PaymentTransactionModel:
        """将领域实体转换为数据库模型"""
        return PaymentTransactionModel(
            id=entity.id,
            order_id=entity.order_id,
            txn_ref=entity.txn_ref,
            provider=entity.provider,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            provider_txn_no=entity.provider_txn_no,
            bank_code=entity.bank_code,
            response_code=entity.response_code,
            message=entity.message,
            pay_date=entity.pay_date,
            gateway_create_date=entity.gateway_create_date,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    async def create(self, transaction: PaymentTransaction) -> PaymentTransaction:
        db_txn = self._to_model(transaction)
        self.session.add(db_txn)
        await self.session.flush()
        await self.session.refresh(db_txn)
        logger.info(
            "payment_transaction_created",
            transaction_id=db_txn.id,
            order_id=db_txn.order_id,
            txn_ref=db_txn.txn_ref,
        )
        return self._to_entity(db_txn)

    async def get_by_txn_ref(self, txn_ref: str) -> Optional[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel).where(PaymentTransactionModel.txn_ref == txn_ref)
        )
        db_txn = result.scalar_one_or_none()
        return self._to_entity(db_txn) if db_txn else None

    async def list_by_order(self, order_id: str) -> List[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(PaymentTransactionModel.order_id == order_id)
            .order_by(PaymentTransactionModel.created_at.desc(), PaymentTransactionModel.id.desc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def get_successful_for_order(self, order_id: str) -> Optional[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel).where(
                PaymentTransactionModel.order_id == order_id,
                PaymentTransactionModel.status == TransactionStatus.SUCCESS.value,
            )
        )
        db_txn = result.scalars().first()
        return self._to_entity(db_txn) if db_txn else None

    async def list_pending_older_than(
        self,
        before: datetime,
        limit: int = 100,
    ) -> List[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.status == TransactionStatus.PENDING.value,
                PaymentTransactionModel.created_at < before,
            )
            .order_by(PaymentTransactionModel.created_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def update(self, transaction: PaymentTransaction) -> PaymentTransaction:
        result = await self.session.execute(
            select(PaymentTransactionModel).where(PaymentTransactionModel.id == transaction.id)
        )
        db_txn = result.scalar_one_or_none()

        if not db_txn:
            raise PaymentNotFoundException(transaction.txn_ref)
        if db_txn.version != transaction.version:
            logger.warning(
                "payment_transaction_version_conflict",
                txn_ref=transaction.txn_ref,
                expected=transaction.version,
                actual=db_txn.version,
            )
            raise ConcurrentModificationException("PaymentTransaction", transaction.txn_ref)

        # amount 不可变，不回写
        db_txn.status = transaction.status.value
        db_txn.provider_txn_no = transaction.provider_txn_no
        db_txn.bank_code = transaction.bank_code
        db_txn.response_code = transaction.response_code
        db_txn.message = transaction.message
        db_txn.pay_date = transaction.pay_date
        db_txn.updated_at = transaction.updated_at

        await self.session.flush()
        await self.session.refresh(db_txn)

        logger.info(
            "payment_transaction_updated",
            txn_ref=db_txn.txn_ref,
            status=db_txn.status,
            version=db_txn.version,
        )
        return self._to_entity(db_txn)
