"""
支付交易数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Index
from datetime import datetime, timezone

from .base import Base


class PaymentTransactionModel(Base):
    """
    支付交易数据库模型

    一次支付尝试一行；同一订单可有多行（重试），由 txn_ref 唯一标识。
    所有业务规则都在 domain.payment.entity.PaymentTransaction 中
    """
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, index=True)

    order_id = Column(String(100), nullable=False, index=True, comment="订单ID（对外标识）")
    txn_ref = Column(String(100), unique=True, nullable=False, comment="网关交易引用 vnp_TxnRef")
    provider = Column(String(50), nullable=False, default="vnpay", comment="支付提供商")

    amount = Column(Integer, nullable=False, comment="支付金额（越南盾）")
    currency = Column(String(3), nullable=False, default="VND", comment="货币代码 ISO-4217")

    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="交易状态: pending/success/failed/refunded/cancelled",
    )
    provider_txn_no = Column(String(100), nullable=True, comment="网关交易号 vnp_TransactionNo")
    bank_code = Column(String(50), nullable=True)
    response_code = Column(String(10), nullable=True, comment="网关响应码")
    message = Column(Text, nullable=True)
    pay_date = Column(DateTime(timezone=True), nullable=True, comment="支付完成时间")
    gateway_create_date = Column(String(14), nullable=True, comment="vnp_CreateDate (yyyyMMddHHmmss)")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间",
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间",
    )
    version = Column(Integer, nullable=False, default=1, comment="乐观锁版本号")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_payment_transactions_order_status", "order_id", "status"),
        Index("ix_payment_transactions_created_at", "created_at"),
    )

    def __repr__(self):
        return (
            f"<PaymentTransactionModel(id={self.id}, order_id='{self.order_id}', "
            f"txn_ref='{self.txn_ref}', amount={self.amount}, status='{self.status}')>"
        )
