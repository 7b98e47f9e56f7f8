"""
订单数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Numeric, Text,
    Index, ForeignKey,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    """
    订单数据库模型

    所有业务规则都在 domain.order.entity.Order 中；
    version 列用于乐观并发控制（SQLAlchemy version_id_col）
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(String(100), nullable=False, index=True, comment="客户ID")
    payment_method = Column(String(50), nullable=False, comment="支付方式")
    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="订单状态: pending/confirmed/shipped/delivered/cancelled",
    )
    is_rush_order = Column(Boolean, nullable=False, default=False, comment="是否加急")

    # 金额（越南盾整数）
    vat_rate = Column(Integer, nullable=False, default=10, comment="增值税率(%)")
    subtotal = Column(Integer, nullable=False, default=0, comment="税前小计")
    vat_amount = Column(Integer, nullable=False, default=0, comment="增值税额")
    total_after_vat = Column(Integer, nullable=False, default=0, comment="税后金额")

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

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItemModel.id",
    )
    delivery_info = relationship(
        "DeliveryInfoModel",
        back_populates="order",
        cascade="all, delete-orphan",
        uselist=False,
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_orders_customer_created", "customer_id", "created_at"),
    )

    def __repr__(self):
        return f"<OrderModel(id={self.id}, customer_id='{self.customer_id}', status='{self.status}')>"


class OrderItemModel(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = Column(Integer, nullable=False, index=True, comment="商品ID")
    product_title = Column(String(255), nullable=False, comment="下单时商品标题快照")
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Integer, nullable=False, comment="下单时单价快照")
    unit_weight_kg = Column(Numeric(precision=10, scale=3), nullable=False, default=0)

    order = relationship("OrderModel", back_populates="items")


class DeliveryInfoModel(Base):
    __tablename__ = "delivery_info"

    id = Column(Integer, primary_key=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    name = Column(String(100), nullable=False)
    phone = Column(String(100), nullable=False)
    email = Column(String(100), nullable=True)
    address = Column(String(100), nullable=False)
    province = Column(String(100), nullable=False)
    delivery_message = Column(Text, nullable=True)
    delivery_type = Column(String(20), nullable=False, default="standard")
    delivery_fee = Column(Integer, nullable=False, default=0)
    estimated_delivery_date = Column(DateTime(timezone=True), nullable=True)
    actual_delivery_date = Column(DateTime(timezone=True), nullable=True)

    order = relationship("OrderModel", back_populates="delivery_info")
