"""
商品数据库模型 - 单表 + kind 判别列，变体字段存 JSON
"""
from sqlalchemy import Column, Integer, String, Boolean, Numeric, Text, JSON

from .base import Base


class ProductModel(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String(10), nullable=False, index=True, comment="book/cd/dvd")
    title = Column(String(255), nullable=False)
    price = Column(Integer, nullable=False, comment="单价（越南盾）")
    weight_kg = Column(Numeric(precision=10, scale=3), nullable=False, default=0)
    quantity = Column(Integer, nullable=False, default=0, comment="库存数量")
    rush_order_supported = Column(Boolean, nullable=False, default=True)
    barcode = Column(String(100), nullable=True)
    image_url = Column(String(500), nullable=True)
    introduction = Column(Text, nullable=True)
    details = Column(JSON, nullable=False, default=dict, comment="变体专有字段")

    def __repr__(self):
        return f"<ProductModel(id={self.id}, kind='{self.kind}', title='{self.title}')>"
