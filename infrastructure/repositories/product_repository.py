"""
商品仓储实现 - 使用SQLAlchemy实现数据访问
"""
from dataclasses import asdict
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.product.entity import (
    BookDetails,
    CDDetails,
    DVDDetails,
    Product,
    ProductKind,
)
from domain.product.repository import ProductRepository
from infrastructure.models.product import ProductModel


def _details_from_json(kind: ProductKind, data: Optional[dict]):
    data = dict(data or {})
    if kind == ProductKind.BOOK:
        if data.get("publication_date"):
            data["publication_date"] = date.fromisoformat(data["publication_date"])
        return BookDetails(**data)
    if kind == ProductKind.CD:
        return CDDetails(**data)
    return DVDDetails(**data)


def _details_to_json(details) -> dict:
    data = asdict(details)
    if isinstance(data.get("publication_date"), date):
        data["publication_date"] = data["publication_date"].isoformat()
    return data


class SQLAlchemyProductRepository(ProductRepository):
    """商品仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: ProductModel) -> Product:
        kind = ProductKind(model.kind)
        return Product(
            id=model.id,
            kind=kind,
            title=model.title,
            price=model.price,
            details=_details_from_json(kind, model.details),
            weight_kg=Decimal(str(model.weight_kg)) if model.weight_kg is not None else None,
            quantity=model.quantity,
            rush_order_supported=model.rush_order_supported,
            barcode=model.barcode,
            image_url=model.image_url,
            introduction=model.introduction,
        )

    def _to_model(self, entity: Product) -> ProductModel:
        return ProductModel(
            id=entity.id,
            kind=entity.kind.value,
            title=entity.title,
            price=entity.price,
            weight_kg=entity.weight_kg or 0,
            quantity=entity.quantity,
            rush_order_supported=entity.rush_order_supported,
            barcode=entity.barcode,
            image_url=entity.image_url,
            introduction=entity.introduction,
            details=_details_to_json(entity.details),
        )

    async def create(self, product: Product) -> Product:
        db_product = self._to_model(product)
        self.session.add(db_product)
        await self.session.flush()
        await self.session.refresh(db_product)
        return self._to_entity(db_product)

    async def get_by_id(self, product_id: int) -> Optional[Product]:
        result = await self.session.execute(
            select(ProductModel).where(ProductModel.id == product_id)
        )
        db_product = result.scalar_one_or_none()
        return self._to_entity(db_product) if db_product else None

    async def is_available(self, product_id: int, quantity: int) -> bool:
        result = await self.session.execute(
            select(ProductModel.quantity).where(ProductModel.id == product_id)
        )
        stock = result.scalar_one_or_none()
        return stock is not None and quantity > 0 and stock >= quantity
