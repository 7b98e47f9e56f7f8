"""
Product catalog entries as a tagged union.

`kind` is the discriminant; fields shared by every product live on
`Product`, variant-specific fields are nested in `details`.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from domain.common.exceptions import DomainValidationException


class ProductKind(str, Enum):
    BOOK = "book"
    CD = "cd"
    DVD = "dvd"


@dataclass(frozen=True)
class BookDetails:
    authors: Optional[str] = None
    publishers: Optional[str] = None
    cover_type: Optional[str] = None  # paperback / hardcover
    page_count: Optional[int] = None
    genre: Optional[str] = None
    publication_date: Optional[date] = None


@dataclass(frozen=True)
class CDDetails:
    artist: Optional[str] = None
    record_label: Optional[str] = None
    track_count: Optional[int] = None
    genre: Optional[str] = None
    release_date: Optional[str] = None


@dataclass(frozen=True)
class DVDDetails:
    director: Optional[str] = None
    studio: Optional[str] = None
    runtime_minutes: Optional[int] = None
    subtitle_languages: Optional[str] = None
    dubbing_languages: Optional[str] = None
    genre: Optional[str] = None
    release_date: Optional[str] = None


ProductDetails = Union[BookDetails, CDDetails, DVDDetails]

_DETAILS_BY_KIND = {
    ProductKind.BOOK: BookDetails,
    ProductKind.CD: CDDetails,
    ProductKind.DVD: DVDDetails,
}

# fallback shipping weights (kg) when no explicit weight is recorded
DEFAULT_BOOK_WEIGHT = Decimal("0.5")
DEFAULT_CD_WEIGHT = Decimal("0.15")
DEFAULT_DVD_WEIGHT = Decimal("0.1")


@dataclass
class Product:
    id: Optional[int]
    kind: ProductKind
    title: str
    price: int
    details: ProductDetails
    weight_kg: Optional[Decimal] = None
    quantity: int = 0
    rush_order_supported: bool = False
    barcode: Optional[str] = None
    image_url: Optional[str] = None
    introduction: Optional[str] = None

    def __post_init__(self):
        expected = _DETAILS_BY_KIND[self.kind]
        if not isinstance(self.details, expected):
            raise DomainValidationException(
                f"{self.kind.value} product requires {expected.__name__}",
                field="details",
            )
        if self.price < 0:
            raise DomainValidationException(f"Price cannot be negative: {self.price}", field="price")
        if self.quantity < 0:
            raise DomainValidationException(f"Stock cannot be negative: {self.quantity}", field="quantity")

    def is_available(self, requested_quantity: int) -> bool:
        return requested_quantity > 0 and self.quantity >= requested_quantity

    def shipping_weight(self) -> Decimal:
        if self.weight_kg is not None and self.weight_kg > 0:
            return Decimal(str(self.weight_kg))
        if self.kind == ProductKind.BOOK:
            return _estimate_book_weight(self.details)  # type: ignore[arg-type]
        if self.kind == ProductKind.CD:
            return DEFAULT_CD_WEIGHT
        return DEFAULT_DVD_WEIGHT


def _estimate_book_weight(details: BookDetails) -> Decimal:
    if details.page_count and details.page_count > 0:
        grams_per_page = Decimal("1.0") if (details.cover_type or "").lower() == "hardcover" else Decimal("0.5")
        return details.page_count * grams_per_page / Decimal(1000)
    return DEFAULT_BOOK_WEIGHT
