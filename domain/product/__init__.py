"""Product domain exports."""
from .entity import Product, ProductKind, BookDetails, CDDetails, DVDDetails
from .repository import ProductRepository

__all__ = ["Product", "ProductKind", "BookDetails", "CDDetails", "DVDDetails", "ProductRepository"]
