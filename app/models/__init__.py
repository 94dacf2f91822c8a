# app/models/__init__.py
from .site import Site
from .product import Product, StockBatch
from .stock import StockMovement, MovementType
from .sale import Sale, SaleItem, BillType, PaymentStatus
from .audit import AuditLog

__all__ = [
    "Site",
    "Product",
    "StockBatch",
    "StockMovement",
    "MovementType",
    "Sale",
    "SaleItem",
    "BillType",
    "PaymentStatus",
    "AuditLog",
]
