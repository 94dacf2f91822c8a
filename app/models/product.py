# app/models/product.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Numeric,
    ForeignKey, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship

from app.db.base import Base

Money = Numeric(14, 2)


class Product(Base):
    """
    current_stock is a cache of the signed movement sum.
    Only app.services.inventory.StockLedger writes it.
    """
    __tablename__ = "products"
    __table_args__ = (
        Index("ix_products_site_sku", "site_id", "sku"),
        Index("ix_products_site_name", "site_id", "name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    site_id = Column(Integer, ForeignKey("sites.id"), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    sku = Column(String(100), nullable=True)

    mrp = Column(Money, nullable=False, default=0)
    sale_rate = Column(Money, nullable=False, default=0)
    purchase_rate = Column(Money, nullable=False, default=0)

    current_stock = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    batches = relationship("StockBatch", back_populates="product")


class StockBatch(Base):
    """Dated sub-lot of a product. remaining_qty never exceeds quantity."""
    __tablename__ = "stock_batches"
    __table_args__ = (
        CheckConstraint("remaining_qty >= 0", name="ck_stock_batches_remaining_nonneg"),
        CheckConstraint("remaining_qty <= quantity", name="ck_stock_batches_remaining_le_qty"),
        Index("ix_stock_batches_site_product", "site_id", "product_id"),
        Index("ix_stock_batches_site_expiry", "site_id", "expiry_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    site_id = Column(Integer, ForeignKey("sites.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    batch_number = Column(String(100), nullable=False, default="")
    expiry_date = Column(Date, nullable=True)

    quantity = Column(Integer, nullable=False, default=0)  # as received
    remaining_qty = Column(Integer, nullable=False, default=0)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    product = relationship("Product", back_populates="batches")
