# app/models/stock.py
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, DateTime, Numeric, ForeignKey, Enum, Index, event,
)
from sqlalchemy.orm import relationship

from app.db.base import Base


class MovementType(str, enum.Enum):
    SALE = "SALE"
    RETURN = "RETURN"
    ADJUSTMENT = "ADJUSTMENT"
    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"
    IN = "IN"  # stock receipt


class StockMovement(Base):
    """
    Append-only stock history.

    quantity is the unsigned magnitude; quantity_change is the signed delta
    that was applied to Product.current_stock (and StockBatch.remaining_qty
    when batch_id is set). SUM(quantity_change) rebuilds both aggregates.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        Index("ix_stock_mv_site_product_time", "site_id", "product_id", "created_at"),
        Index("ix_stock_mv_site_batch", "site_id", "batch_id"),
        Index("ix_stock_mv_transfer_ref", "transfer_ref"),
        Index("ix_stock_mv_ref", "ref_type", "ref_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    site_id = Column(Integer, ForeignKey("sites.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey("stock_batches.id"), nullable=True)

    type = Column(Enum(MovementType, name="stock_movement_type"), nullable=False)
    quantity = Column(Integer, nullable=False)
    quantity_change = Column(Integer, nullable=False)

    mrp = Column(Numeric(14, 2), nullable=True)
    sale_rate = Column(Numeric(14, 2), nullable=True)

    remark = Column(String(1000), nullable=False, default="")
    transfer_ref = Column(String(64), nullable=True)
    # owning document by convention (SALE / ...), not a foreign key
    ref_type = Column(String(30), nullable=False, default="")
    ref_id = Column(Integer, nullable=True)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    product = relationship("Product")
    batch = relationship("StockBatch")


class ImmutableMovementError(RuntimeError):
    pass


@event.listens_for(StockMovement, "before_update")
def _refuse_update(mapper, connection, target):
    raise ImmutableMovementError(f"Stock movement {target.id} is append-only")


@event.listens_for(StockMovement, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise ImmutableMovementError(f"Stock movement {target.id} cannot be deleted")
