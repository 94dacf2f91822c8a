# app/models/sale.py
from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, Numeric, Text,
    ForeignKey, Enum, Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.db.base import Base

Money = Numeric(14, 2)


class BillType(str, enum.Enum):
    CONSULTATION = "CONSULTATION"
    WALKIN = "WALKIN"
    RETURN = "RETURN"
    COURIER = "COURIER"


class PaymentStatus(str, enum.Enum):
    PAID = "PAID"
    PARTIAL = "PARTIAL"
    UNPAID = "UNPAID"


class Sale(Base):
    __tablename__ = "sales"
    __table_args__ = (
        UniqueConstraint("site_id", "bill_no", name="uq_sales_site_bill_no"),
        Index("ix_sales_site_created", "site_id", "created_at"),
        Index("ix_sales_site_patient", "site_id", "patient_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    site_id = Column(Integer, ForeignKey("sites.id"), nullable=False, index=True)

    bill_no = Column(String(50), nullable=False)
    bill_type = Column(Enum(BillType, name="sale_bill_type"), nullable=False)

    # patient / appointment / consultant live outside the ledger: ids only
    patient_id = Column(Integer, nullable=True)
    appointment_id = Column(Integer, nullable=True)
    consultant_id = Column(Integer, nullable=True)

    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(50), nullable=True)
    customer_address = Column(String(1000), nullable=True)
    remark = Column(Text, nullable=True)

    return_for_bill_no = Column(String(50), nullable=True)
    return_reason = Column(String(1000), nullable=True)

    gross_amount = Column(Money, nullable=False, default=Decimal("0.00"))
    discount = Column(Money, nullable=False, default=Decimal("0.00"))
    net_amount = Column(Money, nullable=False, default=Decimal("0.00"))
    paid_amount = Column(Money, nullable=False, default=Decimal("0.00"))
    due_amount = Column(Money, nullable=False, default=Decimal("0.00"))
    payment_status = Column(
        Enum(PaymentStatus, name="sale_payment_status"),
        nullable=False,
        default=PaymentStatus.UNPAID,
    )

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    is_edited = Column(Boolean, default=False, nullable=False)
    edited_at = Column(DateTime, nullable=True)
    edited_by = Column(Integer, nullable=True)
    edit_reason = Column(String(1000), nullable=True)

    items = relationship(
        "SaleItem",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleItem.id",
    )


class SaleItem(Base):
    """
    Point-in-time price/tax snapshot of one bill line.
    Not a live join on Product: later price changes never touch it.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        Index("ix_sale_items_sale", "sale_id"),
        Index("ix_sale_items_product", "product_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sale_id = Column(Integer, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    batch_id = Column(Integer, ForeignKey("stock_batches.id"), nullable=True)

    product_name = Column(String(255), nullable=False)
    batch_number = Column(String(100), nullable=True)
    expiry_date = Column(Date, nullable=True)

    quantity = Column(Integer, nullable=False)
    mrp = Column(Money, nullable=False, default=Decimal("0.00"))
    sale_rate = Column(Money, nullable=False, default=Decimal("0.00"))
    discount = Column(Money, nullable=False, default=Decimal("0.00"))
    tax_percent = Column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    tax_amount = Column(Money, nullable=False, default=Decimal("0.00"))
    total_amount = Column(Money, nullable=False, default=Decimal("0.00"))

    sale = relationship("Sale", back_populates="items")
