# FILE: app/schemas/sale.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models.sale import BillType, PaymentStatus


# ---------- Create ----------
class SaleItemIn(BaseModel):
    product_id: int
    batch_id: Optional[int] = None
    product_name: str = Field(min_length=1, max_length=255)
    batch_number: Optional[str] = Field(default=None, max_length=100)
    quantity: int = Field(ge=1)
    mrp: Decimal = Field(ge=0)
    sale_rate: Decimal = Field(ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    tax_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    expiry_date: Optional[date] = None


class SaleCreate(BaseModel):
    bill_type: BillType

    # patient info: required for CONSULTATION
    patient_id: Optional[int] = None
    appointment_id: Optional[int] = None
    consultant_id: Optional[int] = None

    # walk-in customer
    customer_name: Optional[str] = Field(default=None, max_length=255)
    customer_phone: Optional[str] = Field(default=None, max_length=50)
    customer_address: Optional[str] = Field(default=None, max_length=1000)

    remark: Optional[str] = None
    gross_amount: Decimal = Field(ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    net_amount: Decimal = Field(ge=0)
    paid_amount: Decimal = Field(default=Decimal("0"), ge=0)

    return_for_bill_no: Optional[str] = Field(default=None, max_length=50)
    return_reason: Optional[str] = Field(default=None, max_length=1000)

    items: List[SaleItemIn] = Field(min_length=1)

    @model_validator(mode="after")
    def _bill_type_requirements(self) -> "SaleCreate":
        if self.bill_type == BillType.CONSULTATION and not (self.patient_id and self.appointment_id):
            raise ValueError("Patient and appointment required for consultation")
        if self.bill_type == BillType.WALKIN and not (
            (self.customer_name or "").strip() and (self.customer_phone or "").strip()
        ):
            raise ValueError("Customer name and phone required for walk-in")
        if self.bill_type == BillType.RETURN and not (
            (self.return_for_bill_no or "").strip() and (self.return_reason or "").strip()
        ):
            raise ValueError("Original bill number and reason required for returns")
        return self


class SaleCreatedOut(BaseModel):
    bill_no: str
    sale_id: int


# ---------- Edit ----------
class SaleUpdateItemIn(BaseModel):
    id: int  # sale item id
    quantity: int = Field(ge=1)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    tax_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)


class SaleUpdate(BaseModel):
    id: int
    items: List[SaleUpdateItemIn] = Field(min_length=1)
    remark: Optional[str] = None
    # stored as "Bill <bill_no> edited: <reason>" in a 1000-char remark
    edit_reason: str = Field(max_length=900)
    gross_amount: Decimal = Field(ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    net_amount: Decimal = Field(ge=0)

    @field_validator("edit_reason")
    @classmethod
    def _reason_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Edit reason is required")
        return v

    @model_validator(mode="after")
    def _unique_items(self) -> "SaleUpdate":
        ids = [i.id for i in self.items]
        if len(ids) != len(set(ids)):
            raise ValueError("Each sale item may appear only once")
        return self


# ---------- Out ----------
class SaleItemOut(BaseModel):
    id: int
    product_id: int
    batch_id: Optional[int] = None
    product_name: str
    batch_number: Optional[str] = None
    expiry_date: Optional[date] = None
    quantity: int
    mrp: Decimal
    sale_rate: Decimal
    discount: Decimal
    tax_percent: Decimal
    tax_amount: Decimal
    total_amount: Decimal

    model_config = ConfigDict(from_attributes=True)


class SaleOut(BaseModel):
    id: int
    site_id: int
    bill_no: str
    bill_type: BillType

    patient_id: Optional[int] = None
    appointment_id: Optional[int] = None
    consultant_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    remark: Optional[str] = None
    return_for_bill_no: Optional[str] = None
    return_reason: Optional[str] = None

    gross_amount: Decimal
    discount: Decimal
    net_amount: Decimal
    paid_amount: Decimal
    due_amount: Decimal
    payment_status: PaymentStatus

    created_by: Optional[int] = None
    created_at: datetime
    is_edited: bool
    edited_at: Optional[datetime] = None
    edited_by: Optional[int] = None
    edit_reason: Optional[str] = None

    items: List[SaleItemOut] = []

    model_config = ConfigDict(from_attributes=True)


class SaleEditHistoryOut(BaseModel):
    is_edited: bool
    edited_at: Optional[datetime] = None
    edited_by: Optional[int] = None
    edit_reason: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SalePrintLineOut(BaseModel):
    product_name: str
    batch_number: Optional[str] = None
    quantity: int
    sale_rate: Decimal
    discount: Decimal
    total_amount: Decimal


class SalePrintOut(BaseModel):
    bill_no: str
    bill_type: BillType
    created_at: datetime
    customer_name: str
    customer_phone: Optional[str] = None
    patient_id: Optional[int] = None
    items: List[SalePrintLineOut]
    gross_amount: Decimal
    discount: Decimal
    net_amount: Decimal
    paid_amount: Decimal
    due_amount: Decimal
    payment_status: PaymentStatus
    remark: Optional[str] = None
