# FILE: app/schemas/stock.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.stock import MovementType


# ---------- Stock in ----------
class StockReceiptLineIn(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)
    batch_number: Optional[str] = Field(default=None, max_length=100)
    expiry_date: Optional[date] = None
    mrp: Optional[Decimal] = Field(default=None, ge=0)
    sale_rate: Optional[Decimal] = Field(default=None, ge=0)
    remark: Optional[str] = Field(default=None, max_length=1000)


class StockReceiptIn(BaseModel):
    lines: List[StockReceiptLineIn] = Field(min_length=1)


class StockAdjustIn(BaseModel):
    product_id: int
    batch_id: Optional[int] = None
    quantity: int  # signed: +found / -damaged, lost, counted short
    reason: str = Field(max_length=1000)

    @field_validator("quantity")
    @classmethod
    def _non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("Adjustment quantity cannot be zero")
        return v

    @field_validator("reason")
    @classmethod
    def _reason_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Adjustment reason is required")
        return v


# ---------- Transfer ----------
class TransferItemIn(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)
    # matched by SKU (then name) at the destination when omitted
    destination_product_id: Optional[int] = None


class TransferCreate(BaseModel):
    destination_site_id: int
    # stored as "Transfer from <site name>: <note>" in a 1000-char remark
    remark: Optional[str] = Field(default=None, max_length=500)
    items: List[TransferItemIn] = Field(min_length=1)


class TransferCreatedOut(BaseModel):
    transfer_ref: str


class TransferLineOut(BaseModel):
    product_id: int
    product_name: str
    quantity: int


class TransferGroupOut(BaseModel):
    transfer_ref: str
    date: datetime
    direction: Literal["OUT", "IN"]
    counter_site_id: Optional[int] = None
    counter_site_name: str
    remark: str = ""
    items: List[TransferLineOut]


# ---------- Read side ----------
class MovementOut(BaseModel):
    id: int
    site_id: int
    product_id: int
    batch_id: Optional[int] = None
    type: MovementType
    quantity: int
    quantity_change: int
    mrp: Optional[Decimal] = None
    sale_rate: Optional[Decimal] = None
    remark: str
    transfer_ref: Optional[str] = None
    ref_type: str = ""
    ref_id: Optional[int] = None
    created_by: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SiteOut(BaseModel):
    id: int
    tenant_id: int
    code: str
    name: str
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class StockMismatchOut(BaseModel):
    kind: Literal["PRODUCT", "BATCH"]
    id: int
    recorded: int
    from_movements: int


class ReconcileOut(BaseModel):
    site_id: int
    products_checked: int
    batches_checked: int
    consistent: bool = True
    mismatches: List[StockMismatchOut] = []
