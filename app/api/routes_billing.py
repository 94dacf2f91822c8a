# FILE: app/api/routes_billing.py
from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from app.api.deps import get_sales_engine, get_site_context
from app.api.response import respond
from app.schemas.context import SiteContext
from app.services.billing_service import SaleTransactionEngine

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/billing", tags=["billing"])


# =========================
# SALES
# =========================
@router.post("/sales")
def create_sale(
    payload: Dict[str, Any] = Body(...),
    ctx: SiteContext = Depends(get_site_context),
    engine: SaleTransactionEngine = Depends(get_sales_engine),
):
    return respond(engine.create_sale(ctx, payload))


@router.put("/sales/{sale_id}")
def update_sale(
    sale_id: int,
    payload: Dict[str, Any] = Body(...),
    ctx: SiteContext = Depends(get_site_context),
    engine: SaleTransactionEngine = Depends(get_sales_engine),
):
    # path id wins over any id in the body
    return respond(engine.update_sale(ctx, {**payload, "id": sale_id}))


@router.get("/sales/by-bill/{bill_no}")
def get_sale_by_bill_no(
    bill_no: str,
    ctx: SiteContext = Depends(get_site_context),
    engine: SaleTransactionEngine = Depends(get_sales_engine),
):
    return respond(engine.get_sale_by_bill_no(ctx, bill_no))


@router.get("/sales/{sale_id}")
def get_sale(
    sale_id: int,
    ctx: SiteContext = Depends(get_site_context),
    engine: SaleTransactionEngine = Depends(get_sales_engine),
):
    return respond(engine.get_sale(ctx, sale_id))


@router.get("/sales/{sale_id}/edit-history")
def get_sale_edit_history(
    sale_id: int,
    ctx: SiteContext = Depends(get_site_context),
    engine: SaleTransactionEngine = Depends(get_sales_engine),
):
    return respond(engine.get_sale_edit_history(ctx, sale_id))


@router.get("/sales/{sale_id}/print")
def get_sale_print_data(
    sale_id: int,
    ctx: SiteContext = Depends(get_site_context),
    engine: SaleTransactionEngine = Depends(get_sales_engine),
):
    return respond(engine.get_sale_print_data(ctx, sale_id))


@router.get("/next-bill-no")
def preview_bill_number(
    ctx: SiteContext = Depends(get_site_context),
    engine: SaleTransactionEngine = Depends(get_sales_engine),
):
    return respond(engine.preview_bill_number(ctx))
