# FILE: app/api/routes_stock.py
from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from app.api.deps import get_inventory_service, get_site_context, get_transfer_service
from app.api.response import respond
from app.schemas.context import SiteContext
from app.services.stock_service import InventoryService
from app.services.stock_transfer import StockTransferService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/stock", tags=["stock"])


# =========================
# STOCK IN / CORRECTIONS
# =========================
@router.post("/receipts")
def receive_stock(
    payload: Dict[str, Any] = Body(...),
    ctx: SiteContext = Depends(get_site_context),
    svc: InventoryService = Depends(get_inventory_service),
):
    return respond(svc.receive(ctx, payload))


@router.post("/adjustments")
def adjust_stock(
    payload: Dict[str, Any] = Body(...),
    ctx: SiteContext = Depends(get_site_context),
    svc: InventoryService = Depends(get_inventory_service),
):
    return respond(svc.adjust(ctx, payload))


@router.get("/products/{product_id}/movements")
def list_movements(
    product_id: int,
    ctx: SiteContext = Depends(get_site_context),
    svc: InventoryService = Depends(get_inventory_service),
):
    return respond(svc.movements(ctx, product_id))


@router.get("/reconcile")
def reconcile(
    ctx: SiteContext = Depends(get_site_context),
    svc: InventoryService = Depends(get_inventory_service),
):
    return respond(svc.reconcile(ctx))


# =========================
# TRANSFERS
# =========================
@router.post("/transfers")
def transfer_stock(
    payload: Dict[str, Any] = Body(...),
    ctx: SiteContext = Depends(get_site_context),
    svc: StockTransferService = Depends(get_transfer_service),
):
    return respond(svc.transfer_stock(ctx, payload))


@router.get("/transfers")
def get_transfer_history(
    ctx: SiteContext = Depends(get_site_context),
    svc: StockTransferService = Depends(get_transfer_service),
):
    return respond(svc.get_transfer_history(ctx))


@router.get("/sibling-sites")
def list_sibling_sites(
    ctx: SiteContext = Depends(get_site_context),
    svc: StockTransferService = Depends(get_transfer_service),
):
    return respond(svc.list_sibling_sites(ctx))
