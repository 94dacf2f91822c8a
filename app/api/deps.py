# app/api/deps.py
from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, Request
from jose import JWTError, jwt

from app.core.config import settings
from app.schemas.context import SiteContext
from app.services.billing_service import SaleTransactionEngine
from app.services.stock_service import InventoryService
from app.services.stock_transfer import StockTransferService


# =========================================================
# AUTH HELPERS
# =========================================================
def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def _decode_token(raw_token: str) -> dict:
    try:
        return jwt.decode(raw_token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")


def context_from_claims(payload: dict) -> SiteContext:
    sid = payload.get("sid")
    sub = payload.get("sub")
    if sid in (None, "") or sub in (None, ""):
        raise HTTPException(status_code=401, detail="Missing site or user in token")
    try:
        return SiteContext(
            site_id=int(sid),
            user_id=int(sub),
            username=str(payload.get("uname") or ""),
            role=str(payload.get("role") or ""),
        )
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token payload")


# =========================================================
# SITE CONTEXT (per request)
# =========================================================
def get_site_context(authorization: Optional[str] = Header(None)) -> SiteContext:
    raw = _extract_bearer(authorization)
    if not raw:
        raise HTTPException(status_code=401, detail="Missing token")
    return context_from_claims(_decode_token(raw))


# =========================================================
# SERVICES (built once in the app lifespan)
# =========================================================
def get_sales_engine(request: Request) -> SaleTransactionEngine:
    return request.app.state.sales


def get_inventory_service(request: Request) -> InventoryService:
    return request.app.state.inventory


def get_transfer_service(request: Request) -> StockTransferService:
    return request.app.state.transfers
