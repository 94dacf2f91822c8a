# FILE: app/services/inventory.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.models.product import Product, StockBatch
from app.models.stock import MovementType, StockMovement
from app.schemas.context import SiteContext
from app.schemas.stock import (
    ReconcileOut,
    StockAdjustIn,
    StockMismatchOut,
    StockReceiptIn,
)
from app.services.ledger_errors import (
    InsufficientStockError,
    NotFoundError,
    StockIntegrityError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# effect of each movement type on current_stock / remaining_qty
SIGN_BY_TYPE: Dict[MovementType, int] = {
    MovementType.SALE: -1,
    MovementType.TRANSFER_OUT: -1,
    MovementType.RETURN: 1,
    MovementType.TRANSFER_IN: 1,
    MovementType.IN: 1,
}


class StockLedger:
    """
    Owns the movement log and the two caches it feeds
    (Product.current_stock, StockBatch.remaining_qty).

    Never commits: everything runs inside the caller's transaction so a
    sale/transfer and its stock effects land or vanish together.
    """

    # ---------- aggregates ----------
    def shift_stock(
        self,
        db: Session,
        *,
        site_id: int,
        product_id: int,
        batch_id: Optional[int],
        delta: int,
    ) -> None:
        """
        current_stock += delta (and remaining_qty += delta for the batch)
        as one relative UPDATE guarded against going negative. Concurrent
        sales serialize on the row lock and the guard is re-evaluated
        against the committed value, so a stale reader cannot oversell.
        """
        delta = int(delta)

        if delta == 0:
            self.require_product(db, site_id, product_id)
        else:
            res = db.execute(
                update(Product)
                .where(
                    Product.id == product_id,
                    Product.site_id == site_id,
                    Product.current_stock + delta >= 0,
                )
                .values(current_stock=Product.current_stock + delta)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                product = self.require_product(db, site_id, product_id)
                raise InsufficientStockError(
                    f"Insufficient stock for {product.name}: "
                    f"available {product.current_stock}, requested {-delta}",
                    details={
                        "product_id": product_id,
                        "available": int(product.current_stock or 0),
                        "requested": -delta,
                    },
                )

        if not batch_id:
            return

        if delta == 0:
            self.require_batch(db, site_id, product_id, batch_id)
            return

        res = db.execute(
            update(StockBatch)
            .where(
                StockBatch.id == batch_id,
                StockBatch.site_id == site_id,
                StockBatch.product_id == product_id,
                StockBatch.remaining_qty + delta >= 0,
                StockBatch.remaining_qty + delta <= StockBatch.quantity,
            )
            .values(remaining_qty=StockBatch.remaining_qty + delta)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1:
            return

        batch = self.require_batch(db, site_id, product_id, batch_id)
        remaining = int(batch.remaining_qty or 0)
        if remaining + delta < 0:
            raise InsufficientStockError(
                f"Insufficient stock in batch {batch.batch_number or batch.id}: "
                f"available {remaining}, requested {-delta}",
                details={"batch_id": batch_id, "available": remaining, "requested": -delta},
            )
        raise StockIntegrityError(
            f"Batch {batch.batch_number or batch.id} would exceed its received "
            f"quantity ({remaining} + {delta} > {batch.quantity})",
            details={"batch_id": batch_id, "remaining_qty": remaining, "quantity": batch.quantity},
        )

    # ---------- movements ----------
    def record_movement(
        self,
        db: Session,
        ctx: SiteContext,
        *,
        site_id: int,
        product_id: int,
        batch_id: Optional[int],
        movement_type: MovementType,
        quantity_change: int,
        remark: str = "",
        transfer_ref: Optional[str] = None,
        ref_type: str = "",
        ref_id: Optional[int] = None,
        mrp: Optional[Decimal] = None,
        sale_rate: Optional[Decimal] = None,
    ) -> StockMovement:
        """Append one movement row without touching the aggregates."""
        mv = StockMovement(
            site_id=site_id,
            product_id=product_id,
            batch_id=batch_id,
            type=movement_type,
            quantity=abs(int(quantity_change)),
            quantity_change=int(quantity_change),
            mrp=mrp,
            sale_rate=sale_rate,
            remark=remark or "",
            transfer_ref=transfer_ref,
            ref_type=ref_type or "",
            ref_id=ref_id,
            created_by=ctx.user_id,
        )
        db.add(mv)
        db.flush()
        return mv

    def apply_movement(
        self,
        db: Session,
        ctx: SiteContext,
        *,
        product_id: int,
        movement_type: MovementType,
        quantity: int,
        batch_id: Optional[int] = None,
        site_id: Optional[int] = None,
        signed_delta: Optional[int] = None,
        remark: str = "",
        transfer_ref: Optional[str] = None,
        ref_type: str = "",
        ref_id: Optional[int] = None,
        mrp: Optional[Decimal] = None,
        sale_rate: Optional[Decimal] = None,
    ) -> StockMovement:
        """
        Shift product (and batch) stock and append the movement.

        quantity is the unsigned magnitude; the type decides the sign.
        ADJUSTMENT takes its direction from signed_delta (positive when
        omitted). site_id defaults to the caller's site; the transfer
        protocol passes the destination explicitly.
        """
        site_id = ctx.site_id if site_id is None else site_id
        quantity = int(quantity)
        if quantity < 0:
            raise ValidationError("Movement quantity must be an unsigned magnitude")

        if movement_type == MovementType.ADJUSTMENT:
            delta = quantity if signed_delta is None else int(signed_delta)
            if abs(delta) != quantity:
                raise ValidationError("Adjustment quantity does not match its signed delta")
        else:
            delta = SIGN_BY_TYPE[movement_type] * quantity
            if signed_delta is not None and int(signed_delta) != delta:
                raise ValidationError(
                    f"{movement_type.value} movement cannot carry a delta of {signed_delta}"
                )

        self.shift_stock(
            db,
            site_id=site_id,
            product_id=product_id,
            batch_id=batch_id,
            delta=delta,
        )
        return self.record_movement(
            db,
            ctx,
            site_id=site_id,
            product_id=product_id,
            batch_id=batch_id,
            movement_type=movement_type,
            quantity_change=delta,
            remark=remark,
            transfer_ref=transfer_ref,
            ref_type=ref_type,
            ref_id=ref_id,
            mrp=mrp,
            sale_rate=sale_rate,
        )

    # ---------- lookups ----------
    def require_product(self, db: Session, site_id: int, product_id: int) -> Product:
        product = (
            db.query(Product)
            .filter(Product.id == product_id, Product.site_id == site_id)
            .populate_existing()
            .first()
        )
        if not product:
            raise NotFoundError(
                f"Product {product_id} not found for site {site_id}",
                details={"product_id": product_id, "site_id": site_id},
            )
        return product

    def require_batch(self, db: Session, site_id: int, product_id: int, batch_id: int) -> StockBatch:
        batch = (
            db.query(StockBatch)
            .filter(
                StockBatch.id == batch_id,
                StockBatch.site_id == site_id,
                StockBatch.product_id == product_id,
            )
            .populate_existing()
            .first()
        )
        if not batch:
            raise NotFoundError(
                f"Batch {batch_id} not found for product {product_id} at site {site_id}",
                details={"batch_id": batch_id, "product_id": product_id, "site_id": site_id},
            )
        return batch


# =========================================================
# Stock-in / manual corrections (same primitives)
# =========================================================
def receive_stock(
    db: Session,
    ctx: SiteContext,
    payload: StockReceiptIn,
    ledger: Optional[StockLedger] = None,
) -> List[StockMovement]:
    """
    Stock-in. A line with a batch number opens a new StockBatch
    (remaining_qty starts at 0 and is raised by the IN movement itself).
    """
    ledger = ledger or StockLedger()
    movements: List[StockMovement] = []

    for line in payload.lines:
        batch_id: Optional[int] = None
        if (line.batch_number or "").strip():
            ledger.require_product(db, ctx.site_id, line.product_id)
            batch = StockBatch(
                site_id=ctx.site_id,
                product_id=line.product_id,
                batch_number=line.batch_number.strip(),
                expiry_date=line.expiry_date,
                quantity=int(line.quantity),
                remaining_qty=0,
                created_by=ctx.user_id,
            )
            db.add(batch)
            db.flush()
            batch_id = batch.id

        movements.append(
            ledger.apply_movement(
                db,
                ctx,
                product_id=line.product_id,
                batch_id=batch_id,
                movement_type=MovementType.IN,
                quantity=line.quantity,
                remark=line.remark or "Stock received",
                mrp=line.mrp,
                sale_rate=line.sale_rate,
            )
        )

    return movements


def adjust_stock(
    db: Session,
    ctx: SiteContext,
    payload: StockAdjustIn,
    ledger: Optional[StockLedger] = None,
) -> StockMovement:
    ledger = ledger or StockLedger()
    return ledger.apply_movement(
        db,
        ctx,
        product_id=payload.product_id,
        batch_id=payload.batch_id,
        movement_type=MovementType.ADJUSTMENT,
        quantity=abs(payload.quantity),
        signed_delta=payload.quantity,
        remark=payload.reason,
    )


def list_movements(db: Session, ctx: SiteContext, product_id: int) -> List[StockMovement]:
    StockLedger().require_product(db, ctx.site_id, product_id)
    return (
        db.query(StockMovement)
        .filter(StockMovement.site_id == ctx.site_id, StockMovement.product_id == product_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .all()
    )


def reconcile_site(db: Session, ctx: SiteContext) -> ReconcileOut:
    """
    Rebuild both caches from SUM(quantity_change) and report every
    product/batch whose stored value disagrees. Read-only.
    """
    site_id = ctx.site_id

    product_sums = dict(
        db.query(StockMovement.product_id, func.coalesce(func.sum(StockMovement.quantity_change), 0))
        .filter(StockMovement.site_id == site_id)
        .group_by(StockMovement.product_id)
        .all()
    )
    batch_sums = dict(
        db.query(StockMovement.batch_id, func.coalesce(func.sum(StockMovement.quantity_change), 0))
        .filter(StockMovement.site_id == site_id, StockMovement.batch_id.isnot(None))
        .group_by(StockMovement.batch_id)
        .all()
    )

    products = db.query(Product.id, Product.current_stock).filter(Product.site_id == site_id).all()
    batches = db.query(StockBatch.id, StockBatch.remaining_qty).filter(StockBatch.site_id == site_id).all()

    mismatches: List[StockMismatchOut] = []
    for pid, stock in products:
        expected = int(product_sums.get(pid, 0) or 0)
        if int(stock or 0) != expected:
            mismatches.append(
                StockMismatchOut(kind="PRODUCT", id=pid, recorded=int(stock or 0), from_movements=expected)
            )
    for bid, remaining in batches:
        expected = int(batch_sums.get(bid, 0) or 0)
        if int(remaining or 0) != expected:
            mismatches.append(
                StockMismatchOut(kind="BATCH", id=bid, recorded=int(remaining or 0), from_movements=expected)
            )

    if mismatches:
        logger.warning("Stock reconcile site_id=%s found %d mismatches", site_id, len(mismatches))

    return ReconcileOut(
        site_id=site_id,
        products_checked=len(products),
        batches_checked=len(batches),
        consistent=not mismatches,
        mismatches=mismatches,
    )
