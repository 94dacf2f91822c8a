# File: app/services/billing_service.py
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.db.session import LedgerDatabase
from app.models.sale import BillType, PaymentStatus, Sale, SaleItem
from app.models.stock import MovementType
from app.schemas.common import LedgerResult
from app.schemas.context import SiteContext
from app.schemas.sale import (
    SaleCreate,
    SaleCreatedOut,
    SaleEditHistoryOut,
    SaleOut,
    SalePrintLineOut,
    SalePrintOut,
    SaleUpdate,
)
from app.services.audit_logger import AuditEmitter, AuditEvent, generate_change_summary
from app.services.billing_numbers import next_bill_number
from app.services.inventory import StockLedger
from app.services.ledger_errors import (
    BillNumberConflictError,
    LedgerError,
    NotFoundError,
)
from app.services.ledger_result import parse_payload, result_from_exception

logger = logging.getLogger(__name__)

MONEY = Decimal("0.01")


def _round_money(value: Any) -> Decimal:
    return Decimal(str(value or 0)).quantize(MONEY, rounding=ROUND_HALF_UP)


# ============================================================
# Pure money rules
# ============================================================
def payment_status_for(paid_amount: Any, net_amount: Any) -> PaymentStatus:
    """Always recomputed from (paid, net); never stepped in place."""
    paid = _round_money(paid_amount)
    net = _round_money(net_amount)
    if paid >= net:
        return PaymentStatus.PAID
    if paid > 0:
        return PaymentStatus.PARTIAL
    return PaymentStatus.UNPAID


def line_amounts(sale_rate: Any, quantity: int, discount: Any, tax_percent: Any) -> Tuple[Decimal, Decimal]:
    """
    tax_amount   = sale_rate * qty * tax% / 100
    total_amount = sale_rate * qty - discount + tax_amount
    """
    base = Decimal(str(sale_rate or 0)) * int(quantity)
    tax_amount = _round_money(base * Decimal(str(tax_percent or 0)) / Decimal("100"))
    total_amount = _round_money(base - Decimal(str(discount or 0)) + tax_amount)
    return tax_amount, total_amount


def stock_sign(bill_type: BillType) -> int:
    """A return bill puts stock back; every other bill type takes it out."""
    return 1 if bill_type == BillType.RETURN else -1


def _is_bill_no_collision(exc: IntegrityError) -> bool:
    # MySQL and PostgreSQL name the constraint; SQLite lists its columns
    text = str(getattr(exc, "orig", exc)).lower()
    return (
        "uq_sales_site_bill_no" in text
        or "unique constraint failed: sales.site_id, sales.bill_no" in text
    )


def _snapshot(sale: Sale) -> Dict[str, Any]:
    return SaleOut.model_validate(sale).model_dump(mode="json")


# ============================================================
# Sale Transaction Engine
# ============================================================
class SaleTransactionEngine:
    """
    create_sale / update_sale as one unit of work each:
    bill row + items + stock movements commit together, and the audit
    record is emitted only after that commit.
    """

    def __init__(
        self,
        database: LedgerDatabase,
        audit: AuditEmitter,
        *,
        ledger: Optional[StockLedger] = None,
        bill_number_fn: Callable[[Session, int], str] = next_bill_number,
        max_bill_no_attempts: int = settings.BILL_NO_MAX_ATTEMPTS,
    ) -> None:
        self.database = database
        self.audit = audit
        self.ledger = ledger or StockLedger()
        self._next_bill_no = bill_number_fn
        self.max_bill_no_attempts = max(1, int(max_bill_no_attempts))

    # ---------------- create ----------------
    def create_sale(self, ctx: SiteContext, payload: Any) -> LedgerResult:
        try:
            data = parse_payload(SaleCreate, payload)
            sale, snapshot = self._create_with_retry(ctx, data)
        except (LedgerError, SQLAlchemyError) as e:
            return result_from_exception(e, op="create_sale")

        self.audit.emit(
            AuditEvent.for_context(
                ctx,
                action="CREATE",
                entity_type="Sale",
                entity_id=sale.id,
                entity_name=sale.bill_no,
                new_values=snapshot,
                changes=f"Created {data.bill_type.value} sale: {sale.bill_no} - ₹{_round_money(sale.net_amount)}",
            )
        )
        logger.info(
            "Sale created site_id=%s bill_no=%s sale_id=%s items=%s user_id=%s",
            ctx.site_id, sale.bill_no, sale.id, len(data.items), ctx.user_id,
        )
        return LedgerResult.success(
            SaleCreatedOut(bill_no=sale.bill_no, sale_id=sale.id).model_dump(),
            status_code=201,
        )

    def _create_with_retry(self, ctx: SiteContext, data: SaleCreate) -> Tuple[Sale, Dict[str, Any]]:
        for attempt in range(1, self.max_bill_no_attempts + 1):
            try:
                with self.database.transaction() as db:
                    sale = self._insert_sale(db, ctx, data)
                    snapshot = _snapshot(sale)
                return sale, snapshot
            except IntegrityError as e:
                if not _is_bill_no_collision(e):
                    raise
                if attempt >= self.max_bill_no_attempts:
                    raise BillNumberConflictError(
                        "Could not allocate a unique bill number, please retry",
                        details={"site_id": ctx.site_id, "attempts": attempt},
                    ) from e
                logger.warning(
                    "Bill number collision site_id=%s attempt=%s; regenerating",
                    ctx.site_id, attempt,
                )
        raise BillNumberConflictError("Could not allocate a unique bill number")

    def _insert_sale(self, db: Session, ctx: SiteContext, data: SaleCreate) -> Sale:
        bill_no = self._next_bill_no(db, ctx.site_id)

        net = _round_money(data.net_amount)
        paid = _round_money(data.paid_amount)

        sale = Sale(
            site_id=ctx.site_id,
            bill_no=bill_no,
            bill_type=data.bill_type,
            patient_id=data.patient_id,
            appointment_id=data.appointment_id,
            consultant_id=data.consultant_id,
            customer_name=data.customer_name,
            customer_phone=data.customer_phone,
            customer_address=data.customer_address,
            remark=data.remark,
            gross_amount=_round_money(data.gross_amount),
            discount=_round_money(data.discount),
            net_amount=net,
            paid_amount=paid,
            due_amount=net - paid,
            payment_status=payment_status_for(paid, net),
            return_for_bill_no=data.return_for_bill_no,
            return_reason=data.return_reason,
            created_by=ctx.user_id,
        )
        db.add(sale)
        # a duplicate bill number fails here, before any stock is touched
        db.flush()

        is_return = data.bill_type == BillType.RETURN
        mv_type = MovementType.RETURN if is_return else MovementType.SALE

        for item in data.items:
            tax_amount, total_amount = line_amounts(
                item.sale_rate, item.quantity, item.discount, item.tax_percent
            )
            sale.items.append(
                SaleItem(
                    product_id=item.product_id,
                    batch_id=item.batch_id,
                    product_name=item.product_name,
                    batch_number=item.batch_number,
                    expiry_date=item.expiry_date,
                    quantity=item.quantity,
                    mrp=_round_money(item.mrp),
                    sale_rate=_round_money(item.sale_rate),
                    discount=_round_money(item.discount),
                    tax_percent=item.tax_percent,
                    tax_amount=tax_amount,
                    total_amount=total_amount,
                )
            )
            self.ledger.apply_movement(
                db,
                ctx,
                product_id=item.product_id,
                batch_id=item.batch_id,
                movement_type=mv_type,
                quantity=item.quantity,
                remark=f"Bill No: {bill_no}",
                ref_type="SALE",
                ref_id=sale.id,
                mrp=item.mrp,
                sale_rate=item.sale_rate,
            )

        db.flush()
        return sale

    # ---------------- edit ----------------
    def update_sale(self, ctx: SiteContext, payload: Any) -> LedgerResult:
        try:
            data = parse_payload(SaleUpdate, payload)
            with self.database.transaction() as db:
                sale, before = self._apply_edit(db, ctx, data)
                after = _snapshot(sale)
        except (LedgerError, SQLAlchemyError) as e:
            return result_from_exception(e, op="update_sale")

        self.audit.emit(
            AuditEvent.for_context(
                ctx,
                action="UPDATE",
                entity_type="Sale",
                entity_id=sale.id,
                entity_name=sale.bill_no,
                old_values=before,
                new_values=after,
                changes=generate_change_summary(before, after),
            )
        )
        logger.info(
            "Sale edited site_id=%s bill_no=%s user_id=%s reason=%s",
            ctx.site_id, sale.bill_no, ctx.user_id, data.edit_reason,
        )
        return LedgerResult.success(SaleOut.model_validate(sale).model_dump())

    def _apply_edit(self, db: Session, ctx: SiteContext, data: SaleUpdate) -> Tuple[Sale, Dict[str, Any]]:
        """
        Net re-application. Each product/batch moves once by the combined
        difference between the edited and original quantities, under the
        same guard as a sale; the movement log gets one ADJUSTMENT per
        changed line carrying only that line's net physical change.
        """
        sale = (
            db.query(Sale)
            .options(selectinload(Sale.items))
            .filter(Sale.id == data.id, Sale.site_id == ctx.site_id)
            .with_for_update()
            .first()
        )
        if not sale:
            raise NotFoundError(f"Sale {data.id} not found", details={"sale_id": data.id})

        before = _snapshot(sale)
        incoming = {i.id: i for i in data.items}
        unknown = sorted(set(incoming) - {it.id for it in sale.items})
        if unknown:
            raise NotFoundError(
                f"Sale item(s) {unknown} do not belong to bill {sale.bill_no}",
                details={"sale_id": sale.id, "item_ids": unknown},
            )

        sign = stock_sign(sale.bill_type)
        original_qty = {it.id: int(it.quantity) for it in sale.items}

        # 1. edited lines: recompute the snapshot; omitted lines leave the bill
        net_by_line: List[Tuple[SaleItem, int]] = []
        for it in list(sale.items):
            change = incoming.get(it.id)
            if change is None:
                new_qty = 0
                sale.items.remove(it)
            else:
                new_qty = int(change.quantity)
                tax_percent = it.tax_percent if change.tax_percent is None else change.tax_percent
                tax_amount, total_amount = line_amounts(it.sale_rate, new_qty, change.discount, tax_percent)
                it.quantity = new_qty
                it.discount = _round_money(change.discount)
                it.tax_percent = tax_percent
                it.tax_amount = tax_amount
                it.total_amount = total_amount
            net_change = sign * (new_qty - original_qty[it.id])
            if net_change:
                net_by_line.append((it, net_change))

        # 2. one guarded update per product/batch on the combined net change;
        # credits go first so only the final level has to be non-negative
        net_by_stock: Dict[Tuple[int, Optional[int]], int] = {}
        for it, net_change in net_by_line:
            key = (it.product_id, it.batch_id)
            net_by_stock[key] = net_by_stock.get(key, 0) + net_change
        for (product_id, batch_id), delta in sorted(net_by_stock.items(), key=lambda kv: -kv[1]):
            self.ledger.shift_stock(
                db,
                site_id=ctx.site_id,
                product_id=product_id,
                batch_id=batch_id,
                delta=delta,
            )

        # 3. one ADJUSTMENT per changed line
        remark = f"Bill {sale.bill_no} edited: {data.edit_reason}"
        for it, net_change in net_by_line:
            self.ledger.record_movement(
                db,
                ctx,
                site_id=ctx.site_id,
                product_id=it.product_id,
                batch_id=it.batch_id,
                movement_type=MovementType.ADJUSTMENT,
                quantity_change=net_change,
                remark=remark,
                ref_type="SALE",
                ref_id=sale.id,
                mrp=it.mrp,
                sale_rate=it.sale_rate,
            )

        # 4. money: paid_amount is never touched by an edit
        net = _round_money(data.net_amount)
        paid = _round_money(sale.paid_amount)
        sale.gross_amount = _round_money(data.gross_amount)
        sale.discount = _round_money(data.discount)
        sale.net_amount = net
        sale.due_amount = net - paid
        sale.payment_status = payment_status_for(paid, net)
        if data.remark is not None:
            sale.remark = data.remark

        sale.is_edited = True
        sale.edited_at = datetime.utcnow()
        sale.edited_by = ctx.user_id
        sale.edit_reason = data.edit_reason

        db.flush()
        return sale, before

    # ---------------- read side ----------------
    def _load_sale(self, db: Session, ctx: SiteContext, **by: Any) -> Sale:
        q = db.query(Sale).options(selectinload(Sale.items)).filter(Sale.site_id == ctx.site_id)
        if "sale_id" in by:
            q = q.filter(Sale.id == by["sale_id"])
        if "bill_no" in by:
            q = q.filter(Sale.bill_no == by["bill_no"])
        sale = q.first()
        if not sale:
            raise NotFoundError("Sale not found", details=by)
        return sale

    def get_sale(self, ctx: SiteContext, sale_id: int) -> LedgerResult:
        try:
            with self.database.session() as db:
                sale = self._load_sale(db, ctx, sale_id=sale_id)
                return LedgerResult.success(SaleOut.model_validate(sale).model_dump())
        except (LedgerError, SQLAlchemyError) as e:
            return result_from_exception(e, op="get_sale")

    def get_sale_by_bill_no(self, ctx: SiteContext, bill_no: str) -> LedgerResult:
        try:
            with self.database.session() as db:
                sale = self._load_sale(db, ctx, bill_no=bill_no)
                return LedgerResult.success(SaleOut.model_validate(sale).model_dump())
        except (LedgerError, SQLAlchemyError) as e:
            return result_from_exception(e, op="get_sale_by_bill_no")

    def get_sale_edit_history(self, ctx: SiteContext, sale_id: int) -> LedgerResult:
        try:
            with self.database.session() as db:
                sale = self._load_sale(db, ctx, sale_id=sale_id)
                return LedgerResult.success(SaleEditHistoryOut.model_validate(sale).model_dump())
        except (LedgerError, SQLAlchemyError) as e:
            return result_from_exception(e, op="get_sale_edit_history")

    def get_sale_print_data(self, ctx: SiteContext, sale_id: int) -> LedgerResult:
        try:
            with self.database.session() as db:
                sale = self._load_sale(db, ctx, sale_id=sale_id)
                out = SalePrintOut(
                    bill_no=sale.bill_no,
                    bill_type=sale.bill_type,
                    created_at=sale.created_at,
                    customer_name=sale.customer_name or "Walk-in Customer",
                    customer_phone=sale.customer_phone,
                    patient_id=sale.patient_id,
                    items=[
                        SalePrintLineOut(
                            product_name=it.product_name,
                            batch_number=it.batch_number,
                            quantity=it.quantity,
                            sale_rate=it.sale_rate,
                            discount=it.discount,
                            total_amount=it.total_amount,
                        )
                        for it in sale.items
                    ],
                    gross_amount=sale.gross_amount,
                    discount=sale.discount,
                    net_amount=sale.net_amount,
                    paid_amount=sale.paid_amount,
                    due_amount=sale.due_amount,
                    payment_status=sale.payment_status,
                    remark=sale.remark,
                )
                return LedgerResult.success(out.model_dump())
        except (LedgerError, SQLAlchemyError) as e:
            return result_from_exception(e, op="get_sale_print_data")

    def preview_bill_number(self, ctx: SiteContext) -> LedgerResult:
        try:
            with self.database.session() as db:
                return LedgerResult.success({"bill_no": self._next_bill_no(db, ctx.site_id)})
        except (LedgerError, SQLAlchemyError) as e:
            return result_from_exception(e, op="preview_bill_number")
