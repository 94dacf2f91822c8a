# FILE: app/services/stock_service.py
from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.db.session import LedgerDatabase
from app.schemas.common import LedgerResult
from app.schemas.context import SiteContext
from app.schemas.stock import MovementOut, StockAdjustIn, StockReceiptIn
from app.services.audit_logger import AuditEmitter, AuditEvent
from app.services.inventory import (
    StockLedger,
    adjust_stock,
    list_movements,
    receive_stock,
    reconcile_site,
)
from app.services.ledger_errors import LedgerError
from app.services.ledger_result import parse_payload, result_from_exception

logger = logging.getLogger(__name__)


class InventoryService:
    """Stock-in, manual adjustments and the read-only ledger views."""

    def __init__(
        self,
        database: LedgerDatabase,
        audit: AuditEmitter,
        *,
        ledger: Optional[StockLedger] = None,
    ) -> None:
        self.database = database
        self.audit = audit
        self.ledger = ledger or StockLedger()

    def receive(self, ctx: SiteContext, payload: Any) -> LedgerResult:
        try:
            data = parse_payload(StockReceiptIn, payload)
            with self.database.transaction() as db:
                movements = receive_stock(db, ctx, data, ledger=self.ledger)
                out = [MovementOut.model_validate(m).model_dump() for m in movements]
        except (LedgerError, SQLAlchemyError) as e:
            return result_from_exception(e, op="receive_stock")

        for m in out:
            self.audit.emit(
                AuditEvent.for_context(
                    ctx,
                    action="CREATE",
                    entity_type="StockMovement",
                    entity_id=m["id"],
                    new_values=m,
                    changes=f"Received {m['quantity']} of product {m['product_id']}",
                )
            )
        logger.info("Stock received site_id=%s lines=%s user_id=%s", ctx.site_id, len(out), ctx.user_id)
        return LedgerResult.success(out, status_code=201)

    def adjust(self, ctx: SiteContext, payload: Any) -> LedgerResult:
        try:
            data = parse_payload(StockAdjustIn, payload)
            with self.database.transaction() as db:
                mv = adjust_stock(db, ctx, data, ledger=self.ledger)
                out = MovementOut.model_validate(mv).model_dump()
        except (LedgerError, SQLAlchemyError) as e:
            return result_from_exception(e, op="adjust_stock")

        self.audit.emit(
            AuditEvent.for_context(
                ctx,
                action="CREATE",
                entity_type="StockMovement",
                entity_id=out["id"],
                new_values=out,
                changes=f"Adjusted product {out['product_id']} by {out['quantity_change']}: {data.reason}",
            )
        )
        logger.info(
            "Stock adjusted site_id=%s product_id=%s delta=%s user_id=%s",
            ctx.site_id, data.product_id, data.quantity, ctx.user_id,
        )
        return LedgerResult.success(out, status_code=201)

    def movements(self, ctx: SiteContext, product_id: int) -> LedgerResult:
        try:
            with self.database.session() as db:
                rows = list_movements(db, ctx, product_id)
                return LedgerResult.success([MovementOut.model_validate(m).model_dump() for m in rows])
        except (LedgerError, SQLAlchemyError) as e:
            return result_from_exception(e, op="list_movements")

    def reconcile(self, ctx: SiteContext) -> LedgerResult:
        try:
            with self.database.session() as db:
                return LedgerResult.success(reconcile_site(db, ctx).model_dump())
        except (LedgerError, SQLAlchemyError) as e:
            return result_from_exception(e, op="reconcile_site")
