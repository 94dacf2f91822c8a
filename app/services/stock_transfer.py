# FILE: app/services/stock_transfer.py
from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.db.session import LedgerDatabase
from app.models.product import Product
from app.models.site import Site
from app.models.stock import MovementType, StockMovement
from app.schemas.common import LedgerResult
from app.schemas.context import SiteContext
from app.schemas.stock import (
    SiteOut,
    TransferCreate,
    TransferCreatedOut,
    TransferGroupOut,
    TransferLineOut,
)
from app.services.audit_logger import AuditEmitter, AuditEvent
from app.services.inventory import StockLedger
from app.services.ledger_errors import LedgerError, NotFoundError, ValidationError
from app.services.ledger_result import parse_payload, result_from_exception
from app.services.site_resolver import SiblingSiteResolver, TenantSiblingSiteResolver, get_site

logger = logging.getLogger(__name__)

TRANSFER_TYPES = (MovementType.TRANSFER_OUT, MovementType.TRANSFER_IN)


def new_transfer_ref() -> str:
    return f"TRANSFER-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def _remark(prefix: str, site_name: str, note: str) -> str:
    return f"{prefix} {site_name}: {note}" if note else f"{prefix} {site_name}"


@dataclass
class _TransferOutcome:
    transfer_ref: str
    source: Site
    destination: Site
    lines: List[Dict[str, Any]] = field(default_factory=list)


class StockTransferService:
    """
    Moves stock between two sites of one tenant as a matched pair of
    movements (TRANSFER_OUT at the source, TRANSFER_IN at the destination)
    sharing one transfer_ref, all inside a single transaction.
    """

    def __init__(
        self,
        database: LedgerDatabase,
        audit: AuditEmitter,
        *,
        site_resolver: Optional[SiblingSiteResolver] = None,
        ledger: Optional[StockLedger] = None,
        ref_factory: Callable[[], str] = new_transfer_ref,
    ) -> None:
        self.database = database
        self.audit = audit
        self.site_resolver = site_resolver or TenantSiblingSiteResolver()
        self.ledger = ledger or StockLedger()
        self._ref_factory = ref_factory

    # ---------------- transfer ----------------
    def transfer_stock(self, ctx: SiteContext, payload: Any) -> LedgerResult:
        try:
            data = parse_payload(TransferCreate, payload)
            if data.destination_site_id == ctx.site_id:
                raise ValidationError("Source and destination site must differ")
            with self.database.transaction() as db:
                outcome = self._transfer(db, ctx, data)
        except (LedgerError, SQLAlchemyError) as e:
            return result_from_exception(e, op="transfer_stock")

        count = len(outcome.lines)
        self.audit.emit(
            AuditEvent.for_context(
                ctx,
                site_id=outcome.source.id,
                action="CREATE",
                entity_type="StockTransfer",
                entity_id=outcome.transfer_ref,
                entity_name=outcome.transfer_ref,
                new_values={"destination_site_id": outcome.destination.id, "items": outcome.lines},
                changes=f"Transferred {count} item(s) to {outcome.destination.name}",
            )
        )
        self.audit.emit(
            AuditEvent.for_context(
                ctx,
                site_id=outcome.destination.id,
                action="CREATE",
                entity_type="StockTransfer",
                entity_id=outcome.transfer_ref,
                entity_name=outcome.transfer_ref,
                new_values={"source_site_id": outcome.source.id, "items": outcome.lines},
                changes=f"Received {count} item(s) from {outcome.source.name}",
            )
        )
        logger.info(
            "Stock transfer %s site_id=%s -> site_id=%s items=%s user_id=%s",
            outcome.transfer_ref, outcome.source.id, outcome.destination.id, count, ctx.user_id,
        )
        return LedgerResult.success(
            TransferCreatedOut(transfer_ref=outcome.transfer_ref).model_dump(),
            status_code=201,
        )

    def _transfer(self, db: Session, ctx: SiteContext, data: TransferCreate) -> _TransferOutcome:
        source = get_site(db, ctx.site_id)
        allowed = {s.id: s for s in self.site_resolver.siblings(db, source.id)}
        destination = allowed.get(data.destination_site_id)
        if destination is None:
            raise NotFoundError(
                f"Site {data.destination_site_id} is not a sibling of {source.name}",
                details={"destination_site_id": data.destination_site_id},
            )

        ref = self._ref_factory()
        note = (data.remark or "").strip()
        out_remark = _remark("Transfer to", destination.name, note)
        in_remark = _remark("Transfer from", source.name, note)
        outcome = _TransferOutcome(transfer_ref=ref, source=source, destination=destination)

        for item in data.items:
            src_product = self.ledger.require_product(db, source.id, item.product_id)
            dst_product = self._destination_product(db, destination, src_product, item.destination_product_id)

            # debit first: insufficient source stock aborts the whole transfer
            self.ledger.apply_movement(
                db,
                ctx,
                site_id=source.id,
                product_id=src_product.id,
                movement_type=MovementType.TRANSFER_OUT,
                quantity=item.quantity,
                remark=out_remark,
                transfer_ref=ref,
                ref_type="TRANSFER",
                mrp=src_product.mrp,
                sale_rate=src_product.sale_rate,
            )
            self.ledger.apply_movement(
                db,
                ctx,
                site_id=destination.id,
                product_id=dst_product.id,
                movement_type=MovementType.TRANSFER_IN,
                quantity=item.quantity,
                remark=in_remark,
                transfer_ref=ref,
                ref_type="TRANSFER",
                mrp=dst_product.mrp,
                sale_rate=dst_product.sale_rate,
            )
            outcome.lines.append({
                "product_id": src_product.id,
                "destination_product_id": dst_product.id,
                "product_name": src_product.name,
                "quantity": int(item.quantity),
            })

        return outcome

    def _destination_product(
        self,
        db: Session,
        destination: Site,
        src_product: Product,
        destination_product_id: Optional[int],
    ) -> Product:
        if destination_product_id:
            return self.ledger.require_product(db, destination.id, destination_product_id)

        q = db.query(Product).filter(Product.site_id == destination.id)
        match = None
        if (src_product.sku or "").strip():
            match = q.filter(Product.sku == src_product.sku).order_by(Product.id.asc()).first()
        if match is None:
            match = (
                q.filter(func.lower(Product.name) == (src_product.name or "").lower())
                .order_by(Product.id.asc())
                .first()
            )
        if match is None:
            raise NotFoundError(
                f"{src_product.name} is not stocked at {destination.name}",
                details={"product_id": src_product.id, "destination_site_id": destination.id},
            )
        return match

    # ---------------- read side ----------------
    def list_sibling_sites(self, ctx: SiteContext) -> LedgerResult:
        try:
            with self.database.session() as db:
                sites = self.site_resolver.siblings(db, ctx.site_id)
                return LedgerResult.success([SiteOut.model_validate(s).model_dump() for s in sites])
        except (LedgerError, SQLAlchemyError) as e:
            return result_from_exception(e, op="list_sibling_sites")

    def get_transfer_history(self, ctx: SiteContext) -> LedgerResult:
        """Transfers touching this site, grouped by the transfer_ref column."""
        try:
            with self.database.session() as db:
                groups = self._history(db, ctx.site_id)
                return LedgerResult.success([g.model_dump() for g in groups])
        except (LedgerError, SQLAlchemyError) as e:
            return result_from_exception(e, op="get_transfer_history")

    def _history(self, db: Session, site_id: int) -> List[TransferGroupOut]:
        movements = (
            db.query(StockMovement)
            .options(selectinload(StockMovement.product))
            .filter(
                StockMovement.site_id == site_id,
                StockMovement.transfer_ref.isnot(None),
                StockMovement.type.in_(TRANSFER_TYPES),
            )
            .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
            .all()
        )
        if not movements:
            return []

        refs = {m.transfer_ref for m in movements}
        counter_site_by_ref = dict(
            db.query(StockMovement.transfer_ref, StockMovement.site_id)
            .filter(StockMovement.transfer_ref.in_(refs), StockMovement.site_id != site_id)
            .distinct()
            .all()
        )
        names = dict(
            db.query(Site.id, Site.name).filter(Site.id.in_(set(counter_site_by_ref.values()))).all()
        )

        groups: Dict[str, TransferGroupOut] = {}
        for m in movements:
            line = TransferLineOut(
                product_id=m.product_id,
                product_name=m.product.name if m.product else f"Product #{m.product_id}",
                quantity=m.quantity,
            )
            g = groups.get(m.transfer_ref)
            if g is not None:
                g.items.append(line)
                continue
            counter_id = counter_site_by_ref.get(m.transfer_ref)
            groups[m.transfer_ref] = TransferGroupOut(
                transfer_ref=m.transfer_ref,
                date=m.created_at,
                direction="OUT" if m.type == MovementType.TRANSFER_OUT else "IN",
                counter_site_id=counter_id,
                counter_site_name=names.get(counter_id, "Unknown site"),
                remark=m.remark or "",
                items=[line],
            )

        return sorted(groups.values(), key=lambda g: g.date, reverse=True)
