"""
Stock ledger primitives: sign rules, guarded aggregate updates, batch
bounds, append-only movements and reconciliation against movement sums.
"""

import pytest
from sqlalchemy import update

from app.models import MovementType, Product, StockBatch, StockMovement
from app.models.stock import ImmutableMovementError
from app.schemas.stock import StockAdjustIn, StockReceiptIn
from app.services.inventory import adjust_stock, reconcile_site, receive_stock
from app.services.ledger_errors import (
    InsufficientStockError,
    NotFoundError,
    StockIntegrityError,
    ValidationError,
)


class TestSignRules:
    @pytest.mark.parametrize(
        "movement_type, expected_change, expected_stock",
        [
            (MovementType.SALE, -4, 6),
            (MovementType.TRANSFER_OUT, -4, 6),
            (MovementType.RETURN, 4, 14),
            (MovementType.TRANSFER_IN, 4, 14),
            (MovementType.IN, 4, 14),
        ],
    )
    def test_type_decides_direction(
        self, database, ledger, ctx, seed, stock_of, movement_type, expected_change, expected_stock
    ):
        with database.transaction() as db:
            mv = ledger.apply_movement(
                db, ctx, product_id=seed.paracetamol, movement_type=movement_type, quantity=4
            )
            assert mv.quantity == 4
            assert mv.quantity_change == expected_change

        assert stock_of(seed.paracetamol) == expected_stock

    def test_adjustment_follows_signed_delta(self, database, ledger, ctx, seed, stock_of):
        with database.transaction() as db:
            mv = ledger.apply_movement(
                db,
                ctx,
                product_id=seed.paracetamol,
                movement_type=MovementType.ADJUSTMENT,
                quantity=3,
                signed_delta=-3,
                remark="damaged strip",
            )
            assert (mv.quantity, mv.quantity_change) == (3, -3)

        assert stock_of(seed.paracetamol) == 7

    def test_adjustment_magnitude_must_match(self, database, ledger, ctx, seed):
        with database.transaction() as db:
            with pytest.raises(ValidationError):
                ledger.apply_movement(
                    db,
                    ctx,
                    product_id=seed.paracetamol,
                    movement_type=MovementType.ADJUSTMENT,
                    quantity=3,
                    signed_delta=-2,
                )

    def test_sale_cannot_carry_a_positive_delta(self, database, ledger, ctx, seed):
        with database.transaction() as db:
            with pytest.raises(ValidationError):
                ledger.apply_movement(
                    db,
                    ctx,
                    product_id=seed.paracetamol,
                    movement_type=MovementType.SALE,
                    quantity=2,
                    signed_delta=2,
                )


class TestGuards:
    def test_oversell_is_rejected_and_stock_kept(self, database, ledger, ctx, seed, stock_of):
        with pytest.raises(InsufficientStockError) as exc_info:
            with database.transaction() as db:
                ledger.apply_movement(
                    db, ctx, product_id=seed.paracetamol, movement_type=MovementType.SALE, quantity=11
                )

        assert exc_info.value.details == {"product_id": seed.paracetamol, "available": 10, "requested": 11}
        assert stock_of(seed.paracetamol) == 10

    def test_selling_everything_reaches_zero(self, database, ledger, ctx, seed, stock_of):
        with database.transaction() as db:
            ledger.apply_movement(
                db, ctx, product_id=seed.paracetamol, movement_type=MovementType.SALE, quantity=10
            )
        assert stock_of(seed.paracetamol) == 0

    def test_product_of_another_site_is_not_found(self, database, ledger, ctx, seed):
        with database.transaction() as db:
            with pytest.raises(NotFoundError):
                ledger.apply_movement(
                    db, ctx, product_id=seed.branch_paracetamol, movement_type=MovementType.IN, quantity=1
                )

    def test_batch_and_product_move_together(self, database, ledger, ctx, seed, stock_of, batch_remaining):
        with database.transaction() as db:
            ledger.apply_movement(
                db,
                ctx,
                product_id=seed.amoxicillin,
                batch_id=seed.amoxicillin_batch,
                movement_type=MovementType.SALE,
                quantity=4,
            )
        assert stock_of(seed.amoxicillin) == 6
        assert batch_remaining(seed.amoxicillin_batch) == 6

    def test_batch_cannot_go_negative(self, database, ledger, ctx, seed, batch_remaining):
        with database.transaction() as db:
            # batch already sold down to a single unit
            db.execute(update(StockBatch).where(StockBatch.id == seed.amoxicillin_batch).values(remaining_qty=1))

        with pytest.raises(InsufficientStockError):
            with database.transaction() as db:
                ledger.apply_movement(
                    db,
                    ctx,
                    product_id=seed.amoxicillin,
                    batch_id=seed.amoxicillin_batch,
                    movement_type=MovementType.SALE,
                    quantity=2,
                )
        assert batch_remaining(seed.amoxicillin_batch) == 1

    def test_batch_credit_above_received_quantity(self, database, ledger, ctx, seed, stock_of):
        with pytest.raises(StockIntegrityError):
            with database.transaction() as db:
                ledger.apply_movement(
                    db,
                    ctx,
                    product_id=seed.amoxicillin,
                    batch_id=seed.amoxicillin_batch,
                    movement_type=MovementType.RETURN,
                    quantity=1,
                )
        assert stock_of(seed.amoxicillin) == 10

    def test_unknown_batch_is_not_found(self, database, ledger, ctx, seed, stock_of):
        with pytest.raises(NotFoundError):
            with database.transaction() as db:
                ledger.shift_stock(
                    db, site_id=ctx.site_id, product_id=seed.paracetamol, batch_id=999, delta=-1
                )
        assert stock_of(seed.paracetamol) == 10


class TestMovementLog:
    def test_movements_are_append_only(self, database, seed):
        with pytest.raises(ImmutableMovementError):
            with database.transaction() as db:
                mv = db.query(StockMovement).filter(StockMovement.product_id == seed.paracetamol).first()
                mv.remark = "rewritten"
                db.flush()

    def test_movements_cannot_be_deleted(self, database, seed):
        with pytest.raises(ImmutableMovementError):
            with database.transaction() as db:
                mv = db.query(StockMovement).filter(StockMovement.product_id == seed.paracetamol).first()
                db.delete(mv)
                db.flush()

    def test_receipt_opens_a_batch(self, database, ctx, seed, batch_remaining, stock_of):
        with database.transaction() as db:
            (mv,) = receive_stock(
                db,
                ctx,
                StockReceiptIn(lines=[{"product_id": seed.paracetamol, "quantity": 6, "batch_number": "PCM-B2"}]),
            )
            batch = db.get(StockBatch, mv.batch_id)
            assert (batch.quantity, batch.batch_number) == (6, "PCM-B2")

        assert batch_remaining(mv.batch_id) == 6
        assert stock_of(seed.paracetamol) == 16
        assert mv.type == MovementType.IN

    def test_adjust_records_reason(self, database, ctx, seed, movements_of):
        with database.transaction() as db:
            adjust_stock(db, ctx, StockAdjustIn(product_id=seed.syrup, quantity=-2, reason="bottle broken"))

        last = movements_of(seed.syrup)[-1]
        assert last.type == MovementType.ADJUSTMENT
        assert (last.quantity, last.quantity_change, last.remark) == (2, -2, "bottle broken")


class TestReconcile:
    def test_fresh_site_is_consistent(self, database, ctx):
        with database.session() as db:
            report = reconcile_site(db, ctx)
        assert report.consistent
        assert report.products_checked == 3
        assert report.batches_checked == 1

    def test_tampered_cache_is_reported(self, database, ctx, seed):
        with database.transaction() as db:
            db.execute(update(Product).where(Product.id == seed.syrup).values(current_stock=50))

        with database.session() as db:
            report = reconcile_site(db, ctx)

        assert not report.consistent
        (mismatch,) = report.mismatches
        assert (mismatch.kind, mismatch.id, mismatch.recorded, mismatch.from_movements) == (
            "PRODUCT", seed.syrup, 50, 5,
        )


class TestInventoryInput:
    def test_overlong_adjust_reason_is_rejected(self, inventory, ctx, seed, stock_of):
        result = inventory.adjust(
            ctx, {"product_id": seed.paracetamol, "quantity": -1, "reason": "x" * 1001}
        )

        assert result.status_code == 422
        assert result.error.code == "VALIDATION"
        assert stock_of(seed.paracetamol) == 10

    def test_overlong_batch_number_is_rejected(self, inventory, ctx, seed, stock_of):
        result = inventory.receive(
            ctx,
            {"lines": [{"product_id": seed.paracetamol, "quantity": 5, "batch_number": "B" * 101}]},
        )

        assert result.error.code == "VALIDATION"
        assert stock_of(seed.paracetamol) == 10
