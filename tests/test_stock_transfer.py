"""
Inter-site transfers: paired TRANSFER_OUT / TRANSFER_IN movements under one
transfer_ref, sibling-site allow-list and all-or-nothing semantics.
"""

import re

from app.models import MovementType, StockMovement
from app.services.stock_transfer import StockTransferService, new_transfer_ref


def _transfer_movements(database, ref):
    with database.session() as db:
        return (
            db.query(StockMovement)
            .filter(StockMovement.transfer_ref == ref)
            .order_by(StockMovement.id.asc())
            .all()
        )


class TestTransferRef:
    def test_format(self):
        assert re.fullmatch(r"TRANSFER-\d{13}-[0-9a-f]{6}", new_transfer_ref())

    def test_refs_are_distinct(self):
        assert len({new_transfer_ref() for _ in range(50)}) == 50


class TestTransferStock:
    def test_pairs_out_and_in_under_one_ref(self, database, transfers, ctx, seed, stock_of):
        result = transfers.transfer_stock(
            ctx,
            {
                "destination_site_id": seed.branch,
                "remark": "weekend top-up",
                "items": [{"product_id": seed.paracetamol, "quantity": 4}],
            },
        )

        assert result.ok
        assert result.status_code == 201
        ref = result.data["transfer_ref"]

        assert stock_of(seed.paracetamol) == 6
        assert stock_of(seed.branch_paracetamol) == 4

        out_mv, in_mv = _transfer_movements(database, ref)
        assert (out_mv.site_id, out_mv.type, out_mv.quantity_change) == (
            seed.main, MovementType.TRANSFER_OUT, -4,
        )
        assert (in_mv.site_id, in_mv.type, in_mv.quantity_change) == (
            seed.branch, MovementType.TRANSFER_IN, 4,
        )
        assert out_mv.remark == "Transfer to Branch One: weekend top-up"
        assert in_mv.remark == "Transfer from Main Pharmacy: weekend top-up"

    def test_falls_back_to_name_match(self, transfers, ctx, seed, stock_of):
        result = transfers.transfer_stock(
            ctx,
            {"destination_site_id": seed.branch, "items": [{"product_id": seed.syrup, "quantity": 2}]},
        )

        assert result.ok
        assert stock_of(seed.syrup) == 3
        assert stock_of(seed.branch_syrup) == 2

    def test_explicit_destination_product(self, transfers, ctx, seed, stock_of):
        result = transfers.transfer_stock(
            ctx,
            {
                "destination_site_id": seed.branch,
                "items": [
                    {
                        "product_id": seed.amoxicillin,
                        "quantity": 1,
                        "destination_product_id": seed.branch_paracetamol,
                    }
                ],
            },
        )

        assert result.ok
        assert stock_of(seed.branch_paracetamol) == 1

    def test_unmatched_product_aborts(self, database, transfers, ctx, seed, stock_of):
        result = transfers.transfer_stock(
            ctx,
            {
                "destination_site_id": seed.branch,
                "items": [
                    {"product_id": seed.paracetamol, "quantity": 1},
                    {"product_id": seed.amoxicillin, "quantity": 1},
                ],
            },
        )

        assert result.error.code == "NOT_FOUND"
        assert stock_of(seed.paracetamol) == 10
        assert stock_of(seed.branch_paracetamol) == 0

    def test_insufficient_source_stock_writes_nothing(self, database, transfers, ctx, seed, stock_of, audit_sink):
        result = transfers.transfer_stock(
            ctx,
            {
                "destination_site_id": seed.branch,
                "items": [
                    {"product_id": seed.paracetamol, "quantity": 4},
                    {"product_id": seed.syrup, "quantity": 9},
                ],
            },
        )

        assert result.status_code == 409
        assert result.error.code == "INSUFFICIENT_STOCK"
        assert stock_of(seed.paracetamol) == 10
        assert stock_of(seed.branch_paracetamol) == 0
        with database.session() as db:
            assert db.query(StockMovement).filter(StockMovement.transfer_ref.isnot(None)).count() == 0
        assert audit_sink.events == []

    def test_destination_must_differ(self, transfers, ctx, seed):
        result = transfers.transfer_stock(
            ctx,
            {"destination_site_id": seed.main, "items": [{"product_id": seed.paracetamol, "quantity": 1}]},
        )
        assert result.error.code == "VALIDATION"

    def test_overlong_note_is_rejected(self, transfers, ctx, seed, stock_of):
        result = transfers.transfer_stock(
            ctx,
            {
                "destination_site_id": seed.branch,
                "items": [{"product_id": seed.paracetamol, "quantity": 1}],
                "remark": "x" * 501,
            },
        )

        assert result.status_code == 422
        assert result.error.code == "VALIDATION"
        assert stock_of(seed.paracetamol) == 10
        assert stock_of(seed.branch_paracetamol) == 0

    def test_foreign_tenant_site_is_not_a_destination(self, transfers, ctx, seed, stock_of):
        result = transfers.transfer_stock(
            ctx,
            {"destination_site_id": seed.foreign, "items": [{"product_id": seed.paracetamol, "quantity": 1}]},
        )

        assert result.status_code == 404
        assert stock_of(seed.foreign_paracetamol) == 0
        assert stock_of(seed.paracetamol) == 10

    def test_inactive_sibling_is_not_a_destination(self, transfers, ctx, seed):
        result = transfers.transfer_stock(
            ctx,
            {"destination_site_id": seed.closed, "items": [{"product_id": seed.paracetamol, "quantity": 1}]},
        )
        assert result.error.code == "NOT_FOUND"

    def test_custom_resolver_controls_the_allow_list(self, database, audit, ctx, seed):
        class NoSiblings:
            def siblings(self, db, site_id):
                return []

        service = StockTransferService(database, audit, site_resolver=NoSiblings())
        result = service.transfer_stock(
            ctx,
            {"destination_site_id": seed.branch, "items": [{"product_id": seed.paracetamol, "quantity": 1}]},
        )
        assert result.error.code == "NOT_FOUND"

    def test_one_audit_record_per_site(self, transfers, ctx, seed, audit_sink):
        ref = transfers.transfer_stock(
            ctx,
            {"destination_site_id": seed.branch, "items": [{"product_id": seed.paracetamol, "quantity": 2}]},
        ).data["transfer_ref"]

        assert [(e.site_id, e.entity_type, e.entity_id) for e in audit_sink.events] == [
            (seed.main, "StockTransfer", ref),
            (seed.branch, "StockTransfer", ref),
        ]

    def test_reconcile_stays_consistent_on_both_sites(self, inventory, transfers, ctx, branch_ctx, seed):
        transfers.transfer_stock(
            ctx,
            {"destination_site_id": seed.branch, "items": [{"product_id": seed.paracetamol, "quantity": 3}]},
        )

        assert inventory.reconcile(ctx).data["consistent"] is True
        assert inventory.reconcile(branch_ctx).data["consistent"] is True


class TestHistoryAndSiblings:
    def test_history_from_both_sides(self, transfers, ctx, branch_ctx, seed):
        ref = transfers.transfer_stock(
            ctx,
            {
                "destination_site_id": seed.branch,
                "remark": "restock",
                "items": [
                    {"product_id": seed.paracetamol, "quantity": 2},
                    {"product_id": seed.syrup, "quantity": 1},
                ],
            },
        ).data["transfer_ref"]

        (sent,) = transfers.get_transfer_history(ctx).data
        assert sent["transfer_ref"] == ref
        assert sent["direction"] == "OUT"
        assert (sent["counter_site_id"], sent["counter_site_name"]) == (seed.branch, "Branch One")
        assert sorted((i["product_name"], i["quantity"]) for i in sent["items"]) == [
            ("Cough Syrup", 1),
            ("Paracetamol 500", 2),
        ]

        (received,) = transfers.get_transfer_history(branch_ctx).data
        assert received["direction"] == "IN"
        assert received["counter_site_name"] == "Main Pharmacy"
        assert received["remark"] == "Transfer from Main Pharmacy: restock"

    def test_history_ignores_non_transfer_movements(self, transfers, ctx):
        assert transfers.get_transfer_history(ctx).data == []

    def test_sibling_sites(self, transfers, ctx, seed):
        sites = transfers.list_sibling_sites(ctx).data
        assert [s["id"] for s in sites] == [seed.branch]
