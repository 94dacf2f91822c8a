"""
Pytest fixtures for the ledger test suite.

Provides:
- a LedgerDatabase on a temporary SQLite file (tables created per test)
- two sibling sites of one tenant, an inactive sibling and a foreign-tenant site
- products stocked through the ledger itself, so movement sums match the caches
- an in-memory audit sink
"""

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.db.init_db import create_tables
from app.db.session import LedgerDatabase
from app.models import BillType, Product, Site, StockBatch, StockMovement
from app.schemas.context import SiteContext
from app.schemas.stock import StockReceiptIn
from app.services.audit_logger import AuditEmitter, MemoryAuditSink
from app.services.billing_service import SaleTransactionEngine
from app.services.inventory import StockLedger, receive_stock
from app.services.stock_service import InventoryService
from app.services.stock_transfer import StockTransferService


@pytest.fixture
def database(tmp_path):
    db = LedgerDatabase(f"sqlite:///{tmp_path / 'ledger.db'}", tx_timeout_seconds=5)
    db.open()
    create_tables(db.engine)
    yield db
    db.dispose()


@pytest.fixture
def seed(database):
    with database.transaction() as db:
        main = Site(tenant_id=1, code="MAIN", name="Main Pharmacy")
        branch = Site(tenant_id=1, code="BR1", name="Branch One")
        closed = Site(tenant_id=1, code="OLD", name="Closed Branch", is_active=False)
        foreign = Site(tenant_id=2, code="MAIN", name="Other Tenant Pharmacy")
        db.add_all([main, branch, closed, foreign])
        db.flush()

        def product(site, name, sku, mrp, rate):
            p = Product(
                site_id=site.id,
                name=name,
                sku=sku,
                mrp=Decimal(mrp),
                sale_rate=Decimal(rate),
                purchase_rate=Decimal("0"),
                current_stock=0,
            )
            db.add(p)
            return p

        paracetamol = product(main, "Paracetamol 500", "PCM-500", "120", "100")
        amoxicillin = product(main, "Amoxicillin 250", "AMX-250", "60", "50")
        syrup = product(main, "Cough Syrup", None, "90", "80")
        branch_paracetamol = product(branch, "Paracetamol 500", "PCM-500", "120", "100")
        branch_syrup = product(branch, "cough syrup", None, "90", "80")
        foreign_paracetamol = product(foreign, "Paracetamol 500", "PCM-500", "120", "100")
        db.flush()

        ctx = SiteContext(site_id=main.id, user_id=1, username="seed", role="admin")
        receive_stock(
            db,
            ctx,
            StockReceiptIn(lines=[
                {"product_id": paracetamol.id, "quantity": 10},
                {
                    "product_id": amoxicillin.id,
                    "quantity": 10,
                    "batch_number": "AMX-B1",
                    "expiry_date": date(2027, 6, 30),
                },
                {"product_id": syrup.id, "quantity": 5},
            ]),
        )
        batch_id = (
            db.query(StockBatch.id)
            .filter(StockBatch.product_id == amoxicillin.id)
            .scalar()
        )

        return SimpleNamespace(
            main=main.id,
            branch=branch.id,
            closed=closed.id,
            foreign=foreign.id,
            paracetamol=paracetamol.id,
            amoxicillin=amoxicillin.id,
            amoxicillin_batch=batch_id,
            syrup=syrup.id,
            branch_paracetamol=branch_paracetamol.id,
            branch_syrup=branch_syrup.id,
            foreign_paracetamol=foreign_paracetamol.id,
        )


@pytest.fixture
def ctx(seed):
    return SiteContext(site_id=seed.main, user_id=7, username="asha", role="pharmacist")


@pytest.fixture
def branch_ctx(seed):
    return SiteContext(site_id=seed.branch, user_id=8, username="ravi", role="pharmacist")


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def audit(audit_sink):
    return AuditEmitter(audit_sink)


@pytest.fixture
def ledger():
    return StockLedger()


@pytest.fixture
def sales(database, audit):
    return SaleTransactionEngine(database, audit)


@pytest.fixture
def inventory(database, audit):
    return InventoryService(database, audit)


@pytest.fixture
def transfers(database, audit):
    return StockTransferService(database, audit)


@pytest.fixture
def stock_of(database):
    def _read(product_id):
        with database.session() as db:
            return db.get(Product, product_id).current_stock
    return _read


@pytest.fixture
def batch_remaining(database):
    def _read(batch_id):
        with database.session() as db:
            return db.get(StockBatch, batch_id).remaining_qty
    return _read


@pytest.fixture
def movements_of(database):
    def _read(product_id):
        with database.session() as db:
            return (
                db.query(StockMovement)
                .filter(StockMovement.product_id == product_id)
                .order_by(StockMovement.id.asc())
                .all()
            )
    return _read


@pytest.fixture
def walkin_sale(seed):
    """Builds a WALKIN create payload; override any top-level field via kwargs."""
    def _build(items=None, **overrides):
        payload = {
            "bill_type": BillType.WALKIN.value,
            "customer_name": "Walk-in Kumar",
            "customer_phone": "9876543210",
            "gross_amount": "300.00",
            "discount": "0",
            "net_amount": "315.00",
            "paid_amount": "315.00",
            "items": items if items is not None else [
                {
                    "product_id": seed.paracetamol,
                    "product_name": "Paracetamol 500",
                    "quantity": 3,
                    "mrp": "120",
                    "sale_rate": "100",
                    "discount": "0",
                    "tax_percent": "5",
                }
            ],
        }
        payload.update(overrides)
        return payload
    return _build
