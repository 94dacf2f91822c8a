# app/main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.exception_handlers import register_exception_handlers
from app.api.router import api_router
from app.core.config import settings
from app.db.session import LedgerDatabase
from app.services.audit_logger import (
    AuditEmitter,
    AuditSink,
    DatabaseAuditSink,
    LoggingAuditSink,
)
from app.services.billing_service import SaleTransactionEngine
from app.services.stock_service import InventoryService
from app.services.stock_transfer import StockTransferService

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_audit_sink(database: LedgerDatabase) -> AuditSink:
    kind = (settings.AUDIT_SINK or "db").strip().lower()
    if kind == "log":
        return LoggingAuditSink()
    if kind != "db":
        logger.warning("Unknown AUDIT_SINK=%r, falling back to db", settings.AUDIT_SINK)
    return DatabaseAuditSink(database.session_factory)


def create_app(
    database: Optional[LedgerDatabase] = None,
    audit_sink: Optional[AuditSink] = None,
) -> FastAPI:
    db = database or LedgerDatabase(settings.DATABASE_URL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db.open()
        audit = AuditEmitter(audit_sink or build_audit_sink(db))
        app.state.database = db
        app.state.audit = audit
        app.state.sales = SaleTransactionEngine(db, audit)
        app.state.inventory = InventoryService(db, audit)
        app.state.transfers = StockTransferService(db, audit)
        try:
            yield
        finally:
            db.dispose()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.API_V1_STR)

    # Health
    @app.get("/")
    def root():
        return {"message": "Site ledger API running", "version": "v1"}

    return app


app = create_app()
