# FILE: app/services/ledger_errors.py
from __future__ import annotations

from typing import Any, Optional


class LedgerError(RuntimeError):
    code = "LEDGER_ERROR"
    status_code = 400

    def __init__(self, msg: str, *, details: Optional[Any] = None) -> None:
        super().__init__(msg)
        self.msg = msg
        self.details = details


class ValidationError(LedgerError):
    """Malformed or missing input; raised before any transaction opens."""
    code = "VALIDATION"
    status_code = 422


class NotFoundError(LedgerError):
    """Sale / product / batch / site absent or not owned by the caller's site."""
    code = "NOT_FOUND"
    status_code = 404


class BillNumberConflictError(LedgerError):
    """(site_id, bill_no) collided again after the regeneration retry."""
    code = "CONFLICT"
    status_code = 409


class InsufficientStockError(LedgerError):
    code = "INSUFFICIENT_STOCK"
    status_code = 409


class StockIntegrityError(LedgerError):
    code = "INTEGRITY"
    status_code = 500


class BillNumberIntegrityError(StockIntegrityError):
    """Stored bill number does not parse as PREFIX + digits."""
    pass
