# FILE: app/services/billing_numbers.py
from __future__ import annotations

import re

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.sale import Sale
from app.services.ledger_errors import BillNumberIntegrityError


def format_bill_number(n: int, *, prefix: str | None = None, padding: int | None = None) -> str:
    prefix = settings.BILL_NO_PREFIX if prefix is None else prefix
    padding = settings.BILL_NO_PADDING if padding is None else padding
    return f"{prefix}{str(int(n)).zfill(int(padding))}"


def parse_bill_number(bill_no: str, *, prefix: str | None = None) -> int:
    """
    "SALE0042" -> 42.
    Anything else is a data-integrity problem: resetting to 1 here would
    mint a bill number that already belongs to another sale.
    """
    prefix = settings.BILL_NO_PREFIX if prefix is None else prefix
    m = re.fullmatch(re.escape(prefix) + r"(\d+)", (bill_no or "").strip())
    if not m:
        raise BillNumberIntegrityError(
            f"Stored bill number {bill_no!r} does not match {prefix}<digits>",
            details={"bill_no": bill_no, "prefix": prefix},
        )
    return int(m.group(1))


def next_bill_number(db: Session, site_id: int) -> str:
    """
    Next bill number for a site, derived from the most recently created sale.

    Two concurrent callers can get the same answer; the
    uq_sales_site_bill_no constraint catches that at insert time and the
    sale engine regenerates once.
    """
    last = (
        db.query(Sale.bill_no)
        .filter(Sale.site_id == site_id)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .first()
    )
    if not last or not last[0]:
        return format_bill_number(1)
    return format_bill_number(parse_bill_number(last[0]) + 1)
