# app/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All site-scoped ledger tables inherit from this."""
    pass


# Import all models so metadata is complete for create_all()
from app.models import (  # noqa: F401,E402
    site,
    product,
    stock,
    sale,
    audit,
)
