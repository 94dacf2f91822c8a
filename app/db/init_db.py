# app/db/init_db.py
from __future__ import annotations

import argparse
import logging

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from app.core.config import settings
from app.db.base import Base
from app.db.session import LedgerDatabase

logger = logging.getLogger(__name__)


def create_tables(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


def print_tables(engine: Engine) -> set[str]:
    names = set(inspect(engine).get_table_names())
    print("Existing tables:", sorted(names))
    return names


def main() -> None:
    parser = argparse.ArgumentParser(description="Create ledger tables")
    parser.add_argument("--url", default=settings.DATABASE_URL)
    parser.add_argument("--show", action="store_true", help="list tables after create")
    args = parser.parse_args()

    database = LedgerDatabase(args.url)
    database.open()
    try:
        create_tables(database.engine)
        logger.info("Ledger tables ready on %s", database.engine.url.render_as_string(hide_password=True))
        if args.show:
            print_tables(database.engine)
    finally:
        database.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL)
    main()
