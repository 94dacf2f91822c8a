# app/db/session.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings

logger = logging.getLogger(__name__)


class LedgerDatabase:
    """
    Connection pool + session factory handed to the ledger services.

    Lifecycle: open() at startup, dispose() at shutdown. Nothing in the
    services reaches for a module-level engine.
    """

    def __init__(
        self,
        url: str,
        *,
        pool_size: int = settings.DB_POOL_SIZE,
        max_overflow: int = settings.DB_MAX_OVERFLOW,
        pool_recycle: int = settings.DB_POOL_RECYCLE,
        tx_timeout_seconds: int = settings.LEDGER_TX_TIMEOUT_SECONDS,
        echo: bool = settings.DB_ECHO,
    ) -> None:
        self.url = url
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.pool_recycle = pool_recycle
        self.tx_timeout_seconds = tx_timeout_seconds
        self.echo = echo
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    # ---------- lifecycle ----------
    def open(self) -> "LedgerDatabase":
        if self._engine is not None:
            return self

        kwargs: Dict[str, Any] = {"pool_pre_ping": True, "echo": self.echo, "future": True}
        if self.url.startswith("sqlite"):
            # sqlite3 busy timeout bounds how long a writer waits for the lock
            kwargs["connect_args"] = {
                "timeout": self.tx_timeout_seconds,
                "check_same_thread": False,
            }
        else:
            kwargs.update(
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
                pool_recycle=self.pool_recycle,
                pool_timeout=self.tx_timeout_seconds,
            )

        eng = create_engine(self.url, **kwargs)
        self._install_lock_timeout(eng)

        self._engine = eng
        self._session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=eng,
            future=True,
        )
        logger.info("Ledger database opened: %s", eng.url.render_as_string(hide_password=True))
        return self

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Ledger database disposed")
        self._engine = None
        self._session_factory = None

    def _install_lock_timeout(self, eng: Engine) -> None:
        timeout = int(self.tx_timeout_seconds)
        dialect = eng.dialect.name

        @event.listens_for(eng, "connect")
        def _set_lock_timeout(dbapi_conn, _record):
            if dialect == "mysql":
                cur = dbapi_conn.cursor()
                cur.execute(f"SET SESSION innodb_lock_wait_timeout = {timeout}")
                cur.close()
            elif dialect == "postgresql":
                cur = dbapi_conn.cursor()
                cur.execute(f"SET lock_timeout = '{timeout}s'")
                cur.close()

    # ---------- access ----------
    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("LedgerDatabase is not open")
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            raise RuntimeError("LedgerDatabase is not open")
        return self._session_factory

    def session(self) -> Session:
        return self.session_factory()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        One unit of work: commits when the block exits normally, rolls
        back everything (sale, items, stock, movements) when it raises.
        """
        db = self.session()
        try:
            with db.begin():
                yield db
        finally:
            db.close()
