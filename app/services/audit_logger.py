from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import sessionmaker

from app.models.audit import AuditLog
from app.schemas.context import SiteContext

logger = logging.getLogger(__name__)


@dataclass
class AuditEvent:
    site_id: int
    user_id: Optional[int]
    user_name: str
    user_role: str
    action: str  # "CREATE" | "UPDATE" | "DELETE"
    entity_type: str
    entity_id: Any = None
    entity_name: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    changes: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def for_context(cls, ctx: SiteContext, *, site_id: Optional[int] = None, **kw: Any) -> "AuditEvent":
        return cls(
            site_id=ctx.site_id if site_id is None else site_id,
            user_id=ctx.user_id,
            user_name=ctx.username,
            user_role=ctx.role,
            **kw,
        )


class AuditSink(Protocol):
    def write(self, event: AuditEvent) -> None: ...


class DatabaseAuditSink:
    """Persists one audit event into audit_logs, in its own session."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def write(self, event: AuditEvent) -> None:
        db = self._session_factory()
        try:
            log = AuditLog(
                site_id=event.site_id,
                user_id=event.user_id,
                user_name=event.user_name or "",
                user_role=event.user_role or "",
                action=event.action,
                entity_type=event.entity_type,
                entity_id=None if event.entity_id is None else str(event.entity_id),
                entity_name=event.entity_name,
                old_values=jsonable_encoder(event.old_values) if event.old_values is not None else None,
                new_values=jsonable_encoder(event.new_values) if event.new_values is not None else None,
                changes=event.changes,
                ip_address=event.ip_address,
                user_agent=event.user_agent,
            )
            db.add(log)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class LoggingAuditSink:
    def __init__(self, name: str = "ledger.audit") -> None:
        self._log = logging.getLogger(name)

    def write(self, event: AuditEvent) -> None:
        self._log.info(
            "audit site_id=%s user_id=%s action=%s entity=%s:%s %s",
            event.site_id,
            event.user_id,
            event.action,
            event.entity_type,
            event.entity_id,
            event.changes or "",
        )


class MemoryAuditSink:
    def __init__(self) -> None:
        self.events: List[AuditEvent] = []

    def write(self, event: AuditEvent) -> None:
        self.events.append(event)


@dataclass
class AuditEmitter:
    """
    Post-commit, best-effort. emit() never raises: a failing sink is
    logged and the event dropped, the committed sale stays committed.
    """
    sink: AuditSink
    dropped: int = field(default=0, init=False)

    def emit(self, event: AuditEvent) -> bool:
        try:
            self.sink.write(event)
            return True
        except Exception:
            self.dropped += 1
            logger.exception(
                "Failed to write audit event action=%s entity=%s:%s site_id=%s",
                event.action,
                event.entity_type,
                event.entity_id,
                event.site_id,
            )
            return False


def generate_change_summary(old_values: Dict[str, Any], new_values: Dict[str, Any]) -> str:
    """'field: old → new' for every scalar that changed, comma-joined."""
    changes: List[str] = []
    for key, new in new_values.items():
        old = old_values.get(key)
        if isinstance(new, (dict, list)) or isinstance(old, (dict, list)):
            continue
        if old != new:
            changes.append(f"{key}: {old} → {new}")
    return ", ".join(changes)
