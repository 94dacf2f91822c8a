# app/models/audit.py
from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    JSON,
    Text,
    Index,
)

from app.db.base import Base


class AuditLog(Base):
    """
    Per-site audit log.
    Written after the owning transaction commits; never read by the ledger.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_site_time", "site_id", "created_at"),
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
    )

    id = Column(Integer, primary_key=True, index=True)

    site_id = Column(Integer, nullable=False)
    user_id = Column(Integer, nullable=True)  # system jobs may be null
    user_name = Column(String(255), nullable=False, default="")
    user_role = Column(String(100), nullable=False, default="")
    action = Column(String(20), nullable=False)  # CREATE / UPDATE / DELETE

    entity_type = Column(String(100), nullable=False)
    entity_id = Column(String(100), nullable=True)  # generic pk, stored as string
    entity_name = Column(String(255), nullable=True)

    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    changes = Column(Text, nullable=True)

    ip_address = Column(String(45), nullable=True)  # IPv4/IPv6
    user_agent = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
