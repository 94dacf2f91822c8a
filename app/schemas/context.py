# FILE: app/schemas/context.py
from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class SiteContext(BaseModel):
    """Resolved by the caller (session/JWT); the ledger trusts it as-is."""
    site_id: int
    user_id: int
    username: str = ""
    role: str = ""

    model_config = ConfigDict(frozen=True)
