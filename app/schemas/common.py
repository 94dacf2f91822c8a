# FILE: app/schemas/common.py
from __future__ import annotations

from typing import Any, Optional
from pydantic import BaseModel, ConfigDict


class ApiError(BaseModel):
    msg: str
    code: Optional[str] = None
    details: Optional[Any] = None


class LedgerResult(BaseModel):
    """
    Discriminated outcome of a ledger operation.
    ok=True carries data; ok=False carries error (and the HTTP status the
    API layer should answer with).
    """
    ok: bool
    data: Optional[Any] = None
    error: Optional[ApiError] = None
    status_code: int = 200

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @classmethod
    def success(cls, data: Any = None, status_code: int = 200) -> "LedgerResult":
        return cls(ok=True, data=data, status_code=status_code)

    @classmethod
    def failure(
        cls,
        msg: str,
        *,
        code: str,
        status_code: int = 400,
        details: Any = None,
    ) -> "LedgerResult":
        return cls(
            ok=False,
            error=ApiError(msg=msg, code=code, details=details),
            status_code=status_code,
        )
