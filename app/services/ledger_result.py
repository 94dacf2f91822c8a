# FILE: app/services/ledger_result.py
from __future__ import annotations

import logging
from typing import Any, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from app.schemas.common import LedgerResult
from app.services.ledger_errors import LedgerError, ValidationError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _pydantic_msg(exc: PydanticValidationError) -> str:
    parts = []
    for e in exc.errors(include_url=False):
        loc = ".".join(str(x) for x in e.get("loc") or ())
        parts.append(f"{loc}: {e.get('msg')}" if loc else str(e.get("msg")))
    return "; ".join(parts) or "Validation error"


def parse_payload(model: Type[M], payload: Any) -> M:
    """Validate before any transaction opens; raises the ledger ValidationError."""
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(
            _pydantic_msg(e),
            details=e.errors(include_url=False, include_context=False, include_input=False),
        ) from e


def result_from_exception(exc: Exception, *, op: str) -> LedgerResult:
    if isinstance(exc, LedgerError):
        if exc.status_code >= 500:
            logger.error("%s failed: %s (%s)", op, exc.msg, exc.code)
        else:
            logger.info("%s rejected: %s (%s)", op, exc.msg, exc.code)
        return LedgerResult.failure(
            exc.msg,
            code=exc.code,
            status_code=exc.status_code,
            details=exc.details,
        )
    if isinstance(exc, SQLAlchemyError):
        logger.exception("%s: database error", op)
        return LedgerResult.failure("Database error", code="DATABASE", status_code=500)
    raise exc
