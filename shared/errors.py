from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AppError(Exception):
    """Base error carrying a user-facing message and optional context."""

    status_code = 500

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.context:
            body["details"] = self.context
        return body


class ValidationError(AppError):
    status_code = 400


class NotFoundError(AppError):
    status_code = 404


class DatabaseError(AppError):
    """Wraps a driver/ORM failure together with the table it happened on."""

    status_code = 500


def run_query(table: str, fn: Callable[[], T], message: Optional[str] = None) -> T:
    """
    Execute fn and convert SQLAlchemy failures into DatabaseError.
    AppError subclasses raised by fn propagate unchanged.
    """
    try:
        return fn()
    except AppError:
        raise
    except SQLAlchemyError as exc:
        code = getattr(getattr(exc, "orig", None), "pgcode", None)
        logger.error("Database error on %s: %s", table, exc)
        raise DatabaseError(
            message or f"Error en la operación sobre {table}",
            {"table": table, "code": code, "message": str(exc)},
        ) from exc


def require_id(value: Optional[str], field: str = "id") -> str:
    cleaned = str(value or "").strip()
    if not cleaned:
        raise ValidationError("ID requerido", {"field": field})
    return cleaned
