from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Any, Callable, List, Optional

import azure.functions as func

from shared.auth_context import AuthContext, require_admin
from shared.config import get_setting
from shared.db import SessionLocal
from shared.errors import AppError
from utils.cors import build_cors_headers

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "y", "on"}


def flag_enabled(name: str, default: bool = False) -> bool:
    raw = get_setting(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in _TRUTHY


def parse_bool(value: Any, default: Optional[bool] = None) -> Optional[bool]:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def parse_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_json_body(req: func.HttpRequest) -> dict:
    try:
        body = req.get_json()
    except ValueError:
        body = None
    return body or {}


def _json_default(value: Any):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def json_response(payload: Any, cors: dict, status_code: int = 200) -> func.HttpResponse:
    return func.HttpResponse(
        json.dumps(payload, default=_json_default),
        status_code=status_code,
        mimetype="application/json",
        headers=cors,
    )


def error_response(exc: Exception, cors: dict, status_code: int = 500) -> func.HttpResponse:
    """Map an exception to the JSON error body used by every endpoint."""
    if isinstance(exc, AppError):
        return json_response(exc.to_dict(), cors, status_code=exc.status_code)
    if isinstance(exc, ValueError):
        return json_response({"error": str(exc)}, cors, status_code=400)
    return json_response({"error": "Internal server error", "details": str(exc)}, cors, status_code=status_code)


def route_param(req: func.HttpRequest, name: str) -> Optional[str]:
    value = (getattr(req, "route_params", None) or {}).get(name)
    return value.strip() if isinstance(value, str) and value.strip() else None


def query_params(req: func.HttpRequest) -> dict:
    return dict(req.params or {})


def run_admin_handler(
    req: func.HttpRequest,
    methods: List[str],
    handler: Callable[[func.HttpRequest, Any, AuthContext, dict], func.HttpResponse],
    name: str,
) -> func.HttpResponse:
    """
    Shared request flow for admin endpoints: CORS preflight, bearer auth,
    one session per request, rollback and JSON error body on failure.
    """
    cors = build_cors_headers(req, methods)
    if req.method == "OPTIONS":
        return func.HttpResponse("", status_code=204, headers=cors)

    db = SessionLocal()
    try:
        auth = require_admin(req, cors, db=db)
        if isinstance(auth, func.HttpResponse):
            return auth
        return handler(req, db, auth, cors)
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        if isinstance(exc, (AppError, ValueError)):
            logger.warning("%s rejected: %s", name, exc)
        else:
            logger.error("%s failed: %s", name, exc)
        return error_response(exc, cors)
    finally:
        db.close()
