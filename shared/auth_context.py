from __future__ import annotations

import hashlib
import json
import logging
import secrets
from typing import NamedTuple, Optional

import azure.functions as func

from shared.config import get_service_role_key
from shared.db import AdminUser, SessionLocal

logger = logging.getLogger(__name__)

ADMIN_ROLES = {"admin", "super_admin"}

MSG_TOKEN_REQUIRED = "No autorizado: token requerido"
MSG_TOKEN_INVALID = "No autorizado: token inválido"
MSG_ROLE_REQUIRED = "Permisos insuficientes: se requiere rol admin"


class AuthContext(NamedTuple):
    user_id: Optional[str]
    email: Optional[str]
    role: str
    is_service: bool = False


class AuthError(Exception):
    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_api_token() -> str:
    return secrets.token_urlsafe(32)


def _bearer_token(req: func.HttpRequest) -> Optional[str]:
    headers = {k.lower(): v for k, v in req.headers.items()} if req.headers else {}
    raw = headers.get("authorization") or ""
    if not raw.lower().startswith("bearer "):
        return None
    token = raw[7:].strip()
    return token or None


def resolve_admin(req: func.HttpRequest, db=None) -> AuthContext:
    """
    Resolve the caller from the bearer token.
    The service role key grants an internal context; any other token must
    belong to an active admin user.
    """
    token = _bearer_token(req)
    if not token:
        raise AuthError(MSG_TOKEN_REQUIRED, 401)

    service_key = get_service_role_key()
    if service_key and secrets.compare_digest(token, service_key):
        return AuthContext(user_id=None, email=None, role="service", is_service=True)

    owns_session = db is None
    session = db or SessionLocal()
    try:
        user = session.query(AdminUser).filter(AdminUser.api_token_hash == hash_token(token)).one_or_none()
        if not user or not user.is_active:
            raise AuthError(MSG_TOKEN_INVALID, 401)
        if user.role not in ADMIN_ROLES:
            raise AuthError(MSG_ROLE_REQUIRED, 403)
        return AuthContext(user_id=user.user_id, email=user.email, role=user.role)
    finally:
        if owns_session:
            session.close()


def require_admin(req: func.HttpRequest, cors: dict, db=None) -> AuthContext | func.HttpResponse:
    try:
        return resolve_admin(req, db=db)
    except AuthError as exc:
        logger.warning("Auth failed: %s", exc)
        return func.HttpResponse(
            json.dumps({"success": False, "error": exc.message}),
            status_code=exc.status_code,
            mimetype="application/json",
            headers=cors,
        )
