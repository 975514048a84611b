from __future__ import annotations

from typing import Dict, Iterable, List, Optional
from urllib.parse import urlsplit

import azure.functions as func

from shared.config import get_setting

BASE_ALLOWED_HEADERS = ("Content-Type", "Authorization")
EXPOSED_HEADERS = "Content-Disposition"


def _setting_flag(name: str, default: bool) -> bool:
    raw = get_setting(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _configured_origins() -> List[str]:
    entries = [entry.strip() for entry in (get_setting("ALLOWED_ORIGINS") or "*").split(",")]
    entries = [entry for entry in entries if entry]
    return ["*"] if "*" in entries else entries


ALLOWED_ORIGINS = _configured_origins()
ALLOW_CREDENTIALS = _setting_flag("CORS_ALLOW_CREDENTIALS", False)
ALLOW_LOCALHOST = _setting_flag("CORS_ALLOW_LOCALHOST", True)


def _is_local_origin(origin: Optional[str]) -> bool:
    if not origin:
        return False
    return (urlsplit(origin.strip()).hostname or "").lower() in {"localhost", "127.0.0.1"}


def _split_origin(value: str) -> tuple:
    """(scheme, host, port) with scheme None for bare "host[:port]" entries."""
    cleaned = value.strip().rstrip("/").lower()
    if "://" in cleaned:
        parts = urlsplit(cleaned)
        return parts.scheme, parts.hostname or "", parts.port
    host, _, port = cleaned.partition(":")
    return None, host, int(port) if port.isdigit() else None


def _origin_matches(origin: Optional[str], allowed: str) -> bool:
    """
    Compare a browser Origin against one ALLOWED_ORIGINS entry.

    Entries may omit the scheme and may start with "*." to cover subdomains
    (not the apex). A port only has to match when the entry names one.
    """
    if not origin or not allowed:
        return False
    scheme, host, port = _split_origin(origin)
    want_scheme, want_host, want_port = _split_origin(allowed)
    if want_scheme and want_scheme != scheme:
        return False
    if want_port is not None and want_port != port:
        return False
    if want_host.startswith("*."):
        return host.endswith(want_host[1:]) and host != want_host[2:]
    return host == want_host


def _allow_headers(req: func.HttpRequest) -> str:
    """Base headers plus whatever the preflight asks for, without duplicates."""
    merged: Dict[str, str] = {name.lower(): name for name in BASE_ALLOWED_HEADERS}
    for name in req.headers.get("Access-Control-Request-Headers", "").split(","):
        if name.strip():
            merged.setdefault(name.strip().lower(), name.strip())
    return ", ".join(merged.values())


def _methods(allowed_methods: Iterable[str]) -> str:
    methods: List[str] = []
    for method in list(allowed_methods) + ["OPTIONS"]:
        normalized = method.strip().upper()
        if normalized and normalized not in methods:
            methods.append(normalized)
    return ", ".join(methods)


def build_cors_headers(req: func.HttpRequest, allowed_methods: Iterable[str]) -> Dict[str, str]:
    """CORS headers for the caller's Origin; only "Vary" when the origin is not allowed."""
    origin = req.headers.get("Origin") or req.headers.get("origin")
    headers: Dict[str, str] = {"Vary": "Origin"}

    allow_all = not ALLOWED_ORIGINS or "*" in ALLOWED_ORIGINS
    allowed = allow_all or any(_origin_matches(origin, entry) for entry in ALLOWED_ORIGINS)
    if not allowed and ALLOW_LOCALHOST and _is_local_origin(origin):
        allowed = True
    if not allowed:
        return headers

    # Credentialed responses must name the origin, never "*".
    if origin and (ALLOW_CREDENTIALS or not allow_all):
        headers["Access-Control-Allow-Origin"] = origin
    else:
        headers["Access-Control-Allow-Origin"] = "*"
    headers["Access-Control-Allow-Methods"] = _methods(allowed_methods)
    headers["Access-Control-Allow-Headers"] = _allow_headers(req)
    headers["Access-Control-Expose-Headers"] = EXPOSED_HEADERS
    if ALLOW_CREDENTIALS:
        headers["Access-Control-Allow-Credentials"] = "true"
    return headers
