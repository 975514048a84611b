from __future__ import annotations

from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import func as sa_func

from shared.db import Empresa


def _normalize_name(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def find_empresa_by_nombre(db, nombre: str) -> Optional[Empresa]:
    """Case-insensitive exact match on the company name."""
    normalized = _normalize_name(nombre)
    if not normalized:
        return None
    return (
        db.query(Empresa)
        .filter(sa_func.lower(sa_func.trim(Empresa.nombre)) == normalized)
        .order_by(Empresa.created_at.asc())
        .first()
    )


def create_empresa(db, nombre: str, sector: Optional[str] = None, notas: Optional[str] = None) -> Empresa:
    now = datetime.utcnow()
    empresa = Empresa(nombre=nombre.strip(), sector=sector, notas=notas, created_at=now, updated_at=now)
    db.add(empresa)
    db.flush()
    return empresa


def find_or_create_empresa(
    db, nombre: str, sector: Optional[str] = None, notas: Optional[str] = None
) -> Tuple[Empresa, bool]:
    existing = find_empresa_by_nombre(db, nombre)
    if existing:
        return existing, False
    return create_empresa(db, nombre, sector=sector, notas=notas), True
