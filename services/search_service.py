from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from shared.db import Contacto, Empresa, MandateLead, Mandato

logger = logging.getLogger(__name__)

GENERAL_WORK_ID = "00000000-0000-0000-0000-000000000001"

INTERNAL_PROJECTS = [
    {
        "id": GENERAL_WORK_ID,
        "type": "internal",
        "label": "Trabajo General M&A",
        "sublabel": "Trabajo interno no asociado a mandato",
        "icon": "folder",
    },
]

CLOSED_MANDATO_STATES = ("cerrado", "cancelado")
CLOSED_LEAD_STAGES = ("cerrado_ganado", "cerrado_perdido", "descartado")
GLOBAL_SEARCH_MIN_LENGTH = 2
GLOBAL_SEARCH_LIMIT = 5


def normalize_term(term: Optional[str]) -> str:
    return (term or "").strip().lower()


def _mandato_item(mandato: Mandato) -> dict:
    descripcion = mandato.descripcion or "Sin descripción"
    empresa = mandato.empresa_principal.nombre if mandato.empresa_principal else None
    return {
        "id": mandato.id,
        "type": "mandato",
        "label": f"{mandato.codigo} · {descripcion}" if mandato.codigo else descripcion,
        "sublabel": empresa,
        "icon": "briefcase",
        "metadata": {
            "codigo": mandato.codigo,
            "tipo": mandato.tipo,
            "estado": mandato.estado,
            "empresaNombre": empresa,
        },
    }


def _lead_item(lead: MandateLead) -> dict:
    mandato_ref = ""
    if lead.mandato:
        mandato_ref = lead.mandato.codigo or lead.mandato.descripcion or ""
    return {
        "id": lead.id,
        "type": "contacto",
        "label": lead.company_name or lead.contact_name or "Lead sin nombre",
        "sublabel": f"{mandato_ref} · {lead.stage or 'nuevo'}" if mandato_ref else lead.contact_email,
        "icon": "user",
        "metadata": {"empresaNombre": lead.company_name, "email": lead.contact_email},
    }


def search_mandatos_and_leads(
    db,
    term: Optional[str],
    include_general_work: bool = True,
    include_leads: bool = True,
    limit: int = 10,
) -> dict:
    """
    Picker search over open mandates and open mandate leads.
    Query failures are reported in "error" instead of raising so the picker
    can still show partial results.
    """
    search = normalize_term(term)
    results = {"internalProjects": [], "mandatos": [], "contactos": [], "error": None}

    if include_general_work:
        results["internalProjects"] = [
            dict(project)
            for project in INTERNAL_PROJECTS
            if not search or search in project["label"].lower() or search in project["sublabel"].lower()
        ]

    try:
        query = (
            db.query(Mandato)
            .options(joinedload(Mandato.empresa_principal))
            .filter(or_(Mandato.estado.is_(None), Mandato.estado.notin_(CLOSED_MANDATO_STATES)))
        )
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Mandato.descripcion.ilike(pattern), Mandato.codigo.ilike(pattern)))
        mandatos = query.order_by(Mandato.created_at.desc()).limit(limit).all()
        results["mandatos"] = [_mandato_item(mandato) for mandato in mandatos]
    except SQLAlchemyError as exc:
        logger.error("Mandato search failed: %s", exc)
        db.rollback()
        results["error"] = str(exc)

    if include_leads:
        try:
            query = (
                db.query(MandateLead)
                .options(joinedload(MandateLead.mandato))
                .filter(or_(MandateLead.stage.is_(None), MandateLead.stage.notin_(CLOSED_LEAD_STAGES)))
            )
            if search:
                pattern = f"%{search}%"
                query = query.filter(
                    or_(
                        MandateLead.company_name.ilike(pattern),
                        MandateLead.contact_name.ilike(pattern),
                        MandateLead.contact_email.ilike(pattern),
                    )
                )
            leads = query.order_by(MandateLead.created_at.desc()).limit(limit).all()
            results["contactos"] = [_lead_item(lead) for lead in leads]
        except SQLAlchemyError as exc:
            logger.error("Mandate lead search failed: %s", exc)
            db.rollback()
            results["error"] = str(exc)

    return results


def get_search_item(db, item_id: Optional[str], item_type: Optional[str]) -> Optional[dict]:
    """Resolve a previously selected picker item back to its label."""
    if not item_id or not item_type:
        return None
    if item_type == "internal" or item_id == GENERAL_WORK_ID:
        return next((dict(project) for project in INTERNAL_PROJECTS if project["id"] == item_id), None)
    if item_type == "mandato":
        mandato = db.query(Mandato).filter_by(id=item_id).one_or_none()
        return _mandato_item(mandato) if mandato else None
    if item_type == "contacto":
        lead = db.query(MandateLead).filter_by(id=item_id).one_or_none()
        return _lead_item(lead) if lead else None
    return None


def global_search(db, query: Optional[str], limit: int = GLOBAL_SEARCH_LIMIT) -> List[dict]:
    """Command palette search across mandates, contacts and companies."""
    search = normalize_term(query)
    if len(search) < GLOBAL_SEARCH_MIN_LENGTH:
        return []
    pattern = f"%{search}%"
    results: List[dict] = []

    mandatos = (
        db.query(Mandato)
        .outerjoin(Empresa, Mandato.empresa_principal_id == Empresa.id)
        .options(joinedload(Mandato.empresa_principal))
        .filter(
            or_(
                Mandato.codigo.ilike(pattern),
                Mandato.titulo.ilike(pattern),
                Mandato.descripcion.ilike(pattern),
                Empresa.nombre.ilike(pattern),
            )
        )
        .order_by(Mandato.created_at.desc())
        .limit(limit)
        .all()
    )
    for mandato in mandatos:
        empresa = mandato.empresa_principal.nombre if mandato.empresa_principal else None
        results.append(
            {
                "tipo": "mandato",
                "id": mandato.id,
                "titulo": empresa or mandato.titulo or mandato.codigo or "Sin título",
                "subtitulo": f"{mandato.titulo or mandato.codigo or ''} • {mandato.estado}",
                "ruta": f"/mandatos/{mandato.id}",
            }
        )

    contactos = (
        db.query(Contacto)
        .outerjoin(Empresa, Contacto.empresa_principal_id == Empresa.id)
        .options(joinedload(Contacto.empresa_principal))
        .filter(
            or_(
                Contacto.nombre.ilike(pattern),
                Contacto.apellidos.ilike(pattern),
                Contacto.email.ilike(pattern),
                Empresa.nombre.ilike(pattern),
            )
        )
        .order_by(Contacto.created_at.desc())
        .limit(limit)
        .all()
    )
    for contacto in contactos:
        nombre = " ".join(part for part in (contacto.nombre, contacto.apellidos) if part)
        empresa = contacto.empresa_principal.nombre if contacto.empresa_principal else ""
        results.append(
            {
                "tipo": "cliente",
                "id": contacto.id,
                "titulo": nombre,
                "subtitulo": f"{empresa} • {contacto.email or ''}",
                "ruta": f"/contactos/{contacto.id}",
            }
        )

    empresas = (
        db.query(Empresa)
        .filter(or_(Empresa.nombre.ilike(pattern), Empresa.sector.ilike(pattern), Empresa.ciudad.ilike(pattern)))
        .order_by(Empresa.nombre.asc())
        .limit(limit)
        .all()
    )
    for empresa in empresas:
        results.append(
            {
                "tipo": "target",
                "id": empresa.id,
                "titulo": empresa.nombre,
                "subtitulo": f"{empresa.sector or ''} • {empresa.ciudad or ''}",
                "ruta": f"/empresas/{empresa.id}",
            }
        )
    return results
