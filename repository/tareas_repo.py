from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Optional
from uuid import uuid4

from shared.db import TaskEvent, Tarea


def _format_dt(value) -> Optional[str]:
    if not value:
        return None
    return value.isoformat()


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def tarea_to_dict(tarea: Tarea) -> dict:
    return {
        "id": tarea.id,
        "titulo": tarea.titulo,
        "descripcion": tarea.descripcion,
        "estado": tarea.estado,
        "prioridad": tarea.prioridad,
        "tipo": tarea.tipo,
        "fecha_vencimiento": _format_dt(tarea.fecha_vencimiento),
        "asignado_a": tarea.asignado_a,
        "creado_por": tarea.creado_por,
        "mandato_id": tarea.mandato_id,
        "ai_generated": bool(tarea.ai_generated),
        "ai_confidence": tarea.ai_confidence,
        "source_text": tarea.source_text,
        "created_at": _format_dt(tarea.created_at),
        "updated_at": _format_dt(tarea.updated_at),
    }


def create_tarea(db, payload: Dict[str, Any]) -> Tarea:
    now = datetime.utcnow()
    tarea = Tarea(
        id=payload.get("id") or str(uuid4()),
        titulo=payload["titulo"],
        descripcion=payload.get("descripcion"),
        estado=payload.get("estado") or "pendiente",
        prioridad=payload.get("prioridad") or "media",
        tipo=payload.get("tipo") or "individual",
        fecha_vencimiento=_parse_date(payload.get("fecha_vencimiento")),
        asignado_a=payload.get("asignado_a"),
        creado_por=payload.get("creado_por"),
        mandato_id=payload.get("mandato_id"),
        ai_generated=bool(payload.get("ai_generated")),
        ai_confidence=payload.get("ai_confidence"),
        source_text=payload.get("source_text"),
        created_at=now,
        updated_at=now,
    )
    db.add(tarea)
    db.flush()
    return tarea


def create_task_event(db, task_id: str, event_type: str, payload: Dict[str, Any], created_by: Optional[str]) -> TaskEvent:
    event = TaskEvent(
        task_id=task_id,
        event_type=event_type,
        payload=payload,
        created_by=created_by,
        created_at=datetime.utcnow(),
    )
    db.add(event)
    db.flush()
    return event
