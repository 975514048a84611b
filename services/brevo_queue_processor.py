from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func, or_

from shared.db import BrevoSyncLog, BrevoSyncQueueItem, Contacto, Empresa, Mandato
from shared.errors import NotFoundError, ValidationError, require_id, run_query

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
ENTITY_TYPES = {"contact", "company", "deal"}
QUEUE_STATUSES = {"pending", "processing", "completed", "failed", "skipped"}


def _utcnow() -> datetime:
    return datetime.utcnow()


def _format_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _retry_delay(attempts: int) -> timedelta:
    """Exponential backoff: 2, 4, 8... minutes after the given attempt count."""
    return timedelta(minutes=2 ** attempts)


def _entity_payload(db, entity_type: str, entity_id: str) -> Dict[str, Any]:
    if entity_type == "contact":
        row = db.query(Contacto).filter_by(id=entity_id).one_or_none()
        if row:
            return {
                "email": row.email,
                "nombre": row.nombre,
                "apellidos": row.apellidos,
                "cargo": row.cargo,
                "linkedin_url": row.linkedin_url,
            }
    elif entity_type == "company":
        row = db.query(Empresa).filter_by(id=entity_id).one_or_none()
        if row:
            return {
                "nombre": row.nombre,
                "sector": row.sector,
                "sitio_web": row.sitio_web,
                "ciudad": row.ciudad,
                "pais": row.pais,
            }
    elif entity_type == "deal":
        row = db.query(Mandato).filter_by(id=entity_id).one_or_none()
        if row:
            return {
                "nombre": row.titulo or row.nombre_proyecto or row.codigo,
                "pipeline_stage": row.pipeline_stage,
                "tipo": row.tipo,
                "valor_estimado": row.valor_estimado,
            }
    return {}


def _sync_item(db, client, item: BrevoSyncQueueItem, now: datetime):
    payload = item.payload or _entity_payload(db, item.entity_type, item.entity_id)
    if item.entity_type == "contact":
        brevo_id, error = client.sync_contact(payload)
        if not error and brevo_id:
            db.query(Contacto).filter_by(id=item.entity_id).update(
                {"brevo_id": brevo_id, "brevo_synced_at": now}, synchronize_session="fetch"
            )
    elif item.entity_type == "company":
        brevo_id, error = client.sync_company(payload)
        if not error and brevo_id:
            db.query(Empresa).filter_by(id=item.entity_id).update(
                {"brevo_id": brevo_id, "brevo_synced_at": now}, synchronize_session="fetch"
            )
    elif item.entity_type == "deal":
        brevo_id, error = client.sync_deal(payload)
        if not error and brevo_id:
            db.query(Mandato).filter_by(id=item.entity_id).update(
                {"brevo_deal_id": brevo_id, "brevo_synced_at": now}, synchronize_session="fetch"
            )
    else:
        brevo_id, error = None, f"Unknown entity type: {item.entity_type}"
    return brevo_id, error


def _record_failure(item: BrevoSyncQueueItem, error: str, now: datetime) -> bool:
    """Returns True when the item has used all its attempts."""
    item.error_message = error
    item.updated_at = now
    if item.attempts >= MAX_ATTEMPTS:
        item.status = "failed"
        item.processed_at = now
        item.next_retry_at = None
        return True
    item.status = "pending"
    item.next_retry_at = now + _retry_delay(item.attempts)
    return False


def process_brevo_queue(
    db,
    client,
    limit: int = 50,
    delay_seconds: float = 0.1,
    sleep: Callable[[float], None] = time.sleep,
) -> dict:
    """Push pending contact/company/deal changes to Brevo."""
    now = _utcnow()
    items = (
        db.query(BrevoSyncQueueItem)
        .filter(
            BrevoSyncQueueItem.status == "pending",
            BrevoSyncQueueItem.attempts < MAX_ATTEMPTS,
            or_(BrevoSyncQueueItem.next_retry_at.is_(None), BrevoSyncQueueItem.next_retry_at <= now),
        )
        .order_by(BrevoSyncQueueItem.priority.asc(), BrevoSyncQueueItem.created_at.asc())
        .limit(limit)
        .all()
    )
    if not items:
        logger.info("No pending items in brevo queue")
        return {"success": True, "processed": 0, "message": "No pending items"}

    processed = succeeded = failed = retrying = 0
    errors: List[str] = []
    item_ids = [item.id for item in items]
    for position, item_id in enumerate(item_ids):
        item = db.query(BrevoSyncQueueItem).filter_by(id=item_id).one()
        now = _utcnow()
        item.status = "processing"
        item.attempts = (item.attempts or 0) + 1
        item.updated_at = now
        db.commit()

        try:
            brevo_id, error = _sync_item(db, client, item, now)
            if error:
                if _record_failure(item, error, now):
                    failed += 1
                    errors.append(f"{item.entity_type}:{item.entity_id} - {error}")
                else:
                    retrying += 1
            else:
                item.status = "completed"
                item.processed_at = now
                item.error_message = None
                item.updated_at = now
                db.add(
                    BrevoSyncLog(
                        entity_type=item.entity_type,
                        entity_id=item.entity_id,
                        brevo_id=brevo_id,
                        sync_type="outbound",
                        sync_status="success",
                        created_at=now,
                    )
                )
                succeeded += 1
            processed += 1
            db.commit()
        except Exception as exc:  # pylint: disable=broad-except
            db.rollback()
            logger.error("Error processing brevo queue item %s: %s", item_id, exc)
            item = db.query(BrevoSyncQueueItem).filter_by(id=item_id).one()
            _record_failure(item, str(exc), _utcnow())
            db.commit()
            failed += 1
            errors.append(f"{item.entity_type}:{item.entity_id} - {exc}")

        if delay_seconds and position < len(item_ids) - 1:
            sleep(delay_seconds)

    logger.info("Brevo queue processing complete: %s succeeded, %s failed", succeeded, failed)
    return {
        "success": True,
        "processed": processed,
        "succeeded": succeeded,
        "failed": failed,
        "retrying": retrying,
        "errors": errors[:10],
    }


def enqueue_brevo_sync(
    db,
    entity_type: str,
    entity_id: str,
    action: str = "UPDATE",
    payload: Optional[Dict[str, Any]] = None,
    priority: int = 5,
) -> BrevoSyncQueueItem:
    if entity_type not in ENTITY_TYPES:
        raise ValidationError(f"Tipo de entidad no válido: {entity_type}")
    item = BrevoSyncQueueItem(
        entity_type=entity_type,
        entity_id=require_id(entity_id, "entity_id"),
        action=(action or "UPDATE").upper(),
        payload=payload or None,
        priority=priority,
        status="pending",
        attempts=0,
    )

    def _insert():
        db.add(item)
        db.flush()
        return item

    return run_query("brevo_sync_queue", _insert)


def _entity_names(db, items: List[BrevoSyncQueueItem]) -> Dict[str, str]:
    ids_by_type: Dict[str, List[str]] = {"contact": [], "company": [], "deal": []}
    for item in items:
        ids_by_type.setdefault(item.entity_type, []).append(item.entity_id)
    names: Dict[str, str] = {}
    if ids_by_type["contact"]:
        for row in db.query(Contacto.id, Contacto.nombre).filter(Contacto.id.in_(ids_by_type["contact"])):
            names[row.id] = row.nombre
    if ids_by_type["company"]:
        for row in db.query(Empresa.id, Empresa.nombre).filter(Empresa.id.in_(ids_by_type["company"])):
            names[row.id] = row.nombre
    if ids_by_type["deal"]:
        for row in db.query(Mandato.id, Mandato.codigo).filter(Mandato.id.in_(ids_by_type["deal"])):
            names[row.id] = row.codigo
    return names


def queue_item_to_dict(item: BrevoSyncQueueItem, entity_name: Optional[str] = None) -> dict:
    return {
        "id": item.id,
        "entity_type": item.entity_type,
        "entity_id": item.entity_id,
        "entity_name": entity_name,
        "action": item.action,
        "payload": item.payload,
        "status": item.status,
        "priority": item.priority,
        "attempts": item.attempts,
        "error_message": item.error_message,
        "next_retry_at": _format_dt(item.next_retry_at),
        "processed_at": _format_dt(item.processed_at),
        "created_at": _format_dt(item.created_at),
    }


def list_brevo_queue(
    db,
    entity_type: Optional[str] = None,
    status: Optional[str] = None,
    error_search: Optional[str] = None,
    page: int = 0,
    page_size: int = 50,
) -> dict:
    def _query():
        query = db.query(BrevoSyncQueueItem)
        if entity_type:
            query = query.filter(BrevoSyncQueueItem.entity_type == entity_type)
        if status:
            query = query.filter(BrevoSyncQueueItem.status == status)
        if error_search:
            query = query.filter(BrevoSyncQueueItem.error_message.ilike(f"%{error_search}%"))
        count = query.count()
        rows = (
            query.order_by(BrevoSyncQueueItem.created_at.desc())
            .offset(max(page, 0) * page_size)
            .limit(page_size)
            .all()
        )
        names = _entity_names(db, rows)
        return {"data": [queue_item_to_dict(row, names.get(row.entity_id)) for row in rows], "count": count}

    return run_query("brevo_sync_queue", _query)


def brevo_queue_stats(db) -> dict:
    rows = run_query(
        "brevo_sync_queue",
        lambda: db.query(BrevoSyncQueueItem.status, func.count(BrevoSyncQueueItem.id))
        .group_by(BrevoSyncQueueItem.status)
        .all(),
    )
    stats = {status: 0 for status in sorted(QUEUE_STATUSES)}
    for status, count in rows:
        stats[status] = int(count or 0)
    stats["total"] = sum(stats.values())
    return stats


def brevo_error_stats(db) -> List[dict]:
    """Failed items grouped by error message, most frequent first."""
    rows = (
        db.query(BrevoSyncQueueItem.error_message, BrevoSyncQueueItem.entity_type)
        .filter(BrevoSyncQueueItem.status == "failed", BrevoSyncQueueItem.error_message.isnot(None))
        .all()
    )
    groups: Dict[str, dict] = {}
    for message, entity_type in rows:
        group = groups.setdefault(message, {"message": message, "count": 0, "entityTypes": []})
        group["count"] += 1
        if entity_type not in group["entityTypes"]:
            group["entityTypes"].append(entity_type)
    return sorted(groups.values(), key=lambda group: group["count"], reverse=True)


def retry_brevo_item(db, item_id: str) -> None:
    item_id = require_id(item_id)
    updated = (
        db.query(BrevoSyncQueueItem)
        .filter(BrevoSyncQueueItem.id == item_id)
        .update(
            {"status": "pending", "attempts": 0, "error_message": None, "next_retry_at": None},
            synchronize_session="fetch",
        )
    )
    if not updated:
        raise NotFoundError("Elemento de la cola no encontrado", {"id": item_id})


def ignore_brevo_item(db, item_id: str) -> None:
    item_id = require_id(item_id)
    updated = (
        db.query(BrevoSyncQueueItem)
        .filter(BrevoSyncQueueItem.id == item_id)
        .update({"status": "skipped"}, synchronize_session="fetch")
    )
    if not updated:
        raise NotFoundError("Elemento de la cola no encontrado", {"id": item_id})


def bulk_retry_by_type(db, entity_type: str) -> int:
    if entity_type not in ENTITY_TYPES:
        raise ValidationError(f"Tipo de entidad no válido: {entity_type}")
    return (
        db.query(BrevoSyncQueueItem)
        .filter(BrevoSyncQueueItem.status == "failed", BrevoSyncQueueItem.entity_type == entity_type)
        .update(
            {"status": "pending", "attempts": 0, "error_message": None, "next_retry_at": None},
            synchronize_session="fetch",
        )
    )


def bulk_ignore_by_error(db, error_pattern: str) -> int:
    if not (error_pattern or "").strip():
        raise ValidationError("Patrón de error requerido")
    return (
        db.query(BrevoSyncQueueItem)
        .filter(
            BrevoSyncQueueItem.status == "failed",
            BrevoSyncQueueItem.error_message.ilike(f"%{error_pattern.strip()}%"),
        )
        .update({"status": "skipped"}, synchronize_session="fetch")
    )


def clean_old_completed(db, days_old: int = 7, now: Optional[datetime] = None) -> int:
    cutoff = (now or _utcnow()) - timedelta(days=days_old)
    return (
        db.query(BrevoSyncQueueItem)
        .filter(BrevoSyncQueueItem.status == "completed", BrevoSyncQueueItem.processed_at < cutoff)
        .delete(synchronize_session="fetch")
    )
