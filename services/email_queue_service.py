from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_

from shared.config import get_email_settings
from shared.db import EmailQueueItem
from shared.errors import ValidationError, require_id, run_query

logger = logging.getLogger(__name__)

RETRY_COOLDOWN = timedelta(minutes=2)
BULK_RETRY_COOLDOWN = timedelta(minutes=5)
BULK_RETRY_MAX_ATTEMPTS = 3
CANCELLABLE_STATUSES = ("pending", "queued")
CLEARABLE_STATUSES = ("sent", "cancelled")

MSG_RECENTLY_RETRIED = "Este email ya fue reintentado recientemente. Espera unos minutos."


def _utcnow() -> datetime:
    return datetime.utcnow()


def _format_dt(value: Optional[datetime]) -> Optional[str]:
    if not value:
        return None
    return value.isoformat()


def email_to_dict(item: EmailQueueItem) -> dict:
    return {
        "id": item.id,
        "queue_type": item.queue_type,
        "reference_id": item.reference_id,
        "reference_type": item.reference_type,
        "to_email": item.to_email,
        "to_name": item.to_name,
        "from_email": item.from_email,
        "from_name": item.from_name,
        "reply_to": item.reply_to,
        "subject": item.subject,
        "html_content": item.html_content,
        "text_content": item.text_content,
        "attachments": item.attachments or [],
        "status": item.status,
        "priority": item.priority,
        "scheduled_at": _format_dt(item.scheduled_at),
        "attempts": item.attempts,
        "max_attempts": item.max_attempts,
        "next_retry_at": _format_dt(item.next_retry_at),
        "provider": item.provider,
        "provider_message_id": item.provider_message_id,
        "provider_status": item.provider_status,
        "provider_response": item.provider_response,
        "last_error": item.last_error,
        "error_details": item.error_details,
        "created_at": _format_dt(item.created_at),
        "updated_at": _format_dt(item.updated_at),
        "queued_at": _format_dt(item.queued_at),
        "first_attempt_at": _format_dt(item.first_attempt_at),
        "last_attempt_at": _format_dt(item.last_attempt_at),
        "sent_at": _format_dt(item.sent_at),
        "failed_at": _format_dt(item.failed_at),
        "metadata": item.metadata_json or {},
        "created_by": item.created_by,
    }


def fetch_email_queue(db, filters: Optional[Dict[str, Any]] = None, page: int = 0, page_size: int = 50) -> dict:
    """Return one page of queue rows, newest first, plus the total matching count."""
    filters = filters or {}

    def _query():
        query = db.query(EmailQueueItem)
        if filters.get("status"):
            query = query.filter(EmailQueueItem.status == filters["status"])
        if filters.get("queue_type"):
            query = query.filter(EmailQueueItem.queue_type == filters["queue_type"])
        if filters.get("to_email"):
            query = query.filter(EmailQueueItem.to_email.ilike(f"%{filters['to_email']}%"))
        if filters.get("from_date"):
            query = query.filter(EmailQueueItem.created_at >= filters["from_date"])
        if filters.get("to_date"):
            query = query.filter(EmailQueueItem.created_at <= filters["to_date"])
        count = query.count()
        rows = (
            query.order_by(EmailQueueItem.created_at.desc())
            .offset(max(page, 0) * page_size)
            .limit(page_size)
            .all()
        )
        return {"data": [email_to_dict(row) for row in rows], "count": count}

    return run_query("email_queue", _query)


def fetch_queue_stats(db) -> List[dict]:
    def _query():
        rows = (
            db.query(
                EmailQueueItem.queue_type,
                EmailQueueItem.status,
                func.count(EmailQueueItem.id),
                func.avg(EmailQueueItem.attempts),
                func.min(EmailQueueItem.created_at),
                func.max(EmailQueueItem.created_at),
            )
            .group_by(EmailQueueItem.queue_type, EmailQueueItem.status)
            .order_by(EmailQueueItem.queue_type, EmailQueueItem.status)
            .all()
        )
        stats = []
        for queue_type, status, count, avg_attempts, oldest, newest in rows:
            stats.append(
                {
                    "queue_type": queue_type,
                    "status": status,
                    "count": int(count or 0),
                    "avg_attempts": round(float(avg_attempts or 0), 2),
                    "oldest": _format_dt(oldest),
                    "newest": _format_dt(newest),
                }
            )
        return stats

    return run_query("email_queue", _query)


def enqueue_email(db, params: Dict[str, Any], created_by: Optional[str] = None) -> str:
    """Insert a pending email and return its id. Expects validated params."""
    settings = get_email_settings()
    now = _utcnow()
    item = EmailQueueItem(
        queue_type=params.get("queue_type") or "transactional",
        to_email=params["to_email"],
        to_name=params.get("to_name"),
        subject=params["subject"],
        html_content=params["html_content"],
        text_content=params.get("text_content"),
        from_email=params.get("from_email") or settings["from_email"],
        from_name=params.get("from_name") or settings["from_name"],
        reply_to=params.get("reply_to"),
        attachments=params.get("attachments") or [],
        priority=params.get("priority") or 5,
        scheduled_at=params.get("scheduled_at") or now,
        reference_id=params.get("reference_id"),
        reference_type=params.get("reference_type"),
        metadata_json=params.get("metadata") or {},
        status="pending",
        attempts=0,
        max_attempts=3,
        queued_at=now,
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )

    def _insert():
        db.add(item)
        db.flush()
        return item.id

    email_id = run_query("email_queue", _insert, "Error encolando el email")
    logger.info("Enqueued %s email %s to %s", item.queue_type, email_id, item.to_email)
    return email_id


def cancel_email(db, email_id: str) -> bool:
    """Cancel a pending/queued email. Returns False when nothing was cancellable."""
    email_id = require_id(email_id)

    def _update():
        return (
            db.query(EmailQueueItem)
            .filter(EmailQueueItem.id == email_id, EmailQueueItem.status.in_(CANCELLABLE_STATUSES))
            .update({"status": "cancelled", "updated_at": _utcnow()}, synchronize_session="fetch")
        )

    return run_query("email_queue", _update) > 0


def retry_email(db, email_id: str, now: Optional[datetime] = None) -> None:
    """
    Move one failed email back to pending.
    Rows touched within the cooldown window are left alone.
    """
    email_id = require_id(email_id)
    now = now or _utcnow()

    def _update():
        return (
            db.query(EmailQueueItem)
            .filter(
                EmailQueueItem.id == email_id,
                EmailQueueItem.status == "failed",
                EmailQueueItem.updated_at < now - RETRY_COOLDOWN,
            )
            .update({"status": "pending", "next_retry_at": None, "updated_at": now}, synchronize_session="fetch")
        )

    if run_query("email_queue", _update) == 0:
        raise ValidationError(MSG_RECENTLY_RETRIED, {"id": email_id})


def bulk_retry_failed(db, queue_type: Optional[str] = None, now: Optional[datetime] = None) -> int:
    now = now or _utcnow()

    def _update():
        query = db.query(EmailQueueItem).filter(
            EmailQueueItem.status == "failed",
            EmailQueueItem.attempts < BULK_RETRY_MAX_ATTEMPTS,
            EmailQueueItem.updated_at < now - BULK_RETRY_COOLDOWN,
        )
        if queue_type:
            query = query.filter(EmailQueueItem.queue_type == queue_type)
        return query.update({"status": "pending", "next_retry_at": None, "updated_at": now}, synchronize_session="fetch")

    count = run_query("email_queue", _update)
    logger.info("Bulk retry re-queued %s failed emails (queue_type=%s)", count, queue_type)
    return count


def clear_old_emails(db, days_old: int = 30, now: Optional[datetime] = None) -> int:
    cutoff = (now or _utcnow()) - timedelta(days=days_old)

    def _delete():
        return (
            db.query(EmailQueueItem)
            .filter(EmailQueueItem.status.in_(CLEARABLE_STATUSES), EmailQueueItem.created_at < cutoff)
            .delete(synchronize_session="fetch")
        )

    return run_query("email_queue", _delete)


def get_email_by_id(db, email_id: str) -> Optional[dict]:
    email_id = require_id(email_id)
    item = run_query("email_queue", lambda: db.query(EmailQueueItem).filter_by(id=email_id).one_or_none())
    return email_to_dict(item) if item else None


def recover_stuck_emails(db, stuck_minutes: int = 10, now: Optional[datetime] = None) -> int:
    """
    Release rows left in "sending" by a run that never finished.
    The interrupted send counts as an attempt.
    """
    now = now or _utcnow()
    cutoff = now - timedelta(minutes=stuck_minutes)
    last_activity = func.coalesce(EmailQueueItem.last_attempt_at, EmailQueueItem.updated_at)

    def _recover():
        rows = (
            db.query(EmailQueueItem)
            .filter(
                EmailQueueItem.status == "sending",
                or_(last_activity < cutoff, last_activity.is_(None)),
            )
            .all()
        )
        for row in rows:
            row.attempts = (row.attempts or 0) + 1
            row.last_error = "Envío interrumpido: el proceso terminó antes de confirmar el envío"
            row.updated_at = now
            if row.attempts >= (row.max_attempts or 3):
                row.status = "failed"
                row.failed_at = now
            else:
                row.status = "pending"
                row.next_retry_at = None
        db.flush()
        return len(rows)

    count = run_query("email_queue", _recover)
    if count:
        logger.warning("Recovered %s emails stuck in sending", count)
    return count
