from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import or_

from services.email_queue_service import recover_stuck_emails
from services.email_service import SendResult, apply_send_result, get_email_provider, payload_from_queue_item
from shared.config import get_queue_settings
from shared.db import EmailQueueItem

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.utcnow()


def _lock_rows(db, query):
    if db.bind.dialect.name != "sqlite":
        query = query.with_for_update(skip_locked=True)
    return query


def _fetch_pending(db, now: datetime, limit: int, queue_type: Optional[str]) -> List[EmailQueueItem]:
    query = db.query(EmailQueueItem).filter(
        EmailQueueItem.status.in_(("pending", "queued")),
        or_(EmailQueueItem.scheduled_at.is_(None), EmailQueueItem.scheduled_at <= now),
        or_(EmailQueueItem.next_retry_at.is_(None), EmailQueueItem.next_retry_at <= now),
    )
    if queue_type:
        query = query.filter(EmailQueueItem.queue_type == queue_type)
    query = query.order_by(EmailQueueItem.priority.asc(), EmailQueueItem.created_at.asc()).limit(limit)
    return _lock_rows(db, query).all()


def _fetch_retries(db, now: datetime, limit: int, queue_type: Optional[str]) -> List[EmailQueueItem]:
    query = db.query(EmailQueueItem).filter(
        EmailQueueItem.status == "failed",
        EmailQueueItem.attempts < EmailQueueItem.max_attempts,
        EmailQueueItem.next_retry_at <= now,
    )
    if queue_type:
        query = query.filter(EmailQueueItem.queue_type == queue_type)
    query = query.order_by(EmailQueueItem.priority.asc(), EmailQueueItem.next_retry_at.asc()).limit(limit)
    return _lock_rows(db, query).all()


def _claim(db, item_id: str, expected_status: str, now: datetime) -> bool:
    """Move one row to "sending" only if nobody else changed it since it was read."""
    claimed = (
        db.query(EmailQueueItem)
        .filter(EmailQueueItem.id == item_id, EmailQueueItem.status == expected_status)
        .update({"status": "sending", "last_attempt_at": now, "updated_at": now}, synchronize_session="fetch")
    )
    if not claimed:
        return False
    (
        db.query(EmailQueueItem)
        .filter(EmailQueueItem.id == item_id, EmailQueueItem.first_attempt_at.is_(None))
        .update({"first_attempt_at": now}, synchronize_session="fetch")
    )
    return True


def process_email_queue(
    db,
    batch_size: Optional[int] = None,
    process_retries: bool = True,
    queue_type: Optional[str] = None,
    provider=None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> dict:
    """
    Send due emails in fixed-size batches.

    Rows are claimed before sending, so overlapping runs never send the same
    row twice. Processing stops once the wall-clock budget is spent; unclaimed
    rows stay pending for the next run.
    """
    settings = get_queue_settings()
    batch_size = max(int(batch_size or settings["batch_size"]), 1)
    started = clock()
    results = {"processed": 0, "sent": 0, "failed": 0, "retried": 0, "recovered": 0, "errors": []}

    results["recovered"] = recover_stuck_emails(db, settings["stuck_minutes"])
    db.commit()

    now = _utcnow()
    candidates = _fetch_pending(db, now, batch_size * 3, queue_type)
    if process_retries:
        seen = {item.id for item in candidates}
        candidates.extend(item for item in _fetch_retries(db, now, batch_size, queue_type) if item.id not in seen)
    # Snapshot ids and statuses; rows are re-read after claiming.
    pending = [(item.id, item.status) for item in candidates]
    db.commit()

    if not pending:
        return {"success": True, "message": "No emails to process", **results, "duration_ms": _elapsed_ms(clock, started)}

    if provider is None:
        provider = get_email_provider()

    logger.info("Processing %s queued emails in batches of %s", len(pending), batch_size)
    for index in range(0, len(pending), batch_size):
        if clock() - started > settings["max_processing_seconds"]:
            logger.info("Email queue time budget spent, stopping with %s rows left", len(pending) - index)
            break
        if index > 0:
            sleep(settings["batch_delay_seconds"])

        batch = pending[index:index + batch_size]
        claim_time = _utcnow()
        claimed = [item_id for item_id, status in batch if _claim(db, item_id, status, claim_time)]
        db.commit()

        for item_id in claimed:
            item = db.query(EmailQueueItem).filter_by(id=item_id).one()
            previous_attempts = item.attempts or 0
            try:
                result = provider.send(payload_from_queue_item(item))
            except Exception as exc:  # pylint: disable=broad-except
                logger.error("Email provider raised for %s: %s", item_id, exc)
                result = SendResult(success=False, provider=getattr(provider, "name", "unknown"), error=str(exc))

            apply_send_result(item, result)
            db.commit()

            results["processed"] += 1
            if result.success:
                results["sent"] += 1
                if previous_attempts > 0:
                    results["retried"] += 1
            else:
                results["failed"] += 1
                results["errors"].append(f"{item.to_email}: {result.error}")

    logger.info(
        "Email queue run complete: processed=%s sent=%s failed=%s",
        results["processed"],
        results["sent"],
        results["failed"],
    )
    return {"success": True, **results, "duration_ms": _elapsed_ms(clock, started)}


def _elapsed_ms(clock: Callable[[], float], started: float) -> int:
    return int((clock() - started) * 1000)
