from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from shared.db import TaskAIFeedback, TaskEvent, Tarea
from shared.errors import NotFoundError, ValidationError, run_query

logger = logging.getLogger(__name__)

AI_CREATED_EVENT = "AI_CREATED"
HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.6


def _confidence(event: TaskEvent) -> float:
    payload = event.payload or {}
    try:
        return float(payload.get("confidence") or 0)
    except (TypeError, ValueError):
        return 0.0


def _event_to_dict(event: TaskEvent, tarea: Optional[Tarea], feedback: Optional[TaskAIFeedback]) -> dict:
    return {
        "id": event.id,
        "task_id": event.task_id,
        "task_type": event.task_type,
        "event_type": event.event_type,
        "payload": event.payload or {},
        "created_by": event.created_by,
        "created_at": event.created_at.isoformat() if event.created_at else None,
        "tarea": (
            {"id": tarea.id, "titulo": tarea.titulo, "estado": tarea.estado, "prioridad": tarea.prioridad}
            if tarea
            else None
        ),
        "feedback": (
            {"id": feedback.id, "is_useful": feedback.is_useful, "feedback_text": feedback.feedback_text}
            if feedback
            else None
        ),
    }


def fetch_task_ai_events(db, filters: Optional[Dict[str, Any]] = None) -> List[dict]:
    """AI_CREATED events, newest first, joined with their task and feedback."""
    filters = filters or {}

    def _query():
        query = db.query(TaskEvent).filter(TaskEvent.event_type == AI_CREATED_EVENT)
        if filters.get("date_from"):
            query = query.filter(TaskEvent.created_at >= filters["date_from"])
        if filters.get("date_to"):
            query = query.filter(TaskEvent.created_at <= filters["date_to"])
        events = query.order_by(TaskEvent.created_at.desc()).all()
        if not events:
            return []
        tareas = {
            row.id: row for row in db.query(Tarea).filter(Tarea.id.in_([event.task_id for event in events]))
        }
        feedbacks: Dict[str, TaskAIFeedback] = {}
        for row in db.query(TaskAIFeedback).filter(TaskAIFeedback.event_id.in_([event.id for event in events])):
            feedbacks.setdefault(row.event_id, row)
        return [(event, tareas.get(event.task_id), feedbacks.get(event.id)) for event in events]

    rows = run_query("task_events", _query)

    confidence_min = filters.get("confidence_min")
    confidence_max = filters.get("confidence_max")
    search = (filters.get("search_text") or "").strip().lower()
    has_feedback = filters.get("has_feedback")

    results = []
    for event, tarea, feedback in rows:
        confidence = _confidence(event)
        if confidence_min is not None and confidence < confidence_min:
            continue
        if confidence_max is not None and confidence > confidence_max:
            continue
        if search and search not in str((event.payload or {}).get("original_input") or "").lower():
            continue
        if has_feedback is True and feedback is None:
            continue
        if has_feedback is False and feedback is not None:
            continue
        results.append(_event_to_dict(event, tarea, feedback))
    return results


def fetch_task_ai_stats(db) -> dict:
    events = run_query(
        "task_events",
        lambda: db.query(TaskEvent).filter(TaskEvent.event_type == AI_CREATED_EVENT).all(),
    )
    feedback_map: Dict[str, bool] = {}
    if events:
        for row in db.query(TaskAIFeedback).filter(TaskAIFeedback.event_id.in_([event.id for event in events])):
            feedback_map.setdefault(row.event_id, bool(row.is_useful))

    stats = {
        "total": len(events),
        "highConfidence": 0,
        "mediumConfidence": 0,
        "lowConfidence": 0,
        "withPositiveFeedback": 0,
        "withNegativeFeedback": 0,
        "pendingFeedback": 0,
    }
    for event in events:
        confidence = _confidence(event)
        if confidence >= HIGH_CONFIDENCE:
            stats["highConfidence"] += 1
        elif confidence >= MEDIUM_CONFIDENCE:
            stats["mediumConfidence"] += 1
        else:
            stats["lowConfidence"] += 1

        if event.id in feedback_map:
            if feedback_map[event.id]:
                stats["withPositiveFeedback"] += 1
            else:
                stats["withNegativeFeedback"] += 1
        else:
            stats["pendingFeedback"] += 1
    return stats


def save_task_ai_feedback(
    db,
    user_id: Optional[str],
    event_id: str,
    task_id: Optional[str],
    is_useful: bool,
    feedback_text: Optional[str] = None,
) -> TaskAIFeedback:
    """Insert or update the caller's feedback for one AI event."""
    if not user_id:
        raise ValidationError("Usuario no autenticado")
    event = db.query(TaskEvent).filter_by(id=event_id).one_or_none()
    if not event:
        raise NotFoundError("Evento no encontrado", {"event_id": event_id})

    def _upsert():
        existing = db.query(TaskAIFeedback).filter_by(event_id=event_id, user_id=user_id).one_or_none()
        now = datetime.utcnow()
        if existing:
            existing.is_useful = is_useful
            existing.feedback_text = feedback_text or None
            existing.updated_at = now
            db.flush()
            return existing
        feedback = TaskAIFeedback(
            event_id=event_id,
            task_id=task_id or event.task_id,
            user_id=user_id,
            is_useful=is_useful,
            feedback_text=feedback_text or None,
            created_at=now,
            updated_at=now,
        )
        db.add(feedback)
        db.flush()
        return feedback

    return run_query("task_ai_feedback", _upsert)
