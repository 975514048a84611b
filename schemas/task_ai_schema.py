from __future__ import annotations

import re
from datetime import date
from typing import Any, Dict, Optional

PRIORITIES = {"urgente", "alta", "media", "baja"}
CONTEXT_TYPES = {"mandato", "cliente", "general"}
DEFAULT_ESTIMATED_MINUTES = 30

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _optional_str(payload: Dict[str, Any], field: str) -> Optional[str]:
    value = payload.get(field)
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() == "null":
        return None
    return text


def _normalize_choice(value: Any, allowed: set, default: str) -> str:
    if value is None:
        return default
    normalized = str(value).strip().lower()
    return normalized if normalized in allowed else default


def _normalize_due_date(value: Any) -> Optional[str]:
    text = str(value).strip() if value is not None else ""
    if not _DATE_RE.match(text):
        return None
    try:
        date.fromisoformat(text)
    except ValueError:
        return None
    return text


def _normalize_minutes(value: Any) -> int:
    try:
        minutes = int(float(value))
    except (TypeError, ValueError):
        return DEFAULT_ESTIMATED_MINUTES
    return minutes if minutes > 0 else DEFAULT_ESTIMATED_MINUTES


def normalize_parsed_task(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce one task from the model output into the parsed-task shape."""
    if not isinstance(raw, dict):
        raise ValueError("Each task must be an object")
    title = _optional_str(raw, "title")
    if not title:
        raise ValueError("Task title is required")
    return {
        "title": title,
        "description": _optional_str(raw, "description") or "",
        "priority": _normalize_choice(raw.get("priority"), PRIORITIES, "media"),
        "due_date": _normalize_due_date(raw.get("due_date")),
        "assigned_to_name": _optional_str(raw, "assigned_to_name"),
        "assigned_to_id": _optional_str(raw, "assigned_to_id"),
        "context_type": _normalize_choice(raw.get("context_type"), CONTEXT_TYPES, "general"),
        "context_hint": _optional_str(raw, "context_hint"),
        "estimated_minutes": _normalize_minutes(raw.get("estimated_minutes")),
        "suggested_fase": _optional_str(raw, "suggested_fase"),
    }


def validate_parse_request(payload: Dict[str, Any]) -> Dict[str, Any]:
    raw_text = payload.get("raw_text")
    if not isinstance(raw_text, str) or not raw_text.strip():
        raise ValueError("raw_text is required")
    user_context = payload.get("user_context") or {}
    if not isinstance(user_context, dict):
        user_context = {}
    return {"raw_text": raw_text.strip(), "user_context": user_context}


def validate_feedback(payload: Dict[str, Any]) -> Dict[str, Any]:
    event_id = _optional_str(payload, "event_id")
    if not event_id:
        raise ValueError("event_id is required")
    is_useful = payload.get("is_useful")
    if not isinstance(is_useful, bool):
        raise ValueError("is_useful must be a boolean")
    return {
        "event_id": event_id,
        "task_id": _optional_str(payload, "task_id"),
        "is_useful": is_useful,
        "feedback_text": _optional_str(payload, "feedback_text"),
    }
