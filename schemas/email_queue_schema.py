from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

QUEUE_TYPES = {"teaser", "transactional", "notification", "digest", "test"}

QUEUE_STATUSES = {"pending", "queued", "sending", "sent", "failed", "cancelled"}


def _require_str(payload: Dict[str, Any], field: str) -> str:
    value = payload.get(field)
    if value is None:
        raise ValueError(f"{field} is required")
    text = str(value).strip()
    if not text:
        raise ValueError(f"{field} is required")
    return text


def _optional_str(payload: Dict[str, Any], field: str) -> Optional[str]:
    value = payload.get(field)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string into a naive UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"Invalid datetime: {value}") from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def normalize_queue_type(value: Optional[str], default: Optional[str] = None) -> Optional[str]:
    if value is None or not str(value).strip():
        return default
    normalized = str(value).strip().lower()
    if normalized not in QUEUE_TYPES:
        raise ValueError(f"Invalid queue_type: {value}")
    return normalized


def normalize_status(value: Optional[str]) -> Optional[str]:
    if value is None or not str(value).strip():
        return None
    normalized = str(value).strip().lower()
    if normalized not in QUEUE_STATUSES:
        raise ValueError(f"Invalid status: {value}")
    return normalized


def validate_enqueue(payload: Dict[str, Any]) -> Dict[str, Any]:
    attachments = payload.get("attachments") or []
    if not isinstance(attachments, list):
        raise ValueError("attachments must be a list")
    for attachment in attachments:
        if not isinstance(attachment, dict) or not attachment.get("filename") or not attachment.get("content"):
            raise ValueError("attachments require filename and content")
    metadata = payload.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValueError("metadata must be an object")
    priority = payload.get("priority")
    try:
        priority = int(priority) if priority not in (None, "") else None
    except (TypeError, ValueError) as exc:
        raise ValueError("priority must be an integer") from exc

    return {
        "to_email": _require_str(payload, "to_email"),
        "subject": _require_str(payload, "subject"),
        "html_content": _require_str(payload, "html_content"),
        "to_name": _optional_str(payload, "to_name"),
        "text_content": _optional_str(payload, "text_content"),
        "queue_type": normalize_queue_type(payload.get("queue_type"), default="transactional"),
        "from_email": _optional_str(payload, "from_email"),
        "from_name": _optional_str(payload, "from_name"),
        "reply_to": _optional_str(payload, "reply_to"),
        "attachments": attachments,
        "priority": priority,
        "scheduled_at": parse_datetime(payload.get("scheduled_at")),
        "reference_id": _optional_str(payload, "reference_id"),
        "reference_type": _optional_str(payload, "reference_type"),
        "metadata": metadata,
    }


def validate_queue_filters(params: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "status": normalize_status(params.get("status")),
        "queue_type": normalize_queue_type(params.get("queue_type") or params.get("queueType")),
        "to_email": _optional_str(params, "to_email"),
        "from_date": parse_datetime(params.get("from_date")),
        "to_date": parse_datetime(params.get("to_date")),
    }
