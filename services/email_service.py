from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

import requests

from shared.config import get_email_settings
from shared.db import EmailQueueItem

logger = logging.getLogger(__name__)

RETRY_DELAYS_SECONDS = [60, 300, 1800]


class EmailConfigError(RuntimeError):
    pass


@dataclass
class EmailPayload:
    to: Union[str, List[str]]
    subject: str
    html: str
    to_name: Optional[str] = None
    from_email: Optional[str] = None
    from_name: Optional[str] = None
    reply_to: Optional[str] = None
    text: Optional[str] = None
    attachments: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class SendResult:
    success: bool
    provider: str
    message_id: Optional[str] = None
    error: Optional[str] = None
    raw_response: Optional[Dict[str, Any]] = None

    def to_dict(self) -> dict:
        body = asdict(self)
        return {
            "success": body["success"],
            "provider": body["provider"],
            "messageId": body["message_id"],
            "error": body["error"],
            "rawResponse": body["raw_response"],
        }


def _format_from(payload: EmailPayload, default_from: str) -> str:
    address = payload.from_email or default_from
    if payload.from_name:
        return f"{payload.from_name} <{address}>"
    return address


class ResendProvider:
    name = "resend"

    def __init__(self, api_key: str, api_url: str = "https://api.resend.com", default_from: str = "noreply@capittal.es"):
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.default_from = default_from

    def send(self, payload: EmailPayload) -> SendResult:
        to_addresses = payload.to if isinstance(payload.to, list) else [payload.to]
        body: Dict[str, Any] = {
            "from": _format_from(payload, self.default_from),
            "to": to_addresses,
            "subject": payload.subject,
            "html": payload.html,
        }
        if payload.text:
            body["text"] = payload.text
        if payload.reply_to:
            body["reply_to"] = payload.reply_to
        if payload.attachments:
            body["attachments"] = [
                {"filename": att.get("filename"), "content": att.get("content")} for att in payload.attachments
            ]

        try:
            resp = requests.post(
                f"{self.api_url}/emails",
                headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                json=body,
                timeout=10,
            )
        except requests.RequestException as exc:
            logger.warning("Resend request failed: %s", exc)
            return SendResult(success=False, provider=self.name, error=str(exc))

        try:
            data = resp.json()
        except ValueError:
            data = {"body": resp.text}

        if resp.status_code >= 300:
            message = data.get("message") if isinstance(data, dict) else None
            logger.warning("Resend send failed: %s %s", resp.status_code, resp.text)
            return SendResult(
                success=False,
                provider=self.name,
                error=message or f"Resend error {resp.status_code}",
                raw_response=data,
            )
        return SendResult(success=True, provider=self.name, message_id=data.get("id"), raw_response=data)


def get_email_provider() -> ResendProvider:
    settings = get_email_settings()
    if not settings["resend_api_key"]:
        raise EmailConfigError("No email provider configured. Set RESEND_API_KEY.")
    return ResendProvider(
        settings["resend_api_key"],
        api_url=settings["resend_api_url"],
        default_from=settings["from_email"],
    )


def payload_from_queue_item(item: EmailQueueItem) -> EmailPayload:
    settings = get_email_settings()
    return EmailPayload(
        to=item.to_email,
        to_name=item.to_name,
        from_email=item.from_email or settings["from_email"],
        from_name=item.from_name or settings["from_name"],
        reply_to=item.reply_to,
        subject=item.subject,
        html=item.html_content,
        text=item.text_content,
        attachments=item.attachments or [],
    )


def retry_delay_seconds(attempts: int) -> int:
    """Backoff after the given number of failed attempts (1-based)."""
    index = min(max(attempts - 1, 0), len(RETRY_DELAYS_SECONDS) - 1)
    return RETRY_DELAYS_SECONDS[index]


def apply_send_result(item: EmailQueueItem, result: SendResult, now: Optional[datetime] = None) -> None:
    """
    Record a send outcome on the queue row.
    Failures go back to pending with backoff until max_attempts is reached.
    """
    now = now or datetime.utcnow()
    item.last_attempt_at = now
    item.updated_at = now
    item.provider = result.provider
    if result.success:
        item.status = "sent"
        item.sent_at = now
        item.provider_message_id = result.message_id
        item.provider_status = "sent"
        item.provider_response = result.raw_response
        item.next_retry_at = None
        return

    attempts = (item.attempts or 0) + 1
    item.attempts = attempts
    item.last_error = result.error
    item.error_details = {"provider": result.provider, "rawResponse": result.raw_response}
    item.provider_response = result.raw_response
    if attempts >= (item.max_attempts or 3):
        item.status = "failed"
        item.failed_at = now
        item.next_retry_at = None
    else:
        item.status = "pending"
        item.next_retry_at = now + timedelta(seconds=retry_delay_seconds(attempts))


def payload_from_request(body: Dict[str, Any]) -> EmailPayload:
    """Build a payload from a send-email request body; to/subject/html are required."""
    to = body.get("to")
    subject = (body.get("subject") or "").strip() if isinstance(body.get("subject"), str) else ""
    html = body.get("html")
    if not to or not subject or not html:
        raise ValueError("Missing required fields: to, subject, html")
    attachments = body.get("attachments") or []
    if not isinstance(attachments, list):
        raise ValueError("attachments must be a list")
    settings = get_email_settings()
    return EmailPayload(
        to=to,
        to_name=body.get("toName"),
        from_email=body.get("from") or settings["from_email"],
        from_name=body.get("fromName") or settings["from_name"],
        reply_to=body.get("replyTo"),
        subject=subject,
        html=html,
        text=body.get("text"),
        attachments=attachments,
    )


def send_email_request(db, body: Dict[str, Any], provider=None) -> SendResult:
    """
    Send one email immediately. When the body names a queue row and
    updateQueue is not false, the outcome is recorded on that row.
    """
    payload = payload_from_request(body)
    if provider is None:
        provider = get_email_provider()
    result = provider.send(payload)

    queue_id = body.get("queueId")
    if queue_id and body.get("updateQueue", True) is not False:
        item = db.query(EmailQueueItem).filter_by(id=queue_id).one_or_none()
        if item is None:
            logger.warning("send-email: queue row %s not found", queue_id)
        else:
            apply_send_result(item, result)
            db.commit()
    return result
