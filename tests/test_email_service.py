import os
import unittest
from datetime import datetime, timedelta
from unittest import mock

import requests
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from services.email_service import (
    EmailConfigError,
    EmailPayload,
    ResendProvider,
    SendResult,
    apply_send_result,
    get_email_provider,
    payload_from_request,
    retry_delay_seconds,
    send_email_request,
)
from shared.db import Base, EmailQueueItem


class FakeResponse:
    def __init__(self, status_code, data=None, text=""):
        self.status_code = status_code
        self._data = data
        self.text = text

    def json(self):
        if self._data is None:
            raise ValueError("no json")
        return self._data


class StubProvider:
    name = "stub"

    def __init__(self, result):
        self.result = result
        self.sent = []

    def send(self, payload):
        self.sent.append(payload)
        return self.result


class ApplySendResultTests(unittest.TestCase):
    def setUp(self):
        self.now = datetime(2026, 3, 2, 10, 0, 0)

    def _item(self, attempts=0):
        return EmailQueueItem(
            to_email="cfo@target.es",
            subject="Teaser",
            html_content="<p>x</p>",
            status="sending",
            attempts=attempts,
            max_attempts=3,
        )

    def test_success_marks_sent(self):
        item = self._item()
        apply_send_result(
            item,
            SendResult(success=True, provider="resend", message_id="re_123", raw_response={"id": "re_123"}),
            now=self.now,
        )
        self.assertEqual(item.status, "sent")
        self.assertEqual(item.sent_at, self.now)
        self.assertEqual(item.provider_message_id, "re_123")
        self.assertEqual(item.attempts, 0)

    def test_failure_backs_off_until_attempts_exhausted(self):
        item = self._item()
        failure = SendResult(success=False, provider="resend", error="rate limited")

        apply_send_result(item, failure, now=self.now)
        self.assertEqual(item.status, "pending")
        self.assertEqual(item.attempts, 1)
        self.assertEqual(item.next_retry_at, self.now + timedelta(seconds=60))
        self.assertEqual(item.last_error, "rate limited")

        apply_send_result(item, failure, now=self.now)
        self.assertEqual(item.next_retry_at, self.now + timedelta(seconds=300))

        apply_send_result(item, failure, now=self.now)
        self.assertEqual(item.status, "failed")
        self.assertEqual(item.failed_at, self.now)
        self.assertIsNone(item.next_retry_at)

    def test_retry_delays_are_capped(self):
        self.assertEqual([retry_delay_seconds(n) for n in (1, 2, 3, 7)], [60, 300, 1800, 1800])


class ResendProviderTests(unittest.TestCase):
    def setUp(self):
        self.provider = ResendProvider("re_key", default_from="noreply@capittal.es")
        self.payload = EmailPayload(
            to="cfo@target.es",
            subject="NDA Proyecto Atlas",
            html="<p>Adjuntamos el NDA</p>",
            from_name="Capittal M&A",
            reply_to="deals@capittal.es",
            attachments=[{"filename": "nda.pdf", "content": "JVBERi0="}],
        )

    def test_posts_to_emails_endpoint(self):
        with mock.patch("services.email_service.requests.post", return_value=FakeResponse(200, {"id": "re_1"})) as post:
            result = self.provider.send(self.payload)

        self.assertTrue(result.success)
        self.assertEqual(result.message_id, "re_1")
        args, kwargs = post.call_args
        self.assertEqual(args[0], "https://api.resend.com/emails")
        body = kwargs["json"]
        self.assertEqual(body["from"], "Capittal M&A <noreply@capittal.es>")
        self.assertEqual(body["to"], ["cfo@target.es"])
        self.assertEqual(body["reply_to"], "deals@capittal.es")
        self.assertEqual(body["attachments"][0]["filename"], "nda.pdf")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer re_key")

    def test_api_error_is_a_failed_result(self):
        response = FakeResponse(422, {"message": "Invalid `to` field"}, text="invalid")
        with mock.patch("services.email_service.requests.post", return_value=response):
            result = self.provider.send(self.payload)
        self.assertFalse(result.success)
        self.assertEqual(result.error, "Invalid `to` field")
        self.assertEqual(result.to_dict()["rawResponse"], {"message": "Invalid `to` field"})

    def test_network_error_is_a_failed_result(self):
        with mock.patch(
            "services.email_service.requests.post", side_effect=requests.ConnectionError("connection reset")
        ):
            result = self.provider.send(self.payload)
        self.assertFalse(result.success)
        self.assertIn("connection reset", result.error)

    def test_missing_api_key_raises(self):
        with mock.patch.dict(os.environ, {"RESEND_API_KEY": ""}):
            with self.assertRaises(EmailConfigError):
                get_email_provider()


class SendEmailRequestTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite:///:memory:", future=True)
        Base.metadata.create_all(bind=self.engine)
        Session = sessionmaker(bind=self.engine)
        self.db = Session()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def test_missing_fields_rejected(self):
        with self.assertRaises(ValueError):
            payload_from_request({"to": "cfo@target.es", "subject": "Hola"})

    def test_updates_queue_row(self):
        item = EmailQueueItem(to_email="cfo@target.es", subject="Teaser", html_content="<p>x</p>", status="sending")
        self.db.add(item)
        self.db.commit()
        provider = StubProvider(SendResult(success=True, provider="stub", message_id="m-1"))

        result = send_email_request(
            self.db,
            {"queueId": item.id, "to": "cfo@target.es", "subject": "Teaser", "html": "<p>x</p>"},
            provider=provider,
        )

        self.assertTrue(result.success)
        self.assertEqual(provider.sent[0].from_email, "noreply@capittal.es")
        self.assertEqual(self.db.query(EmailQueueItem).filter_by(id=item.id).one().status, "sent")

    def test_update_queue_false_leaves_row_untouched(self):
        item = EmailQueueItem(to_email="cfo@target.es", subject="Teaser", html_content="<p>x</p>", status="sending")
        self.db.add(item)
        self.db.commit()
        provider = StubProvider(SendResult(success=False, provider="stub", error="boom"))

        result = send_email_request(
            self.db,
            {
                "queueId": item.id,
                "updateQueue": False,
                "to": "cfo@target.es",
                "subject": "Teaser",
                "html": "<p>x</p>",
            },
            provider=provider,
        )

        self.assertFalse(result.success)
        self.assertEqual(self.db.query(EmailQueueItem).filter_by(id=item.id).one().status, "sending")


if __name__ == "__main__":
    unittest.main()
