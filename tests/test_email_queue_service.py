import unittest
from datetime import datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from schemas.email_queue_schema import parse_datetime, validate_enqueue, validate_queue_filters
from services.email_queue_service import (
    MSG_RECENTLY_RETRIED,
    bulk_retry_failed,
    cancel_email,
    clear_old_emails,
    enqueue_email,
    fetch_email_queue,
    fetch_queue_stats,
    get_email_by_id,
    recover_stuck_emails,
    retry_email,
)
from shared.db import Base, EmailQueueItem
from shared.errors import ValidationError


def _email(**overrides):
    now = datetime.utcnow()
    values = {
        "to_email": "socio@fondo.es",
        "subject": "Teaser Proyecto Atlas",
        "html_content": "<p>Hola</p>",
        "queue_type": "teaser",
        "status": "pending",
        "attempts": 0,
        "max_attempts": 3,
        "created_at": now,
        "updated_at": now,
    }
    values.update(overrides)
    return EmailQueueItem(**values)


class EmailQueueServiceTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite:///:memory:", future=True)
        Base.metadata.create_all(bind=self.engine)
        Session = sessionmaker(bind=self.engine)
        self.db = Session()
        self.now = datetime(2026, 3, 2, 10, 0, 0)

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def test_enqueue_applies_defaults(self):
        params = validate_enqueue(
            {"to_email": "cfo@target.es", "subject": "NDA", "html_content": "<p>NDA adjunto</p>"}
        )
        email_id = enqueue_email(self.db, params, created_by="user-1")
        self.db.commit()

        row = self.db.query(EmailQueueItem).filter_by(id=email_id).one()
        self.assertEqual(row.status, "pending")
        self.assertEqual(row.queue_type, "transactional")
        self.assertEqual(row.priority, 5)
        self.assertEqual(row.max_attempts, 3)
        self.assertEqual(row.from_email, "noreply@capittal.es")
        self.assertEqual(row.from_name, "Capittal M&A")
        self.assertEqual(row.created_by, "user-1")
        self.assertIsNotNone(row.scheduled_at)

    def test_enqueue_validation_requires_core_fields(self):
        with self.assertRaises(ValueError):
            validate_enqueue({"to_email": "cfo@target.es", "subject": "NDA"})
        with self.assertRaises(ValueError):
            validate_enqueue({"to_email": "a@b.es", "subject": "x", "html_content": "y", "queue_type": "spam"})

    def test_fetch_filters_and_paginates(self):
        for index in range(3):
            self.db.add(_email(to_email=f"inversor{index}@fondo.es", created_at=self.now + timedelta(minutes=index)))
        self.db.add(_email(to_email="otro@empresa.es", status="sent", queue_type="transactional"))
        self.db.commit()

        result = fetch_email_queue(self.db, validate_queue_filters({"status": "pending", "to_email": "FONDO"}))
        self.assertEqual(result["count"], 3)
        self.assertEqual(result["data"][0]["to_email"], "inversor2@fondo.es")

        page = fetch_email_queue(self.db, {"status": "pending"}, page=1, page_size=2)
        self.assertEqual(page["count"], 3)
        self.assertEqual(len(page["data"]), 1)

    def test_stats_group_by_type_and_status(self):
        self.db.add(_email(attempts=1))
        self.db.add(_email(attempts=3))
        self.db.add(_email(status="failed", attempts=3))
        self.db.commit()

        stats = {(row["queue_type"], row["status"]): row for row in fetch_queue_stats(self.db)}
        self.assertEqual(stats[("teaser", "pending")]["count"], 2)
        self.assertEqual(stats[("teaser", "pending")]["avg_attempts"], 2.0)
        self.assertEqual(stats[("teaser", "failed")]["count"], 1)

    def test_cancel_only_affects_pending_rows(self):
        pending = _email()
        sent = _email(status="sent")
        self.db.add_all([pending, sent])
        self.db.commit()

        self.assertTrue(cancel_email(self.db, pending.id))
        self.assertFalse(cancel_email(self.db, sent.id))
        self.db.commit()
        self.assertEqual(self.db.query(EmailQueueItem).filter_by(id=pending.id).one().status, "cancelled")
        self.assertEqual(self.db.query(EmailQueueItem).filter_by(id=sent.id).one().status, "sent")

    def test_retry_respects_cooldown(self):
        stale = _email(status="failed", attempts=3, updated_at=self.now - timedelta(minutes=10))
        fresh = _email(status="failed", attempts=3, updated_at=self.now - timedelta(seconds=30))
        self.db.add_all([stale, fresh])
        self.db.commit()

        retry_email(self.db, stale.id, now=self.now)
        self.db.commit()
        self.assertEqual(self.db.query(EmailQueueItem).filter_by(id=stale.id).one().status, "pending")

        with self.assertRaises(ValidationError) as ctx:
            retry_email(self.db, fresh.id, now=self.now)
        self.assertEqual(ctx.exception.message, MSG_RECENTLY_RETRIED)

    def test_retry_requires_id(self):
        with self.assertRaises(ValidationError):
            retry_email(self.db, "")

    def test_bulk_retry_skips_exhausted_and_recent_rows(self):
        old = self.now - timedelta(minutes=30)
        retryable = _email(status="failed", attempts=1, updated_at=old)
        exhausted = _email(status="failed", attempts=3, updated_at=old)
        recent = _email(status="failed", attempts=1, updated_at=self.now - timedelta(minutes=1))
        other_type = _email(status="failed", attempts=1, updated_at=old, queue_type="digest")
        self.db.add_all([retryable, exhausted, recent, other_type])
        self.db.commit()

        count = bulk_retry_failed(self.db, queue_type="teaser", now=self.now)
        self.db.commit()
        self.assertEqual(count, 1)
        self.assertEqual(self.db.query(EmailQueueItem).filter_by(id=retryable.id).one().status, "pending")
        self.assertEqual(self.db.query(EmailQueueItem).filter_by(id=other_type.id).one().status, "failed")

    def test_clear_old_emails_deletes_finished_rows_only(self):
        old = self.now - timedelta(days=45)
        self.db.add_all(
            [
                _email(status="sent", created_at=old),
                _email(status="cancelled", created_at=old),
                _email(status="failed", created_at=old),
                _email(status="sent", created_at=self.now - timedelta(days=2)),
            ]
        )
        self.db.commit()

        self.assertEqual(clear_old_emails(self.db, days_old=30, now=self.now), 2)
        self.db.commit()
        self.assertEqual(self.db.query(EmailQueueItem).count(), 2)

    def test_get_email_by_id(self):
        row = _email(metadata_json={"mandato": "M-001"})
        self.db.add(row)
        self.db.commit()
        found = get_email_by_id(self.db, row.id)
        self.assertEqual(found["metadata"], {"mandato": "M-001"})
        self.assertIsNone(get_email_by_id(self.db, "missing"))

    def test_recover_stuck_rows_counts_an_attempt(self):
        stuck = _email(status="sending", attempts=0, last_attempt_at=self.now - timedelta(minutes=20))
        stuck_last_try = _email(status="sending", attempts=2, last_attempt_at=self.now - timedelta(minutes=20))
        in_flight = _email(status="sending", attempts=0, last_attempt_at=self.now - timedelta(minutes=1))
        self.db.add_all([stuck, stuck_last_try, in_flight])
        self.db.commit()

        self.assertEqual(recover_stuck_emails(self.db, stuck_minutes=10, now=self.now), 2)
        self.db.commit()

        stuck = self.db.query(EmailQueueItem).filter_by(id=stuck.id).one()
        self.assertEqual(stuck.status, "pending")
        self.assertEqual(stuck.attempts, 1)
        last_try = self.db.query(EmailQueueItem).filter_by(id=stuck_last_try.id).one()
        self.assertEqual(last_try.status, "failed")
        self.assertIsNotNone(last_try.failed_at)
        self.assertEqual(self.db.query(EmailQueueItem).filter_by(id=in_flight.id).one().status, "sending")

    def test_parse_datetime_normalizes_to_naive_utc(self):
        parsed = parse_datetime("2026-03-02T11:00:00+01:00")
        self.assertEqual(parsed, datetime(2026, 3, 2, 10, 0, 0))
        self.assertEqual(parse_datetime("2026-03-02T10:00:00Z"), datetime(2026, 3, 2, 10, 0, 0))
        self.assertIsNone(parse_datetime(""))


if __name__ == "__main__":
    unittest.main()
