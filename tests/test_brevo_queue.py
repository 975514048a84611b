import unittest
from datetime import datetime, timedelta
from unittest import mock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from services.brevo_queue_processor import (
    brevo_error_stats,
    brevo_queue_stats,
    bulk_ignore_by_error,
    bulk_retry_by_type,
    clean_old_completed,
    enqueue_brevo_sync,
    ignore_brevo_item,
    list_brevo_queue,
    process_brevo_queue,
    retry_brevo_item,
)
from services.brevo_service import BrevoClient
from shared.db import Base, BrevoSyncLog, BrevoSyncQueueItem, Contacto, Empresa, Mandato
from shared.errors import NotFoundError, ValidationError


class FakeBrevoClient:
    def __init__(self, errors=None):
        self.errors = errors or {}
        self.calls = []

    def _result(self, kind, data):
        self.calls.append((kind, data))
        if kind in self.errors:
            return None, self.errors[kind]
        return f"{kind}-{len(self.calls)}", None

    def sync_contact(self, data):
        return self._result("contact", data)

    def sync_company(self, data):
        return self._result("company", data)

    def sync_deal(self, data):
        return self._result("deal", data)


class FakeResponse:
    def __init__(self, status_code, data=None, text=""):
        self.status_code = status_code
        self._data = data
        self.text = text

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._data is None:
            raise ValueError("empty body")
        return self._data


class BrevoQueueTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite:///:memory:", future=True)
        Base.metadata.create_all(bind=self.engine)
        Session = sessionmaker(bind=self.engine)
        self.db = Session()
        self.sleeps = []

        self.contacto = Contacto(nombre="Lucía", apellidos="Marín", email="lucia@fondo.es", cargo="Socia")
        self.empresa = Empresa(nombre="Industrias Ebro SL", sector="Alimentación", ciudad="Zaragoza")
        self.mandato = Mandato(codigo="M-0042", titulo="Venta Industrias Ebro", pipeline_stage="negociacion")
        self.db.add_all([self.contacto, self.empresa, self.mandato])
        self.db.commit()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def _process(self, client, **kwargs):
        return process_brevo_queue(self.db, client, sleep=self.sleeps.append, **kwargs)

    def _item(self, item_id):
        return self.db.query(BrevoSyncQueueItem).filter_by(id=item_id).one()

    def test_empty_queue(self):
        result = self._process(FakeBrevoClient())
        self.assertEqual(result["processed"], 0)
        self.assertEqual(result["message"], "No pending items")

    def test_syncs_each_entity_and_stores_brevo_ids(self):
        contact = enqueue_brevo_sync(self.db, "contact", self.contacto.id)
        company = enqueue_brevo_sync(self.db, "company", self.empresa.id)
        deal = enqueue_brevo_sync(self.db, "deal", self.mandato.id)
        self.db.commit()
        client = FakeBrevoClient()

        result = self._process(client)

        self.assertEqual(result["succeeded"], 3)
        self.assertEqual(len(self.sleeps), 2)
        for item in (contact, company, deal):
            self.assertEqual(self._item(item.id).status, "completed")
        sent = dict(client.calls)
        self.assertEqual(sent["contact"]["email"], "lucia@fondo.es")
        self.assertEqual(sent["deal"]["pipeline_stage"], "negociacion")
        self.db.expire_all()
        self.assertIsNotNone(self.db.query(Contacto).filter_by(id=self.contacto.id).one().brevo_id)
        self.assertIsNotNone(self.db.query(Mandato).filter_by(id=self.mandato.id).one().brevo_deal_id)
        self.assertEqual(self.db.query(BrevoSyncLog).filter_by(sync_type="outbound").count(), 3)

    def test_explicit_payload_wins_over_entity_lookup(self):
        enqueue_brevo_sync(self.db, "contact", self.contacto.id, payload={"email": "nuevo@fondo.es"})
        self.db.commit()
        client = FakeBrevoClient()
        self._process(client)
        self.assertEqual(client.calls[0][1], {"email": "nuevo@fondo.es"})

    def test_failure_backs_off_then_fails(self):
        item = enqueue_brevo_sync(self.db, "contact", self.contacto.id)
        self.db.commit()
        client = FakeBrevoClient(errors={"contact": "Brevo API error: 500 - boom"})

        before = datetime.utcnow()
        result = self._process(client)
        row = self._item(item.id)
        self.assertEqual(result["retrying"], 1)
        self.assertEqual(row.status, "pending")
        self.assertEqual(row.attempts, 1)
        self.assertGreaterEqual(row.next_retry_at, before + timedelta(minutes=2))

        # Not due yet.
        self.assertEqual(self._process(client)["processed"], 0)

        row.attempts = 2
        row.next_retry_at = None
        self.db.commit()
        result = self._process(client)
        row = self._item(item.id)
        self.assertEqual(result["failed"], 1)
        self.assertEqual(row.status, "failed")
        self.assertEqual(row.error_message, "Brevo API error: 500 - boom")

    def test_enqueue_rejects_unknown_entity(self):
        with self.assertRaises(ValidationError):
            enqueue_brevo_sync(self.db, "invoice", "abc")

    def test_admin_operations(self):
        failed_contact = BrevoSyncQueueItem(
            entity_type="contact", entity_id=self.contacto.id, status="failed", attempts=3, error_message="Invalid email"
        )
        failed_deal = BrevoSyncQueueItem(
            entity_type="deal", entity_id=self.mandato.id, status="failed", attempts=3, error_message="Invalid email"
        )
        failed_company = BrevoSyncQueueItem(
            entity_type="company", entity_id=self.empresa.id, status="failed", attempts=3, error_message="Rate limit"
        )
        old_done = BrevoSyncQueueItem(
            entity_type="company",
            entity_id=self.empresa.id,
            status="completed",
            processed_at=datetime.utcnow() - timedelta(days=30),
        )
        self.db.add_all([failed_contact, failed_deal, failed_company, old_done])
        self.db.commit()

        errors = brevo_error_stats(self.db)
        self.assertEqual(errors[0]["message"], "Invalid email")
        self.assertEqual(errors[0]["count"], 2)
        self.assertEqual(sorted(errors[0]["entityTypes"]), ["contact", "deal"])

        listing = list_brevo_queue(self.db, status="failed", error_search="invalid")
        self.assertEqual(listing["count"], 2)
        names = {row["entity_type"]: row["entity_name"] for row in listing["data"]}
        self.assertEqual(names["contact"], "Lucía")
        self.assertEqual(names["deal"], "M-0042")

        self.assertEqual(bulk_retry_by_type(self.db, "company"), 1)
        self.assertEqual(bulk_ignore_by_error(self.db, "invalid"), 2)
        self.assertEqual(clean_old_completed(self.db, days_old=7), 1)
        self.db.commit()

        stats = brevo_queue_stats(self.db)
        self.assertEqual(stats["pending"], 1)
        self.assertEqual(stats["skipped"], 2)
        self.assertEqual(stats["completed"], 0)
        self.assertEqual(stats["total"], 3)

    def test_retry_and_ignore_single_items(self):
        item = BrevoSyncQueueItem(entity_type="deal", entity_id=self.mandato.id, status="failed", attempts=3)
        self.db.add(item)
        self.db.commit()

        retry_brevo_item(self.db, item.id)
        self.db.commit()
        row = self._item(item.id)
        self.assertEqual((row.status, row.attempts), ("pending", 0))

        ignore_brevo_item(self.db, item.id)
        self.db.commit()
        self.assertEqual(self._item(item.id).status, "skipped")

        with self.assertRaises(NotFoundError):
            retry_brevo_item(self.db, "missing")
        with self.assertRaises(ValidationError):
            bulk_ignore_by_error(self.db, "  ")


class BrevoClientTests(unittest.TestCase):
    def setUp(self):
        self.client = BrevoClient("xkeysib-test")

    def test_contact_created(self):
        with mock.patch("services.brevo_service.requests.post", return_value=FakeResponse(201, {"id": 981})) as post:
            result = self.client.sync_contact({"email": "lucia@fondo.es", "nombre": "Lucía"})
        self.assertEqual(result, ("981", None))
        body = post.call_args.kwargs["json"]
        self.assertEqual(body["attributes"], {"FIRSTNAME": "Lucía"})
        self.assertTrue(body["updateEnabled"])
        self.assertEqual(post.call_args.kwargs["headers"]["api-key"], "xkeysib-test")

    def test_contact_duplicate_is_not_an_error(self):
        response = FakeResponse(400, {"code": "duplicate_parameter", "message": "Contact already exist"})
        with mock.patch("services.brevo_service.requests.post", return_value=response):
            self.assertEqual(self.client.sync_contact({"email": "lucia@fondo.es"}), (None, None))

    def test_contact_without_email(self):
        self.assertEqual(self.client.sync_contact({"nombre": "Lucía"}), (None, "No email provided"))

    def test_deal_stage_is_mapped(self):
        with mock.patch("services.brevo_service.requests.post", return_value=FakeResponse(200, {"id": "d1"})) as post:
            self.client.sync_deal({"nombre": "Venta Ebro", "pipeline_stage": "due_diligence"})
        self.assertEqual(post.call_args.kwargs["json"]["attributes"]["deal_stage"], "Qualification")

    def test_server_error(self):
        with mock.patch("services.brevo_service.requests.post", return_value=FakeResponse(503, text="unavailable")):
            _, error = self.client.sync_company({"nombre": "Ebro"})
        self.assertEqual(error, "Brevo API error: 503 - unavailable")


if __name__ == "__main__":
    unittest.main()
