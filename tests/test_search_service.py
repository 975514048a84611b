import unittest
from datetime import datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from services.search_service import GENERAL_WORK_ID, get_search_item, global_search, search_mandatos_and_leads
from shared.db import Base, Contacto, Empresa, MandateLead, Mandato


class SearchServiceTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite:///:memory:", future=True)
        Base.metadata.create_all(bind=self.engine)
        Session = sessionmaker(bind=self.engine)
        self.db = Session()
        base = datetime(2026, 1, 1)

        self.ebro = Empresa(nombre="Industrias Ebro SL", sector="Alimentación", ciudad="Zaragoza")
        self.norte = Empresa(nombre="Logística Norte", sector="Transporte", ciudad="Bilbao")
        self.db.add_all([self.ebro, self.norte])
        self.db.flush()

        self.open_mandato = Mandato(
            codigo="M-0042",
            titulo="Venta Ebro",
            descripcion="Venta del 100% de Industrias Ebro",
            estado="activo",
            empresa_principal_id=self.ebro.id,
            created_at=base,
        )
        self.closed_mandato = Mandato(
            codigo="M-0007",
            titulo="Compra Norte",
            descripcion="Adquisición Logística Norte",
            estado="cerrado",
            empresa_principal_id=self.norte.id,
            created_at=base + timedelta(days=1),
        )
        self.db.add_all([self.open_mandato, self.closed_mandato])
        self.db.flush()

        self.lead = MandateLead(
            mandato_id=self.open_mandato.id,
            company_name="Grupo Comprador SA",
            contact_name="Ana Vidal",
            contact_email="ana@comprador.es",
            stage="interesado",
        )
        self.lost_lead = MandateLead(
            mandato_id=self.open_mandato.id, company_name="Fondo Descartado", stage="descartado"
        )
        self.contacto = Contacto(
            nombre="Pedro", apellidos="Lasa", email="pedro@ebro.es", empresa_principal_id=self.ebro.id
        )
        self.db.add_all([self.lead, self.lost_lead, self.contacto])
        self.db.commit()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def test_picker_lists_open_items(self):
        results = search_mandatos_and_leads(self.db, "")
        self.assertIsNone(results["error"])
        self.assertEqual(results["internalProjects"][0]["id"], GENERAL_WORK_ID)
        self.assertEqual([item["id"] for item in results["mandatos"]], [self.open_mandato.id])
        self.assertEqual([item["id"] for item in results["contactos"]], [self.lead.id])

        mandato = results["mandatos"][0]
        self.assertEqual(mandato["label"], "M-0042 · Venta del 100% de Industrias Ebro")
        self.assertEqual(mandato["sublabel"], "Industrias Ebro SL")
        self.assertEqual(results["contactos"][0]["sublabel"], "M-0042 · interesado")

    def test_picker_filters_by_term(self):
        results = search_mandatos_and_leads(self.db, "  ANA@ ")
        self.assertEqual(results["internalProjects"], [])
        self.assertEqual(results["mandatos"], [])
        self.assertEqual(len(results["contactos"]), 1)

        results = search_mandatos_and_leads(self.db, "general", include_leads=False)
        self.assertEqual(len(results["internalProjects"]), 1)
        self.assertEqual(results["contactos"], [])

    def test_picker_can_hide_general_work(self):
        results = search_mandatos_and_leads(self.db, "", include_general_work=False)
        self.assertEqual(results["internalProjects"], [])

    def test_resolve_selected_item(self):
        self.assertEqual(get_search_item(self.db, GENERAL_WORK_ID, "internal")["label"], "Trabajo General M&A")
        self.assertEqual(get_search_item(self.db, self.open_mandato.id, "mandato")["metadata"]["codigo"], "M-0042")
        self.assertEqual(get_search_item(self.db, self.lead.id, "contacto")["label"], "Grupo Comprador SA")
        self.assertIsNone(get_search_item(self.db, "missing", "mandato"))
        self.assertIsNone(get_search_item(self.db, None, "mandato"))

    def test_global_search_spans_entities(self):
        results = global_search(self.db, "ebro")
        by_type = {}
        for item in results:
            by_type.setdefault(item["tipo"], []).append(item)

        self.assertEqual(by_type["mandato"][0]["titulo"], "Industrias Ebro SL")
        self.assertEqual(by_type["mandato"][0]["ruta"], f"/mandatos/{self.open_mandato.id}")
        self.assertEqual(by_type["cliente"][0]["titulo"], "Pedro Lasa")
        self.assertEqual(by_type["target"][0]["subtitulo"], "Alimentación • Zaragoza")

    def test_global_search_includes_closed_mandates(self):
        results = global_search(self.db, "M-0007")
        self.assertEqual([item["id"] for item in results], [self.closed_mandato.id])

    def test_global_search_needs_two_characters(self):
        self.assertEqual(global_search(self.db, "e"), [])
        self.assertEqual(global_search(self.db, None), [])


if __name__ == "__main__":
    unittest.main()
