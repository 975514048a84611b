import unittest
from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from services.mandato_import import (
    extract_empresa_from_nombre,
    import_brevo_deals_csv,
    import_mandatos_venta,
    parse_brevo_date,
    parse_csv_text,
    rows_from_mandatos_venta_csv,
)
from shared.db import Base, BrevoSyncLog, Empresa, Mandato

BREVO_EXPORT = """\ufeffDeal ID,Nombre,Creado el,Fase,Importe,Cierre,Pipeline,Propietario
1001,65 - Fryel - Proceso de Venta,14-02-2025,Negociación,,,,Laura
1002,"Talleres Martín, SL",03-11-2024,Lead,,,,
,Sin ID,01-01-2025,Lead,,,,
"""


class CsvHelpersTests(unittest.TestCase):
    def test_parse_csv_keeps_quoted_commas(self):
        rows = parse_csv_text(' a ,"b, c",d\n\n , \n')
        self.assertEqual(rows, [["a", "b, c", "d"]])

    def test_extract_empresa(self):
        self.assertEqual(extract_empresa_from_nombre("65 - Fryel - Proceso de Venta"), (65, "Fryel"))
        self.assertEqual(extract_empresa_from_nombre(" Talleres Martín "), (None, "Talleres Martín"))

    def test_parse_brevo_date(self):
        self.assertEqual(parse_brevo_date("14-02-2025"), date(2025, 2, 14))
        self.assertIsNone(parse_brevo_date("2025-02-14"))
        self.assertIsNone(parse_brevo_date(""))

    def test_venta_rows_header_is_optional(self):
        with_header = rows_from_mandatos_venta_csv("codigo,empresa,proyecto\nV-01,Ebro,Atlas\n")
        without = rows_from_mandatos_venta_csv("V-01,Ebro\n")
        self.assertEqual(with_header, [{"codigo": "V-01", "empresa": "Ebro", "proyecto": "Atlas"}])
        self.assertEqual(without, [{"codigo": "V-01", "empresa": "Ebro", "proyecto": None}])


class MandatoImportTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite:///:memory:", future=True)
        Base.metadata.create_all(bind=self.engine)
        Session = sessionmaker(bind=self.engine)
        self.db = Session()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def test_brevo_import_creates_mandates_once(self):
        first = import_brevo_deals_csv(self.db, BREVO_EXPORT, today=date(2026, 3, 2))
        self.assertEqual(first["summary"], {"success": 2, "skipped": 1, "error": 0})
        self.assertEqual(first["results"][0]["message"], "Mandato creado exitosamente (ID: 65)")

        fryel = self.db.query(Mandato).filter_by(id_corto=65).one()
        self.assertEqual(fryel.tipo, "venta")
        self.assertEqual(fryel.fecha_inicio, date(2025, 2, 14))
        self.assertEqual(fryel.empresa_principal.nombre, "Fryel")
        self.assertEqual(fryel.empresa_principal.sector, "Industria")
        log = self.db.query(BrevoSyncLog).filter_by(brevo_id="1001").one()
        self.assertEqual(log.sync_type, "import")
        self.assertEqual(log.sync_data["propietario"], "Laura")

        second = import_brevo_deals_csv(self.db, BREVO_EXPORT)
        self.assertEqual(second["summary"], {"success": 0, "skipped": 3, "error": 0})
        self.assertEqual(self.db.query(Mandato).count(), 2)
        self.assertEqual(self.db.query(Empresa).count(), 2)

    def test_venta_import_reuses_companies_and_skips_existing_codes(self):
        self.db.add(Empresa(nombre="Industrias Ebro SL"))
        self.db.commit()
        items = [
            {"codigo": "V-01", "empresa": "industrias ebro sl ", "proyecto": "Atlas"},
            {"codigo": "V-02", "empresa": "Nueva Empresa"},
            {"codigo": "V-01", "empresa": "Otra"},
            {"codigo": "", "empresa": "Sin código"},
        ]

        result = import_mandatos_venta(self.db, items)

        self.assertEqual(result["mandatosCreados"], 2)
        self.assertEqual(result["empresasCreadas"], 2)
        self.assertEqual(len(result["errores"]), 2)
        self.assertIn("V-01 ya existe", result["errores"][0])
        atlas = self.db.query(Mandato).filter_by(codigo="V-01").one()
        self.assertEqual(atlas.empresa_principal.nombre, "Industrias Ebro SL")
        self.assertEqual(atlas.nombre_proyecto, "Atlas")
        self.assertEqual(atlas.pipeline_stage, "prospeccion")


if __name__ == "__main__":
    unittest.main()
