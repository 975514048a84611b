import unittest
from datetime import date

from services.legal_documents import (
    DD_ALCANCE_OPTIONS,
    SERVICIOS_MANDATO_COMPRA,
    build_document,
    default_filename,
    download_filename,
    format_currency,
    format_long_date,
    investment_criteria,
    prepare_document_data,
)
from services.pdf_renderer import render_pdf
from shared.errors import ValidationError


def _sections(blocks):
    return [block["title"] for block in blocks if block["type"] == "section"]


def _all_text(blocks):
    parts = []
    for block in blocks:
        if block["type"] == "section":
            parts.append(block["title"])
            parts.extend(_all_text(block["content"]))
        elif block["type"] == "bullets":
            parts.extend(block["items"])
        elif "text" in block:
            parts.append(block["text"])
    return "\n".join(parts)


NDA_DATA = {
    "empresa_nombre": "Industrias Ebro SL",
    "empresa_cif": "B50000001",
    "empresa_representante": "Carmen Gil",
    "contraparte_nombre": "Fondo Iberia Capital",
    "contraparte_representante": "Luis Prado",
    "duracion_meses": "18",
    "tipo_operacion": "venta",
    "nombre_proyecto": "Atlas",
    "fecha": "2026-10-17",
}


class FormattingTests(unittest.TestCase):
    def test_currency_grouping(self):
        self.assertEqual(format_currency(2500), "2500,00\xa0€")
        self.assertEqual(format_currency(1250000), "1.250.000,00\xa0€")
        self.assertEqual(format_currency("15000.555"), "15.000,56\xa0€")
        self.assertEqual(format_currency(-99.5), "-99,50\xa0€")
        with self.assertRaises(ValidationError):
            format_currency("mucho")

    def test_long_date(self):
        self.assertEqual(format_long_date(date(2026, 10, 17)), "17 de octubre de 2026")
        self.assertEqual(format_long_date("2026-01-05T10:00:00Z"), "5 de enero de 2026")

    def test_filename(self):
        name = default_filename("mandato_venta", {"target_nombre": "Ebro & Hijos, S.L."}, today=date(2026, 10, 17))
        self.assertEqual(name, "Mandato_Venta_Ebro___Hijos__S_L__20261017.pdf")

    def test_requested_filename_is_sanitized(self):
        self.assertEqual(download_filename(" NDA Atlas.PDF "), "NDA_Atlas.pdf")
        self.assertEqual(download_filename('a"b\r\nc'), "a_b__c.pdf")
        self.assertIsNone(download_filename(None))
        self.assertIsNone(download_filename(".pdf"))
        with self.assertRaises(ValidationError):
            download_filename(12)

    def test_default_filename_with_numeric_name(self):
        self.assertEqual(
            default_filename("loi", {"target_nombre": 4521}, today=date(2026, 10, 17)), "LOI_4521_20261017.pdf"
        )


class PrepareDocumentDataTests(unittest.TestCase):
    def test_missing_fields_are_listed(self):
        with self.assertRaises(ValidationError) as ctx:
            prepare_document_data("loi", {"comprador_nombre": "Fondo Iberia"})
        self.assertEqual(ctx.exception.context["missing"], ["vendedor_nombre", "precio_indicativo"])

    def test_unknown_type(self):
        with self.assertRaises(ValidationError):
            prepare_document_data("factura", {})

    def test_defaults_and_coercion(self):
        prepared = prepare_document_data(
            "mandato_compra",
            {
                "cliente_nombre": "Grupo Norte",
                "sectores_objetivo": "Alimentación, Logística",
                "honorario_exito_porcentaje": "2,5",
                "exclusividad": "true",
            },
        )
        self.assertEqual(prepared["sectores_objetivo"], ["Alimentación", "Logística"])
        self.assertEqual(prepared["honorario_exito_porcentaje"], 2.5)
        self.assertTrue(prepared["exclusividad"])
        self.assertEqual(prepared["servicios"], SERVICIOS_MANDATO_COMPRA)
        self.assertEqual(prepared["duracion_meses"], 12)
        self.assertEqual(prepared["lugar"], "Madrid")
        self.assertIsInstance(prepared["fecha"], date)

    def test_loi_defaults(self):
        prepared = prepare_document_data(
            "loi", {"comprador_nombre": "Fondo", "vendedor_nombre": "Familia Gil", "precio_indicativo": 4000000}
        )
        self.assertEqual(prepared["porcentaje_adquisicion"], 100)
        self.assertEqual(prepared["dd_alcance"], DD_ALCANCE_OPTIONS[:3])


class DocumentBuilderTests(unittest.TestCase):
    def test_nda_clauses_renumber_without_penalty(self):
        without = _sections(build_document("nda", NDA_DATA))
        self.assertEqual(without[0], "PRIMERA.- DEFINICIÓN DE INFORMACIÓN CONFIDENCIAL")
        self.assertEqual(without[-2], "SEXTA.- AUSENCIA DE OTROS COMPROMISOS")
        self.assertEqual(without[-1], "SÉPTIMA.- LEY APLICABLE Y JURISDICCIÓN")

        with_penalty = build_document("nda", dict(NDA_DATA, penalizacion_euros=50000))
        titles = _sections(with_penalty)
        self.assertEqual(titles[5], "SEXTA.- PENALIZACIONES")
        self.assertEqual(titles[-1], "OCTAVA.- LEY APLICABLE Y JURISDICCIÓN")
        self.assertIn("50.000,00\xa0€", _all_text(with_penalty))

    def test_nda_text(self):
        text = _all_text(build_document("nda", NDA_DATA))
        self.assertIn("En Madrid, a 17 de octubre de 2026", text)
        self.assertIn("De una parte, INDUSTRIAS EBRO SL", text)
        self.assertIn('la posible venta (en adelante, "Proyecto Atlas")', text)
        self.assertIn("período de 18 meses", text)

    def test_mandato_venta_optional_clauses(self):
        base = {"cliente_nombre": "Familia Gil", "target_nombre": "Ebro SL", "honorario_exito_porcentaje": 4}
        titles = _sections(build_document("mandato_venta", base))
        self.assertEqual(
            titles,
            [
                "PRIMERA.- OBJETO DEL MANDATO",
                "SEGUNDA.- SERVICIOS A PRESTAR",
                "TERCERA.- EXCLUSIVIDAD",
                "CUARTA.- DURACIÓN",
                "QUINTA.- HONORARIOS",
                "SEXTA.- CONFIDENCIALIDAD",
                "SÉPTIMA.- LEY APLICABLE Y JURISDICCIÓN",
            ],
        )

        full = dict(
            base,
            valoracion_indicativa_min=8000000,
            valoracion_indicativa_max=10000000,
            honorario_fijo=15000,
            honorario_minimo=120000,
            gastos_provision=3000,
            exclusividad=True,
        )
        blocks = build_document("mandato_venta", full)
        titles = _sections(blocks)
        self.assertEqual(titles[2], "TERCERA.- VALORACIÓN INDICATIVA")
        self.assertEqual(titles[-1], "NOVENA.- LEY APLICABLE Y JURISDICCIÓN")
        text = _all_text(blocks)
        self.assertIn("a) Honorario fijo inicial: 15.000,00\xa0€", text)
        self.assertIn("b) Honorario de éxito: 4%", text)
        self.assertIn("no será inferior a 120.000,00\xa0€", text)
        self.assertIn("3000,00\xa0€", text)
        self.assertIn("carácter de EXCLUSIVO", text)

    def test_investment_criteria(self):
        lines = investment_criteria(
            {
                "sectores_objetivo": ["Industria", "Salud"],
                "facturacion_min": 5000000,
                "empleados_max": 250,
            }
        )
        self.assertEqual(
            lines,
            [
                "Sectores de actividad: Industria, Salud",
                "Facturación: desde 5.000.000,00\xa0€",
                "Número de empleados: hasta 250",
            ],
        )

    def test_loi_uses_numeric_titles(self):
        blocks = build_document(
            "loi",
            {
                "comprador_nombre": "Fondo Iberia",
                "vendedor_nombre": "Familia Gil",
                "target_nombre": "Ebro SL",
                "precio_indicativo": 4000000,
                "condiciones_suspensivas": ["Aprobación CNMC"],
            },
        )
        titles = _sections(blocks)
        self.assertEqual(titles[0], "1. OBJETO DE LA TRANSACCIÓN")
        self.assertEqual(titles[3], "4. CONDICIONES SUSPENSIVAS")
        text = _all_text(blocks)
        self.assertIn("adquisición del 100% del capital social de EBRO SL", text)
        self.assertIn("4.000.000,00\xa0€", text)
        self.assertIn("NO VINCULANTE, excepto por las cláusulas relativas a confidencialidad y gastos", text)
        self.assertEqual(sum(1 for block in blocks if block["type"] == "signatures"), 2)


class PdfRendererTests(unittest.TestCase):
    def test_renders_every_document_type(self):
        samples = {
            "nda": NDA_DATA,
            "mandato_venta": {"cliente_nombre": "A & B", "target_nombre": "<Ebro>", "honorario_exito_porcentaje": 3},
            "mandato_compra": {"cliente_nombre": "Norte", "sectores_objetivo": "Salud", "honorario_exito_porcentaje": 2},
            "loi": {"comprador_nombre": "Fondo", "vendedor_nombre": "Gil", "precio_indicativo": 1000},
        }
        for doc_type, data in samples.items():
            with self.subTest(doc_type=doc_type):
                pdf = render_pdf(build_document(doc_type, data), title=doc_type)
                self.assertTrue(pdf.startswith(b"%PDF"))

    def test_unknown_block(self):
        with self.assertRaises(ValueError):
            render_pdf([{"type": "chart"}])


if __name__ == "__main__":
    unittest.main()
