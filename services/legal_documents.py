"""
Legal document templates for the deal desk: NDA, sell-side and buy-side
mandates and letters of intent.

Documents are assembled as a flat list of layout blocks (plain dicts) so the
wording can be checked without rendering; services.pdf_renderer turns the
blocks into a PDF.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from shared.errors import ValidationError

DEFAULT_VALUES: Dict[str, Any] = {
    "asesor_nombre": "Accountex Advisory, S.L.",
    "asesor_cif": "B12345678",
    "asesor_domicilio": "Calle Example 123, 28001 Madrid",
    "asesor_representante": "Juan García López",
    "jurisdiccion": "Juzgados y Tribunales de Madrid",
    "ley_aplicable": "Legislación española",
    "duracion_meses": 12,
    "preaviso_dias": 30,
    "honorario_exito_porcentaje": 3,
    "dd_plazo_dias": 45,
    "validez_dias": 30,
    "exclusividad_dias": 60,
}

DEFAULT_LUGAR = "Madrid"

SERVICIOS_MANDATO_VENTA = [
    "Análisis y valoración de la compañía",
    "Preparación de documentación comercial (Teaser, Cuaderno de Venta)",
    "Identificación y contacto de potenciales compradores",
    "Coordinación del proceso de Due Diligence",
    "Asesoramiento en la negociación",
    "Coordinación del cierre de la operación",
]

SERVICIOS_MANDATO_COMPRA = [
    "Definición del perfil de adquisición",
    "Búsqueda activa de oportunidades",
    "Análisis preliminar de targets",
    "Valoración indicativa de oportunidades",
    "Coordinación del proceso de Due Diligence",
    "Asesoramiento en la negociación",
    "Coordinación del cierre de la operación",
]

DD_ALCANCE_OPTIONS = [
    "Due Diligence Financiero",
    "Due Diligence Fiscal",
    "Due Diligence Legal",
    "Due Diligence Laboral",
    "Due Diligence Comercial",
    "Due Diligence Operativo",
    "Due Diligence Medioambiental",
    "Due Diligence Tecnológico",
]

DOCUMENT_CONFIGS: Dict[str, Dict[str, Any]] = {
    "nda": {
        "label": "NDA / Acuerdo de Confidencialidad",
        "description": "Acuerdo de confidencialidad entre partes para proteger información sensible",
        "required_fields": ["empresa_nombre", "contraparte_nombre", "duracion_meses"],
        "filename_prefix": "NDA",
        "filename_field": "empresa_nombre",
    },
    "mandato_venta": {
        "label": "Mandato de Venta",
        "description": "Contrato de mandato para la venta de una empresa o participaciones",
        "required_fields": ["cliente_nombre", "target_nombre", "honorario_exito_porcentaje"],
        "filename_prefix": "Mandato_Venta",
        "filename_field": "target_nombre",
    },
    "mandato_compra": {
        "label": "Mandato de Compra",
        "description": "Contrato de mandato para la búsqueda y adquisición de empresas",
        "required_fields": ["cliente_nombre", "sectores_objetivo", "honorario_exito_porcentaje"],
        "filename_prefix": "Mandato_Compra",
        "filename_field": "cliente_nombre",
    },
    "loi": {
        "label": "Carta de Intenciones (LOI)",
        "description": "Carta de intenciones para manifestar el interés en una adquisición",
        "required_fields": ["comprador_nombre", "vendedor_nombre", "precio_indicativo"],
        "filename_prefix": "LOI",
        "filename_field": "target_nombre",
    },
}

DOCUMENT_TYPES = tuple(DOCUMENT_CONFIGS)

MESES = [
    "enero",
    "febrero",
    "marzo",
    "abril",
    "mayo",
    "junio",
    "julio",
    "agosto",
    "septiembre",
    "octubre",
    "noviembre",
    "diciembre",
]

ORDINALES = [
    "PRIMERA",
    "SEGUNDA",
    "TERCERA",
    "CUARTA",
    "QUINTA",
    "SEXTA",
    "SÉPTIMA",
    "OCTAVA",
    "NOVENA",
    "DÉCIMA",
    "UNDÉCIMA",
    "DUODÉCIMA",
]

NUMERIC_FIELDS = {
    "duracion_meses",
    "preaviso_dias",
    "penalizacion_euros",
    "valoracion_indicativa_min",
    "valoracion_indicativa_max",
    "honorario_fijo",
    "honorario_exito_porcentaje",
    "honorario_minimo",
    "gastos_provision",
    "facturacion_min",
    "facturacion_max",
    "ebitda_min",
    "ebitda_max",
    "empleados_min",
    "empleados_max",
    "inversion_min",
    "inversion_max",
    "porcentaje_adquisicion",
    "precio_indicativo",
    "dd_plazo_dias",
    "exclusividad_dias",
    "validez_dias",
}

LIST_FIELDS = {
    "servicios",
    "sectores_objetivo",
    "geografia_objetivo",
    "caracteristicas_deseadas",
    "exclusiones",
    "ajustes_precio",
    "dd_alcance",
    "condiciones_suspensivas",
    "clausulas_vinculantes",
}

BOOL_FIELDS = {"exclusividad", "renovacion_automatica", "vinculante"}

Block = Dict[str, Any]


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------
def format_currency(amount: Any) -> str:
    """
    Euro amount the way es-ES renders it: "1.250.000,00 €".
    Four-digit amounts are not grouped ("2500,00 €").
    """
    try:
        value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Importe no válido: {amount}") from exc
    sign = "-" if value < 0 else ""
    integer, fraction = f"{abs(value):.2f}".split(".")
    if len(integer) >= 5:
        groups = []
        while integer:
            groups.insert(0, integer[-3:])
            integer = integer[:-3]
        integer = ".".join(groups)
    return f"{sign}{integer},{fraction}\xa0€"


def format_long_date(value: Any) -> str:
    """17 de octubre de 2026"""
    parsed = _as_date(value)
    return f"{parsed.day} de {MESES[parsed.month - 1]} de {parsed.year}"


def format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _as_date(value: Any) -> date:
    if value is None or value == "":
        return date.today()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError as exc:
        raise ValidationError(f"Fecha no válida: {value}") from exc


def _to_number(field: str, value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Valor numérico no válido para {field}")
    if isinstance(value, (int, float)):
        return value
    try:
        number = float(str(value).strip().replace(",", "."))
    except ValueError as exc:
        raise ValidationError(f"Valor numérico no válido para {field}", {"field": field, "value": value}) from exc
    return int(number) if number.is_integer() else number


def _as_list(value: Any) -> List[str]:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    raise ValidationError("Se esperaba una lista de valores")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "si", "sí", "on"}
    return bool(value)


def _is_missing(value: Any) -> bool:
    return value is None or value == "" or value == []


def ordinal_title(index: int, title: str) -> str:
    return f"{ORDINALES[index]}.- {title}"


def numeric_title(index: int, title: str) -> str:
    return f"{index + 1}. {title}"


def safe_filename_part(value: Any) -> str:
    if value is None:
        return ""
    return re.sub(r"[^a-zA-Z0-9]", "_", str(value))


def download_filename(value: Any) -> Optional[str]:
    """Sanitize a caller-supplied PDF name; None when nothing usable is left."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("filename debe ser un texto")
    stem = value.strip()
    if stem.lower().endswith(".pdf"):
        stem = stem[:-4]
    stem = safe_filename_part(stem)
    return f"{stem}.pdf" if stem else None


# ---------------------------------------------------------------------------
# Input preparation
# ---------------------------------------------------------------------------
def prepare_document_data(doc_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Apply defaults, coerce field types and check the required fields."""
    config = DOCUMENT_CONFIGS.get(doc_type)
    if not config:
        raise ValidationError(f"Tipo de documento no soportado: {doc_type}", {"allowed": list(DOCUMENT_TYPES)})
    if not isinstance(data, dict):
        raise ValidationError("Los datos del documento deben ser un objeto JSON")

    prepared: Dict[str, Any] = {}
    for key, value in data.items():
        if key in NUMERIC_FIELDS:
            prepared[key] = _to_number(key, value)
        elif key in LIST_FIELDS:
            prepared[key] = _as_list(value)
        elif key in BOOL_FIELDS:
            prepared[key] = _as_bool(value)
        elif isinstance(value, str):
            prepared[key] = value.strip()
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            prepared[key] = str(value)
        else:
            prepared[key] = value

    defaults = dict(DEFAULT_VALUES)
    defaults["lugar"] = DEFAULT_LUGAR
    if doc_type == "mandato_venta":
        defaults["servicios"] = list(SERVICIOS_MANDATO_VENTA)
    elif doc_type == "mandato_compra":
        defaults["servicios"] = list(SERVICIOS_MANDATO_COMPRA)
    elif doc_type == "loi":
        defaults["porcentaje_adquisicion"] = 100
        defaults["dd_alcance"] = list(DD_ALCANCE_OPTIONS[:3])
    for key, value in defaults.items():
        if _is_missing(prepared.get(key)):
            prepared[key] = value

    missing = [field for field in config["required_fields"] if _is_missing(prepared.get(field))]
    if missing:
        raise ValidationError(f"Faltan campos obligatorios: {', '.join(missing)}", {"missing": missing})

    prepared["fecha"] = _as_date(prepared.get("fecha"))
    return prepared


def default_filename(doc_type: str, data: Dict[str, Any], today: Optional[date] = None) -> str:
    config = DOCUMENT_CONFIGS.get(doc_type)
    if not config:
        raise ValidationError(f"Tipo de documento no soportado: {doc_type}")
    stamp = (today or date.today()).strftime("%Y%m%d")
    name = safe_filename_part(data.get(config["filename_field"]))
    return f"{config['filename_prefix']}_{name}_{stamp}.pdf"


# ---------------------------------------------------------------------------
# Block helpers
# ---------------------------------------------------------------------------
def title(text: str) -> Block:
    return {"type": "title", "text": text}


def subtitle(text: str) -> Block:
    return {"type": "subtitle", "text": text}


def heading(text: str, align: str = "left") -> Block:
    return {"type": "heading", "text": text, "align": align}


def paragraph(text: str, bold: bool = False) -> Block:
    return {"type": "paragraph", "text": text, "bold": bold}


def bullets(items: Sequence[str]) -> Block:
    return {"type": "bullets", "items": list(items)}


def spacer(height_mm: float) -> Block:
    return {"type": "spacer", "height": height_mm}


def signatures(parties: Sequence[Dict[str, str]]) -> Block:
    return {"type": "signatures", "parties": list(parties)}


def numbered_sections(
    clauses: Sequence[Tuple[str, List[Block]]],
    numbering: Callable[[int, str], str] = ordinal_title,
) -> List[Block]:
    """Number the clauses that are present, in order."""
    return [
        {"type": "section", "title": numbering(index, clause_title), "content": content}
        for index, (clause_title, content) in enumerate(clauses)
    ]


def _party(label: str, nombre: str, representante: Optional[str]) -> Dict[str, str]:
    return {"label": label, "name": nombre, "representative": f"D./Dña. {representante or ''}".rstrip()}


def _cargo(cargo: Optional[str]) -> str:
    return f", en calidad de {cargo}" if cargo else ""


def _upper(value: Optional[str]) -> str:
    return (value or "").upper()


def _range_text(minimum: Any, maximum: Any, fmt: Callable[[Any], str]) -> str:
    parts = []
    if minimum:
        parts.append(f"desde {fmt(minimum)}")
    if maximum:
        parts.append(f"hasta {fmt(maximum)}")
    return " ".join(parts)


def _ley_jurisdiccion(data: Dict[str, Any], documento: str) -> str:
    return (
        f"{documento} se regirá e interpretará de conformidad con la {data['ley_aplicable']}. "
        f"Para la resolución de cualquier controversia derivada {_contraction(documento)}, las partes se someten "
        f"expresamente a la jurisdicción de los {data['jurisdiccion']}, con renuncia a cualquier otro fuero "
        "que pudiera corresponderles."
    )


def _contraction(documento: str) -> str:
    # "El presente Acuerdo" -> "del presente Acuerdo"
    return "del " + documento.split(" ", 1)[1]


# ---------------------------------------------------------------------------
# NDA
# ---------------------------------------------------------------------------
TIPO_OPERACION_TEXTO = {
    "compra": "la posible adquisición",
    "venta": "la posible venta",
}


def build_nda(data: Dict[str, Any]) -> List[Block]:
    blocks: List[Block] = [
        title("ACUERDO DE CONFIDENCIALIDAD"),
        subtitle(f"En {data['lugar']}, a {format_long_date(data['fecha'])}"),
        heading("REUNIDOS"),
        paragraph(
            f"De una parte, {_upper(data.get('empresa_nombre'))}, con C.I.F. {data.get('empresa_cif', '')}, "
            f"y domicilio social en {data.get('empresa_domicilio', '')}, representada por D./Dña. "
            f"{data.get('empresa_representante', '')}{_cargo(data.get('empresa_cargo_representante'))} "
            '(en adelante, la "PARTE REVELADORA").'
        ),
        paragraph(
            f"De otra parte, {_upper(data.get('contraparte_nombre'))}, con C.I.F. {data.get('contraparte_cif', '')}, "
            f"y domicilio social en {data.get('contraparte_domicilio', '')}, representada por D./Dña. "
            f"{data.get('contraparte_representante', '')}{_cargo(data.get('contraparte_cargo_representante'))} "
            '(en adelante, la "PARTE RECEPTORA").'
        ),
        paragraph(
            "Ambas partes se reconocen mutuamente capacidad legal suficiente para la firma del presente "
            "Acuerdo y, a tal efecto,"
        ),
        heading("EXPONEN"),
    ]

    operacion = TIPO_OPERACION_TEXTO.get(data.get("tipo_operacion") or "", "una posible inversión en")
    descripcion = f" {data['descripcion_operacion']}" if data.get("descripcion_operacion") else ""
    proyecto = f' (en adelante, "Proyecto {data["nombre_proyecto"]}")' if data.get("nombre_proyecto") else ""
    blocks.extend(
        [
            paragraph(
                f"PRIMERO.- Que las partes están interesadas en explorar {operacion}{descripcion}{proyecto}."
            ),
            paragraph(
                "SEGUNDO.- Que para poder analizar y evaluar dicha posibilidad, la PARTE REVELADORA deberá "
                "facilitar a la PARTE RECEPTORA determinada información de carácter confidencial sobre su "
                "actividad, situación financiera, clientes, proveedores y demás aspectos de su negocio."
            ),
            paragraph(
                "TERCERO.- Que las partes desean regular los términos y condiciones bajo los cuales la PARTE "
                "RECEPTORA recibirá y tratará dicha información confidencial."
            ),
            paragraph(
                "Por todo lo anterior, las partes acuerdan suscribir el presente ACUERDO DE CONFIDENCIALIDAD, "
                "que se regirá por las siguientes"
            ),
            heading("CLÁUSULAS", align="center"),
        ]
    )

    clauses: List[Tuple[str, List[Block]]] = [
        (
            "DEFINICIÓN DE INFORMACIÓN CONFIDENCIAL",
            [
                paragraph(
                    'A los efectos del presente Acuerdo, se considerará "Información Confidencial" toda '
                    "información, datos, documentos, análisis, estudios, informes, proyecciones, know-how, "
                    "secretos comerciales e industriales, estrategias, planes de negocio, información financiera, "
                    "comercial, técnica, legal, fiscal, laboral y de cualquier otra naturaleza, ya sea facilitada "
                    "de forma oral, escrita, electrónica o por cualquier otro medio, que la PARTE REVELADORA o sus "
                    "asesores proporcionen a la PARTE RECEPTORA en relación con la operación contemplada."
                )
            ],
        ),
        (
            "OBLIGACIONES DE CONFIDENCIALIDAD",
            [
                paragraph(
                    "La PARTE RECEPTORA se compromete a: (i) mantener la más estricta confidencialidad sobre la "
                    "Información Confidencial recibida; (ii) no revelar, publicar, ceder ni transferir la "
                    "Información Confidencial a terceros sin el previo consentimiento escrito de la PARTE "
                    "REVELADORA; (iii) utilizar la Información Confidencial exclusivamente para evaluar la "
                    "operación contemplada; (iv) adoptar las medidas de seguridad necesarias para proteger la "
                    "Información Confidencial con el mismo grado de cuidado que emplea para proteger su propia "
                    "información confidencial; (v) limitar el acceso a la Información Confidencial a aquellos de "
                    "sus empleados, directivos o asesores que necesiten conocerla para los fines permitidos, "
                    "asegurándose de que dichas personas cumplan con las obligaciones de confidencialidad aquí "
                    "establecidas."
                )
            ],
        ),
        (
            "EXCEPCIONES",
            [
                paragraph(
                    "Las obligaciones de confidencialidad no serán aplicables a la información que: (a) sea o "
                    "devenga de dominio público sin mediar incumplimiento por parte de la PARTE RECEPTORA; (b) "
                    "estuviera legítimamente en posesión de la PARTE RECEPTORA antes de su revelación por la PARTE "
                    "REVELADORA; (c) sea recibida de un tercero sin restricciones de confidencialidad y sin "
                    "incumplimiento de obligación alguna; (d) sea desarrollada independientemente por la PARTE "
                    "RECEPTORA sin utilizar la Información Confidencial; (e) deba ser revelada por imperativo legal "
                    "o por orden de autoridad competente, en cuyo caso la PARTE RECEPTORA notificará previamente a "
                    "la PARTE REVELADORA para que pueda adoptar las medidas que estime oportunas."
                )
            ],
        ),
        (
            "DURACIÓN",
            [
                paragraph(
                    "El presente Acuerdo entrará en vigor en la fecha de su firma y permanecerá vigente durante un "
                    f"período de {format_number(data['duracion_meses'])} meses. Las obligaciones de "
                    "confidencialidad aquí establecidas sobrevivirán a la terminación del presente Acuerdo durante "
                    "un período adicional de veinticuatro (24) meses."
                )
            ],
        ),
        (
            "DEVOLUCIÓN DE INFORMACIÓN",
            [
                paragraph(
                    "A requerimiento de la PARTE REVELADORA o a la terminación del presente Acuerdo, la PARTE "
                    "RECEPTORA se compromete a devolver o destruir toda la Información Confidencial recibida, "
                    "incluyendo cualesquiera copias, extractos o reproducciones de la misma, y a confirmar por "
                    "escrito el cumplimiento de esta obligación. No obstante, la PARTE RECEPTORA podrá conservar "
                    "una copia de la Información Confidencial en la medida en que esté obligada por la legislación "
                    "aplicable o por sus políticas internas de cumplimiento normativo."
                )
            ],
        ),
    ]
    if data.get("penalizacion_euros"):
        clauses.append(
            (
                "PENALIZACIONES",
                [
                    paragraph(
                        "El incumplimiento de las obligaciones de confidencialidad establecidas en el presente "
                        "Acuerdo dará derecho a la PARTE REVELADORA a reclamar una indemnización por daños y "
                        "perjuicios, que las partes acuerdan fijar, con carácter de cláusula penal, en la cantidad "
                        f"de {format_currency(data['penalizacion_euros'])}, sin perjuicio del derecho de la PARTE "
                        "REVELADORA a reclamar la indemnización de los daños y perjuicios adicionales que pudiera "
                        "acreditar."
                    )
                ],
            )
        )
    clauses.append(
        (
            "AUSENCIA DE OTROS COMPROMISOS",
            [
                paragraph(
                    "El presente Acuerdo no implica compromiso alguno de las partes para llevar a cabo la operación "
                    "contemplada ni para continuar las negociaciones. Cualquier decisión sobre la realización de "
                    "dicha operación requerirá la celebración de acuerdos adicionales por escrito."
                )
            ],
        )
    )
    clauses.append(("LEY APLICABLE Y JURISDICCIÓN", [paragraph(_ley_jurisdiccion(data, "El presente Acuerdo"))]))
    blocks.extend(numbered_sections(clauses))

    blocks.extend(
        [
            spacer(15),
            paragraph(
                "Y en prueba de conformidad con cuanto antecede, las partes firman el presente Acuerdo de "
                "Confidencialidad por duplicado y a un solo efecto, en el lugar y fecha indicados en el "
                "encabezamiento."
            ),
            signatures(
                [
                    _party("LA PARTE REVELADORA", data.get("empresa_nombre", ""), data.get("empresa_representante")),
                    _party(
                        "LA PARTE RECEPTORA", data.get("contraparte_nombre", ""), data.get("contraparte_representante")
                    ),
                ]
            ),
        ]
    )
    return blocks


# ---------------------------------------------------------------------------
# Mandates
# ---------------------------------------------------------------------------
def _mandate_header(data: Dict[str, Any], titulo: str) -> List[Block]:
    return [
        title(titulo),
        subtitle(f"En {data['lugar']}, a {format_long_date(data['fecha'])}"),
        heading("REUNIDOS"),
        paragraph(
            f"De una parte, {_upper(data['asesor_nombre'])}, con C.I.F. {data['asesor_cif']}, y domicilio social "
            f"en {data['asesor_domicilio']}, representada por D./Dña. {data['asesor_representante']} "
            '(en adelante, el "ASESOR").'
        ),
        paragraph(
            f"De otra parte, {_upper(data.get('cliente_nombre'))}, con C.I.F. {data.get('cliente_cif', '')}, "
            f"y domicilio social en {data.get('cliente_domicilio', '')}, representada por D./Dña. "
            f"{data.get('cliente_representante', '')}{_cargo(data.get('cliente_cargo_representante'))} "
            '(en adelante, el "CLIENTE" o "MANDANTE").'
        ),
        paragraph(
            "Ambas partes se reconocen mutuamente capacidad legal suficiente para la firma del presente contrato "
            "y, a tal efecto,"
        ),
        heading("EXPONEN"),
    ]


def _mandate_signatures(data: Dict[str, Any], closing: str) -> List[Block]:
    return [
        spacer(15),
        paragraph(closing),
        signatures(
            [
                _party("EL ASESOR", data["asesor_nombre"], data["asesor_representante"]),
                _party("EL CLIENTE", data.get("cliente_nombre", ""), data.get("cliente_representante")),
            ]
        ),
    ]


def _honorarios(data: Dict[str, Any], fijo_texto: str, exito_texto: str, minimo_texto: str) -> List[Block]:
    content = [paragraph("Los honorarios del ASESOR se estructuran de la siguiente manera:")]
    letra = "a)"
    if data.get("honorario_fijo"):
        content.append(paragraph(f"a) {fijo_texto.format(importe=format_currency(data['honorario_fijo']))}"))
        letra = "b)"
    exito = f"{letra} Honorario de éxito: {format_number(data['honorario_exito_porcentaje'])}% {exito_texto}"
    if data.get("honorario_minimo"):
        exito += " " + minimo_texto.format(importe=format_currency(data["honorario_minimo"]))
    content.append(paragraph(exito))
    return content


def build_mandato_venta(data: Dict[str, Any]) -> List[Block]:
    blocks = _mandate_header(data, "CONTRATO DE MANDATO DE VENTA")
    target = _upper(data.get("target_nombre"))
    target_cif = f" (C.I.F. {data['target_cif']})" if data.get("target_cif") else ""
    target_desc = f", sociedad dedicada a {data['target_descripcion']}" if data.get("target_descripcion") else ""
    blocks.extend(
        [
            paragraph(
                "I.- Que el CLIENTE es titular de participaciones/acciones representativas del capital social de "
                f'{target}{target_cif}{target_desc} (en adelante, la "SOCIEDAD" o "TARGET").'
            ),
            paragraph(
                "II.- Que el CLIENTE desea explorar la posible transmisión de su participación en la SOCIEDAD y, "
                "a tal efecto, desea contratar los servicios profesionales de asesoramiento del ASESOR."
            ),
            paragraph(
                "III.- Que el ASESOR es una firma de asesoramiento especializada en operaciones corporativas de "
                "compraventa de empresas (M&A) y dispone de los medios y experiencia necesarios para prestar los "
                "servicios requeridos."
            ),
            paragraph(
                "Por todo lo anterior, las partes acuerdan suscribir el presente CONTRATO DE MANDATO DE VENTA, que "
                "se regirá por las siguientes"
            ),
            heading("CLÁUSULAS", align="center"),
        ]
    )

    clauses: List[Tuple[str, List[Block]]] = [
        (
            "OBJETO DEL MANDATO",
            [
                paragraph(
                    "El CLIENTE encomienda al ASESOR, quien acepta, la prestación de servicios de asesoramiento "
                    "financiero y coordinación del proceso de venta de la participación del CLIENTE en la "
                    "SOCIEDAD, incluyendo la búsqueda de potenciales compradores, la coordinación de las "
                    "negociaciones y el acompañamiento hasta el cierre de la operación."
                )
            ],
        ),
        (
            "SERVICIOS A PRESTAR",
            [paragraph("El ASESOR prestará los siguientes servicios:"), bullets(data["servicios"])],
        ),
    ]
    if data.get("valoracion_indicativa_min") and data.get("valoracion_indicativa_max"):
        metodo = f", basándose en {data['valoracion_metodo']}" if data.get("valoracion_metodo") else ""
        clauses.append(
            (
                "VALORACIÓN INDICATIVA",
                [
                    paragraph(
                        "A efectos meramente orientativos y sin que ello implique compromiso alguno sobre el precio "
                        "final de la operación, las partes estiman que el valor de la SOCIEDAD se sitúa en un rango "
                        f"entre {format_currency(data['valoracion_indicativa_min'])} y "
                        f"{format_currency(data['valoracion_indicativa_max'])}{metodo}. Dicho valor podrá ser "
                        "ajustado en función del análisis de due diligence y las condiciones del mercado."
                    )
                ],
            )
        )

    if data.get("exclusividad"):
        exclusividad = (
            "El presente mandato tiene carácter de EXCLUSIVO. Durante la vigencia del mismo, el CLIENTE se "
            "compromete a no encomendar servicios similares a otros asesores ni a realizar gestiones directas para "
            "la venta de la SOCIEDAD sin la intervención del ASESOR. En caso de que el CLIENTE reciba cualquier "
            "manifestación de interés de terceros, deberá comunicarlo inmediatamente al ASESOR."
        )
    else:
        exclusividad = (
            "El presente mandato tiene carácter de NO EXCLUSIVO. El CLIENTE podrá encomendar servicios similares a "
            "otros asesores o realizar gestiones directas para la venta de la SOCIEDAD."
        )
    clauses.append(("EXCLUSIVIDAD", [paragraph(exclusividad)]))

    duracion = (
        f"El presente contrato tendrá una duración de {format_number(data['duracion_meses'])} meses desde la "
        "fecha de su firma."
    )
    if data.get("renovacion_automatica"):
        duracion += (
            " El contrato se prorrogará automáticamente por períodos sucesivos de igual duración, salvo que "
            "cualquiera de las partes comunique a la otra su voluntad de no renovarlo con una antelación mínima de "
            f"{format_number(data['preaviso_dias'])} días a la fecha de vencimiento."
        )
    else:
        duracion += (
            " A su vencimiento, el contrato quedará extinguido salvo acuerdo expreso de las partes para su "
            "renovación."
        )
    clauses.append(("DURACIÓN", [paragraph(duracion)]))

    clauses.append(
        (
            "HONORARIOS",
            _honorarios(
                data,
                "Honorario fijo inicial: {importe}, pagadero a la firma del presente contrato, como provisión de "
                "fondos a cuenta de los servicios.",
                "del valor de la transacción (Enterprise Value), pagadero a la firma del contrato de compraventa o "
                "al cierre de la operación.",
                "En todo caso, el honorario de éxito no será inferior a {importe}.",
            ),
        )
    )
    if data.get("gastos_provision"):
        clauses.append(
            (
                "GASTOS",
                [
                    paragraph(
                        f"El CLIENTE abonará una provisión inicial de {format_currency(data['gastos_provision'])} "
                        "para cubrir los gastos directos del proceso (viajes, due diligence inicial, data room "
                        "virtual, etc.). Los gastos se facturarán según consumo y la provisión no utilizada será "
                        "devuelta al CLIENTE."
                    )
                ],
            )
        )
    clauses.append(
        (
            "CONFIDENCIALIDAD",
            [
                paragraph(
                    "Las partes se obligan a mantener la más estricta confidencialidad sobre la existencia del "
                    "presente mandato, el proceso de venta y toda la información intercambiada durante el mismo. "
                    "Esta obligación de confidencialidad sobrevivirá a la terminación del presente contrato."
                )
            ],
        )
    )
    clauses.append(("LEY APLICABLE Y JURISDICCIÓN", [paragraph(_ley_jurisdiccion(data, "El presente contrato"))]))
    blocks.extend(numbered_sections(clauses))
    blocks.extend(
        _mandate_signatures(
            data,
            "Y en prueba de conformidad con cuanto antecede, las partes firman el presente contrato por duplicado "
            "y a un solo efecto, en el lugar y fecha indicados en el encabezamiento.",
        )
    )
    return blocks


def investment_criteria(data: Dict[str, Any]) -> List[str]:
    """Bullet lines describing the buyer's search profile."""
    criterios = []
    if data.get("sectores_objetivo"):
        criterios.append(f"Sectores de actividad: {', '.join(data['sectores_objetivo'])}")
    if data.get("geografia_objetivo"):
        criterios.append(f"Ubicación geográfica: {', '.join(data['geografia_objetivo'])}")
    if data.get("facturacion_min") or data.get("facturacion_max"):
        criterios.append(
            f"Facturación: {_range_text(data.get('facturacion_min'), data.get('facturacion_max'), format_currency)}"
        )
    if data.get("ebitda_min") or data.get("ebitda_max"):
        criterios.append(f"EBITDA: {_range_text(data.get('ebitda_min'), data.get('ebitda_max'), format_currency)}")
    if data.get("empleados_min") or data.get("empleados_max"):
        criterios.append(
            "Número de empleados: "
            + _range_text(data.get("empleados_min"), data.get("empleados_max"), format_number)
        )
    if data.get("inversion_min") or data.get("inversion_max"):
        criterios.append(
            "Rango de inversión: "
            + _range_text(data.get("inversion_min"), data.get("inversion_max"), format_currency)
        )
    if data.get("estructura_preferida"):
        criterios.append(f"Estructura preferida: {data['estructura_preferida']}")
    if data.get("caracteristicas_deseadas"):
        criterios.append(f"Características deseadas: {', '.join(data['caracteristicas_deseadas'])}")
    return criterios


def build_mandato_compra(data: Dict[str, Any]) -> List[Block]:
    blocks = _mandate_header(data, "CONTRATO DE MANDATO DE COMPRA")
    blocks.extend(
        [
            paragraph(
                "I.- Que el CLIENTE está interesado en identificar oportunidades de adquisición de empresas o "
                "participaciones societarias que cumplan determinados criterios de inversión."
            ),
            paragraph(
                "II.- Que el CLIENTE desea contratar los servicios profesionales del ASESOR para la búsqueda activa "
                "de oportunidades de inversión, análisis de las mismas y asesoramiento en el proceso de adquisición."
            ),
            paragraph(
                "III.- Que el ASESOR es una firma de asesoramiento especializada en operaciones corporativas de "
                "compraventa de empresas (M&A) y dispone de los medios, experiencia y red de contactos necesarios "
                "para prestar los servicios requeridos."
            ),
            paragraph(
                "Por todo lo anterior, las partes acuerdan suscribir el presente CONTRATO DE MANDATO DE COMPRA, que "
                "se regirá por las siguientes"
            ),
            heading("CLÁUSULAS", align="center"),
        ]
    )

    perfil = [
        paragraph("El ASESOR buscará oportunidades de inversión que cumplan los siguientes criterios:"),
        bullets(investment_criteria(data)),
    ]
    if data.get("exclusiones"):
        perfil.extend([paragraph("Se excluyen expresamente:"), bullets(data["exclusiones"])])

    if data.get("exclusividad"):
        exclusividad = (
            "El presente mandato tiene carácter de EXCLUSIVO para los sectores y geografías definidos. Durante la "
            "vigencia del mismo, el CLIENTE se compromete a no encomendar servicios similares a otros asesores para "
            "la búsqueda de oportunidades que cumplan el perfil definido."
        )
    else:
        exclusividad = (
            "El presente mandato tiene carácter de NO EXCLUSIVO. El CLIENTE podrá encomendar servicios similares a "
            "otros asesores o realizar gestiones directas para la búsqueda de oportunidades de inversión."
        )

    duracion = (
        f"El presente contrato tendrá una duración de {format_number(data['duracion_meses'])} meses desde la "
        "fecha de su firma."
    )
    if data.get("renovacion_automatica"):
        duracion += (
            " El contrato se prorrogará automáticamente por períodos sucesivos de igual duración, salvo que "
            "cualquiera de las partes comunique a la otra su voluntad de no renovarlo con una antelación mínima de "
            f"{format_number(data['preaviso_dias'])} días."
        )

    clauses: List[Tuple[str, List[Block]]] = [
        (
            "OBJETO DEL MANDATO",
            [
                paragraph(
                    "El CLIENTE encomienda al ASESOR, quien acepta, la prestación de servicios de asesoramiento "
                    "financiero para la búsqueda, identificación, análisis y adquisición de empresas o "
                    "participaciones societarias que cumplan los criterios de inversión definidos en el presente "
                    "contrato."
                )
            ],
        ),
        ("PERFIL DE INVERSIÓN", perfil),
        (
            "SERVICIOS A PRESTAR",
            [paragraph("El ASESOR prestará los siguientes servicios:"), bullets(data["servicios"])],
        ),
        ("EXCLUSIVIDAD", [paragraph(exclusividad)]),
        ("DURACIÓN", [paragraph(duracion)]),
        (
            "HONORARIOS",
            _honorarios(
                data,
                "Honorario fijo mensual (retainer): {importe}, pagadero por adelantado al inicio de cada mes.",
                "del valor de la transacción (Enterprise Value), pagadero al cierre de cualquier operación de "
                "adquisición realizada durante la vigencia del mandato o durante los 12 meses siguientes a su "
                "terminación, siempre que la oportunidad hubiera sido presentada por el ASESOR.",
                "El honorario de éxito no será inferior a {importe}.",
            ),
        ),
    ]
    if data.get("gastos_provision"):
        clauses.append(
            (
                "GASTOS",
                [
                    paragraph(
                        f"El CLIENTE abonará una provisión inicial de {format_currency(data['gastos_provision'])} "
                        "para cubrir gastos directos del proceso de búsqueda y análisis."
                    )
                ],
            )
        )
    clauses.append(
        (
            "CONFIDENCIALIDAD",
            [
                paragraph(
                    "Las partes se obligan a mantener la más estricta confidencialidad sobre la existencia del "
                    "presente mandato, los criterios de búsqueda del CLIENTE y toda la información intercambiada."
                )
            ],
        )
    )
    clauses.append(
        (
            "LEY APLICABLE Y JURISDICCIÓN",
            [
                paragraph(
                    f"El presente contrato se regirá por la {data['ley_aplicable']}. Para la resolución de "
                    f"controversias, las partes se someten a los {data['jurisdiccion']}."
                )
            ],
        )
    )
    blocks.extend(numbered_sections(clauses))
    blocks.extend(
        _mandate_signatures(
            data,
            "Y en prueba de conformidad, las partes firman el presente contrato por duplicado en el lugar y fecha "
            "indicados.",
        )
    )
    return blocks


# ---------------------------------------------------------------------------
# Letter of intent
# ---------------------------------------------------------------------------
def build_loi(data: Dict[str, Any]) -> List[Block]:
    porcentaje = format_number(data["porcentaje_adquisicion"])
    target_nombre = data.get("target_nombre") or ""
    target_cif = f" (C.I.F. {data['target_cif']})" if data.get("target_cif") else ""
    blocks: List[Block] = [
        title("CARTA DE INTENCIONES"),
        subtitle("(LETTER OF INTENT)"),
        subtitle(f"{data['lugar']}, {format_long_date(data['fecha'])}"),
        paragraph("A la atención de:"),
        paragraph(data["vendedor_nombre"], bold=True),
        paragraph(f"Att: D./Dña. {data.get('vendedor_representante', '')}"),
        paragraph(data.get("vendedor_domicilio") or ""),
        spacer(8),
        paragraph(f"Asunto: Carta de Intenciones para la adquisición de {target_nombre}", bold=True),
        paragraph("Estimados Sres.,"),
        paragraph(
            f"En nombre de {_upper(data['comprador_nombre'])} (C.I.F. {data.get('comprador_cif', '')}), con "
            f"domicilio en {data.get('comprador_domicilio', '')}, representada por D./Dña. "
            f"{data.get('comprador_representante', '')} (en adelante, el \"COMPRADOR\"), nos dirigimos a ustedes "
            f"para manifestar nuestro interés en la adquisición del {porcentaje}% del capital social de "
            f'{target_nombre.upper()}{target_cif} (en adelante, la "SOCIEDAD" o "TARGET").'
        ),
        paragraph(
            'La presente carta de intenciones (en adelante, la "LOI" o "Carta") tiene por objeto establecer los '
            "términos y condiciones principales bajo los cuales el COMPRADOR estaría dispuesto a llevar a cabo la "
            "transacción contemplada, sujeto a la realización satisfactoria de un proceso de due diligence y a la "
            "negociación y firma de los documentos definitivos."
        ),
        heading("TÉRMINOS PROPUESTOS"),
    ]

    dedicada = f", dedicada a {data['target_descripcion']}" if data.get("target_descripcion") else ""
    precio = f'El precio propuesto para la adquisición es de {format_currency(data["precio_indicativo"])} (el "Precio").'
    if data.get("estructura_pago"):
        precio += f" La estructura de pago propuesta es: {data['estructura_pago']}."
    if data.get("ajustes_precio"):
        precio += f" El Precio estará sujeto a los siguientes ajustes: {', '.join(data['ajustes_precio'])}."

    clauses: List[Tuple[str, List[Block]]] = [
        (
            "OBJETO DE LA TRANSACCIÓN",
            [paragraph(f"Adquisición del {porcentaje}% del capital social de la SOCIEDAD{dedicada}.")],
        ),
        ("PRECIO", [paragraph(precio)]),
        (
            "DUE DILIGENCE",
            [
                paragraph(
                    "El COMPRADOR llevará a cabo un proceso de due diligence sobre la SOCIEDAD durante un período "
                    f"de {format_number(data['dd_plazo_dias'])} días naturales contados desde la fecha de "
                    "aceptación de la presente LOI. El alcance del due diligence incluirá:"
                ),
                bullets(data["dd_alcance"]),
                paragraph(
                    "El VENDEDOR facilitará al COMPRADOR acceso completo a toda la información, documentación y "
                    "personal necesarios para la realización del due diligence."
                ),
            ],
        ),
    ]
    if data.get("exclusividad"):
        clauses.append(
            (
                "EXCLUSIVIDAD",
                [
                    paragraph(
                        f"Durante un período de {format_number(data['exclusividad_dias'])} días naturales desde la "
                        "aceptación de esta LOI, el VENDEDOR se compromete a no iniciar, continuar o mantener "
                        "negociaciones con terceros respecto a la venta de la SOCIEDAD, ni a facilitar información a "
                        "terceros interesados."
                    )
                ],
            )
        )
    if data.get("condiciones_suspensivas"):
        clauses.append(
            (
                "CONDICIONES SUSPENSIVAS",
                [
                    paragraph(
                        "La consumación de la transacción estará sujeta a las siguientes condiciones suspensivas:"
                    ),
                    bullets(data["condiciones_suspensivas"]),
                ],
            )
        )
    clauses.append(
        (
            "CONFIDENCIALIDAD",
            [
                paragraph(
                    "Las partes se comprometen a mantener la más estricta confidencialidad sobre la existencia y "
                    "contenido de la presente LOI, así como sobre cualquier información intercambiada en el marco de "
                    "las negociaciones. Esta obligación tiene carácter vinculante y sobrevivirá a la terminación de "
                    "las negociaciones."
                )
            ],
        )
    )
    if data.get("vinculante"):
        caracter = (
            "La presente LOI tiene carácter VINCULANTE en su totalidad. Las partes se obligan a negociar de buena "
            "fe los documentos definitivos de la transacción."
        )
    else:
        exclusividad = ", exclusividad" if data.get("exclusividad") else ""
        caracter = (
            "La presente LOI tiene carácter NO VINCULANTE, excepto por las cláusulas relativas a "
            f"confidencialidad{exclusividad} y gastos, que tendrán carácter vinculante. Las partes no estarán "
            "obligadas a consumar la transacción hasta la firma de los documentos definitivos."
        )
    clauses.append(("CARÁCTER DE LA LOI", [paragraph(caracter)]))

    validez = (
        f"La presente LOI tendrá validez durante {format_number(data['validez_dias'])} días naturales desde su "
        "fecha. Transcurrido dicho plazo sin que el VENDEDOR haya comunicado su aceptación, la presente LOI quedará "
        "sin efecto automáticamente."
    )
    if data.get("cierre_estimado"):
        validez += (
            " En caso de aceptación, las partes estiman que el cierre de la operación podría producirse en "
            f"{data['cierre_estimado']}."
        )
    clauses.append(("VALIDEZ", [paragraph(validez)]))
    clauses.append(
        (
            "LEY APLICABLE Y JURISDICCIÓN",
            [
                paragraph(
                    f"La presente LOI se regirá por la {data['ley_aplicable']}. Para cualquier controversia, las "
                    f"partes se someten a los {data['jurisdiccion']}."
                )
            ],
        )
    )
    blocks.extend(numbered_sections(clauses, numbering=numeric_title))

    blocks.extend(
        [
            spacer(10),
            paragraph(
                "Quedamos a su disposición para cualquier aclaración que precisen sobre los términos de la presente "
                "propuesta."
            ),
            paragraph("Atentamente,"),
            signatures(
                [_party("Por el COMPRADOR:", data["comprador_nombre"], data.get("comprador_representante"))]
            ),
            paragraph("ACEPTACIÓN:", bold=True),
            paragraph(
                "Por la presente, manifestamos nuestra conformidad con los términos de la presente Carta de "
                "Intenciones."
            ),
            signatures([_party("Por el VENDEDOR:", data["vendedor_nombre"], data.get("vendedor_representante"))]),
            paragraph("Fecha de aceptación: ____________________"),
        ]
    )
    return blocks


BUILDERS: Dict[str, Callable[[Dict[str, Any]], List[Block]]] = {
    "nda": build_nda,
    "mandato_venta": build_mandato_venta,
    "mandato_compra": build_mandato_compra,
    "loi": build_loi,
}


def build_document(doc_type: str, data: Dict[str, Any]) -> List[Block]:
    """Validate the input and return the layout blocks for one document."""
    return build_prepared_document(doc_type, prepare_document_data(doc_type, data))


def build_prepared_document(doc_type: str, prepared: Dict[str, Any]) -> List[Block]:
    return BUILDERS[doc_type](prepared)


def document_title(doc_type: str) -> str:
    config = DOCUMENT_CONFIGS.get(doc_type)
    return config["label"] if config else doc_type
