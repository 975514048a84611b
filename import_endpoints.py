import logging

import azure.functions as func

from function_app import app
from http_shared import json_response, query_params, run_admin_handler
from services.mandato_import import import_brevo_deals_csv, import_mandatos_venta, rows_from_mandatos_venta_csv

logger = logging.getLogger(__name__)

IMPORT_FORMATS = ("brevo_deals", "mandatos_venta")


def _request_text(req: func.HttpRequest) -> str:
    raw = req.get_body() or b""
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        # Spreadsheet exports are often Windows-1252.
        return raw.decode("cp1252")


def _import(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    import_format = query_params(req).get("format") or "brevo_deals"
    if import_format not in IMPORT_FORMATS:
        raise ValueError(f"format must be one of: {', '.join(IMPORT_FORMATS)}")
    text = _request_text(req)
    if not text.strip():
        raise ValueError("CSV body is required")

    if import_format == "brevo_deals":
        result = import_brevo_deals_csv(db, text)
    else:
        result = import_mandatos_venta(db, rows_from_mandatos_venta_csv(text))
    logger.info("Import %s finished by %s", import_format, auth.email or "service")
    return json_response(result, cors)


@app.function_name(name="ImportMandatos")
@app.route(route="imports/mandatos", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def import_mandatos(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["POST", "OPTIONS"], _import, "ImportMandatos")
