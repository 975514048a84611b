import logging
from typing import Any, Dict

import azure.functions as func

from function_app import app
from http_shared import json_response, parse_json_body, route_param, run_admin_handler
from services.legal_documents import (
    DD_ALCANCE_OPTIONS,
    DEFAULT_VALUES,
    DOCUMENT_CONFIGS,
    SERVICIOS_MANDATO_COMPRA,
    SERVICIOS_MANDATO_VENTA,
    build_prepared_document,
    default_filename,
    document_title,
    download_filename,
    prepare_document_data,
)
from services.pdf_renderer import render_pdf
from shared.errors import ValidationError

logger = logging.getLogger(__name__)


def generate_document_pdf(doc_type: str, data: Dict[str, Any]) -> tuple:
    """Return (pdf bytes, filename) for one document request."""
    prepared = prepare_document_data(doc_type, data)
    filename = download_filename(prepared.get("filename")) or default_filename(doc_type, prepared)
    blocks = build_prepared_document(doc_type, prepared)
    return render_pdf(blocks, title=document_title(doc_type)), filename


def _catalog(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    return json_response(
        {
            "documents": [
                {"type": doc_type, "label": config["label"], "description": config["description"],
                 "requiredFields": config["required_fields"]}
                for doc_type, config in DOCUMENT_CONFIGS.items()
            ],
            "defaults": DEFAULT_VALUES,
            "serviciosVenta": SERVICIOS_MANDATO_VENTA,
            "serviciosCompra": SERVICIOS_MANDATO_COMPRA,
            "ddAlcance": DD_ALCANCE_OPTIONS,
        },
        cors,
    )


def _generate(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    doc_type = route_param(req, "doc_type")
    if not doc_type:
        raise ValidationError("Tipo de documento requerido")
    pdf, filename = generate_document_pdf(doc_type, parse_json_body(req))
    headers = dict(cors)
    headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    logger.info("Generated %s (%s bytes)", filename, len(pdf))
    return func.HttpResponse(body=pdf, status_code=200, mimetype="application/pdf", headers=headers)


@app.function_name(name="DocumentCatalog")
@app.route(route="documents", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def document_catalog(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["GET", "OPTIONS"], _catalog, "DocumentCatalog")


@app.function_name(name="GenerateDocument")
@app.route(route="documents/{doc_type}", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def generate_document(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["POST", "OPTIONS"], _generate, "GenerateDocument")
