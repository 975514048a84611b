import logging

import azure.functions as func
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from function_app import app
from http_shared import json_response, parse_bool
from shared.db import SessionLocal
from utils.cors import build_cors_headers

logger = logging.getLogger(__name__)


def database_ok() -> bool:
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as exc:
        logger.error("Health check database error: %s", exc)
        return False
    finally:
        db.close()


@app.function_name(name="HealthApi")
@app.route(route="health", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def health_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["GET", "OPTIONS"])
    if req.method == "OPTIONS":
        return func.HttpResponse("", status_code=204, headers=cors)
    if not parse_bool(req.params.get("deep"), default=False):
        return func.HttpResponse("OK", status_code=200, headers=cors)
    ok = database_ok()
    return json_response({"status": "ok" if ok else "degraded", "database": ok}, cors, status_code=200 if ok else 503)
