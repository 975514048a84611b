import logging

import azure.functions as func

from function_app import app
from http_shared import json_response, parse_json_body, run_admin_handler
from services.email_service import EmailConfigError, SendResult, send_email_request

logger = logging.getLogger(__name__)


def _send_email(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    body = parse_json_body(req)
    try:
        result = send_email_request(db, body)
    except EmailConfigError as exc:
        logger.error("send-email: %s", exc)
        result = SendResult(success=False, provider="none", error=str(exc))
    return json_response(result.to_dict(), cors, status_code=200 if result.success else 500)


@app.function_name(name="SendEmail")
@app.route(route="send-email", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def send_email(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["POST", "OPTIONS"], _send_email, "SendEmail")
