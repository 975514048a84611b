import logging

import azure.functions as func

from function_app import app
from http_shared import (
    flag_enabled,
    json_response,
    parse_bool,
    parse_int,
    parse_json_body,
    query_params,
    route_param,
    run_admin_handler,
)
from schemas.email_queue_schema import normalize_queue_type, validate_enqueue, validate_queue_filters
from services.email_queue_processor import process_email_queue
from services.email_queue_service import (
    bulk_retry_failed,
    cancel_email,
    clear_old_emails,
    enqueue_email,
    fetch_email_queue,
    fetch_queue_stats,
    get_email_by_id,
    retry_email,
)
from shared.db import SessionLocal
from shared.errors import NotFoundError, require_id

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


def _queue_schedulers_disabled() -> bool:
    return flag_enabled("DISABLE_QUEUE_SCHEDULERS")


def _process_queue(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    body = parse_json_body(req)
    batch_size = parse_int(body.get("batchSize"), 0) or None
    result = process_email_queue(
        db,
        batch_size=batch_size,
        process_retries=parse_bool(body.get("processRetries"), default=True),
        queue_type=normalize_queue_type(body.get("queueType")),
    )
    return json_response(result, cors)


def _list_or_enqueue(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    if req.method == "POST":
        params = validate_enqueue(parse_json_body(req))
        email_id = enqueue_email(db, params, created_by=auth.user_id)
        db.commit()
        return json_response({"success": True, "id": email_id}, cors, status_code=201)

    params = query_params(req)
    filters = validate_queue_filters(params)
    page = max(parse_int(params.get("page"), 0), 0)
    page_size = min(max(parse_int(params.get("pageSize"), 50), 1), MAX_PAGE_SIZE)
    return json_response(fetch_email_queue(db, filters, page=page, page_size=page_size), cors)


def _stats(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    return json_response({"stats": fetch_queue_stats(db)}, cors)


def _detail(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    email_id = require_id(route_param(req, "email_id"))
    email = get_email_by_id(db, email_id)
    if not email:
        raise NotFoundError("Email no encontrado", {"id": email_id})
    return json_response(email, cors)


def _cancel(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    email_id = require_id(route_param(req, "email_id"))
    cancelled = cancel_email(db, email_id)
    db.commit()
    return json_response({"success": cancelled, "id": email_id}, cors)


def _retry(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    email_id = require_id(route_param(req, "email_id"))
    retry_email(db, email_id)
    db.commit()
    return json_response({"success": True, "id": email_id}, cors)


def _retry_failed(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    body = parse_json_body(req)
    count = bulk_retry_failed(db, queue_type=normalize_queue_type(body.get("queueType")))
    db.commit()
    return json_response({"success": True, "count": count}, cors)


def _clear(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    body = parse_json_body(req)
    days_old = max(parse_int(body.get("daysOld"), 30), 1)
    count = clear_old_emails(db, days_old=days_old)
    db.commit()
    return json_response({"success": True, "count": count}, cors)


@app.function_name(name="EmailQueueProcess")
@app.route(route="email-queue/process", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def email_queue_process(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["POST", "OPTIONS"], _process_queue, "EmailQueueProcess")


@app.function_name(name="EmailQueueScheduler")
@app.timer_trigger(schedule="0 */1 * * * *", arg_name="timer", run_on_startup=False, use_monitor=True)
def email_queue_scheduler(timer: func.TimerRequest) -> None:
    if _queue_schedulers_disabled():
        logger.info("EmailQueueScheduler disabled by DISABLE_QUEUE_SCHEDULERS")
        return
    if timer.past_due:
        logger.warning("EmailQueueScheduler is running late")
    db = SessionLocal()
    try:
        result = process_email_queue(db)
        logger.info("EmailQueueScheduler: %s", {k: v for k, v in result.items() if k != "errors"})
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.error("EmailQueueScheduler failed: %s", exc)
    finally:
        db.close()


@app.function_name(name="EmailQueueCollection")
@app.route(route="email-queue", methods=["GET", "POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def email_queue_collection(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["GET", "POST", "OPTIONS"], _list_or_enqueue, "EmailQueueCollection")


@app.function_name(name="EmailQueueStats")
@app.route(route="email-queue/stats", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def email_queue_stats(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["GET", "OPTIONS"], _stats, "EmailQueueStats")


@app.function_name(name="EmailQueueRetryFailed")
@app.route(route="email-queue/retry-failed", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def email_queue_retry_failed(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["POST", "OPTIONS"], _retry_failed, "EmailQueueRetryFailed")


@app.function_name(name="EmailQueueClear")
@app.route(route="email-queue/clear", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def email_queue_clear(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["POST", "OPTIONS"], _clear, "EmailQueueClear")


@app.function_name(name="EmailQueueDetail")
@app.route(route="email-queue/{email_id}", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def email_queue_detail(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["GET", "OPTIONS"], _detail, "EmailQueueDetail")


@app.function_name(name="EmailQueueCancel")
@app.route(route="email-queue/{email_id}/cancel", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def email_queue_cancel(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["POST", "OPTIONS"], _cancel, "EmailQueueCancel")


@app.function_name(name="EmailQueueRetry")
@app.route(route="email-queue/{email_id}/retry", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def email_queue_retry(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["POST", "OPTIONS"], _retry, "EmailQueueRetry")
