import logging

import azure.functions as func

from function_app import app
from http_shared import (
    flag_enabled,
    json_response,
    parse_int,
    parse_json_body,
    query_params,
    route_param,
    run_admin_handler,
)
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
    queue_item_to_dict,
    retry_brevo_item,
)
from services.brevo_service import BrevoConfigError, get_brevo_client
from shared.config import get_brevo_settings
from shared.db import SessionLocal

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


def _process(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    body = parse_json_body(req)
    limit = parse_int(body.get("limit"), get_brevo_settings()["batch_limit"])
    try:
        client = get_brevo_client()
    except BrevoConfigError as exc:
        logger.error("Brevo queue: %s", exc)
        return json_response({"success": False, "error": str(exc)}, cors, status_code=500)
    return json_response(process_brevo_queue(db, client, limit=max(limit, 1)), cors)


def _queue(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    if req.method == "POST":
        body = parse_json_body(req)
        item = enqueue_brevo_sync(
            db,
            body.get("entity_type"),
            body.get("entity_id"),
            action=body.get("action") or "UPDATE",
            payload=body.get("payload"),
            priority=parse_int(body.get("priority"), 5),
        )
        db.commit()
        return json_response(queue_item_to_dict(item), cors, status_code=201)

    params = query_params(req)
    page_size = min(max(parse_int(params.get("pageSize"), 50), 1), MAX_PAGE_SIZE)
    result = list_brevo_queue(
        db,
        entity_type=params.get("entityType") or None,
        status=params.get("status") or None,
        error_search=params.get("errorSearch") or None,
        page=max(parse_int(params.get("page"), 0), 0),
        page_size=page_size,
    )
    return json_response(result, cors)


def _stats(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    return json_response({"stats": brevo_queue_stats(db), "errors": brevo_error_stats(db)}, cors)


def _retry(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    item_id = route_param(req, "item_id")
    retry_brevo_item(db, item_id)
    db.commit()
    return json_response({"success": True, "id": item_id}, cors)


def _ignore(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    item_id = route_param(req, "item_id")
    ignore_brevo_item(db, item_id)
    db.commit()
    return json_response({"success": True, "id": item_id}, cors)


def _bulk(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    """retry_type | ignore_error | clean_completed"""
    body = parse_json_body(req)
    action = body.get("action")
    if action == "retry_type":
        count = bulk_retry_by_type(db, body.get("entityType"))
    elif action == "ignore_error":
        count = bulk_ignore_by_error(db, body.get("errorPattern"))
    elif action == "clean_completed":
        count = clean_old_completed(db, days_old=max(parse_int(body.get("daysOld"), 7), 1))
    else:
        raise ValueError("action must be retry_type, ignore_error or clean_completed")
    db.commit()
    return json_response({"success": True, "count": count}, cors)


@app.function_name(name="BrevoProcessQueue")
@app.route(route="brevo/process-queue", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def brevo_process_queue(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["POST", "OPTIONS"], _process, "BrevoProcessQueue")


@app.function_name(name="BrevoQueueScheduler")
@app.timer_trigger(schedule="0 */5 * * * *", arg_name="timer", run_on_startup=False, use_monitor=True)
def brevo_queue_scheduler(timer: func.TimerRequest) -> None:
    if flag_enabled("DISABLE_QUEUE_SCHEDULERS"):
        logger.info("BrevoQueueScheduler disabled by DISABLE_QUEUE_SCHEDULERS")
        return
    try:
        client = get_brevo_client()
    except BrevoConfigError as exc:
        logger.warning("BrevoQueueScheduler skipped: %s", exc)
        return
    db = SessionLocal()
    try:
        result = process_brevo_queue(db, client, limit=get_brevo_settings()["batch_limit"])
        logger.info("BrevoQueueScheduler: processed=%s", result.get("processed"))
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        logger.error("BrevoQueueScheduler failed: %s", exc)
    finally:
        db.close()


@app.function_name(name="BrevoQueue")
@app.route(route="brevo/queue", methods=["GET", "POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def brevo_queue(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["GET", "POST", "OPTIONS"], _queue, "BrevoQueue")


@app.function_name(name="BrevoQueueStats")
@app.route(route="brevo/queue/stats", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def brevo_queue_stats_api(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["GET", "OPTIONS"], _stats, "BrevoQueueStats")


@app.function_name(name="BrevoQueueBulk")
@app.route(route="brevo/queue/bulk", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def brevo_queue_bulk(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["POST", "OPTIONS"], _bulk, "BrevoQueueBulk")


@app.function_name(name="BrevoQueueRetry")
@app.route(route="brevo/queue/{item_id}/retry", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def brevo_queue_retry(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["POST", "OPTIONS"], _retry, "BrevoQueueRetry")


@app.function_name(name="BrevoQueueIgnore")
@app.route(route="brevo/queue/{item_id}/ignore", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def brevo_queue_ignore(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["POST", "OPTIONS"], _ignore, "BrevoQueueIgnore")
