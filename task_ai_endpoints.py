import logging
from typing import Optional

import azure.functions as func

from function_app import app
from http_shared import json_response, parse_bool, parse_json_body, query_params, run_admin_handler
from schemas.email_queue_schema import parse_datetime
from schemas.task_ai_schema import validate_feedback, validate_parse_request
from services.task_ai_feedback_service import fetch_task_ai_events, fetch_task_ai_stats, save_task_ai_feedback
from services.task_ai_service import TaskAIError, create_tasks_from_ai, parse_task_input

logger = logging.getLogger(__name__)


def _acting_user(auth, body: dict) -> Optional[str]:
    # Internal callers act on behalf of the user named in the body.
    if auth.is_service:
        return body.get("user_id") or None
    return auth.user_id


def _optional_float(value) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid number: {value}") from exc


def _parse(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    request = validate_parse_request(parse_json_body(req))
    try:
        result = parse_task_input(
            db,
            request["raw_text"],
            role=auth.role,
            user_context=request["user_context"],
        )
    except TaskAIError as exc:
        logger.warning("task-ai parse failed (%s): %s", exc.status_code, exc.message)
        return json_response({"error": exc.message}, cors, status_code=exc.status_code)
    return json_response(result, cors)


def _create(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    body = parse_json_body(req)
    tasks = body.get("tasks")
    if not isinstance(tasks, list):
        raise ValueError("tasks must be a list")
    result = create_tasks_from_ai(db, tasks, body.get("source_text") or "", _acting_user(auth, body))
    return json_response(result, cors)


def _events(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    params = query_params(req)
    filters = {
        "date_from": parse_datetime(params.get("date_from")),
        "date_to": parse_datetime(params.get("date_to")),
        "confidence_min": _optional_float(params.get("confidence_min")),
        "confidence_max": _optional_float(params.get("confidence_max")),
        "search_text": params.get("search_text") or None,
        "has_feedback": parse_bool(params.get("has_feedback")),
    }
    return json_response({"events": fetch_task_ai_events(db, filters)}, cors)


def _stats(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    return json_response(fetch_task_ai_stats(db), cors)


def _feedback(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    body = parse_json_body(req)
    params = validate_feedback(body)
    feedback = save_task_ai_feedback(
        db,
        _acting_user(auth, body),
        params["event_id"],
        params["task_id"],
        params["is_useful"],
        params["feedback_text"],
    )
    db.commit()
    return json_response({"success": True, "id": feedback.id}, cors)


@app.function_name(name="TaskAIParse")
@app.route(route="task-ai/parse", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def task_ai_parse(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["POST", "OPTIONS"], _parse, "TaskAIParse")


@app.function_name(name="TaskAICreate")
@app.route(route="task-ai/tasks", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def task_ai_create(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["POST", "OPTIONS"], _create, "TaskAICreate")


@app.function_name(name="TaskAIEvents")
@app.route(route="task-ai/events", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def task_ai_events(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["GET", "OPTIONS"], _events, "TaskAIEvents")


@app.function_name(name="TaskAIStats")
@app.route(route="task-ai/stats", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def task_ai_stats(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["GET", "OPTIONS"], _stats, "TaskAIStats")


@app.function_name(name="TaskAIFeedback")
@app.route(route="task-ai/feedback", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def task_ai_feedback(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["POST", "OPTIONS"], _feedback, "TaskAIFeedback")
