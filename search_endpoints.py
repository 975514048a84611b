import logging

import azure.functions as func

from function_app import app
from http_shared import json_response, parse_bool, parse_int, query_params, run_admin_handler
from services.search_service import GLOBAL_SEARCH_LIMIT, get_search_item, global_search, search_mandatos_and_leads

logger = logging.getLogger(__name__)

MAX_LIMIT = 50


def _global(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    params = query_params(req)
    limit = min(max(parse_int(params.get("limit"), GLOBAL_SEARCH_LIMIT), 1), MAX_LIMIT)
    return json_response({"results": global_search(db, params.get("q"), limit=limit)}, cors)


def _mandatos_leads(req: func.HttpRequest, db, auth, cors: dict) -> func.HttpResponse:
    params = query_params(req)
    if params.get("itemId"):
        item = get_search_item(db, params.get("itemId"), params.get("itemType"))
        return json_response({"item": item}, cors)
    result = search_mandatos_and_leads(
        db,
        params.get("term"),
        include_general_work=parse_bool(params.get("includeGeneralWork"), default=True),
        include_leads=parse_bool(params.get("includeLeads"), default=True),
        limit=min(max(parse_int(params.get("limit"), 10), 1), MAX_LIMIT),
    )
    return json_response(result, cors)


@app.function_name(name="GlobalSearch")
@app.route(route="search", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def search_api(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["GET", "OPTIONS"], _global, "GlobalSearch")


@app.function_name(name="SearchMandatosLeads")
@app.route(route="search/mandatos-leads", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def search_mandatos_leads_api(req: func.HttpRequest) -> func.HttpResponse:
    return run_admin_handler(req, ["GET", "OPTIONS"], _mandatos_leads, "SearchMandatosLeads")
