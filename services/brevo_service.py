from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

import requests

from shared.config import get_brevo_settings

logger = logging.getLogger(__name__)

DEAL_STAGE_MAP = {
    "lead": "Lead",
    "contacto_inicial": "Contacted",
    "analisis": "Analysis",
    "propuesta": "Proposal",
    "due_diligence": "Qualification",
    "negociacion": "Negotiation",
    "cerrado_ganado": "Won",
    "cerrado_perdido": "Lost",
}

SyncResult = Tuple[Optional[str], Optional[str]]


class BrevoConfigError(RuntimeError):
    pass


def _json_or_empty(resp: requests.Response) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class BrevoClient:
    """
    Minimal Brevo REST client. Each sync call returns (brevo_id, error);
    a None id with no error means Brevo accepted an update of an existing record.
    """

    def __init__(self, api_key: str, api_url: str = "https://api.brevo.com/v3", timeout: int = 10):
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    def _post(self, path: str, body: Dict[str, Any]) -> requests.Response:
        return requests.post(
            f"{self.api_url}{path}",
            headers={"api-key": self.api_key, "Content-Type": "application/json", "Accept": "application/json"},
            json=body,
            timeout=self.timeout,
        )

    def sync_contact(self, data: Dict[str, Any]) -> SyncResult:
        email = data.get("email")
        if not email:
            return None, "No email provided"
        attributes: Dict[str, Any] = {}
        if data.get("nombre"):
            attributes["FIRSTNAME"] = data["nombre"]
        if data.get("apellidos"):
            attributes["LASTNAME"] = data["apellidos"]
        if data.get("cargo"):
            attributes["CARGO"] = data["cargo"]
        if data.get("linkedin_url"):
            attributes["LINKEDIN"] = data["linkedin_url"]

        try:
            resp = self._post("/contacts", {"email": email, "attributes": attributes, "updateEnabled": True})
        except requests.RequestException as exc:
            return None, f"Network error: {exc}"

        if resp.status_code == 201:
            brevo_id = _json_or_empty(resp).get("id")
            return (str(brevo_id) if brevo_id is not None else None), None
        if resp.status_code == 204:
            return None, None
        if resp.status_code == 400:
            error = _json_or_empty(resp)
            if error.get("code") == "duplicate_parameter":
                return None, None
            return None, error.get("message") or "Bad request"
        return None, f"Brevo API error: {resp.status_code} - {resp.text}"

    def sync_company(self, data: Dict[str, Any]) -> SyncResult:
        name = data.get("nombre")
        if not name:
            return None, "No company name provided"
        body = {
            "name": name,
            "attributes": {
                "sector": data.get("sector") or None,
                "website": data.get("sitio_web") or data.get("website") or None,
                "city": data.get("ciudad") or None,
                "country": data.get("pais") or None,
            },
        }
        try:
            resp = self._post("/companies", body)
        except requests.RequestException as exc:
            return None, f"Network error: {exc}"

        if resp.ok:
            brevo_id = _json_or_empty(resp).get("id")
            return (str(brevo_id) if brevo_id is not None else None), None
        if resp.status_code == 400:
            error = _json_or_empty(resp)
            if error.get("code") == "duplicate_parameter":
                return None, None
            return None, error.get("message") or "Bad request"
        return None, f"Brevo API error: {resp.status_code} - {resp.text}"

    def sync_deal(self, data: Dict[str, Any]) -> SyncResult:
        name = data.get("nombre") or data.get("titulo")
        if not name:
            return None, "No deal name provided"
        body = {
            "name": name,
            "attributes": {
                "deal_stage": DEAL_STAGE_MAP.get(data.get("pipeline_stage") or "", "Lead"),
                "deal_type": data.get("tipo") or None,
                "amount": data.get("valor_estimado") or 0,
            },
        }
        try:
            resp = self._post("/crm/deals", body)
        except requests.RequestException as exc:
            return None, f"Network error: {exc}"

        if resp.ok:
            brevo_id = _json_or_empty(resp).get("id")
            return (str(brevo_id) if brevo_id is not None else None), None
        return None, f"Brevo API error: {resp.status_code} - {resp.text}"


def get_brevo_client() -> BrevoClient:
    settings = get_brevo_settings()
    if not settings["api_key"]:
        raise BrevoConfigError("BREVO_API_KEY not configured")
    return BrevoClient(settings["api_key"], api_url=settings["api_url"])
