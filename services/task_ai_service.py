from __future__ import annotations

import json
import logging
from datetime import date
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from repository.tareas_repo import create_task_event, create_tarea
from schemas.task_ai_schema import normalize_parsed_task
from shared.config import get_ai_gateway_settings
from shared.db import AdminUser

logger = logging.getLogger(__name__)

AI_CONFIDENCE = 0.85
AI_CREATED_EVENT = "AI_CREATED"

MSG_RATE_LIMIT = "Límite de solicitudes excedido. Inténtalo de nuevo en unos minutos."
MSG_CREDITS = "Créditos agotados. Añade créditos al espacio de trabajo para seguir usando la IA."
MSG_NOT_AUTHENTICATED = "Usuario no autenticado"


class TaskAIError(RuntimeError):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class RateLimitError(TaskAIError):
    status_code = 429


class CreditsExhaustedError(TaskAIError):
    status_code = 402


SYSTEM_PROMPT_TEMPLATE = """You are an intelligent task management assistant for a professional M&A advisory firm (Capittal Partners).

Your job:
- Understand the user input (which may be informal, in Spanish)
- Extract actionable tasks
- Split complex inputs into atomic tasks when needed
- Assign priority, due date, and responsible person

Rules:
- Prefer fewer tasks, but well-defined
- Tasks must be actionable and specific
- Use professional M&A context (teaser, LOI, due diligence, NDA, etc.)
- If a team member name is mentioned, assign directly to them
- If assignment is unclear, leave assigned_to_name as null
- Use realistic deadlines based on urgency cues:
  - "urgente/hoy/ya" -> today
  - "esta semana" -> 3 days from now
  - "próxima semana/semana que viene" -> 7 days from now
  - Default -> 5 days from now
- Detect context_type:
  - "mandato" if mentions deal, operación, venta, compra, due diligence
  - "cliente" if mentions cliente, empresa specific
  - "general" for internal tasks
- For M&A tasks, suggest the phase:
  - "1. Preparación" (teaser, NDA, información)
  - "2. Marketing" (longlist, contactos, envíos)
  - "3. Ofertas" (IOI, LOI, negociación)
  - "4. Due Diligence" (documentación, análisis)
  - "5. Cierre" (SPA, closing, post-merger)

Team members available:
{team}

Current date: {today}
User role: {role}

IMPORTANT: Always respond in valid JSON format with this exact structure:
{{
  "tasks": [
    {{
      "title": "Task title in Spanish",
      "description": "Brief description",
      "priority": "urgente|alta|media|baja",
      "due_date": "YYYY-MM-DD or null",
      "assigned_to_name": "Team member name or null",
      "context_type": "mandato|cliente|general",
      "context_hint": "Name of mandato/client if mentioned, or null",
      "estimated_minutes": 30,
      "suggested_fase": "1. Preparación|2. Marketing|3. Ofertas|4. Due Diligence|5. Cierre|null"
    }}
  ],
  "reasoning": "Brief explanation of how you interpreted the input"
}}"""


def load_team_members(db) -> List[dict]:
    members = db.query(AdminUser).filter(AdminUser.is_active.is_(True)).order_by(AdminUser.full_name.asc()).all()
    return [{"name": member.full_name, "role": member.role, "skills": member.skills or []} for member in members]


def build_system_prompt(team: List[dict], today: date, role: str) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(
        team=json.dumps(team, indent=2, ensure_ascii=False),
        today=today.isoformat(),
        role=role,
    )


def strip_code_fences(content: str) -> str:
    cleaned = content.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    if cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def _gateway_error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if data.get("message"):
            return str(data["message"])
    return f"AI Gateway error: {resp.status_code}"


def _call_gateway(system_prompt: str, raw_text: str, http_client: Optional[httpx.Client] = None) -> str:
    settings = get_ai_gateway_settings()
    if not settings["api_key"]:
        raise TaskAIError("AI_GATEWAY_API_KEY is not configured")
    payload = {
        "model": settings["model"],
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": raw_text},
        ],
        "temperature": 0.3,
        "max_tokens": 2000,
    }
    headers = {"Authorization": f"Bearer {settings['api_key']}", "Content-Type": "application/json"}
    url = f"{settings['base_url']}/chat/completions"

    try:
        if http_client is not None:
            resp = http_client.post(url, headers=headers, json=payload)
        else:
            timeout = httpx.Timeout(connect=10.0, read=60.0, write=10.0, pool=None)
            with httpx.Client(timeout=timeout) as client:
                resp = client.post(url, headers=headers, json=payload)
    except httpx.RequestError as exc:
        logger.error("AI Gateway request failed: %s", exc)
        raise TaskAIError("AI Gateway unavailable", status_code=502) from exc

    if resp.status_code == 429:
        raise RateLimitError(MSG_RATE_LIMIT)
    if resp.status_code == 402:
        raise CreditsExhaustedError(MSG_CREDITS)
    if resp.status_code >= 300:
        logger.error("AI Gateway error: %s - %s", resp.status_code, resp.text)
        raise TaskAIError(_gateway_error_message(resp), status_code=500)

    try:
        data = resp.json()
    except ValueError as exc:
        logger.error("AI Gateway returned a non-JSON body: %s", resp.text[:200])
        raise TaskAIError("Invalid response from AI Gateway", status_code=502) from exc
    if not isinstance(data, dict):
        raise TaskAIError("Invalid response from AI Gateway", status_code=502)
    content = (data.get("choices") or [{}])[0].get("message", {}).get("content")
    if not content:
        raise TaskAIError("No content in AI response")
    return content


def resolve_assignee(db, name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    user = (
        db.query(AdminUser)
        .filter(AdminUser.full_name.ilike(f"%{name}%"), AdminUser.is_active.is_(True))
        .order_by(AdminUser.full_name.asc())
        .first()
    )
    return user.user_id if user else None


def parse_task_input(
    db,
    raw_text: str,
    role: Optional[str] = None,
    user_context: Optional[Dict[str, Any]] = None,
    today: Optional[date] = None,
    http_client: Optional[httpx.Client] = None,
) -> dict:
    """
    Turn free text into a list of parsed tasks using the LLM gateway.
    Raises RateLimitError / CreditsExhaustedError / TaskAIError.
    """
    team = load_team_members(db)
    user_role = (user_context or {}).get("role") or role or "socio"
    system_prompt = build_system_prompt(team, today or date.today(), user_role)
    content = _call_gateway(system_prompt, raw_text, http_client=http_client)

    try:
        parsed = json.loads(strip_code_fences(content))
    except ValueError as exc:
        logger.error("Failed to parse AI response: %s", content)
        raise TaskAIError("Failed to parse AI response as JSON") from exc
    if not isinstance(parsed, dict) or not isinstance(parsed.get("tasks"), list):
        raise TaskAIError("Invalid AI response structure: missing tasks array")

    tasks = []
    for raw_task in parsed["tasks"]:
        try:
            task = normalize_parsed_task(raw_task)
        except ValueError as exc:
            logger.warning("Skipping malformed AI task %s: %s", raw_task, exc)
            continue
        task["assigned_to_id"] = resolve_assignee(db, task["assigned_to_name"])
        tasks.append(task)

    return {
        "success": True,
        "tasks": tasks,
        "reasoning": parsed.get("reasoning") or "",
        "team_members": team,
    }


def map_parsed_task_to_tarea(parsed: Dict[str, Any], source_text: str, user_id: Optional[str] = None) -> dict:
    return {
        "titulo": parsed.get("title"),
        "descripcion": parsed.get("description") or None,
        "estado": "pendiente",
        "prioridad": parsed.get("priority") or "media",
        "fecha_vencimiento": parsed.get("due_date") or None,
        "ai_generated": True,
        "ai_confidence": AI_CONFIDENCE,
        "asignado_a": parsed.get("assigned_to_id") or user_id,
        "creado_por": user_id,
        "source_text": source_text,
        "tipo": "individual",
    }


def create_tasks_from_ai(db, tasks: List[Dict[str, Any]], source_text: str, user_id: Optional[str]) -> dict:
    """
    Persist each parsed task with its AI_CREATED event.
    Tasks are committed one by one; a failure only loses that task.
    """
    if not user_id:
        return {"success": False, "created": 0, "errors": [MSG_NOT_AUTHENTICATED], "task_ids": []}

    created = 0
    errors: List[str] = []
    task_ids: List[str] = []
    for parsed in tasks:
        title = (parsed.get("title") if isinstance(parsed, dict) else None) or "(sin título)"
        try:
            if not isinstance(parsed, dict):
                raise TypeError(f"task must be an object, got {type(parsed).__name__}")
            tarea = create_tarea(db, map_parsed_task_to_tarea(parsed, source_text, user_id))
            create_task_event(
                db,
                tarea.id,
                AI_CREATED_EVENT,
                {"original_input": source_text, "parsed_task": parsed, "confidence": AI_CONFIDENCE},
                created_by=user_id,
            )
            db.commit()
            created += 1
            task_ids.append(tarea.id)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("Task insert failed for %s: %s", title, exc)
            errors.append(f'Error creando "{title}": {getattr(exc, "orig", None) or exc}')
        except Exception as exc:  # pylint: disable=broad-except
            db.rollback()
            logger.error("Unexpected error creating task %s: %s", title, exc)
            errors.append(f'Error inesperado creando "{title}"')

    return {"success": not errors, "created": created, "errors": errors, "task_ids": task_ids}
