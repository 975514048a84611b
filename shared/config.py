import os
from typing import Optional


def get_setting(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return an environment setting with an optional default."""
    return os.getenv(name, default)


def get_required_setting(name: str) -> str:
    """Return a required environment setting or raise a ValueError."""
    value = os.getenv(name)
    if not value:
        raise ValueError(f"Missing required environment variable: {name}")
    return value


def _int_setting(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_setting(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def get_database_url() -> str:
    """
    Return the database URL for SQLAlchemy.
    Defaults to a local SQLite file for development if not provided.
    """
    return os.getenv("DATABASE_URL") or os.getenv("POSTGRES_CONNECTION_STRING") or "sqlite:///./data/app.db"


def get_service_role_key() -> Optional[str]:
    """Shared secret used by internal callers (schedulers, other functions)."""
    return os.getenv("SERVICE_ROLE_KEY") or None


def get_email_settings() -> dict:
    """
    Transactional email provider settings.
    The API key is optional here; the provider factory decides whether to require it.
    """
    return {
        "resend_api_key": os.getenv("RESEND_API_KEY"),
        "resend_api_url": (os.getenv("RESEND_API_URL") or "https://api.resend.com").rstrip("/"),
        "from_email": os.getenv("DEFAULT_FROM_EMAIL") or "noreply@capittal.es",
        "from_name": os.getenv("DEFAULT_FROM_NAME") or "Capittal M&A",
    }


def get_queue_settings() -> dict:
    """Email queue processor limits."""
    return {
        "batch_size": _int_setting("EMAIL_QUEUE_BATCH_SIZE", 10),
        "batch_delay_seconds": _float_setting("EMAIL_QUEUE_BATCH_DELAY_SECONDS", 3.0),
        "max_processing_seconds": _float_setting("EMAIL_QUEUE_MAX_PROCESSING_SECONDS", 50.0),
        "stuck_minutes": _int_setting("EMAIL_QUEUE_STUCK_MINUTES", 10),
    }


def get_brevo_settings() -> dict:
    return {
        "api_key": os.getenv("BREVO_API_KEY"),
        "api_url": (os.getenv("BREVO_API_URL") or "https://api.brevo.com/v3").rstrip("/"),
        "batch_limit": _int_setting("BREVO_QUEUE_BATCH_LIMIT", 50),
    }


def get_ai_gateway_settings() -> dict:
    """
    OpenAI-compatible chat completions gateway used for task parsing.
    """
    return {
        "api_key": os.getenv("AI_GATEWAY_API_KEY"),
        "base_url": (os.getenv("AI_GATEWAY_BASE_URL") or "https://ai.gateway.lovable.dev/v1").rstrip("/"),
        "model": os.getenv("TASK_AI_MODEL") or "google/gemini-2.5-flash",
    }
