import logging

import azure.functions as func
from dotenv import load_dotenv

load_dotenv()

from shared.db import init_db  # noqa: E402

logger = logging.getLogger(__name__)

# Initialize the database (creates tables if they don't exist)
init_db()

app = func.FunctionApp()

# Import endpoint modules so their routes register with the shared app.
import health_endpoints  # noqa
import send_email_endpoints  # noqa
import email_queue_endpoints  # noqa
import brevo_endpoints  # noqa
import task_ai_endpoints  # noqa
import search_endpoints  # noqa
import import_endpoints  # noqa
import document_endpoints  # noqa
