import os

# Endpoint tests go through the shared engine; keep it in memory.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DISABLE_QUEUE_SCHEDULERS", "1")
