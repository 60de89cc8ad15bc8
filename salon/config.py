import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./salon.db")

# Scheduling rules
# Minutes before the scheduled start at which an appointment may be started
START_WINDOW_MINUTES = int(os.getenv("START_WINDOW_MINUTES", "60"))
# Lateness (minutes) from which a manual penalty may be charged
LATENESS_PENALTY_THRESHOLD_MINUTES = int(os.getenv("LATENESS_PENALTY_THRESHOLD_MINUTES", "15"))
# How far in the past a booking may still be placed
MAX_PAST_SCHEDULE_HOURS = int(os.getenv("MAX_PAST_SCHEDULE_HOURS", "24"))

# Invoicing provider
INVOICE_PROVIDER_URL = os.getenv("INVOICE_PROVIDER_URL")
INVOICE_PROVIDER_API_KEY = os.getenv("INVOICE_PROVIDER_API_KEY")
INVOICE_TIMEOUT_SECONDS = float(os.getenv("INVOICE_TIMEOUT_SECONDS", "10"))
INVOICE_RETRY_MINUTES = int(os.getenv("INVOICE_RETRY_MINUTES", "5"))
INVOICE_MAX_ATTEMPTS = int(os.getenv("INVOICE_MAX_ATTEMPTS", "10"))
INVOICE_CURRENCY = os.getenv("INVOICE_CURRENCY", "ARS")

# CORS
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

# Invoice retry worker (arq)
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")
WORKER_MAX_JOBS = int(os.getenv("WORKER_MAX_JOBS", "10"))
WORKER_JOB_TIMEOUT_SECONDS = int(os.getenv("WORKER_JOB_TIMEOUT_SECONDS", "300"))

# Log queries slower than this many seconds; 0 disables slow query logging
DB_SLOW_QUERY_SECONDS = float(os.getenv("DB_SLOW_QUERY_SECONDS", "1.0"))
