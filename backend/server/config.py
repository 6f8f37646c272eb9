"""Global configuration — paths, env vars.

DEPLOYMENT:
  Copy .env.example → .env and fill in the values.
  To switch servers, only the .env file needs to change — no code edits required.
"""

import os
from dotenv import load_dotenv

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))  # backend/
PROJECT_DIR = os.path.dirname(BASE_DIR)  # project root

# Load .env from project root (overrides any system env vars with same name)
load_dotenv(os.path.join(PROJECT_DIR, ".env"), override=True)

# ─── Paths ───────────────────────────────────────────────────
DB_PATH = os.environ.get("DB_PATH", os.path.join(BASE_DIR, "pathflow.db"))

# ─── Environment ─────────────────────────────────────────────
ENVIRONMENT = os.environ.get("ENVIRONMENT", "development")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# ─── CORS ────────────────────────────────────────────────────
# Dev:  ALLOWED_ORIGINS=*
# Prod: ALLOWED_ORIGINS=https://yourdomain.com,https://www.yourdomain.com
_raw_origins = os.environ.get("ALLOWED_ORIGINS", "*")
ALLOWED_ORIGINS = ["*"] if _raw_origins.strip() == "*" else [
    o.strip() for o in _raw_origins.split(",") if o.strip()
]

# ─── Oracle (Anthropic) ──────────────────────────────────────
ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY", "")
ANTHROPIC_MODEL = os.environ.get("ANTHROPIC_MODEL", "claude-3-haiku-20240307")
ORACLE_MAX_TOKENS = int(os.environ.get("ORACLE_MAX_TOKENS", 4000))
# Bounded wait; an oracle call that takes longer is treated as failed.
ORACLE_TIMEOUT_SECONDS = float(os.environ.get("ORACLE_TIMEOUT_SECONDS", 45))

# ─── Scheduling ──────────────────────────────────────────────
PLANNER_TIMEZONE = os.environ.get("PLANNER_TIMEZONE", "UTC")
MAX_HORIZON_WEEKS = int(os.environ.get("MAX_HORIZON_WEEKS", 52))

# ─── Google Calendar ─────────────────────────────────────────
GOOGLE_CALENDAR_API_BASE = os.environ.get(
    "GOOGLE_CALENDAR_API_BASE", "https://www.googleapis.com/calendar/v3"
)
CALENDAR_TIMEOUT_SECONDS = float(os.environ.get("CALENDAR_TIMEOUT_SECONDS", 30))
