"""
config.py

Single source of truth for:
- Environment variable reads
- Admin config DB helpers
- Alert and manual trigger toggle logic

Nothing here should contain route handlers or business logic beyond config resolution.
"""

import os
from typing import Optional

from sqlalchemy.orm import Session


# =====================================================================
# SECTION: ENV VARS
# =====================================================================

# seats.aero partner API (award availability)
SEATS_AERO_API_KEY = os.getenv("SEATS_AERO_API_KEY", "")
SEATS_AERO_BASE_URL = os.getenv("SEATS_AERO_BASE_URL", "https://seats.aero/partnerapi")
SEATS_AERO_TIMEOUT_SECONDS = int(os.getenv("SEATS_AERO_TIMEOUT_SECONDS", "60"))

# Flight option search service (cash fares used by daily alerts)
FLIGHT_SEARCH_API_URL = os.getenv("FLIGHT_SEARCH_API_URL", "http://localhost:3000/api/flights")
FLIGHT_SEARCH_TIMEOUT_SECONDS = int(os.getenv("FLIGHT_SEARCH_TIMEOUT_SECONDS", "45"))

# SMTP / alerts
SMTP_HOST = os.getenv("SMTP_HOST", "mail-eu.smtp2go.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "2525"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
ALERT_FROM_EMAIL = os.getenv("ALERT_FROM_EMAIL", "alerts@flightstracker.app")

FRONTEND_BASE_URL = os.getenv("FRONTEND_BASE_URL", "https://flightstracker.app")

# Manual trigger endpoints
WORKER_API_KEY = os.getenv("WORKER_API_KEY")

# Worker cadence and pool sizes
CHECK_ALERTS_INTERVAL_HOURS = int(os.getenv("CHECK_ALERTS_INTERVAL_HOURS", "6"))
QUEUE_POLL_SECONDS = int(os.getenv("QUEUE_POLL_SECONDS", "10"))
QUEUE_RECEIVE_BATCH_SIZE = int(os.getenv("QUEUE_RECEIVE_BATCH_SIZE", "10"))
WORKFLOW_MAX_WORKERS = int(os.getenv("WORKFLOW_MAX_WORKERS", "4"))
FLIGHT_FETCH_WORKERS = int(os.getenv("FLIGHT_FETCH_WORKERS", "6"))

ALERTS_QUEUE_NAME = "flights-tracker-alerts-queue"


# =====================================================================
# SECTION: ADMIN CONFIG DB HELPERS
# Read runtime configuration values stored in admin_config table.
# =====================================================================

def _get_config_row(db: Session, key: str):
    from models import AdminConfig
    return db.query(AdminConfig).filter(AdminConfig.key == key).first()


def get_config_str(key: str, default_value: Optional[str] = None) -> Optional[str]:
    """Read a config value from admin_config as string."""
    from db import SessionLocal
    db = SessionLocal()
    try:
        row = _get_config_row(db, key)
        if not row or row.value is None:
            return default_value
        return str(row.value)
    finally:
        db.close()


def get_config_bool(key: str, default_value: bool) -> bool:
    """Read a config value from admin_config and cast to bool."""
    raw = get_config_str(key, None)
    if raw is None:
        return default_value
    s = str(raw).strip().lower()
    if s in ("1", "true", "yes", "y", "on"):
        return True
    if s in ("0", "false", "no", "n", "off"):
        return False
    return default_value


# =====================================================================
# SECTION: TOGGLE HELPERS
# =====================================================================

def master_alerts_enabled() -> bool:
    """Hard master switch controlled by ALERTS_ENABLED env var."""
    value = os.getenv("ALERTS_ENABLED", "true")
    return value.lower() == "true"


def manual_triggers_enabled() -> bool:
    """
    Combined logic:
    1. DISABLE_MANUAL_TRIGGERS env var must not be set to true
    2. admin_config MANUAL_TRIGGERS_ENABLED must not be switched off
    """
    if os.getenv("DISABLE_MANUAL_TRIGGERS", "false").lower() == "true":
        return False
    return get_config_bool("MANUAL_TRIGGERS_ENABLED", True)


def worker_api_key() -> Optional[str]:
    return os.getenv("WORKER_API_KEY") or WORKER_API_KEY
