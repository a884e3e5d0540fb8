"""Centralized configuration with env var overrides.

All hardcoded values live here. Override any via environment variables.
Call validate() at startup; missing required settings are fatal.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigurationError

PROJECT_ROOT = Path(__file__).resolve().parent.parent

load_dotenv(PROJECT_ROOT / ".env")


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# ── Paths ──
STATE_FILE = Path(os.environ.get("STATE_FILE", str(PROJECT_ROOT / "state.json")))
HISTORY_FILE = Path(os.environ.get("HISTORY_FILE", str(PROJECT_ROOT / "history.json")))
LOG_FILE = Path(os.environ["LOG_FILE"]) if os.environ.get("LOG_FILE") else None  # stdout only when unset

# ── Shopify ──
SHOPIFY_SHOP = os.environ.get("SHOPIFY_SHOP", "")
SHOPIFY_ACCESS_TOKEN = os.environ.get("SHOPIFY_ACCESS_TOKEN", "")
SHOPIFY_WEBHOOK_SECRET = os.environ.get("SHOPIFY_WEBHOOK_SECRET", "")
SHOPIFY_API_VERSION = os.environ.get("SHOPIFY_API_VERSION", "2024-10")
CATALOG_PAGE_SIZE = int(os.environ.get("CATALOG_PAGE_SIZE", 250))
HMAC_HEADER = "X-Shopify-Hmac-Sha256"

# ── Brands ──
BRANDS_TO_MONITOR = _split_csv(os.environ.get("BRANDS_TO_MONITOR", ""))
BRAND_CHECK_DELAY = float(os.environ.get("BRAND_CHECK_DELAY", 0.5))  # seconds between brands

# ── Email ──
EMAIL_FROM = os.environ.get("EMAIL_FROM", "")
EMAIL_TO = os.environ.get("EMAIL_TO", "")
EMAIL_PASSWORD = os.environ.get("EMAIL_PASSWORD", "")
SMTP_HOST = os.environ.get("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.environ.get("SMTP_PORT", 465))
SENDGRID_API_KEY = os.environ.get("SENDGRID_API_KEY", "")
SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"

# ── Twilio (SMS alerts) ──
TWILIO_ACCOUNT_SID = os.environ.get("TWILIO_ACCOUNT_SID", "")
TWILIO_API_KEY     = os.environ.get("TWILIO_API_KEY", "")      # SK... restricted key
TWILIO_API_SECRET  = os.environ.get("TWILIO_API_SECRET", "")
TWILIO_FROM        = os.environ.get("TWILIO_FROM", "")         # E.164 e.g. +15555555555
ALERT_PHONE        = os.environ.get("ALERT_PHONE", "")

# ── Notifications ──
NOTIFY_TIMEOUT = float(os.environ.get("NOTIFY_TIMEOUT", 15))  # seconds
REARM_ON_NOTIFY_FAILURE = os.environ.get("REARM_ON_NOTIFY_FAILURE", "0") == "1"

# ── Scheduling ──
CHECK_INTERVAL = int(os.environ.get("CHECK_INTERVAL", 0))  # 0 = webhook/manual only

# ── History ──
MAX_HISTORY_ENTRIES = int(os.environ.get("MAX_HISTORY_ENTRIES", 1000))

# ── Server ──
PORT = int(os.environ.get("PORT", 3000))

REQUIRED_VARS = (
    "SHOPIFY_SHOP",
    "SHOPIFY_ACCESS_TOKEN",
    "SHOPIFY_WEBHOOK_SECRET",
    "EMAIL_FROM",
    "EMAIL_TO",
    "BRANDS_TO_MONITOR",
)


def validate() -> None:
    """Raise ConfigurationError listing every missing required setting."""
    current = globals()
    missing = [name for name in REQUIRED_VARS if not current.get(name)]
    if missing:
        raise ConfigurationError(f"Missing required environment variable(s): {', '.join(missing)}")


# Warn at import time if Twilio is partially configured
_twilio_vars = {"TWILIO_ACCOUNT_SID": TWILIO_ACCOUNT_SID, "TWILIO_API_KEY": TWILIO_API_KEY,
                "TWILIO_API_SECRET": TWILIO_API_SECRET, "TWILIO_FROM": TWILIO_FROM,
                "ALERT_PHONE": ALERT_PHONE}
_twilio_set = {k for k, v in _twilio_vars.items() if v}
if _twilio_set and _twilio_set != set(_twilio_vars):
    import logging as _logging
    _logging.getLogger(__name__).warning(
        f"Twilio partially configured — missing: {', '.join(sorted(set(_twilio_vars) - _twilio_set))}. SMS alerts will not work."
    )
