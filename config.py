"""Application configuration — environment variables and derived constants.

Loads ``MAX_BOT_TOKEN``, ``MAX_API_BASE_URL``, ``MAX_WEBHOOK_SECRET`` and
``MAX_HTTP_TIMEOUT`` from the environment via ``python-dotenv``.  All values
are resolved at import time so other modules can ``from config import …``
without repeated lookups.
"""

# ── stdlib ───────────────────────────────────────────────────────────────────
import os

# ── third-party ──────────────────────────────────────────────────────────────
from dotenv import load_dotenv

# ── core ─────────────────────────────────────────────────────────────────────
from core.logger import MaxbotLogger

# ── Environment bootstrap ────────────────────────────────────────────────────
load_dotenv()

# ── Logger (used for startup diagnostics at the bottom of this module) ───────
logger = MaxbotLogger.get_logger()

DEFAULT_API_BASE_URL = "https://botapi.max.ru"
DEFAULT_HTTP_TIMEOUT = 10


# ── Helper functions (private) ───────────────────────────────────────────────


def _parse_int(raw: str | None, default: int) -> int:
    """Parse a positive integer, falling back to *default* on bad input."""
    if not raw or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning("Ignoring non-numeric config value", extra={"raw_value": raw})
        return default
    return value if value > 0 else default


# ── Public constants ─────────────────────────────────────────────────────────

MAX_BOT_TOKEN: str | None = os.environ.get("MAX_BOT_TOKEN")
MAX_API_BASE_URL: str = (os.environ.get("MAX_API_BASE_URL") or DEFAULT_API_BASE_URL).rstrip("/")
MAX_WEBHOOK_SECRET: str | None = os.environ.get("MAX_WEBHOOK_SECRET") or None
MAX_HTTP_TIMEOUT: int = _parse_int(os.environ.get("MAX_HTTP_TIMEOUT"), DEFAULT_HTTP_TIMEOUT)


# ── Startup diagnostics ─────────────────────────────────────────────────────

if MAX_BOT_TOKEN:
    logger.info("Config loaded — MAX_BOT_TOKEN is set", extra={"api_base_url": MAX_API_BASE_URL})
else:
    logger.warning("Config loaded — MAX_BOT_TOKEN is NOT set")

if MAX_WEBHOOK_SECRET:
    logger.info("Webhook secret configured")
