"""
config.py - load process configuration from environment variables.

Only connection and runtime settings live here. The desired state
(alternatives, mirrors, assignments, LDAP mappings) lives in the
configuration document owned by db.config_store.
Never log secrets.
"""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _optional(key: str, default: str = "") -> str:
    return os.environ.get(key, default)


def _truthy(key: str, default: str = "false") -> bool:
    return _optional(key, default).strip().lower() in ("1", "true", "yes", "on")


# --- Jellyfin ---
JELLYFIN_URL = _optional("JELLYFIN_URL").rstrip("/")
JELLYFIN_API_KEY = _optional("JELLYFIN_API_KEY")
HTTP_TIMEOUT = float(_optional("HTTP_TIMEOUT", "15"))

# --- Paths ---
CONFIG_DB = _optional("CONFIG_DB", "/data/langmirror/langmirror.db")

# Jellyfin may see media under a different prefix than this process
# (e.g. Jellyfin in Docker). Both empty = no translation.
MEDIA_PATH_IN_JELLYFIN = _optional("MEDIA_PATH_IN_JELLYFIN")
MEDIA_PATH_ON_HOST = _optional("MEDIA_PATH_ON_HOST")

# --- Directory (LDAP group memberships) ---
# JSON file {"username": ["cn=group,dc=example,dc=com", ...]}. Empty = no directory.
DIRECTORY_GROUPS_FILE = _optional("DIRECTORY_GROUPS_FILE")

# --- Scheduler ---
SCHEDULER_ENABLED = _truthy("SCHEDULER_ENABLED", "true")
SCHEDULER_TICK_SECONDS = int(_optional("SCHEDULER_TICK_SECONDS", "300"))

# --- Debug report ---
DEBUG_BUFFER_SIZE = int(_optional("DEBUG_BUFFER_SIZE", "500"))

# --- Flask ---
FLASK_HOST = _optional("FLASK_HOST", "0.0.0.0")
FLASK_PORT = int(_optional("FLASK_PORT", "8010"))
FLASK_DEBUG = _truthy("FLASK_DEBUG")


def validate_jellyfin():
    if not JELLYFIN_URL or not JELLYFIN_API_KEY:
        raise ValueError("JELLYFIN_URL and JELLYFIN_API_KEY are required")


def log_config_summary():
    """Log a redacted config summary on startup (never log secret values)."""
    logger.info("langmirror config loaded:")
    logger.info("  JELLYFIN_URL: %s", JELLYFIN_URL or "(not set)")
    logger.info("  JELLYFIN_API_KEY: %s", "set" if JELLYFIN_API_KEY else "NOT SET")
    logger.info("  CONFIG_DB: %s", CONFIG_DB)
    logger.info("  MEDIA_PATH_IN_JELLYFIN: %s", MEDIA_PATH_IN_JELLYFIN or "(not set)")
    logger.info("  MEDIA_PATH_ON_HOST: %s", MEDIA_PATH_ON_HOST or "(not set)")
    logger.info("  DIRECTORY_GROUPS_FILE: %s", DIRECTORY_GROUPS_FILE or "(not set)")
    logger.info("  SCHEDULER_ENABLED: %s (tick=%ds)", SCHEDULER_ENABLED, SCHEDULER_TICK_SECONDS)
