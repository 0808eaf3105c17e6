"""
Plan Graph Configuration - Single source of truth

All tunables for the plan graph engine live here. Environment-driven values
are read once at import time.
"""
import os


# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE") or None
JSON_LOGS = os.getenv("JSON_LOGS", "false").lower() in ("1", "true", "yes")


# =============================================================================
# HTTP
# =============================================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173"
    ).split(",")
    if origin.strip()
]

# Export is the only expensive read; everything else is unthrottled
EXPORT_REQUESTS_PER_MINUTE = int(os.getenv("EXPORT_REQUESTS_PER_MINUTE", "10"))

API_PREFIX = "/api/v1"
USER_ID_HEADER = "X-User-Id"


# =============================================================================
# FIELD LIMITS
# =============================================================================

TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 2000
PHASE_NAME_MAX_LENGTH = 100
ESTIMATED_TIME_MAX_LENGTH = 50
RESOURCE_URL_MAX_LENGTH = 500


# =============================================================================
# PROGRESS
# =============================================================================

PROGRESS_HISTORY_DEFAULT_LIMIT = 30
PROGRESS_HISTORY_MAX_LIMIT = 200
TASK_HISTORY_DEFAULT_LIMIT = 50

# Window used for velocity (completions per week)
VELOCITY_WINDOW_DAYS = 30


# =============================================================================
# EXPORT
# =============================================================================

EXPORT_FORMATS = ("csv", "json", "markdown")

EXPORT_MEDIA_TYPES = {
    "csv": "text/csv",
    "json": "application/json",
    "markdown": "text/markdown",
}

EXPORT_FILE_EXTENSIONS = {
    "csv": "csv",
    "json": "json",
    "markdown": "md",
}
