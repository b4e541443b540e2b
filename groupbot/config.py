"""
Configuration and environment variable validation.
"""
import os
import sys

from groupbot.logger import logger


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() not in ("0", "false", "no", "off")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        logger.warning("Invalid integer for %s, using default %s", name, default)
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        logger.warning("Invalid number for %s, using default %s", name, default)
        return default


def _env_list(name: str) -> list[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


# Database
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "groupbot")
DATABASE_CLEANUP_DAYS = _env_int("DATABASE_CLEANUP_DAYS", 90)

# Completion provider (any OpenAI-compatible endpoint)
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or None
COMPLETION_TIMEOUT_SECONDS = _env_float("COMPLETION_TIMEOUT_SECONDS", 10.0)
MAX_RESPONSE_LENGTH = _env_int("MAX_RESPONSE_LENGTH", 1000)

# Learning
LEARNING_ENABLED = _env_bool("LEARNING_ENABLED", True)
MIN_CONFIDENCE_THRESHOLD = _env_float("MIN_CONFIDENCE_THRESHOLD", 0.7)

# Response cache
CACHE_TTL_SECONDS = _env_int("CACHE_TTL_SECONDS", 3600)
MAX_CACHE_SIZE = _env_int("MAX_CACHE_SIZE", 50)
CACHE_PREFER_NEWEST = _env_bool("CACHE_PREFER_NEWEST", False)

# Feature flags
FEEDBACK_BUTTONS = _env_bool("FEEDBACK_BUTTONS", True)
WELCOME_NEW_MEMBERS = _env_bool("WELCOME_NEW_MEMBERS", True)

# Slack user IDs treated as admins in every channel
SUPER_ADMIN_IDS = _env_list("SUPER_ADMIN_IDS")

# Credentials for the HTTP export endpoint
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")


def validate_environment_variables() -> None:
    """
    Validate all required environment variables at startup.
    Exits the application with a clear error message if any are missing.
    """
    required_vars = {
        "SLACK_BOT_TOKEN": "Slack bot token for authentication",
        "SLACK_SIGNING_SECRET": "Slack signing secret for request verification",
        "MONGO_URL": "MongoDB connection URL",
    }

    optional_vars = {
        "OPENAI_API_KEY": "API key for the completion provider (fallback replies only if not set)",
        "OPENAI_BASE_URL": "Base URL of an OpenAI-compatible completion endpoint",
        "ADMIN_PASSWORD": "Password for the export endpoint (endpoint disabled if not set)",
        "SUPER_ADMIN_IDS": "Comma-separated Slack user IDs with admin rights everywhere",
        "PORT": "Server port (defaults to 3000 if not set)",
        "ENV": "Environment (prod/dev, defaults to dev if not set)",
    }

    missing_vars = []

    for var_name, description in required_vars.items():
        value = os.getenv(var_name)
        if not value or not value.strip():
            missing_vars.append(f"  - {var_name}: {description}")
            logger.error(f"Missing required environment variable: {var_name}")

    if missing_vars:
        error_message = (
            "Missing required environment variables:\n"
            + "\n".join(missing_vars)
            + "\n\nPlease set these variables before starting the application."
        )
        logger.critical(error_message)
        print(error_message, file=sys.stderr)
        sys.exit(1)

    # Log optional variables status
    for var_name, description in optional_vars.items():
        value = os.getenv(var_name)
        if not value or not value.strip():
            logger.info(f"Optional environment variable not set: {var_name} - {description}")
        else:
            logger.debug(f"Environment variable set: {var_name}")

    logger.info(
        "Completion timeout: %ss, trust threshold: %s, cache: %s entries / %ss",
        COMPLETION_TIMEOUT_SECONDS,
        MIN_CONFIDENCE_THRESHOLD,
        MAX_CACHE_SIZE,
        CACHE_TTL_SECONDS,
    )
    logger.info("Environment variable validation completed successfully")
