import re
from datetime import datetime, timezone


def contains(text: str, keywords: list[str]) -> bool:
    return any(k in text for k in keywords)


def utcnow() -> datetime:
    # Naive UTC, matching what pymongo hands back when reading
    return datetime.now(timezone.utc).replace(tzinfo=None)


def strip_command(text: str, command: str) -> str:
    """
    Remove the command phrase from text and return the remaining payload.
    Handles case-insensitive matching and ensures clean extraction.

    Args:
        text: The full text (should already have bot mention removed)
        command: The command phrase to remove (case-insensitive)

    Returns:
        The text with the command phrase removed, stripped of whitespace
    """
    if not text or not command:
        return text.strip() if text else ""

    lowered_text = text.lower()
    lowered_command = command.lower().strip()

    idx = lowered_text.find(lowered_command)
    if idx == -1:
        return text.strip()

    # The positions align because we're doing case-insensitive matching
    command_end = idx + len(lowered_command)
    after = text[command_end:].lstrip()
    before = text[:idx]

    return (before + after).strip()


def strip_leading_mention(text: str) -> str:
    """
    Remove a leading Slack user mention like '<@U123ABC>' plus any following whitespace.
    """
    return re.sub(r"^<@[^>]+>\s*", "", text or "").strip()


def starts_with_mention(text: str, user_id: str) -> bool:
    return (text or "").lstrip().startswith(f"<@{user_id}>")


def match_command(text: str, commands: list[str]) -> tuple[str, str] | None:
    """
    Match the start of text against a list of command phrases.

    The longest matching phrase wins so that `cancel setup` is not read as
    `setup`. A phrase only matches on a word boundary.

    Returns:
        Tuple of (command, payload) or None if no command matches
    """
    lowered = (text or "").strip().lower()
    for command in sorted(commands, key=len, reverse=True):
        if lowered == command or lowered.startswith(command + " ") or lowered.startswith(command + "\n"):
            return command, strip_command(text.strip(), command)
    return None


def split_list(text: str) -> list[str]:
    """
    Split a comma-separated answer into trimmed, non-empty, de-duplicated items.
    Order of first occurrence is kept.
    """
    items = []
    seen = set()
    for part in (text or "").split(","):
        item = part.strip()
        if not item or item.lower() in seen:
            continue
        seen.add(item.lower())
        items.append(item)
    return items


def sanitize_slack_id(identifier: str | None, name: str = "identifier", allow_none: bool = False) -> str | None:
    """
    Sanitize and validate Slack IDs (team_id, channel_id, user_id).

    Rejects MongoDB operators and special characters that could be used for injection.

    Args:
        identifier: The ID to sanitize
        name: Name of the identifier for error messages
        allow_none: If True, return None for None input instead of raising error

    Returns:
        Sanitized identifier (or None if allow_none=True and input is None)

    Raises:
        ValueError: If identifier is invalid or contains dangerous characters
    """
    if identifier is None:
        if allow_none:
            return None
        raise ValueError(f"{name} cannot be None")

    if not isinstance(identifier, str):
        raise ValueError(f"{name} must be a string, got {type(identifier).__name__}")

    identifier = identifier.strip()

    if not identifier:
        raise ValueError(f"{name} cannot be empty")

    if identifier.startswith("$") or "{" in identifier or "}" in identifier:
        raise ValueError(
            f"{name} contains invalid characters that could be used for injection: {identifier}"
        )

    # Slack IDs are uppercase alphanumeric; message timestamps add a dot
    if not re.match(r"^[A-Za-z0-9_.-]+$", identifier):
        raise ValueError(
            f"{name} contains invalid characters. "
            f"Only alphanumeric characters, dots, hyphens, and underscores are allowed: {identifier}"
        )

    MAX_ID_LENGTH = 256
    if len(identifier) > MAX_ID_LENGTH:
        raise ValueError(f"{name} is too long (max {MAX_ID_LENGTH} characters): {len(identifier)}")

    return identifier


def get_persistence_error_message(error: Exception, operation_name: str = "operation") -> str:
    """
    Convert MongoDB errors to user-friendly messages.

    Args:
        error: The exception that occurred (a PersistenceFailure or a raw PyMongoError)
        operation_name: Name of the operation for logging context

    Returns:
        User-friendly error message string
    """
    from pymongo.errors import (
        ConnectionFailure,
        OperationFailure,
        PyMongoError,
        ServerSelectionTimeoutError,
    )
    from groupbot.logger import logger

    cause = getattr(error, "cause", error)
    logger.error("Database error in %s: %s", operation_name, cause)

    if isinstance(cause, (ConnectionFailure, ServerSelectionTimeoutError)):
        return (
            "I'm having trouble connecting to the database. "
            "Nothing was saved, please try again in a moment."
        )
    elif isinstance(cause, OperationFailure):
        return (
            "A database operation failed and nothing was saved. "
            "Please try again or contact support if the issue persists."
        )
    elif isinstance(cause, PyMongoError):
        return (
            "A database error occurred and nothing was saved. "
            "Please try again in a moment."
        )
    else:
        return (
            "An unexpected error occurred while accessing the database. "
            "Please try again or contact support."
        )
