"""Sanitizing and truncation of untrusted provider text."""

import re

ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")
# Tab (0x09) and newline (0x0A) survive
CONTROL_CHARACTERS_PATTERN = re.compile(r"[\x00-\x08\x0B-\x1F\x7F]")

MAX_TEXT_LENGTH = 500
MAX_ERROR_LENGTH = 1000
TRUNCATION_SUFFIX = "..."


def sanitize(value: str) -> str:
    """Strip ANSI escape sequences and control characters, then trim."""
    value = ANSI_ESCAPE_PATTERN.sub("", value)
    return CONTROL_CHARACTERS_PATTERN.sub("", value).strip()


def truncate(value: str, limit: int = MAX_TEXT_LENGTH) -> tuple[str, bool]:
    """
    Cut ``value`` to at most ``limit`` characters.

    Returns:
        ``(text, truncated)``; truncated text ends with ``...`` and is
        exactly ``limit`` characters long
    """
    if len(value) <= limit:
        return value, False
    return value[: limit - len(TRUNCATION_SUFFIX)] + TRUNCATION_SUFFIX, True


def clean_error_message(value: str) -> str:
    return truncate(CONTROL_CHARACTERS_PATTERN.sub("", value).strip(), MAX_ERROR_LENGTH)[0]
