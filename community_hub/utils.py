"""
Shared helpers: logging setup and label formatting.
"""
import logging
import re

from community_hub.core import config


logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger configured with the application log level."""
    return logging.getLogger(name)


def format_readable_label(value: str) -> str:
    """
    Turn an enum-ish or free-text value into a display label.

    "SOFTWARE_ENGINEER" -> "Software Engineer", "lagos island" -> "Lagos Island"
    """
    words = [word for word in re.split(r"[_\s]+", value.strip()) if word]
    return " ".join(word[0].upper() + word[1:].lower() for word in words)
