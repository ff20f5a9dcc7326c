"""Field rules shared by the project and task schemas."""

import re
from typing import Literal


ProjectStatus = Literal["active", "archived", "completed"]
Priority = Literal["low", "medium", "high", "urgent"]
TaskStatus = Literal["pending", "in_progress", "completed", "cancelled"]

VALID_COLORS = frozenset({
    "black", "red", "green", "yellow", "blue", "magenta", "cyan", "white", "gray",
    "bright-red", "bright-green", "bright-yellow", "bright-blue",
    "bright-magenta", "bright-cyan", "bright-white",
})

MAX_ALIASES = 10
ALIAS_PATTERN = re.compile(r"^[a-z0-9_-]{2,30}$")
MAX_TAG_LENGTH = 50


def non_blank(value: str, what: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError(f"{what} cannot be empty")
    return value


def check_color(value: str) -> str:
    value = value.strip().lower()
    if value and value not in VALID_COLORS:
        raise ValueError("invalid color: must be a valid terminal color name")
    return value


def check_aliases(aliases: list[str]) -> list[str]:
    if len(aliases) > MAX_ALIASES:
        raise ValueError(f"project cannot have more than {MAX_ALIASES} aliases")
    seen: set[str] = set()
    cleaned = []
    for alias in aliases:
        alias = alias.strip()
        if not ALIAS_PATTERN.match(alias):
            raise ValueError(
                f"alias {alias!r} must be 2-30 lowercase alphanumeric characters, hyphens or underscores"
            )
        if alias.lower() in seen:
            raise ValueError(f"duplicate alias: {alias}")
        seen.add(alias.lower())
        cleaned.append(alias)
    return cleaned


def check_tags(tags: list[str]) -> list[str]:
    """Strip, reject blanks, drop duplicates keeping the first occurrence."""
    cleaned: list[str] = []
    for tag in tags:
        tag = tag.strip()
        if not tag:
            raise ValueError("tag cannot be empty")
        if len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"tag cannot exceed {MAX_TAG_LENGTH} characters")
        if tag not in cleaned:
            cleaned.append(tag)
    return cleaned
