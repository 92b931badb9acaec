"""Git branch name sanitization."""

from __future__ import annotations

import re

DEFAULT_BRANCH_TOKEN = "task"
BRANCH_PREFIX = "feature/"

# ~ ^ : ? * [ ] \ @ { } ( ) ! # and control characters
_INVALID_CHARS = re.compile(r"[~^:?*\[\]\\@{}()!#\x00-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s")
_HYPHEN_RUNS = re.compile(r"-{2,}")
_DOT_RUNS = re.compile(r"\.{2,}")
_SLASH_RUNS = re.compile(r"/{2,}")
_EDGE_CHARS = "/.-"
_LOCK_SUFFIX = ".lock"


def _sanitize_once(value: str) -> str:
    sanitized = value.lower().strip()
    sanitized = _WHITESPACE.sub("-", sanitized)
    sanitized = _INVALID_CHARS.sub("-", sanitized)
    sanitized = _HYPHEN_RUNS.sub("-", sanitized)
    sanitized = _DOT_RUNS.sub(".", sanitized)
    sanitized = _SLASH_RUNS.sub("/", sanitized)

    # No path component may start with "." or end with ".lock"
    components = []
    for component in sanitized.split("/"):
        component = component.lstrip(".")
        if component.endswith(_LOCK_SUFFIX):
            component = component[: -len(_LOCK_SUFFIX)]
        if component:
            components.append(component)

    return "/".join(components).strip(_EDGE_CHARS)


def sanitize_branch_name(value: str) -> str:
    """Turn an arbitrary string into a valid git branch name component.

    Lowercases, turns whitespace and characters git rejects into hyphens,
    collapses repeated hyphens, dots and slashes, strips leading/trailing
    slashes, dots and hyphens, and drops a trailing ``.lock``. The rules are
    applied until nothing changes, so the result is stable under repeated
    sanitization. Never returns an empty string: inputs with nothing usable
    left become ``"task"``.

    Examples:
        >>> sanitize_branch_name("TASK-123: Fix bug")
        'task-123-fix-bug'
        >>> sanitize_branch_name("-fix-bug-")
        'fix-bug'
        >>> sanitize_branch_name("@")
        'task'
    """
    sanitized = value
    while True:
        cleaned = _sanitize_once(sanitized)
        if cleaned == sanitized:
            break
        sanitized = cleaned

    if not sanitized or sanitized == "@":
        return DEFAULT_BRANCH_TOKEN
    return sanitized


def branch_for_ticket(ticket_id: str) -> str:
    """Branch a pipeline works on for a ticket, e.g. ``feature/ios-1234``."""
    return f"{BRANCH_PREFIX}{sanitize_branch_name(ticket_id)}"
