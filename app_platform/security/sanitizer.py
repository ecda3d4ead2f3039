"""Input sanitization and injection screening for storage parameters."""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Mapping, Optional, Pattern, Tuple

logger = logging.getLogger(__name__)

MAX_STRING_LENGTH = 10_000

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_TAG_LIKE = re.compile(r"<[^<>]*>")
_ANGLE_BRACKETS = re.compile(r"[<>]")

INJECTION_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|TRUNCATE)\b", re.IGNORECASE),
    re.compile(r"\b(UNION|WHERE|ORDER\s+BY|GROUP\s+BY)\b", re.IGNORECASE),
    re.compile(r"(--|/\*|\*/|;|\\'|\\\")"),
    re.compile(r"\b(EXEC|EXECUTE)\b|\b(sp|xp)_\w*", re.IGNORECASE),
)


def sanitize_string(value: str, *, max_length: int = MAX_STRING_LENGTH) -> str:
    """Strip tags, stray angle brackets and control characters; trim and cap."""

    cleaned = _CONTROL_CHARS.sub("", value)
    cleaned = _TAG_LIKE.sub("", cleaned)
    cleaned = _ANGLE_BRACKETS.sub("", cleaned)
    return cleaned.strip()[:max_length]


def sanitize_input(value: Any, *, max_length: int = MAX_STRING_LENGTH) -> Any:
    """Recursively sanitize strings inside dicts, lists and tuples.

    Mapping keys are sanitized too. Non-string scalars pass through unchanged.
    """

    if isinstance(value, str):
        return sanitize_string(value, max_length=max_length)
    if isinstance(value, Mapping):
        return {
            (sanitize_string(k, max_length=max_length) if isinstance(k, str) else k): sanitize_input(v, max_length=max_length)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        items = [sanitize_input(item, max_length=max_length) for item in value]
        return type(value)(items) if isinstance(value, tuple) else items
    return value


def find_injection(params: Mapping[str, Any]) -> Optional[str]:
    """Return the first parameter name whose value matches the deny-list."""

    for key, value in _walk(params):
        if not isinstance(value, str):
            continue
        for pattern in INJECTION_PATTERNS:
            if pattern.search(value):
                logger.warning("Injection-like value rejected in parameter %s", key)
                return key
    return None


def _walk(params: Mapping[str, Any], prefix: str = "") -> Iterable[Tuple[str, Any]]:
    for key, value in params.items():
        name = f"{prefix}{key}"
        if isinstance(value, Mapping):
            yield from _walk(value, prefix=f"{name}.")
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                yield f"{name}[{index}]", item
        else:
            yield name, value
