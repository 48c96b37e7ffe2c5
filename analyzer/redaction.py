"""Redaction engine — scrubs secrets from headers and JSON-like bodies."""

import json
from collections.abc import Mapping

REDACTED = "[REDACTED]"
TRIMMED = "\n[TRIMMED]"
UNPARSEABLE = "[UNPARSEABLE]"

DEFAULT_PREVIEW_LIMIT = 20000

SENSITIVE_HEADER_KEYS = (
    "authorization",
    "cookie",
    "set-cookie",
    "token",
    "secret",
    "x-api-key",
)

SENSITIVE_BODY_KEYS = ("password", "auth", "token", "cookie", "secret", "otp", "pin")


def _matches(name, needles) -> bool:
    lowered = str(name).lower()
    return any(needle in lowered for needle in needles)


def redact_headers(headers, extra_keys=()) -> dict:
    """Return a copy of ``headers`` with sensitive values replaced.

    Accepts a mapping, a list of ``[name, value]`` pairs (the shape a
    browser ``Headers`` object serialises to) or ``None``.
    """
    if not headers:
        return {}
    keys = SENSITIVE_HEADER_KEYS + tuple(extra_keys)
    items = headers.items() if isinstance(headers, Mapping) else headers

    out = {}
    for pair in items:
        try:
            name, value = pair
        except (TypeError, ValueError):
            continue
        out[name] = REDACTED if _matches(name, keys) else value
    return out


def redact_body(value, extra_keys=()):
    """Recursively redact sensitive keys inside a JSON-like value.

    Strings are parsed as JSON when possible; opaque text comes back
    unchanged. The marker is a scalar that never matches a key, so
    applying this twice gives the same result as applying it once.
    """
    keys = SENSITIVE_BODY_KEYS + tuple(extra_keys)
    return _redact(value, keys)


def _redact(value, keys):
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return value
        if isinstance(parsed, (dict, list)):
            return _redact(parsed, keys)
        return value

    if isinstance(value, Mapping):
        return {
            k: REDACTED if _matches(k, keys) else _redact(v, keys)
            for k, v in value.items()
        }

    if isinstance(value, (list, tuple)):
        return [_redact(item, keys) for item in value]

    return value


def truncate(text, limit: int = DEFAULT_PREVIEW_LIMIT):
    """Bound ``text`` to ``limit`` characters plus the trim marker."""
    if not isinstance(text, str):
        return text
    if len(text) <= limit:
        return text
    return text[:limit] + TRIMMED


def preview(value, limit: int = DEFAULT_PREVIEW_LIMIT):
    """Stringify ``value`` (JSON for non-strings) and truncate it."""
    if value is None:
        return None
    if not isinstance(value, str):
        try:
            value = json.dumps(value)
        except (TypeError, ValueError):
            return "[UNSERIALIZABLE]"
    return truncate(value, limit)
