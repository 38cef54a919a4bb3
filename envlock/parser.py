"""Dotenv-style configuration parser and serializer.

Supports:
- KEY=VALUE lines
- Full-line comments starting with ``#`` and inline comments after
  unquoted values
- Single-quoted values (literal, no escapes)
- Double-quoted values with ``\\n``, ``\\r``, ``\\t``, ``\\"`` and ``\\\\``
  escapes, optionally spanning several lines

Lines without ``=`` or with an empty key are ignored.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from envlock.exceptions import FormatError, UnclosedQuoteError

_ESCAPE_RE = re.compile(r'\\([nrt"\\])')
_UNESCAPES = {"n": "\n", "r": "\r", "t": "\t", '"': '"', "\\": "\\"}

_ESCAPES = str.maketrans(
    {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\r": "\\r", "\t": "\\t"}
)
_NEEDS_QUOTES = frozenset('\n\r\t"\\# ')


def unescape(value: str) -> str:
    """Expand escape sequences of a double-quoted value in a single pass."""
    return _ESCAPE_RE.sub(lambda m: _UNESCAPES[m.group(1)], value)


def parse(text: str) -> dict[str, str]:
    """Parse configuration text into a dictionary.

    Args:
        text: Configuration text

    Returns:
        Mapping of keys to values; later duplicates win

    Raises:
        FormatError: If text is not a string
        UnclosedQuoteError: If a multi-line double-quoted value is never closed
    """
    if not isinstance(text, str):
        raise FormatError(f"Config text must be a string, not {type(text).__name__}")

    result: dict[str, str] = {}
    lines = text.split("\n")
    i = 0

    while i < len(lines):
        line = lines[i].strip()
        i += 1

        if not line or line.startswith("#"):
            continue

        key, sep, value = line.partition("=")
        key = key.strip()
        value = value.strip()
        if not sep or not key:
            continue

        if value.startswith("'") and value.endswith("'"):
            value = value[1:-1]
        elif value.startswith('"'):
            if len(value) > 1 and value.endswith('"'):
                value = unescape(value[1:-1])
            else:
                parts = [value[1:]]
                while i < len(lines):
                    raw = lines[i]
                    i += 1
                    stripped = raw.rstrip()
                    if stripped.endswith('"'):
                        parts.append(stripped[:-1])
                        break
                    parts.append(raw)
                else:
                    raise UnclosedQuoteError(key)
                value = unescape("\n".join(parts))
        else:
            value = value.partition("#")[0].strip()

        result[key] = value

    return result


def _needs_quotes(value: str) -> bool:
    if not _NEEDS_QUOTES.isdisjoint(value):
        return True
    # These would otherwise be lost or reinterpreted on the way back in
    return value.startswith("'") or value != value.strip()


def stringify(data: Mapping[str, Any]) -> str:
    """Serialize a mapping into configuration text.

    Args:
        data: Mapping of keys to values; None becomes an empty value and
            other non-string values are converted with ``str()``

    Returns:
        One ``KEY=value`` line per entry, joined by newlines
    """
    lines = []
    for key, value in data.items():
        if not isinstance(key, str) or not key:
            continue

        text = "" if value is None else str(value)
        if _needs_quotes(text):
            lines.append(f'{key}="{text.translate(_ESCAPES)}"')
        else:
            lines.append(f"{key}={text}")

    return "\n".join(lines)
