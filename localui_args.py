"""Argument coercion and ``${name}`` placeholder substitution for command templates."""

from __future__ import annotations

import json
import math
import re
from typing import Any, Mapping, Sequence

from localui_errors import CONTROL_CHARACTER, FORBIDDEN_CHARACTER, MISSING_ARGUMENT, Failure


PLACEHOLDER_RE = re.compile(r"\$\{([A-Za-z0-9_]+)\}")
CONTROL_CHARS_RE = re.compile(r"[\x00-\x1F\x7F]")
FORBIDDEN_CHARS_RE = re.compile(r"[;&|`$<>]")
_ID_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_\-]")


def sanitize_id(value: Any) -> str:
    return _ID_UNSAFE_RE.sub("_", str(value))


def _format_number(value: int | float) -> str:
    if not isinstance(value, float):
        return str(value)
    if math.isfinite(value) and value.is_integer():
        return str(int(value))
    return repr(value)


def coerce_arg(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return _format_number(value)
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def sanitize_arg(value: Any, name: str = "") -> tuple[str | None, Failure | None]:
    """Coerce a JSON argument value to text and reject control or shell metacharacters."""
    text = coerce_arg(value)
    label = f"Argument '{name}'" if name else "Argument"
    if CONTROL_CHARS_RE.search(text):
        return None, Failure(CONTROL_CHARACTER, f"{label} contains control characters.", subject=name)
    if FORBIDDEN_CHARS_RE.search(text):
        return None, Failure(FORBIDDEN_CHARACTER, f"{label} contains forbidden characters.", subject=name)
    return text, None


def placeholder_names(parts: Sequence[str]) -> list[str]:
    names: list[str] = []
    for part in parts:
        for match in PLACEHOLDER_RE.finditer(part):
            if match.group(1) not in names:
                names.append(match.group(1))
    return names


def substitute_tokens(
    tokens: Sequence[str],
    args: Mapping[str, Any],
) -> tuple[list[str] | None, Failure | None]:
    # Substitution never re-splits: one token in, one token out.
    result: list[str] = []
    for token in tokens:
        pieces: list[str] = []
        cursor = 0
        for match in PLACEHOLDER_RE.finditer(token):
            key = match.group(1)
            if key not in args:
                return None, Failure(MISSING_ARGUMENT, f"Missing argument: {key}", subject=key)
            value, failure = sanitize_arg(args[key], key)
            if failure is not None:
                return None, failure
            pieces.append(token[cursor : match.start()])
            pieces.append(value or "")
            cursor = match.end()
        pieces.append(token[cursor:])
        result.append("".join(pieces))
    return result, None
