"""UI configuration loading, validation and the reloadable configuration service."""

from __future__ import annotations

import copy
import json
import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from localui_elements import CommandDefinition, Element, iter_elements, normalize_elements
from localui_errors import (
    CONFIG_PARSE,
    CONFIG_READ,
    INVALID_CONFIG,
    INVALID_PROFILE,
    PROFILE_NOT_FOUND,
    Failure,
)
from localui_exec import DEFAULT_COMMAND_TIMEOUT_SECONDS


logger = logging.getLogger(__name__)

ROOT_KEYS = {"globals", "elements", "whitelist", "commandTimeoutSeconds"}
PROFILE_NAME_RE = re.compile(r"^[A-Za-z0-9_./-]+$")


def base_config() -> dict[str, Any]:
    return {
        "globals": {
            "theme": {
                "palette": {
                    "primary": "#111827",
                    "accent": "#10B981",
                    "surface": "#F8FAFC",
                    "muted": "#64748B",
                    "danger": "#DC2626",
                },
                "font": 'Inter, system-ui, -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif',
                "margins": 12,
                "gap": 8,
                "layout": "grid",
            },
            "defaults": {
                "w": 12,
                "h": 2,
                "classes": "",
            },
        },
        "elements": [],
        "whitelist": [],
    }


def merge_dicts(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(dict(base))
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_dicts(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


def _unsupported_keys(
    obj: Mapping[str, Any],
    allowed: set[str],
    *,
    allow_prefixes: tuple[str, ...] = ("x-",),
) -> list[str]:
    extras: list[str] = []
    for key in obj.keys():
        if key in allowed:
            continue
        if key == "$schema":
            continue
        if any(str(key).startswith(prefix) for prefix in allow_prefixes):
            continue
        extras.append(str(key))
    return sorted(set(extras))


def load_json(path: Path) -> tuple[dict[str, Any] | None, Failure | None]:
    try:
        text = path.read_text(encoding="utf-8-sig")
    except OSError as ex:
        return None, Failure(CONFIG_READ, f"Unable to read configuration {path}: {ex}", subject=str(path))
    try:
        payload = json.loads(text)
    except (ValueError, RecursionError) as ex:
        return None, Failure(CONFIG_PARSE, f"Unable to parse configuration JSON {path}: {ex}", subject=str(path))
    if not isinstance(payload, dict):
        return None, Failure(CONFIG_PARSE, f"Expected object JSON: {path}", subject=str(path))
    return payload, None


def normalize_whitelist(value: Any) -> tuple[tuple[str, ...] | None, Failure | None]:
    if value is None:
        return (), None
    if not isinstance(value, list):
        return None, Failure(INVALID_CONFIG, "whitelist must be a list.")
    result: list[str] = []
    for index, item in enumerate(value, 1):
        text = str(item).strip() if item is not None else ""
        if not text:
            return None, Failure(INVALID_CONFIG, f"whitelist[{index}] must be a non-empty string.")
        if text not in result:
            result.append(text)
    return tuple(result), None


def _command_timeout(value: Any) -> tuple[float | None, Failure | None]:
    if value is None:
        return None, None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None, Failure(INVALID_CONFIG, "commandTimeoutSeconds must be a number or null.")
    if value < 0:
        return None, Failure(INVALID_CONFIG, "commandTimeoutSeconds must not be negative.")
    return (float(value) if value > 0 else None), None


@dataclass(frozen=True)
class Configuration:
    globals: Mapping[str, Any]
    elements: tuple[Element, ...]
    whitelist: tuple[str, ...]
    commands: Mapping[str, CommandDefinition]
    command_timeout_seconds: float | None
    source: str

    def get_command(self, command_id: str) -> CommandDefinition | None:
        return self.commands.get(command_id)

    def element_count(self) -> int:
        return sum(1 for _ in iter_elements(self.elements))

    def to_payload(self) -> dict[str, Any]:
        return {
            "globals": _thaw(self.globals),
            "elements": [element.to_payload() for element in self.elements],
            "whitelist": list(self.whitelist),
        }


def build_configuration(data: Mapping[str, Any], source: str = "") -> tuple[Configuration | None, Failure | None]:
    extras = _unsupported_keys(data, ROOT_KEYS)
    if extras:
        return None, Failure(INVALID_CONFIG, f"UI config {source or '(inline)'} has unsupported keys: {', '.join(extras)}")

    globals_ = base_config()["globals"]
    raw_globals = data.get("globals")
    if raw_globals is not None and not isinstance(raw_globals, dict):
        return None, Failure(INVALID_CONFIG, "globals must be an object.")

    try:
        if raw_globals is not None:
            globals_ = merge_dicts(globals_, raw_globals)
        tree, failure = normalize_elements(data.get("elements", []), globals_)
        frozen_globals = _freeze(globals_)
    except RecursionError:
        return None, Failure(INVALID_CONFIG, f"UI config {source or '(inline)'} is nested too deeply.")
    if failure is not None:
        return None, failure

    whitelist, failure = normalize_whitelist(data.get("whitelist"))
    if failure is not None:
        return None, failure

    timeout, failure = _command_timeout(data.get("commandTimeoutSeconds", DEFAULT_COMMAND_TIMEOUT_SECONDS))
    if failure is not None:
        return None, failure

    return (
        Configuration(
            globals=frozen_globals,
            elements=tree.elements,
            whitelist=whitelist or (),
            commands=MappingProxyType(dict(tree.commands)),
            command_timeout_seconds=timeout,
            source=source,
        ),
        None,
    )


def load_ui_config(
    path: Path,
    fallback_path: Path | None = None,
) -> tuple[Configuration | None, Failure | None]:
    """Load and normalize a UI configuration document.

    ``path`` is used when it exists, then ``fallback_path``; with neither the
    built-in base configuration (no elements, empty whitelist) is returned.
    """
    source_path: Path | None = None
    if path.is_file():
        source_path = path
    elif fallback_path is not None and fallback_path.is_file():
        source_path = fallback_path

    if source_path is None:
        logger.warning("no UI configuration at %s; using built-in defaults", path)
        return build_configuration({}, source="")

    data, failure = load_json(source_path)
    if failure is not None:
        return None, failure
    return build_configuration(data or {}, source=str(source_path))


class ConfigService:
    """Holds the active Configuration; loads lazily and swaps whole snapshots on reload."""

    def __init__(self, config_path: Path, fallback_path: Path | None = None) -> None:
        self.config_path = config_path
        self.fallback_path = fallback_path
        self._lock = threading.Lock()
        self._current: Configuration | None = None

    def get(self) -> tuple[Configuration | None, Failure | None]:
        current = self._current
        if current is not None:
            return current, None
        with self._lock:
            if self._current is not None:
                return self._current, None
            return self._load_locked()

    def reload(self) -> tuple[Configuration | None, Failure | None]:
        with self._lock:
            return self._load_locked()

    def _load_locked(self) -> tuple[Configuration | None, Failure | None]:
        config, failure = load_ui_config(self.config_path, self.fallback_path)
        if failure is not None:
            logger.error("configuration load failed: %s", failure.message)
            return None, failure
        self._current = config
        logger.info(
            "loaded configuration %s: elements=%d commands=%d whitelist=%d",
            config.source or "(defaults)",
            config.element_count(),
            len(config.commands),
            len(config.whitelist),
        )
        return config, None


def resolve_profile_path(config_dir: Path, name: str) -> tuple[Path | None, Failure | None]:
    text = str(name or "").strip()
    if not text:
        return None, Failure(INVALID_PROFILE, "name is required.")
    if ".." in text or text.startswith("/"):
        return None, Failure(INVALID_PROFILE, "Invalid config name.", subject=text)
    if not PROFILE_NAME_RE.match(text):
        return None, Failure(INVALID_PROFILE, "Invalid config name.", subject=text)
    if not text.endswith(".json"):
        text += ".json"

    base = config_dir.resolve()
    candidate = (base / text).resolve()
    try:
        candidate.relative_to(base)
    except ValueError:
        return None, Failure(INVALID_PROFILE, "Config path escapes the configuration directory.", subject=text)
    if not candidate.is_file():
        return None, Failure(PROFILE_NOT_FOUND, f"Config not found: {text}", subject=text)
    return candidate, None


def load_profile(config_dir: Path, name: str) -> tuple[dict[str, Any] | None, Failure | None]:
    path, failure = resolve_profile_path(config_dir, name)
    if failure is not None:
        return None, failure
    return load_json(path)
