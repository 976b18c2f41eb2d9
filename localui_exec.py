"""Whitelisted command execution: template -> argv -> subprocess result."""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from localui_args import substitute_tokens
from localui_elements import CommandDefinition
from localui_errors import (
    BINARY_NOT_FOUND,
    EMPTY_BINARY,
    EMPTY_TEMPLATE,
    NOT_WHITELISTED,
    PATH_NOT_ALLOWED,
    SPAWN_FAILED,
    Failure,
)
from localui_tokens import tokenize


logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT_SECONDS = 120.0
TIMEOUT_EXIT_CODE = 124
_PATH_SEPARATORS = ("/", "\\")


def utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _no_window_creationflags() -> int:
    if os.name != "nt":
        return 0
    return int(getattr(subprocess, "CREATE_NO_WINDOW", 0))


def _decode_stream(data: Any) -> str:
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    return bytes(data).decode("utf-8", errors="replace")


@dataclass(frozen=True)
class ExecutionResult:
    ok: bool
    code: int
    stdout: str
    stderr: str
    timestamp: str
    timed_out: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "code": self.code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "timestamp": self.timestamp,
            "timedOut": self.timed_out,
        }


def assert_allowed_binary(raw_binary: str, allowed: Iterable[str]) -> Failure | None:
    binary = str(raw_binary or "")
    if not binary:
        return Failure(EMPTY_BINARY, "Empty binary.")
    if any(separator in binary for separator in _PATH_SEPARATORS):
        return Failure(
            PATH_NOT_ALLOWED,
            "Binary paths are not allowed; use whitelist names only.",
            subject=binary,
        )
    base = os.path.basename(binary)
    if base not in set(allowed):
        return Failure(NOT_WHITELISTED, f"Binary not whitelisted: {base}", subject=base)
    return None


def _candidate_names(binary: str) -> list[str]:
    if os.name != "nt":
        return [binary]
    names = [binary]
    for ext in os.environ.get("PATHEXT", ".COM;.EXE;.BAT;.CMD").split(os.pathsep):
        ext = ext.strip()
        if ext and not binary.lower().endswith(ext.lower()):
            names.append(binary + ext)
    return names


def find_executable(binary: str, path_env: str | None = None) -> tuple[str | None, Failure | None]:
    search_path = os.environ.get("PATH", "") if path_env is None else path_env
    for directory in search_path.split(os.pathsep):
        # An empty PATH entry would mean the working directory.
        if not directory.strip():
            continue
        for name in _candidate_names(binary):
            candidate = os.path.join(directory, name)
            if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
                return os.path.abspath(candidate), None
    return None, Failure(BINARY_NOT_FOUND, f"Binary not found in PATH: {binary}", subject=binary)


def resolve_binary(
    raw_binary: str,
    allowed: Iterable[str],
    *,
    path_env: str | None = None,
) -> tuple[str | None, Failure | None]:
    failure = assert_allowed_binary(raw_binary, allowed)
    if failure is not None:
        return None, failure
    return find_executable(str(raw_binary), path_env)


def build_argv(
    command: CommandDefinition,
    args: Mapping[str, Any],
    whitelist: Iterable[str],
    *,
    path_env: str | None = None,
) -> tuple[list[str] | None, Failure | None]:
    """Turn a command definition and caller arguments into a resolved argv list.

    Placeholders are substituted before the whitelist check, so a placeholder in
    the binary position is validated on its substituted value.
    """
    template = str(command.template or "").strip()
    if not template:
        return None, Failure(EMPTY_TEMPLATE, "Command template is required.")

    tokens, failure = tokenize(template)
    if failure is not None:
        return None, failure

    tokens, failure = substitute_tokens(tokens or [], args)
    if failure is not None:
        return None, failure

    binary = tokens[0] if tokens else ""
    resolved, failure = resolve_binary(binary, whitelist, path_env=path_env)
    if failure is not None:
        return None, failure
    return [str(resolved), *tokens[1:]], None


def run_command(
    command: CommandDefinition,
    args: Mapping[str, Any],
    whitelist: Iterable[str],
    *,
    timeout_seconds: float | None = DEFAULT_COMMAND_TIMEOUT_SECONDS,
    path_env: str | None = None,
) -> tuple[ExecutionResult | None, Failure | None]:
    argv, failure = build_argv(command, args, whitelist, path_env=path_env)
    if failure is not None:
        logger.warning("refused command %s: %s", command.id, failure.message)
        return None, failure

    argv = argv or []
    timeout = float(timeout_seconds) if timeout_seconds else None
    logger.info("running command %s: %s (%d args)", command.id, argv[0], len(argv) - 1)
    try:
        completed = subprocess.run(
            argv,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            timeout=timeout,
            creationflags=_no_window_creationflags(),
        )
    except subprocess.TimeoutExpired as ex:
        logger.warning("command %s timed out after %.1fs", command.id, timeout or 0.0)
        return (
            ExecutionResult(
                ok=False,
                code=TIMEOUT_EXIT_CODE,
                stdout=_decode_stream(ex.stdout),
                stderr=_decode_stream(ex.stderr),
                timestamp=utc_now_iso(),
                timed_out=True,
            ),
            None,
        )
    except OSError as ex:
        logger.error("unable to start command %s: %s", command.id, ex)
        return None, Failure(
            SPAWN_FAILED,
            f"Unable to start process for command: {os.path.basename(argv[0])} ({ex})",
            subject=argv[0],
        )

    code = int(completed.returncode)
    logger.info("command %s finished rc=%d", command.id, code)
    return (
        ExecutionResult(
            ok=code == 0,
            code=code,
            stdout=_decode_stream(completed.stdout),
            stderr=_decode_stream(completed.stderr),
            timestamp=utc_now_iso(),
        ),
        None,
    )
