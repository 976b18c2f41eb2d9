#!/usr/bin/env python3
"""Validate a UI config and check every registered command against its whitelist."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from localui_args import placeholder_names  # noqa: E402
from localui_config import Configuration, load_ui_config  # noqa: E402
from localui_exec import find_executable, resolve_binary  # noqa: E402
from localui_tokens import tokenize  # noqa: E402


def check_commands(config: Configuration, *, require_binaries: bool) -> list[dict[str, Any]]:
    issues: list[dict[str, Any]] = []
    for command_id, command in sorted(config.commands.items()):
        tokens, failure = tokenize(command.template)
        if failure is not None:
            issues.append({"commandId": command_id, "kind": failure.kind, "message": failure.message})
            continue
        binary = (tokens or [""])[0]
        if placeholder_names([binary]):
            # Binary chosen by the caller; only checked at run time.
            continue
        if require_binaries:
            _, failure = resolve_binary(binary, config.whitelist)
        else:
            _, failure = resolve_binary(binary, config.whitelist, path_env="")
            if failure is not None and failure.kind == "binary_not_found":
                failure = None
        if failure is not None:
            issues.append({"commandId": command_id, "kind": failure.kind, "message": failure.message})
    return issues


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", required=True, help="Path to a UI config JSON file.")
    parser.add_argument(
        "--require-binaries",
        action="store_true",
        help="Also require every whitelisted command binary to resolve on PATH.",
    )
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    config_path = Path(args.config).resolve()
    if not config_path.exists():
        print(f"missing config: {config_path}", file=sys.stderr)
        return 2

    config, failure = load_ui_config(config_path)
    if failure is not None:
        print(f"invalid config: {failure.message}", file=sys.stderr)
        return 2

    issues = check_commands(config, require_binaries=args.require_binaries)
    if args.verbose:
        for command_id, command in sorted(config.commands.items()):
            print(f"{command_id}: {command.template}")
        for name in config.whitelist:
            path, _ = find_executable(name)
            print(f"whitelist {name}: {path or '(not on PATH)'}")

    if issues:
        for issue in issues:
            print(f"FAIL {issue['commandId']}: [{issue['kind']}] {issue['message']}")
        return 1

    print(f"OK {config_path.name}: elements={config.element_count()} commands={len(config.commands)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
