#!/usr/bin/env python3
"""Run one registered command from a UI config and print its result as JSON."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from localui_args import sanitize_id  # noqa: E402
from localui_config import load_ui_config  # noqa: E402
from localui_exec import run_command  # noqa: E402


def parse_arg_pairs(pairs: list[str]) -> dict[str, Any]:
    args: dict[str, Any] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"argument must be name=value: {pair}")
        name, value = pair.split("=", 1)
        name = name.strip()
        if not name:
            raise ValueError(f"argument name is empty: {pair}")
        args[name] = value
    return args


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", required=True, help="Path to a UI config JSON file.")
    parser.add_argument("--command-id", required=True)
    parser.add_argument(
        "--arg",
        action="append",
        default=[],
        help="Substitution argument as name=value. May be repeated.",
    )
    args = parser.parse_args()

    config, failure = load_ui_config(Path(args.config).resolve())
    if failure is not None:
        print(f"invalid config: {failure.message}", file=sys.stderr)
        return 2

    command_id = sanitize_id(args.command_id)
    command = config.get_command(command_id)
    if command is None:
        print(f"Unknown command: {command_id}", file=sys.stderr)
        return 2

    try:
        command_args = parse_arg_pairs(args.arg)
    except ValueError as ex:
        print(str(ex), file=sys.stderr)
        return 2

    result, failure = run_command(
        command,
        command_args,
        config.whitelist,
        timeout_seconds=config.command_timeout_seconds,
    )
    if failure is not None:
        print(f"[{failure.kind}] {failure.message}", file=sys.stderr)
        return 2

    print(json.dumps({"commandId": command_id, "result": result.to_payload()}, indent=2, ensure_ascii=False))
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
