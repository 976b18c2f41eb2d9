#!/usr/bin/env python3
"""JSON HTTP backend for locally configured UI elements that run whitelisted commands."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlsplit

from localui_args import sanitize_id
from localui_config import ConfigService, load_profile
from localui_errors import INVALID_PROFILE, PROFILE_NOT_FOUND, Failure
from localui_exec import run_command
from localui_store import ResultStore


logger = logging.getLogger("localui")

DEFAULT_BASE_PATH = "/api"
MAX_BODY_BYTES = 1_000_000


def _json_error(message: str, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"ok": False, "error": message}
    payload.update(extra)
    return payload


def _failure_status(failure: Failure) -> int:
    if failure.kind == PROFILE_NOT_FOUND:
        return 404
    if failure.kind == INVALID_PROFILE or failure.is_exec_failure():
        return 400
    return 500


class LocalUiApp:
    """Request routing for ``/run``, ``/read``, ``/config`` and ``/reload``."""

    def __init__(
        self,
        config: ConfigService,
        store: ResultStore,
        config_dir: Path,
        *,
        base_path: str = DEFAULT_BASE_PATH,
        path_env: str | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.config_dir = config_dir
        base = str(base_path or "").strip().strip("/")
        self.base_path = f"/{base}" if base else ""
        self.path_env = path_env

    def route_path(self, raw_path: str) -> tuple[str, dict[str, str]]:
        parsed = urlsplit(raw_path or "/")
        path = "/" + (parsed.path or "").lstrip("/")
        base = self.base_path
        if base and (path == base or path.startswith(base + "/")):
            path = path[len(base) :] or "/"
        query = {key: values[0] for key, values in parse_qs(parsed.query, keep_blank_values=True).items()}
        return path.rstrip("/") or "/", query

    def handle(self, method: str, raw_path: str, body: bytes = b"") -> tuple[int, dict[str, Any]]:
        path, query = self.route_path(raw_path)
        verb = str(method or "GET").upper()
        if verb == "POST" and path == "/run":
            return self.handle_run(body)
        if verb == "POST" and path == "/reload":
            return self.handle_reload()
        if verb == "GET" and path == "/read":
            return self.handle_read(query)
        if verb == "GET" and path == "/config":
            return self.handle_config(query)
        return 404, _json_error("Not Found")

    def handle_run(self, body: bytes) -> tuple[int, dict[str, Any]]:
        try:
            payload = json.loads(body.decode("utf-8")) if body else None
        except (UnicodeDecodeError, ValueError):
            payload = None
        if not isinstance(payload, dict):
            return 400, _json_error("Invalid JSON payload.")

        raw_element_id = payload.get("id")
        element_id = sanitize_id(raw_element_id) if raw_element_id is not None else ""
        raw_command_id = payload.get("commandId")
        command_id = sanitize_id(raw_command_id) if raw_command_id is not None else ""
        args = payload.get("args")
        args_obj = args if isinstance(args, dict) else {}

        if not command_id:
            return 400, _json_error("commandId is required.")

        config, failure = self.config.get()
        if failure is not None:
            return 500, _json_error(failure.message)

        command = config.get_command(command_id)
        if command is None:
            return 404, _json_error(f"Unknown command: {command_id}")

        result, failure = run_command(
            command,
            args_obj,
            config.whitelist,
            timeout_seconds=config.command_timeout_seconds,
            path_env=self.path_env,
        )
        if failure is not None:
            return 400, _json_error(failure.message, commandId=command_id)

        record = {
            "ok": result.ok,
            "commandId": command_id,
            "id": element_id or None,
            "result": result.to_payload(),
        }
        record_id = element_id or command_id
        try:
            self.store.write(record_id, record)
        except OSError as ex:
            logger.error("unable to store result for %s: %s", record_id, ex)
            return 500, _json_error(
                f"Unable to store result for id: {record_id}",
                commandId=command_id,
                id=element_id or None,
                result=record["result"],
            )
        return 200, record

    def handle_read(self, query: dict[str, str]) -> tuple[int, dict[str, Any]]:
        record_id = sanitize_id(query.get("id", ""))
        if not record_id:
            return 400, _json_error("id is required.")
        record = self.store.read(record_id)
        if record is None:
            return 404, _json_error(f"No stored result for id: {record_id}")
        return 200, record

    def handle_config(self, query: dict[str, str]) -> tuple[int, dict[str, Any]]:
        if "name" in query:
            profile, failure = load_profile(self.config_dir, query["name"])
            if failure is not None:
                return _failure_status(failure), _json_error(failure.message)
            return 200, profile

        config, failure = self.config.get()
        if failure is not None:
            return 500, _json_error(failure.message)
        try:
            return 200, config.to_payload()
        except RecursionError:
            return 500, _json_error("Configuration is nested too deeply to serialize.")

    def handle_reload(self) -> tuple[int, dict[str, Any]]:
        config, failure = self.config.reload()
        if failure is not None:
            return 500, _json_error(failure.message)
        return 200, {
            "ok": True,
            "source": config.source or None,
            "elements": config.element_count(),
            "commands": len(config.commands),
            "whitelist": len(config.whitelist),
        }


class LocalUiRequestHandler(BaseHTTPRequestHandler):
    server_version = "LocalUI/1.0"

    def log_message(self, fmt: str, *args: Any) -> None:
        logger.info("%s - %s", self.address_string(), fmt % args)

    def _send_json(self, status: int, payload: Any) -> None:
        try:
            raw = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        except (RecursionError, ValueError) as ex:
            logger.error("unable to encode response: %s", ex)
            status = 500
            raw = json.dumps(_json_error("Unable to encode response.")).encode("utf-8")
        self.send_response(int(status))
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def _read_body(self) -> bytes | None:
        try:
            length = int(self.headers.get("Content-Length", "0") or "0")
        except ValueError:
            length = 0
        if length > MAX_BODY_BYTES:
            return None
        return self.rfile.read(length) if length > 0 else b""

    def _dispatch(self) -> None:
        app: LocalUiApp = self.server.app  # type: ignore[attr-defined]
        body = b""
        if self.command == "POST":
            read = self._read_body()
            if read is None:
                self._send_json(413, _json_error("Request body too large."))
                return
            body = read
        status, payload = app.handle(self.command, self.path, body)
        self._send_json(status, payload)

    def do_GET(self) -> None:
        self._dispatch()

    def do_POST(self) -> None:
        self._dispatch()


class LocalUiServer(ThreadingHTTPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, address: tuple[str, int], app: LocalUiApp) -> None:
        super().__init__(address, LocalUiRequestHandler)
        self.app = app


def make_server(host: str, port: int, app: LocalUiApp) -> LocalUiServer:
    return LocalUiServer((host, port), app)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", default=os.getenv("LOCALUI_CONFIG", "config/ui.json").strip())
    parser.add_argument("--fallback-config", default="config/ui.sample.json")
    parser.add_argument("--config-dir", default=os.getenv("LOCALUI_CONFIG_DIR", "config").strip())
    parser.add_argument("--data-dir", default=os.getenv("LOCALUI_DATA_DIR", "data").strip())
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8780)
    parser.add_argument("--base-path", default=DEFAULT_BASE_PATH)
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument(
        "--validate-config",
        action="store_true",
        help="Parse and normalize the UI configuration, print a summary, then exit.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config_path = Path(args.config).resolve()
    fallback_text = str(args.fallback_config or "").strip()
    fallback_path = Path(fallback_text).resolve() if fallback_text else None
    service = ConfigService(config_path, fallback_path)

    config, failure = service.get()
    if failure is not None:
        print(f"invalid configuration: {failure.message}", file=sys.stderr)
        return 2

    if args.validate_config:
        print(f"config={config.source or '(defaults)'}")
        print(f"elements={config.element_count()}")
        print(f"whitelist={','.join(config.whitelist)}")
        print(f"commands={len(config.commands)}")
        for command_id, command in sorted(config.commands.items()):
            print(f"- {command_id}: {command.template}")
        return 0

    port = int(args.port)
    if port <= 0 or port > 65535:
        raise SystemExit("port must be in range 1..65535")

    app = LocalUiApp(
        service,
        ResultStore(Path(args.data_dir).resolve()),
        Path(args.config_dir).resolve(),
        base_path=args.base_path,
    )
    host = str(args.host or "127.0.0.1").strip() or "127.0.0.1"
    with make_server(host, port, app) as server:
        print(f"localui listening on http://{host}:{port}{app.base_path or ''}")
        print("Press Ctrl+C to stop.")
        try:
            server.serve_forever(poll_interval=0.3)
        except KeyboardInterrupt:
            print("\nStopping server...")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
