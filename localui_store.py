"""Last-result-per-id persistence for command runs."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from localui_args import sanitize_id


logger = logging.getLogger(__name__)


class ResultStore:
    """One pretty-printed JSON file per sanitized id under ``data_dir``.

    Writes go through a temporary file and ``os.replace`` so a reader never sees
    a partial record; concurrent writers for one id resolve as last finisher wins.
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = data_dir

    def path_for(self, record_id: str) -> Path:
        safe = sanitize_id(record_id)
        if not safe:
            raise ValueError("result id is empty")
        return self.data_dir / f"{safe}.json"

    def write(self, record_id: str, record: dict[str, Any]) -> Path:
        path = self.path_for(record_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        text = json.dumps(record, indent=4, ensure_ascii=False)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(tmp_name, path)
        except OSError:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise
        logger.debug("stored result %s -> %s", record_id, path)
        return path

    def read(self, record_id: str) -> dict[str, Any] | None:
        path = self.path_for(record_id)
        if not path.is_file():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8-sig"))
        except (OSError, ValueError) as ex:
            logger.warning("unreadable stored result %s: %s", path, ex)
            return None
        return payload if isinstance(payload, dict) else None
