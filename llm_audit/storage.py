"""Append-only JSONL storage for request audit records."""

import json
import logging
import threading
from pathlib import Path

from .models import LogRecord


class JSONLStorage:
    """Writes one JSON object per line to a single shared file.

    Appends are serialized by a lock and each record goes out in a single
    write, so concurrent requests never interleave within a line.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.touch()
            logging.info(f"Created request log file: {self.path}")

    def append(self, record: LogRecord) -> None:
        line = json.dumps(record.to_dict(), ensure_ascii=False) + "\n"
        with self._lock:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
