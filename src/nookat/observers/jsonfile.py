from __future__ import annotations
import json
import threading
from pathlib import Path
from .events import BaseEvent
from ..utils.serialize import to_jsonable


class JsonFileObserver:
    """Appends each event as one JSON object per line to `<log_dir>/<run_id>.jsonl`."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def notify(self, event: BaseEvent) -> None:
        record = {"type": event.__class__.__name__, **to_jsonable(event)}
        line = json.dumps(record, sort_keys=False)
        with self._lock, self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
