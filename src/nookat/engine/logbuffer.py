# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import threading
from typing import List


class LogBuffer:
    """
    Append-only, thread-safe list of log lines written by the backend while a
    long operation runs in a worker thread and read by the log poller.

    Line indices are stable until clear(), so readers can resume with
    `since(offset)` and never see a line twice.
    """

    def __init__(self, name: str):
        self.name = name
        self._lines: List[str] = []
        self._lock = threading.Lock()

    def append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    def extend(self, lines) -> None:
        with self._lock:
            self._lines.extend(lines)

    def snapshot(self) -> List[str]:
        with self._lock:
            return list(self._lines)

    def since(self, offset: int) -> List[str]:
        with self._lock:
            return list(self._lines[max(offset, 0):])

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)
