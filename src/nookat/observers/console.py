# src/nookat/observers/console.py
from __future__ import annotations

from typing import Callable

from .events import (
    ArtifactProgress,
    BaseEvent,
    BootstrapSummary,
    CommandRejected,
    NotificationDropped,
    ProgressUpdated,
    StateChanged,
)


class ConsoleObserver:
    """Prints one line per lifecycle event (``nookat install --events``).

    ProgressUpdated is skipped: the progress printer already renders it.
    """

    def __init__(self, echo: Callable[[str], None] = print):
        self.echo = echo

    def notify(self, event: BaseEvent) -> None:
        line = self.render(event)
        if line:
            self.echo(f"[{event.ts}] {line}")

    @staticmethod
    def render(event: BaseEvent) -> str:
        if isinstance(event, ProgressUpdated):
            return ""
        if isinstance(event, StateChanged):
            return f"state {event.previous} -> {event.current} ({event.reason})"
        if isinstance(event, CommandRejected):
            return f"rejected {event.command} in {event.state}: {event.reason}"
        if isinstance(event, NotificationDropped):
            return f"dropped {event.topic}#{event.seq}: {event.reason}"
        if isinstance(event, ArtifactProgress):
            pct = "?" if event.percentage is None else f"{event.percentage:.0f}%"
            return f"download {event.artifact} {event.downloaded_bytes}/{event.total_bytes} bytes ({pct})"
        if isinstance(event, BootstrapSummary):
            tail = f" error={event.error}" if event.error else ""
            return f"summary state={event.state} method={event.method} lines={event.log_lines}{tail}"

        d = event.dict()
        fields = ", ".join(f"{k}={v}" for k, v in d.items() if k not in ("ts", "run_id", "env", "context"))
        return f"{event.__class__.__name__} {fields}"
