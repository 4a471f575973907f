from __future__ import annotations
import logging
from .events import BaseEvent, CommandRejected, NotificationDropped, ProgressUpdated


class LoggerObserver:
    """Writes events into the run log; chatty ones go to DEBUG."""

    LEVELS = {
        ProgressUpdated: logging.DEBUG,
        NotificationDropped: logging.DEBUG,
        CommandRejected: logging.WARNING,
    }

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        level = self.LEVELS.get(type(event), logging.INFO)
        if not self.logger.isEnabledFor(level):
            return
        d = event.dict()
        msg = ", ".join(f"{k}={v}" for k, v in d.items() if k not in ("ts", "env", "run_id"))
        self.logger.log(level, "[EVENT] %s: %s", event.__class__.__name__, msg)
