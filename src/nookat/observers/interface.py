from __future__ import annotations
from typing import Protocol
from .events import BaseEvent


class Observer(Protocol):
    """Anything the EventBus can fan bootstrap events out to.

    notify() is called on the event loop thread; an observer that raises is
    logged and skipped.
    """

    def notify(self, event: BaseEvent) -> None: ...
