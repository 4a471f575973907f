# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/bootstrap/channel.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from .events import (
    Notification,
    PhaseCompleted,
    PhaseErrored,
    PhaseLogged,
    PhaseProgressed,
)
from ..engine.models import EngineInfo
from ..observers.dispatcher import EventBus
from ..observers.events import ArtifactProgress, stamp

log = logging.getLogger("nookat")


class NotificationChannel:
    """
    Single ordered source of backend notifications for a session.

    Publishing is safe from worker threads. Sequence numbers are assigned and
    the notification enqueued under one lock, so queue order equals seq order.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop
        self._queue: "asyncio.Queue[Optional[Notification]]" = asyncio.Queue()
        self._lock = threading.Lock()
        self._seq = 0
        self._closed = False

    @property
    def last_seq(self) -> int:
        return self._seq

    def _publish(self, build: Callable[[int], Notification]) -> Optional[Notification]:
        with self._lock:
            if self._closed:
                return None
            self._seq += 1
            n = build(self._seq)
            self._loop.call_soon_threadsafe(self._queue.put_nowait, n)
            return n

    def progress(self, phase: str, attempt: int, step: str, message: str, percentage: int):
        return self._publish(
            lambda seq: PhaseProgressed(phase=phase, attempt=attempt, seq=seq,
                                        step=step, message=message, percentage=percentage)
        )

    def logged(self, phase: str, attempt: int, offset: int, lines: Tuple[str, ...]):
        return self._publish(
            lambda seq: PhaseLogged(phase=phase, attempt=attempt, seq=seq, offset=offset, lines=tuple(lines))
        )

    def completed(self, phase: str, attempt: int, info: Optional[EngineInfo] = None):
        return self._publish(lambda seq: PhaseCompleted(phase=phase, attempt=attempt, seq=seq, info=info))

    def errored(self, phase: str, attempt: int, error: str):
        return self._publish(lambda seq: PhaseErrored(phase=phase, attempt=attempt, seq=seq, error=error))

    async def get(self) -> Optional[Notification]:
        """Next notification, or None once the channel is closed and empty."""
        return await self._queue.get()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._loop.call_soon_threadsafe(self._queue.put_nowait, None)


class PhaseReporter:
    """
    Handed to a phase running in a worker thread; tags everything it reports
    with the phase and attempt it was started for.
    """

    def __init__(
        self,
        channel: NotificationChannel,
        phase: str,
        attempt: int,
        *,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[Dict[str, Any]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.channel = channel
        self.phase = phase
        self.attempt = attempt
        self.bus = bus
        self.run_ctx = run_ctx or {}
        self.loop = loop

    def progress(self, step: str, message: str, percentage: int) -> None:
        self.channel.progress(self.phase, self.attempt, step, message, percentage)

    def artifact(self, name: str, progress) -> None:
        if self.bus is None:
            return
        ev = ArtifactProgress(
            artifact=name,
            downloaded_bytes=progress.downloaded_bytes,
            total_bytes=progress.total_bytes,
            percentage=progress.percentage,
            eta=progress.eta_seconds,
            **stamp(self.run_ctx),
        )
        # observers run on the loop thread only
        if self.loop is not None:
            if self.loop.is_closed():
                return
            self.loop.call_soon_threadsafe(self.bus.emit, ev)
        else:
            self.bus.emit(ev)


class LogPoller:
    """
    Polls a backend log getter on a fixed interval and publishes new lines.

    Offsets are positions in the phase's log stream, so the consumer can skip
    lines it has already seen. If the backend buffer shrinks it was cleared, and
    reading restarts at its head while offsets keep counting up.
    """

    def __init__(
        self,
        getter: Callable[[], List[str]],
        publish: Callable[[int, Tuple[str, ...]], Any],
        *,
        interval: float = 0.5,
        name: str = "logs",
    ):
        self.getter = getter
        self.publish = publish
        self.interval = interval
        self.name = name
        self._seen = 0
        self._offset = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"poll-{self.name}")

    async def _run(self) -> None:
        while True:
            self.poll_once()
            await asyncio.sleep(self.interval)

    def poll_once(self) -> int:
        try:
            lines = list(self.getter())
        except Exception as e:
            log.warning("Log poll (%s) failed: %s", self.name, e)
            return 0

        if len(lines) < self._seen:
            self._seen = 0
        fresh = lines[self._seen:]
        if not fresh:
            return 0
        self.publish(self._offset, tuple(fresh))
        self._seen += len(fresh)
        self._offset += len(fresh)
        return len(fresh)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def drain(self) -> None:
        """Stop polling and publish whatever the backend logged since the last poll."""
        await self.stop()
        self.poll_once()
