# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/bootstrap/machine.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from .events import (
    Command,
    Configure,
    Event,
    Install,
    Notification,
    PhaseCompleted,
    PhaseErrored,
    PhaseLogged,
    PhaseProgressed,
    Retry,
    StartVm,
)
from .state import (
    BUSY_STATES,
    PHASE_OF_STATE,
    BootstrapState,
    InstallationProgress,
    can_transition,
    clamp_percentage,
)
from ..engine.models import EngineInfo, InstallationMethod, VmResourceConfig
from ..observers.dispatcher import EventBus
from ..observers.events import (
    CommandRejected,
    NotificationDropped,
    ProgressUpdated,
    StateChanged,
    new_ctx,
    stamp,
)

log = logging.getLogger("nookat")

S = BootstrapState


@dataclass(frozen=True)
class MachineSnapshot:
    state: BootstrapState
    progress: InstallationProgress
    error: Optional[str]
    method: Optional[InstallationMethod]
    config: VmResourceConfig
    attempt: int
    engine_info: Optional[EngineInfo]

    @property
    def config_editable(self) -> bool:
        return self.state not in BUSY_STATES


Listener = Callable[[MachineSnapshot], None]


class BootstrapStateMachine:
    """
    Owns BootstrapState and decides what happens next.

    The machine is pure with respect to I/O: it never calls the backend. Commands
    come from the user, notifications come from the phase runners, and every
    input goes through `dispatch`, which returns the (possibly unchanged) state.
    Illegal commands are rejected without touching state or progress; stale,
    duplicate and out-of-phase notifications are dropped.
    """

    def __init__(
        self,
        *,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[Dict[str, Any]] = None,
        config: Optional[VmResourceConfig] = None,
    ):
        self.bus = bus or EventBus([])
        self.run_ctx = run_ctx or new_ctx()
        self.state: BootstrapState = S.IDLE
        self.progress = InstallationProgress()
        self.error: Optional[str] = None
        self.config: VmResourceConfig = config or VmResourceConfig()
        self.method: Optional[InstallationMethod] = None
        self.attempt = 0
        self.engine_info: Optional[EngineInfo] = None

        self._last_seq = 0
        # Lines of the active phase's backend log already copied into progress.logs
        self._phase_log_cursor = 0
        self._listeners: List[Listener] = []

    # -----------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------
    @property
    def phase(self) -> Optional[str]:
        return PHASE_OF_STATE.get(self.state)

    @property
    def busy(self) -> bool:
        return self.state in BUSY_STATES

    def snapshot(self) -> MachineSnapshot:
        return MachineSnapshot(
            state=self.state,
            progress=self.progress.copy(),
            error=self.error,
            method=self.method,
            config=self.config,
            attempt=self.attempt,
            engine_info=self.engine_info,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a state/progress listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # -----------------------------------------------------------------
    # Dispatch
    # -----------------------------------------------------------------
    def dispatch(self, event: Event) -> BootstrapState:
        if isinstance(event, Command):
            self._on_command(event)
        elif isinstance(event, Notification):
            self._on_notification(event)
        else:
            raise TypeError(f"Unsupported event type: {type(event).__name__}")
        return self.state

    def accepts(self, command: Command) -> bool:
        """Whether `command` would be accepted in the current state."""
        return self._reject_reason(command) is None

    # -----------------------------------------------------------------
    # Commands
    # -----------------------------------------------------------------
    def _reject_reason(self, command: Command) -> Optional[str]:
        if isinstance(command, Install):
            if self.state is not S.IDLE:
                return f"a bootstrap is already {self.state.value}"
            return None
        if isinstance(command, StartVm):
            if self.state is not S.IDLE:
                return f"cannot start the VM while {self.state.value}"
            if not command.config.is_complete():
                return "VM resource configuration is incomplete"
            return None
        if isinstance(command, Configure):
            if self.busy:
                return f"configuration is locked while {self.state.value}"
            return None
        if isinstance(command, Retry):
            if self.state not in (S.ERROR, S.COMPLETE):
                return f"nothing to retry while {self.state.value}"
            return None
        return f"unknown command {type(command).__name__}"

    def _on_command(self, command: Command) -> None:
        reason = self._reject_reason(command)
        if reason is not None:
            self._reject(command, reason)
            return

        if isinstance(command, Install):
            self.attempt += 1
            self.method = command.method
            self._enter(
                S.INSTALLING,
                reason=f"install via {command.method.value}",
                step="Starting installation...",
                message="Preparing to install Colima",
                lines=["[INFO] Starting Colima installation..."],
            )
        elif isinstance(command, StartVm):
            self.attempt += 1
            self.config = command.config
            self._enter(
                S.STARTING_VM,
                reason="start engine",
                step="Starting VM...",
                message=f"Starting Colima with {command.config.describe()}",
                lines=["[INFO] Starting Colima engine..."],
            )
        elif isinstance(command, Configure):
            self.config = command.config
            log.debug("VM configuration set: %s", command.config.describe())
            self._notify_listeners()
        elif isinstance(command, Retry):
            self._reset()

    def _reject(self, command: Command, reason: str) -> None:
        name = type(command).__name__
        log.warning("Rejected %s in state %s: %s", name, self.state.value, reason)
        self.bus.emit(
            CommandRejected(command=name, state=self.state.value, reason=reason, **stamp(self.run_ctx))
        )

    def _reset(self) -> None:
        previous = self.state
        self.state = S.IDLE
        self.progress = InstallationProgress()
        self.error = None
        self.method = None
        self.engine_info = None
        self._last_seq = 0
        self._phase_log_cursor = 0
        log.info("Bootstrap state: %s -> %s (reset)", previous.value, S.IDLE.value)
        self.bus.emit(
            StateChanged(previous=previous.value, current=S.IDLE.value, reason="reset", **stamp(self.run_ctx))
        )
        self._notify_listeners()

    # -----------------------------------------------------------------
    # Notifications
    # -----------------------------------------------------------------
    def _drop(self, n: Notification, reason: str) -> None:
        log.debug("Dropped %s seq=%d attempt=%d: %s", n.topic, n.seq, n.attempt, reason)
        self.bus.emit(NotificationDropped(topic=n.topic, seq=n.seq, reason=reason, **stamp(self.run_ctx)))

    def _on_notification(self, n: Notification) -> None:
        if n.attempt != self.attempt:
            self._drop(n, "stale attempt")
            return
        if self.phase != n.phase:
            self._drop(n, "inactive phase")
            return
        if n.seq <= self._last_seq:
            self._drop(n, "duplicate or out of order")
            return
        self._last_seq = n.seq

        if isinstance(n, PhaseProgressed):
            self.progress.step = n.step
            self.progress.message = n.message
            self.progress.percentage = clamp_percentage(n.percentage)
            self._progress_changed([])
        elif isinstance(n, PhaseLogged):
            self._append_phase_lines(n.offset, n.lines)
        elif isinstance(n, PhaseCompleted):
            self._on_phase_completed(n)
        elif isinstance(n, PhaseErrored):
            self._on_phase_errored(n)

    def _append_phase_lines(self, offset: int, lines: Tuple[str, ...]) -> None:
        end = offset + len(lines)
        if end <= self._phase_log_cursor:
            return
        fresh = list(lines[max(0, self._phase_log_cursor - offset):])
        self._phase_log_cursor = end
        for line in fresh:
            log.debug("[%s] %s", self.phase, line)
        self.progress.logs.extend(fresh)
        self._progress_changed(fresh)

    def _on_phase_completed(self, n: PhaseCompleted) -> None:
        if self.state is S.INSTALLING:
            self._enter(
                S.STARTING_VM,
                reason="installation complete",
                step="Starting VM...",
                message=f"Starting Colima with {self.config.describe()}",
                lines=[
                    "[INFO] Colima installation completed successfully",
                    "[INFO] Starting Colima engine...",
                ],
            )
        elif self.state is S.STARTING_VM:
            self._enter(
                S.VALIDATING,
                reason="vm startup complete",
                step="Validating engine...",
                message="Checking that the engine is reachable",
                lines=["[INFO] Engine startup completed successfully"],
            )
        elif self.state is S.VALIDATING:
            self.engine_info = n.info
            self._enter(
                S.COMPLETE,
                reason="validation complete",
                step="Complete",
                message="Engine Ready!",
                lines=["[INFO] Engine is ready"],
                percentage=100,
            )

    def _on_phase_errored(self, n: PhaseErrored) -> None:
        self.error = n.error
        self._enter(
            S.ERROR,
            reason=f"{n.phase} failed",
            step="Error",
            message=n.error,
            lines=[f"[ERROR] {n.error}"],
            keep_percentage=True,
        )

    # -----------------------------------------------------------------
    # Transitions
    # -----------------------------------------------------------------
    def _enter(
        self,
        target: BootstrapState,
        *,
        reason: str,
        step: str,
        message: str,
        lines: List[str],
        percentage: int = 0,
        keep_percentage: bool = False,
    ) -> None:
        if not can_transition(self.state, target):
            # unreachable through dispatch; guards above only request legal edges
            raise RuntimeError(f"illegal transition {self.state.value} -> {target.value}")

        previous = self.state
        self.state = target
        self.progress.step = step
        self.progress.message = message
        if not keep_percentage:
            self.progress.percentage = percentage
        self.progress.logs.extend(lines)
        self._phase_log_cursor = 0

        log.info("Bootstrap state: %s -> %s (%s)", previous.value, target.value, reason)
        self.bus.emit(
            StateChanged(previous=previous.value, current=target.value, reason=reason, **stamp(self.run_ctx))
        )
        self._progress_changed(lines, notify=False)
        self._notify_listeners()

    def _progress_changed(self, new_logs: List[str], notify: bool = True) -> None:
        p = self.progress
        self.bus.emit(
            ProgressUpdated(
                step=p.step,
                message=p.message,
                percentage=p.percentage,
                new_logs=list(new_logs),
                **stamp(self.run_ctx),
            )
        )
        if notify:
            self._notify_listeners()

    def _notify_listeners(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                log.exception("state listener %r failed", listener)
