# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/bootstrap/session.py

from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .channel import LogPoller, NotificationChannel, PhaseReporter
from .events import Configure, Install, Retry, StartVm, INSTALLATION, VM_STARTUP, VALIDATION
from .installer import InstallExecutor
from .machine import BootstrapStateMachine
from .state import BUSY_STATES, PHASE_OF_STATE, BootstrapState
from .validator import EngineValidator
from .vm import VmLifecycleController
from ..engine.errors import LocalValidationError, PhaseTimeout
from ..engine.interface import EngineBackend
from ..engine.models import InstallationMethod, VmResourceConfig
from ..observers.dispatcher import EventBus
from ..observers.events import BootstrapSummary, stamp

log = logging.getLogger("nookat")

S = BootstrapState


@dataclass
class BootstrapSettings:
    poll_interval: float = 0.5
    install_timeout: Optional[float] = None       # None = wait forever
    vm_start_timeout: Optional[float] = None
    validation_timeout: Optional[float] = None

    def timeout_for(self, phase: str) -> Optional[float]:
        return {
            INSTALLATION: self.install_timeout,
            VM_STARTUP: self.vm_start_timeout,
            VALIDATION: self.validation_timeout,
        }[phase]


class BootstrapSession:
    """
    Drives a BootstrapStateMachine on an asyncio loop.

    Commands are dispatched straight into the machine. Whenever the machine
    enters a busy state the session runs that phase's blocking work in a worker
    thread, polls the phase's backend log while it runs, and reports the
    outcome as an explicit complete/error notification through the channel.
    A pump task feeds channel notifications back into the machine.

    Use as ``async with BootstrapSession(...) as session:``.
    """

    def __init__(
        self,
        backend: EngineBackend,
        *,
        installer: InstallExecutor,
        vm: Optional[VmLifecycleController] = None,
        validator: Optional[EngineValidator] = None,
        machine: Optional[BootstrapStateMachine] = None,
        settings: Optional[BootstrapSettings] = None,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[Dict[str, Any]] = None,
    ):
        self.backend = backend
        self.installer = installer
        self.vm = vm or VmLifecycleController(backend)
        self.validator = validator or EngineValidator(backend)
        self.settings = settings or BootstrapSettings()
        self.bus = bus or EventBus([])
        self.machine = machine or BootstrapStateMachine(bus=self.bus, run_ctx=run_ctx)
        self.run_ctx = run_ctx or self.machine.run_ctx

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._channel: Optional[NotificationChannel] = None
        self._pump: Optional[asyncio.Task] = None
        self._phase_task: Optional[asyncio.Task] = None
        self._poller: Optional[LogPoller] = None
        self._settled: Optional[asyncio.Event] = None
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        # workers whose phase timed out or was cancelled but which are still running
        self._abandoned: List[concurrent.futures.Future] = []
        self._seen_state = self.machine.state
        self._seen_attempt = self.machine.attempt

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------
    async def __aenter__(self) -> "BootstrapSession":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    @property
    def started(self) -> bool:
        return self._pump is not None

    async def start(self) -> None:
        if self.started:
            return
        self._loop = asyncio.get_running_loop()
        self._channel = NotificationChannel(self._loop)
        self._settled = asyncio.Event()
        self._settled.set()
        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=2, thread_name_prefix="nookat-phase")
        self._pump = self._loop.create_task(self._pump_notifications(), name="bootstrap-pump")

    async def close(self) -> None:
        if self._poller is not None:
            await self._poller.stop()
            self._poller = None
        if self._phase_task is not None and not self._phase_task.done():
            self._phase_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._phase_task
        if self._channel is not None:
            self._channel.close()
        if self._pump is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._pump
        self._pump = None
        if self._executor is not None:
            # abandoned workers are not joined
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def _require_started(self) -> None:
        if not self.started:
            raise LocalValidationError("Bootstrap session is not started")

    # -----------------------------------------------------------------
    # Commands
    # -----------------------------------------------------------------
    @property
    def state(self) -> BootstrapState:
        return self.machine.state

    def install(self, method: InstallationMethod) -> bool:
        return self._command(Install(method))

    def start_vm(self, config: Optional[VmResourceConfig] = None) -> bool:
        return self._command(StartVm(config or self.machine.config))

    def configure(self, config: VmResourceConfig) -> bool:
        return self._command(Configure(config))

    def retry(self) -> bool:
        return self._command(Retry())

    def _command(self, command) -> bool:
        self._require_started()
        accepted = self.machine.accepts(command)
        self.machine.dispatch(command)
        self._sync()
        return accepted

    async def run_until_settled(self, timeout: Optional[float] = None) -> BootstrapState:
        """Wait until no phase is in flight; returns the resulting state."""
        self._require_started()
        assert self._settled is not None
        if timeout is None:
            await self._settled.wait()
        else:
            await asyncio.wait_for(self._settled.wait(), timeout)
        return self.machine.state

    # -----------------------------------------------------------------
    # Pump
    # -----------------------------------------------------------------
    async def _pump_notifications(self) -> None:
        assert self._channel is not None
        while True:
            n = await self._channel.get()
            if n is None:
                return
            self.machine.dispatch(n)
            self._sync()

    def _sync(self) -> None:
        """React to whatever the last dispatch did to the machine."""
        state, attempt = self.machine.state, self.machine.attempt
        if state is self._seen_state and attempt == self._seen_attempt:
            return
        previous = self._seen_state
        self._seen_state, self._seen_attempt = state, attempt

        assert self._settled is not None and self._loop is not None
        if state in BUSY_STATES:
            self._settled.clear()
            self._phase_task = self._loop.create_task(
                self._run_phase(state, attempt), name=f"phase-{PHASE_OF_STATE[state]}"
            )
            return

        if previous in BUSY_STATES or state in (S.COMPLETE, S.ERROR):
            self._summarise()
        self._settled.set()

    def _summarise(self) -> None:
        m = self.machine
        self.bus.emit(
            BootstrapSummary(
                state=m.state.value,
                method=m.method.value if m.method else None,
                error=m.error,
                log_lines=len(m.progress.logs),
                **stamp(self.run_ctx),
            )
        )

    # -----------------------------------------------------------------
    # Phases
    # -----------------------------------------------------------------
    def _work_for(self, state: BootstrapState) -> Callable[[PhaseReporter], Any]:
        m = self.machine
        if state is S.INSTALLING:
            method = m.method
            return lambda rep: self.installer.install(method, rep)
        if state is S.STARTING_VM:
            config = m.config
            return lambda rep: self.vm.start(config, rep)
        return lambda rep: self.validator.validate(rep)

    def _log_source(self, state: BootstrapState):
        """(getter, clear) for the backend log that belongs to the phase, if any."""
        if state is S.INSTALLING:
            if self.machine.method is InstallationMethod.DIRECT_BINARY:
                return self.backend.get_binary_installation_logs, self.backend.clear_binary_installation_logs
            return self.backend.get_installation_logs, self.backend.clear_installation_logs
        if state is S.STARTING_VM:
            return self.backend.get_vm_startup_logs, self.backend.clear_vm_startup_logs
        return None, None

    async def _run_phase(self, state: BootstrapState, attempt: int) -> None:
        assert self._channel is not None and self._executor is not None
        channel = self._channel
        phase = PHASE_OF_STATE[state]
        reporter = PhaseReporter(channel, phase, attempt, bus=self.bus, run_ctx=self.run_ctx, loop=self._loop)
        work = self._work_for(state)

        # an abandoned worker still writes into the shared backend log buffers
        await self._wait_for_abandoned()

        getter, clear = self._log_source(state)
        poller: Optional[LogPoller] = None
        if getter is not None:
            clear()
            poller = LogPoller(
                getter,
                lambda offset, lines: channel.logged(phase, attempt, offset, lines),
                interval=self.settings.poll_interval,
                name=phase,
            )
            self._poller = poller
            poller.start()

        timeout = self.settings.timeout_for(phase)
        log.debug("phase %s (attempt %d) started, timeout=%s", phase, attempt, timeout)
        error: Optional[str] = None
        result = None
        worker = self._executor.submit(work, reporter)
        try:
            result = await asyncio.wait_for(asyncio.wrap_future(worker), timeout)
        except asyncio.TimeoutError:
            self._abandon(worker, phase)
            error = str(PhaseTimeout(phase, timeout or 0))
        except asyncio.CancelledError:
            self._abandon(worker, phase)
            if poller is not None:
                await poller.stop()
            raise
        except Exception as e:
            log.debug("phase %s failed", phase, exc_info=True)
            error = str(e) or type(e).__name__

        if poller is not None:
            await poller.drain()
            if self._poller is poller:
                self._poller = None

        if error is None:
            log.debug("phase %s (attempt %d) completed", phase, attempt)
            channel.completed(phase, attempt, info=result if state is S.VALIDATING else None)
        else:
            log.error("%s failed: %s", phase, error)
            channel.errored(phase, attempt, error)

    def _abandon(self, worker: concurrent.futures.Future, phase: str) -> None:
        """Stop waiting for `worker` and kill the backend commands it started."""
        if worker.done():
            return
        self._abandoned.append(worker)
        log.warning("Abandoning %s worker; stopping its running commands", phase)
        try:
            self.backend.cancel()
        except Exception as e:
            log.warning("Could not stop %s commands: %s", phase, e)

    async def _wait_for_abandoned(self) -> None:
        pending = [f for f in self._abandoned if not f.done()]
        self._abandoned = []
        if pending:
            log.info("Waiting for %d abandoned worker(s) to exit", len(pending))
        for f in pending:
            try:
                await asyncio.wrap_future(f)
            except Exception as e:
                log.debug("abandoned worker ended with %s: %s", type(e).__name__, e)

    # -----------------------------------------------------------------
    # Convenience
    # -----------------------------------------------------------------
    @property
    def logs(self) -> List[str]:
        return list(self.machine.progress.logs)
