# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/services.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from .bootstrap.download import ArtifactAcquisition
from .bootstrap.installer import InstallExecutor
from .bootstrap.integrity import IntegrityVerifier
from .bootstrap.machine import BootstrapStateMachine
from .bootstrap.session import BootstrapSession, BootstrapSettings
from .bootstrap.strategy import InstallationStrategySelector
from .bootstrap.validator import EngineValidator
from .bootstrap.vm import VmLifecycleController
from .config.models import NookatConfig
from .engine.colima import ColimaBackend
from .engine.errors import LocalValidationError
from .engine.interface import EngineBackend
from .observers.dispatcher import EventBus
from .observers.events import new_ctx
from .utils.execution import ExecutionContext

log = logging.getLogger("nookat")


@dataclass
class EngineServices:
    """
    Everything a bootstrap needs, constructed once at startup and closed at exit.

    Holds the single active session; opening a second one while the first is
    still busy is refused.
    """
    cfg: NookatConfig
    backend: EngineBackend
    http: requests.Session
    bus: EventBus
    run_ctx: Dict[str, Any]
    selector: InstallationStrategySelector
    _session: Optional[BootstrapSession] = field(default=None, repr=False)
    _closed: bool = field(default=False, repr=False)

    def __enter__(self) -> "EngineServices":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.http.close()
        log.debug("engine services closed")

    def acquisition(self) -> ArtifactAcquisition:
        m = self.cfg.manifest
        return ArtifactAcquisition(
            self.backend,
            download_dir=self.cfg.paths.download_dir,
            http=self.http,
            manifest_url=m.url,
            manifest_file=m.file,
            fetch_retries=m.fetch_retries,
            fetch_retry_delay=m.fetch_retry_delay_seconds,
            progress_interval=self.cfg.bootstrap.poll_interval_seconds,
        )

    def settings(self) -> BootstrapSettings:
        b = self.cfg.bootstrap
        return BootstrapSettings(
            poll_interval=b.poll_interval_seconds,
            install_timeout=b.install_timeout_seconds,
            vm_start_timeout=b.vm_start_timeout_seconds,
            validation_timeout=b.validation_timeout_seconds,
        )

    def open_session(self) -> BootstrapSession:
        if self._closed:
            raise LocalValidationError("Engine services are closed")
        if self._session is not None and self._session.machine.busy:
            raise LocalValidationError("A bootstrap is already in progress")

        machine = BootstrapStateMachine(bus=self.bus, run_ctx=self.run_ctx, config=self.cfg.vm)
        self._session = BootstrapSession(
            self.backend,
            installer=InstallExecutor(self.backend, self.acquisition(), IntegrityVerifier()),
            vm=VmLifecycleController(self.backend),
            validator=EngineValidator(
                self.backend,
                settle_delay=self.cfg.bootstrap.settle_delay_seconds,
                genuine=self.cfg.bootstrap.genuine_validation,
            ),
            machine=machine,
            settings=self.settings(),
            bus=self.bus,
            run_ctx=self.run_ctx,
        )
        return self._session


def build_services(
    cfg: Optional[NookatConfig] = None,
    *,
    observers: Optional[List] = None,
    run_id: Optional[str] = None,
    backend: Optional[EngineBackend] = None,
    http: Optional[requests.Session] = None,
) -> EngineServices:
    cfg = cfg or NookatConfig()
    ctx = ExecutionContext(dry_run=cfg.dry_run, bin_dir=cfg.paths.bin_dir)
    run_ctx = new_ctx(run_id=run_id)
    backend = backend or ColimaBackend(
        runner=ctx.runner("colima"),
        bin_dir=ctx.bin_dir,
    )
    return EngineServices(
        cfg=cfg,
        backend=backend,
        http=http or requests.Session(),
        bus=EventBus(list(observers or [])),
        run_ctx=run_ctx,
        selector=InstallationStrategySelector(backend),
    )
