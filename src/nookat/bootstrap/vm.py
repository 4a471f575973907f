# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/bootstrap/vm.py

from __future__ import annotations

import logging
from typing import Optional

from .channel import PhaseReporter
from ..engine.errors import VmStartError
from ..engine.interface import EngineBackend
from ..engine.models import VmResourceConfig

log = logging.getLogger("nookat")


class VmLifecycleController:
    def __init__(self, backend: EngineBackend):
        self.backend = backend

    def start(self, config: VmResourceConfig, reporter: Optional[PhaseReporter] = None) -> None:
        # Values go to colima as-is; only completeness is checked here.
        if not config.is_complete():
            raise VmStartError("VM resource configuration is incomplete")

        log.info("Starting Colima VM: %s", config.describe())
        if reporter is not None:
            reporter.progress("Starting VM...", f"Starting Colima with {config.describe()}", 10)
        self.backend.start_colima_vm_command(config)
        if reporter is not None:
            reporter.progress("VM started", "Colima VM is running", 90)
