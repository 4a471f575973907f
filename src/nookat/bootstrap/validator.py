# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/bootstrap/validator.py

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .channel import PhaseReporter
from ..engine.errors import ConnectivityError
from ..engine.interface import EngineBackend
from ..engine.models import EngineInfo, ValidationResult

log = logging.getLogger("nookat")


class EngineValidator:
    """
    Confirms the engine answers after the VM came up.

    Genuine mode runs every backend health check (docker version, docker info,
    colima status, docker ps) and fails with all collected issues in one
    message. With `genuine=False` this is only the settle delay followed by
    success, and an empty EngineInfo is returned.
    """

    def __init__(
        self,
        backend: EngineBackend,
        *,
        settle_delay: float = 2.0,
        genuine: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.backend = backend
        self.settle_delay = settle_delay
        self.genuine = genuine
        self.sleep = sleep
        self.last_result: Optional[ValidationResult] = None

    def validate(self, reporter: Optional[PhaseReporter] = None) -> EngineInfo:
        if reporter is not None:
            reporter.progress("Validating engine...", "Waiting for the engine to settle", 10)
        if self.settle_delay > 0:
            self.sleep(self.settle_delay)

        if not self.genuine:
            log.info("Engine validation skipped (cosmetic mode)")
            return EngineInfo()

        if reporter is not None:
            reporter.progress("Validating engine...", "Running engine health checks", 40)
        try:
            result = self.backend.validate_colima_installation()
        except Exception as e:
            raise ConnectivityError(f"Engine validation failed: {e}") from e
        self.last_result = result

        if not result.ok:
            for issue in result.issues:
                log.warning("Engine check failed: %s", issue)
            raise ConnectivityError("Engine validation failed: " + "; ".join(result.issues))

        if reporter is not None:
            reporter.progress("Validating engine...", "Querying docker info", 70)
        try:
            info = self.backend.get_docker_info()
        except ConnectivityError:
            raise
        except Exception as e:
            raise ConnectivityError(f"Cannot connect to Docker daemon: {e}") from e

        log.info(
            "Engine ready: docker %s on %s (%s CPUs)",
            info.server_version or "?", info.operating_system or "?", info.ncpu or "?",
        )
        return info
