# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/bootstrap/strategy.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..engine.interface import EngineBackend
from ..engine.models import InstallationMethod

log = logging.getLogger("nookat")


@dataclass(frozen=True)
class Availability:
    package_manager_available: bool
    package_manager_version: Optional[str] = None
    colima_installed: bool = False


class InstallationStrategySelector:
    """
    Decides which InstallationMethod a bootstrap may use.

    The probe runs once and is cached; call `recheck()` to refresh it. A probe
    that cannot run counts as "not available".
    """

    def __init__(self, backend: EngineBackend):
        self.backend = backend
        self._cached: Optional[Availability] = None

    def probe(self) -> Availability:
        if self._cached is None:
            self._cached = self._probe()
        return self._cached

    def recheck(self) -> Availability:
        self._cached = None
        return self.probe()

    def _probe(self) -> Availability:
        try:
            brew = self.backend.check_homebrew_availability()
            available, version = bool(brew.is_available), brew.version
        except Exception as e:
            log.debug("homebrew probe failed, treating as unavailable: %s", e)
            available, version = False, None

        try:
            colima = bool(self.backend.check_colima_availability())
        except Exception as e:
            log.debug("colima probe failed, treating as not installed: %s", e)
            colima = False

        log.info(
            "Probe: homebrew=%s%s colima=%s",
            "available" if available else "unavailable",
            f" ({version})" if version else "",
            "installed" if colima else "missing",
        )
        return Availability(
            package_manager_available=available,
            package_manager_version=version,
            colima_installed=colima,
        )

    @property
    def package_manager_enabled(self) -> bool:
        return self.probe().package_manager_available

    def select(self, preferred: Optional[InstallationMethod] = None) -> InstallationMethod:
        """
        PackageManager when it is available and wanted, DirectBinary otherwise.
        """
        if not self.package_manager_enabled:
            if preferred is InstallationMethod.PACKAGE_MANAGER:
                log.warning("Homebrew is not available; using direct binary installation")
            return InstallationMethod.DIRECT_BINARY
        return preferred or InstallationMethod.PACKAGE_MANAGER
