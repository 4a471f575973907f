# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/bootstrap/installer.py

from __future__ import annotations

import logging
from typing import Optional

from .channel import PhaseReporter
from .download import ArtifactAcquisition, ArtifactDownloadProgress, DownloadTracker
from .integrity import IntegrityVerifier
from ..engine.errors import IntegrityFailure
from ..engine.interface import EngineBackend
from ..engine.models import InstallationMethod

log = logging.getLogger("nookat")

# Share of the installation progress bar covered by artifact downloads.
DOWNLOAD_START_PCT = 10
DOWNLOAD_END_PCT = 60


class InstallExecutor:
    """
    Runs one installation strategy to completion (blocking).

    PackageManager delegates to the backend's Homebrew install. DirectBinary
    fetches the manifest, downloads, verifies and only then asks the backend
    to place the binaries. Failures propagate as BootstrapError subclasses.
    """

    def __init__(
        self,
        backend: EngineBackend,
        acquisition: ArtifactAcquisition,
        verifier: Optional[IntegrityVerifier] = None,
    ):
        self.backend = backend
        self.acquisition = acquisition
        self.verifier = verifier or IntegrityVerifier()

    def install(self, method: InstallationMethod, reporter: Optional[PhaseReporter] = None) -> None:
        log.info("Installing Colima via %s", method.value)
        if method is InstallationMethod.DIRECT_BINARY:
            self._install_binary(reporter)
        else:
            self._install_homebrew(reporter)

    def _report(self, reporter: Optional[PhaseReporter], step: str, message: str, pct: int) -> None:
        if reporter is not None:
            reporter.progress(step, message, pct)

    def _install_homebrew(self, reporter: Optional[PhaseReporter]) -> None:
        self._report(reporter, "Installing via Homebrew...", "Installing colima, docker and docker-compose", 10)
        self.backend.install_colima_command(InstallationMethod.PACKAGE_MANAGER)
        self._report(reporter, "Installation finished", "All components installed", 95)

    def _install_binary(self, reporter: Optional[PhaseReporter]) -> None:
        self.backend.clear_binary_installation_logs()

        self._report(reporter, "Fetching version information...", "Reading the integrity manifest", 5)
        manifest = self.acquisition.fetch_manifest()

        self._report(
            reporter,
            "Downloading binaries...",
            "Downloading " + ", ".join(f"{a.name} {a.version}" for a in manifest.artifacts),
            DOWNLOAD_START_PCT,
        )

        names = manifest.names()

        def current_pct(name: str, pct: int) -> int:
            # artifacts download one after another; each gets an equal slice
            span = (DOWNLOAD_END_PCT - DOWNLOAD_START_PCT) / len(names)
            return int(DOWNLOAD_START_PCT + span * (names.index(name) + pct / 100))

        def _on_progress(name: str, item: ArtifactDownloadProgress, tracker: DownloadTracker) -> None:
            if reporter is None:
                return
            reporter.artifact(name, item)
            if item.percentage is None:
                reporter.progress("Downloading binaries...", f"Downloading {name} (calculating...)", current_pct(name, 0))
                return
            reporter.progress(
                "Downloading binaries...",
                f"Downloading {name}: {item.percentage}%",
                current_pct(name, item.percentage),
            )

        result = self.acquisition.download(manifest, on_progress=_on_progress)

        self._report(reporter, "Verifying checksums...", "Checking sha256 of downloaded binaries", 65)
        if not self.verifier.verify(result.paths, manifest):
            log.error("Checksum verification failed; not installing")
            raise IntegrityFailure()

        self._report(reporter, "Installing binaries...", "Placing binaries on PATH", 75)
        self.backend.binary_install_colima(result.paths)
        self._report(reporter, "Installation finished", "Colima binaries installed", 95)
