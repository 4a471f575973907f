# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Protocol

from .models import (
    ColimaStatus,
    EngineInfo,
    HomebrewStatus,
    InstallationMethod,
    IntegrityManifest,
    RepairResult,
    ValidationResult,
    VmResourceConfig,
)


class EngineBackend(Protocol):
    """
    Command boundary to whatever actually installs and runs the engine.

    All methods are blocking; the bootstrap session calls them from worker
    threads and learns about progress through the log buffers.
    """

    def check_homebrew_availability(self) -> HomebrewStatus: ...

    def check_colima_availability(self) -> bool: ...

    def get_colima_versions(self) -> IntegrityManifest: ...

    def install_colima_command(self, method: InstallationMethod) -> None: ...

    def binary_install_colima(self, paths: Dict[str, Path]) -> None: ...

    def start_colima_vm_command(self, config: VmResourceConfig) -> None: ...

    def get_docker_info(self) -> EngineInfo: ...

    def validate_colima_installation(self) -> ValidationResult: ...

    def repair_colima_installation(self) -> RepairResult: ...

    def cancel(self) -> None:
        """Abort whatever a timed-out phase left running (child processes)."""
        ...

    def get_installation_logs(self) -> List[str]: ...

    def get_binary_installation_logs(self) -> List[str]: ...

    def get_vm_startup_logs(self) -> List[str]: ...

    def clear_binary_installation_logs(self) -> None: ...

    def clear_installation_logs(self) -> None: ...

    def clear_vm_startup_logs(self) -> None: ...

    def colima_status(self) -> ColimaStatus: ...
