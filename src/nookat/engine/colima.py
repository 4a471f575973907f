# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/engine/colima.py

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import stat
import subprocess
import tarfile
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .errors import ConnectivityError, InstallError, ProbeFailure, VmStartError
from .logbuffer import LogBuffer
from .manifest import default_manifest
from .models import (
    ColimaStatus,
    EngineInfo,
    HomebrewStatus,
    InstallationMethod,
    IntegrityManifest,
    RepairResult,
    ValidationResult,
    VmInfo,
    VmResourceConfig,
)
from ..utils.runner import CommandRunner, tail

log = logging.getLogger("nookat")

HOMEBREW_PACKAGES = ("colima", "docker", "docker-compose")
PROFILE_FILES = (".zshrc", ".bash_profile", ".bashrc")

INSTALL_SUCCESS_LINE = "All components installed successfully!"
BINARY_SUCCESS_LINE = "Colima installation completed successfully"
VM_SUCCESS_LINE = "Colima VM started successfully!"

DOCKER_TIMEOUT = 60.0


class ColimaBackend:
    """
    Local engine-management service for macOS: Homebrew or direct-binary
    installation of Colima/Lima, `colima start`, and docker reachability.

    Each instance owns its own log buffers; nothing here is process-global.
    """

    def __init__(
        self,
        *,
        runner: Optional[CommandRunner] = None,
        bin_dir: Optional[Path] = None,
        home: Optional[Path] = None,
        manifest_loader: Callable[[], IntegrityManifest] = default_manifest,
        brew: str = "brew",
        colima: str = "colima",
        docker: str = "docker",
    ):
        self.runner = runner or CommandRunner(label="colima")
        self.home = home or Path.home()
        self.bin_dir = bin_dir or (self.home / ".local" / "bin")
        self.manifest_loader = manifest_loader
        self.brew = brew
        self.colima = colima
        self.docker = docker

        self.installation_logs = LogBuffer("installation")
        self.binary_logs = LogBuffer("binary-installation")
        self.vm_logs = LogBuffer("vm-startup")

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------
    def _env(self) -> Dict[str, str]:
        """Process env with bin_dir on PATH so freshly placed binaries resolve."""
        env = dict(os.environ)
        path = env.get("PATH", "")
        if str(self.bin_dir) not in path.split(os.pathsep):
            env["PATH"] = os.pathsep.join([str(self.bin_dir), path]) if path else str(self.bin_dir)
        return env

    def _which(self, name: str) -> Optional[str]:
        return shutil.which(name, path=self._env()["PATH"])

    # ------------------------------------------------------------------
    # Probes
    # ------------------------------------------------------------------
    def check_homebrew_availability(self) -> HomebrewStatus:
        if not self._which(self.brew):
            return HomebrewStatus(is_available=False)

        try:
            res = self.runner.run([self.brew, "--version"], env=self._env(), timeout=30)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProbeFailure(f"brew --version failed: {e}") from e
        version = res.stdout.strip().splitlines()[0] if res.returncode == 0 and res.stdout.strip() else None
        return HomebrewStatus(is_available=True, version=version)

    def check_colima_availability(self) -> bool:
        return self._which(self.colima) is not None

    def colima_status(self) -> ColimaStatus:
        if not self.check_colima_availability():
            return ColimaStatus(is_installed=False, is_running=False)

        res = self.runner.run([self.colima, "status"], env=self._env())
        if res.returncode != 0:
            return ColimaStatus(is_installed=True, is_running=False)

        # colima writes its status report to stderr
        text = "\n".join(x for x in (res.stdout, res.stderr) if x)
        running = _is_running(text)
        return ColimaStatus(
            is_installed=True,
            is_running=running,
            vm_info=parse_colima_vm_info(text) if running else None,
        )

    def get_colima_versions(self) -> IntegrityManifest:
        return self.manifest_loader()

    # ------------------------------------------------------------------
    # Package-manager install
    # ------------------------------------------------------------------
    def install_colima_command(self, method: InstallationMethod) -> None:
        if method != InstallationMethod.PACKAGE_MANAGER:
            raise InstallError(
                "Direct-binary installs place verified artifacts via binary_install_colima"
            )

        logs = self.installation_logs
        logs.clear()
        logs.append("Starting Colima installation via Homebrew...")

        if not self._which(self.brew):
            logs.append("Homebrew is not available")
            raise InstallError("Homebrew is not available. Please install Homebrew first.")

        for pkg in HOMEBREW_PACKAGES:
            logs.append(f"Installing {pkg} via Homebrew...")
            res = self.runner.stream([self.brew, "install", pkg], sink=logs.append, env=self._env())
            if res.returncode != 0:
                msg = f"Failed to install {pkg}: {tail(res.stdout) or f'exit code {res.returncode}'}"
                logs.append(msg)
                raise InstallError(msg)
            logs.append(f"{pkg} installed successfully")

        logs.append(INSTALL_SUCCESS_LINE)

    # ------------------------------------------------------------------
    # Direct-binary install
    # ------------------------------------------------------------------
    def binary_install_colima(self, paths: Dict[str, Path]) -> None:
        """
        Place already-verified artifacts into bin_dir.

        Archives contribute every regular file under their bin/ directory;
        plain binaries are copied under their artifact name. In dry-run mode
        the plan is written to the log and nothing on disk changes.
        """
        logs = self.binary_logs
        logs.append("Starting Colima installation...")
        if self.runner.dry_run:
            self._plan_binary_install(paths)
            return

        logs.append("Creating installation directories...")
        try:
            self.bin_dir.mkdir(parents=True, exist_ok=True)
            (self.home / ".colima").mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise InstallError(f"Failed to create installation directories: {e}") from e

        placed: List[Path] = []
        for name, src in paths.items():
            src = Path(src)
            if not src.exists():
                raise InstallError(f"{name} source file does not exist: {src}")

            if tarfile.is_tarfile(src):
                logs.append(f"Extracting {name} binaries...")
                placed += self._extract_bin(src)
            else:
                logs.append(f"Installing {name} binary...")
                dest = self.bin_dir / name
                try:
                    shutil.copyfile(src, dest)
                except OSError as e:
                    raise InstallError(f"Failed to copy {name} binary: {e}") from e
                placed.append(dest)

        logs.append("Setting executable permissions...")
        for p in placed:
            _make_executable(p)

        self._update_path_configuration()
        self._cleanup_downloads(paths)
        self._verify_installed(placed)

        logs.append(f"✅ {BINARY_SUCCESS_LINE}")
        logs.append(f"Colima installed to: {self.bin_dir / 'colima'}")

    def _plan_binary_install(self, paths: Dict[str, Path]) -> None:
        logs = self.binary_logs
        for name, src in paths.items():
            src = Path(src)
            if not src.exists():
                raise InstallError(f"{name} source file does not exist: {src}")
            if tarfile.is_tarfile(src):
                logs.append(f"[dry-run] extract bin/* from {src} into {self.bin_dir}")
            else:
                logs.append(f"[dry-run] copy {src} to {self.bin_dir / name}")
        logs.append("[dry-run] chmod 0755 installed binaries")
        if str(self.bin_dir) not in os.environ.get("PATH", "").split(os.pathsep):
            logs.append(f"[dry-run] add {self.bin_dir} to PATH in the shell profile")
        logs.append(f"[dry-run] remove {len(paths)} downloaded file(s)")
        logs.append(f"{BINARY_SUCCESS_LINE} (dry run)")

    def _extract_bin(self, archive: Path) -> List[Path]:
        placed: List[Path] = []
        try:
            with tarfile.open(archive, "r:*") as tar:
                for member in tar.getmembers():
                    parts = Path(member.name).parts
                    if not member.isfile() or len(parts) < 2 or parts[-2] != "bin":
                        continue
                    dest = self.bin_dir / parts[-1]
                    src = tar.extractfile(member)
                    if src is None:
                        continue
                    with src, dest.open("wb") as out:
                        shutil.copyfileobj(src, out)
                    placed.append(dest)
        except (tarfile.TarError, OSError) as e:
            raise InstallError(f"Failed to extract {archive.name}: {e}") from e

        if not placed:
            raise InstallError(f"Could not find any binaries in {archive.name}")
        return placed

    def _update_path_configuration(self) -> None:
        bin_dir = str(self.bin_dir)
        if bin_dir in os.environ.get("PATH", "").split(os.pathsep):
            return

        for fname in PROFILE_FILES:
            profile = self.home / fname
            if not profile.exists():
                continue
            content = profile.read_text()
            if bin_dir in content:
                return
            with profile.open("a") as f:
                f.write(f'\n# Add Colima binaries to PATH\nexport PATH="$PATH:{bin_dir}"\n')
            self.binary_logs.append(f"Updated PATH in {profile}")
            return

    def _cleanup_downloads(self, paths: Dict[str, Path]) -> None:
        for p in paths.values():
            try:
                Path(p).unlink()
            except OSError as e:
                self.binary_logs.append(f"Warning: Failed to remove temporary file {p}: {e}")

    def _verify_installed(self, placed: List[Path]) -> None:
        for p in placed:
            if not p.exists():
                raise InstallError(f"{p.name} binary not found at: {p}")
            if not p.stat().st_mode & 0o111:
                raise InstallError(f"{p.name} binary is not executable")

    # ------------------------------------------------------------------
    # VM lifecycle
    # ------------------------------------------------------------------
    def start_colima_vm_command(self, config: VmResourceConfig) -> None:
        logs = self.vm_logs
        logs.clear()
        logs.append("Starting Colima VM...")
        logs.append(f"Configuration: {config.describe()}")

        if not config.is_complete():
            raise VmStartError("VM resource configuration is incomplete")

        status = self.colima_status()
        if not status.is_installed:
            logs.append("VM startup failed")
            raise VmStartError("Failed to start Colima VM: colima is not installed")
        if status.is_running:
            logs.append("Colima VM is already running")
            return

        res = self.runner.stream(
            [self.colima, "start", *config.colima_args()],
            sink=logs.append,
            env=self._env(),
        )
        if res.returncode != 0:
            logs.append("VM startup failed")
            raise VmStartError(
                f"Failed to start Colima VM: {tail(res.stdout) or f'exit code {res.returncode}'}"
            )
        logs.append(VM_SUCCESS_LINE)

    # ------------------------------------------------------------------
    # Engine
    # ------------------------------------------------------------------
    def get_docker_info(self) -> EngineInfo:
        try:
            version = self.runner.run([self.docker, "version"], env=self._env(), timeout=DOCKER_TIMEOUT)
            if version.returncode != 0:
                raise ConnectivityError("Docker is not responding after Colima startup")

            info = self.runner.run(
                [self.docker, "info", "--format", "{{json .}}"], env=self._env(), timeout=DOCKER_TIMEOUT
            )
        except FileNotFoundError as e:
            raise ConnectivityError(f"Docker CLI not found: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise ConnectivityError(f"Docker did not answer within {DOCKER_TIMEOUT}s") from e

        if info.returncode != 0:
            raise ConnectivityError("Cannot connect to Docker daemon")

        try:
            data = json.loads(info.stdout or "{}")
        except json.JSONDecodeError as e:
            raise ConnectivityError(f"Unreadable docker info output: {e}") from e
        return EngineInfo.model_validate(data)

    def _succeeds(self, cmd: List[str]) -> bool:
        try:
            return self.runner.run(cmd, env=self._env(), timeout=DOCKER_TIMEOUT).returncode == 0
        except (OSError, subprocess.TimeoutExpired) as e:
            log.debug("%s failed: %s", " ".join(cmd), e)
            return False

    def validate_colima_installation(self) -> ValidationResult:
        """Run every engine check and collect all failures rather than stopping at the first."""
        result = ValidationResult()

        result.docker_working = self._succeeds([self.docker, "version"])
        if not result.docker_working:
            result.issues.append("Docker version command failed")

        if not self._succeeds([self.docker, "info"]):
            result.issues.append("Docker info command failed")

        result.colima_running = self.colima_status().is_running
        if not result.colima_running:
            result.issues.append("Colima VM is not running")

        # a container listing only means something once the VM is up
        result.vm_accessible = result.colima_running and self._succeeds([self.docker, "ps"])
        if not result.vm_accessible:
            result.issues.append("Cannot access Docker daemon through Colima")

        return result

    def repair_colima_installation(self) -> RepairResult:
        result = RepairResult()

        if not self.check_colima_availability():
            result.manual_steps.append("Colima is not installed. Please run the installation process again.")
            result.next_actions.append("Run `nookat install`")
            return result

        try:
            listing = self.runner.run([self.colima, "list"], env=self._env(), timeout=DOCKER_TIMEOUT)
            vm_exists = listing.returncode == 0 and any(
                x in listing.stdout for x in ("default", "colima")
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            log.debug("colima list failed: %s", e)
            vm_exists = False
        if not vm_exists:
            result.manual_steps.append("No Colima VM found. Please create a new VM.")
            result.next_actions.append("Run `nookat start`")
            return result

        if self.colima_status().is_running:
            result.actions_taken.append("Colima VM is already running")
            result.next_actions.append("Verify Docker connectivity")
            result.success = True
            return result

        try:
            res = self.runner.stream([self.colima, "start"], sink=self.vm_logs.append, env=self._env())
        except OSError as e:
            result.manual_steps.append(f"Failed to execute colima start: {e}")
            result.next_actions.append("Check Colima installation and try again")
            return result

        if res.returncode == 0:
            result.actions_taken.append("Successfully started Colima VM")
            result.next_actions.append("Verify Docker connectivity")
            result.success = True
        else:
            result.manual_steps.append(
                f"Failed to start VM: {tail(res.stdout) or f'exit code {res.returncode}'}"
            )
            result.next_actions.append("Check system resources and try again")
        return result

    def cancel(self) -> None:
        """Kill any brew/colima command still running for an abandoned phase."""
        self.runner.kill_active()

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------
    def get_installation_logs(self) -> List[str]:
        return self.installation_logs.snapshot()

    def get_binary_installation_logs(self) -> List[str]:
        return self.binary_logs.snapshot()

    def get_vm_startup_logs(self) -> List[str]:
        return self.vm_logs.snapshot()

    def clear_binary_installation_logs(self) -> None:
        self.binary_logs.clear()

    def clear_installation_logs(self) -> None:
        self.installation_logs.clear()

    def clear_vm_startup_logs(self) -> None:
        self.vm_logs.clear()


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _make_executable(path: Path) -> None:
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IRWXU | stat.S_IRGRP | stat.S_IXGRP | stat.S_IROTH | stat.S_IXOTH)


def _is_running(text: str) -> bool:
    low = text.lower()
    return "running" in low and "not running" not in low


_SIZE_RE = re.compile(r"^([\d.]+)\s*([KMGT]i?B)?$", re.IGNORECASE)
_UNITS = {"k": 1024, "m": 1024 ** 2, "g": 1024 ** 3, "t": 1024 ** 4}


def _parse_size(value: str) -> int:
    m = _SIZE_RE.match(value.strip())
    if not m:
        return 0
    number, unit = float(m.group(1)), (m.group(2) or "")
    return int(number * _UNITS.get(unit[:1].lower(), 1))


def parse_colima_vm_info(status_text: str) -> VmInfo:
    """Pull cpu/memory/disk/arch out of `colima status` output."""
    fields: Dict[str, str] = {}
    for line in status_text.splitlines():
        # strip the logrus prefix, e.g. "INFO[0000] arch: aarch64"
        line = re.sub(r"^\w+\[\d+\]\s*", "", line.strip())
        if ":" not in line:
            continue
        key, _, value = line.partition(":")
        fields[key.strip().lower()] = value.strip()

    cpu = fields.get("cpu", "0").split()[0] if fields.get("cpu") else "0"
    return VmInfo(
        cpu=int(cpu) if cpu.isdigit() else 0,
        memory=_parse_size(fields.get("memory", "")),
        disk=_parse_size(fields.get("disk", "")),
        architecture=fields.get("arch", "unknown") or "unknown",
    )
