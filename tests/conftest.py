import hashlib
import time
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import requests

from nookat.engine.errors import ConnectivityError, InstallError, VmStartError
from nookat.engine.logbuffer import LogBuffer
from nookat.engine.models import (
    ArtifactSpec,
    ColimaStatus,
    EngineInfo,
    HomebrewStatus,
    IntegrityManifest,
    RepairResult,
    ValidationResult,
)


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FakeBackend:
    """In-memory EngineBackend; records every command it receives."""

    def __init__(
        self,
        *,
        brew: bool = True,
        colima: bool = True,
        running: bool = False,
        manifest: Optional[IntegrityManifest] = None,
        install_error: Optional[str] = None,
        vm_error: Optional[str] = None,
        docker_error: Optional[str] = None,
        install_delay: float = 0.0,
        validation_issues: Optional[List[str]] = None,
    ):
        self.brew = brew
        self.colima = colima
        self.running = running
        self.manifest = manifest or IntegrityManifest(artifacts=[])
        self.install_error = install_error
        self.vm_error = vm_error
        self.docker_error = docker_error
        self.install_delay = install_delay
        self.validation_issues = validation_issues
        self.calls: List = []

        self.installation_logs = LogBuffer("installation")
        self.binary_logs = LogBuffer("binary-installation")
        self.vm_logs = LogBuffer("vm-startup")

    def check_homebrew_availability(self):
        self.calls.append("check_homebrew")
        return HomebrewStatus(is_available=self.brew, version="Homebrew 4.3.0" if self.brew else None)

    def check_colima_availability(self):
        return self.colima

    def colima_status(self):
        return ColimaStatus(is_installed=self.colima, is_running=self.running)

    def get_colima_versions(self):
        return self.manifest

    def install_colima_command(self, method):
        self.calls.append(("install", method))
        self.installation_logs.append("Starting Colima installation via Homebrew...")
        if self.install_delay:
            time.sleep(self.install_delay)
        if self.install_error:
            self.installation_logs.append(self.install_error)
            raise InstallError(self.install_error)
        self.installation_logs.append("All components installed successfully!")
        self.colima = True

    def binary_install_colima(self, paths):
        self.calls.append(("binary_install", dict(paths)))
        self.binary_logs.append("Starting Colima installation...")
        self.binary_logs.append("✅ Colima installation completed successfully")
        self.colima = True

    def start_colima_vm_command(self, config):
        self.calls.append(("start_vm", config))
        self.vm_logs.append("Starting Colima VM...")
        if self.vm_error:
            self.vm_logs.append("VM startup failed")
            raise VmStartError(self.vm_error)
        self.vm_logs.append("Colima VM started successfully!")
        self.running = True

    def validate_colima_installation(self):
        self.calls.append("validate")
        issues = list(self.validation_issues or ([self.docker_error] if self.docker_error else []))
        return ValidationResult(
            docker_working=not issues, colima_running=self.running, vm_accessible=not issues, issues=issues
        )

    def repair_colima_installation(self):
        self.calls.append("repair")
        if not self.colima:
            return RepairResult(manual_steps=["Colima is not installed. Please run the installation process again."])
        self.running = True
        return RepairResult(success=True, actions_taken=["Successfully started Colima VM"])

    def cancel(self):
        self.calls.append("cancel")

    def get_docker_info(self):
        self.calls.append("docker_info")
        if self.docker_error:
            raise ConnectivityError(self.docker_error)
        return EngineInfo(ServerVersion="27.3.1", OperatingSystem="Ubuntu 24.04", Architecture="aarch64", NCPU=2)

    def get_installation_logs(self):
        return self.installation_logs.snapshot()

    def get_binary_installation_logs(self):
        return self.binary_logs.snapshot()

    def get_vm_startup_logs(self):
        return self.vm_logs.snapshot()

    def clear_binary_installation_logs(self):
        self.binary_logs.clear()

    def clear_installation_logs(self):
        self.installation_logs.clear()

    def clear_vm_startup_logs(self):
        self.vm_logs.clear()


class FakeResponse:
    def __init__(self, body: bytes = b"", status: int = 200, json_data=None, content_length: bool = True):
        self.body = body
        self.status_code = status
        self._json = json_data
        self.headers = {"content-length": str(len(body))} if content_length else {}

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.body), chunk_size):
            yield self.body[i:i + chunk_size]

    def json(self):
        return self._json


class FakeHttp:
    """Stands in for requests.Session: url -> FakeResponse or exception."""

    def __init__(self, routes: Dict[str, object]):
        self.routes = routes
        self.requested: List[str] = []
        self.closed = False

    def get(self, url, **kwargs):
        self.requested.append(url)
        r = self.routes.get(url)
        if r is None:
            return FakeResponse(status=404)
        if isinstance(r, Exception):
            raise r
        return r

    def close(self):
        self.closed = True


def artifact(name: str, body: bytes, *, url: Optional[str] = None) -> ArtifactSpec:
    return ArtifactSpec(
        name=name,
        version="1.0.0",
        checksum=sha256(body),
        download_url=url or f"https://example.test/{name}",
    )


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)

    def of(self, kind):
        return [e for e in self.events if isinstance(e, kind)]


@pytest.fixture
def capture():
    return Capture()


@pytest.fixture
def fake_home(tmp_path: Path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("NOOKAT_CONFIG_FILE", raising=False)
    return home
