import io
import json
import os
import subprocess
import tarfile
from pathlib import Path

import pytest

from nookat.engine.colima import ColimaBackend, parse_colima_vm_info
from nookat.engine.errors import ConnectivityError, InstallError, VmStartError
from nookat.engine.models import InstallationMethod, VmResourceConfig
from nookat.utils.runner import CommandRunner


class FakeRunner:
    """Scripted CommandRunner: first matching prefix wins."""

    def __init__(self, script=None, dry_run=False):
        self.script = script or []
        self.calls = []
        self.dry_run = dry_run
        self.killed = 0

    def _answer(self, cmd):
        argv = [os.path.basename(str(cmd[0]))] + [str(c) for c in cmd[1:]]
        self.calls.append(argv)
        for prefix, rc, out in self.script:
            if argv[:len(prefix)] == prefix:
                return rc, out
        return 0, ""

    def run(self, cmd, **kw):
        rc, out = self._answer(cmd)
        return subprocess.CompletedProcess(cmd, rc, out, "")

    def stream(self, cmd, *, sink, **kw):
        rc, out = self._answer(cmd)
        for line in out.splitlines():
            sink(line)
        return subprocess.CompletedProcess(cmd, rc, out, "")

    def kill_active(self):
        self.killed += 1
        return 0


def _exe(path: Path) -> str:
    path.write_text("#!/bin/sh\n")
    path.chmod(0o755)
    return str(path)


def _backend(tmp_path, runner, *, brew=True, colima=True):
    tools = tmp_path / "tools"
    tools.mkdir(exist_ok=True)
    home = tmp_path / "home"
    home.mkdir(exist_ok=True)
    return ColimaBackend(
        runner=runner,
        home=home,
        bin_dir=home / ".local" / "bin",
        brew=_exe(tools / "brew") if brew else str(tools / "missing-brew"),
        colima=_exe(tools / "colima") if colima else str(tools / "missing-colima"),
        docker=_exe(tools / "docker"),
    )


def test_homebrew_probe_reports_version(tmp_path):
    runner = FakeRunner([(["brew", "--version"], 0, "Homebrew 4.3.1\nHomebrew/homebrew-core\n")])
    st = _backend(tmp_path, runner).check_homebrew_availability()
    assert st.is_available and st.version == "Homebrew 4.3.1"

    st = _backend(tmp_path, FakeRunner(), brew=False).check_homebrew_availability()
    assert not st.is_available


def test_homebrew_install_runs_each_package(tmp_path):
    runner = FakeRunner([(["brew", "install"], 0, "==> Pouring bottle")])
    b = _backend(tmp_path, runner)
    b.install_colima_command(InstallationMethod.PACKAGE_MANAGER)

    assert [c for c in runner.calls if c[:2] == ["brew", "install"]] == [
        ["brew", "install", "colima"],
        ["brew", "install", "docker"],
        ["brew", "install", "docker-compose"],
    ]
    logs = b.get_installation_logs()
    assert logs[0] == "Starting Colima installation via Homebrew..."
    assert "==> Pouring bottle" in logs
    assert logs[-1] == "All components installed successfully!"


def test_homebrew_install_stops_at_first_failure(tmp_path):
    runner = FakeRunner([(["brew", "install", "docker"], 1, "Error: docker: no bottle available")])
    b = _backend(tmp_path, runner)
    with pytest.raises(InstallError) as err:
        b.install_colima_command(InstallationMethod.PACKAGE_MANAGER)
    assert str(err.value) == "Failed to install docker: Error: docker: no bottle available"
    assert ["brew", "install", "docker-compose"] not in runner.calls


def test_homebrew_missing(tmp_path):
    b = _backend(tmp_path, FakeRunner(), brew=False)
    with pytest.raises(InstallError, match="Homebrew is not available"):
        b.install_colima_command(InstallationMethod.PACKAGE_MANAGER)


def test_start_vm_builds_arguments(tmp_path):
    runner = FakeRunner([(["colima", "status"], 1, "")])
    b = _backend(tmp_path, runner)
    b.start_colima_vm_command(VmResourceConfig(cpu_cores=4, memory_gb=8, disk_gb=60, architecture="x86_64"))
    b.start_colima_vm_command(VmResourceConfig())

    starts = [c for c in runner.calls if c[:2] == ["colima", "start"]]
    assert starts[0] == ["colima", "start", "--cpu", "4", "--memory", "8", "--disk", "60", "--arch", "x86_64"]
    assert starts[1] == ["colima", "start", "--cpu", "2", "--memory", "2", "--disk", "100"]
    assert b.get_vm_startup_logs()[-1] == "Colima VM started successfully!"


def test_start_vm_skipped_when_already_running(tmp_path):
    runner = FakeRunner([(["colima", "status"], 0, "INFO[0000] colima is running using macOS Virtualization.Framework")])
    b = _backend(tmp_path, runner)
    b.start_colima_vm_command(VmResourceConfig())
    assert not any(c[:2] == ["colima", "start"] for c in runner.calls)
    assert "Colima VM is already running" in b.get_vm_startup_logs()


def test_start_vm_failure(tmp_path):
    runner = FakeRunner([(["colima", "status"], 1, ""), (["colima", "start"], 1, "FATA[0001] error starting vm")])
    b = _backend(tmp_path, runner)
    with pytest.raises(VmStartError, match="Failed to start Colima VM: FATA"):
        b.start_colima_vm_command(VmResourceConfig())
    assert "VM startup failed" in b.get_vm_startup_logs()


def test_start_vm_requires_colima(tmp_path):
    b = _backend(tmp_path, FakeRunner(), colima=False)
    with pytest.raises(VmStartError, match="not installed"):
        b.start_colima_vm_command(VmResourceConfig())


def test_docker_info_parsed(tmp_path):
    info = {"ServerVersion": "27.3.1", "OperatingSystem": "Ubuntu 24.04.1 LTS", "NCPU": 4, "MemTotal": 8 << 30, "Swarm": {}}
    runner = FakeRunner([(["docker", "info"], 0, json.dumps(info))])
    got = _backend(tmp_path, runner).get_docker_info()
    assert got.server_version == "27.3.1"
    assert got.ncpu == 4


def test_docker_unreachable(tmp_path):
    runner = FakeRunner([(["docker", "version"], 1, "")])
    with pytest.raises(ConnectivityError, match="not responding"):
        _backend(tmp_path, runner).get_docker_info()

    runner = FakeRunner([(["docker", "info"], 1, "")])
    with pytest.raises(ConnectivityError, match="Cannot connect to Docker daemon"):
        _backend(tmp_path, runner).get_docker_info()


def _lima_tarball(path: Path) -> Path:
    with tarfile.open(path, "w:gz") as tar:
        for name, data in (("bin/limactl", b"limactl"), ("share/lima/README", b"docs")):
            ti = tarfile.TarInfo(name)
            ti.size = len(data)
            tar.addfile(ti, io.BytesIO(data))
    return path


def test_binary_install_places_binaries_and_cleans_up(tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", "/usr/bin:/bin")
    b = _backend(tmp_path, FakeRunner())
    (b.home / ".zshrc").write_text("# zsh\n")

    dl = tmp_path / "dl"
    dl.mkdir()
    colima = dl / "colima-Darwin-arm64"
    colima.write_bytes(b"\xcf\xfa\xed\xfe")
    lima = _lima_tarball(dl / "lima-1.2.1-Darwin-arm64.tar.gz")

    b.binary_install_colima({"lima": lima, "colima": colima})

    assert (b.bin_dir / "colima").read_bytes() == b"\xcf\xfa\xed\xfe"
    assert (b.bin_dir / "limactl").read_bytes() == b"limactl"
    assert not (b.bin_dir / "README").exists()
    assert os.access(b.bin_dir / "colima", os.X_OK)
    assert not colima.exists() and not lima.exists()
    assert f'export PATH="$PATH:{b.bin_dir}"' in (b.home / ".zshrc").read_text()
    assert (b.home / ".colima").is_dir()
    assert b.get_binary_installation_logs()[-2] == "✅ Colima installation completed successfully"

    b.clear_binary_installation_logs()
    assert b.get_binary_installation_logs() == []


def test_binary_install_missing_source(tmp_path):
    b = _backend(tmp_path, FakeRunner())
    with pytest.raises(InstallError, match="does not exist"):
        b.binary_install_colima({"colima": tmp_path / "nope"})


def test_binary_method_is_not_a_homebrew_command(tmp_path):
    with pytest.raises(InstallError):
        _backend(tmp_path, FakeRunner()).install_colima_command(InstallationMethod.DIRECT_BINARY)


def test_parse_colima_status_output():
    text = (
        "INFO[0000] colima is running using macOS Virtualization.Framework\n"
        "INFO[0000] arch: aarch64\n"
        "INFO[0000] runtime: docker\n"
        "INFO[0000] cpu: 4\n"
        "INFO[0000] memory: 8GiB\n"
        "INFO[0000] disk: 60GiB\n"
    )
    info = parse_colima_vm_info(text)
    assert info.cpu == 4
    assert info.memory == 8 * 1024 ** 3
    assert info.disk == 60 * 1024 ** 3
    assert info.architecture == "aarch64"


def test_colima_status(tmp_path):
    runner = FakeRunner([(["colima", "status"], 0, "INFO[0000] colima is running\nINFO[0000] cpu: 2\n")])
    st = _backend(tmp_path, runner).colima_status()
    assert st.is_installed and st.is_running and st.vm_info.cpu == 2

    st = _backend(tmp_path, FakeRunner(), colima=False).colima_status()
    assert not st.is_installed and not st.is_running


def test_dry_run_runner_streams_marker(monkeypatch):
    def no_popen(*a, **kw):
        raise AssertionError("dry run must not spawn processes")

    monkeypatch.setattr(subprocess, "Popen", no_popen)
    lines = []
    res = CommandRunner(dry_run=True).stream(["brew", "install", "colima"], sink=lines.append)
    assert res.returncode == 0
    assert lines == ["[dry-run] brew install colima"]


def test_dry_run_binary_install_leaves_disk_untouched(tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", "/usr/bin:/bin")
    b = _backend(tmp_path, FakeRunner(dry_run=True))
    (b.home / ".zshrc").write_text("# zsh\n")
    dl = tmp_path / "dl"
    dl.mkdir()
    colima = dl / "colima-Darwin-arm64"
    colima.write_bytes(b"\xcf\xfa\xed\xfe")
    lima = _lima_tarball(dl / "lima-1.2.1-Darwin-arm64.tar.gz")

    b.binary_install_colima({"lima": lima, "colima": colima})

    assert not (b.bin_dir / "colima").exists()
    assert not (b.bin_dir / "limactl").exists()
    assert colima.exists() and lima.exists()
    assert (b.home / ".zshrc").read_text() == "# zsh\n"
    logs = b.get_binary_installation_logs()
    assert f"[dry-run] copy {colima} to {b.bin_dir / 'colima'}" in logs
    assert f"[dry-run] extract bin/* from {lima} into {b.bin_dir}" in logs
    assert logs[-1] == "Colima installation completed successfully (dry run)"


def test_validation_collects_every_issue(tmp_path):
    runner = FakeRunner([
        (["docker", "version"], 1, ""),
        (["docker", "info"], 1, ""),
        (["colima", "status"], 1, ""),
    ])
    res = _backend(tmp_path, runner).validate_colima_installation()
    assert not res.ok
    assert not (res.docker_working or res.colima_running or res.vm_accessible)
    assert res.issues == [
        "Docker version command failed",
        "Docker info command failed",
        "Colima VM is not running",
        "Cannot access Docker daemon through Colima",
    ]
    # docker ps is pointless while the VM is down
    assert ["docker", "ps"] not in runner.calls


def test_validation_of_a_healthy_engine(tmp_path):
    runner = FakeRunner([(["colima", "status"], 0, "INFO[0000] colima is running")])
    res = _backend(tmp_path, runner).validate_colima_installation()
    assert res.ok
    assert res.docker_working and res.colima_running and res.vm_accessible
    assert ["docker", "ps"] in runner.calls


def test_repair_without_colima(tmp_path):
    res = _backend(tmp_path, FakeRunner(), colima=False).repair_colima_installation()
    assert not res.success
    assert res.manual_steps == ["Colima is not installed. Please run the installation process again."]


def test_repair_without_a_vm(tmp_path):
    runner = FakeRunner([(["colima", "list"], 0, "PROFILE    STATUS\n")])
    res = _backend(tmp_path, runner).repair_colima_installation()
    assert not res.success
    assert res.manual_steps == ["No Colima VM found. Please create a new VM."]
    assert not any(c[:2] == ["colima", "start"] for c in runner.calls)


def test_repair_starts_a_stopped_vm(tmp_path):
    runner = FakeRunner([
        (["colima", "list"], 0, "PROFILE    STATUS     ARCH\ndefault    Stopped    aarch64\n"),
        (["colima", "status"], 1, ""),
    ])
    res = _backend(tmp_path, runner).repair_colima_installation()
    assert res.success
    assert res.actions_taken == ["Successfully started Colima VM"]
    assert ["colima", "start"] in runner.calls


def test_repair_reports_a_failed_start(tmp_path):
    runner = FakeRunner([
        (["colima", "list"], 0, "default    Stopped\n"),
        (["colima", "status"], 1, ""),
        (["colima", "start"], 1, "FATA[0002] insufficient memory"),
    ])
    res = _backend(tmp_path, runner).repair_colima_installation()
    assert not res.success
    assert res.manual_steps == ["Failed to start VM: FATA[0002] insufficient memory"]
    assert res.next_actions == ["Check system resources and try again"]


def test_cancel_kills_running_commands(tmp_path):
    runner = FakeRunner()
    _backend(tmp_path, runner).cancel()
    assert runner.killed == 1
