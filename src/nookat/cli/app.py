# src/nookat/cli/app.py
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import typer
import yaml
from pydantic import ValidationError

from nookat.bootstrap.machine import MachineSnapshot
from nookat.bootstrap.session import BootstrapSession
from nookat.bootstrap.state import BootstrapState
from nookat.config.loader import load_config
from nookat.config.models import NookatConfig
from nookat.engine.errors import BootstrapError, ConnectivityError
from nookat.engine.models import InstallationMethod, VmResourceConfig
from nookat.logging.log import init_logging
from nookat.observers.console import ConsoleObserver
from nookat.observers.jsonfile import JsonFileObserver
from nookat.observers.logger import LoggerObserver
from nookat.services import EngineServices, build_services


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Nookat container engine bootstrap CLI")

ConfigOpt = typer.Option(None, "--config", help="Path to config.yaml")
VerboseOpt = typer.Option(False, "--verbose", "-v", help="DEBUG output on the console")
EventsOpt = typer.Option(False, "--events", help="Print lifecycle events")


def _load(config: Optional[Path]) -> NookatConfig:
    try:
        return load_config(config)
    except FileNotFoundError as e:
        raise typer.BadParameter(str(e), param_hint="--config")
    except ValidationError as e:
        raise typer.BadParameter(f"Invalid config: {e}", param_hint="--config")
    except (ValueError, yaml.YAMLError) as e:
        raise typer.BadParameter(f"Malformed config: {e}", param_hint="--config")


def _setup(config: Optional[Path], verbose: bool, events: bool = False) -> Tuple[NookatConfig, EngineServices, Path]:
    cfg = _load(config)

    logger, run_id, log_path = init_logging(base_dir=cfg.paths.log_dir, verbose=verbose)

    observers: List = [
        LoggerObserver(logger),
        JsonFileObserver(cfg.paths.log_dir / f"{run_id}.jsonl"),
    ]
    if events:
        observers.append(ConsoleObserver())

    services = build_services(cfg, observers=observers, run_id=run_id)
    return cfg, services, log_path


def _vm_config(
    base: VmResourceConfig,
    cpu: Optional[int],
    memory: Optional[int],
    disk: Optional[int],
    arch: Optional[str],
) -> VmResourceConfig:
    overrides = {
        k: v
        for k, v in {"cpu_cores": cpu, "memory_gb": memory, "disk_gb": disk, "architecture": arch}.items()
        if v is not None
    }
    try:
        return VmResourceConfig.model_validate({**base.model_dump(), **overrides})
    except ValidationError as e:
        raise typer.BadParameter(str(e))


def _parse_method(value: Optional[str]) -> Optional[InstallationMethod]:
    if value is None:
        return None
    try:
        return InstallationMethod.parse(value)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--method")


# ------------------------------------------------------------------------------
# Rendering
# ------------------------------------------------------------------------------

class ProgressPrinter:
    """Presentation layer: renders machine snapshots as they change."""

    def __init__(self, echo: Callable[[str], None] = typer.echo):
        self.echo = echo
        self._state: Optional[BootstrapState] = None
        self._line: Optional[Tuple[str, str, int]] = None
        self._printed = 0

    def __call__(self, snap: MachineSnapshot) -> None:
        p = snap.progress
        if len(p.logs) < self._printed:
            self._printed = 0   # reset

        if snap.state is not self._state:
            self._state = snap.state
            self.echo(f"==> {snap.state.value}")

        line = (p.step, p.message, p.percentage)
        if line != self._line and p.step:
            self._line = line
            self.echo(f"[{p.percentage:3d}%] {p.step} {p.message}".rstrip())

        for entry in p.logs[self._printed:]:
            self.echo(f"    {entry}")
        self._printed = len(p.logs)


async def _drive(session: BootstrapSession, vm: VmResourceConfig, command: Callable[[BootstrapSession], bool]) -> BootstrapState:
    async with session:
        session.machine.subscribe(ProgressPrinter())
        session.configure(vm)
        if not command(session):
            return session.state
        return await session.run_until_settled()


def _finish(session: BootstrapSession, state: BootstrapState, log_path: Path) -> None:
    typer.echo("")
    if state is BootstrapState.COMPLETE:
        info = session.machine.engine_info
        typer.secho("Engine Ready!", fg=typer.colors.GREEN, bold=True)
        if info and info.server_version:
            typer.echo(f"  Docker   : {info.server_version} ({info.operating_system}, {info.architecture})")
        typer.echo(f"  Logs     : {log_path}")
        return

    typer.secho(f"Bootstrap failed: {session.machine.error or state.value}", fg=typer.colors.RED, err=True)
    typer.echo(f"  Logs     : {log_path}", err=True)
    raise typer.Exit(code=1)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def probe(
    config: Optional[Path] = ConfigOpt,
    verbose: bool = VerboseOpt,
):
    """Check Homebrew and Colima availability and show the installation method that would be used."""
    cfg, services, _ = _setup(config, verbose)
    with services:
        avail = services.selector.probe()
        method = services.selector.select(cfg.bootstrap.preferred_method)

    brew = "available" if avail.package_manager_available else "not available"
    if avail.package_manager_version:
        brew += f" ({avail.package_manager_version})"
    typer.echo(f"Homebrew : {brew}")
    typer.echo(f"Colima   : {'installed' if avail.colima_installed else 'not installed'}")
    typer.echo(f"Method   : {method.value}")
    if not avail.package_manager_available:
        typer.echo("           (homebrew option disabled)")


@app.command()
def manifest(
    config: Optional[Path] = ConfigOpt,
    verbose: bool = VerboseOpt,
):
    """Print the integrity manifest used for direct-binary installs."""
    _, services, _ = _setup(config, verbose)
    with services:
        try:
            m = services.acquisition().fetch_manifest()
        except BootstrapError as e:
            typer.secho(str(e), fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

    for a in m.artifacts:
        typer.echo(f"{a.name} {a.version}")
        typer.echo(f"  sha256 : {a.checksum}")
        typer.echo(f"  url    : {a.download_url}")


@app.command()
def install(
    method: Optional[str] = typer.Option(None, "--method", help="homebrew or binary"),
    cpu: Optional[int] = typer.Option(None, "--cpu", help="VM CPU cores"),
    memory: Optional[int] = typer.Option(None, "--memory", help="VM memory in GB"),
    disk: Optional[int] = typer.Option(None, "--disk", help="VM disk in GB"),
    arch: Optional[str] = typer.Option(None, "--arch", help="auto, arm64, x86_64, ..."),
    config: Optional[Path] = ConfigOpt,
    verbose: bool = VerboseOpt,
    events: bool = EventsOpt,
):
    """Install Colima, start the VM and validate the engine."""
    preferred = _parse_method(method)
    cfg, services, log_path = _setup(config, verbose, events)
    vm = _vm_config(cfg.vm, cpu, memory, disk, arch)

    with services:
        chosen = services.selector.select(preferred or cfg.bootstrap.preferred_method)
        typer.secho(f"Installing Colima via {chosen.value}", bold=True)
        session = services.open_session()
        state = asyncio.run(_drive(session, vm, lambda s: s.install(chosen)))

    _finish(session, state, log_path)


@app.command()
def start(
    cpu: Optional[int] = typer.Option(None, "--cpu", help="VM CPU cores"),
    memory: Optional[int] = typer.Option(None, "--memory", help="VM memory in GB"),
    disk: Optional[int] = typer.Option(None, "--disk", help="VM disk in GB"),
    arch: Optional[str] = typer.Option(None, "--arch", help="auto, arm64, x86_64, ..."),
    config: Optional[Path] = ConfigOpt,
    verbose: bool = VerboseOpt,
    events: bool = EventsOpt,
):
    """Start the VM of an already-installed engine and validate it."""
    cfg, services, log_path = _setup(config, verbose, events)
    vm = _vm_config(cfg.vm, cpu, memory, disk, arch)

    with services:
        if not services.backend.check_colima_availability():
            typer.secho("Colima is not installed; run `nookat install` first", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        session = services.open_session()
        state = asyncio.run(_drive(session, vm, lambda s: s.start_vm(vm)))

    _finish(session, state, log_path)


@app.command()
def status(
    config: Optional[Path] = ConfigOpt,
    verbose: bool = VerboseOpt,
):
    """Show Colima VM status and engine info."""
    _, services, _ = _setup(config, verbose)
    with services:
        st = services.backend.colima_status()
        typer.echo(f"Colima   : {'installed' if st.is_installed else 'not installed'}")
        typer.echo(f"VM       : {'running' if st.is_running else 'stopped'}")
        if st.vm_info:
            v = st.vm_info
            typer.echo(
                f"           {v.cpu} CPU, {v.memory // 1024 ** 3}GB RAM, "
                f"{v.disk // 1024 ** 3}GB disk, {v.architecture}"
            )
        if not st.is_running:
            raise typer.Exit(code=1)

        try:
            info = services.backend.get_docker_info()
        except ConnectivityError as e:
            typer.secho(f"Engine   : unreachable ({e})", fg=typer.colors.RED)
            raise typer.Exit(code=1)

    typer.echo(f"Engine   : docker {info.server_version} on {info.operating_system}")
    typer.echo(f"           {info.containers or 0} containers, {info.images or 0} images")


@app.command()
def repair(
    config: Optional[Path] = ConfigOpt,
    verbose: bool = VerboseOpt,
):
    """Start the existing Colima VM again and re-check that docker answers."""
    _, services, _ = _setup(config, verbose)
    with services:
        result = services.backend.repair_colima_installation()
        for action in result.actions_taken:
            typer.secho(f"  done   : {action}", fg=typer.colors.GREEN)
        for step in result.manual_steps:
            typer.secho(f"  manual : {step}", fg=typer.colors.YELLOW)
        for nxt in result.next_actions:
            typer.echo(f"  next   : {nxt}")
        if not result.success:
            raise typer.Exit(code=1)

        check = services.backend.validate_colima_installation()

    if not check.ok:
        for issue in check.issues:
            typer.secho(f"  issue  : {issue}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.secho("Engine Ready!", fg=typer.colors.GREEN, bold=True)


@app.command()
def logs(
    lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
    config: Optional[Path] = ConfigOpt,
):
    """Print the tail of the most recent bootstrap run log."""
    cfg = _load(config)
    runs = sorted(
        (p for p in cfg.paths.log_dir.glob("nookat-*.log") if p.stat().st_size > 0),
        key=lambda p: p.stat().st_mtime,
    )
    if not runs:
        typer.echo(f"No run logs in {cfg.paths.log_dir}")
        raise typer.Exit(code=1)

    latest = runs[-1]
    typer.secho(f"# {latest}", bold=True)
    for line in latest.read_text().splitlines()[-lines:]:
        typer.echo(line)


if __name__ == "__main__":
    app()
