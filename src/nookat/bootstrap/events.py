# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/bootstrap/events.py

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional, Tuple, Union

from ..engine.models import EngineInfo, InstallationMethod, VmResourceConfig


# ---------------------------------------------------------------------
# User commands
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class Command:
    pass

@dataclass(frozen=True)
class Install(Command):
    method: InstallationMethod

@dataclass(frozen=True)
class StartVm(Command):
    config: VmResourceConfig

@dataclass(frozen=True)
class Configure(Command):
    config: VmResourceConfig

@dataclass(frozen=True)
class Retry(Command):
    pass


# ---------------------------------------------------------------------
# Backend notifications
# ---------------------------------------------------------------------
INSTALLATION = "installation"
VM_STARTUP = "vm-startup"
VALIDATION = "validation"

@dataclass(frozen=True)
class Notification:
    phase: str        # installation | vm-startup | validation
    attempt: int      # bootstrap attempt the phase was started in
    seq: int          # monotonic per channel

    kind: ClassVar[str] = ""

    @property
    def topic(self) -> str:
        return f"{self.phase}-{self.kind}"

@dataclass(frozen=True)
class PhaseProgressed(Notification):
    step: str
    message: str
    percentage: int

    kind: ClassVar[str] = "progress"

@dataclass(frozen=True)
class PhaseLogged(Notification):
    offset: int                # index of lines[0] in the phase log stream
    lines: Tuple[str, ...]

    kind: ClassVar[str] = "log"

@dataclass(frozen=True)
class PhaseCompleted(Notification):
    info: Optional[EngineInfo] = None

    kind: ClassVar[str] = "complete"

@dataclass(frozen=True)
class PhaseErrored(Notification):
    error: str

    kind: ClassVar[str] = "error"


Event = Union[Command, Notification]
