# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/bootstrap/state.py

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, FrozenSet, List


class BootstrapState(str, Enum):
    IDLE = "idle"
    INSTALLING = "installing"
    STARTING_VM = "starting-vm"
    VALIDATING = "validating"
    COMPLETE = "complete"
    ERROR = "error"


S = BootstrapState

# The only edges the machine will ever take.
TRANSITIONS: Dict[BootstrapState, FrozenSet[BootstrapState]] = {
    S.IDLE: frozenset({S.INSTALLING, S.STARTING_VM}),
    S.INSTALLING: frozenset({S.STARTING_VM, S.ERROR}),
    S.STARTING_VM: frozenset({S.VALIDATING, S.ERROR}),
    S.VALIDATING: frozenset({S.COMPLETE, S.ERROR}),
    S.COMPLETE: frozenset({S.IDLE}),
    S.ERROR: frozenset({S.IDLE}),
}

# Phases with an operation in flight; config is frozen and install() is refused.
BUSY_STATES: FrozenSet[BootstrapState] = frozenset({S.INSTALLING, S.STARTING_VM, S.VALIDATING})

# Notification phase owned by each busy state.
PHASE_OF_STATE: Dict[BootstrapState, str] = {
    S.INSTALLING: "installation",
    S.STARTING_VM: "vm-startup",
    S.VALIDATING: "validation",
}


def can_transition(src: BootstrapState, dst: BootstrapState) -> bool:
    return dst in TRANSITIONS[src]


def clamp_percentage(value: int | float) -> int:
    return int(max(0, min(100, value)))


@dataclass
class InstallationProgress:
    step: str = ""
    message: str = ""
    percentage: int = 0
    logs: List[str] = field(default_factory=list)

    def copy(self) -> "InstallationProgress":
        return replace(self, logs=list(self.logs))
