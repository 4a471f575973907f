# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import platform
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single CLI/app run
    env: str          # host platform, e.g. darwin-arm64
    context: Optional[str]  # bootstrap session id

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def host_tag() -> str:
    return f"{platform.system().lower()}-{platform.machine().lower()}"


def new_ctx(env: Optional[str] = None, context: Optional[str] = None, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id or str(uuid.uuid4()),
        "env": env or host_tag(),
        "context": context,
    }


def stamp(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Same run context with a fresh timestamp."""
    return {**ctx, "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")}


# ---------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class StateChanged(BaseEvent):
    previous: str
    current: str
    reason: str

@dataclass(frozen=True)
class CommandRejected(BaseEvent):
    command: str
    state: str
    reason: str

@dataclass(frozen=True)
class ProgressUpdated(BaseEvent):
    step: str
    message: str
    percentage: int
    new_logs: List[str]

@dataclass(frozen=True)
class NotificationDropped(BaseEvent):
    topic: str
    seq: int
    reason: str


# ---------------------------------------------------------------------
# Artifact download
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ArtifactProgress(BaseEvent):
    artifact: str
    downloaded_bytes: int
    total_bytes: int
    percentage: Optional[float] = None    # None while total is unknown
    eta: Optional[float] = None      # seconds


# ---------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BootstrapSummary(BaseEvent):
    state: str
    method: Optional[str]
    error: Optional[str] = None
    log_lines: int = 0
