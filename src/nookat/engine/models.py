# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/engine/models.py

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, PositiveInt, field_validator


# Architectures accepted by `colima start --arch`; "auto" and "host" both mean
# "let colima pick the host architecture" and are never passed on the command line.
HOST_ARCHITECTURES = {"auto", "host"}
ARCHITECTURES = HOST_ARCHITECTURES | {"arm64", "aarch64", "x86_64", "amd64"}


class InstallationMethod(str, Enum):
    PACKAGE_MANAGER = "homebrew"
    DIRECT_BINARY = "binary"

    @classmethod
    def parse(cls, value: str) -> "InstallationMethod":
        v = value.strip().lower()
        aliases = {
            "homebrew": cls.PACKAGE_MANAGER,
            "brew": cls.PACKAGE_MANAGER,
            "package-manager": cls.PACKAGE_MANAGER,
            "binary": cls.DIRECT_BINARY,
            "direct-binary": cls.DIRECT_BINARY,
        }
        if v not in aliases:
            raise ValueError(f"Unknown installation method: {value!r}")
        return aliases[v]


class VmResourceConfig(BaseModel):
    """
    Resources requested for the Colima VM.

    Every field is required to be positive; range checks against the host
    (e.g. memory above physical RAM) are left to colima itself.
    """
    model_config = {"frozen": True}

    cpu_cores: PositiveInt = 2
    memory_gb: PositiveInt = 2
    disk_gb: PositiveInt = 100
    architecture: str = "auto"

    @field_validator("architecture")
    @classmethod
    def _known_architecture(cls, v: str) -> str:
        v = (v or "").strip()
        if v not in ARCHITECTURES:
            raise ValueError(
                f"Unsupported architecture {v!r}; expected one of {', '.join(sorted(ARCHITECTURES))}"
            )
        return v

    def is_complete(self) -> bool:
        return all(
            (
                self.cpu_cores > 0,
                self.memory_gb > 0,
                self.disk_gb > 0,
                bool(self.architecture),
            )
        )

    def colima_args(self) -> List[str]:
        args = [
            "--cpu", str(self.cpu_cores),
            "--memory", str(self.memory_gb),
            "--disk", str(self.disk_gb),
        ]
        if self.architecture not in HOST_ARCHITECTURES:
            args += ["--arch", self.architecture]
        return args

    def describe(self) -> str:
        return (
            f"{self.cpu_cores} CPU cores, {self.memory_gb}GB RAM, "
            f"{self.disk_gb}GB disk, {self.architecture} architecture"
        )


# ---------------------------------------------------------------------
# Integrity manifest
# ---------------------------------------------------------------------
class ArtifactSpec(BaseModel):
    name: str                           # "colima" | "lima"
    version: str
    checksum: str                       # hex-encoded sha256
    download_url: str
    archive: bool = False               # True for tarballs that need extracting

    @field_validator("checksum")
    @classmethod
    def _hex_digest(cls, v: str) -> str:
        v = v.strip().lower()
        try:
            int(v, 16)
        except ValueError:
            raise ValueError(f"checksum is not hex-encoded: {v!r}")
        return v

    @property
    def filename(self) -> str:
        return self.download_url.rstrip("/").rsplit("/", 1)[-1] or self.name


class IntegrityManifest(BaseModel):
    artifacts: List[ArtifactSpec] = Field(default_factory=list)

    def by_name(self) -> Dict[str, ArtifactSpec]:
        return {a.name: a for a in self.artifacts}

    def names(self) -> List[str]:
        return [a.name for a in self.artifacts]

    def version_of(self, name: str) -> Optional[str]:
        spec = self.by_name().get(name)
        return spec.version if spec else None


class DownloadResult(BaseModel):
    paths: Dict[str, Path]
    total_size: int
    elapsed_seconds: float


# ---------------------------------------------------------------------
# Probes and engine status
# ---------------------------------------------------------------------
class HomebrewStatus(BaseModel):
    is_available: bool
    version: Optional[str] = None


class VmInfo(BaseModel):
    cpu: int = 0
    memory: int = 0                     # bytes
    disk: int = 0                       # bytes
    architecture: str = "unknown"


class ColimaStatus(BaseModel):
    is_installed: bool
    is_running: bool
    vm_info: Optional[VmInfo] = None


class EngineInfo(BaseModel):
    """Subset of `docker info` the bootstrap cares about."""
    model_config = {"populate_by_name": True, "extra": "ignore"}

    server_version: Optional[str] = Field(default=None, alias="ServerVersion")
    operating_system: Optional[str] = Field(default=None, alias="OperatingSystem")
    architecture: Optional[str] = Field(default=None, alias="Architecture")
    ncpu: Optional[int] = Field(default=None, alias="NCPU")
    mem_total: Optional[int] = Field(default=None, alias="MemTotal")
    containers: Optional[int] = Field(default=None, alias="Containers")
    images: Optional[int] = Field(default=None, alias="Images")
    name: Optional[str] = Field(default=None, alias="Name")


# ---------------------------------------------------------------------
# Health checks
# ---------------------------------------------------------------------
class ValidationResult(BaseModel):
    """Outcome of the post-start engine checks; every failed check adds an issue."""
    docker_working: bool = False
    colima_running: bool = False
    vm_accessible: bool = False
    issues: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues


class RepairResult(BaseModel):
    success: bool = False
    actions_taken: List[str] = Field(default_factory=list)
    manual_steps: List[str] = Field(default_factory=list)
    next_actions: List[str] = Field(default_factory=list)
