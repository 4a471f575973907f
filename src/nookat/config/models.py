# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/config/models.py

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, PositiveFloat, PositiveInt, field_validator

from ..engine.models import InstallationMethod, VmResourceConfig


def _nookat_home() -> Path:
    return Path.home() / ".nookat"


class BootstrapConfig(BaseModel):
    poll_interval_seconds: PositiveFloat = 0.5
    settle_delay_seconds: float = Field(default=2.0, ge=0)
    # null = no timeout
    install_timeout_seconds: Optional[PositiveFloat] = None
    vm_start_timeout_seconds: Optional[PositiveFloat] = None
    validation_timeout_seconds: Optional[PositiveFloat] = None
    genuine_validation: bool = True
    preferred_method: Optional[InstallationMethod] = None

    @field_validator("preferred_method", mode="before")
    @classmethod
    def _method_alias(cls, v):
        if isinstance(v, str):
            return InstallationMethod.parse(v)
        return v


class PathsConfig(BaseModel):
    download_dir: Path = Field(default_factory=lambda: _nookat_home() / "downloads")
    bin_dir: Path = Field(default_factory=lambda: Path.home() / ".local" / "bin")
    log_dir: Path = Field(default_factory=lambda: _nookat_home() / "logs")

    @field_validator("download_dir", "bin_dir", "log_dir")
    @classmethod
    def _expand_user(cls, v: Path) -> Path:
        return Path(v).expanduser()


class ManifestConfig(BaseModel):
    url: Optional[str] = None
    file: Optional[Path] = None
    fetch_retries: PositiveInt = 3
    fetch_retry_delay_seconds: float = Field(default=1, ge=0)


class NookatConfig(BaseModel):
    vm: VmResourceConfig = Field(default_factory=VmResourceConfig)
    bootstrap: BootstrapConfig = Field(default_factory=BootstrapConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    manifest: ManifestConfig = Field(default_factory=ManifestConfig)
    dry_run: bool = False
