# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/engine/manifest.py

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import requests
import yaml
from pydantic import ValidationError

from .errors import NetworkError
from .models import ArtifactSpec, IntegrityManifest
from ..utils.retry import RetryError, retry

log = logging.getLogger("nookat")


# Pinned releases shipped with the application. The checksums are the sha256
# of the exact release assets below.
COLIMA_VERSION = "0.8.4"
COLIMA_CHECKSUM = "30668c5a7d6ebff5886704fbc1f0da28d62620abd35270d02a4025d7a530f5c6"
LIMA_VERSION = "1.2.1"
LIMA_CHECKSUM = "4c6e20510b456a4e380500096ecce72c18d0ce98548064dc8089797de2290fdc"


def default_manifest() -> IntegrityManifest:
    return IntegrityManifest(
        artifacts=[
            ArtifactSpec(
                name="lima",
                version=LIMA_VERSION,
                checksum=LIMA_CHECKSUM,
                download_url=(
                    f"https://github.com/lima-vm/lima/releases/download/v{LIMA_VERSION}/"
                    f"lima-{LIMA_VERSION}-Darwin-arm64.tar.gz"
                ),
                archive=True,
            ),
            ArtifactSpec(
                name="colima",
                version=COLIMA_VERSION,
                checksum=COLIMA_CHECKSUM,
                download_url=(
                    f"https://github.com/abiosoft/colima/releases/download/v{COLIMA_VERSION}/"
                    "colima-Darwin-arm64"
                ),
            ),
        ]
    )


def parse_manifest(data: Any) -> IntegrityManifest:
    """
    Accepts either the native shape (``{"artifacts": [...]}``) or a flat
    ``{name: {version, checksum, download_url}}`` mapping.
    """
    if not isinstance(data, dict):
        raise NetworkError(f"Invalid integrity manifest: expected a mapping, got {type(data).__name__}")
    if "artifacts" not in data:
        bad = [name for name, spec in data.items() if spec is not None and not isinstance(spec, dict)]
        if bad:
            raise NetworkError(f"Invalid integrity manifest: entry {bad[0]!r} is not a mapping")
        data = {
            "artifacts": [
                {"name": name, **(spec or {})} for name, spec in data.items()
            ]
        }
    try:
        return IntegrityManifest.model_validate(data)
    except ValidationError as e:
        raise NetworkError(f"Invalid integrity manifest: {e}") from e


def load_manifest_file(path: str | Path) -> IntegrityManifest:
    path = Path(path)
    try:
        raw = path.read_text()
    except OSError as e:
        raise NetworkError(f"Failed to read manifest {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(raw) or {}
        else:
            data = json.loads(raw)
    except (ValueError, yaml.YAMLError) as e:
        raise NetworkError(f"Malformed manifest {path}: {e}") from e
    return parse_manifest(data)


def fetch_manifest_url(
    url: str,
    *,
    http: Optional[requests.Session] = None,
    retries: int = 3,
    delay: int = 1,
    timeout: float = 30.0,
) -> IntegrityManifest:
    http = http or requests.Session()

    def _on_retry(attempt: int, exc: Exception) -> None:
        log.warning("manifest fetch attempt %d/%d failed: %s", attempt, retries, exc)

    @retry(retries=retries, delay=delay, retry_on=(requests.RequestException,), on_retry=_on_retry)
    def _get() -> dict:
        r = http.get(url, timeout=timeout)
        r.raise_for_status()
        return r.json()

    try:
        data = _get()
    except RetryError as e:
        raise NetworkError(f"Failed to fetch manifest from {url}: {e.__cause__}") from e
    return parse_manifest(data)
