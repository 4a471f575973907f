# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/bootstrap/integrity.py

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Dict, Mapping

from ..engine.models import IntegrityManifest

log = logging.getLogger("nookat")

CHUNK = 1024 * 1024


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with Path(path).open("rb") as f:
        for block in iter(lambda: f.read(CHUNK), b""):
            h.update(block)
    return h.hexdigest()


class IntegrityVerifier:
    """Checks downloaded artifacts against the manifest's sha256 digests."""

    def __init__(self):
        self.last_results: Dict[str, bool] = {}

    def verify(self, paths: Mapping[str, Path], manifest: IntegrityManifest) -> bool:
        """
        True only when every artifact in the manifest was downloaded and hashes
        to its expected checksum. Mismatches are reported by returning False.
        """
        results: Dict[str, bool] = {}
        for artifact in manifest.artifacts:
            path = paths.get(artifact.name)
            if path is None or not Path(path).is_file():
                log.warning("Checksum: %s was not downloaded", artifact.name)
                results[artifact.name] = False
                continue

            try:
                actual = sha256_file(Path(path))
            except OSError as e:
                log.warning("Checksum: could not read %s: %s", path, e)
                results[artifact.name] = False
                continue

            ok = actual == artifact.checksum
            results[artifact.name] = ok
            if ok:
                log.info("Checksum OK: %s", artifact.name)
            else:
                log.warning(
                    "Checksum mismatch for %s: expected %s, got %s",
                    artifact.name, artifact.checksum, actual,
                )

        self.last_results = results
        return bool(results) and all(results.values())
