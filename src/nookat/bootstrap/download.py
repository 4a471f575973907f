# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/bootstrap/download.py

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

import requests

from .state import clamp_percentage
from ..engine.errors import DownloadError, NetworkError
from ..engine.interface import EngineBackend
from ..engine.manifest import fetch_manifest_url, load_manifest_file
from ..engine.models import DownloadResult, IntegrityManifest

log = logging.getLogger("nookat")

Clock = Callable[[], float]


# ---------------------------------------------------------------------
# Progress tracking
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ArtifactDownloadProgress:
    total_bytes: int = 0
    downloaded_bytes: int = 0
    speed_bytes_per_sec: float = 0.0
    eta_seconds: Optional[float] = None

    @property
    def percentage(self) -> Optional[int]:
        """None while the total size is unknown ("calculating")."""
        if self.total_bytes <= 0:
            return None
        return clamp_percentage(self.downloaded_bytes / self.total_bytes * 100)

    @property
    def done(self) -> bool:
        return self.total_bytes > 0 and self.downloaded_bytes >= self.total_bytes


class DownloadTracker:
    """
    Per-artifact byte/speed/ETA bookkeeping for one download attempt.

    The key set is fixed when the tracker is created. Reported byte counts never
    go backwards; a lower report than the last one is ignored.
    """

    def __init__(self, names: Iterable[str], *, clock: Clock = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._started = clock()
        self._items: Dict[str, ArtifactDownloadProgress] = {n: ArtifactDownloadProgress() for n in names}
        self._last_report: Dict[str, float] = {}

    def names(self):
        return list(self._items)

    def update(self, name: str, downloaded: int, total: Optional[int] = None) -> ArtifactDownloadProgress:
        with self._lock:
            if name not in self._items:
                raise KeyError(f"Unknown artifact {name!r}; tracking {', '.join(self._items)}")
            cur = self._items[name]
            total_bytes = cur.total_bytes if total is None else max(0, int(total))
            downloaded_bytes = max(cur.downloaded_bytes, int(downloaded))

            elapsed = self._clock() - self._started
            speed = downloaded_bytes / elapsed if elapsed > 0 else 0.0
            eta: Optional[float] = None
            if total_bytes > 0 and speed > 0:
                eta = max(0.0, (total_bytes - downloaded_bytes) / speed)

            item = ArtifactDownloadProgress(
                total_bytes=total_bytes,
                downloaded_bytes=downloaded_bytes,
                speed_bytes_per_sec=speed,
                eta_seconds=eta,
            )
            self._items[name] = item
            return item

    def get(self, name: str) -> ArtifactDownloadProgress:
        with self._lock:
            return self._items[name]

    def snapshot(self) -> Dict[str, ArtifactDownloadProgress]:
        with self._lock:
            return dict(self._items)

    def due(self, name: str, interval: float) -> bool:
        """True at most once per `interval` seconds for each artifact."""
        now = self._clock()
        last = self._last_report.get(name)
        if last is not None and now - last < interval:
            return False
        self._last_report[name] = now
        return True

    @property
    def total_bytes(self) -> int:
        return sum(p.total_bytes for p in self.snapshot().values())

    @property
    def downloaded_bytes(self) -> int:
        return sum(p.downloaded_bytes for p in self.snapshot().values())

    @property
    def overall_percentage(self) -> Optional[int]:
        total = self.total_bytes
        if total <= 0:
            return None
        return clamp_percentage(self.downloaded_bytes / total * 100)


ProgressCallback = Callable[[str, ArtifactDownloadProgress, DownloadTracker], None]


# ---------------------------------------------------------------------
# Acquisition
# ---------------------------------------------------------------------
class ArtifactAcquisition:
    """
    Fetches the integrity manifest and downloads every artifact it lists.

    The manifest comes from a local file, a URL, or the backend's built-in
    pins, in that order of preference.
    """

    def __init__(
        self,
        backend: EngineBackend,
        *,
        download_dir: Path,
        http: Optional[requests.Session] = None,
        manifest_url: Optional[str] = None,
        manifest_file: Optional[Path] = None,
        fetch_retries: int = 3,
        fetch_retry_delay: float = 1,
        progress_interval: float = 0.5,
        chunk_size: int = 64 * 1024,
        timeout: float = 60.0,
        clock: Clock = time.monotonic,
    ):
        self.backend = backend
        self.download_dir = Path(download_dir)
        self.http = http or requests.Session()
        self.manifest_url = manifest_url
        self.manifest_file = Path(manifest_file) if manifest_file else None
        self.fetch_retries = fetch_retries
        self.fetch_retry_delay = fetch_retry_delay
        self.progress_interval = progress_interval
        self.chunk_size = chunk_size
        self.timeout = timeout
        self.clock = clock

    def fetch_manifest(self) -> IntegrityManifest:
        if self.manifest_file:
            log.debug("loading manifest from %s", self.manifest_file)
            manifest = load_manifest_file(self.manifest_file)
        elif self.manifest_url:
            log.debug("fetching manifest from %s", self.manifest_url)
            manifest = fetch_manifest_url(
                self.manifest_url,
                http=self.http,
                retries=self.fetch_retries,
                delay=self.fetch_retry_delay,
            )
        else:
            try:
                manifest = self.backend.get_colima_versions()
            except NetworkError:
                raise
            except Exception as e:
                raise NetworkError(f"Failed to get version information: {e}") from e

        if not manifest.artifacts:
            raise NetworkError("Integrity manifest lists no artifacts")
        log.info(
            "Manifest: %s",
            ", ".join(f"{a.name} {a.version}" for a in manifest.artifacts),
        )
        return manifest

    def download(
        self,
        manifest: IntegrityManifest,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DownloadResult:
        self.download_dir.mkdir(parents=True, exist_ok=True)
        tracker = DownloadTracker(manifest.names(), clock=self.clock)
        started = self.clock()
        paths: Dict[str, Path] = {}

        for artifact in manifest.artifacts:
            dest = self.download_dir / artifact.filename
            log.info("Downloading %s %s from %s", artifact.name, artifact.version, artifact.download_url)
            self._fetch(artifact.name, artifact.download_url, dest, tracker, on_progress)
            paths[artifact.name] = dest

        elapsed = self.clock() - started
        total = sum(p.stat().st_size for p in paths.values())
        log.info("Downloaded %d artifact(s), %d bytes in %.1fs", len(paths), total, elapsed)
        return DownloadResult(paths=paths, total_size=total, elapsed_seconds=elapsed)

    def _fetch(
        self,
        name: str,
        url: str,
        dest: Path,
        tracker: DownloadTracker,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        def _push(force: bool = False) -> None:
            if on_progress and (force or tracker.due(name, self.progress_interval)):
                on_progress(name, tracker.get(name), tracker)

        try:
            with self.http.get(url, stream=True, timeout=self.timeout) as r:
                r.raise_for_status()
                total = int(r.headers.get("content-length") or 0)
                tracker.update(name, 0, total)
                _push(force=True)

                written = 0
                with dest.open("wb") as f:
                    for chunk in r.iter_content(chunk_size=self.chunk_size):
                        if not chunk:
                            continue
                        f.write(chunk)
                        written += len(chunk)
                        tracker.update(name, written)
                        _push()
        except requests.RequestException as e:
            raise DownloadError(f"Failed to download {name}: {e}") from e
        except OSError as e:
            raise DownloadError(f"Failed to write {dest}: {e}") from e

        if total and written < total:
            raise DownloadError(f"Download of {name} was cut short: {written} of {total} bytes")
        if not total:
            # size was unknown; now it is whatever arrived
            tracker.update(name, written, written)
        _push(force=True)
