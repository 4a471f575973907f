# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

#src/nookat/logging/log.py

from __future__ import annotations

import logging
import platform
from pathlib import Path
from datetime import datetime, timezone
import uuid

from nookat.observers.events import host_tag

# Run logs older than the newest KEEP_RUNS are removed at startup
KEEP_RUNS = 20


def prune_run_logs(base_dir: Path, name: str = "nookat", keep: int = KEEP_RUNS) -> list[Path]:
    """Delete all but the newest `keep` run logs. Returns the removed paths."""
    runs = sorted(base_dir.glob(f"{name}-*.log"), key=lambda p: p.stat().st_mtime, reverse=True)
    removed = []
    for old in runs[keep:]:
        old.unlink(missing_ok=True)
        removed.append(old)
    return removed


def init_logging(
    *,
    base_dir: Path | None = None,
    name: str = "nookat",
    verbose: bool = False,
    env: str | None = None,
    keep: int = KEEP_RUNS,
) -> tuple[logging.Logger, str, Path]:
    """
    Initializes:
      - full DEBUG trace in a per-run log file, tagged with the host env
      - INFO console output (DEBUG with --verbose)
      - returns run_id so observers can reuse it
    """
    run_id = str(uuid.uuid4())
    env = env or host_tag()

    if base_dir is None:
        base_dir = Path.home() / ".nookat" / "logs"
    base_dir = Path(base_dir).expanduser()
    base_dir.mkdir(parents=True, exist_ok=True)

    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    log_path = base_dir / f"{name}-{ts}-{run_id}.log"

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.propagate = False

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    fh = logging.FileHandler(log_path)
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(formatter)

    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(formatter)

    logger.addHandler(fh)
    logger.addHandler(ch)

    logger.debug(f"=== nookat run started on {env} ===")
    logger.debug(f"run_id={run_id}")
    logger.debug(f"env={env} macos={platform.mac_ver()[0] or 'n/a'} python={platform.python_version()}")
    logger.debug(f"log_file={log_path}")

    for old in prune_run_logs(base_dir, name, keep):
        logger.debug(f"pruned old run log {old.name}")

    return logger, run_id, log_path
