# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/utils/runner.py

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence, Set, Union

log = logging.getLogger("nookat")

Cmd = Sequence[Union[str, "os.PathLike[str]"]]
LineSink = Callable[[str], None]


@dataclass
class CommandRunner:
    """
    Runs local commands (brew, colima, docker) with structured logging.

    `stream` writes each output line to `sink` as it arrives, which is how the
    backend log buffers fill up while a long command is still running.
    """
    dry_run: bool = False
    label: Optional[str] = None
    _active: Set[subprocess.Popen] = field(default_factory=set, init=False, repr=False, compare=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def run(
        self,
        cmd: Cmd,
        *,
        check: bool = False,
        cwd: Optional[Path] = None,
        env: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        label = self.label or "cmd"
        cmd_str = " ".join(map(str, cmd))
        log.debug(f"[{label}] $ {cmd_str}")

        if self.dry_run:
            log.debug(f"[{label}] dry-run: skipped execution")
            return subprocess.CompletedProcess(args=list(cmd), returncode=0, stdout="", stderr="")

        start = time.time()
        try:
            result = subprocess.run(
                [str(c) for c in cmd],
                capture_output=True,
                check=check,
                text=True,
                cwd=str(cwd) if cwd else None,
                env=env,
                timeout=timeout,
            )
        except subprocess.CalledProcessError as e:
            log.debug(f"[{label}][exit {e.returncode}]")
            if e.stderr:
                log.debug(f"[{label}][stderr]\n{e.stderr.rstrip()}")
            raise

        duration = time.time() - start
        if result.stdout:
            log.debug(f"[{label}][stdout]\n{result.stdout.rstrip()}")
        if result.stderr:
            log.debug(f"[{label}][stderr]\n{result.stderr.rstrip()}")
        log.debug(f"[{label}][exit {result.returncode}] ({duration:.2f}s)")
        return result

    def stream(
        self,
        cmd: Cmd,
        *,
        sink: LineSink,
        cwd: Optional[Path] = None,
        env: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        """
        Execute a command, forwarding merged stdout/stderr lines to `sink`.

        Never raises on a non-zero exit; the caller decides what a failure
        means. The returned CompletedProcess carries the full output in
        `stdout` (stderr is merged into it).

        `timeout` is a deadline for the whole command, enforced even while it
        is still producing output: the child is killed and TimeoutExpired is
        raised. kill_active() ends it early from another thread.
        """
        label = self.label or "cmd"
        cmd_str = " ".join(map(str, cmd))
        log.debug(f"[{label}] $ {cmd_str}")

        if self.dry_run:
            sink(f"[dry-run] {cmd_str}")
            return subprocess.CompletedProcess(args=list(cmd), returncode=0, stdout="", stderr="")

        start = time.time()
        proc = subprocess.Popen(
            [str(c) for c in cmd],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            cwd=str(cwd) if cwd else None,
            env=env,
        )
        assert proc.stdout
        with self._lock:
            self._active.add(proc)

        expired = threading.Event()
        watchdog: Optional[threading.Timer] = None
        if timeout is not None:
            def _expire() -> None:
                expired.set()
                proc.kill()

            watchdog = threading.Timer(timeout, _expire)
            watchdog.daemon = True
            watchdog.start()

        lines: list[str] = []
        try:
            for line in proc.stdout:
                line = line.rstrip()
                lines.append(line)
                sink(line)
            rc = proc.wait()
        finally:
            if watchdog is not None:
                watchdog.cancel()
            with self._lock:
                self._active.discard(proc)
            proc.stdout.close()

        elapsed = round(time.time() - start, 2)
        if expired.is_set():
            log.debug(f"[{label}] killed after {timeout}s")
            raise subprocess.TimeoutExpired(cmd_str, timeout, output="\n".join(lines))
        log.debug(f"[{label}][exit {rc}] ({elapsed}s)")
        return subprocess.CompletedProcess(args=list(cmd), returncode=rc, stdout="\n".join(lines), stderr="")

    def kill_active(self) -> int:
        """Kill every streamed command still running. Returns how many were killed."""
        with self._lock:
            procs = list(self._active)
        killed = 0
        for proc in procs:
            if proc.poll() is None:
                proc.kill()
                killed += 1
        if killed:
            log.warning(f"[{self.label or 'cmd'}] killed {killed} running command(s)")
        return killed


def tail(output: str, lines: int = 5) -> str:
    """Last non-empty lines of command output, for error messages."""
    kept = [l for l in (output or "").splitlines() if l.strip()]
    return "\n".join(kept[-lines:])
