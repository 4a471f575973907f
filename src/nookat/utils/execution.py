# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .runner import CommandRunner


@dataclass(frozen=True)
class ExecutionContext:
    """
    How the engine backend touches the host.

    dry_run: log brew/colima/docker commands instead of executing them
    bin_dir: where direct-binary installs place colima and lima
    """

    dry_run: bool = False
    bin_dir: Optional[Path] = None

    def runner(self, label: str) -> CommandRunner:
        return CommandRunner(dry_run=self.dry_run, label=label)
