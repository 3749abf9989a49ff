"""Thin seam over the macOS command-line tools the helper drives.

Everything that touches the host (subprocesses, the effective uid) goes
through here so the lifecycle logic can be exercised with a scripted runner.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger("horndis.system")

# Conventional shell exit codes for "command not found" and "not executable".
NOT_FOUND_RC = 127
CANNOT_EXECUTE_RC = 126


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    output: str
    found: bool = True

    @property
    def ok(self) -> bool:
        return self.found and self.returncode == 0


class CommandRunner:
    """Runs external commands; with ``dry_run`` mutating commands are only logged."""

    def __init__(self, *, dry_run: bool = False) -> None:
        self.dry_run = dry_run

    def run(self, cmd: list[str], *, mutating: bool = False, cwd: Path | None = None) -> CommandResult:
        if mutating and self.dry_run:
            log.info("[dry-run] %s", " ".join(cmd))
            return CommandResult(0, "")
        try:
            r = subprocess.run(cmd, capture_output=True, text=True, cwd=cwd)
        except FileNotFoundError:
            log.debug("%s: command not found", cmd[0])
            return CommandResult(NOT_FOUND_RC, f"{cmd[0]}: command not found", found=False)
        except OSError as exc:
            log.debug("%s: cannot execute (%s)", cmd[0], exc)
            return CommandResult(CANNOT_EXECUTE_RC, f"{cmd[0]}: {exc.strerror or exc}")
        out = (r.stdout + "\n" + r.stderr).strip()
        log.debug("%s -> rc=%d", " ".join(cmd), r.returncode)
        return CommandResult(r.returncode, out)


def is_elevated() -> bool:
    """True when the current process runs as root."""
    geteuid = getattr(os, "geteuid", None)
    if geteuid is None:
        return False
    return geteuid() == 0
