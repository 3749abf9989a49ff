"""Queries and drives the live kernel extension registry (kextstat/kextload/kextunload)."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

from .errors import OSCallFailed
from .system import CommandRunner

log = logging.getLogger("horndis.registry")


class LoadState(str, Enum):
    NOT_LOADED = "not_loaded"
    LOADED = "loaded"


class KextRegistry:
    def __init__(self, runner: CommandRunner, bundle_id: str) -> None:
        self._runner = runner
        self.bundle_id = bundle_id

    def loaded_entry(self) -> str | None:
        """The ``kextstat`` line for our bundle, or None when it is not loaded."""
        r = self._runner.run(["kextstat"])
        if not r.ok:
            raise OSCallFailed("kextstat failed", returncode=r.returncode, output=r.output)
        for line in r.output.splitlines():
            if self.bundle_id in line:
                return line.strip()
        return None

    def load_state(self) -> LoadState:
        return LoadState.LOADED if self.loaded_entry() is not None else LoadState.NOT_LOADED

    def load(self, bundle_path: Path) -> None:
        r = self._runner.run(["kextload", str(bundle_path)], mutating=True)
        if not r.ok:
            raise OSCallFailed(
                f"kextload {bundle_path} failed",
                returncode=r.returncode,
                output=r.output,
                hint="You may need to restart your computer, or approve the extension in "
                "System Preferences > Security & Privacy.",
            )
        log.info("Loaded %s", self.bundle_id)

    def unload(self) -> None:
        r = self._runner.run(["kextunload", "-b", self.bundle_id], mutating=True)
        if not r.ok:
            raise OSCallFailed(
                f"kextunload -b {self.bundle_id} failed",
                returncode=r.returncode,
                output=r.output,
                hint="The kernel extension might be in use. You may need to disconnect your Android device first.",
            )
        log.info("Unloaded %s", self.bundle_id)
