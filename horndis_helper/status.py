from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .errors import HelperError
from .interfaces import InterfaceInfo, scan_interfaces
from .kext_registry import KextRegistry, LoadState
from .locator import ArtifactLocation, ArtifactLocator
from .system import CommandRunner
from .version_policy import OSVersion

log = logging.getLogger("horndis.status")


@dataclass(frozen=True)
class StatusSnapshot:
    """Point-in-time diagnostics. ``None`` on a field means that sub-check failed (unknown)."""

    locations: list[ArtifactLocation] | None
    load_state: LoadState | None
    kext_entry: str | None = None
    tethering_active: bool | None = None
    tethering_interfaces: list[InterfaceInfo] = field(default_factory=list)
    os_version: OSVersion | None = None
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def installed(self) -> bool | None:
        if self.locations is None:
            return None
        return any(loc.exists for loc in self.locations)

    def to_dict(self) -> dict[str, Any]:
        return {
            "os_version": str(self.os_version) if self.os_version else None,
            "locations": None
            if self.locations is None
            else [{"path": str(loc.path), "exists": loc.exists} for loc in self.locations],
            "load_state": self.load_state.value if self.load_state else "unknown",
            "kext_entry": self.kext_entry,
            "tethering_active": self.tethering_active,
            "tethering_interfaces": [
                {"name": i.name, "ipv4": list(i.ipv4), "details": list(i.details)}
                for i in self.tethering_interfaces
            ],
            "errors": dict(self.errors),
        }


class StatusReporter:
    """Read-only aggregation; each sub-check fails on its own without hiding the others."""

    def __init__(self, locator: ArtifactLocator, registry: KextRegistry, runner: CommandRunner) -> None:
        self._locator = locator
        self._registry = registry
        self._runner = runner

    def snapshot(self, os_version: OSVersion | None = None) -> StatusSnapshot:
        errors: dict[str, str] = {}

        locations: list[ArtifactLocation] | None
        try:
            locations = self._locator.known_install_paths()
        except OSError as exc:
            log.warning("Install location check failed: %s", exc)
            errors["locations"] = str(exc)
            locations = None

        load_state: LoadState | None
        entry: str | None = None
        try:
            entry = self._registry.loaded_entry()
            load_state = LoadState.LOADED if entry is not None else LoadState.NOT_LOADED
        except HelperError as exc:
            log.warning("Load state check failed: %s", exc)
            errors["load_state"] = str(exc)
            load_state = None

        tethering: bool | None
        active: list[InterfaceInfo] = []
        try:
            active = [i for i in scan_interfaces(self._runner) if i.active_tether]
            tethering = bool(active)
        except HelperError as exc:
            log.warning("Interface scan failed: %s", exc)
            errors["interfaces"] = str(exc)
            tethering = None

        return StatusSnapshot(
            locations=locations,
            load_state=load_state,
            kext_entry=entry,
            tethering_active=tethering,
            tethering_interfaces=active,
            os_version=os_version,
            errors=errors,
        )
