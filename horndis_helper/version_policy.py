"""macOS version gating.

The kext cache subsystem changed contract at 10.13 (prelinked kernel plus
system caches instead of a single ``kextcache -i /``), so callers branch on
``cache_strategy_for`` rather than comparing versions themselves.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from .errors import UnsupportedPlatform
from .system import CommandRunner


@dataclass(frozen=True, order=True)
class OSVersion:
    major: int
    minor: int = 0

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"

    def at_least(self, major: int, minor: int = 0) -> bool:
        return (self.major, self.minor) >= (major, minor)


class CompatibilityTier(str, Enum):
    UNSUPPORTED = "unsupported"
    SUPPORTED = "supported"
    SUPPORTED_WITH_WARNING = "supported_with_warning"


class CacheStrategy(str, Enum):
    LEGACY_CACHE_REBUILD = "legacy_cache_rebuild"
    MODERN_PRELINKED_AND_SYSTEM_CACHE = "modern_prelinked_and_system_cache"


MINIMUM_VERSION = OSVersion(10, 11)
LAST_TESTED_MAJOR = 12
# Kext user-approval UI and the new cache layout both arrived here.
HIGH_SIERRA = OSVersion(10, 13)


def classify(version: OSVersion) -> CompatibilityTier:
    if version < MINIMUM_VERSION:
        return CompatibilityTier.UNSUPPORTED
    if version.major > LAST_TESTED_MAJOR:
        return CompatibilityTier.SUPPORTED_WITH_WARNING
    return CompatibilityTier.SUPPORTED


def cache_strategy_for(version: OSVersion) -> CacheStrategy:
    if version.major == 10 and version.minor < 13:
        return CacheStrategy.LEGACY_CACHE_REBUILD
    return CacheStrategy.MODERN_PRELINKED_AND_SYSTEM_CACHE


_VERSION_RE = re.compile(r"^\s*(\d+)(?:\.(\d+))?")


def parse_version(text: str) -> OSVersion:
    """Parse ``sw_vers -productVersion`` output such as ``10.15.7`` or ``11``."""
    m = _VERSION_RE.match(text or "")
    if not m:
        raise UnsupportedPlatform(f"Cannot parse macOS version from {text!r}")
    return OSVersion(int(m.group(1)), int(m.group(2) or 0))


def read_os_version(runner: CommandRunner) -> OSVersion:
    r = runner.run(["sw_vers", "-productVersion"])
    if not r.ok:
        raise UnsupportedPlatform(
            "Cannot determine the macOS version (sw_vers failed); this helper only runs on macOS.",
        )
    return parse_version(r.output)
