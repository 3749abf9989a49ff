from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .config import HelperConfig


@dataclass(frozen=True)
class ArtifactLocation:
    path: Path
    exists: bool

    @classmethod
    def probe(cls, path: Path) -> "ArtifactLocation":
        return cls(path=path, exists=path.is_dir())


class ArtifactLocator:
    """Resolves where the kext bundle is (or would be). Never caches a stat."""

    def __init__(self, cfg: HelperConfig) -> None:
        self._cfg = cfg

    def known_install_paths(self) -> list[ArtifactLocation]:
        return [ArtifactLocation.probe(d / self._cfg.kext_name) for d in self._cfg.install_dirs]

    def primary_install_path(self) -> ArtifactLocation:
        return ArtifactLocation.probe(self._cfg.primary_install_dir / self._cfg.kext_name)

    def built_artifact_path(self) -> ArtifactLocation:
        return ArtifactLocation.probe(self._cfg.release_kext)
