from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

DEFAULT_KEXT_NAME = "HoRNDIS.kext"
DEFAULT_BUNDLE_ID = "com.joshuawise.kexts.HoRNDIS"
DEFAULT_INSTALL_DIRS = ("/Library/Extensions", "/System/Library/Extensions")
DEFAULT_XCODE_PROJECT = "HoRNDIS.xcodeproj"


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class HelperConfig:
    repo_dir: Path = field(default_factory=Path.cwd)
    kext_name: str = DEFAULT_KEXT_NAME
    bundle_id: str = DEFAULT_BUNDLE_ID
    # First entry is the primary install location.
    install_dirs: tuple[Path, ...] = tuple(Path(d) for d in DEFAULT_INSTALL_DIRS)
    xcode_project: str = DEFAULT_XCODE_PROJECT
    build_configuration: str = "Release"
    log_level: str = "INFO"
    dry_run: bool = False

    @property
    def build_dir(self) -> Path:
        return self.repo_dir / "build"

    @property
    def release_kext(self) -> Path:
        return self.build_dir / self.build_configuration / self.kext_name

    @property
    def primary_install_dir(self) -> Path:
        return self.install_dirs[0]

    @classmethod
    def from_env(cls) -> "HelperConfig":
        """Build a config from ``HORNDIS_*`` variables (call ``load_dotenv`` first)."""
        kwargs: dict = {}
        repo = os.getenv("HORNDIS_REPO_DIR", "").strip()
        if repo:
            kwargs["repo_dir"] = Path(repo).expanduser().resolve()
        for env, key in (
            ("HORNDIS_KEXT_NAME", "kext_name"),
            ("HORNDIS_BUNDLE_ID", "bundle_id"),
            ("HORNDIS_XCODE_PROJECT", "xcode_project"),
            ("HORNDIS_BUILD_CONFIGURATION", "build_configuration"),
            ("HORNDIS_LOG_LEVEL", "log_level"),
        ):
            v = os.getenv(env, "").strip()
            if v:
                kwargs[key] = v
        dirs = [d.strip() for d in os.getenv("HORNDIS_INSTALL_DIRS", "").split(":") if d.strip()]
        if dirs:
            kwargs["install_dirs"] = tuple(Path(d) for d in dirs)
        kwargs["dry_run"] = _env_flag("HORNDIS_DRY_RUN")
        return cls(**kwargs)

    def with_overrides(self, **changes) -> "HelperConfig":
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes)
