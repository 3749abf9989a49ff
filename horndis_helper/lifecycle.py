"""Kext lifecycle state machine: build, install, load, unload, uninstall, status.

The host environment (root or not, macOS version) is read once per
controller and handed to the pure policy functions; every public operation
returns a :class:`LifecycleOutcome` and never raises past this module.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from .config import HelperConfig
from .errors import (
    ArtifactNotBuilt,
    ArtifactNotInstalled,
    BuildFailed,
    HelperError,
    OSCallFailed,
    PrivilegeError,
    ToolchainMissing,
    UnsupportedPlatform,
)
from .kext_registry import KextRegistry, LoadState
from .locator import ArtifactLocator
from .security_policy import SecurityPolicyInspector
from .status import StatusReporter, StatusSnapshot
from .system import CommandRunner, is_elevated
from .version_policy import (
    CacheStrategy,
    CompatibilityTier,
    OSVersion,
    cache_strategy_for,
    classify,
    read_os_version,
)

log = logging.getLogger("horndis.lifecycle")

REBOOT_NOTE = "You may need to restart your computer for changes to take effect."
APPROVAL_NOTE = (
    "On macOS 10.13+, you need to approve the kernel extension in "
    "System Preferences > Security & Privacy."
)


class Operation(str, Enum):
    BUILD = "build"
    INSTALL = "install"
    LOAD = "load"
    UNLOAD = "unload"
    UNINSTALL = "uninstall"
    STATUS = "status"


MUTATING_OPERATIONS = frozenset(
    {Operation.BUILD, Operation.INSTALL, Operation.LOAD, Operation.UNLOAD, Operation.UNINSTALL}
)


class ArtifactState(str, Enum):
    ABSENT = "absent"
    INSTALLED_UNLOADED = "installed_unloaded"
    INSTALLED_LOADED = "installed_loaded"


_ANY_STATE = frozenset(ArtifactState)


@dataclass(frozen=True)
class Transition:
    allowed_from: frozenset[ArtifactState]
    # None leaves the state unchanged.
    moves_to: ArtifactState | None = None
    only_from: ArtifactState | None = None

    def resulting(self, state: ArtifactState) -> ArtifactState:
        if self.moves_to is None:
            return state
        if self.only_from is not None and state is not self.only_from:
            return state
        return self.moves_to


TRANSITIONS: dict[Operation, Transition] = {
    Operation.BUILD: Transition(_ANY_STATE),
    Operation.INSTALL: Transition(_ANY_STATE, ArtifactState.INSTALLED_UNLOADED),
    Operation.LOAD: Transition(
        frozenset({ArtifactState.INSTALLED_UNLOADED, ArtifactState.INSTALLED_LOADED}),
        ArtifactState.INSTALLED_LOADED,
    ),
    Operation.UNLOAD: Transition(
        _ANY_STATE,
        ArtifactState.INSTALLED_UNLOADED,
        only_from=ArtifactState.INSTALLED_LOADED,
    ),
    Operation.UNINSTALL: Transition(_ANY_STATE, ArtifactState.ABSENT),
    Operation.STATUS: Transition(_ANY_STATE),
}


def derive_state(installed: bool, load_state: LoadState | None) -> ArtifactState:
    if not installed:
        return ArtifactState.ABSENT
    if load_state is LoadState.LOADED:
        return ArtifactState.INSTALLED_LOADED
    return ArtifactState.INSTALLED_UNLOADED


@dataclass(frozen=True)
class HostEnvironment:
    elevated: bool
    os_version: OSVersion

    @property
    def tier(self) -> CompatibilityTier:
        return classify(self.os_version)

    @property
    def cache_strategy(self) -> CacheStrategy:
        return cache_strategy_for(self.os_version)


@dataclass(frozen=True)
class StepResult:
    name: str
    ok: bool
    detail: str = ""
    # Best-effort steps are reported but do not decide the outcome.
    required: bool = True


@dataclass(frozen=True)
class LifecycleOutcome:
    operation: Operation
    succeeded: bool
    message: str
    steps: tuple[StepResult, ...] = ()
    notes: tuple[str, ...] = ()
    error: str | None = None
    state: ArtifactState | None = None
    snapshot: StatusSnapshot | None = None

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1


@dataclass
class _Run:
    operation: Operation
    steps: list[StepResult] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    state_before: ArtifactState | None = None
    snapshot: StatusSnapshot | None = None

    def step(self, name: str, ok: bool, detail: str = "", *, required: bool = True) -> StepResult:
        s = StepResult(name=name, ok=ok, detail=detail, required=required)
        self.steps.append(s)
        if ok:
            log.debug("step ok: %s", name)
        else:
            log.warning("step failed: %s (%s)", name, detail)
        return s

    @property
    def all_required_ok(self) -> bool:
        return all(s.ok for s in self.steps if s.required)


class LifecycleController:
    def __init__(
        self,
        cfg: HelperConfig,
        *,
        runner: CommandRunner | None = None,
        env: HostEnvironment | None = None,
        elevated: bool | None = None,
    ) -> None:
        self._cfg = cfg
        self._runner = runner or CommandRunner(dry_run=cfg.dry_run)
        self._dry_run = cfg.dry_run or self._runner.dry_run
        self._env = env
        self._elevated = env.elevated if env is not None else elevated
        self.locator = ArtifactLocator(cfg)
        self.registry = KextRegistry(self._runner, cfg.bundle_id)
        self.inspector = SecurityPolicyInspector(self._runner)
        self.reporter = StatusReporter(self.locator, self.registry, self._runner)

    # ── environment ──

    def is_elevated(self) -> bool:
        if self._elevated is None:
            self._elevated = is_elevated()
        return self._elevated

    def environment(self) -> HostEnvironment:
        """Read the host environment once; later calls reuse the same value."""
        if self._env is None:
            self._env = HostEnvironment(
                elevated=self.is_elevated(),
                os_version=read_os_version(self._runner),
            )
        return self._env

    def current_state(self) -> ArtifactState:
        installed = any(loc.exists for loc in self.locator.known_install_paths())
        return derive_state(installed, self._query_load_state())

    # ── public operations ──

    def build(self) -> LifecycleOutcome:
        return self.run(Operation.BUILD)

    def install(self) -> LifecycleOutcome:
        return self.run(Operation.INSTALL)

    def load(self) -> LifecycleOutcome:
        return self.run(Operation.LOAD)

    def unload(self) -> LifecycleOutcome:
        return self.run(Operation.UNLOAD)

    def uninstall(self) -> LifecycleOutcome:
        return self.run(Operation.UNINSTALL)

    def status(self) -> LifecycleOutcome:
        return self.run(Operation.STATUS)

    def run(self, operation: Operation) -> LifecycleOutcome:
        handlers: dict[Operation, Callable[[_Run, HostEnvironment], str]] = {
            Operation.BUILD: self._build,
            Operation.INSTALL: self._install,
            Operation.LOAD: self._load,
            Operation.UNLOAD: self._unload,
            Operation.UNINSTALL: self._uninstall,
        }
        run = _Run(operation)
        try:
            try:
                env = self._preconditions(operation, run)
                message = self._status(run) if env is None else handlers[operation](run, env)
            except OSError as exc:
                raise OSCallFailed(f"{operation.value}: {exc}") from exc
        except HelperError as exc:
            log.error("%s failed: %s", operation.value, exc)
            if exc.hint:
                run.notes.append(exc.hint)
            return LifecycleOutcome(
                operation=operation,
                succeeded=False,
                message=str(exc),
                steps=tuple(run.steps),
                notes=tuple(run.notes),
                error=exc.kind,
                snapshot=run.snapshot,
            )

        succeeded = run.all_required_ok
        state = None
        if succeeded and run.state_before is not None:
            state = TRANSITIONS[operation].resulting(run.state_before)
        if not succeeded:
            failed = [s.name for s in run.steps if s.required and not s.ok]
            message = f"{message} Failed steps: {', '.join(failed)}."
        log.info("%s: %s", operation.value, message)
        return LifecycleOutcome(
            operation=operation,
            succeeded=succeeded,
            message=message,
            steps=tuple(run.steps),
            notes=tuple(run.notes),
            error=None if succeeded else OSCallFailed.__name__,
            state=state,
            snapshot=run.snapshot,
        )

    # ── preconditions ──

    def _preconditions(self, operation: Operation, run: _Run) -> HostEnvironment | None:
        """Gate the operation; returns None only for the read-only status query."""
        if operation is Operation.STATUS:
            return None
        # Privilege first, before any other check touches the host.
        if operation in MUTATING_OPERATIONS and not self.is_elevated():
            raise PrivilegeError("This command must be run with sudo or as root.")
        env = self.environment()
        tier = env.tier
        if tier is CompatibilityTier.UNSUPPORTED:
            raise UnsupportedPlatform(
                f"This version of HoRNDIS requires macOS 10.11 or newer (found {env.os_version})."
            )
        if tier is CompatibilityTier.SUPPORTED_WITH_WARNING:
            log.warning("macOS %s is newer than the last tested release", env.os_version)
            run.notes.append(
                f"Warning: You're running macOS {env.os_version}. HoRNDIS may have compatibility "
                "issues with newer macOS versions. Proceed at your own risk."
            )
        return env

    def _require_transition(self, run: _Run, state: ArtifactState) -> None:
        run.state_before = state
        if state not in TRANSITIONS[run.operation].allowed_from:
            if run.operation is Operation.LOAD:
                raise ArtifactNotInstalled(
                    f"{self._cfg.kext_name} is not installed; cannot {run.operation.value} it."
                )
            raise HelperError(f"Cannot {run.operation.value} from state {state.value}.")

    def _query_load_state(self) -> LoadState | None:
        try:
            return self.registry.load_state()
        except OSCallFailed as exc:
            log.warning("Cannot query kext load state: %s", exc)
            return None

    # ── operations ──

    def _build(self, run: _Run, env: HostEnvironment) -> str:
        r = self._runner.run(["xcode-select", "-p"])
        if not r.ok:
            raise ToolchainMissing("Xcode or Xcode Command Line Tools are not installed.")

        if self._dry_run:
            log.info("[dry-run] mkdir -p %s", self._cfg.build_dir)
        else:
            try:
                self._cfg.build_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise OSCallFailed(f"Cannot create build directory {self._cfg.build_dir}: {exc}") from exc

        r = self._runner.run(
            ["xcodebuild", "-project", self._cfg.xcode_project],
            mutating=True,
            cwd=self._cfg.repo_dir,
        )
        run.step("xcodebuild", r.ok, r.output[-500:] if not r.ok else "")
        if not r.ok:
            raise BuildFailed("Failed to build HoRNDIS kernel extension.")

        built = self.locator.built_artifact_path()
        if not built.exists and not self._dry_run:
            raise BuildFailed(f"Build completed but kernel extension not found at {built.path}")
        return f"Successfully built HoRNDIS kernel extension at {built.path}."

    def _install(self, run: _Run, env: HostEnvironment) -> str:
        built = self.locator.built_artifact_path()
        if not built.exists:
            raise ArtifactNotBuilt(f"Kernel extension not found at {built.path}")
        self._require_transition(run, self.current_state())

        sip = self.inspector.inspect_or_assume_enabled(env.os_version)
        if sip.enforced:
            run.notes.append(
                "System Integrity Protection (SIP) is enabled."
                if sip.known
                else "System Integrity Protection state is unknown; assuming it is enabled."
            )
        else:
            run.notes.append("System Integrity Protection (SIP) is disabled.")

        dest = self._cfg.primary_install_dir / self._cfg.kext_name
        self._copy_bundle(run, built.path, dest)
        for cmd in (["chown", "-R", "root:wheel", str(dest)], ["chmod", "-R", "755", str(dest)]):
            r = self._runner.run(cmd, mutating=True)
            run.step(cmd[0], r.ok, r.output)
            if not r.ok:
                raise OSCallFailed(f"{cmd[0]} failed on {dest}", returncode=r.returncode, output=r.output)

        self._invalidate_caches(run, env)
        run.notes.append(REBOOT_NOTE)
        if sip.requires_manual_approval:
            run.notes.append(APPROVAL_NOTE)
        return f"Kernel extension installed at {dest}."

    def _load(self, run: _Run, env: HostEnvironment) -> str:
        state = self._query_load_state()
        if state is LoadState.LOADED:
            run.state_before = ArtifactState.INSTALLED_LOADED
            return "HoRNDIS kernel extension is already loaded."

        primary = self.locator.primary_install_path()
        installed = any(loc.exists for loc in self.locator.known_install_paths())
        self._require_transition(run, derive_state(installed, state))
        if not primary.exists:
            raise ArtifactNotInstalled(f"Kernel extension not found at {primary.path}")

        try:
            self.registry.load(primary.path)
        except OSCallFailed as exc:
            run.step("kextload", False, exc.output)
            raise
        run.step("kextload", True)
        return "Successfully loaded HoRNDIS kernel extension."

    def _unload(self, run: _Run, env: HostEnvironment) -> str:
        state = self._query_load_state()
        installed = any(loc.exists for loc in self.locator.known_install_paths())
        self._require_transition(run, derive_state(installed, state))
        if state is LoadState.NOT_LOADED:
            return "HoRNDIS kernel extension is not currently loaded."

        try:
            self.registry.unload()
        except OSCallFailed as exc:
            run.step("kextunload", False, exc.output)
            raise
        run.step("kextunload", True)
        return "Successfully unloaded HoRNDIS kernel extension."

    def _uninstall(self, run: _Run, env: HostEnvironment) -> str:
        self._require_transition(run, self.current_state())

        try:
            msg = self._unload(_Run(Operation.UNLOAD), env)
            run.step("unload", True, msg, required=False)
        except (HelperError, OSError) as exc:
            run.step("unload", False, str(exc), required=False)
            if isinstance(exc, HelperError) and exc.hint:
                run.notes.append(exc.hint)

        for loc in self.locator.known_install_paths():
            if not loc.exists:
                continue
            self._remove_bundle(run, loc.path)

        self._invalidate_caches(run, env)
        run.notes.append(REBOOT_NOTE)
        return "HoRNDIS kernel extension uninstalled."

    def _status(self, run: _Run) -> str:
        version: OSVersion | None
        try:
            version = self.environment().os_version
        except UnsupportedPlatform as exc:
            log.warning("macOS version unknown: %s", exc)
            version = None
        run.snapshot = self.reporter.snapshot(version)
        return "Status collected."

    # ── filesystem & cache steps ──

    def _copy_bundle(self, run: _Run, src: Path, dest: Path) -> None:
        name = f"copy {src.name} -> {dest.parent}"
        if self._dry_run:
            log.info("[dry-run] cp -R %s %s", src, dest.parent)
            run.step(name, True, "dry-run")
            return
        try:
            shutil.copytree(src, dest, symlinks=True, dirs_exist_ok=True)
        except (OSError, shutil.Error) as exc:
            run.step(name, False, str(exc))
            raise OSCallFailed(f"Failed to copy {src} to {dest}: {exc}") from exc
        run.step(name, True)

    def _remove_bundle(self, run: _Run, path: Path) -> None:
        name = f"remove {path}"
        if self._dry_run:
            log.info("[dry-run] rm -rf %s", path)
            run.step(name, True, "dry-run")
            return
        try:
            # rm -rf semantics: a symlinked bundle loses the link, not its target.
            if path.is_symlink():
                path.unlink()
            else:
                shutil.rmtree(path)
        except OSError as exc:
            run.step(name, False, str(exc))
            return
        run.step(name, True)

    def _invalidate_caches(self, run: _Run, env: HostEnvironment) -> None:
        """Touch the extension folders, then rebuild caches for this macOS release.

        Each command is attempted regardless of the previous one's result.
        """
        for d in self._cfg.install_dirs:
            try:
                if not d.is_dir():
                    continue
                if self._dry_run:
                    log.info("[dry-run] touch %s", d)
                    run.step(f"touch {d}", True, "dry-run")
                    continue
                os.utime(d, None)
            except OSError as exc:
                run.step(f"touch {d}", False, str(exc))
            else:
                run.step(f"touch {d}", True)

        if env.cache_strategy is CacheStrategy.LEGACY_CACHE_REBUILD:
            commands = [["kextcache", "-i", "/"]]
        else:
            commands = [
                ["kextcache", "-system-prelinked-kernel"],
                ["kextcache", "-system-caches"],
            ]
        for cmd in commands:
            r = self._runner.run(cmd, mutating=True)
            run.step(" ".join(cmd), r.ok, "" if r.ok else r.output[-300:])
