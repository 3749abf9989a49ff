from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

from horndis_helper.config import HelperConfig
from horndis_helper.errors import HelperError
from horndis_helper.guide import TETHERING_GUIDE, USAGE, header
from horndis_helper.kext_registry import LoadState
from horndis_helper.lifecycle import MUTATING_OPERATIONS, LifecycleController, LifecycleOutcome, Operation
from horndis_helper.logging_setup import setup_logging
from horndis_helper.status import StatusSnapshot

OPERATIONS = {op.value: op for op in Operation}


def parse_args(argv: list[str]) -> argparse.Namespace:
    # -h/--help are handled as a command so they behave like "help".
    p = argparse.ArgumentParser(description="HoRNDIS USB tethering helper", add_help=False)
    p.add_argument("command", nargs="?", default="", help="build, install, load, unload, uninstall, status, guide, help")
    p.add_argument("-h", "--help", action="store_true")
    p.add_argument("--dry-run", action="store_true", help="Log mutating commands instead of running them.")
    p.add_argument("--json", action="store_true", help="Print status as JSON.")
    p.add_argument("--log-level", default=None, help="Overrides HORNDIS_LOG_LEVEL.")
    p.add_argument("--repo-dir", default=None, help="HoRNDIS source checkout (overrides HORNDIS_REPO_DIR).")
    args, _unknown = p.parse_known_args(argv)
    return args


def _version_label(controller: LifecycleController) -> str:
    try:
        return str(controller.environment().os_version)
    except HelperError:
        return "unknown"


def print_outcome(outcome: LifecycleOutcome) -> None:
    stream = sys.stdout if outcome.succeeded else sys.stderr
    for s in outcome.steps:
        if not s.ok:
            suffix = "" if s.required else " (ignored)"
            print(f"  failed: {s.name}{suffix}: {s.detail}", file=stream)
    print(outcome.message, file=stream)
    for note in outcome.notes:
        print(note, file=stream)


def print_status(snap: StatusSnapshot) -> None:
    print("Checking installation locations:")
    if snap.locations is None:
        print(f"  Unknown: {snap.errors.get('locations', '')}")
    else:
        for loc in snap.locations:
            print(f"  {'Found' if loc.exists else 'Not found'}: {loc.path}")

    print("")
    print("Checking kernel extension status:")
    if snap.load_state is None:
        print(f"  Unknown: {snap.errors.get('load_state', '')}")
    elif snap.load_state is LoadState.LOADED:
        print(f"  Loaded: {snap.kext_entry}")
    else:
        print("  Not loaded")

    print("")
    print("Checking for RNDIS network interfaces:")
    if snap.tethering_active is None:
        print(f"  Unknown: {snap.errors.get('interfaces', '')}")
    elif snap.tethering_active:
        print("  Found active tethering interface:")
        for iface in snap.tethering_interfaces:
            print(f"    {iface.name}")
            for line in iface.details:
                print(f"      {line}")
    else:
        print("  No active tethering interface found")


def main(argv: list[str], *, controller: LifecycleController | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    cfg = HelperConfig.from_env().with_overrides(
        log_level=args.log_level,
        repo_dir=Path(args.repo_dir).expanduser().resolve() if args.repo_dir else None,
        dry_run=True if args.dry_run else None,
    )
    setup_logging(cfg.log_level)

    command = args.command
    if args.help or command == "help":
        print(USAGE)
        return 0
    if command == "guide":
        print(TETHERING_GUIDE)
        return 0
    op = OPERATIONS.get(command)
    if op is None:
        print("No option specified. Showing help:\n")
        print(USAGE)
        return 0

    ctl = controller or LifecycleController(cfg)
    if op in MUTATING_OPERATIONS and not ctl.is_elevated():
        print("This script must be run with sudo or as root.", file=sys.stderr)
        return 1

    if op is Operation.STATUS and args.json:
        outcome = ctl.run(op)
        print(json.dumps(outcome.snapshot.to_dict() if outcome.snapshot else {}, indent=2))
        return outcome.exit_code

    print(header(_version_label(ctl)))
    outcome = ctl.run(op)
    if op is Operation.STATUS and outcome.snapshot is not None:
        print_status(outcome.snapshot)
    else:
        print_outcome(outcome)
    if op is Operation.INSTALL and outcome.succeeded:
        print("")
        print(TETHERING_GUIDE)
    return outcome.exit_code


def cli() -> int:
    return main(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
