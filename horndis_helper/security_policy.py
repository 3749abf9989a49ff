from __future__ import annotations

import logging
from dataclasses import dataclass

from .errors import PolicyQueryError
from .system import CommandRunner
from .version_policy import HIGH_SIERRA, OSVersion

log = logging.getLogger("horndis.security")

SIP_STATUS_MARKER = "system integrity protection status:"


@dataclass(frozen=True)
class SecurityPolicyState:
    enforced: bool
    requires_manual_approval: bool
    # False when the platform query failed and enforcement was assumed.
    known: bool = True


def parse_sip_status(output: str) -> bool | None:
    """Return True/False for enabled/disabled, None when the state is missing or unknown."""
    for line in (output or "").splitlines():
        low = line.strip().lower()
        if SIP_STATUS_MARKER in low:
            status = low.split(SIP_STATUS_MARKER, 1)[1].strip()
            # Custom configurations report "enabled (...)" or "unknown (...)".
            if status.startswith("enabled"):
                return True
            if status.startswith("disabled"):
                return False
            return None
    return None


def approval_required(enforced: bool, version: OSVersion) -> bool:
    return enforced and version.at_least(HIGH_SIERRA.major, HIGH_SIERRA.minor)


class SecurityPolicyInspector:
    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    def inspect(self, version: OSVersion) -> SecurityPolicyState:
        r = self._runner.run(["csrutil", "status"])
        if not r.found:
            raise PolicyQueryError("csrutil is not available; cannot query System Integrity Protection.")
        enforced = parse_sip_status(r.output)
        if enforced is None:
            raise PolicyQueryError(
                f"csrutil status returned no usable output (rc={r.returncode}): {r.output[:200]!r}"
            )
        return SecurityPolicyState(
            enforced=enforced,
            requires_manual_approval=approval_required(enforced, version),
        )

    def inspect_or_assume_enabled(self, version: OSVersion) -> SecurityPolicyState:
        """Like :meth:`inspect`, but an unknown state is treated as enforced."""
        try:
            return self.inspect(version)
        except PolicyQueryError as exc:
            log.warning("SIP state unknown, assuming enabled: %s", exc)
            return SecurityPolicyState(
                enforced=True,
                requires_manual_approval=approval_required(True, version),
                known=False,
            )
