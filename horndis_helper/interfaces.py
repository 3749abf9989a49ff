from __future__ import annotations

import re
from dataclasses import dataclass, field

from .errors import OSCallFailed
from .system import CommandRunner

_HEADER_RE = re.compile(r"^(?P<name>[A-Za-z0-9_.-]+):\s+flags=\S*<(?P<flags>[^>]*)>")


@dataclass(frozen=True)
class InterfaceInfo:
    name: str
    flags: tuple[str, ...]
    ipv4: tuple[str, ...] = ()
    details: tuple[str, ...] = field(default=(), compare=False)

    @property
    def point_to_point(self) -> bool:
        return "POINTOPOINT" in self.flags

    @property
    def active_tether(self) -> bool:
        return self.point_to_point and bool(self.ipv4)


def parse_ifconfig(output: str) -> list[InterfaceInfo]:
    """Split ``ifconfig`` output into per-interface records."""
    blocks: list[tuple[str, tuple[str, ...], list[str]]] = []
    for line in (output or "").splitlines():
        m = _HEADER_RE.match(line)
        if m:
            flags = tuple(f for f in m.group("flags").split(",") if f)
            blocks.append((m.group("name"), flags, []))
        elif blocks and line.strip():
            blocks[-1][2].append(line.strip())

    out: list[InterfaceInfo] = []
    for name, flags, lines in blocks:
        ipv4 = tuple(ln.split()[1] for ln in lines if ln.startswith("inet ") and len(ln.split()) > 1)
        out.append(InterfaceInfo(name=name, flags=flags, ipv4=ipv4, details=tuple(lines)))
    return out


def scan_interfaces(runner: CommandRunner) -> list[InterfaceInfo]:
    r = runner.run(["ifconfig"])
    if not r.ok:
        raise OSCallFailed("ifconfig failed", returncode=r.returncode, output=r.output)
    return parse_ifconfig(r.output)
