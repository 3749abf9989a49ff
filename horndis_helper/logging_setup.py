from __future__ import annotations

import logging
import sys

_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """Route every ``horndis.*`` logger to stderr at *level* (INFO if unknown)."""
    lvl = logging.getLevelName((level or "INFO").strip().upper())
    if not isinstance(lvl, int):
        lvl = logging.INFO

    root = logging.getLogger("horndis")
    root.setLevel(lvl)
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%H:%M:%S"))
    root.addHandler(handler)
    root.propagate = False
