"""Binary resolution for the editor, terminal and tmux."""
from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Iterable, Optional

from .platform import EDITOR_EXTRA_DIRS, executable_name, search_dirs

logger = logging.getLogger("nvimhost.binaries")

EDITOR_NAME = "nvim"
MANUAL_PATH_VERSION = "manual_path"


@dataclass(frozen=True)
class BinaryDescriptor:
    """A resolved executable plus what discovery learned about it."""
    path: str
    version: Optional[str] = None
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return bool(self.path)


def resolve(name: str, *, override: str = "", extra_dirs: Iterable[str] = ()) -> Optional[str]:
    """Return a usable executable path for `name`, or None.

    A non-empty `override` is trusted as-is; spawning will report if it is bogus.
    The first candidate that exists decides the outcome: if it is not executable
    the search stops there rather than falling through to later directories.
    """
    manual = str(override or "").strip()
    if manual:
        logger.debug(f"Using manual path for {name}: {manual}")
        return manual

    exe = executable_name(name)
    for d in search_dirs(extra_dirs):
        candidate = os.path.join(d, exe)
        if not os.path.exists(candidate):
            continue
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            logger.debug(f"Found {name} at {candidate}")
            return candidate
        logger.info(f"Could not use binary {candidate} for {name}: not executable")
        return None

    logger.info(f"Binary not found: {name}")
    return None


def query_version(path: str, *, timeout_s: float = 3.0) -> BinaryDescriptor:
    """Run `<path> --version` and keep its first line."""
    try:
        p = subprocess.run(
            [path, "--version"],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            text=True,
            timeout=timeout_s,
            check=False,
        )
    except subprocess.TimeoutExpired:
        return BinaryDescriptor(path=path, error="version query timed out")
    except OSError as e:
        return BinaryDescriptor(path=path, error=str(e))
    if p.returncode != 0:
        return BinaryDescriptor(path=path, error=(p.stderr or "").strip() or f"exit code {p.returncode}")
    first = (p.stdout or "").strip().splitlines()
    return BinaryDescriptor(path=path, version=first[0].strip() if first else None)


def discover_editor(override: str = "") -> BinaryDescriptor:
    manual = str(override or "").strip()
    if manual:
        return BinaryDescriptor(path=manual, version=MANUAL_PATH_VERSION)

    path = resolve(EDITOR_NAME, extra_dirs=EDITOR_EXTRA_DIRS)
    if path:
        return query_version(path)
    return BinaryDescriptor(path="", error="Neovim binary not found, and no manual path specified")
