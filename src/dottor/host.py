"""Snapshot of the host environment.

``PlatformInfo.capture()`` reads the process environment, the home
directory and the symlink capability exactly once.  Everything
downstream (resolver, planner, executor strategy selection) receives the
snapshot by value and never consults ``os.environ`` again, so planning
stays pure and tests can construct a ``PlatformInfo`` for any OS.
"""

from __future__ import annotations

import logging
import os
import sys
import tempfile
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class OsFamily(str, Enum):
    """Operating system families with distinct link semantics."""

    LINUX = "linux"
    MACOS = "macos"
    WINDOWS = "windows"

    @classmethod
    def current(cls) -> OsFamily:
        """Return the family of the running interpreter."""
        if sys.platform.startswith("win"):
            return cls.WINDOWS
        if sys.platform == "darwin":
            return cls.MACOS
        return cls.LINUX


class PlatformInfo(BaseModel):
    """Read-only record of the host a reconciliation runs against.

    Attributes:
        os_family: Operating system family.
        home: The user's home directory.
        environ: Snapshot of the environment variables.
        unprivileged_symlinks: Whether the current user can create
            symlinks without elevation (always true on POSIX).
    """

    os_family: OsFamily
    home: Path
    environ: dict[str, str] = Field(default_factory=dict)
    unprivileged_symlinks: bool = True

    model_config = {"frozen": True}

    @property
    def is_windows(self) -> bool:
        return self.os_family is OsFamily.WINDOWS

    def getenv(self, name: str) -> str | None:
        """Return a non-empty variable from the snapshot, or ``None``.

        Lookups are case-insensitive on Windows, like the OS itself.
        """
        value = self.environ.get(name)
        if value is None and self.is_windows:
            upper = name.upper()
            for key, candidate in self.environ.items():
                if key.upper() == upper:
                    value = candidate
                    break
        if value is None or value == "":
            return None
        return value

    @classmethod
    def capture(cls) -> PlatformInfo:
        """Capture the current host once."""
        os_family = OsFamily.current()
        info = cls(
            os_family=os_family,
            home=Path.home(),
            environ=dict(os.environ),
            unprivileged_symlinks=_detect_unprivileged_symlinks(os_family),
        )
        logger.debug(
            "Captured platform: os=%s home=%s unprivileged_symlinks=%s",
            info.os_family.value,
            info.home,
            info.unprivileged_symlinks,
        )
        return info


def _detect_unprivileged_symlinks(os_family: OsFamily) -> bool:
    """Try to create a throwaway symlink to learn whether it is allowed.

    Windows only grants ``SeCreateSymbolicLinkPrivilege`` to elevated
    processes unless Developer Mode is on.
    """
    if os_family is not OsFamily.WINDOWS:
        return True

    with tempfile.TemporaryDirectory(prefix="dottor-") as tmp:
        target = Path(tmp) / "target"
        target.touch()
        try:
            os.symlink(target, Path(tmp) / "link")
        except OSError as exc:
            logger.debug("Symlink capability probe failed: %s", exc)
            return False
    return True
