"""Filesystem probe: what currently exists at a target path.

Uses ``os.lstat`` so links are never followed: a dangling symlink or a
symlink owned by another tool is reported as ``SymlinkTo``, not as the
file (or absence) it points to.  Windows junctions are reported as
``SymlinkTo`` as well.

Probing is never cached; every run inspects the live filesystem.
"""

from __future__ import annotations

import os
import stat
from pathlib import Path

from dottor.errors import IoError
from dottor.reconcile.models import (
    Absent,
    Directory,
    File,
    Other,
    ProbeResult,
    SymlinkTo,
)

_WINDOWS_LONG_PREFIX = "\\\\?\\"
# stat.IO_REPARSE_TAG_MOUNT_POINT exists on Windows builds only
_IO_REPARSE_TAG_MOUNT_POINT = 0xA0000003


def probe(path: Path) -> ProbeResult:
    """Inspect *path* without following links.

    Raises:
        IoError: On permission errors or any other I/O fault (anything
            but "does not exist").
    """
    try:
        st = os.lstat(path)
    except FileNotFoundError:
        return Absent()
    except OSError as exc:
        raise IoError(path, exc) from exc

    mode = st.st_mode
    if stat.S_ISLNK(mode) or _is_junction(st):
        try:
            raw = os.readlink(path)
        except OSError as exc:
            raise IoError(path, exc) from exc
        return SymlinkTo(path=link_destination(path, raw))
    if stat.S_ISREG(mode):
        return File(device=st.st_dev, inode=st.st_ino)
    if stat.S_ISDIR(mode):
        return Directory()
    return Other(description=_describe(mode))


def file_identity(path: Path) -> tuple[int, int] | None:
    """Return ``(device, inode)`` of the file at *path*, following links.

    Returns ``None`` if the path does not exist.

    Raises:
        IoError: On any other I/O fault.
    """
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise IoError(path, exc) from exc
    return (st.st_dev, st.st_ino)


def link_destination(link: Path, raw: str) -> Path:
    """Turn a raw ``readlink`` value into an absolute normalised path."""
    if raw.startswith(_WINDOWS_LONG_PREFIX):
        raw = raw[len(_WINDOWS_LONG_PREFIX) :]
    if not os.path.isabs(raw):
        raw = os.path.join(os.path.dirname(link), raw)
    return Path(os.path.normpath(raw))


def _is_junction(st: os.stat_result) -> bool:
    tag = getattr(st, "st_reparse_tag", 0)
    return tag == _IO_REPARSE_TAG_MOUNT_POINT


def _describe(mode: int) -> str:
    if stat.S_ISSOCK(mode):
        return "socket"
    if stat.S_ISFIFO(mode):
        return "fifo"
    if stat.S_ISCHR(mode):
        return "character device"
    if stat.S_ISBLK(mode):
        return "block device"
    return f"unknown (mode {oct(mode)})"
