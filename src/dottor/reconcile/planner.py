"""Reconciliation planner: the decision table.

Given a resolved target, the probed state of that target and the
repository entry, decide exactly one action.  Rules apply in order and
the first match wins:

1. ``Absent`` -> ``CreateLink``.
2. ``SymlinkTo(p)`` with ``p`` equal to the source -> ``AlreadyLinked``.
   A hard-link target whose file identity equals the source's is also
   ``AlreadyLinked``.
3. ``SymlinkTo(p)`` pointing anywhere else -> ``Conflict("foreign symlink")``.
4. ``File`` / ``Directory`` -> ``BackupAndLink`` when the backup policy
   is on, otherwise ``Conflict("existing file" | "existing directory")``.
5. ``Other`` -> ``Conflict("unsupported type")``.

The planner has no state and touches nothing outside its arguments.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import assert_never

from dottor.reconcile.models import (
    EXISTING_DIRECTORY,
    EXISTING_FILE,
    FOREIGN_SYMLINK,
    UNSUPPORTED_TYPE,
    Absent,
    AlreadyLinked,
    BackupAndLink,
    Conflict,
    CreateLink,
    Directory,
    File,
    LinkKind,
    Other,
    ProbeResult,
    ReconciliationAction,
    RepositoryEntry,
    SymlinkTo,
    TargetDescriptor,
)


def same_path(a: Path, b: Path) -> bool:
    """Compare two absolute paths lexically (case-folded on Windows)."""
    return os.path.normcase(os.path.normpath(a)) == os.path.normcase(
        os.path.normpath(b)
    )


def plan(
    target: TargetDescriptor,
    probe: ProbeResult,
    source: RepositoryEntry,
    *,
    backup: bool = False,
    source_identity: tuple[int, int] | None = None,
) -> ReconciliationAction:
    """Decide the action for one entry.

    Args:
        target: Resolved target descriptor.
        probe: Current state of ``target.path``.
        source: The repository entry being reconciled.
        backup: Whether existing real content may be displaced.
        source_identity: ``(device, inode)`` of the source file, used to
            recognise an existing hard link.

    Returns:
        The reconciliation action.
    """
    match probe:
        case Absent():
            return CreateLink()
        case SymlinkTo(path=link_path):
            if same_path(link_path, target.source):
                return AlreadyLinked()
            return Conflict(reason=FOREIGN_SYMLINK)
        case File(device=device, inode=inode):
            if (
                target.kind is LinkKind.HARDLINK
                and source_identity is not None
                and source_identity == (device, inode)
            ):
                return AlreadyLinked()
            if backup:
                return BackupAndLink()
            return Conflict(reason=EXISTING_FILE)
        case Directory():
            if backup:
                return BackupAndLink()
            return Conflict(reason=EXISTING_DIRECTORY)
        case Other():
            return Conflict(reason=UNSUPPORTED_TYPE)
        case _:
            assert_never(probe)
