"""Link executor: apply one planned action to the filesystem.

Link primitives differ per platform, so they are bundled into a
``LinkStrategy`` value chosen once per run by ``select_strategy()``.
The executor itself only sequences the steps and guarantees that a
failed step never leaves the target worse off than before:

- ``CreateLink`` creates missing parent directories and removes the ones
  it created again if the link step fails.  The three steps hold a
  process-wide lock, so concurrent entries never lose a shared parent.
- ``BackupAndLink`` renames the existing target to
  ``<name>.dottor-backup-<timestamp>`` first.  If the link step then
  fails the backup stays where it is and is reported on the raised
  error (``backup_path``); it is never restored behind the caller's back.

Symlink creation without the required privilege raises
``PrivilegeError`` before anything is touched.
"""

from __future__ import annotations

import dataclasses
import errno
import logging
import os
import subprocess
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import assert_never

from dottor.errors import DottorError, IoError, PrivilegeError
from dottor.host import PlatformInfo
from dottor.reconcile.models import (
    AlreadyLinked,
    BackupAndLink,
    Conflict,
    CreateLink,
    EntryState,
    LinkKind,
    Outcome,
    ReconciliationAction,
    TargetDescriptor,
)

logger = logging.getLogger(__name__)

BACKUP_MARKER = ".dottor-backup-"

_ERROR_PRIVILEGE_NOT_HELD = 1314

_PARENTS_LOCK = threading.Lock()


# ---------------------------------------------------------------------------
# Link strategies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LinkStrategy:
    """Platform link primitives.

    Attributes:
        name: Human-readable strategy name.
        unprivileged_symlinks: Whether ``symlink`` may be called.
        symlink: ``(source, link, is_directory)`` -> create a symlink.
        hardlink: ``(source, link)`` -> create a hard link.
        junction: ``(source, link)`` -> create a directory junction, or
            ``None`` where junctions do not exist.
    """

    name: str
    unprivileged_symlinks: bool
    symlink: Callable[[Path, Path, bool], None]
    hardlink: Callable[[Path, Path], None]
    junction: Callable[[Path, Path], None] | None = None

    def check(self, target: TargetDescriptor) -> None:
        """Raise before any mutation if *target* cannot be linked here."""
        if target.kind is LinkKind.SYMLINK and not self.unprivileged_symlinks:
            raise PrivilegeError(
                f"Cannot create symlink {target.path}: the {self.name} "
                f"platform requires elevated privileges for symlinks. "
                f"Run elevated, enable Developer Mode, or enable "
                f"hardlink_fallback."
            )
        if target.kind is LinkKind.JUNCTION and self.junction is None:
            raise DottorError(
                f"Junctions are not available on {self.name}"
            )
        if target.kind is LinkKind.HARDLINK and target.is_directory:
            raise DottorError(
                f"Cannot hard-link directory {target.source}"
            )

    def link(self, target: TargetDescriptor) -> None:
        """Create the link described by *target*.

        Raises:
            PrivilegeError: If the OS refuses for lack of privilege.
            IoError: On any other OS failure.
        """
        try:
            match target.kind:
                case LinkKind.SYMLINK:
                    self.symlink(target.source, target.path, target.is_directory)
                case LinkKind.JUNCTION:
                    assert self.junction is not None
                    self.junction(target.source, target.path)
                case LinkKind.HARDLINK:
                    self.hardlink(target.source, target.path)
                case _:
                    assert_never(target.kind)
        except OSError as exc:
            raise IoError(target.path, exc) from exc


def _os_symlink(source: Path, link: Path, is_directory: bool) -> None:
    os.symlink(source, link, target_is_directory=is_directory)


def _windows_symlink(source: Path, link: Path, is_directory: bool) -> None:
    try:
        os.symlink(source, link, target_is_directory=is_directory)
    except OSError as exc:
        if getattr(exc, "winerror", None) == _ERROR_PRIVILEGE_NOT_HELD:
            raise PrivilegeError(
                f"Cannot create symlink {link}: privilege not held"
            ) from exc
        raise


def _windows_junction(source: Path, link: Path) -> None:
    try:
        result = subprocess.run(
            ["cmd", "/c", "mklink", "/J", str(link), str(source)],
            capture_output=True,
            text=True,
            timeout=30,
        )
    except subprocess.TimeoutExpired as exc:
        raise OSError(errno.ETIMEDOUT, "mklink /J timed out", str(link)) from exc
    if result.returncode != 0:
        message = (result.stderr or result.stdout).strip() or "mklink /J failed"
        raise OSError(result.returncode, message, str(link))


POSIX_STRATEGY = LinkStrategy(
    name="posix",
    unprivileged_symlinks=True,
    symlink=_os_symlink,
    hardlink=os.link,
)

WINDOWS_STRATEGY = LinkStrategy(
    name="windows",
    unprivileged_symlinks=False,
    symlink=_windows_symlink,
    hardlink=os.link,
    junction=_windows_junction,
)


def select_strategy(platform: PlatformInfo) -> LinkStrategy:
    """Choose the link strategy for *platform* (once per run)."""
    base = WINDOWS_STRATEGY if platform.is_windows else POSIX_STRATEGY
    return dataclasses.replace(
        base, unprivileged_symlinks=platform.unprivileged_symlinks
    )


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------


def format_timestamp(moment: datetime) -> str:
    """Timestamp used in backup names, e.g. ``20261018T120000Z``."""
    return moment.strftime("%Y%m%dT%H%M%SZ")


def backup_path_for(path: Path, timestamp: str) -> Path:
    """Return a free sibling path ``<name>.dottor-backup-<timestamp>[-N]``."""
    stem = f"{path.name}{BACKUP_MARKER}{timestamp}"
    candidate = path.with_name(stem)
    counter = 1
    while os.path.lexists(candidate):
        candidate = path.with_name(f"{stem}-{counter}")
        counter += 1
    return candidate


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def execute(
    action: ReconciliationAction,
    target: TargetDescriptor,
    strategy: LinkStrategy,
    *,
    timestamp: str,
) -> Outcome:
    """Apply *action* to *target*.

    Args:
        action: Planned action.
        target: Resolved target.
        strategy: Link primitives for this platform.
        timestamp: Run timestamp used in backup names.

    Returns:
        The terminal outcome for the entry.

    Raises:
        PrivilegeError: The link needs elevation; nothing was changed
            (unless ``backup_path`` is set on the error).
        IoError: A filesystem step failed.
        DottorError: The link kind is unusable on this platform.
    """
    match action:
        case AlreadyLinked():
            return Outcome(state=EntryState.SKIPPED)
        case Conflict():
            return Outcome(state=EntryState.CONFLICTED)
        case CreateLink():
            return _create_link(target, strategy)
        case BackupAndLink():
            return _backup_and_link(target, strategy, timestamp)
        case _:
            assert_never(action)


def _create_link(target: TargetDescriptor, strategy: LinkStrategy) -> Outcome:
    strategy.check(target)
    # parents are shared between entries; create, link and clean up as one step
    with _PARENTS_LOCK:
        created = _make_parents(target.path.parent)
        try:
            strategy.link(target)
        except BaseException:
            _remove_dirs(created)
            raise
    logger.info("Linked %s -> %s", target.path, target.source)
    return Outcome(state=EntryState.LINKED)


def _backup_and_link(
    target: TargetDescriptor, strategy: LinkStrategy, timestamp: str
) -> Outcome:
    strategy.check(target)
    backup = backup_path_for(target.path, timestamp)
    try:
        os.rename(target.path, backup)
    except OSError as exc:
        raise IoError(target.path, exc) from exc
    logger.info("Moved %s to %s", target.path, backup)

    try:
        strategy.link(target)
    except DottorError as exc:
        exc.backup_path = backup
        _log_kept_backup(target, backup)
        raise
    except Exception as exc:
        error = DottorError(f"Linking {target.path} failed: {exc}")
        error.backup_path = backup
        _log_kept_backup(target, backup)
        raise error from exc
    logger.info("Linked %s -> %s", target.path, target.source)
    return Outcome(state=EntryState.LINKED, backup_path=backup)


def _log_kept_backup(target: TargetDescriptor, backup: Path) -> None:
    logger.error(
        "Linking %s failed after backup; original kept at %s",
        target.path,
        backup,
    )


def _make_parents(directory: Path) -> list[Path]:
    """Create *directory* and missing ancestors; return the created ones.

    A directory that appears concurrently counts as existing and is not
    returned.
    """
    missing: list[Path] = []
    current = directory
    while not os.path.lexists(current):
        missing.append(current)
        if current.parent == current:
            break
        current = current.parent

    created: list[Path] = []
    for path in reversed(missing):
        try:
            path.mkdir()
        except FileExistsError as exc:
            if path.is_dir():
                continue
            _remove_dirs(created)
            raise IoError(path, exc) from exc
        except OSError as exc:
            _remove_dirs(created)
            raise IoError(path, exc) from exc
        created.append(path)
    return created


def _remove_dirs(created: list[Path]) -> None:
    """Remove directories created by ``_make_parents``, deepest first."""
    for path in reversed(created):
        try:
            path.rmdir()
        except OSError as exc:
            logger.warning("Could not remove %s: %s", path, exc)
