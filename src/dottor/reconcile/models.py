"""Pydantic models for the reconciliation engine.

Defines the data contracts passed between the reconcile stages:

- ``RepositoryEntry``: one tracked path in the dotfiles repository.
- ``ExcludeRule``: a path prefix or glob pruning entries before planning.
- ``TargetDescriptor``: resolved target path plus link kind.
- ``ProbeResult``: tagged union describing what is at a target path.
- ``ReconciliationAction``: tagged union produced by the planner.
- ``Outcome`` / ``EntryResult``: what happened to one entry.
- ``RunReport``: aggregate, scan-ordered result of a run.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from dottor.errors import ConflictError
from dottor.host import OsFamily

# ---------------------------------------------------------------------------
# Repository side
# ---------------------------------------------------------------------------


class EntryKind(str, Enum):
    """Whether an entry links a single file or a whole directory."""

    FILE = "file"
    DIRECTORY = "directory"


class RepositoryEntry(BaseModel):
    """A tracked configuration unit.

    Attributes:
        index: Position in the repository scan order.
        config: Name of the configuration directory owning the entry.
        source: Repository-relative POSIX path (e.g. ``nvim/init.lua``).
        kind: File or whole-directory entry.
        targets: Deploy directory template per OS family. Empty means the
            default ``{config}/<config>`` applies everywhere.
        platforms: OS families the entry is restricted to (empty = all).
    """

    index: int
    config: str
    source: str
    kind: EntryKind = EntryKind.FILE
    targets: dict[OsFamily, str] = {}
    platforms: tuple[OsFamily, ...] = ()

    model_config = {"frozen": True}

    @property
    def name(self) -> str:
        """Path of the entry relative to its configuration directory."""
        prefix = f"{self.config}/"
        if self.source.startswith(prefix):
            return self.source[len(prefix) :]
        return self.config

    def applies_to(self, os_family: OsFamily) -> bool:
        """Return ``True`` if the entry is meant for *os_family*."""
        return not self.platforms or os_family in self.platforms


class ExcludeRule(BaseModel):
    """A path prefix or glob removing entries from consideration."""

    pattern: str

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Resolved target
# ---------------------------------------------------------------------------


class LinkKind(str, Enum):
    """Link primitive used to materialise an entry."""

    SYMLINK = "symlink"
    JUNCTION = "junction"
    HARDLINK = "hardlink"


class TargetDescriptor(BaseModel):
    """Where an entry must be linked and with which primitive.

    Attributes:
        path: Absolute target path on the host.
        source: Absolute path of the entry inside the repository.
        kind: Link primitive for this platform.
        is_directory: Whether the source is a directory.
    """

    path: Path
    source: Path
    kind: LinkKind = LinkKind.SYMLINK
    is_directory: bool = False

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Probe results
# ---------------------------------------------------------------------------


class Absent(BaseModel):
    """Nothing exists at the path."""

    state: Literal["absent"] = "absent"

    model_config = {"frozen": True}


class File(BaseModel):
    """A regular file, identified by device and inode."""

    state: Literal["file"] = "file"
    device: int = 0
    inode: int = 0

    model_config = {"frozen": True}


class Directory(BaseModel):
    """A real directory (not a link)."""

    state: Literal["directory"] = "directory"

    model_config = {"frozen": True}


class SymlinkTo(BaseModel):
    """A symlink or junction, with its absolute normalised destination."""

    state: Literal["symlink"] = "symlink"
    path: Path

    model_config = {"frozen": True}


class Other(BaseModel):
    """A socket, FIFO, device or any other unsupported file type."""

    state: Literal["other"] = "other"
    description: str

    model_config = {"frozen": True}


ProbeResult = Annotated[
    Union[Absent, File, Directory, SymlinkTo, Other],
    Field(discriminator="state"),
]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

FOREIGN_SYMLINK = "foreign symlink"
EXISTING_FILE = "existing file"
EXISTING_DIRECTORY = "existing directory"
UNSUPPORTED_TYPE = "unsupported type"


class CreateLink(BaseModel):
    """Target is absent: create the link."""

    kind: Literal["create_link"] = "create_link"

    model_config = {"frozen": True}


class AlreadyLinked(BaseModel):
    """Target already points at the source: nothing to do."""

    kind: Literal["already_linked"] = "already_linked"

    model_config = {"frozen": True}


class Conflict(BaseModel):
    """Target holds incompatible state that is left untouched."""

    kind: Literal["conflict"] = "conflict"
    reason: str

    model_config = {"frozen": True}


class BackupAndLink(BaseModel):
    """Rename the existing target aside, then create the link."""

    kind: Literal["backup_and_link"] = "backup_and_link"

    model_config = {"frozen": True}


ReconciliationAction = Annotated[
    Union[CreateLink, AlreadyLinked, Conflict, BackupAndLink],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Outcomes and report
# ---------------------------------------------------------------------------


class EntryState(str, Enum):
    """Per-entry state machine: PENDING moves to exactly one terminal state."""

    PENDING = "pending"
    LINKED = "linked"
    SKIPPED = "skipped"
    CONFLICTED = "conflicted"
    FAILED = "failed"


class Outcome(BaseModel):
    """Result of executing (or not executing) one action.

    Attributes:
        state: Terminal state, or ``PENDING`` for dry runs.
        error: Error message when the entry failed.
        error_type: Exception class name behind ``error`` (e.g.
            ``PrivilegeError``), so callers can decide how to react.
        backup_path: Where the displaced target was moved, if anywhere.
    """

    state: EntryState
    error: str | None = None
    error_type: str | None = None
    backup_path: Path | None = None

    model_config = {"frozen": True}


class EntryResult(BaseModel):
    """One row of a run report."""

    entry: RepositoryEntry
    target: TargetDescriptor | None = None
    action: ReconciliationAction
    outcome: Outcome

    model_config = {"frozen": True}

    @property
    def source(self) -> str:
        return self.entry.source

    @property
    def target_path(self) -> Path | None:
        return self.target.path if self.target else None

    @property
    def state(self) -> EntryState:
        return self.outcome.state


class ExcludedEntry(BaseModel):
    """An entry pruned before planning, with the reason it was pruned."""

    entry: RepositoryEntry
    reason: str

    model_config = {"frozen": True}


class RunReport(BaseModel):
    """Aggregate report for a full reconciliation pass.

    Attributes:
        results: One result per non-excluded entry, in scan order.
        excluded: Entries removed by exclude rules or platform tags.
        dry_run: Whether actions were planned but not executed.
        backup: Whether the backup policy was enabled.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run completed.
    """

    results: list[EntryResult] = []
    excluded: list[ExcludedEntry] = []
    dry_run: bool = False
    backup: bool = False
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    def _with_state(self, state: EntryState) -> list[EntryResult]:
        return [r for r in self.results if r.state is state]

    @property
    def linked(self) -> list[EntryResult]:
        """Results that created a link."""
        return self._with_state(EntryState.LINKED)

    @property
    def skipped(self) -> list[EntryResult]:
        """Results that were already linked."""
        return self._with_state(EntryState.SKIPPED)

    @property
    def conflicts(self) -> list[EntryResult]:
        """Results left untouched because of a conflict."""
        return self._with_state(EntryState.CONFLICTED)

    @property
    def failures(self) -> list[EntryResult]:
        """Results whose resolution or execution failed."""
        return self._with_state(EntryState.FAILED)

    @property
    def pending(self) -> list[EntryResult]:
        """Results of a dry run (planned, not executed)."""
        return self._with_state(EntryState.PENDING)

    @property
    def mutations(self) -> list[EntryResult]:
        """Results that changed the filesystem (a link or a backup)."""
        return [
            r
            for r in self.results
            if r.state is EntryState.LINKED or r.outcome.backup_path
        ]

    @property
    def backups(self) -> list[Path]:
        """Backup artifacts created during the run."""
        return [
            r.outcome.backup_path
            for r in self.results
            if r.outcome.backup_path is not None
        ]

    @property
    def ok(self) -> bool:
        """``True`` when no entry conflicted or failed."""
        return not self.conflicts and not self.failures

    def raise_for_conflicts(self) -> None:
        """Raise ``ConflictError`` if any entry conflicted or failed."""
        bad = self.conflicts + self.failures
        if not bad:
            return
        details = ", ".join(
            f"{r.source} ({r.outcome.error or _reason(r)})" for r in bad
        )
        raise ConflictError(
            f"{len(bad)} entries were not reconciled: {details}"
        )

    def summary(self) -> str:
        """Format a short multi-line summary with counts by state."""
        lines = [
            "Reconciliation report" + (" (dry run)" if self.dry_run else ""),
            f"  Linked:     {len(self.linked)}",
            f"  Unchanged:  {len(self.skipped)}",
            f"  Conflicts:  {len(self.conflicts)}",
            f"  Failed:     {len(self.failures)}",
            f"  Excluded:   {len(self.excluded)}",
            f"  Total:      {len(self.results)}",
        ]
        if self.dry_run:
            lines.insert(1, f"  Planned:    {len(self.pending)}")
        return "\n".join(lines)


def _reason(result: EntryResult) -> str:
    action = result.action
    if isinstance(action, Conflict):
        return action.reason
    return action.kind
