"""Dotfiles reconciliation engine.

Public API for linking the entries of a dotfiles repository into their
target locations on the current host.

Architecture
------------
Every run re-derives the required action for each entry from the live
filesystem; nothing is cached between runs, so re-running after any
partial failure is always safe.  The pipeline per entry is::

    exclude filter -> resolver -> probe -> planner -> executor

Modules:

- ``engine``    -- ``ReconcileEngine``: orchestrates a full run.
- ``exclude``   -- ``ExcludeFilter``: prefix/glob rules and platform tags.
- ``resolver``  -- ``PathResolver``: entry -> target path and link kind.
- ``probe``     -- ``probe()``: lstat-based inspection of a target.
- ``planner``   -- ``plan()``: the decision table.
- ``executor``  -- ``execute()`` and per-platform ``LinkStrategy`` values.
- ``models``    -- entries, probe results, actions, outcomes, ``RunReport``.
- ``reporter``  -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from pathlib import Path
    from dottor.host import PlatformInfo
    from dottor.reconcile import (
        ReconcileEngine,
        format_dry_run_preview,
        format_run_report,
    )
    from dottor.repository import scan_repository

    root = Path("~/dotfiles").expanduser()
    scan = scan_repository(root)
    engine = ReconcileEngine(PlatformInfo.capture(), root)

    # Dry-run first to preview changes
    preview = engine.run(scan.entries, scan.exclude, dry_run=True)
    print(format_dry_run_preview(preview))

    report = engine.run(scan.entries, scan.exclude)
    print(format_run_report(report))
"""

from .engine import ReconcileEngine
from .exclude import ExcludeFilter
from .executor import LinkStrategy, execute, select_strategy
from .models import (
    EntryKind,
    EntryResult,
    EntryState,
    ExcludeRule,
    LinkKind,
    Outcome,
    RepositoryEntry,
    RunReport,
    TargetDescriptor,
)
from .planner import plan
from .probe import probe
from .reporter import (
    format_dry_run_preview,
    format_run_report,
    report_to_json,
)
from .resolver import PathResolver

__all__ = [
    "EntryKind",
    "EntryResult",
    "EntryState",
    "ExcludeFilter",
    "ExcludeRule",
    "LinkKind",
    "LinkStrategy",
    "Outcome",
    "PathResolver",
    "ReconcileEngine",
    "RepositoryEntry",
    "RunReport",
    "TargetDescriptor",
    "execute",
    "format_dry_run_preview",
    "format_run_report",
    "plan",
    "probe",
    "report_to_json",
    "select_strategy",
]
