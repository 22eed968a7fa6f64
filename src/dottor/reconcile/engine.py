"""Reconcile engine: drive every repository entry to a terminal state.

The ``ReconcileEngine`` ties together the exclude filter, resolver,
probe, planner and executor into a complete run.  It:

1. Splits the scanned entries into kept and excluded ones.
2. Resolves each kept entry to a target on this host.
3. Probes the target without following links.
4. Plans exactly one action from the decision table.
5. Executes the action (or stops at the plan for dry runs).
6. Builds and returns a ``RunReport`` in scan order.

Error handling is per-entry: a single failure does not abort the run.
Entries are independent, so steps 2-5 run in a bounded pool of worker
threads; results are re-ordered by scan index before reporting.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timezone
from functools import partial
from pathlib import Path

from dottor.async_utils import map_in_threads
from dottor.config_schema import ReconcileSettings
from dottor.errors import DottorError, IoError, UnresolvedPathError
from dottor.host import PlatformInfo
from dottor.reconcile.exclude import ExcludeFilter
from dottor.reconcile.executor import (
    LinkStrategy,
    execute,
    format_timestamp,
    select_strategy,
)
from dottor.reconcile.models import (
    Conflict,
    EntryResult,
    EntryState,
    ExcludeRule,
    LinkKind,
    Outcome,
    ProbeResult,
    RepositoryEntry,
    RunReport,
)
from dottor.reconcile.planner import plan
from dottor.reconcile.probe import file_identity, probe
from dottor.reconcile.resolver import PathResolver

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconcileEngine:
    """Reconcile a dotfiles repository against one host.

    Args:
        platform: Snapshot of the host (OS family, home, environment).
        repo_root: Path of the dotfiles repository.
        settings: Run settings (backup policy, hard-link fallback,
            worker count).  Defaults apply when omitted.
        strategy: Link primitives; chosen from *platform* when omitted.
        probe_fn: Target probe, replaceable in tests.
        clock: Source of the run timestamp, replaceable in tests.
    """

    def __init__(
        self,
        platform: PlatformInfo,
        repo_root: Path,
        settings: ReconcileSettings | None = None,
        *,
        strategy: LinkStrategy | None = None,
        probe_fn: Callable[[Path], ProbeResult] = probe,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.platform = platform
        self.repo_root = repo_root.resolve()
        self.settings = settings or ReconcileSettings()
        self.strategy = strategy or select_strategy(platform)
        self.resolver = PathResolver(
            self.repo_root, hardlink_fallback=self.settings.hardlink_fallback
        )
        self._probe = probe_fn
        self._clock = clock

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def run(
        self,
        entries: Sequence[RepositoryEntry],
        exclude: Iterable[ExcludeRule] = (),
        *,
        dry_run: bool = False,
    ) -> RunReport:
        """Execute a full reconciliation pass from synchronous code.

        Starts its own event loop, so it must not be called while one is
        running; await ``run_async()`` there instead.

        Raises:
            RuntimeError: If called from a running event loop.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(
                self.run_async(entries, exclude, dry_run=dry_run)
            )
        raise RuntimeError(
            "ReconcileEngine.run() cannot be called from a running event "
            "loop; await ReconcileEngine.run_async() instead"
        )

    async def run_async(
        self,
        entries: Sequence[RepositoryEntry],
        exclude: Iterable[ExcludeRule] = (),
        *,
        dry_run: bool = False,
    ) -> RunReport:
        """Execute a full reconciliation pass on the running event loop.

        Args:
            entries: Repository entries in scan order.
            exclude: Exclude rules applied before planning.
            dry_run: If ``True``, plan actions but do not execute them.

        Returns:
            A ``RunReport`` with one result per kept entry, in scan order.
        """
        started = self._clock()
        timestamp = format_timestamp(started)

        kept, excluded = ExcludeFilter(
            exclude, self.platform.os_family
        ).split(entries)
        logger.info(
            "Reconciling %d entries (%d excluded)%s",
            len(kept),
            len(excluded),
            " [dry run]" if dry_run else "",
        )

        worker = partial(
            self._reconcile_entry, dry_run=dry_run, timestamp=timestamp
        )
        results = await map_in_threads(
            worker, kept, self.settings.max_workers
        )
        results.sort(key=lambda r: r.entry.index)

        return RunReport(
            results=results,
            excluded=excluded,
            dry_run=dry_run,
            backup=self.settings.backup,
            started_at=started.isoformat(),
            completed_at=self._clock().isoformat(),
        )

    # ------------------------------------------------------------------
    # Per-entry reconciliation
    # ------------------------------------------------------------------

    def _reconcile_entry(
        self, entry: RepositoryEntry, *, dry_run: bool, timestamp: str
    ) -> EntryResult:
        try:
            return self._reconcile(entry, dry_run, timestamp)
        except Exception as exc:
            logger.exception("Unexpected error reconciling %s", entry.source)
            return EntryResult(
                entry=entry,
                action=Conflict(reason=f"internal error: {exc}"),
                outcome=Outcome(
                    state=EntryState.FAILED,
                    error=str(exc),
                    error_type=type(exc).__name__,
                ),
            )

    def _reconcile(
        self, entry: RepositoryEntry, dry_run: bool, timestamp: str
    ) -> EntryResult:
        # Resolve
        try:
            target = self.resolver.resolve(entry, self.platform)
        except UnresolvedPathError as exc:
            logger.error("Cannot resolve %s: %s", entry.source, exc)
            return EntryResult(
                entry=entry,
                action=Conflict(reason=f"unresolved target: {exc}"),
                outcome=Outcome(
                    state=EntryState.FAILED,
                    error=str(exc),
                    error_type=type(exc).__name__,
                ),
            )

        # Probe
        try:
            current = self._probe(target.path)
            identity = (
                file_identity(target.source)
                if target.kind is LinkKind.HARDLINK
                else None
            )
        except IoError as exc:
            logger.warning("Cannot probe %s: %s", target.path, exc)
            return EntryResult(
                entry=entry,
                target=target,
                action=Conflict(reason=f"probe failed: {exc}"),
                outcome=Outcome(
                    state=EntryState.CONFLICTED,
                    error=str(exc),
                    error_type=type(exc).__name__,
                ),
            )

        # Plan
        action = plan(
            target,
            current,
            entry,
            backup=self.settings.backup,
            source_identity=identity,
        )
        if isinstance(action, Conflict):
            logger.warning(
                "Conflict at %s: %s (left untouched)", target.path, action.reason
            )

        if dry_run:
            return EntryResult(
                entry=entry,
                target=target,
                action=action,
                outcome=Outcome(state=EntryState.PENDING),
            )

        # Execute
        try:
            outcome = execute(action, target, self.strategy, timestamp=timestamp)
        except DottorError as exc:
            logger.error("Failed to link %s: %s", target.path, exc)
            outcome = Outcome(
                state=EntryState.FAILED,
                error=str(exc),
                error_type=type(exc).__name__,
                backup_path=exc.backup_path,
            )

        return EntryResult(
            entry=entry, target=target, action=action, outcome=outcome
        )
