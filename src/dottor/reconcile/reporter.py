"""Run report formatting functions.

Provides human-readable and machine-readable output for reconcile runs:

- ``format_run_report`` -- full post-deploy summary.
- ``format_dry_run_preview`` -- dry-run preview grouped by action.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

from .models import Conflict

if TYPE_CHECKING:
    from .models import EntryResult, RunReport

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def _target(result: EntryResult) -> str:
    return str(result.target_path) if result.target_path else "?"


def format_run_report(report: RunReport) -> str:
    """Format a complete run report as human-readable text.

    Sections are only included when they contain at least one result.
    Unchanged entries are summarised by count only to avoid excessive
    output.

    Args:
        report: The completed run report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = "Deploy report"
    if report.dry_run:
        header += " (DRY RUN)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    lines.append(
        f"Reconciled {len(report.results)} entries: "
        f"{len(report.linked)} linked, "
        f"{len(report.skipped)} unchanged, "
        f"{len(report.conflicts)} conflicts, "
        f"{len(report.failures)} failed"
    )
    lines.append("")

    if report.linked:
        lines.append("Linked:")
        for r in report.linked:
            line = f"  {_target(r)} -> {r.source}"
            if r.outcome.backup_path:
                line += f" (backup: {r.outcome.backup_path})"
            lines.append(line)
        lines.append("")

    if report.conflicts:
        lines.append("Conflicts (left untouched):")
        for r in report.conflicts:
            if isinstance(r.action, Conflict):
                reason = r.action.reason
            else:
                reason = r.outcome.error
            lines.append(f"  {_target(r)}: {reason}")
        lines.append("")

    if report.failures:
        lines.append("Failed:")
        for r in report.failures:
            lines.append(f"  {r.source}: {r.outcome.error}")
            if r.outcome.backup_path:
                lines.append(f"    original kept at {r.outcome.backup_path}")
        lines.append("")

    if report.skipped:
        lines.append(f"Unchanged: {len(report.skipped)} entries")
        lines.append("")

    if report.excluded:
        lines.append(f"Excluded: {len(report.excluded)} entries")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------

_DISPLAY_ORDER = ("create_link", "backup_and_link", "conflict")


def format_dry_run_preview(report: RunReport) -> str:
    """Format a dry-run preview grouped by action type.

    Each proposed action is shown as ``[ACTION] target -> source``.

    Args:
        report: A dry-run report (``dry_run=True``).

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append("DRY RUN -- No changes will be made")
    lines.append("")

    groups: dict[str, list[EntryResult]] = defaultdict(list)
    for r in report.results:
        groups[r.action.kind].append(r)

    for kind in _DISPLAY_ORDER:
        if kind not in groups:
            continue
        label = kind.upper().replace("_", " ")
        lines.append(f"[{label}]")
        for r in groups[kind]:
            line = f"  {_target(r)} -> {r.source}"
            if isinstance(r.action, Conflict):
                line += f" ({r.action.reason})"
            lines.append(line)
        lines.append("")

    skip_count = len(groups.get("already_linked", []))
    if skip_count > 0:
        lines.append(f"Unchanged: {skip_count} entries (already linked)")
        lines.append("")

    if not any(kind != "already_linked" for kind in groups):
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: RunReport) -> dict:
    """Convert a run report to a structured dict for JSON serialisation.

    Args:
        report: The run report.

    Returns:
        Dict with run info, counts, and per-result details.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "source": r.source,
            "target": str(r.target_path) if r.target_path else None,
            "link_kind": r.target.kind.value if r.target else None,
            "action": r.action.kind,
            "state": r.state.value,
        }
        if isinstance(r.action, Conflict):
            entry["reason"] = r.action.reason
        if r.outcome.error:
            entry["error"] = r.outcome.error
            entry["error_type"] = r.outcome.error_type
        if r.outcome.backup_path:
            entry["backup_path"] = str(r.outcome.backup_path)
        results_list.append(entry)

    return {
        "dry_run": report.dry_run,
        "backup": report.backup,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "ok": report.ok,
        "counts": {
            "total": len(report.results),
            "linked": len(report.linked),
            "unchanged": len(report.skipped),
            "conflicts": len(report.conflicts),
            "failed": len(report.failures),
            "pending": len(report.pending),
            "excluded": len(report.excluded),
        },
        "results": results_list,
        "excluded": [
            {"source": e.entry.source, "reason": e.reason}
            for e in report.excluded
        ],
    }
