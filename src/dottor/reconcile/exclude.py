"""Exclude filter applied to the candidate entry set before planning.

A rule is either a path prefix or a glob:

- **Prefix** (no ``*``, ``?`` or ``[``): matches the path itself and
  everything below it, on whole path components.  ``.git/`` and ``.git``
  are equivalent; ``nvim`` does not match ``nvim-extra``.
- **Glob**: matched with ``fnmatch`` against the full path and each of
  its leading prefixes.  A glob without ``/`` also matches any single
  path component, so ``*.swp`` excludes ``vim/.init.vim.swp``.

Entries tagged for other operating systems are pruned here as well, so
the planner only ever sees entries it must produce an action for.
"""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Iterable

from dottor.host import OsFamily
from dottor.reconcile.models import ExcludedEntry, ExcludeRule, RepositoryEntry

logger = logging.getLogger(__name__)

_GLOB_CHARS = frozenset("*?[")


def normalise_pattern(pattern: str) -> str:
    """Strip ``./`` prefixes, surrounding slashes and backslashes."""
    result = pattern.strip().replace("\\", "/")
    while result.startswith("./"):
        result = result[2:]
    return result.strip("/")


def is_glob(pattern: str) -> bool:
    return any(ch in _GLOB_CHARS for ch in pattern)


def rule_matches(rule: ExcludeRule, source: str) -> bool:
    """Return ``True`` if *rule* excludes the repository path *source*."""
    pattern = normalise_pattern(rule.pattern)
    if not pattern:
        return False

    path = source.strip("/")
    if not is_glob(pattern):
        return path == pattern or path.startswith(pattern + "/")

    parts = path.split("/")
    for i in range(1, len(parts) + 1):
        if fnmatch.fnmatchcase("/".join(parts[:i]), pattern):
            return True
    if "/" not in pattern:
        return any(fnmatch.fnmatchcase(part, pattern) for part in parts)
    return False


class ExcludeFilter:
    """Prune entries matching exclude rules or tagged for another OS.

    The rule set is read-only after construction and safe to share
    between threads.

    Args:
        rules: Exclude rules from the root and per-config settings.
        os_family: Current OS family; ``None`` disables platform pruning.
    """

    def __init__(
        self,
        rules: Iterable[ExcludeRule],
        os_family: OsFamily | None = None,
    ) -> None:
        self._rules = tuple(rules)
        self._os_family = os_family

    @property
    def rules(self) -> tuple[ExcludeRule, ...]:
        return self._rules

    def matching_rule(self, source: str) -> ExcludeRule | None:
        """Return the first rule excluding *source*, or ``None``."""
        for rule in self._rules:
            if rule_matches(rule, source):
                return rule
        return None

    def is_excluded(self, source: str) -> bool:
        return self.matching_rule(source) is not None

    def split(
        self, entries: Iterable[RepositoryEntry]
    ) -> tuple[list[RepositoryEntry], list[ExcludedEntry]]:
        """Partition *entries* into ``(kept, excluded)``, preserving order."""
        kept: list[RepositoryEntry] = []
        excluded: list[ExcludedEntry] = []

        for entry in entries:
            rule = self.matching_rule(entry.source)
            if rule is not None:
                logger.debug(
                    "Excluding %s (rule '%s')", entry.source, rule.pattern
                )
                excluded.append(
                    ExcludedEntry(
                        entry=entry,
                        reason=f"excluded by '{rule.pattern}'",
                    )
                )
                continue

            if self._os_family is not None and not entry.applies_to(
                self._os_family
            ):
                logger.debug(
                    "Skipping %s (not for %s)",
                    entry.source,
                    self._os_family.value,
                )
                excluded.append(
                    ExcludedEntry(
                        entry=entry,
                        reason=f"not for {self._os_family.value}",
                    )
                )
                continue

            kept.append(entry)

        return kept, excluded
