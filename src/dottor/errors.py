"""Exception hierarchy for dottor.

Per-entry errors (``UnresolvedPathError``, ``IoError``,
``PrivilegeError``) are caught by the reconcile engine and turned into
an outcome for that entry; they never abort a run.  The remaining
errors are raised by the repository helpers and surface to the CLI.
"""

from __future__ import annotations

from pathlib import Path


class DottorError(Exception):
    """Base class for all dottor errors.

    Attributes:
        backup_path: Set by the link executor when the error happened
            after the existing target had already been moved aside.
    """

    backup_path: Path | None = None


class UnresolvedPathError(DottorError):
    """A target path could not be resolved on this host.

    Raised when a required environment variable or known folder is
    unavailable, or when the entry has no target for the current
    platform.
    """


class IoError(DottorError):
    """A filesystem operation failed while probing or executing.

    Attributes:
        path: The path the operation was applied to.
        cause: The underlying ``OSError``.
    """

    def __init__(self, path: Path, cause: OSError) -> None:
        self.path = path
        self.cause = cause
        reason = cause.strerror or str(cause)
        super().__init__(f"{path}: {reason}")


class PrivilegeError(DottorError):
    """The platform cannot create the required link without elevation."""


class ConflictError(DottorError):
    """Pre-existing state is incompatible with the requested operation."""


class RepositoryError(DottorError):
    """The dotfiles repository or one of its config files is invalid."""


class DependencyError(DottorError):
    """A required dependency is missing or has an incompatible version."""
