"""Dependency checks for repository configurations.

A configuration may depend on other configurations of the same
repository (local dependencies) and on programs installed on the host
(system dependencies, optionally with a version requirement).
"""

from __future__ import annotations

import logging
import re
import shlex
import shutil
import subprocess
from collections.abc import Mapping
from enum import Enum
from pathlib import Path

from pydantic import BaseModel

from dottor.config_schema import Configuration, SystemDependency, Version
from dottor.errors import DependencyError
from dottor.repository import is_configuration_dir

logger = logging.getLogger(__name__)

_VERSION_IN_OUTPUT = re.compile(r"(\d+)\.(\d+)\.(\d+)")


class DependencyKind(str, Enum):
    LOCAL = "local"
    SYSTEM = "system"


class DependencyStatus(BaseModel):
    """Result of checking one dependency.

    Attributes:
        config: Configuration declaring the dependency.
        name: Dependency name (configuration or program).
        kind: Local or system dependency.
        required: Whether a failure blocks deployment.
        satisfied: Whether the dependency is present and compatible.
        requirement: Version requirement (system dependencies only).
        found_version: Version reported by the program, if any.
        detail: Human-readable explanation when not satisfied.
    """

    config: str
    name: str
    kind: DependencyKind
    required: bool = True
    satisfied: bool
    requirement: str | None = None
    found_version: str | None = None
    detail: str | None = None

    model_config = {"frozen": True}

    @property
    def blocking(self) -> bool:
        """``True`` for a required dependency that is not satisfied."""
        return self.required and not self.satisfied


def installed_version(
    program: str, version_args: str = "--version", timeout: float = 10
) -> Version | None:
    """Run ``<program> <version_args>`` and parse the first ``X.Y.Z``.

    Returns ``None`` when the output contains no version.

    Raises:
        DependencyError: If the program cannot be run.
    """
    try:
        result = subprocess.run(
            [program, *shlex.split(version_args)],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise DependencyError(f"Could not run {program}: {exc}") from exc

    # some programs print their version on stderr
    output = f"{result.stdout or ''}\n{result.stderr or ''}"
    match = _VERSION_IN_OUTPUT.search(output)
    if match is None:
        return None
    return Version.parse(f"={match.group(0)}")


def check_dependencies(
    root: Path, configs: Mapping[str, Configuration]
) -> list[DependencyStatus]:
    """Check the dependencies declared by *configs*.

    Args:
        root: Repository root, used to find local dependencies.
        configs: Parsed configurations keyed by directory name.

    Returns:
        One status per declared dependency, configurations in sorted
        order, local dependencies before system ones.
    """
    statuses: list[DependencyStatus] = []
    for config_name in sorted(configs):
        deps = configs[config_name].dependencies

        for dep in deps.all_local():
            present = is_configuration_dir(root / dep.name)
            statuses.append(
                DependencyStatus(
                    config=config_name,
                    name=dep.name,
                    kind=DependencyKind.LOCAL,
                    required=dep.required,
                    satisfied=present,
                    detail=None if present else "configuration not found",
                )
            )

        for dep in deps.all_system():
            statuses.append(_check_system(config_name, dep))

    for status in statuses:
        if status.blocking:
            logger.warning(
                "%s: required %s dependency '%s' not satisfied (%s)",
                status.config,
                status.kind.value,
                status.name,
                status.detail,
            )
        elif not status.satisfied:
            logger.info(
                "%s: optional dependency '%s' not satisfied (%s)",
                status.config,
                status.name,
                status.detail,
            )
    return statuses


def _check_system(config_name: str, dep: SystemDependency) -> DependencyStatus:
    base = {
        "config": config_name,
        "name": dep.name,
        "kind": DependencyKind.SYSTEM,
        "required": dep.required,
        "requirement": str(dep.version),
    }

    program = shutil.which(dep.name)
    if program is None:
        return DependencyStatus(**base, satisfied=False, detail="not found on PATH")

    if dep.version == Version.any():
        return DependencyStatus(**base, satisfied=True)

    try:
        found = installed_version(program, dep.version_args)
    except DependencyError as exc:
        return DependencyStatus(**base, satisfied=False, detail=str(exc))
    if found is None:
        return DependencyStatus(
            **base, satisfied=False, detail="could not determine version"
        )

    found_text = f"{found.major}.{found.minor}.{found.patch}"
    if not dep.version.compatible(found):
        return DependencyStatus(
            **base,
            satisfied=False,
            found_version=found_text,
            detail=f"version {found_text} does not satisfy {dep.version}",
        )
    return DependencyStatus(**base, satisfied=True, found_version=found_text)


def require_dependencies(statuses: list[DependencyStatus]) -> None:
    """Raise ``DependencyError`` if any required dependency failed."""
    blocking = [s for s in statuses if s.blocking]
    if blocking:
        names = ", ".join(f"{s.config}:{s.name}" for s in blocking)
        raise DependencyError(f"Missing required dependencies: {names}")
