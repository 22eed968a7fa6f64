"""Dotfiles repository layout: scanning, loading and scaffolding.

A repository is a directory holding ``dottor.toml`` and one
sub-directory per configuration, each with its own ``dotconfig.toml``::

    dotfiles/
        dottor.toml
        nvim/
            dotconfig.toml
            init.lua
            lua/plugins.lua
        git/
            dotconfig.toml
            config

``scan_repository()`` turns that layout into the ordered entry list and
exclude rules consumed by the reconcile engine.  The remaining helpers
create and remove repositories and configurations.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import tomllib
from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel, ValidationError

from dottor.config_schema import (
    CONFIG_FILE,
    ROOT_FILE,
    Configuration,
    RootConfiguration,
    default_branch,
)
from dottor.errors import ConflictError, RepositoryError
from dottor.reconcile.exclude import normalise_pattern
from dottor.reconcile.models import EntryKind, ExcludeRule, RepositoryEntry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _read_toml(path: Path) -> dict:
    try:
        with open(path, "rb") as fh:
            return tomllib.load(fh)
    except FileNotFoundError:
        raise RepositoryError(f"{path} does not exist") from None
    except tomllib.TOMLDecodeError as exc:
        raise RepositoryError(f"Could not parse {path}: {exc}") from exc
    except OSError as exc:
        raise RepositoryError(f"Could not read {path}: {exc}") from exc


def load_root_configuration(root: Path) -> RootConfiguration:
    """Read ``<root>/dottor.toml``.

    Raises:
        RepositoryError: If the file is missing or invalid, i.e. *root* is
            not a dottor repository.
    """
    path = root / ROOT_FILE
    if not path.is_file():
        raise RepositoryError(
            f"{root} is not a dottor repository (no {ROOT_FILE}). "
            f"Run 'dottor init' first."
        )
    try:
        return RootConfiguration(**_read_toml(path))
    except ValidationError as exc:
        raise RepositoryError(f"Invalid {path}: {exc}") from exc


def load_configuration(directory: Path) -> Configuration:
    """Read ``<directory>/dotconfig.toml``.

    Raises:
        RepositoryError: If the file is missing or invalid.
    """
    path = directory / CONFIG_FILE
    try:
        return Configuration(**_read_toml(path))
    except ValidationError as exc:
        raise RepositoryError(f"Invalid {path}: {exc}") from exc


def is_configuration_dir(path: Path) -> bool:
    return path.is_dir() and (path / CONFIG_FILE).is_file()


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------


class RepositoryScan(BaseModel):
    """Everything the engine needs from a repository.

    Attributes:
        root: Repository root.
        entries: Entries in scan order (configurations sorted by name,
            files sorted by relative path).
        exclude: Root rules followed by per-configuration rules, the
            latter prefixed with their configuration directory.
        configurations: Parsed ``dotconfig.toml`` per configuration name.
    """

    root: Path
    entries: list[RepositoryEntry] = []
    exclude: list[ExcludeRule] = []
    configurations: dict[str, Configuration] = {}

    model_config = {"frozen": True}


def scan_repository(root: Path) -> RepositoryScan:
    """Walk the repository at *root* and list its entries.

    Directories without a ``dotconfig.toml`` are not configurations and
    are skipped.  ``dotconfig.toml`` itself is never an entry of a
    file-mode configuration.

    Raises:
        RepositoryError: If ``dottor.toml`` or a ``dotconfig.toml`` is
            missing or invalid.
    """
    root_config = load_root_configuration(root)
    exclude = [ExcludeRule(pattern=p) for p in root_config.exclude]
    entries: list[RepositoryEntry] = []
    configurations: dict[str, Configuration] = {}

    for directory in sorted(p for p in root.iterdir() if p.is_dir()):
        if not is_configuration_dir(directory):
            logger.debug("Skipping %s: no %s", directory.name, CONFIG_FILE)
            continue

        name = directory.name
        config = load_configuration(directory)
        configurations[name] = config
        deploy = config.deploy
        targets = deploy.targets()
        platforms = tuple(deploy.platforms)

        for pattern in deploy.exclude:
            normalised = normalise_pattern(pattern)
            if normalised:
                exclude.append(ExcludeRule(pattern=f"{name}/{normalised}"))

        if deploy.link == "directory":
            sources = [(name, EntryKind.DIRECTORY)]
        else:
            sources = [
                (rel, EntryKind.FILE) for rel in _config_files(root, directory)
            ]

        for source, kind in sources:
            entries.append(
                RepositoryEntry(
                    index=len(entries),
                    config=name,
                    source=source,
                    kind=kind,
                    targets=targets,
                    platforms=platforms,
                )
            )

    logger.info(
        "Scanned %s: %d configurations, %d entries",
        root,
        len(configurations),
        len(entries),
    )
    return RepositoryScan(
        root=root,
        entries=entries,
        exclude=exclude,
        configurations=configurations,
    )


def _config_files(root: Path, directory: Path) -> list[str]:
    """Repository-relative POSIX paths of the files of one configuration."""
    marker = directory / CONFIG_FILE
    result = []
    for path in directory.rglob("*"):
        if path == marker:
            continue
        if path.is_symlink() or path.is_file():
            result.append(path.relative_to(root).as_posix())
    return sorted(result)


# ---------------------------------------------------------------------------
# Scaffolding
# ---------------------------------------------------------------------------

_ROOT_TEMPLATE = """\
# dottor repository configuration
#
# Paths (prefixes or globs) that are never deployed.
exclude = [".git/"]

# Where this repository is published. dottor does not push or pull;
# the values are kept for reference.
[synchronization]
repository = ""
remote = "origin"
branch = {branch}
"""

_CONFIG_TEMPLATE = """\
# dottor configuration
#
# [config]
# name = "{name}"

[deploy]
# Paths relative to this directory that are never deployed.
exclude = []
# "files" links every file on its own, "directory" links this directory.
link = "files"
# Restrict to some operating systems, e.g. ["linux", "macos"].
# platforms = []

# Target directory per OS. Placeholders: ~ {{home}} {{config}} {{data}}
# {{cache}}, $VAR / ${{VAR}} and %VAR% on Windows.
# Default: {{config}}/{name}
#
# [deploy.linux]
# target = "{{config}}/{name}"
#
# [deploy.windows]
# target = "{{config}}/{name}"

[dependencies]
# [dependencies.simple]
# local = []
# system = []
#
# [[dependencies.system]]
# name = "git"
# version = ">=2.30.0"
# version_args = "--version"
"""


def _toml_string(value: str) -> str:
    return json.dumps(value)


def _check_empty(path: Path) -> None:
    if path.exists() and (not path.is_dir() or any(path.iterdir())):
        raise ConflictError(f"{path} already exists and is not empty")


def init_repository(path: Path) -> Path:
    """Create a new dotfiles repository at *path*.

    Writes a starter ``dottor.toml`` and runs ``git init``.

    Returns:
        Path of the written ``dottor.toml``.

    Raises:
        ConflictError: If *path* exists and is not an empty directory.
        RepositoryError: If the directory cannot be created or
            ``git init`` fails.
    """
    _check_empty(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
        root_file = path / ROOT_FILE
        root_file.write_text(
            _ROOT_TEMPLATE.format(branch=_toml_string(default_branch())),
            encoding="utf-8",
        )
    except OSError as exc:
        raise RepositoryError(f"Could not initialise {path}: {exc}") from exc
    logger.info("Created %s", root_file)

    try:
        result = subprocess.run(
            ["git", "init"],
            cwd=str(path),
            capture_output=True,
            text=True,
            timeout=60,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired) as exc:
        raise RepositoryError(f"Could not run git init: {exc}") from exc
    if result.returncode != 0:
        raise RepositoryError(
            f"git init failed: {(result.stderr or result.stdout).strip()}"
        )
    logger.info("Initialised git repository in %s", path)
    return root_file


def _config_dir(root: Path, name: str) -> Path:
    if not name or name in (".", "..") or "/" in name or "\\" in name:
        raise RepositoryError(f"Invalid configuration name '{name}'")
    return root / name


def create_config(root: Path, name: str) -> Path:
    """Create configuration *name* with a starter ``dotconfig.toml``.

    Returns:
        Path of the configuration directory.

    Raises:
        RepositoryError: If *root* is not a repository or *name* is not a
            plain directory name.
        ConflictError: If the directory exists and is not empty.
    """
    load_root_configuration(root)
    directory = _config_dir(root, name)
    _check_empty(directory)
    try:
        directory.mkdir(parents=True, exist_ok=True)
        (directory / CONFIG_FILE).write_text(
            _CONFIG_TEMPLATE.format(name=name), encoding="utf-8"
        )
    except OSError as exc:
        raise RepositoryError(f"Could not create {directory}: {exc}") from exc
    logger.info("Created configuration %s", directory)
    return directory


def delete_config(
    root: Path, name: str, confirm: Callable[[str], bool]
) -> bool:
    """Delete configuration *name* and every file in it.

    Args:
        root: Repository root.
        name: Configuration directory name.
        confirm: Called with a warning message; deletion only happens
            when it returns ``True``.

    Returns:
        ``True`` if the configuration was deleted.

    Raises:
        RepositoryError: If *name* is not a configuration directory or
            cannot be removed.
    """
    directory = _config_dir(root, name)
    if not is_configuration_dir(directory):
        raise RepositoryError(f"{directory} is not a configuration directory")

    message = (
        f"Deleting '{name}' removes the configuration and all files in "
        f"{directory}."
    )
    if not confirm(message):
        logger.info("Kept configuration %s", name)
        return False

    try:
        shutil.rmtree(directory)
    except OSError as exc:
        raise RepositoryError(f"Could not delete {directory}: {exc}") from exc
    logger.info("Deleted configuration %s", directory)
    return True
