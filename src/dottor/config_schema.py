"""Configuration schemas for dottor.

Two families of models live here:

- Tool settings (``UnifiedConfig``), read from YAML by
  ``config_loader``.  Every section has defaults, so ``UnifiedConfig()``
  is always valid.
- Repository files: ``dottor.toml`` at the repository root
  (``RootConfiguration``) and ``dotconfig.toml`` inside every
  configuration directory (``Configuration``), read with ``tomllib``.

Usage:
    from dottor.config_schema import build_config

    raw = load_settings_files()
    unified = build_config(raw)
"""

from __future__ import annotations

import logging
import re
import subprocess
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from dottor.host import OsFamily

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tool settings
# ---------------------------------------------------------------------------


class ReconcileSettings(BaseModel):
    """How a deploy run treats the host.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    repository: str | None = Field(
        default=None,
        description="Dotfiles repository path (default: current directory)",
    )
    backup: bool = Field(
        default=False,
        description="Move existing files aside instead of reporting a conflict",
    )
    hardlink_fallback: bool = Field(
        default=False,
        description="Hard-link files on Windows when symlinks need elevation",
    )
    max_workers: int = Field(
        default=8,
        ge=1,
        le=64,
        description="Entries reconciled in parallel (1-64)",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


class UnifiedConfig(BaseModel):
    """Top-level tool settings."""

    reconcile: ReconcileSettings = Field(default_factory=ReconcileSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from merged settings files.

    Missing sections get defaults.

    Raises:
        pydantic.ValidationError: If a value has the wrong type or range.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------


class VersionSpecifier(str, Enum):
    """Comparison applied between an installed version and a requirement."""

    ANY = "*"
    NONE = ""
    EQUALS = "="
    GREATER_EQUALS = ">="
    GREATER_THAN = ">"
    LESS_EQUALS = "<="
    LESS_THAN = "<"
    MATCH_MINOR = "~"
    MATCH_MAJOR = "^"


_VERSION_RE = re.compile(
    r"^(?P<asterisk>\*)$"
    r"|^(?P<specifier>=|>=|>|<=|<|~|\^)?"
    r"(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<buildmetadata>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)


class Version(BaseModel):
    """A version requirement such as ``>=1.2.0``, ``~0.9.1`` or ``*``.

    Without a specifier (``1.2.0``) the installed version must share the
    major version and be at least the one given, like ``^``.
    Pre-release and build suffixes are accepted and ignored.

    Accepts either a string or the field mapping when validated.
    """

    specifier: VersionSpecifier = VersionSpecifier.NONE
    major: int = 1
    minor: int = 0
    patch: int = 0

    model_config = {"frozen": True}

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data):
        if isinstance(data, str):
            return cls._parse_fields(data)
        return data

    @staticmethod
    def _parse_fields(text: str) -> dict:
        match = _VERSION_RE.match(text.strip())
        if match is None:
            raise ValueError(f"could not parse version '{text}'")
        if match.group("asterisk"):
            return {
                "specifier": VersionSpecifier.ANY,
                "major": 0,
                "minor": 0,
                "patch": 0,
            }
        return {
            "specifier": VersionSpecifier(match.group("specifier") or ""),
            "major": int(match.group("major")),
            "minor": int(match.group("minor")),
            "patch": int(match.group("patch")),
        }

    @classmethod
    def parse(cls, text: str) -> Version:
        """Parse *text*; raises ``ValueError`` if it is not a version."""
        return cls(**cls._parse_fields(text))

    @classmethod
    def any(cls) -> Version:
        return cls(specifier=VersionSpecifier.ANY, major=0, minor=0, patch=0)

    @property
    def triple(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def compatible(self, installed: Version) -> bool:
        """Return ``True`` if *installed* satisfies this requirement."""
        have, want = installed.triple, self.triple
        match self.specifier:
            case VersionSpecifier.ANY:
                return True
            case VersionSpecifier.NONE | VersionSpecifier.MATCH_MAJOR:
                return have[0] == want[0] and have >= want
            case VersionSpecifier.MATCH_MINOR:
                return have[:2] == want[:2] and have >= want
            case VersionSpecifier.EQUALS:
                return have == want
            case VersionSpecifier.GREATER_EQUALS:
                return have >= want
            case VersionSpecifier.GREATER_THAN:
                return have > want
            case VersionSpecifier.LESS_EQUALS:
                return have <= want
            case VersionSpecifier.LESS_THAN:
                return have < want
        raise ValueError(f"unknown specifier {self.specifier!r}")

    def __str__(self) -> str:
        if self.specifier is VersionSpecifier.ANY:
            return "*"
        return f"{self.specifier.value}{self.major}.{self.minor}.{self.patch}"


# ---------------------------------------------------------------------------
# dottor.toml
# ---------------------------------------------------------------------------

ROOT_FILE = "dottor.toml"
CONFIG_FILE = "dotconfig.toml"


def default_branch() -> str:
    """Branch name from ``git config init.defaultBranch``, else ``main``."""
    try:
        result = subprocess.run(
            ["git", "config", "--get", "init.defaultBranch"],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("Could not query git for the default branch: %s", exc)
        return "main"
    return result.stdout.strip() or "main"


class RootSynchronization(BaseModel):
    """Where the repository is published (informational only)."""

    repository: str = ""
    remote: str = "origin"
    branch: str = Field(default_factory=lambda: default_branch())

    model_config = {"frozen": True}


class RootConfiguration(BaseModel):
    """Contents of ``dottor.toml``."""

    exclude: list[str] = Field(default_factory=lambda: [".git/"])
    synchronization: RootSynchronization = Field(
        default_factory=RootSynchronization
    )

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# dotconfig.toml
# ---------------------------------------------------------------------------


class ConfigSection(BaseModel):
    """The ``[config]`` table."""

    name: str | None = None

    model_config = {"frozen": True}


class DeployTarget(BaseModel):
    """A ``[deploy.<os>]`` table."""

    target: str

    model_config = {"frozen": True}


class Deploy(BaseModel):
    """The ``[deploy]`` table.

    Attributes:
        exclude: Rules relative to the configuration directory.
        link: ``files`` links every file on its own, ``directory`` links
            the configuration directory as a whole.
        platforms: OS families the configuration is deployed on
            (empty = all).
        linux / macos / windows: Target directory template per OS.
    """

    exclude: list[str] = []
    link: Literal["files", "directory"] = "files"
    platforms: list[OsFamily] = []
    linux: DeployTarget | None = None
    macos: DeployTarget | None = None
    windows: DeployTarget | None = None

    model_config = {"frozen": True}

    def targets(self) -> dict[OsFamily, str]:
        """Target templates keyed by OS family, for the tables present."""
        tables = {
            OsFamily.LINUX: self.linux,
            OsFamily.MACOS: self.macos,
            OsFamily.WINDOWS: self.windows,
        }
        return {
            family: table.target
            for family, table in tables.items()
            if table is not None
        }


class SimpleDependencies(BaseModel):
    """``[dependencies.simple]``: required dependencies given by name."""

    local: list[str] = []
    system: list[str] = []

    model_config = {"frozen": True}


class LocalDependency(BaseModel):
    """Another configuration of the same repository."""

    name: str
    required: bool = True

    model_config = {"frozen": True}


class SystemDependency(BaseModel):
    """A program expected on ``PATH``."""

    name: str
    required: bool = True
    version: Version = Field(default_factory=Version.any)
    version_args: str = "--version"

    model_config = {"frozen": True}


class Dependencies(BaseModel):
    """The ``[dependencies]`` table."""

    simple: SimpleDependencies = Field(default_factory=SimpleDependencies)
    local: list[LocalDependency] = []
    system: list[SystemDependency] = []

    model_config = {"frozen": True}

    def all_local(self) -> list[LocalDependency]:
        """Simple and detailed local dependencies together."""
        return [
            LocalDependency(name=name) for name in self.simple.local
        ] + list(self.local)

    def all_system(self) -> list[SystemDependency]:
        """Simple and detailed system dependencies together."""
        return [
            SystemDependency(name=name) for name in self.simple.system
        ] + list(self.system)


class Configuration(BaseModel):
    """Contents of ``dotconfig.toml``."""

    config: ConfigSection = Field(default_factory=ConfigSection)
    deploy: Deploy = Field(default_factory=Deploy)
    dependencies: Dependencies = Field(default_factory=Dependencies)

    model_config = {"frozen": True}
