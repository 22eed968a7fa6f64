"""Path resolver: repository entry -> target descriptor on this host.

Resolution is table-driven per OS family and reads nothing but the
``PlatformInfo`` snapshot, so it is pure and can be exercised for any OS
from any OS.

Target templates (from ``[deploy.<os>] target`` in ``dotconfig.toml``)
may contain:

- ``~`` or ``{home}`` -- the home directory.
- ``{config}``, ``{data}``, ``{cache}`` -- base directories, see
  ``_BASE_DIRS``.
- ``$VAR``, ``${VAR}`` -- environment variables on Linux and macOS.
- ``%VAR%`` -- environment variables on Windows, where ``$`` is literal.

A configuration without any target deploys to ``{config}/<name>``.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path, PurePath, PurePosixPath, PureWindowsPath

from dottor.errors import UnresolvedPathError
from dottor.host import OsFamily, PlatformInfo
from dottor.reconcile.models import (
    EntryKind,
    LinkKind,
    RepositoryEntry,
    TargetDescriptor,
)

logger = logging.getLogger(__name__)

# (environment variable, fallback relative to home). A ``None`` fallback
# makes the variable required.
_BASE_DIRS: dict[OsFamily, dict[str, tuple[str, str | None]]] = {
    OsFamily.LINUX: {
        "config": ("XDG_CONFIG_HOME", ".config"),
        "data": ("XDG_DATA_HOME", ".local/share"),
        "cache": ("XDG_CACHE_HOME", ".cache"),
    },
    OsFamily.MACOS: {
        "config": ("XDG_CONFIG_HOME", ".config"),
        "data": ("XDG_DATA_HOME", ".local/share"),
        "cache": ("XDG_CACHE_HOME", ".cache"),
    },
    OsFamily.WINDOWS: {
        "config": ("APPDATA", None),
        "data": ("LOCALAPPDATA", None),
        "cache": ("LOCALAPPDATA", None),
    },
}

# Which ``[deploy.<os>]`` tables serve an OS family, in preference order.
_TARGET_FALLBACKS: dict[OsFamily, tuple[OsFamily, ...]] = {
    OsFamily.LINUX: (OsFamily.LINUX,),
    OsFamily.MACOS: (OsFamily.MACOS, OsFamily.LINUX),
    OsFamily.WINDOWS: (OsFamily.WINDOWS,),
}

_PLACEHOLDER = r"\{(?P<placeholder>home|config|data|cache)\}"
_POSIX_TOKEN_RE = re.compile(
    _PLACEHOLDER
    + r"|\$\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}"
    + r"|\$(?P<bare>[A-Za-z_][A-Za-z0-9_]*)"
)
_WINDOWS_TOKEN_RE = re.compile(
    _PLACEHOLDER + r"|%(?P<percent>[A-Za-z_][A-Za-z0-9_()]*)%"
)


def select_target(
    targets: dict[OsFamily, str], os_family: OsFamily
) -> str | None:
    """Pick the deploy template serving *os_family*, or ``None``."""
    for candidate in _TARGET_FALLBACKS[os_family]:
        template = targets.get(candidate)
        if template:
            return template
    return None


def _pure(platform: PlatformInfo, value: str | Path) -> PurePath:
    if platform.is_windows:
        return PureWindowsPath(value)
    return PurePosixPath(value)


def base_directory(platform: PlatformInfo, key: str) -> PurePath:
    """Return the ``{config}`` / ``{data}`` / ``{cache}`` directory.

    Raises:
        UnresolvedPathError: If a required variable is unset.
    """
    var, fallback = _BASE_DIRS[platform.os_family][key]
    value = platform.getenv(var)
    if value is not None and _pure(platform, value).is_absolute():
        return _pure(platform, value)
    if fallback is None:
        raise UnresolvedPathError(
            f"Cannot resolve {{{key}}}: %{var}% is not set"
        )
    return _pure(platform, platform.home) / fallback


def expand_template(template: str, platform: PlatformInfo) -> PurePath:
    """Expand placeholders and variables in *template*.

    Raises:
        UnresolvedPathError: If a variable is unset or the result is
            not an absolute path.
    """

    def _substitute(match: re.Match) -> str:
        key = match.group("placeholder")
        if key == "home":
            return str(platform.home)
        if key:
            return str(base_directory(platform, key))
        name = next(
            g for k, g in match.groupdict().items() if g and k != "placeholder"
        )
        value = platform.getenv(name)
        if value is None:
            raise UnresolvedPathError(
                f"Cannot resolve '{template}': {match.group(0)} is not set"
            )
        return value

    token_re = _WINDOWS_TOKEN_RE if platform.is_windows else _POSIX_TOKEN_RE
    rest = template.strip()
    prefix = ""
    if rest == "~" or rest.startswith(("~/", "~\\")):
        prefix, rest = str(platform.home), rest[1:]
    # one pass over the template; substituted values are never rescanned
    expanded = prefix + token_re.sub(_substitute, rest)

    result = _pure(platform, expanded)
    if not result.is_absolute():
        raise UnresolvedPathError(
            f"Target '{template}' does not resolve to an absolute path "
            f"(got '{expanded}')"
        )
    return result


class PathResolver:
    """Map repository entries to target descriptors.

    Args:
        repo_root: Absolute path of the dotfiles repository.
        hardlink_fallback: On Windows without symlink privilege, link
            file entries with hard links instead of failing.
    """

    def __init__(
        self, repo_root: Path, *, hardlink_fallback: bool = False
    ) -> None:
        self._repo_root = repo_root
        self._hardlink_fallback = hardlink_fallback

    def resolve(
        self, entry: RepositoryEntry, platform: PlatformInfo
    ) -> TargetDescriptor:
        """Compute where *entry* must be linked on *platform*.

        Raises:
            UnresolvedPathError: If the target cannot be resolved.
        """
        if entry.targets:
            template = select_target(entry.targets, platform.os_family)
            if template is None:
                raise UnresolvedPathError(
                    f"Configuration '{entry.config}' has no deploy target "
                    f"for {platform.os_family.value}"
                )
        else:
            template = f"{{config}}/{entry.config}"

        base = expand_template(template, platform)
        if entry.kind is EntryKind.DIRECTORY:
            target = base
        else:
            target = base / entry.name

        descriptor = TargetDescriptor(
            path=Path(str(target)),
            source=self._repo_root / entry.source,
            kind=self._link_kind(entry, platform),
            is_directory=entry.kind is EntryKind.DIRECTORY,
        )
        logger.debug(
            "Resolved %s -> %s (%s)",
            entry.source,
            descriptor.path,
            descriptor.kind.value,
        )
        return descriptor

    def _link_kind(
        self, entry: RepositoryEntry, platform: PlatformInfo
    ) -> LinkKind:
        if not platform.is_windows or platform.unprivileged_symlinks:
            return LinkKind.SYMLINK
        if entry.kind is EntryKind.DIRECTORY:
            return LinkKind.JUNCTION
        if self._hardlink_fallback:
            return LinkKind.HARDLINK
        return LinkKind.SYMLINK
