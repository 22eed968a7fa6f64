"""
Settings file discovery and loading for dottor.

Tool settings live in YAML (``.dottor/config.yml``).  Files are found by
convention, may pull in fragments with ``!include`` and may reference
environment variables as ``${VAR}`` or ``${VAR:-default}``.  When several
files exist their top-level sections are merged, the file closest to the
project winning.

Usage:
    from dottor.config_loader import load_settings_files

    raw = load_settings_files()
"""

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

SETTINGS_ENV_VAR = "DOTTOR_CONFIG"
PROJECT_DIR = ".dottor"

# ---------------------------------------------------------------------------
# Environment references
# ---------------------------------------------------------------------------

# ${VAR} and ${VAR:-default}
_ENV_REF = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def expand_env_refs(
    value: str, environ: Mapping[str, str] | None = None
) -> str:
    """Substitute ``${VAR}`` / ``${VAR:-default}`` references in *value*.

    An unset or empty variable expands to its default, or to ``""`` when
    there is none.  A ``${`` without a closing brace is kept verbatim.
    """
    env = os.environ if environ is None else environ

    def _sub(match: re.Match) -> str:
        current = env.get(match.group(1))
        if current:
            return current
        return match.group(2) or ""

    return _ENV_REF.sub(_sub, value)


def _expand_tree(node: Any, environ: Mapping[str, str] | None) -> Any:
    if isinstance(node, str):
        return expand_env_refs(node, environ)
    if isinstance(node, dict):
        return {key: _expand_tree(item, environ) for key, item in node.items()}
    if isinstance(node, list):
        return [_expand_tree(item, environ) for item in node]
    return node


# ---------------------------------------------------------------------------
# YAML with !include
# ---------------------------------------------------------------------------


class SettingsLoader(yaml.SafeLoader):
    """``SafeLoader`` that understands ``!include <path>``.

    A private subclass keeps the tag off the global ``yaml.SafeLoader``.
    Each instance carries the chain of files being loaded so that an
    include cycle is reported instead of recursing forever.
    """

    include_chain: tuple[Path, ...] = ()


def _construct_include(loader: SettingsLoader, node: yaml.ScalarNode) -> Any:
    raw = loader.construct_scalar(node)
    including = Path(loader.name).resolve()
    fragment = Path(raw)
    if not fragment.is_absolute():
        fragment = including.parent / fragment
    fragment = fragment.resolve()

    if fragment in loader.include_chain:
        cycle = " -> ".join(str(p) for p in (*loader.include_chain, fragment))
        raise ValueError(f"Circular include detected: {cycle}")
    if not fragment.is_file():
        raise FileNotFoundError(
            f"Include file not found: {fragment} (referenced from {including})"
        )
    return read_yaml(fragment, _chain=(*loader.include_chain, fragment))


SettingsLoader.add_constructor("!include", _construct_include)


def read_yaml(path: Path, *, _chain: tuple[Path, ...] | None = None) -> Any:
    """Parse one YAML settings file, following ``!include`` directives."""
    path = path.resolve()
    with open(path, encoding="utf-8") as fh:
        loader = SettingsLoader(fh)
        loader.include_chain = _chain if _chain is not None else (path,)
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def settings_candidates(
    cwd: Path | None = None,
    home: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> list[Path]:
    """Possible settings files, highest precedence first.

    1. ``$DOTTOR_CONFIG`` (explicit path).
    2. ``<cwd>/.dottor/config.yml``
    3. ``<cwd>/.dottor/config.yaml``
    4. ``<home>/.config/dottor/config.yml``
    """
    env = os.environ if environ is None else environ
    cwd = cwd or Path.cwd()
    home = home or Path.home()

    candidates: list[Path] = []
    explicit = env.get(SETTINGS_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.append(cwd / PROJECT_DIR / "config.yml")
    candidates.append(cwd / PROJECT_DIR / "config.yaml")
    candidates.append(home / ".config" / "dottor" / "config.yml")
    return candidates


def discover_settings_files(
    cwd: Path | None = None,
    home: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> list[Path]:
    """Existing settings files, highest precedence first."""
    found = [
        p for p in settings_candidates(cwd, home, environ) if p.is_file()
    ]
    env = os.environ if environ is None else environ
    explicit = env.get(SETTINGS_ENV_VAR)
    if explicit and not Path(explicit).expanduser().is_file():
        logger.warning(
            "%s points at %s, which does not exist", SETTINGS_ENV_VAR, explicit
        )
    return found


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def load_settings_files(
    cwd: Path | None = None,
    home: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load and merge every discovered settings file.

    Files are applied from lowest to highest precedence and each one
    replaces whole top-level sections of the ones before it.  Environment
    references are expanded after the merge.

    Returns an empty dict when there is no settings file.

    Raises:
        ValueError: On an include cycle.
        FileNotFoundError: On a missing include.
        yaml.YAMLError: On malformed YAML.
    """
    paths = discover_settings_files(cwd, home, environ)
    if not paths:
        logger.debug("No settings file found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading settings: %s", path)
        try:
            data = read_yaml(path)
        except Exception:
            logger.exception("Failed to load settings file %s", path)
            raise

        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Settings file %s has a non-mapping root (%s), ignored",
                path,
                type(data).__name__,
            )

    return _expand_tree(merged, environ)
