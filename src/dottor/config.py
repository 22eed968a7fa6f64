"""Effective settings for one dottor invocation.

Combines command-line flags, environment variables, ``.env`` files and
the YAML settings files into a validated ``UnifiedConfig``.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    DOTTOR_REPOSITORY: Dotfiles repository path (optional, default: cwd)
    DOTTOR_BACKUP: Move existing targets aside (optional, default: false)
    DOTTOR_HARDLINK_FALLBACK: Hard-link files on Windows without symlink
        privilege (optional, default: false)
    DOTTOR_MAX_WORKERS: Entries reconciled in parallel (optional, default: 8)
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import ValidationError

from dottor.config_schema import ReconcileSettings, UnifiedConfig, build_config

logger = logging.getLogger(__name__)

_TRUE = ("true", "1", "yes", "on")
_FALSE = ("false", "0", "no", "off", "")


def get_bool_env(key: str, environ: Mapping[str, str] | None = None) -> bool | None:
    """Return True/False from env var, or None if unset.

    Raises:
        ValueError: If the value is not a recognised boolean.
    """
    env = os.environ if environ is None else environ
    val = env.get(key)
    if val is None:
        return None
    lowered = val.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(
        f"Invalid {key} '{val}': expected one of true/false, 1/0, yes/no, on/off"
    )


def get_int_env(
    key: str,
    low: int,
    high: int,
    environ: Mapping[str, str] | None = None,
) -> int | None:
    """Return an int from env var within ``[low, high]``, or None if unset.

    Raises:
        ValueError: If the value is not a number in range.
    """
    env = os.environ if environ is None else environ
    raw = env.get(key)
    if raw is None:
        return None
    message = f"Invalid {key} '{raw}': must be a number between {low} and {high}"
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(message) from None
    if not (low <= value <= high):
        raise ValueError(message)
    return value


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def load_settings(
    repository: str | None = None,
    backup: bool | None = None,
    hardlink_fallback: bool | None = None,
    max_workers: int | None = None,
    raw: dict | None = None,
    environ: Mapping[str, str] | None = None,
) -> UnifiedConfig:
    """Load settings with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > YAML settings > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are visible in the environment.

    Args:
        repository: ``--repo`` flag.
        backup: ``--backup`` flag (``None`` when not given).
        hardlink_fallback: ``--hardlink-fallback`` flag.
        max_workers: ``--workers`` flag.
        raw: Merged YAML settings from ``load_settings_files()``.
        environ: Environment to read, ``os.environ`` by default.

    Returns:
        Validated ``UnifiedConfig``.

    Raises:
        ValueError: If an environment variable or a settings value is
            invalid.
    """
    env = os.environ if environ is None else environ
    try:
        base = build_config(raw or {})
    except ValidationError as exc:
        raise ValueError(f"Invalid settings file: {exc}") from exc
    yaml_settings = base.reconcile

    final_repository = _first(
        repository, env.get("DOTTOR_REPOSITORY") or None, yaml_settings.repository
    )
    if final_repository:
        final_repository = str(Path(final_repository).expanduser())

    settings = {
        "repository": final_repository,
        "backup": _first(
            backup, get_bool_env("DOTTOR_BACKUP", env), yaml_settings.backup
        ),
        "hardlink_fallback": _first(
            hardlink_fallback,
            get_bool_env("DOTTOR_HARDLINK_FALLBACK", env),
            yaml_settings.hardlink_fallback,
        ),
        "max_workers": _first(
            max_workers,
            get_int_env("DOTTOR_MAX_WORKERS", 1, 64, env),
            yaml_settings.max_workers,
        ),
    }

    try:
        reconcile = ReconcileSettings(**settings)
    except ValidationError as exc:
        raise ValueError(f"Invalid settings: {exc}") from exc

    if reconcile.backup:
        logger.debug("Backup policy enabled: existing targets will be moved aside")

    return UnifiedConfig(reconcile=reconcile, logging=base.logging)
