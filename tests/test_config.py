"""Tests for dottor.config: settings precedence and env var parsing."""

from pathlib import Path

import pytest

from dottor.config import get_bool_env, get_int_env, load_settings

# ---------------------------------------------------------------------------
# Env var helpers
# ---------------------------------------------------------------------------


class TestGetBoolEnv:
    @pytest.mark.parametrize("raw", ["true", "1", "YES", " on "])
    def test_truthy(self, raw):
        assert get_bool_env("FLAG", {"FLAG": raw}) is True

    @pytest.mark.parametrize("raw", ["false", "0", "No", "off", ""])
    def test_falsy(self, raw):
        assert get_bool_env("FLAG", {"FLAG": raw}) is False

    def test_unset(self):
        assert get_bool_env("FLAG", {}) is None

    def test_invalid(self):
        with pytest.raises(ValueError, match="Invalid FLAG 'maybe'"):
            get_bool_env("FLAG", {"FLAG": "maybe"})


class TestGetIntEnv:
    def test_in_range(self):
        assert get_int_env("N", 1, 64, {"N": "12"}) == 12

    def test_unset(self):
        assert get_int_env("N", 1, 64, {}) is None

    @pytest.mark.parametrize("raw", ["0", "65", "eight"])
    def test_invalid(self, raw):
        with pytest.raises(ValueError, match="between 1 and 64"):
            get_int_env("N", 1, 64, {"N": raw})


# ---------------------------------------------------------------------------
# Precedence
# ---------------------------------------------------------------------------


class TestLoadSettings:
    """CLI > env > YAML > default, field by field."""

    def test_defaults(self):
        config = load_settings(environ={})
        assert config.reconcile.repository is None
        assert config.reconcile.backup is False
        assert config.reconcile.hardlink_fallback is False
        assert config.reconcile.max_workers == 8
        assert config.logging.level == "INFO"

    def test_yaml_values_used(self):
        raw = {
            "reconcile": {"backup": True, "max_workers": 3},
            "logging": {"level": "WARNING", "file": "/tmp/dottor.log"},
        }
        config = load_settings(raw=raw, environ={})
        assert config.reconcile.backup is True
        assert config.reconcile.max_workers == 3
        assert config.logging.file == "/tmp/dottor.log"

    def test_env_overrides_yaml(self):
        raw = {"reconcile": {"backup": True, "max_workers": 3}}
        env = {"DOTTOR_BACKUP": "false", "DOTTOR_MAX_WORKERS": "5"}
        config = load_settings(raw=raw, environ=env)
        assert config.reconcile.backup is False
        assert config.reconcile.max_workers == 5

    def test_cli_overrides_env(self):
        env = {
            "DOTTOR_BACKUP": "false",
            "DOTTOR_HARDLINK_FALLBACK": "no",
            "DOTTOR_MAX_WORKERS": "5",
            "DOTTOR_REPOSITORY": "/from/env",
        }
        config = load_settings(
            repository="/from/cli",
            backup=True,
            hardlink_fallback=True,
            max_workers=1,
            environ=env,
        )
        assert config.reconcile.repository == str(Path("/from/cli"))
        assert config.reconcile.backup is True
        assert config.reconcile.hardlink_fallback is True
        assert config.reconcile.max_workers == 1

    def test_repository_from_env(self):
        config = load_settings(
            raw={"reconcile": {"repository": "/from/yaml"}},
            environ={"DOTTOR_REPOSITORY": "/from/env"},
        )
        assert config.reconcile.repository == str(Path("/from/env"))

    def test_empty_env_repository_ignored(self):
        config = load_settings(
            raw={"reconcile": {"repository": "/from/yaml"}},
            environ={"DOTTOR_REPOSITORY": ""},
        )
        assert config.reconcile.repository == str(Path("/from/yaml"))

    def test_repository_expanduser(self):
        config = load_settings(repository="~/dotfiles", environ={})
        assert config.reconcile.repository == str(Path("~/dotfiles").expanduser())

    def test_invalid_env_value(self):
        with pytest.raises(ValueError, match="DOTTOR_BACKUP"):
            load_settings(environ={"DOTTOR_BACKUP": "sometimes"})

    def test_invalid_yaml_value(self):
        with pytest.raises(ValueError, match="Invalid settings file"):
            load_settings(raw={"reconcile": {"max_workers": 0}}, environ={})

    def test_invalid_cli_value(self):
        with pytest.raises(ValueError, match="Invalid settings"):
            load_settings(max_workers=100, environ={})
