"""Tests for the dottor command line."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from dottor import __version__
from dottor.cli import EXIT_FAILED, EXIT_OK, EXIT_USAGE, build_parser, main, run

_DOTTOR_ENV = (
    "DOTTOR_CONFIG",
    "DOTTOR_REPOSITORY",
    "DOTTOR_BACKUP",
    "DOTTOR_HARDLINK_FALLBACK",
    "DOTTOR_MAX_WORKERS",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path, linux_platform):
    """Keep every command away from the real host and its settings."""
    for name in _DOTTOR_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    with (
        patch("dottor.cli.load_dotenv"),
        patch("dottor.cli.setup_logging"),
        patch("dottor.cli.load_settings_files", return_value={}),
        patch("dottor.cli.PlatformInfo.capture", return_value=linux_platform),
    ):
        yield


def _nvim_repo(make_repo):
    return make_repo({"nvim": {"init.lua": "-- nvim"}})


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit) as info:
            build_parser().parse_args([])
        assert info.value.code == 2

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            main(["--version"])
        assert f"dottor version {__version__}" in capsys.readouterr().out

    def test_deploy_flags_default_to_none(self):
        args = build_parser().parse_args(["deploy"])
        assert args.backup is None
        assert args.hardlink_fallback is None
        assert args.workers is None


# ---------------------------------------------------------------------------
# deploy / status
# ---------------------------------------------------------------------------


@pytest.mark.posix
class TestDeploy:
    def test_deploy_links_and_reports(self, make_repo, home, capsys):
        root = _nvim_repo(make_repo)

        code = main(["--repo", str(root), "deploy"])

        assert code == EXIT_OK
        assert (home / ".config" / "nvim" / "init.lua").is_symlink()
        out = capsys.readouterr().out
        assert "Deploy report" in out
        assert "1 linked" in out

    def test_status_changes_nothing(self, make_repo, home, capsys):
        root = _nvim_repo(make_repo)

        code = main(["--repo", str(root), "status"])

        assert code == EXIT_OK
        assert list(home.iterdir()) == []
        assert "[CREATE LINK]" in capsys.readouterr().out

    def test_repository_from_env(self, make_repo, home, monkeypatch):
        root = _nvim_repo(make_repo)
        monkeypatch.setenv("DOTTOR_REPOSITORY", str(root))

        assert main(["deploy", "--dry-run"]) == EXIT_OK
        assert list(home.iterdir()) == []

    def test_conflict_exit_code_and_json(self, make_repo, home, capsys):
        root = _nvim_repo(make_repo)
        existing = home / ".config" / "nvim" / "init.lua"
        existing.parent.mkdir(parents=True)
        existing.write_text("local")

        code = main(["--repo", str(root), "deploy", "--json"])

        assert code == EXIT_FAILED
        data = json.loads(capsys.readouterr().out)
        assert data["counts"]["conflicts"] == 1
        assert data["results"][0]["reason"] == "existing file"
        assert existing.read_text() == "local"

    def test_backup_flag(self, make_repo, home):
        root = _nvim_repo(make_repo)
        existing = home / ".config" / "nvim" / "init.lua"
        existing.parent.mkdir(parents=True)
        existing.write_text("local")

        assert main(["--repo", str(root), "deploy", "--backup"]) == EXIT_OK
        assert existing.is_symlink()
        backups = list(existing.parent.glob("init.lua.dottor-backup-*"))
        assert [b.read_text() for b in backups] == ["local"]

    def test_excluded_files_not_deployed(self, make_repo, home):
        root = make_repo(
            {
                "nvim": {
                    "dotconfig.toml": '[deploy]\nexclude = ["lazy-lock.json"]\n',
                    "init.lua": "",
                    "lazy-lock.json": "{}",
                }
            }
        )

        assert main(["--repo", str(root), "deploy"]) == EXIT_OK
        assert (home / ".config" / "nvim" / "init.lua").is_symlink()
        assert not (home / ".config" / "nvim" / "lazy-lock.json").exists()


class TestErrors:
    def test_not_a_repository(self, tmp_path, capsys):
        code = main(["--repo", str(tmp_path), "deploy"])

        assert code == EXIT_FAILED
        assert "not a dottor repository" in capsys.readouterr().err

    def test_invalid_env_is_usage_error(self, monkeypatch, capsys):
        monkeypatch.setenv("DOTTOR_MAX_WORKERS", "lots")

        assert main(["status"]) == EXIT_USAGE
        assert "DOTTOR_MAX_WORKERS" in capsys.readouterr().err

    def test_invalid_workers_flag(self, capsys):
        assert main(["deploy", "--workers", "0"]) == EXIT_USAGE
        assert "Invalid settings" in capsys.readouterr().err

    def test_keyboard_interrupt(self, capsys):
        with patch("dottor.cli.main", side_effect=KeyboardInterrupt):
            with pytest.raises(SystemExit) as info:
                run()
        assert info.value.code == 130
        assert "Interrupted" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# init / config / check
# ---------------------------------------------------------------------------


class TestRepositoryCommands:
    @patch("dottor.repository.default_branch", return_value="main")
    @patch("dottor.repository.subprocess.run")
    def test_init_then_create_config(self, mock_run, _branch, tmp_path, capsys):
        mock_run.return_value.returncode = 0
        root = tmp_path / "dotfiles"

        assert main(["init", str(root)]) == EXIT_OK
        assert main(["--repo", str(root), "config", "create", "git"]) == EXIT_OK

        assert (root / "dottor.toml").is_file()
        assert (root / "git" / "dotconfig.toml").is_file()
        out = capsys.readouterr().out
        assert "Initialised dottor repository" in out
        assert "Created configuration" in out

    def test_delete_config_with_yes(self, make_repo):
        root = _nvim_repo(make_repo)

        assert main(["--repo", str(root), "config", "delete", "nvim", "--yes"]) == EXIT_OK
        assert not (root / "nvim").exists()

    def test_delete_config_declined(self, make_repo, capsys):
        root = _nvim_repo(make_repo)

        with patch("builtins.input", return_value="n"):
            assert main(["--repo", str(root), "config", "delete", "nvim"]) == EXIT_OK

        assert (root / "nvim").is_dir()
        assert "Nothing deleted." in capsys.readouterr().out

    def test_check_reports_missing(self, make_repo, capsys):
        root = make_repo(
            {
                "zsh": {
                    "dotconfig.toml": """\
                        [dependencies.simple]
                        local = ["fonts"]
                        system = ["zsh"]
                    """
                }
            }
        )

        with patch("dottor.dependencies.shutil.which", return_value=None):
            code = main(["--repo", str(root), "check"])

        assert code == EXIT_FAILED
        out = capsys.readouterr().out
        assert "[MISSING] zsh: fonts (local) - configuration not found" in out
        assert "[MISSING] zsh: zsh (system) - not found on PATH" in out

    def test_check_without_dependencies(self, make_repo, capsys):
        root = _nvim_repo(make_repo)

        assert main(["--repo", str(root), "check"]) == EXIT_OK
        assert "No dependencies declared." in capsys.readouterr().out
