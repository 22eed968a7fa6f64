"""Tests for repository scanning and scaffolding."""

from __future__ import annotations

import subprocess
import tomllib
from unittest.mock import MagicMock, patch

import pytest

from dottor.errors import ConflictError, RepositoryError
from dottor.host import OsFamily
from dottor.reconcile.models import EntryKind
from dottor.repository import (
    create_config,
    delete_config,
    init_repository,
    load_root_configuration,
    scan_repository,
)


def _git_ok(*_args, **_kwargs):
    return subprocess.CompletedProcess(args=["git", "init"], returncode=0, stdout="", stderr="")


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------


class TestScanRepository:
    def test_not_a_repository(self, tmp_path):
        with pytest.raises(RepositoryError, match="dottor init"):
            scan_repository(tmp_path)

    def test_entries_in_scan_order(self, make_repo):
        root = make_repo(
            {
                "zsh": {".zshrc": "", ".zprofile": ""},
                "nvim": {"init.lua": "", "lua/plugins.lua": "", "after/ftplugin/x.lua": ""},
            }
        )
        (root / "notes").mkdir()  # no dotconfig.toml: not a configuration
        (root / "notes" / "todo.txt").write_text("")

        scan = scan_repository(root)

        assert [e.source for e in scan.entries] == [
            "nvim/after/ftplugin/x.lua",
            "nvim/init.lua",
            "nvim/lua/plugins.lua",
            "zsh/.zprofile",
            "zsh/.zshrc",
        ]
        assert [e.index for e in scan.entries] == list(range(5))
        assert set(scan.configurations) == {"nvim", "zsh"}

    def test_dotconfig_is_not_an_entry(self, make_repo):
        root = make_repo({"git": {"config": "", "sub/dotconfig.toml": ""}})

        sources = [e.source for e in scan_repository(root).entries]

        assert sources == ["git/config", "git/sub/dotconfig.toml"]

    def test_exclude_rules_prefixed_per_config(self, make_repo):
        root = make_repo(
            {
                "nvim": {
                    "dotconfig.toml": """\
                        [deploy]
                        exclude = ["lazy-lock.json", "/spell/", ""]
                    """,
                    "init.lua": "",
                },
            },
            root_toml='exclude = [".git/", "*.swp"]\n',
        )

        scan = scan_repository(root)

        assert [r.pattern for r in scan.exclude] == [
            ".git/",
            "*.swp",
            "nvim/lazy-lock.json",
            "nvim/spell",
        ]

    def test_targets_and_platforms_carried(self, make_repo):
        root = make_repo(
            {
                "kitty": {
                    "dotconfig.toml": """\
                        [deploy]
                        platforms = ["linux", "macos"]

                        [deploy.linux]
                        target = "~/.config/kitty"
                    """,
                    "kitty.conf": "",
                },
            }
        )

        (entry,) = scan_repository(root).entries

        assert entry.config == "kitty"
        assert entry.kind is EntryKind.FILE
        assert entry.targets == {OsFamily.LINUX: "~/.config/kitty"}
        assert entry.platforms == (OsFamily.LINUX, OsFamily.MACOS)

    def test_directory_mode_is_one_entry(self, make_repo):
        root = make_repo(
            {
                "emacs": {
                    "dotconfig.toml": '[deploy]\nlink = "directory"\n',
                    "init.el": "",
                    "lisp/a.el": "",
                },
            }
        )

        (entry,) = scan_repository(root).entries

        assert entry.source == "emacs"
        assert entry.kind is EntryKind.DIRECTORY

    def test_invalid_dotconfig(self, make_repo):
        root = make_repo({"bad": {"dotconfig.toml": "[deploy\n"}})

        with pytest.raises(RepositoryError, match="Could not parse"):
            scan_repository(root)

    def test_invalid_dotconfig_values(self, make_repo):
        root = make_repo({"bad": {"dotconfig.toml": '[deploy]\nlink = "copy"\n'}})

        with pytest.raises(RepositoryError, match="Invalid"):
            scan_repository(root)

    @pytest.mark.posix
    def test_symlink_in_config_is_an_entry(self, make_repo, tmp_path):
        root = make_repo({"sh": {"profile": ""}})
        (root / "sh" / "aliases").symlink_to(tmp_path / "elsewhere")

        sources = [e.source for e in scan_repository(root).entries]

        assert sources == ["sh/aliases", "sh/profile"]


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


class TestInitRepository:
    @patch("dottor.repository.default_branch", return_value="main")
    @patch("dottor.repository.subprocess.run", side_effect=_git_ok)
    def test_writes_root_file_and_runs_git(self, mock_run, _branch, tmp_path):
        path = tmp_path / "dotfiles"

        root_file = init_repository(path)

        assert root_file == path / "dottor.toml"
        with open(root_file, "rb") as fh:
            data = tomllib.load(fh)
        assert data["exclude"] == [".git/"]
        assert data["synchronization"]["branch"] == "main"
        assert mock_run.call_args[0][0] == ["git", "init"]
        assert mock_run.call_args[1]["cwd"] == str(path)
        assert load_root_configuration(path).synchronization.remote == "origin"

    @patch("dottor.repository.default_branch", return_value='we"ird')
    @patch("dottor.repository.subprocess.run", side_effect=_git_ok)
    def test_branch_is_quoted(self, _run, _branch, tmp_path):
        init_repository(tmp_path / "d")
        assert load_root_configuration(tmp_path / "d").synchronization.branch == 'we"ird'

    def test_refuses_non_empty_directory(self, tmp_path):
        (tmp_path / "existing.txt").write_text("")
        with pytest.raises(ConflictError, match="not empty"):
            init_repository(tmp_path)

    @patch("dottor.repository.default_branch", return_value="main")
    @patch("dottor.repository.subprocess.run", side_effect=FileNotFoundError("git"))
    def test_git_missing(self, _run, _branch, tmp_path):
        with pytest.raises(RepositoryError, match="git init"):
            init_repository(tmp_path / "d")

    @patch("dottor.repository.default_branch", return_value="main")
    @patch("dottor.repository.subprocess.run")
    def test_git_failure(self, mock_run, _branch, tmp_path):
        mock_run.return_value = MagicMock(returncode=128, stdout="", stderr="fatal: nope\n")
        with pytest.raises(RepositoryError, match="fatal: nope"):
            init_repository(tmp_path / "d")


# ---------------------------------------------------------------------------
# config create / delete
# ---------------------------------------------------------------------------


class TestCreateConfig:
    def test_creates_starter_dotconfig(self, make_repo):
        root = make_repo({})

        directory = create_config(root, "alacritty")

        assert directory == root / "alacritty"
        with open(directory / "dotconfig.toml", "rb") as fh:
            data = tomllib.load(fh)
        assert data["deploy"] == {"exclude": [], "link": "files"}
        assert "{config}/alacritty" in (directory / "dotconfig.toml").read_text()
        # the new configuration shows up in a scan (with no entries yet)
        assert "alacritty" in scan_repository(root).configurations

    def test_requires_repository(self, tmp_path):
        with pytest.raises(RepositoryError, match="not a dottor repository"):
            create_config(tmp_path, "x")

    @pytest.mark.parametrize("name", ["", ".", "..", "a/b", "a\\b"])
    def test_invalid_name(self, make_repo, name):
        root = make_repo({})
        with pytest.raises(RepositoryError, match="Invalid configuration name"):
            create_config(root, name)

    def test_existing_directory_conflicts(self, make_repo):
        root = make_repo({"git": {"config": ""}})
        with pytest.raises(ConflictError):
            create_config(root, "git")


class TestDeleteConfig:
    def test_deletes_when_confirmed(self, make_repo):
        root = make_repo({"git": {"config": ""}})
        confirm = MagicMock(return_value=True)

        assert delete_config(root, "git", confirm) is True
        assert not (root / "git").exists()
        assert "all files" in confirm.call_args[0][0]

    def test_kept_when_declined(self, make_repo):
        root = make_repo({"git": {"config": ""}})

        assert delete_config(root, "git", lambda _msg: False) is False
        assert (root / "git" / "config").exists()

    def test_not_a_configuration(self, make_repo):
        root = make_repo({})
        (root / "plain").mkdir()
        confirm = MagicMock()

        with pytest.raises(RepositoryError, match="not a configuration"):
            delete_config(root, "plain", confirm)
        confirm.assert_not_called()
