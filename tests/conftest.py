"""Shared pytest fixtures for dottor tests."""

from __future__ import annotations

import sys
from pathlib import Path
from textwrap import dedent

import pytest

from dottor.host import OsFamily, PlatformInfo

WINDOWS_HOME = r"C:\Users\ada"
WINDOWS_ENV = {
    "APPDATA": r"C:\Users\ada\AppData\Roaming",
    "LOCALAPPDATA": r"C:\Users\ada\AppData\Local",
    "USERPROFILE": WINDOWS_HOME,
}


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "posix: test needs POSIX symlink semantics"
    )


def pytest_collection_modifyitems(config, items):
    """Skip POSIX filesystem tests on Windows hosts."""
    if not sys.platform.startswith("win"):
        return
    skip_posix = pytest.mark.skip(reason="needs POSIX symlinks")
    for item in items:
        if "posix" in item.keywords:
            item.add_marker(skip_posix)


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """An empty home directory on the real filesystem."""
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def linux_platform(home: Path) -> PlatformInfo:
    """A Linux host whose home is ``tmp_path/home`` and no XDG overrides."""
    return PlatformInfo(os_family=OsFamily.LINUX, home=home, environ={})


@pytest.fixture
def windows_platform() -> PlatformInfo:
    """A Windows host without symlink privilege (pure path tests only)."""
    return PlatformInfo(
        os_family=OsFamily.WINDOWS,
        home=Path(WINDOWS_HOME),
        environ=dict(WINDOWS_ENV),
        unprivileged_symlinks=False,
    )


@pytest.fixture
def make_repo(tmp_path: Path):
    """Factory fixture creating a dotfiles repository on disk.

    ``make_repo({"nvim": {"dotconfig.toml": "...", "init.lua": "x"}})``
    writes ``dottor.toml`` plus one directory per configuration.  Nested
    file names use ``/``.
    """

    def _make(
        configs: dict[str, dict[str, str]],
        root_toml: str = 'exclude = [".git/"]\n',
    ) -> Path:
        root = tmp_path / "repo"
        root.mkdir(exist_ok=True)
        (root / "dottor.toml").write_text(dedent(root_toml), encoding="utf-8")
        for name, files in configs.items():
            directory = root / name
            directory.mkdir(exist_ok=True)
            files = dict(files)
            files.setdefault("dotconfig.toml", "")
            for rel, content in files.items():
                path = directory / rel
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(dedent(content), encoding="utf-8")
        return root

    return _make
