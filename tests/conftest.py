"""Test configuration."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from gitbak.core.backup import BackupManager
from gitbak.core.config import Config
from gitbak.core.metadata import NullXattrHandler
from gitbak.core.paths import PathResolver
from gitbak.core.restore import RestoreManager, ScriptedConflictResolver


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """Create a fake home directory."""
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    return home_dir


@pytest.fixture
def resolver(home: Path, tmp_path: Path) -> PathResolver:
    """Create a path resolver rooted at the fake home."""
    return PathResolver(home=home, cwd=tmp_path)


@pytest.fixture
def backup_root(tmp_path: Path) -> Path:
    """Return the backup root used by test configurations."""
    return tmp_path / "backups"


@pytest.fixture
def nvim_tree(home: Path) -> Path:
    """Create a configuration tree with mixed permissions."""
    root = home / ".config" / "nvim"
    (root / "lua" / "plugins").mkdir(parents=True)
    (root / "init.lua").write_text("require('plugins')\n")
    (root / "lua" / "plugins" / "init.lua").write_text("return {}\n")
    (root / "bin").mkdir()
    (root / "bin" / "sync.sh").write_text("#!/bin/sh\necho sync\n")
    (root / "debug.log").write_text("noise\n")
    (root / "important.log").write_text("keep me\n")
    (root / "build").mkdir()
    (root / "build" / "out.o").write_text("binary")

    os.chmod(root / "init.lua", 0o644)
    os.chmod(root / "lua" / "plugins" / "init.lua", 0o600)
    os.chmod(root / "bin" / "sync.sh", 0o755)
    os.chmod(root / "bin", 0o750)
    return root


@pytest.fixture
def zshrc(home: Path) -> Path:
    """Create a single dotfile."""
    path = home / ".zshrc"
    path.write_text("export EDITOR=nvim\n")
    os.chmod(path, 0o600)
    return path


@pytest.fixture
def make_config(backup_root: Path) -> Callable[..., Config]:
    """Return a factory building configurations for the test backup root."""

    def factory(
        apps: Optional[Dict[str, Any]] = None,
        global_ignores: Optional[List[str]] = None,
        **settings: Any,
    ) -> Config:
        data: Dict[str, Any] = {
            "backup_dir": str(backup_root),
            "custom_apps": apps or {},
            "global_ignores": global_ignores or [],
        }
        data.update(settings)
        return Config(data)

    return factory


@pytest.fixture
def test_config(make_config: Callable[..., Config]) -> Config:
    """Create a configuration with a directory app and a file app."""
    return make_config(
        {
            "nvim": {"paths": ["~/.config/nvim"]},
            "shell": {"paths": ["~/.zshrc"]},
        },
        global_ignores=["*.log", "!important.log", "build/"],
    )


@pytest.fixture
def backup_manager(test_config: Config, resolver: PathResolver) -> BackupManager:
    """Create a backup manager for testing."""
    return BackupManager(test_config, resolver=resolver, xattr_handler=NullXattrHandler())


@pytest.fixture
def conflicts() -> ScriptedConflictResolver:
    """Create a conflict resolver that skips unless told otherwise."""
    return ScriptedConflictResolver()


@pytest.fixture
def restore_manager(
    test_config: Config, resolver: PathResolver, conflicts: ScriptedConflictResolver
) -> RestoreManager:
    """Create a restore manager for testing."""
    return RestoreManager(
        test_config, resolver=resolver, conflicts=conflicts, xattr_handler=NullXattrHandler()
    )


def _snapshot(root: Path) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root).as_posix()
        mode = path.lstat().st_mode & 0o7777
        content = path.read_bytes() if path.is_file() else None
        result[rel] = (mode, content)
    return result


@pytest.fixture
def snapshot() -> Callable[[Path], Dict[str, Any]]:
    """Return a function mapping each entry under a root to its mode and content."""
    return _snapshot
