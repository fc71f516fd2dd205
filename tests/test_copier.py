"""Tests for tree and file copying."""

import logging
import os
import stat
from pathlib import Path

import pytest

from gitbak.core.copier import CopyTask, TimestampPolicy, TreeCopier
from gitbak.core.errors import CopyError
from gitbak.core.ignore import IgnoreRules


def mode_of(path: Path) -> int:
    """Return the permission bits of ``path``."""
    return stat.S_IMODE(path.lstat().st_mode)


@pytest.fixture
def copier() -> TreeCopier:
    """Create a copier."""
    return TreeCopier()


@pytest.fixture
def rules() -> IgnoreRules:
    """Create the usual ignore rules."""
    return IgnoreRules(["*.log", "!important.log", "build/"])


def test_copy_dir_visits_entries_in_lexical_order(
    copier: TreeCopier, rules: IgnoreRules, nvim_tree: Path, tmp_path: Path
) -> None:
    """Test the entries reported by a directory copy."""
    dst = tmp_path / "out" / "nvim"
    copied = copier.copy_dir(nvim_tree, dst, rules=rules)

    assert copied == [
        Path("bin"),
        Path("bin/sync.sh"),
        Path("important.log"),
        Path("init.lua"),
        Path("lua"),
        Path("lua/plugins"),
        Path("lua/plugins/init.lua"),
    ]
    assert (dst / "init.lua").read_text() == "require('plugins')\n"
    assert (dst / "important.log").exists()
    assert not (dst / "debug.log").exists()
    assert not (dst / "build").exists()


def test_copy_dir_preserves_modes(copier: TreeCopier, nvim_tree: Path, tmp_path: Path) -> None:
    """Test that file and directory permissions are copied."""
    dst = tmp_path / "out"
    copier.copy_dir(nvim_tree, dst)

    assert mode_of(dst / "init.lua") == 0o644
    assert mode_of(dst / "lua" / "plugins" / "init.lua") == 0o600
    assert mode_of(dst / "bin" / "sync.sh") == 0o755
    assert mode_of(dst / "bin") == 0o750
    assert mode_of(dst) == mode_of(nvim_tree)


def test_copy_dir_without_write_permission_on_source_dir(
    copier: TreeCopier, tmp_path: Path
) -> None:
    """Test that read-only directories are populated before their mode is set."""
    src = tmp_path / "src"
    (src / "locked").mkdir(parents=True)
    (src / "locked" / "file.txt").write_text("content")
    os.chmod(src / "locked", 0o555)
    try:
        dst = tmp_path / "dst"
        copier.copy_dir(src, dst)
        assert (dst / "locked" / "file.txt").read_text() == "content"
        assert mode_of(dst / "locked") == 0o555
    finally:
        os.chmod(src / "locked", 0o755)
        if (tmp_path / "dst" / "locked").exists():
            os.chmod(tmp_path / "dst" / "locked", 0o755)


def test_ignored_directory_is_not_descended(copier: TreeCopier, tmp_path: Path) -> None:
    """Test that a negation cannot re-include a file inside an ignored directory."""
    src = tmp_path / "src"
    (src / "cache").mkdir(parents=True)
    (src / "cache" / "keep.txt").write_text("keep")
    (src / "main.txt").write_text("main")

    dst = tmp_path / "dst"
    copied = copier.copy_dir(src, dst, rules=IgnoreRules(["cache/", "!cache/keep.txt"]))

    assert copied == [Path("main.txt")]
    assert not (dst / "cache").exists()


def test_ignored_entries_are_logged(
    rules: IgnoreRules, nvim_tree: Path, tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Test the log lines for ignored entries."""
    caplog.set_level(logging.INFO)
    TreeCopier(label="nvim").copy_dir(nvim_tree, tmp_path / "dst", rules=rules)

    assert 'nvim: Ignored directory build (matched "build/")' in caplog.text
    assert 'nvim: Ignored file debug.log (matched "*.log")' in caplog.text


def test_copy_dir_dry_run_writes_nothing(
    copier: TreeCopier, rules: IgnoreRules, nvim_tree: Path, tmp_path: Path
) -> None:
    """Test that a dry run reports entries without creating them."""
    dst = tmp_path / "dst"
    real = copier.copy_dir(nvim_tree, tmp_path / "real", rules=rules)
    planned = copier.copy_dir(nvim_tree, dst, dry_run=True, rules=rules)

    assert planned == real
    assert not dst.exists()


def test_copy_dir_missing_source(copier: TreeCopier, tmp_path: Path) -> None:
    """Test copying a directory that does not exist."""
    with pytest.raises(CopyError):
        copier.copy_dir(tmp_path / "missing", tmp_path / "dst")


def test_copy_dir_recreates_symlinks(copier: TreeCopier, tmp_path: Path) -> None:
    """Test that links inside a tree stay links."""
    src = tmp_path / "src"
    src.mkdir()
    (src / "init.lua").write_text("x")
    os.symlink("init.lua", src / "current")

    dst = tmp_path / "dst"
    copied = copier.copy_dir(src, dst)

    assert copied == [Path("current"), Path("init.lua")]
    assert (dst / "current").is_symlink()
    assert os.readlink(dst / "current") == "init.lua"


def test_copy_dir_updates_existing_destination(
    copier: TreeCopier, nvim_tree: Path, tmp_path: Path
) -> None:
    """Test copying over a previous copy."""
    dst = tmp_path / "dst"
    copier.copy_dir(nvim_tree, dst)
    (nvim_tree / "init.lua").write_text("changed\n")

    copier.copy_dir(nvim_tree, dst)

    assert (dst / "init.lua").read_text() == "changed\n"


def test_copy_dir_replaces_directory_with_file(copier: TreeCopier, tmp_path: Path) -> None:
    """Test a source directory that became a file since the last copy."""
    src = tmp_path / "src"
    (src / "thing").mkdir(parents=True)
    (src / "thing" / "nested.txt").write_text("old\n")
    dst = tmp_path / "dst"
    copier.copy_dir(src, dst)

    (src / "thing" / "nested.txt").unlink()
    (src / "thing").rmdir()
    (src / "thing").write_text("now a file\n")
    copier.copy_dir(src, dst)

    assert (dst / "thing").is_file()
    assert (dst / "thing").read_text() == "now a file\n"


def test_copy_file_as_replaces_directory(
    copier: TreeCopier, zshrc: Path, tmp_path: Path
) -> None:
    """Test that a directory in the way of the destination is removed."""
    dst = tmp_path / "zshrc"
    (dst / "sub").mkdir(parents=True)
    (dst / "sub" / "stale").write_text("x")

    copier.copy_file_as(zshrc, dst)

    assert dst.is_file()
    assert dst.read_text() == zshrc.read_text()


def test_copy_file_as(copier: TreeCopier, zshrc: Path, tmp_path: Path) -> None:
    """Test copying a file to an exact destination."""
    dst = tmp_path / "a" / "b" / "zshrc.bak"
    assert copier.copy_file_as(zshrc, dst) == dst
    assert dst.read_text() == zshrc.read_text()
    assert mode_of(dst) == 0o600


def test_copy_file_into(copier: TreeCopier, zshrc: Path, tmp_path: Path) -> None:
    """Test copying a file into a directory."""
    dst_dir = tmp_path / "dir"
    dst_dir.mkdir()
    assert copier.copy_file_into(zshrc, dst_dir) == dst_dir / ".zshrc"
    assert (dst_dir / ".zshrc").exists()


def test_copy_file_guesses_container(copier: TreeCopier, zshrc: Path, tmp_path: Path) -> None:
    """Test that existing directories and trailing separators mean "into"."""
    existing = tmp_path / "existing"
    existing.mkdir()
    assert copier.copy_file(zshrc, existing) == existing / ".zshrc"
    assert copier.copy_file(zshrc, f"{tmp_path}/new/") == tmp_path / "new" / ".zshrc"
    assert copier.copy_file(zshrc, tmp_path / "plain") == tmp_path / "plain"
    assert (tmp_path / "plain").is_file()


def test_copy_file_dry_run(copier: TreeCopier, zshrc: Path, tmp_path: Path) -> None:
    """Test that a dry run does not create the file."""
    dst = tmp_path / "dst" / ".zshrc"
    copier.copy_file_as(zshrc, dst, dry_run=True)
    assert not dst.exists()
    assert not dst.parent.exists()


def test_copy_file_replaces_read_only_destination(
    copier: TreeCopier, zshrc: Path, tmp_path: Path
) -> None:
    """Test overwriting a file without write permission."""
    dst = tmp_path / "dst"
    dst.write_text("old")
    os.chmod(dst, 0o444)
    copier.copy_file_as(zshrc, dst)
    assert dst.read_text() == zshrc.read_text()


def test_copy_file_preserves_mtime(copier: TreeCopier, zshrc: Path, tmp_path: Path) -> None:
    """Test that the modification time is carried over."""
    mtime_ns = 1_600_000_000_123_456_789
    os.utime(zshrc, ns=(mtime_ns, mtime_ns))
    dst = copier.copy_file_as(zshrc, tmp_path / "dst")
    assert dst.stat().st_mtime_ns == zshrc.stat().st_mtime_ns


def test_strict_timestamp_policy(
    zshrc: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Test that a lost modification time fails only under the strict policy."""

    def broken_utime(*args, **kwargs):
        raise OSError("not permitted")

    monkeypatch.setattr(os, "utime", broken_utime)

    with pytest.raises(CopyError, match="modification time"):
        TreeCopier(TimestampPolicy.STRICT).copy_file_as(zshrc, tmp_path / "strict")

    dst = TreeCopier("best-effort").copy_file_as(zshrc, tmp_path / "lenient")
    assert dst.read_text() == zshrc.read_text()


def test_copy_missing_file(copier: TreeCopier, tmp_path: Path) -> None:
    """Test copying a file that does not exist."""
    with pytest.raises(CopyError):
        copier.copy_file_as(tmp_path / "missing", tmp_path / "dst")


def test_run_dispatches_on_source_type(
    copier: TreeCopier, nvim_tree: Path, zshrc: Path, tmp_path: Path
) -> None:
    """Test running copy tasks for a file and a directory."""
    assert copier.run(CopyTask(zshrc, tmp_path / "out" / ".zshrc")) == []
    assert (tmp_path / "out" / ".zshrc").is_file()

    entries = copier.run(CopyTask(nvim_tree, tmp_path / "out" / "nvim"))
    assert Path("init.lua") in entries
    assert (tmp_path / "out" / "nvim" / "init.lua").is_file()
