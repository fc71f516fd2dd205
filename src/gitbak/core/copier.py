"""Directory-tree and single-file copying with permission preservation.

The copier is the content half of backup and restore. It knows nothing about
applications or manifests: it reproduces a source tree under a destination,
skipping whatever the ignore rules exclude, and reports every entry it wrote.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .errors import CopyError
from .ignore import IgnoreRules

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class TimestampPolicy(str, Enum):
    """What a failure to preserve a modification time means."""

    BEST_EFFORT = "best-effort"
    STRICT = "strict"


@dataclass
class CopyTask:
    """One source to reproduce at one destination."""

    source: Path
    destination: Path
    dry_run: bool = False
    rules: Optional[IgnoreRules] = None


class TreeCopier:
    """Copies files and directory trees.

    Attributes:
        timestamp_policy (TimestampPolicy): Whether losing a modification
            time fails the copy.
        label (str): Prefix for log lines, usually the application name.
    """

    def __init__(
        self,
        timestamp_policy: Union[TimestampPolicy, str] = TimestampPolicy.BEST_EFFORT,
        label: str = "",
    ) -> None:
        """Initialize the copier."""
        self.timestamp_policy = TimestampPolicy(timestamp_policy)
        self.label = label

    def _prefix(self) -> str:
        return f"{self.label}: " if self.label else ""

    def run(self, task: CopyTask) -> List[Path]:
        """Execute a copy task, dispatching on the source's type.

        Returns:
            List[Path]: Entries written, relative to the destination. A single
            file yields an empty list.
        """
        if task.source.is_dir():
            return self.copy_dir(task.source, task.destination, task.dry_run, task.rules)
        self.copy_file_as(task.source, task.destination, task.dry_run)
        return []

    def copy_file_as(self, src: PathLike, dst: PathLike, dry_run: bool = False) -> Path:
        """Copy ``src`` to exactly ``dst``.

        Parent directories are created, the content is copied byte for byte,
        the source's permission bits are applied and the modification time is
        preserved according to :attr:`timestamp_policy`.

        Returns:
            Path: The file that was (or would be) written.

        Raises:
            CopyError: If the copy fails.
        """
        src = Path(src)
        dst = Path(dst)
        if dry_run:
            logger.info("%s[dry-run] Copy file %s → %s", self._prefix(), src, dst)
            return dst

        try:
            src_stat = os.stat(src)
            dst.parent.mkdir(parents=True, exist_ok=True)
            if dst.is_dir() and not dst.is_symlink():
                shutil.rmtree(dst)
            elif os.path.islink(dst) or (dst.exists() and not os.access(dst, os.W_OK)):
                dst.unlink()
            shutil.copyfile(src, dst)
            shutil.copymode(src, dst)
        except OSError as e:
            raise CopyError(f"failed to copy {src} to {dst}: {e}") from e

        self._preserve_mtime(dst, src_stat.st_mtime_ns)
        logger.debug("%sCopied %s → %s", self._prefix(), src, dst)
        return dst

    def copy_file_into(self, src: PathLike, dst_dir: PathLike, dry_run: bool = False) -> Path:
        """Copy ``src`` into the directory ``dst_dir``, keeping its name."""
        src = Path(src)
        return self.copy_file_as(src, Path(dst_dir) / src.name, dry_run)

    def copy_file(self, src: PathLike, dst: PathLike, dry_run: bool = False) -> Path:
        """Copy a file, guessing whether ``dst`` is a container.

        ``dst`` counts as a directory when it already is one or ends with a
        path separator. Prefer :meth:`copy_file_into` or :meth:`copy_file_as`
        when the intent is known.
        """
        raw = str(dst)
        if raw.endswith(os.sep) or raw.endswith("/") or Path(dst).is_dir():
            return self.copy_file_into(src, dst, dry_run)
        return self.copy_file_as(src, dst, dry_run)

    def copy_dir(
        self,
        src_dir: PathLike,
        dst_dir: PathLike,
        dry_run: bool = False,
        rules: Optional[IgnoreRules] = None,
    ) -> List[Path]:
        """Reproduce the tree at ``src_dir`` under ``dst_dir``.

        Entries are visited depth first in lexical order. Every entry except
        the root is checked against ``rules``: an ignored directory is skipped
        with its whole subtree, an ignored file on its own. Directories get the
        source's permission bits once their contents are written. Symbolic
        links are recreated as links.

        Args:
            src_dir: Directory to copy.
            dst_dir: Directory to create or update.
            dry_run: Log the intended actions without touching the filesystem.
            rules: Ignore rules; None copies everything.

        Returns:
            List[Path]: Entries written (or that would be), relative to
            ``dst_dir``, in visiting order.

        Raises:
            CopyError: On the first failure; what was already written stays.
        """
        src_dir = Path(src_dir)
        dst_dir = Path(dst_dir)
        if dry_run:
            logger.info("%s[dry-run] Copy directory %s → %s", self._prefix(), src_dir, dst_dir)

        copied: List[Path] = []
        pending_modes: List[Tuple[Path, int]] = []
        try:
            root_mode = stat.S_IMODE(os.stat(src_dir).st_mode)
            if not dry_run:
                self._make_dir(dst_dir)
            self._walk(src_dir, dst_dir, Path(), dry_run, rules, copied, pending_modes)
            if not dry_run:
                for path, mode in reversed(pending_modes):
                    os.chmod(path, mode)
                os.chmod(dst_dir, root_mode)
        except OSError as e:
            raise CopyError(f"failed to copy directory {src_dir} to {dst_dir}: {e}") from e
        return copied

    def _walk(
        self,
        src_root: Path,
        dst_root: Path,
        rel: Path,
        dry_run: bool,
        rules: Optional[IgnoreRules],
        copied: List[Path],
        pending_modes: List[Tuple[Path, int]],
    ) -> None:
        with os.scandir(src_root / rel) as it:
            entries = sorted(it, key=lambda e: e.name)

        for entry in entries:
            entry_rel = rel / entry.name
            is_dir = entry.is_dir(follow_symlinks=False)

            if rules is not None:
                ignored, rule = rules.match(entry.path, is_dir=is_dir)
                if ignored:
                    kind = "directory" if is_dir else "file"
                    logger.info(
                        '%sIgnored %s %s (matched "%s")', self._prefix(), kind, entry_rel, rule
                    )
                    continue

            target = dst_root / entry_rel
            if is_dir:
                if dry_run:
                    logger.info("%s[dry-run] Create directory %s", self._prefix(), target)
                else:
                    self._make_dir(target)
                    mode = stat.S_IMODE(entry.stat(follow_symlinks=False).st_mode)
                    pending_modes.append((target, mode))
                copied.append(entry_rel)
                self._walk(src_root, dst_root, entry_rel, dry_run, rules, copied, pending_modes)
            elif entry.is_symlink():
                self._copy_link(Path(entry.path), target, dry_run)
                copied.append(entry_rel)
            else:
                self.copy_file_as(entry.path, target, dry_run)
                copied.append(entry_rel)

    def _make_dir(self, path: Path) -> None:
        if os.path.islink(path) or (path.exists() and not path.is_dir()):
            path.unlink()
        path.mkdir(parents=True, exist_ok=True)
        mode = stat.S_IMODE(path.stat().st_mode)
        if not mode & stat.S_IWUSR or not mode & stat.S_IXUSR:
            os.chmod(path, mode | stat.S_IWUSR | stat.S_IXUSR)

    def _copy_link(self, src: Path, dst: Path, dry_run: bool) -> None:
        link_target = os.readlink(src)
        if dry_run:
            logger.info("%s[dry-run] Link %s → %s", self._prefix(), dst, link_target)
            return
        if os.path.lexists(dst):
            if dst.is_dir() and not dst.is_symlink():
                shutil.rmtree(dst)
            else:
                dst.unlink()
        os.symlink(link_target, dst)
        logger.debug("%sLinked %s → %s", self._prefix(), dst, link_target)

    def _preserve_mtime(self, dst: Path, mtime_ns: int) -> None:
        try:
            os.utime(dst, ns=(time.time_ns(), mtime_ns))
        except OSError as e:
            if self.timestamp_policy is TimestampPolicy.STRICT:
                raise CopyError(f"failed to preserve modification time of {dst}: {e}") from e
            logger.warning(
                "%sCould not preserve modification time of %s: %s", self._prefix(), dst, e
            )
