"""Restore functionality for gitbak."""

from __future__ import annotations

import logging
import os
import shutil
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from rich.console import Console

from .config import Config
from .copier import TreeCopier
from .errors import ConfigError, CopyError, MetadataError, RestoreError
from .metadata import (
    FileMetadata,
    XattrHandler,
    apply_metadata,
    default_xattr_handler,
    load_manifest,
)
from .paths import PathResolver

logger = logging.getLogger(__name__)

RESTORE_STATE_SUFFIX = ".gitbak-restore-state-"


class ConflictAction(str, Enum):
    """What to do with a destination that already exists."""

    SKIP = "s"
    OVERWRITE = "o"
    BACKUP_ASIDE = "b"

    @classmethod
    def from_response(cls, response: Optional[str]) -> "ConflictAction":
        """Map an operator answer to an action; anything unrecognised skips."""
        answer = (response or "").strip().lower()
        for action in cls:
            if action.value == answer:
                return action
        return cls.SKIP


class ConflictResolver:
    """Decides what happens to an existing restore destination."""

    def resolve(self, path: Path) -> ConflictAction:
        """Return the action for ``path``."""
        raise NotImplementedError


class PromptConflictResolver(ConflictResolver):
    """Asks the operator on the console, one question at a time."""

    _lock = threading.Lock()

    def __init__(self, console: Optional[Console] = None) -> None:
        """Initialize resolver."""
        self.console = console or Console()

    def resolve(self, path: Path) -> ConflictAction:
        """Prompt for ``s``, ``o`` or ``b``; end of input counts as skip."""
        with self._lock:
            try:
                response = self.console.input(
                    f"  [conflict] {path} already exists. (s)kip, (o)verwrite, (b)ackup? ",
                    markup=False,
                )
            except EOFError:
                response = ""
        return ConflictAction.from_response(response)


class ScriptedConflictResolver(ConflictResolver):
    """Replays prepared answers, then falls back to a fixed action.

    Used for tests and for non-interactive runs, e.g.
    ``ScriptedConflictResolver(default=ConflictAction.OVERWRITE)``.
    """

    def __init__(
        self,
        responses: Optional[Iterable[str]] = None,
        default: ConflictAction = ConflictAction.SKIP,
    ) -> None:
        """Initialize resolver."""
        self.responses = list(responses or [])
        self.default = default
        self.asked: List[Path] = []

    def resolve(self, path: Path) -> ConflictAction:
        """Return the next scripted action for ``path``."""
        self.asked.append(path)
        if self.responses:
            return ConflictAction.from_response(self.responses.pop(0))
        return self.default


class RestoreOutcome(str, Enum):
    """What happened to one configured path."""

    RESTORED = "restored"
    SKIPPED = "skipped"
    DRY_RUN = "dry-run"


@dataclass
class RestoreResult:
    """Outcome of a restore run."""

    dry_run: bool
    restored: List[Path] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)
    set_aside: List[Path] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Whether every path was handled without errors."""
        return not self.errors


class RestoreManager:
    """Manage restoring application paths from the backup root.

    Attributes:
        config (Config): Configuration listing applications and paths.
        resolver (PathResolver): Expands configured paths.
        conflicts (ConflictResolver): Decides about existing destinations.
        copier (TreeCopier): Copies content back.
        xattr_handler (XattrHandler): Writes extended attributes.
    """

    def __init__(
        self,
        config: Config,
        resolver: Optional[PathResolver] = None,
        conflicts: Optional[ConflictResolver] = None,
        copier: Optional[TreeCopier] = None,
        xattr_handler: Optional[XattrHandler] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize restore manager."""
        self.config = config
        self.resolver = resolver or PathResolver()
        self.conflicts = conflicts or PromptConflictResolver()
        self.copier = copier or TreeCopier(config.preserve_timestamps)
        self.xattr_handler = xattr_handler if xattr_handler is not None else default_xattr_handler()
        self.clock = clock

    @property
    def backup_root(self) -> Path:
        """Absolute backup root."""
        return self.config.backup_root(self.resolver)

    def load_metadata(self) -> Dict[str, FileMetadata]:
        """Load the manifest keyed by record path; failures only warn."""
        try:
            records = load_manifest(self.backup_root)
        except MetadataError as e:
            logger.warning("Failed to load metadata: %s", e)
            return {}
        return {record.path: record for record in records}

    def restore(self, dry_run: bool = False, app: Optional[str] = None) -> RestoreResult:
        """Restore every configured path of all (or one) application.

        Args:
            dry_run: Log intended actions without touching the filesystem.
            app: Restore only this application.

        Returns:
            RestoreResult: Restored, skipped and set-aside paths.

        Raises:
            ConfigError: If ``app`` is not configured.
            RestoreError: If any path failed, after all were processed.
        """
        if app is not None and app not in self.config.custom_apps:
            raise ConfigError(f"Unknown app: {app}")

        metadata = self.load_metadata()
        result = RestoreResult(dry_run=dry_run)

        for name, app_config in self.config.custom_apps.items():
            if app is not None and name != app:
                continue
            logger.info("Restoring app: %s", name)
            for raw_path in app_config.paths:
                self._restore_configured_path(name, raw_path, metadata, dry_run, result)

        if result.errors:
            raise RestoreError(result.errors, result)
        return result

    def _restore_configured_path(
        self,
        name: str,
        raw_path: str,
        metadata: Dict[str, FileMetadata],
        dry_run: bool,
        result: RestoreResult,
    ) -> None:
        destination = self.resolver.expand(raw_path)
        backup_path = self.locate_backup(name, destination)
        if backup_path is None:
            tried = self.backup_root / name / destination.name
            message = f"{name}: backup not found for {raw_path} (tried {tried})"
            logger.error("%s", message)
            result.errors.append(message)
            return

        try:
            outcome = self.restore_path(backup_path, destination, dry_run, result)
        except (CopyError, OSError) as e:
            message = f"{name}: restoring {raw_path}: {e}"
            logger.error("%s", message)
            result.errors.append(message)
            return

        if outcome is RestoreOutcome.SKIPPED:
            result.skipped.append(destination)
            return
        if outcome is RestoreOutcome.DRY_RUN:
            logger.info("[dry-run] Would apply metadata to %s", destination)
            return
        result.restored.append(destination)
        self._apply_path_metadata(name, destination, metadata)

    def locate_backup(self, app_name: str, destination: Path) -> Optional[Path]:
        """Find the backed-up counterpart of ``destination``.

        The primary location is ``<backup-root>/<app>/<basename>``; backups
        laid out with the full home-relative path are found as a fallback.
        """
        app_dir = self.backup_root / app_name
        primary = app_dir / destination.name
        if os.path.lexists(primary):
            return primary
        fallback = app_dir / self.resolver.relative_to_home(destination)
        if fallback != primary and os.path.lexists(fallback):
            logger.debug("Using full-path backup layout for %s: %s", destination, fallback)
            return fallback
        return None

    def restore_path(
        self,
        backup_path: Path,
        destination: Path,
        dry_run: bool = False,
        result: Optional[RestoreResult] = None,
    ) -> RestoreOutcome:
        """Restore one backed-up file or directory to ``destination``.

        An existing destination goes through the conflict resolver first.
        Directories are copied without ignore rules.

        Raises:
            CopyError: If copying fails.
            OSError: If setting the existing destination aside fails.
        """
        is_dir = backup_path.is_dir() and not backup_path.is_symlink()
        if dry_run:
            kind = "directory" if is_dir else "file"
            logger.info("[dry-run] Would restore %s %s → %s", kind, backup_path, destination)
            return RestoreOutcome.DRY_RUN

        if os.path.lexists(destination):
            action = self.conflicts.resolve(destination)
            if action is ConflictAction.SKIP:
                logger.info("[skipped] %s", destination)
                return RestoreOutcome.SKIPPED
            if action is ConflictAction.BACKUP_ASIDE:
                aside = self.set_aside(destination)
                if result is not None:
                    result.set_aside.append(aside)
            elif is_dir != (destination.is_dir() and not destination.is_symlink()):
                self._remove(destination)

        if is_dir:
            logger.info("[restoring directory] %s", destination)
            self.copier.copy_dir(backup_path, destination)
        else:
            self.copier.copy_file_as(backup_path, destination)
        logger.info("[restored] %s", destination)
        return RestoreOutcome.RESTORED

    def set_aside(self, destination: Path) -> Path:
        """Rename an existing destination with a timestamped suffix.

        A counter is appended when an earlier copy with the same timestamp is
        already in place.
        """
        stamp = self.clock().strftime("%Y-%m-%dT%H:%M:%S")
        base = f"{destination.name}{RESTORE_STATE_SUFFIX}{stamp}"
        aside = destination.with_name(base)
        counter = 0
        while os.path.lexists(aside):
            counter += 1
            aside = destination.with_name(f"{base}-{counter}")
        os.rename(destination, aside)
        logger.info("[backup] created backup at %s", aside)
        return aside

    def _remove(self, path: Path) -> None:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()

    def _apply_path_metadata(
        self,
        name: str,
        destination: Path,
        metadata: Dict[str, FileMetadata],
    ) -> None:
        """Reapply manifest records of one restored path, deepest first."""
        prefix = f"{name}/{destination.name}"
        if prefix not in metadata:
            logger.warning("No metadata recorded for %s", prefix)
        records = [meta for path, meta in metadata.items() if path.startswith(prefix + "/")]
        if prefix in metadata:
            records.insert(0, metadata[prefix])

        for meta in reversed(records):
            rebased = replace(meta, path=meta.path[len(name) + 1 :])
            try:
                apply_metadata(destination.parent, rebased, xattr_handler=self.xattr_handler)
            except MetadataError as e:
                target = destination.parent / rebased.path
                logger.warning("Failed to apply metadata to %s: %s", target, e)
