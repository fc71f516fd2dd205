"""Backup functionality for gitbak.

This module mirrors every configured application's paths into the backup
root. For each application it runs the optional pre-backup hook, copies each
path under ``<backup-root>/<app>/<basename>`` while honoring the global
ignore rules, and gathers file metadata on the side. Once every application
has finished, the metadata is written to the manifest in one go.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from .config import AppConfig, Config
from .copier import CopyTask, TreeCopier
from .errors import BackupError, ConfigError, CopyError, HookError, MetadataError
from .hooks import HookRunner
from .ignore import IgnoreRules
from .metadata import (
    FileMetadata,
    XattrHandler,
    collect_metadata,
    default_xattr_handler,
    save_manifest,
)
from .paths import PathResolver

logger = logging.getLogger(__name__)


class AppState(str, Enum):
    """Lifecycle of one application during a backup run."""

    PENDING = "pending"
    HOOK_RUNNING = "hook-running"
    COPYING_PATHS = "copying-paths"
    DONE = "done"
    FAILED = "failed"


@dataclass
class AppResult:
    """Outcome of backing up one application."""

    name: str
    state: AppState = AppState.PENDING
    metadata: List[FileMetadata] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    copied: List[Path] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Whether the application finished without errors."""
        return self.state is AppState.DONE


@dataclass
class BackupResult:
    """Outcome of a whole backup run."""

    backup_root: Path
    dry_run: bool
    apps: List[AppResult] = field(default_factory=list)
    manifest: Optional[Path] = None

    @property
    def metadata(self) -> List[FileMetadata]:
        """Metadata of every application, in application order."""
        return [meta for app in self.apps for meta in app.metadata]

    @property
    def failures(self) -> List[str]:
        """Every error message, in application order."""
        return [error for app in self.apps for error in app.errors]

    @property
    def ok(self) -> bool:
        """Whether every application succeeded."""
        return all(app.ok for app in self.apps)


class BackupManager:
    """Manages backups of configured applications.

    This class handles the backup process, including:
    - Running each application's pre-backup hook
    - Resolving configured paths against the home directory
    - Skipping missing or globally ignored paths
    - Copying files and directory trees into the backup root
    - Collecting metadata and writing the manifest
    - Supporting dry-run mode and parallel applications

    Attributes:
        config (Config): Configuration with applications and ignore rules.
        resolver (PathResolver): Expands ``~`` and relative paths.
        hooks (HookRunner): Runs pre-backup hooks.
        xattr_handler (XattrHandler): Reads extended attributes.
        max_workers (int): Applications processed at the same time.
    """

    def __init__(
        self,
        config: Config,
        resolver: Optional[PathResolver] = None,
        hooks: Optional[HookRunner] = None,
        xattr_handler: Optional[XattrHandler] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        """Initialize the backup manager."""
        self.config = config
        self.resolver = resolver or PathResolver()
        self.hooks = hooks or HookRunner(self.resolver)
        self.xattr_handler = xattr_handler if xattr_handler is not None else default_xattr_handler()
        self.max_workers = max_workers or config.max_workers

    @property
    def backup_root(self) -> Path:
        """Absolute backup root."""
        return self.config.backup_root(self.resolver)

    def destination_for(self, app_name: str, source: Path) -> Path:
        """Return where ``source`` is stored for ``app_name``."""
        return self.backup_root / app_name / source.name

    def backup(self, dry_run: bool = False, apps: Optional[List[str]] = None) -> BackupResult:
        """Back up all (or the named) applications.

        Application failures are collected; the manifest is only written when
        every application succeeded, the run is not a dry run and at least
        one record was collected.

        Args:
            dry_run: Log intended actions without writing anything.
            apps: Restrict the run to these application names.

        Returns:
            BackupResult: Per-application outcomes and the manifest path.

        Raises:
            ConfigError: If an ignore rule is malformed or an app is unknown.
            BackupError: If any application failed, after all were processed.
        """
        rules = self.config.compile_ignores()
        names = self._select_apps(apps)
        result = BackupResult(backup_root=self.backup_root, dry_run=dry_run)

        if self.max_workers > 1 and len(names) > 1:
            result.apps = self._backup_parallel(names, rules, dry_run)
        else:
            result.apps = [self.backup_app(name, rules, dry_run) for name in names]

        failures = result.failures
        records = result.metadata
        if failures:
            raise BackupError(failures, result)

        if dry_run:
            logger.info("[dry-run] Would save metadata for %d entries", len(records))
        elif records:
            try:
                result.manifest = save_manifest(result.backup_root, records)
            except MetadataError as e:
                raise BackupError([f"failed to save metadata: {e}"], result) from e
            logger.info("Saved file metadata (%d entries)", len(records))
        return result

    def _select_apps(self, apps: Optional[List[str]]) -> List[str]:
        if not apps:
            return list(self.config.custom_apps)
        unknown = [name for name in apps if name not in self.config.custom_apps]
        if unknown:
            raise ConfigError(f"Unknown app(s): {', '.join(unknown)}")
        return [name for name in self.config.custom_apps if name in apps]

    def _backup_parallel(
        self, names: List[str], rules: IgnoreRules, dry_run: bool
    ) -> List[AppResult]:
        results: Dict[str, AppResult] = {}
        logger.debug("Backing up %d apps with %d workers", len(names), self.max_workers)
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_app = {
                executor.submit(self.backup_app, name, rules, dry_run): name for name in names
            }
            for future in as_completed(future_to_app):
                name = future_to_app[future]
                try:
                    results[name] = future.result()
                except Exception as e:
                    logger.error("Backup failed for '%s': %s", name, e, exc_info=True)
                    results[name] = AppResult(
                        name=name, state=AppState.FAILED, errors=[f"{name}: {e}"]
                    )
        return [results[name] for name in names]

    def backup_app(self, name: str, rules: IgnoreRules, dry_run: bool = False) -> AppResult:
        """Back up one application.

        Hook failures fail the application; copy failures fail the path and
        the application but the remaining paths are still copied.
        """
        app_config = self.config.get_app_config(name) or AppConfig()
        result = AppResult(name=name)
        logger.info("Processing custom app: %s", name)

        if app_config.pre_backup_script:
            result.state = AppState.HOOK_RUNNING
            try:
                self.hooks.run(name, app_config.pre_backup_script, dry_run)
            except HookError as e:
                logger.error("%s", e)
                result.errors.append(str(e))
                result.state = AppState.FAILED
                return result

        result.state = AppState.COPYING_PATHS
        copier = TreeCopier(self.config.preserve_timestamps, label=name)
        for raw_path in app_config.paths:
            self._backup_path(name, raw_path, rules, copier, dry_run, result)

        result.state = AppState.FAILED if result.errors else AppState.DONE
        logger.info("Finished processing custom app: %s", name)
        return result

    def _backup_path(
        self,
        name: str,
        raw_path: str,
        rules: IgnoreRules,
        copier: TreeCopier,
        dry_run: bool,
        result: AppResult,
    ) -> None:
        source = self.resolver.expand(raw_path)
        if not source.exists():
            logger.info("%s: Skipped %s (does not exist)", name, source)
            result.skipped.append(source)
            return

        is_dir = source.is_dir()
        ignored, rule = rules.match(source, is_dir=is_dir)
        if ignored:
            logger.info('%s: Ignored %s (matched global ignore pattern "%s")', name, source, rule)
            result.skipped.append(source)
            return

        prefix = f"{name}/{source.name}"
        root_meta = self._collect(name, source, prefix)

        task = CopyTask(source, self.destination_for(name, source), dry_run, rules)
        try:
            entries = copier.run(task)
        except CopyError as e:
            kind = "directory" if is_dir else "file"
            message = f"{name}: copying {kind} {source}: {e}"
            logger.error("%s", message)
            result.errors.append(message)
            return

        result.copied.append(source)
        if root_meta is not None:
            result.metadata.append(root_meta)
        for entry in entries:
            meta = self._collect(name, source / entry, f"{prefix}/{entry.as_posix()}")
            if meta is not None:
                result.metadata.append(meta)

    def _collect(self, name: str, path: Path, record_path: str) -> Optional[FileMetadata]:
        try:
            meta = collect_metadata(path, path.parent, self.xattr_handler)
        except MetadataError as e:
            logger.warning("%s: Failed to collect metadata for %s: %s", name, path, e)
            return None
        return replace(meta, path=record_path)
