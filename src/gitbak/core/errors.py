"""Error types for gitbak."""

from __future__ import annotations

from typing import Any, List, Optional


class GitbakError(Exception):
    """Base class for all gitbak errors."""


class ConfigError(GitbakError):
    """Configuration could not be read or is invalid."""


class IgnorePatternError(ConfigError):
    """An ignore rule is not a valid glob pattern."""

    def __init__(self, pattern: str, reason: str) -> None:
        """Initialize error."""
        super().__init__(f"invalid ignore pattern {pattern!r}: {reason}")
        self.pattern = pattern
        self.reason = reason


class CopyError(GitbakError):
    """Copying a file or directory tree failed."""


class MetadataError(GitbakError):
    """Collecting, applying or persisting file metadata failed."""


class HookError(GitbakError):
    """A pre-backup hook exited with a non-zero status."""

    def __init__(self, message: str, command: str, returncode: int, output: str = "") -> None:
        """Initialize error."""
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.output = output


class GitError(GitbakError):
    """A git command run against the backup root failed."""

    def __init__(self, message: str, command: str, output: str) -> None:
        """Initialize error."""
        super().__init__(message)
        self.command = command
        self.output = output


class RunError(GitbakError):
    """Summary of every failure collected during one run.

    Attributes:
        failures: One message per failed application or path, in the order
            the failures were recorded.
        result: The run result, so callers can still report what succeeded.
    """

    operation = "run"

    def __init__(self, failures: List[str], result: Optional[Any] = None) -> None:
        """Initialize error."""
        self.failures = list(failures)
        self.result = result
        lines = "\n".join(f"  - {failure}" for failure in self.failures)
        super().__init__(f"{len(self.failures)} error(s) during {self.operation}:\n{lines}")


class BackupError(RunError):
    """One or more applications failed to back up."""

    operation = "backup"


class RestoreError(RunError):
    """One or more paths failed to restore."""

    operation = "restore"
