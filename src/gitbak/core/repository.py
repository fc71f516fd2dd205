"""Git versioning of the backup root."""

from __future__ import annotations

import logging
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Callable, Union

from .errors import GitError

logger = logging.getLogger(__name__)


class GitRepository:
    """The backup root as a Git repository.

    Provides the few Git operations gitbak needs after a backup: staging
    everything under the root, committing with a timestamped message and
    pushing to the configured remote.

    Attributes:
        path (Path): Path to the Git repository.
    """

    def __init__(self, path: Union[str, Path], clock: Callable[[], datetime] = datetime.now):
        """Initialize repository."""
        self.path = Path(path).expanduser().resolve()
        self.name = self.path.name
        self.clock = clock

    def __str__(self) -> str:
        """Return string representation."""
        return f"GitRepository({self.path})"

    def __repr__(self) -> str:
        """Return string representation."""
        return self.__str__()

    def _run_git(self, *args: str) -> str:
        """Run a Git command and return its output."""
        command = " ".join(["git", "-C", str(self.path), *args])
        try:
            result = subprocess.run(
                ["git", "-C", str(self.path), *args],
                capture_output=True,
                text=True,
                check=True,
            )
            return result.stdout.strip()
        except FileNotFoundError as e:
            raise GitError("git executable not found", command=command, output=str(e))
        except subprocess.CalledProcessError as e:
            output = (e.stderr or "").strip() or (e.stdout or "").strip()
            if output:
                raise GitError(f"Git command failed: {output}", command=command, output=output)
            raise GitError("Git command failed with no output", command=command, output="")

    def add_all(self) -> None:
        """Stage every change under the repository."""
        self._run_git("add", "-A")

    def commit(self, message: str) -> bool:
        """Commit staged changes.

        Returns:
            bool: False if there was nothing to commit.

        Raises:
            GitError: If the commit fails for any other reason.
        """
        try:
            self._run_git("commit", "-m", message)
        except GitError as e:
            if "nothing to commit" in e.output or "nothing added to commit" in e.output:
                logger.info("Nothing to commit in %s", self.path)
                return False
            raise
        return True

    def push(self) -> None:
        """Push the current branch to its upstream."""
        self._run_git("push")

    def commit_message(self) -> str:
        """Return the message used for backup commits."""
        return f"gitbak backup: {self.clock().strftime('%Y-%m-%d %H:%M:%S')}"

    def commit_and_push(self, dry_run: bool = False, push: bool = True) -> bool:
        """Stage everything, commit with a timestamp and push.

        Args:
            dry_run: Log the Git commands instead of running them.
            push: Whether to push after committing.

        Returns:
            bool: True if a commit was created (or would be, in a dry run).

        Raises:
            GitError: If any Git command fails.

        Example:
            ```python
            repo = GitRepository("~/.gitbak")
            repo.commit_and_push(dry_run=True)
            ```
        """
        message = self.commit_message()
        if dry_run:
            logger.info("[dry-run] git -C %s add -A", self.path)
            logger.info('[dry-run] git -C %s commit -m "%s"', self.path, message)
            if push:
                logger.info("[dry-run] git -C %s push", self.path)
            return True

        self.add_all()
        committed = self.commit(message)
        if push:
            self.push()
        return committed
