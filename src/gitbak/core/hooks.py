"""Pre-backup hook execution."""

from __future__ import annotations

import logging
import subprocess
from typing import List, Optional

from .errors import HookError
from .paths import PathResolver

logger = logging.getLogger(__name__)


class HookRunner:
    """Runs an application's pre-backup shell command.

    The command goes through ``bash -c`` in the caller's working directory.
    Output is captured and then logged one line at a time, so logs stay
    grouped per application even when several hooks run side by side.
    """

    def __init__(self, resolver: Optional[PathResolver] = None, shell: str = "bash") -> None:
        """Initialize hook runner."""
        self.resolver = resolver or PathResolver()
        self.shell = shell

    def expand(self, command: str) -> str:
        """Expand a leading ``~/`` in the command to the home directory."""
        head, sep, rest = command.strip().partition(" ")
        if head == "~" or head.startswith("~/"):
            head = str(self.resolver.expand(head))
        return head + sep + rest

    def run(self, app_name: str, command: str, dry_run: bool = False) -> List[str]:
        """Run the hook and return its output lines.

        Raises:
            HookError: If the command cannot be started or exits non-zero.
        """
        expanded = self.expand(command)
        logger.info("%s: Running pre-backup script: %s", app_name, expanded)
        if dry_run:
            logger.info("%s: [dry-run] Skipping pre-backup script", app_name)
            return []

        try:
            result = subprocess.run(
                [self.shell, "-c", expanded],
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            raise HookError(
                f"{app_name}: pre-backup script could not start: {e}",
                command=expanded,
                returncode=-1,
            ) from e

        lines: List[str] = []
        for stream, text in (("stdout", result.stdout), ("stderr", result.stderr)):
            for line in text.strip().splitlines():
                logger.info("%s: Pre-backup script %s: %s", app_name, stream, line)
                lines.append(line)

        if result.returncode != 0:
            raise HookError(
                f"{app_name}: pre-backup script failed with exit status {result.returncode}",
                command=expanded,
                returncode=result.returncode,
                output=f"stdout: {result.stdout}\nstderr: {result.stderr}",
            )
        return lines
