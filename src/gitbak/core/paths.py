"""Home-directory aware path resolution."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Union

PathLike = Union[str, Path]


class PathResolver:
    """Resolve configured paths against a home and a working directory.

    Both directories are fixed at construction so that orchestrators never
    read the process environment on their own and tests can point the whole
    engine at a fake home.

    Attributes:
        home (Path): Directory that ``~`` and relative config paths expand to.
        cwd (Path): Directory that relative ``add`` arguments resolve against.
    """

    def __init__(self, home: Optional[PathLike] = None, cwd: Optional[PathLike] = None) -> None:
        """Initialize resolver."""
        self.home = Path(home) if home is not None else Path.home()
        self.cwd = Path(cwd) if cwd is not None else Path.cwd()

    def __repr__(self) -> str:
        """Return string representation."""
        return f"PathResolver(home={self.home}, cwd={self.cwd})"

    def _expand_user(self, raw: str) -> Optional[Path]:
        if raw == "~":
            return self.home
        if raw.startswith("~/"):
            return self.home / raw[2:]
        return None

    def expand(self, raw: PathLike) -> Path:
        """Expand a configured path.

        ``~`` and ``~/x`` expand to the home directory, any other relative
        path is taken relative to the home directory, and absolute paths are
        returned unchanged.

        Example:
            ```python
            resolver = PathResolver(home="/home/me")
            resolver.expand("~/.vimrc")     # /home/me/.vimrc
            resolver.expand(".config/nvim")  # /home/me/.config/nvim
            resolver.expand("/etc/hosts")    # /etc/hosts
            ```
        """
        raw = str(raw)
        expanded = self._expand_user(raw)
        if expanded is not None:
            return expanded
        path = Path(raw)
        if not path.is_absolute():
            return self.home / path
        return path

    def absolute(self, raw: PathLike) -> Path:
        """Return the absolute form of a user-supplied path.

        Unlike :meth:`expand`, relative paths resolve against the working
        directory. Used when adding a path to an application.
        """
        raw = str(raw)
        expanded = self._expand_user(raw)
        if expanded is not None:
            return expanded
        path = Path(raw)
        if not path.is_absolute():
            path = self.cwd / path
        return Path(os.path.normpath(path))

    def relative_to_home(self, path: Path) -> Path:
        """Return ``path`` relative to the home directory, or without its anchor."""
        try:
            return path.relative_to(self.home)
        except ValueError:
            return Path(*path.parts[1:]) if path.is_absolute() else path
