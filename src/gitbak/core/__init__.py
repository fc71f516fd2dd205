"""Core functionality for gitbak."""

from .backup import BackupManager
from .config import Config
from .copier import TreeCopier
from .ignore import IgnoreRules, should_ignore
from .paths import PathResolver
from .repository import GitRepository
from .restore import RestoreManager

__all__ = [
    "BackupManager",
    "Config",
    "GitRepository",
    "IgnoreRules",
    "PathResolver",
    "RestoreManager",
    "TreeCopier",
    "should_ignore",
]
