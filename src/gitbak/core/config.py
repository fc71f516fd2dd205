"""Configuration management for gitbak."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .copier import TimestampPolicy
from .errors import ConfigError
from .ignore import IgnoreRules, MatchMode
from .paths import PathResolver

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "~/.config/gitbak/gitbak.json"

DEFAULT_CONFIG: Dict[str, Any] = {
    "backup_dir": "~/.gitbak",
    "custom_apps": {},
    "global_ignores": [".DS_Store", "Thumbs.db", "desktop.ini", "__pycache__/"],
    "ignore_mode": MatchMode.LAST_MATCH.value,
    "preserve_timestamps": TimestampPolicy.BEST_EFFORT.value,
    "max_workers": 1,
}


@dataclass
class AppConfig:
    """Paths backed up for one application."""

    paths: List[str] = field(default_factory=list)
    pre_backup_script: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Return the serialized form, omitting an empty hook."""
        data: Dict[str, Any] = {"paths": list(self.paths)}
        if self.pre_backup_script:
            data["pre_backup_script"] = self.pre_backup_script
        return data


class Config:
    """Configuration class for gitbak.

    Attributes:
        backup_dir (str): Backup root as written in the configuration.
        custom_apps (Dict[str, AppConfig]): Applications in file order.
        global_ignores (List[str]): Ignore rules applied to every path.
        ignore_mode (MatchMode): How negated rules interact with exclusions.
        preserve_timestamps (TimestampPolicy): Whether losing a modification
            time fails a copy.
        max_workers (int): Applications backed up in parallel.
        path (Optional[Path]): File the configuration was loaded from.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        """Initialize configuration from defaults, then ``data`` if given."""
        self.backup_dir: str = ""
        self.custom_apps: Dict[str, AppConfig] = {}
        self.global_ignores: List[str] = []
        self.ignore_mode: MatchMode = MatchMode.LAST_MATCH
        self.preserve_timestamps: TimestampPolicy = TimestampPolicy.BEST_EFFORT
        self.max_workers: int = 1
        self.path: Optional[Path] = None
        self._merge_config(DEFAULT_CONFIG)
        if data is not None:
            self._merge_config(data)

    @classmethod
    def from_file(cls, config_file: Union[str, Path]) -> "Config":
        """Create a configuration from a file.

        Raises:
            ConfigError: If the file cannot be read or is invalid.
        """
        config = cls()
        config.load_config(config_file)
        return config

    def load_config(self, config_file: Union[str, Path]) -> None:
        """Load configuration from a JSON (or YAML) file and merge it.

        Raises:
            ConfigError: If the file cannot be read or is invalid.
        """
        path = Path(config_file)
        try:
            with open(path, "r", encoding="utf-8") as f:
                if path.suffix in (".yaml", ".yml"):
                    user_config = yaml.safe_load(f)
                else:
                    user_config = json.load(f)
        except OSError as e:
            raise ConfigError(f"cannot read config file {path}: {e}") from e
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigError(f"cannot parse config file {path}: {e}") from e

        if user_config:
            self._merge_config(user_config)
        self.path = path
        logger.debug("Loaded configuration from %s", path)

    def _merge_config(self, config: Dict[str, Any]) -> None:
        """Merge configuration with current configuration."""
        if not isinstance(config, dict):
            raise ConfigError("Configuration must be a dictionary")

        if "backup_dir" in config:
            if not isinstance(config["backup_dir"], str) or not config["backup_dir"]:
                raise ConfigError("backup_dir must be a non-empty string")
            self.backup_dir = config["backup_dir"]

        if "global_ignores" in config:
            ignores = config["global_ignores"] or []
            if not isinstance(ignores, list) or not all(isinstance(p, str) for p in ignores):
                raise ConfigError("global_ignores must be a list of strings")
            self.global_ignores = list(ignores)

        if "ignore_mode" in config:
            try:
                self.ignore_mode = MatchMode(config["ignore_mode"])
            except ValueError:
                choices = ", ".join(m.value for m in MatchMode)
                raise ConfigError(f"ignore_mode must be one of: {choices}")

        if "preserve_timestamps" in config:
            try:
                self.preserve_timestamps = TimestampPolicy(config["preserve_timestamps"])
            except ValueError:
                choices = ", ".join(p.value for p in TimestampPolicy)
                raise ConfigError(f"preserve_timestamps must be one of: {choices}")

        if "max_workers" in config:
            workers = config["max_workers"]
            if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
                raise ConfigError("max_workers must be a positive integer")
            self.max_workers = workers

        if "custom_apps" in config:
            apps = config["custom_apps"] or {}
            if not isinstance(apps, dict):
                raise ConfigError("custom_apps must be a dictionary")
            for name, app_config in apps.items():
                if not isinstance(app_config, dict):
                    raise ConfigError(f"App configuration for {name} must be a dictionary")
                paths = app_config.get("paths", [])
                if not isinstance(paths, list) or not all(isinstance(p, str) for p in paths):
                    raise ConfigError(f"App paths for {name} must be a list of strings")
                script = app_config.get("pre_backup_script")
                if script is not None and not isinstance(script, str):
                    raise ConfigError(f"pre_backup_script for {name} must be a string")
                self.custom_apps[name] = AppConfig(
                    paths=list(paths), pre_backup_script=script or None
                )

    def validate(self) -> List[str]:
        """Validate configuration.

        Returns:
            List[str]: Problems found; empty when the configuration is usable.
        """
        errors = []
        if not self.backup_dir:
            errors.append("backup_dir must be set")
        try:
            IgnoreRules(self.global_ignores, self.ignore_mode)
        except ConfigError as e:
            errors.append(str(e))
        for name, app in self.custom_apps.items():
            if not name or "/" in name or name in (".", ".."):
                errors.append(f"app name {name!r} cannot be used as a directory name")
            if not app.paths:
                errors.append(f"app {name} has no paths")
        return errors

    def compile_ignores(self) -> IgnoreRules:
        """Compile the global ignore rules.

        Raises:
            IgnorePatternError: If a rule is malformed.
        """
        return IgnoreRules(self.global_ignores, self.ignore_mode)

    def backup_root(self, resolver: Optional[PathResolver] = None) -> Path:
        """Return the absolute backup root."""
        return (resolver or PathResolver()).expand(self.backup_dir)

    def get_app_config(self, app: str) -> Optional[AppConfig]:
        """Get configuration for a specific application."""
        return self.custom_apps.get(app)

    def add_path(
        self, app: str, path: Union[str, Path], resolver: Optional[PathResolver] = None
    ) -> bool:
        """Add a path to an application, creating the application if needed.

        The path is stored in absolute form and deduplicated on that form.

        Returns:
            bool: False if the path was already configured for the application.
        """
        resolver = resolver or PathResolver()
        absolute = str(resolver.absolute(path))
        app_config = self.custom_apps.setdefault(app, AppConfig())
        existing = {str(resolver.absolute(p)) for p in app_config.paths}
        if absolute in existing:
            logger.info("Path %s already exists in app %s. Nothing to do.", absolute, app)
            return False
        app_config.paths.append(absolute)
        logger.info("Added path %s to app %s.", absolute, app)
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Return the serialized configuration."""
        data: Dict[str, Any] = {
            "backup_dir": self.backup_dir,
            "custom_apps": {name: app.to_dict() for name, app in self.custom_apps.items()},
            "global_ignores": list(self.global_ignores),
        }
        if self.ignore_mode is not MatchMode.LAST_MATCH:
            data["ignore_mode"] = self.ignore_mode.value
        if self.preserve_timestamps is not TimestampPolicy.BEST_EFFORT:
            data["preserve_timestamps"] = self.preserve_timestamps.value
        if self.max_workers != 1:
            data["max_workers"] = self.max_workers
        return data

    def save(self, config_file: Optional[Union[str, Path]] = None) -> Path:
        """Write the configuration as JSON with 2-space indentation.

        Raises:
            ConfigError: If no destination is known or the file cannot be written.
        """
        target = Path(config_file) if config_file is not None else self.path
        if target is None:
            raise ConfigError("No configuration file to save to")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "w", encoding="utf-8") as f:
                if target.suffix in (".yaml", ".yml"):
                    yaml.safe_dump(self.to_dict(), f, sort_keys=False)
                else:
                    json.dump(self.to_dict(), f, indent=2)
                    f.write("\n")
        except OSError as e:
            raise ConfigError(f"cannot write config file {target}: {e}") from e
        self.path = target
        return target
