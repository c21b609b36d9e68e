"""Configuration management for backstage.

Loads YAML settings (settings.yaml) and environment variables (.env)
into a typed Config object. Property getters provide safe access with
sensible defaults for the database, command routing, moderators,
per-feature switches and logging.

Key classes:
    Config: Central configuration manager.

Key functions:
    get_config: Singleton accessor for the global Config instance.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional

import structlog
import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .logging_config import SUBSYSTEMS

logger = structlog.get_logger("backstage.bot")

FEATURES = ("command", "counter", "badword")


class Config:
    """Central configuration manager for backstage.

    Loads settings.yaml and .env from the config directory. Provides
    typed property accessors for every configurable subsystem.

    Args:
        config_dir: Path to the config directory. Defaults to
            ``<repo_root>/config/``.
        settings: Pre-parsed settings, bypassing settings.yaml.
    """

    def __init__(self, config_dir: Optional[Path] = None, settings: Optional[dict] = None):
        if config_dir is None:
            config_dir = Path(__file__).parent.parent / "config"
        self.config_dir = config_dir

        # Load environment variables
        env_file = config_dir / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        if settings is not None:
            self.settings = settings
        else:
            self.settings = self._load_yaml("settings.yaml")

    def _load_yaml(self, filename: str) -> dict:
        """Load a YAML configuration file."""
        filepath = self.config_dir / filename
        if filepath.exists():
            with open(filepath, "r") as f:
                return yaml.safe_load(f) or {}
        return {}

    def validate(self):
        """Validate critical settings at startup.

        Logs warnings/errors but does not raise -- the bot starts with
        defaults for anything malformed.
        """
        moderators = self.settings.get("moderators", {})
        if not isinstance(moderators, dict):
            logger.error("moderators_invalid_type", type=type(moderators).__name__)
        elif not moderators:
            logger.warning("no_moderators", msg="Only channel owners can edit entities")

        features = self.settings.get("features", {})
        if isinstance(features, dict):
            for name in features:
                if name not in FEATURES:
                    logger.warning("config_unknown_feature", feature=name, valid=list(FEATURES))

        subsystem_levels = self.logging_subsystem_levels
        if isinstance(subsystem_levels, dict):
            for name in subsystem_levels:
                if name not in SUBSYSTEMS:
                    logger.warning("config_unknown_subsystem", subsystem=name, valid=list(SUBSYSTEMS))

        prefix = self.settings.get("command_prefix")
        if prefix is not None and (not isinstance(prefix, str) or not prefix.strip()):
            logger.error("config_invalid_value", key="command_prefix", value=prefix)

    @property
    def database_path(self) -> Path:
        """SQLite database path. Env var BACKSTAGE_DATABASE takes precedence."""
        configured = os.environ.get("BACKSTAGE_DATABASE") or self.settings.get("database_path")
        if configured:
            return Path(configured).expanduser()
        return Path(__file__).parent.parent / "data" / "backstage.db"

    @property
    def command_prefix(self) -> str:
        """Leading text that marks a chat message as a command (default "!")."""
        prefix = self.settings.get("command_prefix", "!")
        if not isinstance(prefix, str) or not prefix.strip():
            raise ConfigurationError(
                f"command_prefix must be a non-empty string, got {prefix!r}",
                setting_name="command_prefix",
            )
        return prefix

    @property
    def moderators(self) -> Dict[str, List[str]]:
        """Per-channel moderator names, lower-cased."""
        moderators = self.settings.get("moderators", {})
        if not isinstance(moderators, dict):
            return {}
        return {
            channel: [str(name).lower() for name in (names or [])]
            for channel, names in moderators.items()
        }

    def is_moderator(self, channel: str, caller: str) -> bool:
        """Default authorization collaborator.

        The channel owner (``#name`` for caller ``name``) and anyone
        listed under ``moderators.<channel>`` count as moderators.
        """
        caller = caller.lower()
        if channel.lstrip("#").lower() == caller:
            return True
        return caller in self.moderators.get(channel, [])

    def feature_enabled(self, feature: str) -> bool:
        """Whether a feature's commands respond (default True)."""
        features = self.settings.get("features", {})
        if not isinstance(features, dict):
            return True
        feature_config = features.get(feature, {})
        if isinstance(feature_config, dict):
            return feature_config.get("enabled", True) is not False
        return feature_config is not False

    @property
    def shutdown_timeout(self) -> float:
        """Seconds to wait for in-flight usage increments on shutdown (default 5)."""
        return float(self.settings.get("shutdown_timeout", 5))

    @property
    def log_dir(self) -> Path:
        """Get log directory path."""
        configured = self.settings.get("log_dir")
        if configured:
            return Path(configured).expanduser()
        return Path(__file__).parent.parent / "logs"

    @property
    def logging_level(self) -> str:
        """Global log level (default INFO) for the console and backstage.log."""
        log_config = self.settings.get("logging", {})
        return log_config.get("level", "INFO")

    @property
    def logging_subsystem_levels(self) -> dict:
        """Per-subsystem log level overrides. E.g. {"registry": "DEBUG"}."""
        log_config = self.settings.get("logging", {})
        return log_config.get("subsystem_levels", {})

    @property
    def logging_max_file_size_mb(self) -> int:
        """Max size per log file in MB before rotation (default 10)."""
        log_config = self.settings.get("logging", {})
        return log_config.get("max_file_size_mb", 10)

    @property
    def logging_backup_count(self) -> int:
        """Number of rotated log files to keep (default 5)."""
        log_config = self.settings.get("logging", {})
        return log_config.get("backup_count", 5)


_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config
