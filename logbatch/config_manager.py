#!/usr/bin/env python3
"""
Configuration Manager for Log Batch Upload System
Loads, validates, and manages YAML configuration

Configuration is validated eagerly: a malformed file stops the system
before any file is scanned or uploaded.
"""

import logging
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

import yaml

from logbatch.granularity import Granularity

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_BUCKETS = 4
DEFAULT_MAX_RETRIES = 3
LOAD_ERROR_POLICIES = ("proceed", "skip")
REMOTE_TYPES = ("s3", "local")

# Rendered into templates to check that they produce valid patterns
_SAMPLE_TIME = datetime(2015, 1, 22, 10, 0, 0)


class ConfigValidationError(Exception):
    """
    Raised when configuration validation fails.

    This exception is raised when the configuration file is malformed,
    missing required fields, or contains invalid values.
    """

    pass


class ConfigManager:
    """
    Manages system configuration from YAML file.

    Features:
    - Load and validate YAML config
    - Environment variable and ~ expansion in string values
    - Dot-notation access to nested values

    Example:
        >>> config = ConfigManager('/etc/log-batch-upload/config.yaml')
        >>> config.get('batch.granularity')
        'hour'
        >>> config.get('batch.lookback_buckets', 4)
        4

    Attributes:
        config_path (Path): Path to the configuration file
        config (dict): Loaded configuration dictionary
    """

    def __init__(self, config_path: str):
        """
        Initialize config manager and load configuration.

        Args:
            config_path: Path to YAML config file

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML syntax is invalid
            ConfigValidationError: If validation fails
        """
        self.config_path = Path(config_path)
        self.config = {}
        self.load_config()

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "ConfigManager":
        """Build a validated manager from an in-memory dict (no file)."""
        manager = cls.__new__(cls)
        manager.config_path = None
        manager.config = manager._expand_config(config)
        manager.validate_config(manager.config)
        return manager

    def load_config(self) -> Dict[str, Any]:
        """Load and validate configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, "r") as f:
            self.config = yaml.safe_load(f)

        if self.config is None:
            raise ConfigValidationError("Config file is empty or contains only whitespace")

        if not isinstance(self.config, dict):
            raise ConfigValidationError("Config file must contain a mapping at top level")

        self.config = self._expand_config(self.config)

        self.validate_config(self.config)
        logger.info(f"Loaded config from {self.config_path}")
        return self.config

    def _expand_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Expand environment variables everywhere except the batch templates."""
        return {
            key: value if key == "batch" else self._expand_env_vars(value)
            for key, value in config.items()
        }

    def _expand_env_vars(self, config: Any) -> Any:
        """
        Recursively expand ~ and ${VAR} in configuration string values.

        Examples:
            "${HOME}/tmp" -> "/home/ABC/tmp"
            "~/logs" -> "/home/ABC/logs"
        """
        if isinstance(config, dict):
            return {key: self._expand_env_vars(value) for key, value in config.items()}
        elif isinstance(config, list):
            return [self._expand_env_vars(item) for item in config]
        elif isinstance(config, str):
            expanded = os.path.expanduser(config)
            expanded = os.path.expandvars(expanded)
            return expanded
        else:
            return config

    def validate_config(self, config: Dict[str, Any]) -> bool:
        """Validate configuration schema and values."""
        required_keys = ["paths", "batch", "remote"]
        for key in required_keys:
            if key not in config:
                raise ConfigValidationError(f"Missing required key: {key}")
            if not isinstance(config[key], dict):
                raise ConfigValidationError(f"{key} must be a mapping")

        if "name" in config and (not isinstance(config["name"], str) or not config["name"]):
            raise ConfigValidationError("name must be a non-empty string")

        self._validate_paths_config(config["paths"])
        self._validate_batch_config(config["batch"])
        self._validate_remote_config(config["remote"])

        if "metadata" in config:
            self._validate_metadata_config(config["metadata"])

        if "schedule" in config:
            self._validate_schedule_config(config["schedule"])

        if "monitoring" in config:
            self._validate_monitoring_config(config["monitoring"])

        logger.info("Configuration validated successfully")
        return True

    def _validate_paths_config(self, paths_config: Dict[str, Any]) -> None:
        """Validate paths section (existence is checked by the pipeline)."""
        for key in ("base_work_dir", "tmp_dir"):
            if key not in paths_config:
                raise ConfigValidationError(f"Missing paths.{key}")
            value = paths_config[key]
            if not isinstance(value, str) or not value:
                raise ConfigValidationError(f"paths.{key} must be a non-empty string")

    def _validate_batch_config(self, batch_config: Dict[str, Any]) -> None:
        """Validate batch section."""
        for key in ("filename_template", "remote_path_template", "granularity", "max_upload_bytes"):
            if key not in batch_config:
                raise ConfigValidationError(f"Missing batch.{key}")

        for key in ("filename_template", "remote_path_template"):
            template = batch_config[key]
            if not isinstance(template, str) or not template:
                raise ConfigValidationError(f"batch.{key} must be a non-empty string")
            try:
                _SAMPLE_TIME.strftime(template)
            except ValueError as e:
                raise ConfigValidationError(f"batch.{key} is not a valid time template: {e}")

        try:
            re.compile(_SAMPLE_TIME.strftime(batch_config["filename_template"]))
        except re.error as e:
            raise ConfigValidationError(
                f"batch.filename_template does not render to a valid regular expression: {e}"
            )

        try:
            Granularity.parse(batch_config["granularity"])
        except ValueError as e:
            raise ConfigValidationError(f"batch.granularity: {e}")

        max_bytes = batch_config["max_upload_bytes"]
        if isinstance(max_bytes, bool) or not isinstance(max_bytes, int) or max_bytes <= 0:
            raise ConfigValidationError("batch.max_upload_bytes must be a positive integer")

        if "lookback_buckets" in batch_config:
            lookback = batch_config["lookback_buckets"]
            if isinstance(lookback, bool) or not isinstance(lookback, int) or lookback < 1:
                raise ConfigValidationError("batch.lookback_buckets must be an integer >= 1")

    def _validate_remote_config(self, remote_config: Dict[str, Any]) -> None:
        """Validate remote section."""
        remote_type = remote_config.get("type", "s3")
        if remote_type not in REMOTE_TYPES:
            raise ConfigValidationError(
                f"remote.type must be one of {list(REMOTE_TYPES)}, got: {remote_type}"
            )

        if remote_type == "s3":
            for key in ("bucket", "region"):
                if key not in remote_config:
                    raise ConfigValidationError(f"Missing remote.{key}")
                if not isinstance(remote_config[key], str) or not remote_config[key]:
                    raise ConfigValidationError(f"remote.{key} cannot be empty")

            if "max_retries" in remote_config:
                retries = remote_config["max_retries"]
                if isinstance(retries, bool) or not isinstance(retries, int) or retries < 1:
                    raise ConfigValidationError("remote.max_retries must be an integer >= 1")

        if remote_type == "local":
            root = remote_config.get("root")
            if not isinstance(root, str) or not root:
                raise ConfigValidationError("remote.root is required when remote.type='local'")

    def _validate_metadata_config(self, metadata_config: Dict[str, Any]) -> None:
        """Validate metadata section."""
        if not isinstance(metadata_config, dict):
            raise ConfigValidationError("metadata must be a mapping")

        policy = metadata_config.get("on_load_error", "proceed")
        if policy not in LOAD_ERROR_POLICIES:
            raise ConfigValidationError(
                f"metadata.on_load_error must be one of {list(LOAD_ERROR_POLICIES)}, got: {policy}"
            )

    def _validate_schedule_config(self, schedule_config: Dict[str, Any]) -> None:
        """Validate schedule section."""
        if not isinstance(schedule_config, dict):
            raise ConfigValidationError("schedule must be a mapping")

        if "interval_minutes" in schedule_config:
            interval = schedule_config["interval_minutes"]
            if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval <= 0:
                raise ConfigValidationError("schedule.interval_minutes must be a positive number")

    def _validate_monitoring_config(self, monitoring_config: Dict[str, Any]) -> None:
        """Validate monitoring section."""
        if "cloudwatch_enabled" in monitoring_config:
            if not isinstance(monitoring_config["cloudwatch_enabled"], bool):
                raise ConfigValidationError("monitoring.cloudwatch_enabled must be boolean")

    def get(self, key: str, default=None) -> Any:
        """
        Get configuration value by dot-separated key path.

        Args:
            key: Dot-separated key path (e.g., 'remote.bucket')
            default: Default value if key not found

        Returns:
            Configuration value or default if not found

        Examples:
            >>> config.get('paths.tmp_dir')  # '/data/tmp'
            >>> config.get('missing.key', 'default')  # 'default'
        """
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value
