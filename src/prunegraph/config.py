# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Configuration loading and validation for prunegraph."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".prunegraph.yml"


class ConfigurationError(Exception):
    """Raised when configuration validation fails critically."""

    pass


class Config:
    """Configuration for a prunegraph analysis run.

    Loads configuration from .prunegraph.yml with validation and defaults.
    Invalid values are logged and replaced by their defaults; only an
    explicitly requested config file that does not exist is fatal.
    """

    DEFAULTS: Dict[str, Any] = {
        "similarity_threshold": 0.8,
        "shingle_size": 5,
        "min_duplicate_tokens": 8,
        "ignore_patterns": [],
        "entry_points": [],  # file globs or "path::symbol"
        "unique_entry_points": [],  # names that only one file may export
        "exports_are_roots": True,
        "discover_entry_points": True,
        "languages": [],  # empty = every registered profile
        "max_workers": 0,  # 0 = os.cpu_count()
        "max_file_size_bytes": 10 * 1024 * 1024,
        "timeout_seconds": 0.0,  # 0 = no wall-clock budget
        "verify_command": "",
        "verify_timeout_seconds": 600,
        "report_path": ".prunegraph/report.json",
    }

    def __init__(
        self,
        config_path: Optional[Path] = None,
        overrides: Optional[Dict[str, Any]] = None,
        required: bool = False,
    ):
        """Initialize configuration.

        Args:
            config_path: Path to configuration file. If None, uses
                .prunegraph.yml in the current directory.
            overrides: Values that take precedence over the file (CLI flags).
                None values are ignored.
            required: Raise ConfigurationError if config_path does not exist.
        """
        if config_path is None:
            config_path = Path.cwd() / CONFIG_FILENAME

        self.config_path = config_path
        self._config: Dict[str, Any] = {}

        if required and not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        self._load_config()
        if overrides:
            self.apply_overrides(overrides)

    @classmethod
    def for_project(
        cls, project_root: Path, overrides: Optional[Dict[str, Any]] = None
    ) -> "Config":
        """Load the configuration file that lives at the project root."""
        return cls(config_path=project_root / CONFIG_FILENAME, overrides=overrides)

    def _load_config(self) -> None:
        """Load and validate configuration from file."""
        self._config = self._defaults()

        if not self.config_path.exists():
            logger.info(f"Configuration file not found at {self.config_path}, using defaults")
            return

        try:
            with open(self.config_path, encoding="utf-8") as f:
                loaded_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.warning(
                f"Error parsing configuration file {self.config_path}: {e}, using defaults"
            )
            return
        except OSError as e:
            logger.warning(
                f"Could not read configuration file {self.config_path}: {e}, using defaults"
            )
            return

        if loaded_config is None:
            logger.warning("Configuration file is empty, using defaults")
            return

        if not isinstance(loaded_config, dict):
            logger.warning(
                f"Configuration file must contain a YAML dictionary, "
                f"got {type(loaded_config)}, using defaults"
            )
            return

        self._validate_and_merge(loaded_config)

    def apply_overrides(self, overrides: Dict[str, Any]) -> None:
        """Validate and merge values over the loaded ones; None values are ignored."""
        self._validate_and_merge({k: v for k, v in overrides.items() if v is not None})

    def _defaults(self) -> Dict[str, Any]:
        return {k: (list(v) if isinstance(v, list) else v) for k, v in self.DEFAULTS.items()}

    def _validate_and_merge(self, loaded_config: Dict[str, Any]) -> None:
        """Validate loaded configuration and merge over the current values.

        Invalid parameters are logged as warnings and left unchanged.
        """
        for key, value in loaded_config.items():
            if key not in self.DEFAULTS:
                logger.warning(f"Unknown configuration parameter '{key}', ignoring")
                continue

            value = self._coerce(key, value)
            if not self._validate_parameter(key, value):
                logger.warning(
                    f"Invalid value for '{key}': {value}, using default {self.DEFAULTS[key]}"
                )
                continue

            self._config[key] = value

    def _coerce(self, key: str, value: Any) -> Any:
        # YAML writes 1 for 1.0; accept ints where floats are expected
        if isinstance(self.DEFAULTS[key], float) and isinstance(value, int):
            if not isinstance(value, bool):
                return float(value)
        return value

    def _validate_parameter(self, key: str, value: Any) -> bool:
        """Validate a configuration parameter.

        Returns:
            True if valid, False if invalid
        """
        expected_type = type(self.DEFAULTS[key])
        if not isinstance(value, expected_type):
            return False
        if expected_type is int and isinstance(value, bool):
            return False

        if key == "similarity_threshold":
            return bool(0.0 < value <= 1.0)
        elif key in ("shingle_size", "min_duplicate_tokens", "max_file_size_bytes"):
            return bool(value > 0)
        elif key == "verify_timeout_seconds":
            return bool(value > 0)
        elif key == "max_workers":
            return bool(value >= 0)
        elif key == "timeout_seconds":
            return bool(value >= 0)
        elif key in ("ignore_patterns", "entry_points", "unique_entry_points", "languages"):
            return all(isinstance(item, str) for item in value)

        return True

    def snapshot(self) -> Dict[str, Any]:
        """Settings that influence analysis results (recorded in the report)."""
        return {
            "similarity_threshold": self.similarity_threshold,
            "shingle_size": self.shingle_size,
            "min_duplicate_tokens": self.min_duplicate_tokens,
            "entry_points": sorted(self.entry_points),
            "unique_entry_points": sorted(self.unique_entry_points),
            "exports_are_roots": self.exports_are_roots,
            "languages": sorted(self.languages),
            "ignore_patterns": sorted(self.ignore_patterns),
        }

    @property
    def similarity_threshold(self) -> float:
        """Minimum Jaccard similarity for near duplicates."""
        value = self._config["similarity_threshold"]
        assert isinstance(value, float)
        return value

    @property
    def shingle_size(self) -> int:
        """Token shingle size for near-duplicate signatures."""
        value = self._config["shingle_size"]
        assert isinstance(value, int)
        return value

    @property
    def min_duplicate_tokens(self) -> int:
        """Bodies with fewer tokens are not compared."""
        value = self._config["min_duplicate_tokens"]
        assert isinstance(value, int)
        return value

    @property
    def ignore_patterns(self) -> List[str]:
        """Additional glob patterns to ignore beyond .gitignore."""
        value = self._config["ignore_patterns"]
        assert isinstance(value, list)
        return value

    @property
    def entry_points(self) -> List[str]:
        """Configured entry points: file globs or "path::symbol"."""
        value = self._config["entry_points"]
        assert isinstance(value, list)
        return value

    @property
    def unique_entry_points(self) -> List[str]:
        """Symbol names that at most one file may declare."""
        value = self._config["unique_entry_points"]
        assert isinstance(value, list)
        return value

    @property
    def exports_are_roots(self) -> bool:
        """Whether explicitly exported symbols seed the traversal."""
        value = self._config["exports_are_roots"]
        assert isinstance(value, bool)
        return value

    @property
    def discover_entry_points(self) -> bool:
        """Whether pyproject.toml / package.json entry points are read."""
        value = self._config["discover_entry_points"]
        assert isinstance(value, bool)
        return value

    @property
    def languages(self) -> List[str]:
        """Language tags to profile; empty means all."""
        value = self._config["languages"]
        assert isinstance(value, list)
        return value

    @property
    def max_workers(self) -> int:
        """Worker pool size for scanning and extraction."""
        value = self._config["max_workers"]
        assert isinstance(value, int)
        return value or (os.cpu_count() or 1)

    @property
    def max_file_size_bytes(self) -> int:
        """Files larger than this are skipped."""
        value = self._config["max_file_size_bytes"]
        assert isinstance(value, int)
        return value

    @property
    def timeout_seconds(self) -> float:
        """Wall-clock budget for one analysis run; 0 disables it."""
        value = self._config["timeout_seconds"]
        assert isinstance(value, float)
        return value

    @property
    def verify_command(self) -> str:
        """Command whose exit status confirms an applied group."""
        value = self._config["verify_command"]
        assert isinstance(value, str)
        return value

    @property
    def verify_timeout_seconds(self) -> int:
        """Timeout for the verify command."""
        value = self._config["verify_timeout_seconds"]
        assert isinstance(value, int)
        return value

    @property
    def report_path(self) -> str:
        """Report location, relative to the project root unless absolute."""
        value = self._config["report_path"]
        assert isinstance(value, str)
        return value
