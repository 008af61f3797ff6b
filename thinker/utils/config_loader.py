"""Configuration loader for thinker."""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import yaml
from pydantic import ValidationError

from thinker.models.config import AppConfig

log = structlog.stdlib.get_logger()


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class ConfigLoader:
    """Loads and validates application configuration from YAML files and environment variables."""

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        """Initialize the ConfigLoader.

        Args:
            config_dir: Directory searched for ``<env>.yaml``. Defaults to the
                repository's ``config`` directory.
        """
        self.env_var_pattern = re.compile(
            r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}"
        )
        self.config_dir = config_dir or Path(__file__).parent.parent.parent / "config"

    def load_config(self, config_path: Optional[str] = None) -> AppConfig:
        """Load configuration from YAML file with environment variable overrides.

        An explicit ``config_path`` must exist. Without one, the file selected
        by THINKER_ENV (falling back to default.yaml) is used when present,
        otherwise only defaults and environment variables apply.

        Args:
            config_path: Path to the configuration YAML file

        Returns:
            AppConfig: Validated application configuration

        Raises:
            ConfigurationError: If the file is missing, unreadable or invalid
        """
        if config_path is None:
            config_path = self._get_default_config_path()

        if config_path is None:
            log.debug("no_configuration_file", config_dir=str(self.config_dir))
            config_dict: Dict[str, Any] = {}
        else:
            log.debug("loading_configuration", config_path=config_path)
            config_dict = self._substitute_env_vars(self._load_yaml_file(config_path))

        try:
            app_config = AppConfig(**config_dict)
            log.debug("configuration_loaded_successfully")
            return app_config
        except ValidationError as e:
            log.error("configuration_validation_failed", error=str(e))
            raise ConfigurationError(f"Configuration validation failed: {e}") from e

    def _get_default_config_path(self) -> Optional[str]:
        """Get the configuration file path selected by THINKER_ENV, if any."""
        env = os.getenv("THINKER_ENV", "default")
        config_file = self.config_dir / f"{env}.yaml"

        if not config_file.exists():
            config_file = self.config_dir / "default.yaml"

        if not config_file.exists():
            return None

        return str(config_file)

    def _load_yaml_file(self, config_path: str) -> Dict[str, Any]:
        """Load YAML configuration file.

        Raises:
            ConfigurationError: If file cannot be read or parsed
        """
        try:
            with open(config_path, "r") as f:
                config_dict = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML file {config_path}: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to load configuration file {config_path}: {e}")

        if config_dict is None:
            return {}
        if not isinstance(config_dict, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {config_path}")

        log.debug("yaml_file_loaded", config_path=config_path)
        return config_dict

    def _substitute_env_vars(self, config: Any) -> Any:
        """Expand ``${VAR}`` and ``${VAR:-default}`` in every string of a loaded file.

        Credentials are usually kept out of the file this way, e.g.
        ``password: ${REPLICA_PASSWORD}``.

        Raises:
            ConfigurationError: If a referenced variable is unset and has no default
        """
        if isinstance(config, dict):
            return {key: self._substitute_env_vars(value) for key, value in config.items()}
        if isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        if isinstance(config, str):
            return self.env_var_pattern.sub(self._expand, config)
        return config

    @staticmethod
    def _expand(match: re.Match) -> str:
        name, default = match.group("name"), match.group("default")
        value = os.getenv(name, default)
        if value is None:
            raise ConfigurationError(
                f"Required environment variable not set: {name}. "
                f"Set it or give a default with ${{{name}:-value}}."
            )
        return value

    def validate_config(self, config: AppConfig) -> list[str]:
        """Validate configuration and return any warnings.

        Pydantic handles field bounds; this covers relationships between fields.

        Args:
            config: Application configuration to validate

        Returns:
            List of warning messages (empty if no warnings)
        """
        warnings = []

        if config.sync.write_batch_size > config.sync.batch_size:
            warnings.append(
                f"write_batch_size ({config.sync.write_batch_size}) is larger than "
                f"batch_size ({config.sync.batch_size}); writes will lag reads"
            )

        if config.sync.base_delay > config.sync.max_delay:
            warnings.append(
                f"base_delay ({config.sync.base_delay}) exceeds max_delay "
                f"({config.sync.max_delay}); every retry waits max_delay"
            )

        if (
            config.source.address == config.target.address
            and config.source.db is not None
            and config.source.db == config.target.db
        ):
            warnings.append(
                f"source and target both point at {config.source.address}/{config.source.db}"
            )

        if warnings:
            log.warning("configuration_validation_warnings", warnings=warnings)

        return warnings
