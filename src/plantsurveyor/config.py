"""
PlantSurveyor configuration.

Hierarchical loading, lowest to highest precedence:
1. Class defaults
2. JSON config file (keys starting with '_' are treated as comments)
3. Environment variables named PLANTSURVEYOR_<KEY>

Usage:
    from plantsurveyor.config import get_config

    config = get_config()
    db_path = config.database_path
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


class PlantSurveyorConfig:
    """Layered configuration for the anchoring engine and its store."""

    ENV_PREFIX = "PLANTSURVEYOR_"

    DEFAULTS: Dict[str, Any] = {
        # Storage
        'database_path': None,             # None = ~/.plantsurveyor/plantsurveyor.sqlite

        # Point naming
        'point_name_template': 'Tree {id}',

        # Reconstruction
        'chain_tolerance': 1e-5,
        'verify_chain_on_recovery': True,

        # Logging and debug
        'debug_mode': False,
        'log_level': 'INFO',
        'log_json': False,
    }

    def __init__(self, config_file: Optional[Union[str, Path]] = None, overrides: Optional[Dict[str, Any]] = None):
        """
        Initialize configuration.

        Args:
            config_file: Optional JSON file. Defaults to PLANTSURVEYOR_CONFIG_FILE
                or ./plantsurveyor_config.json when present.
            overrides: Values applied last, mainly for tests and embedding.
        """
        self._config: Dict[str, Any] = {}
        self._config_file = config_file
        self._overrides = dict(overrides or {})
        self._load_configuration()

    def _load_configuration(self):
        self._config = self.DEFAULTS.copy()
        self._load_from_json_config()
        self._load_from_environment()
        self._config.update(self._overrides)
        self._validate_config()

        if self.debug_mode:
            logger.info(f"plantsurveyor configuration loaded: {len(self._config)} settings")

    def _resolve_config_path(self) -> Optional[Path]:
        if self._config_file:
            return Path(self._config_file)
        env_path = os.getenv(f"{self.ENV_PREFIX}CONFIG_FILE")
        if env_path:
            return Path(env_path)
        local = Path.cwd() / "plantsurveyor_config.json"
        return local if local.exists() else None

    def _load_from_json_config(self):
        config_path = self._resolve_config_path()
        if config_path is None:
            return
        if not config_path.exists():
            logger.warning(f"Config file not found: {config_path}")
            return

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                json_config = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load JSON config from {config_path}: {e}")
            return

        if not isinstance(json_config, dict):
            logger.warning(f"Ignoring config file {config_path}: top level must be an object")
            return

        # Allow a sectioned file shared with other tools
        section = json_config.get('plantsurveyor', json_config)
        filtered_config = {k: v for k, v in section.items() if not k.startswith('_')}
        self._config.update(filtered_config)
        logger.debug(f"Loaded JSON config from {config_path}")

    def _load_from_environment(self):
        for key in list(self._config.keys()):
            env_key = f"{self.ENV_PREFIX}{key.upper()}"
            env_value = os.getenv(env_key)
            if env_value is not None:
                converted_value = self._convert_env_value(env_value, self._config[key])
                self._config[key] = converted_value
                logger.debug(f"Loaded environment variable: {env_key} = {converted_value}")

    def _convert_env_value(self, env_value: str, default_value: Any) -> Any:
        """Convert environment variable string to the default's type."""
        if isinstance(default_value, bool):
            return env_value.lower() in ('true', '1', 'yes', 'on')
        elif isinstance(default_value, int):
            try:
                return int(env_value)
            except ValueError:
                logger.warning(f"Invalid integer value in environment: {env_value}")
                return default_value
        elif isinstance(default_value, float):
            try:
                return float(env_value)
            except ValueError:
                logger.warning(f"Invalid float value in environment: {env_value}")
                return default_value
        else:
            return env_value

    def _validate_config(self):
        tolerance = self._config.get('chain_tolerance')
        if not isinstance(tolerance, (int, float)) or isinstance(tolerance, bool) or tolerance <= 0:
            logger.warning(f"Invalid chain_tolerance {tolerance!r}, using 1e-5")
            self._config['chain_tolerance'] = 1e-5

        template = self._config.get('point_name_template')
        if not isinstance(template, str) or '{id}' not in template:
            logger.warning(f"Invalid point_name_template {template!r}, using 'Tree {{id}}'")
            self._config['point_name_template'] = 'Tree {id}'

    def get(self, key: str, default: Any = None) -> Any:
        return self._config.get(key, default)

    def set(self, key: str, value: Any):
        """Set configuration value (runtime only)."""
        self._config[key] = value

    def get_all(self) -> Dict[str, Any]:
        return self._config.copy()

    def reload(self):
        self._load_configuration()

    @property
    def database_path(self) -> Path:
        configured = self._config.get('database_path')
        if configured:
            return Path(configured).expanduser()
        return Path.home() / ".plantsurveyor" / "plantsurveyor.sqlite"

    @property
    def point_name_template(self) -> str:
        return self._config.get('point_name_template', 'Tree {id}')

    def point_name(self, point_id: int) -> str:
        return self.point_name_template.format(id=point_id)

    @property
    def chain_tolerance(self) -> float:
        return float(self._config.get('chain_tolerance', 1e-5))

    @property
    def verify_chain_on_recovery(self) -> bool:
        return bool(self._config.get('verify_chain_on_recovery', True))

    @property
    def debug_mode(self) -> bool:
        return bool(self._config.get('debug_mode', False))

    @property
    def log_level(self) -> str:
        return str(self._config.get('log_level', 'INFO')).upper()

    @property
    def log_json(self) -> bool:
        return bool(self._config.get('log_json', False))

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {len(self._config)} settings>"


_global_config_instance = None


def get_config() -> PlantSurveyorConfig:
    """Get the shared configuration instance, building it on first use."""
    global _global_config_instance
    if _global_config_instance is None:
        _global_config_instance = PlantSurveyorConfig()
    return _global_config_instance


def reset_config() -> None:
    """Drop the shared instance so the next get_config() reloads from disk/env."""
    global _global_config_instance
    _global_config_instance = None
