from __future__ import annotations

import json
import logging
import os
import pathlib
import tempfile
from copy import deepcopy
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import aiofiles
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from shipwright.core.base import ShipwrightManager
from shipwright.utils.exceptions import ConfigurationError, ManagerInitializationError

DEFAULT_CONFIG_FILE = "shipwright.yaml"


class ConfigSchema(BaseModel):
    """Schema for validating configuration data.

    This model defines the expected structure and default values for the
    build configuration.
    """
    environment: Dict[str, Any] = Field(
        default_factory=lambda: {
            'project_path': '',
            'local_path': '',
            'solution': '',
            'author': '',
            'channel': 'Default',
            'version': '1.0.0',
            'mode': 'Dev',
            'log_level': 'Info',
            'platform': 'current',
        },
        description='Build environment',
    )
    logging: Dict[str, Any] = Field(
        default_factory=lambda: {
            'level': 'INFO',
            'format': 'text',
            'file': {
                'enabled': False,
                'path': 'logs/shipwright.log',
                'rotation': '10 MB',
                'retention': '30 days',
            },
            'console': {
                'enabled': True,
                'level': 'INFO',
            },
        },
        description='Logging settings',
    )
    build: Dict[str, Any] = Field(
        default_factory=lambda: {
            'root': '',
            'auto_run': False,
            'options': [],
            'scenes': [],
            'run_args': [],
            'backend': {
                'type': 'pyinstaller',
                'entry_point': 'main.py',
                'hidden_imports': [],
                'icon_path': None,
                'resources_dir': None,
            },
        },
        description='Build descriptor settings',
    )
    prefs: Dict[str, Any] = Field(
        default_factory=lambda: {
            'source': 'Local/Prefs.json',
            'target': 'Local/Build/Prefs.bin',
            'secret': 'shipwright',
            'strict': True,
        },
        description='Preferences preprocessing settings',
    )
    command: Dict[str, Any] = Field(
        default_factory=lambda: {
            'encoding': 'utf-8',
            'terminate_timeout': 5.0,
        },
        description='Command runner settings',
    )

    @field_validator('build')
    @classmethod
    def validate_build(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        """Validate that list settings of the build section are lists."""
        for key in ('options', 'scenes', 'run_args'):
            if not isinstance(value.get(key, []), list):
                raise ValueError(f'build.{key} must be a list.')
        return value

    @field_validator('command')
    @classmethod
    def validate_command(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        """Validate that the terminate timeout is a positive number."""
        timeout = value.get('terminate_timeout', 5.0)
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValueError('command.terminate_timeout must be a positive number.')
        return value


ConfigListener = Callable[[str, Any], Awaitable[None]]


class ConfigManager(ShipwrightManager):
    """Asynchronous configuration manager.

    This manager handles loading, validating, and providing access to
    configuration settings from files and environment variables.

    Attributes:
        _config_path: Path to the configuration file
        _env_prefix: Prefix for environment variables
        _config: The loaded configuration
        _loaded_from_file: Whether configuration was loaded from a file
        _env_vars_applied: Set of applied environment variables
        _listeners: Dictionary of config change listeners
    """

    def __init__(
            self,
            config_path: Optional[Union[str, pathlib.Path]] = None,
            env_prefix: str = 'SHIPWRIGHT_'
    ) -> None:
        """Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file
            env_prefix: Prefix for environment variables
        """
        super().__init__(name='config_manager')
        self._config_path = pathlib.Path(config_path) if config_path else pathlib.Path(DEFAULT_CONFIG_FILE)
        self._env_prefix = env_prefix
        self._config: Dict[str, Any] = {}
        self._loaded_from_file = False
        self._env_vars_applied: Set[str] = set()
        self._listeners: Dict[str, List[ConfigListener]] = {}

    async def initialize(self) -> None:
        """Initialize the configuration manager asynchronously.

        Loads configuration from default schema, file, and environment variables.

        Raises:
            ManagerInitializationError: If initialization fails
        """
        try:
            self._config = ConfigSchema().model_dump()
            await self._load_from_file()
            self._apply_env_vars()
            self._validate_config()

            self._set_ready(True)
        except Exception as e:
            raise ManagerInitializationError(
                f'Failed to initialize ConfigManager: {str(e)}',
                manager_name=self.name
            ) from e

    @property
    def config_path(self) -> pathlib.Path:
        return self._config_path

    async def _load_from_file(self) -> None:
        """Load configuration from a file asynchronously.

        Raises:
            ConfigurationError: If the file cannot be parsed
        """
        if not self._config_path.exists():
            return

        suffix = self._config_path.suffix.lower()
        if suffix not in ('.yaml', '.yml', '.json'):
            raise ConfigurationError(
                f'Unsupported config file format: {self._config_path.suffix}',
                config_key='config_path'
            )

        try:
            async with aiofiles.open(self._config_path, 'r', encoding='utf-8') as f:
                content = await f.read()
            file_config = json.loads(content) if suffix == '.json' else yaml.safe_load(content)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f'Error parsing config file {self._config_path}: {str(e)}',
                config_key='config_path'
            ) from e

        if file_config and not isinstance(file_config, dict):
            raise ConfigurationError(
                f'Config file {self._config_path} must contain a mapping',
                config_key='config_path'
            )
        if file_config:
            self._merge_config(file_config, self._config)
            self._loaded_from_file = True

    def _apply_env_vars(self) -> None:
        """Override configuration values with prefixed environment variables.

        ``SHIPWRIGHT_ENVIRONMENT_LOG_LEVEL`` maps onto ``environment.log_level``:
        name parts are joined greedily so that keys containing underscores match
        the existing configuration.
        """
        for env_name, env_value in os.environ.items():
            if not env_name.startswith(self._env_prefix):
                continue

            parts = env_name[len(self._env_prefix):].lower().split('_')
            path = self._match_path(self._config, parts)
            if not path:
                continue
            self._set_nested_value(self._config, path, self._parse_env_value(env_value))
            self._env_vars_applied.add(env_name)

    def _match_path(self, config: Any, parts: List[str]) -> List[str]:
        """Map underscore-separated name parts onto existing nested keys."""
        if not parts:
            return []
        if not isinstance(config, dict):
            return ['_'.join(parts)]

        for end in range(len(parts), 0, -1):
            key = '_'.join(parts[:end])
            if key in config:
                if end == len(parts):
                    return [key]
                rest = self._match_path(config[key], parts[end:])
                if rest:
                    return [key] + rest
        return parts if len(parts) > 1 else []

    @staticmethod
    def _parse_env_value(value: str) -> Any:
        """Parse environment variable values into appropriate types.

        Args:
            value: The string value from the environment

        Returns:
            The parsed value (bool, int, float, or string)
        """
        if value.lower() in ('true', 'yes', 'on'):
            return True
        if value.lower() in ('false', 'no', 'off'):
            return False

        try:
            if value.isdigit() or (value.startswith('-') and value[1:].isdigit()):
                return int(value)
            return float(value)
        except ValueError:
            return value

    def _set_nested_value(self, config: Dict[str, Any], path: List[str], value: Any) -> None:
        """Set a nested value in the configuration dictionary.

        Args:
            config: The configuration dictionary
            path: List of keys forming the path to the value
            value: The value to set
        """
        if not path:
            return

        if len(path) == 1:
            config[path[0]] = value
            return

        key = path[0]
        if not isinstance(config.get(key), dict):
            config[key] = {}

        self._set_nested_value(config[key], path[1:], value)

    def _validate_config(self) -> None:
        """Validate the configuration against the schema.

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        try:
            self._config = ConfigSchema(**self._config).model_dump()
        except ValidationError as e:
            errors = e.errors()
            error_details = ', '.join((
                f"{'.'.join((str(loc) for loc in error['loc']))}: {error['msg']}"
                for error in errors
            ))
            raise ConfigurationError(
                f'Invalid configuration: {error_details}',
                details={'validation_errors': errors}
            ) from e

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by key.

        Args:
            key: The configuration key (dot-separated for nested values)
            default: Default value if the key doesn't exist

        Returns:
            The configuration value or default

        Raises:
            ConfigurationError: If the manager isn't initialized
        """
        if not self._initialized:
            raise ConfigurationError(
                'Cannot access configuration before initialization',
                config_key=key
            )

        result: Any = self._config
        try:
            for part in key.split('.'):
                result = result[part]
            return result
        except (KeyError, TypeError):
            return default

    async def set(self, key: str, value: Any, persist: bool = False) -> None:
        """Set a configuration value by key.

        Args:
            key: The configuration key (dot-separated for nested values)
            value: The value to set
            persist: Write the configuration back to its file

        Raises:
            ConfigurationError: If the manager isn't initialized or the value is invalid
        """
        if not self._initialized:
            raise ConfigurationError(
                'Cannot modify configuration before initialization',
                config_key=key
            )

        new_config = deepcopy(self._config)
        self._set_nested_value(new_config, key.split('.'), value)

        try:
            self._config = ConfigSchema(**new_config).model_dump()
        except ValidationError as e:
            raise ConfigurationError(
                f'Invalid configuration value for {key}: {str(e)}',
                config_key=key,
                details={'validation_errors': e.errors()}
            ) from e

        await self._notify_listeners(key, value)
        if persist:
            self._save_to_file()

    def _save_to_file(self) -> None:
        """Write the configuration back to its file atomically.

        Raises:
            ConfigurationError: If the file cannot be written
        """
        suffix = self._config_path.suffix.lower()
        if suffix not in ('.yaml', '.yml', '.json'):
            raise ConfigurationError(
                f'Unsupported config file format: {self._config_path.suffix}',
                config_key='config_path'
            )

        config_dir = self._config_path.parent
        try:
            os.makedirs(config_dir, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                    mode='w', delete=False, dir=config_dir, suffix='.tmp', encoding='utf-8'
            ) as tmp:
                if suffix == '.json':
                    json.dump(self._config, tmp, indent=2)
                else:
                    yaml.safe_dump(self._config, tmp, default_flow_style=False)
            os.replace(tmp.name, str(self._config_path))
        except OSError as e:
            raise ConfigurationError(
                f'Error saving configuration to {self._config_path}: {str(e)}',
                config_key='config_path'
            ) from e
        self._loaded_from_file = True

    def _merge_config(self, from_config: Dict[str, Any], to_config: Dict[str, Any]) -> None:
        """Merge a configuration dictionary into another.

        Args:
            from_config: The source configuration
            to_config: The target configuration
        """
        for key, value in from_config.items():
            if isinstance(to_config.get(key), dict) and isinstance(value, dict):
                self._merge_config(value, to_config[key])
            elif value is not None:
                to_config[key] = value

    async def register_listener(self, key: str, callback: ConfigListener) -> None:
        """Register a listener for configuration changes.

        Args:
            key: The configuration key to listen for
            callback: Async callback function to call when the key changes
        """
        if key not in self._listeners:
            self._listeners[key] = []
        if callback not in self._listeners[key]:
            self._listeners[key].append(callback)

    async def unregister_listener(self, key: str, callback: ConfigListener) -> None:
        """Unregister a listener for configuration changes.

        Args:
            key: The configuration key
            callback: The callback function to unregister
        """
        if key in self._listeners and callback in self._listeners[key]:
            self._listeners[key].remove(callback)
            if not self._listeners[key]:
                del self._listeners[key]

    async def _notify_listeners(self, key: str, value: Any) -> None:
        """Notify listeners about a configuration change.

        Args:
            key: The changed configuration key
            value: The new value
        """
        for listener_key, callbacks in list(self._listeners.items()):
            if listener_key != key and not key.startswith(f'{listener_key}.'):
                continue
            for callback in list(callbacks):
                try:
                    await callback(key, value)
                except Exception as e:
                    self._log(logging.ERROR, f'Error in config listener for {key}: {str(e)}')

    async def shutdown(self) -> None:
        """Shut down the configuration manager."""
        self._listeners.clear()
        self._set_ready(False)

    def status(self) -> Dict[str, Any]:
        """Get the status of the configuration manager.

        Returns:
            Dictionary with status information
        """
        status = super().status()
        status.update({
            'config_file': str(self._config_path) if self._loaded_from_file else None,
            'loaded_from_file': self._loaded_from_file,
            'env_vars_applied': len(self._env_vars_applied),
            'registered_listeners': sum(len(callbacks) for callbacks in self._listeners.values())
        })
        return status
