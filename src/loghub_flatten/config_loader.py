"""Configuration loader with multi-source support."""

import logging
import os
from pathlib import Path
from typing import Dict, Any, Optional, Type, TypeVar

import platformdirs
import toml
from pydantic import BaseModel

from .config import LogFlattenConfig

logger = logging.getLogger(__name__)

APP_NAME = "loghub-flatten"

T = TypeVar('T', bound=BaseModel)


class ConfigLoader:
    """Loads configuration from multiple sources with priority.

    Sources, lowest priority first:

    1. defaults file (explicit path, or ``./config/defaults.toml``)
    2. system config (``/etc/<app>/config.toml`` or ``%PROGRAMDATA%``)
    3. user config (platformdirs user config dir)
    4. environment variables ``<APP>_<SECTION>__<KEY>``

    Missing files are not an error; with no sources at all the model
    defaults apply.
    """

    def __init__(
        self,
        app_name: str = APP_NAME,
        config_class: Type[T] = LogFlattenConfig,
        environ: Optional[Dict[str, str]] = None,
    ) -> None:
        self.app_name = app_name
        self.config_class = config_class
        self.environ = os.environ if environ is None else environ

    def load(self, defaults_path: Optional[Path] = None) -> T:
        """Load configuration from all sources.
        
        Args:
            defaults_path: Optional path to a defaults TOML file
            
        Returns:
            Validated configuration object

        Raises:
            FileNotFoundError: If ``defaults_path`` is given but does not exist
            pydantic.ValidationError: If the merged configuration is invalid
        """
        config_dict = self._load_defaults(defaults_path)

        system_config = self._load_system_config()
        if system_config:
            config_dict = self._deep_merge(config_dict, system_config)

        user_config = self._load_user_config()
        if user_config:
            config_dict = self._deep_merge(config_dict, user_config)

        config_dict = self._apply_env_overrides(config_dict)

        return self.config_class(**config_dict)

    def _load_defaults(self, defaults_path: Optional[Path] = None) -> Dict[str, Any]:
        """Load the defaults file."""
        if defaults_path is not None:
            if not defaults_path.exists():
                raise FileNotFoundError(f"Config file not found: {defaults_path}")
            logger.debug(f"Loading config from {defaults_path}")
            return toml.load(defaults_path)

        cwd_defaults = Path.cwd() / "config" / "defaults.toml"
        if cwd_defaults.exists():
            logger.debug(f"Loading config from {cwd_defaults}")
            return toml.load(cwd_defaults)

        return {}

    def _load_system_config(self) -> Optional[Dict[str, Any]]:
        """Load system-wide configuration."""
        if os.name == "nt":  # Windows
            system_path = (
                Path(self.environ.get("PROGRAMDATA", "C:\\ProgramData"))
                / self.app_name
                / "config.toml"
            )
        else:
            system_path = Path(f"/etc/{self.app_name}/config.toml")

        if system_path.exists():
            logger.debug(f"Loading system config from {system_path}")
            return toml.load(system_path)

        return None

    def _load_user_config(self) -> Optional[Dict[str, Any]]:
        """Load user-specific configuration."""
        user_config_dir = platformdirs.user_config_dir(appname=self.app_name, appauthor=False)
        user_config_path = Path(user_config_dir) / "config.toml"

        if user_config_path.exists():
            logger.debug(f"Loading user config from {user_config_path}")
            return toml.load(user_config_path)

        logger.debug(f"User config not found at {user_config_path}")
        return None

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Override config with environment variables.

        ``LOGHUB_FLATTEN_FLATTEN__SOURCE_DIR=/data`` sets ``flatten.source_dir``.
        The double underscore separates sections so keys may contain single
        underscores. Values stay strings and are converted by the model
        fields, so a directory named "2024" or "yes" is read as a path.
        """
        prefix = f"{self.app_name.upper().replace('-', '_')}_"

        for env_key, env_value in self.environ.items():
            if not env_key.startswith(prefix):
                continue

            key_path = env_key[len(prefix):].lower().split("__")
            if len(key_path) < 2 or not all(key_path):
                logger.debug(f"Ignoring malformed config variable {env_key}")
                continue

            current = config
            for part in key_path[:-1]:
                if not isinstance(current.get(part), dict):
                    current[part] = {}
                current = current[part]

            # Kept as a string; pydantic converts it for non-string fields
            current[key_path[-1]] = env_value

        return config
