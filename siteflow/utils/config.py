"""
Configuration Management Module
================================

This module provides the configuration layer for siteflow:
    - Loads YAML configuration files with inheritance support
    - Provides attribute and dot-path access to configuration values
    - Supports environment variable overrides (also read from a .env file)
    - Accepts programmatic overrides from the command line

Example Usage:
    >>> from siteflow.utils.config import load_config
    >>> config = load_config("config/default.yaml")
    >>> config.build.dist
    'dist'
    >>> config.get("server.port", 2080)
    2080

Architecture:
    The Config class wraps a nested dictionary. Configuration files can
    extend other files using the '_extends' key.
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, TypeVar, Union

import yaml
from dotenv import load_dotenv

from siteflow.utils.exceptions import ConfigurationError

# Type variable for generic methods
T = TypeVar("T")

ENV_PREFIX = "SITEFLOW_"


class Config:
    """
    Configuration wrapper with attribute-style access.

    Attributes:
        _data: The underlying configuration dictionary.
        _path: The path to the configuration file (if loaded from file).

    Example:
        >>> config = Config({"build": {"src": "src", "dist": "dist"}})
        >>> config.build.dist
        'dist'
        >>> config.get("build.temp", "temp")
        'temp'
    """

    def __init__(
        self,
        data: Optional[Dict[str, Any]] = None,
        path: Optional[Union[str, Path]] = None,
    ) -> None:
        """
        Initialize configuration from dictionary.

        Args:
            data: Configuration dictionary. Defaults to empty dict.
            path: Path to the configuration file (for reference).
        """
        object.__setattr__(self, "_data", data if data is not None else {})
        object.__setattr__(self, "_path", Path(path) if path else None)

    def __getattr__(self, name: str) -> Any:
        """
        Access configuration values as attributes.

        Raises:
            AttributeError: If the key doesn't exist.
        """
        if name.startswith("_"):
            return object.__getattribute__(self, name)

        try:
            value = self._data[name]
        except KeyError:
            raise AttributeError(
                f"Configuration has no attribute '{name}'. "
                f"Available keys: {list(self._data.keys())}"
            ) from None
        if isinstance(value, dict):
            return Config(value)
        return value

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_"):
            object.__setattr__(self, name, value)
        else:
            self._data[name] = value

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __iter__(self):
        return iter(self._data)

    def __repr__(self) -> str:
        return f"Config({self._data})"

    def __len__(self) -> int:
        return len(self._data)

    @property
    def path(self) -> Optional[Path]:
        """File this configuration was loaded from, if any."""
        return self._path

    def get(self, path: str, default: T = None) -> Union[Any, T]:
        """
        Get a configuration value using dot-notation path.

        Args:
            path: Dot-separated path to the value (e.g., "build.paths.styles").
            default: Default value if path doesn't exist.

        Returns:
            The configuration value or default.
        """
        value = self._data
        for key in path.split("."):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value using dot-notation path.

        Creates intermediate dictionaries if they don't exist.
        """
        keys = path.split(".")
        data = self._data

        for key in keys[:-1]:
            if key not in data or not isinstance(data[key], dict):
                data[key] = {}
            data = data[key]

        data[keys[-1]] = value

    def to_dict(self) -> Dict[str, Any]:
        """Return a deep copy of the configuration dictionary."""
        return copy.deepcopy(self._data)

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def items(self):
        return self._data.items()

    def update(self, other: Union[Dict[str, Any], "Config"]) -> None:
        """
        Deep-merge values from another dict or Config into this one.
        """
        if isinstance(other, Config):
            other = other.to_dict()
        object.__setattr__(self, "_data", deep_merge(self._data, other))


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values from 'override' take precedence. Nested dictionaries are
    recursively merged rather than replaced.

    Example:
        >>> deep_merge({"a": 1, "b": {"c": 2, "d": 3}}, {"b": {"c": 4}})
        {'a': 1, 'b': {'c': 4, 'd': 3}}
    """
    result = copy.deepcopy(base)

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)

    return result


def load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a YAML file.

    Raises:
        ConfigurationError: If file cannot be read or parsed.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {path}", config_path=str(path)
        )

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML file {path}", config_path=str(path), cause=e
        )
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read configuration file {path}",
            config_path=str(path),
            cause=e,
        )

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Top level of {path} must be a mapping", config_path=str(path)
        )
    return data


def nest_overrides(overrides: Dict[str, Any]) -> Dict[str, Any]:
    """
    Turn {"server.port": 8080} into {"server": {"port": 8080}}.
    """
    nested: Dict[str, Any] = {}
    for key, value in overrides.items():
        keys = key.split(".")
        current = nested
        for k in keys[:-1]:
            current = current.setdefault(k, {})
        current[keys[-1]] = value
    return nested


def load_config(
    path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
    defaults: Optional[Dict[str, Any]] = None,
    env_prefix: str = ENV_PREFIX,
    dotenv_path: Optional[Union[str, Path]] = None,
) -> Config:
    """
    Load configuration from YAML file with inheritance and overrides.

    Precedence, lowest first: `defaults`, the YAML file (and whatever it
    `_extends`), environment variables, `overrides`.

    Args:
        path: Path to the configuration file. None uses only defaults.
        overrides: Dot-notation keys to override.
        defaults: Base values the file is merged onto.
        env_prefix: Prefix for environment variable overrides.
        dotenv_path: .env file to load first; None searches upwards from cwd.

    Returns:
        Loaded and merged Config object.

    Example:
        >>> config = load_config(
        ...     "config/default.yaml",
        ...     overrides={"server.port": 8080}
        ... )
    """
    load_dotenv(dotenv_path=dotenv_path, override=False)

    data = copy.deepcopy(defaults or {})

    if path is not None:
        path = Path(path)
        file_data = load_yaml(path)

        if "_extends" in file_data:
            extends_path = Path(file_data.pop("_extends"))
            # Relative to the extending file
            if not extends_path.is_absolute():
                extends_path = path.parent / extends_path
            file_data = deep_merge(load_yaml(extends_path), file_data)

        data = deep_merge(data, file_data)

    data = apply_env_overrides(data, env_prefix)

    if overrides:
        data = deep_merge(data, nest_overrides(overrides))

    return Config(data, path)


def apply_env_overrides(
    data: Dict[str, Any], prefix: str, path: str = ""
) -> Dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Only keys that already exist can be overridden. Variables use
    underscores for nesting, e.g.:
        SITEFLOW_SERVER_PORT=8080
        SITEFLOW_BUILD_DIST=public_html
    """
    result = copy.deepcopy(data)

    for key, value in result.items():
        current_path = f"{path}_{key}".upper() if path else key.upper()
        env_key = f"{prefix}{current_path}"

        if isinstance(value, dict):
            result[key] = apply_env_overrides(value, prefix, current_path)
        else:
            env_value = os.environ.get(env_key)
            if env_value is not None:
                result[key] = parse_env_value(env_value, type(value))

    return result


def parse_env_value(value: str, target_type: type) -> Any:
    """
    Parse an environment variable string to the target type.
    """
    if target_type == bool:
        return value.lower() in ("true", "1", "yes", "on")
    elif target_type == int:
        return int(value)
    elif target_type == float:
        return float(value)
    elif target_type == list:
        return [v.strip() for v in value.split(",")]
    else:
        return value


def get_config_path(
    name: str = "default", base: Optional[Union[str, Path]] = None
) -> Optional[Path]:
    """
    Find a configuration file by name.

    Searches, in order (relative to `base`, default the current directory):
        1. siteflow.yaml (only for "default")
        2. config/<name>.yaml
        3. ~/.config/siteflow/<name>.yaml

    Returns:
        The first existing path, or None.
    """
    base = Path(base) if base is not None else Path(".")
    locations = [
        base / "config" / f"{name}.yaml",
        Path.home() / ".config" / "siteflow" / f"{name}.yaml",
    ]
    if name == "default":
        locations.insert(0, base / "siteflow.yaml")

    for loc in locations:
        if loc.exists():
            return loc
    return None
