"""
Configuration Loader.

Loads the SDK configuration from a YAML file, after loading a ``.env`` file
so that ``${VAR}`` references in the YAML resolve against it.
"""

from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from .exceptions import (
    ConfigFileNotFoundError,
    ConfigParseError,
    ConfigValidationError,
)
from .models import SdkConfig


def load_yaml(path: str | Path) -> dict[str, Any]:
    """
    Load a YAML configuration file.

    Raises:
        ConfigFileNotFoundError: If file not found
        ConfigParseError: If YAML parsing fails or the document is not a mapping
    """
    path = Path(path)

    if not path.exists():
        raise ConfigFileNotFoundError(str(path))

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigParseError(str(path), str(e)) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigParseError(str(path), "top level must be a mapping")
    return data


def _load_env_file(config_dir: Path, env_file: Optional[str | Path]) -> None:
    """Load an explicit .env file, else the first one found near the config."""
    if env_file:
        env_path = Path(env_file)
        if not env_path.exists():
            raise ConfigFileNotFoundError(str(env_path))
        load_dotenv(env_path)
        return

    for candidate in (config_dir / ".env", Path.cwd() / ".env"):
        if candidate.exists():
            load_dotenv(candidate)
            return


def load_config(
    path: str | Path,
    env_file: Optional[str | Path] = None,
) -> SdkConfig:
    """
    Load SDK configuration from a YAML file.

    Loading flow:
    1. Load .env file (explicit, next to the config, or in the working dir)
    2. Load YAML
    3. Substitute environment variables and validate with Pydantic

    Args:
        path: Path to the YAML configuration file
        env_file: Optional path to a .env file

    Returns:
        Validated SdkConfig

    Raises:
        ConfigFileNotFoundError: If the config or env file is missing
        ConfigParseError: If YAML parsing fails
        ConfigValidationError: If validation fails
    """
    path = Path(path)
    _load_env_file(path.parent, env_file)
    data = load_yaml(path)

    try:
        return SdkConfig(**data)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        ]
        raise ConfigValidationError(errors) from e
