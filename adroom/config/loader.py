"""
Settings loader for AdRoom.

Loads adroom.yaml, validates it against the Pydantic schema, and caches
the result for the rest of the process. Also checks the environment
variables the Supabase and OpenAI clients need.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from adroom.config.schema import AdRoomSettings
from adroom.exceptions import ConfigurationError

SETTINGS_FILENAME = "adroom.yaml"

REQUIRED_ENV_VARS = (
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
    "OPENAI_API_KEY",
)

_loaded_settings: Optional[AdRoomSettings] = None


def find_settings_file() -> Optional[Path]:
    """
    Locate adroom.yaml.

    ADROOM_CONFIG wins if set; otherwise walk up from this file to the
    project root.
    """
    explicit = os.environ.get("ADROOM_CONFIG")
    if explicit:
        return Path(explicit)

    current = Path(__file__).resolve()
    for parent in current.parents:
        candidate = parent / SETTINGS_FILENAME
        if candidate.is_file():
            return candidate
    return None


def load_settings(
    config_path: Optional[str | Path] = None,
    *,
    reload: bool = False,
) -> AdRoomSettings:
    """
    Load and validate the AdRoom settings.

    Args:
        config_path: Optional explicit path to a settings YAML file.
        reload: Ignore the cached settings and read the file again.

    Returns:
        Validated AdRoomSettings. Defaults when no file is found.

    Raises:
        ConfigurationError: If the file is missing (explicit path only),
            not valid YAML, or fails validation.
    """
    global _loaded_settings

    if _loaded_settings is not None and not reload and config_path is None:
        return _loaded_settings

    path = Path(config_path) if config_path is not None else find_settings_file()

    if path is None:
        settings = AdRoomSettings()
    else:
        if not path.exists():
            raise ConfigurationError(
                f"Settings file not found: {path}",
                config_path=str(path),
            )
        try:
            with open(path, "r") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Settings file is not valid YAML: {path}\n{e}",
                config_path=str(path),
            ) from e

        try:
            settings = AdRoomSettings(**raw)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid settings in {path}:\n{e}",
                config_path=str(path),
            ) from e

    _loaded_settings = settings
    return settings


def missing_env_vars(names: tuple[str, ...] = REQUIRED_ENV_VARS) -> list[str]:
    """Return the required environment variables that are unset or blank."""
    return [name for name in names if not os.environ.get(name, "").strip()]
