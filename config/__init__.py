"""Configuration module for loading and managing application settings"""
from typing import Dict, Any, Optional, Mapping
from .lib.load_settings_conf import (
    load_settings_conf, validate_settings, SettingsError, DEFAULTS, FLOORS, ENV_PREFIX
)

__all__ = ['load_settings', 'SettingsError', 'DEFAULTS', 'FLOORS', 'ENV_PREFIX']


def load_settings(settings_path: Optional[str] = None,
                  environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Load configuration from settings.conf and the environment.

    Args:
        settings_path: Optional directory holding settings.conf. If not provided,
                       the current directory is used.
        environ: Optional environment mapping, defaults to ``os.environ``

    Returns:
        Validated settings dictionary
    """
    try:
        return load_settings_conf(settings_path or '.', environ=environ)
    except SettingsError as e:
        # Re-raise the error but provide more context
        raise SettingsError(
            f"Configuration Error\n"
            "=================\n\n"
            f"{str(e)}\n\n"
            "Check settings.conf and the DRIFELLASCAPE_* environment variables.\n"
            "See examples/settings.conf.example for the available settings."
        ) from e
