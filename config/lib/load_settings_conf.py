"""Settings configuration loader module.

This module handles loading and parsing of the settings.conf file and the
``DRIFELLASCAPE_*`` environment overrides that sit on top of it.

The settings file uses INI format with a [DEFAULT] section containing key-value pairs.
The file is optional; every setting has a default and any of them may be
overridden from the environment, e.g. ``DRIFELLASCAPE_PORT=8080``.

Example settings.conf:
    [DEFAULT]
    db_url = postgresql://root@localhost:26257/drifellascape?sslmode=disable
    sync_interval = 120

Raises:
    SettingsError: If the settings file is invalid or a setting fails validation
"""
from configparser import ConfigParser, Error as ConfigParserError
from pathlib import Path
from typing import Dict, Any, List, Mapping, Optional
import os

ENV_PREFIX = 'DRIFELLASCAPE_'


class ConfigValidationError:
    """Helper class to format configuration validation errors"""
    def __init__(self):
        self.invalid: List[str] = []

    def has_errors(self) -> bool:
        """Check if any errors exist"""
        return bool(self.invalid)

    def format_message(self) -> str:
        """Format error message in a clean, readable way"""
        messages = ["Invalid settings:"]
        messages.extend(f"  - {item}" for item in self.invalid)
        return "\n".join(messages)


class SettingsError(Exception):
    """Raised when there are issues loading or parsing the settings configuration."""
    pass


# Default settings
DEFAULTS = {
    'db_url': 'postgresql://root@localhost:26257/drifellascape?sslmode=disable',
    'port': '8000',
    'sync_interval': '120',  # Seconds between marketplace synchronizations
    'refresh_interval': '30',  # Seconds between snapshot cache version checks
    'price_epsilon': '10000000',  # 0.01 SOL in lamports
    'marketplace_base_url': 'https://api-mainnet.magiceden.dev/v2',
    'collection': 'drifella_iii',
    'page_limit': '100',
    'max_retries': '3',
    'initial_backoff': '2.0',
    'request_timeout': '30.0',
    'min_request_interval': '0.5',  # 2 requests per second
    'max_requests_per_minute': '120',
    'sentinel_trait_value': 'None',
    'sentinel_value_id': '',
    'listings_max_limit': '200',
    'tokens_max_limit': '100',
    'max_offset': '1000000',
    'use_sync_lease': 'false',
    'lease_ttl': '600',
    'debug': 'false',
    'run_sync_in_api': 'false',
}

# Lower bounds applied after parsing; smaller values are raised to the floor
FLOORS = {
    'sync_interval': 30,
    'refresh_interval': 5,
}

INT_SETTINGS = (
    'port', 'sync_interval', 'refresh_interval', 'price_epsilon', 'page_limit',
    'max_retries', 'max_requests_per_minute', 'listings_max_limit',
    'tokens_max_limit', 'max_offset', 'lease_ttl',
)
FLOAT_SETTINGS = ('initial_backoff', 'request_timeout', 'min_request_interval')
BOOL_SETTINGS = ('use_sync_lease', 'debug', 'run_sync_in_api')

_TRUE = {'1', 'true', 'yes', 'on'}
_FALSE = {'0', 'false', 'no', 'off', ''}


def load_settings_conf(settings_path: str = ".",
                       environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Load settings.conf (if present), apply environment overrides and validate.

    Args:
        settings_path: Directory containing settings.conf
        environ: Environment mapping, defaults to ``os.environ``

    Returns:
        Dictionary containing parsed and validated settings

    Raises:
        SettingsError: If parsing fails or validation fails
    """
    settings: Dict[str, Any] = dict(DEFAULTS)
    config_path = Path(settings_path) / 'settings.conf'

    if config_path.exists():
        try:
            parser = ConfigParser()
            parser.read(config_path)
        except ConfigParserError as e:
            raise SettingsError(f"Error parsing settings.conf: {str(e)}") from e
        settings.update(parser.defaults())

    environ = os.environ if environ is None else environ
    for key in DEFAULTS:
        env_key = ENV_PREFIX + key.upper()
        if env_key in environ:
            settings[key] = environ[env_key]

    return validate_settings(settings)


def validate_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Validate loaded settings.

    Args:
        settings: Dictionary of settings to validate

    Returns:
        Validated and processed settings

    Raises:
        SettingsError: If validation fails
    """
    errors = ConfigValidationError()

    for key in INT_SETTINGS:
        try:
            settings[key] = int(str(settings[key]).strip())
        except (TypeError, ValueError):
            errors.invalid.append(f"{key}: expected an integer, got {settings[key]!r}")

    for key in FLOAT_SETTINGS:
        try:
            settings[key] = float(str(settings[key]).strip())
        except (TypeError, ValueError):
            errors.invalid.append(f"{key}: expected a number, got {settings[key]!r}")

    for key in BOOL_SETTINGS:
        raw = str(settings[key]).strip().lower()
        if raw in _TRUE:
            settings[key] = True
        elif raw in _FALSE:
            settings[key] = False
        else:
            errors.invalid.append(f"{key}: expected true/false, got {settings[key]!r}")

    raw_sentinel = str(settings.get('sentinel_value_id') or '').strip()
    if raw_sentinel:
        try:
            settings['sentinel_value_id'] = int(raw_sentinel)
        except ValueError:
            errors.invalid.append(f"sentinel_value_id: expected an integer, got {raw_sentinel!r}")
    else:
        settings['sentinel_value_id'] = None

    if not settings.get('db_url'):
        errors.invalid.append("db_url: must not be empty")

    if errors.has_errors():
        raise SettingsError(
            "Settings Configuration Validation Failed\n\n" +
            errors.format_message()
        )

    for key, floor in FLOORS.items():
        settings[key] = max(floor, settings[key])

    for key in ('page_limit', 'max_retries', 'max_requests_per_minute',
                'listings_max_limit', 'tokens_max_limit', 'lease_ttl'):
        if settings[key] < 1:
            errors.invalid.append(f"{key}: must be at least 1")
    for key in ('price_epsilon', 'max_offset'):
        if settings[key] < 0:
            errors.invalid.append(f"{key}: must not be negative")
    if not 0 < settings['port'] < 65536:
        errors.invalid.append("port: must be between 1 and 65535")

    if errors.has_errors():
        raise SettingsError(
            "Settings Configuration Validation Failed\n\n" +
            errors.format_message()
        )

    return settings
