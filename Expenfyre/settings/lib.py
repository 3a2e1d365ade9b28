"""Settings library for the Expenfyre API.

Provides:
    - SETTINGS_SCHEMA: the expected keys, types and constraints of the service settings.
    - Settings: the frozen, typed settings struct handed to :func:`Expenfyre.api.app.create_app`.
    - load_settings: builds Settings from an optional JSON file overlaid with environment variables.

Settings are read once at process start. Nothing else in the package reads the environment.
"""

from dataclasses import dataclass
import json
import logging
import os
import pathlib
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..status import status

app_name: str = 'Expenfyre'

CONFIG_ENV_KEY: str = 'EXPENFYRE_CONFIG'

DEFAULT_CORS_ORIGINS: Tuple[str, ...] = ('https://expenfyre.web.app', 'http://localhost:3000')

# Environment variable -> settings key
ENV_KEYS: Dict[str, str] = {
    'JWT_SECRET': 'jwt_secret',
    'JWT_REFRESH_SECRET': 'jwt_refresh_secret',
    'GOOGLE_CLIENT_ID': 'google_client_id',
    'GOOGLE_CLIENT_SECRET': 'google_client_secret',
    'SERVICE_ACCOUNT_JSON': 'service_account_info',
    'SHEET_ID': 'sheet_id',
    'API_BASE_URL': 'api_base_url',
    'FRONTEND_URL': 'frontend_url',
    'CORS_ORIGINS': 'cors_origins',
    'KV_PATH': 'kv_path',
    'LOG_LEVEL': 'log_level',
}

required_service_account_keys: List[str] = [
    'type',
    'client_email',
    'private_key',
    'token_uri',
]

SETTINGS_SCHEMA: Dict[str, Any] = {
    'jwt_secret': {'type': str, 'required': True},
    'jwt_refresh_secret': {'type': str, 'required': True},
    'google_client_id': {'type': str, 'required': True},
    'google_client_secret': {'type': str, 'required': True},
    'service_account_info': {'type': dict, 'required': True, 'required_keys': required_service_account_keys},
    'sheet_id': {'type': str, 'required': True},
    'api_base_url': {'type': str, 'required': True},
    'frontend_url': {'type': str, 'required': True},
    'cors_origins': {'type': (list, tuple), 'required': False},
    'kv_path': {'type': str, 'required': False},
    'log_level': {'type': str, 'required': False},
    'access_token_ttl': {'type': int, 'required': False, 'min': 1},
    'refresh_token_ttl': {'type': int, 'required': False, 'min': 1},
    'rate_limit_window': {'type': int, 'required': False, 'min': 1},
    'rate_limit_create': {'type': int, 'required': False, 'min': 1},
    'rate_limit_refresh': {'type': int, 'required': False, 'min': 1},
    'sheets_max_concurrency': {'type': int, 'required': False, 'min': 1},
    'sheets_request_delay': {'type': (int, float), 'required': False, 'min': 0},
    'sheets_rate_limit_backoff': {'type': (int, float), 'required': False, 'min': 0},
    'upload_max_bytes': {'type': int, 'required': False, 'min': 1},
    'file_ttl': {'type': int, 'required': False, 'min': 1},
}


@dataclass(frozen=True)
class Settings:
    """Typed service settings.

    Secrets, Google credentials, the spreadsheet id and the tunables of the session store and
    the Sheets client. Instances are immutable; build one with :func:`load_settings` (or
    directly, in tests) and pass it to the application factory.
    """
    jwt_secret: str
    jwt_refresh_secret: str
    google_client_id: str
    google_client_secret: str
    service_account_info: Dict[str, Any]
    sheet_id: str
    api_base_url: str
    frontend_url: str
    cors_origins: Tuple[str, ...] = DEFAULT_CORS_ORIGINS
    kv_path: str = ''
    log_level: str = 'INFO'

    access_token_ttl: int = 15 * 60
    refresh_token_ttl: int = 7 * 24 * 60 * 60
    rate_limit_window: int = 60 * 60
    rate_limit_create: int = 100
    rate_limit_refresh: int = 50

    sheets_max_concurrency: int = 3
    sheets_request_delay: float = 0.1
    sheets_rate_limit_backoff: float = 2.0

    upload_max_bytes: int = 10 * 1024 * 1024
    file_ttl: int = 365 * 24 * 60 * 60

    @property
    def redirect_uri(self) -> str:
        """The OAuth redirect URI registered with Google."""
        return f'{self.api_base_url.rstrip("/")}/api/auth/google/callback'

    def get_kv_path(self) -> pathlib.Path:
        """Returns the SQLite key-value store path, defaulting to the user's data directory."""
        if self.kv_path:
            return pathlib.Path(self.kv_path)
        return pathlib.Path.home() / f'.{app_name.lower()}' / 'kv.sqlite3'


def _parse_env_value(key: str, value: str) -> Any:
    """Convert a raw environment string to the type the schema expects for ``key``."""
    if key == 'service_account_info':
        try:
            return json.loads(value)
        except json.JSONDecodeError as ex:
            raise status.SettingsInvalidException('SERVICE_ACCOUNT_JSON is not valid JSON.') from ex
    if key == 'cors_origins':
        return [v.strip() for v in value.split(',') if v.strip()]
    return value


def validate_settings(data: Mapping[str, Any]) -> None:
    """Validate raw settings data against :data:`SETTINGS_SCHEMA`.

    Args:
        data: Mapping of settings keys to values.

    Raises:
        status.SettingsInvalidException: If a required key is missing, or a value has the wrong
            type or violates its constraint.
    """
    logging.debug('Validating settings against schema.')
    unknown = set(data) - set(SETTINGS_SCHEMA)
    if unknown:
        raise status.SettingsInvalidException(f'Unknown settings keys: {sorted(unknown)}.')

    for field, specs in SETTINGS_SCHEMA.items():
        if specs.get('required') and not data.get(field):
            raise status.SettingsInvalidException(f'Missing required setting: {field}')

        if field not in data:
            continue

        value = data[field]
        if isinstance(value, bool) or not isinstance(value, specs['type']):
            raise status.SettingsInvalidException(
                f'Setting "{field}" must be {specs["type"]}, got {type(value)}.'
            )
        if 'min' in specs and value < specs['min']:
            raise status.SettingsInvalidException(f'Setting "{field}" must be >= {specs["min"]}.')

        if 'required_keys' in specs:
            missing = [k for k in specs['required_keys'] if k not in value]
            if missing:
                raise status.SettingsInvalidException(f'Setting "{field}" is missing keys: {missing}.')

    if data['jwt_secret'] == data['jwt_refresh_secret']:
        raise status.SettingsInvalidException('Access and refresh token secrets must differ.')

    logging.debug('Settings are valid.')


def load_settings(environ: Optional[Mapping[str, str]] = None, path: Optional[str] = None) -> Settings:
    """Load settings from an optional JSON file and the environment.

    Environment variables override values from the file.

    Args:
        environ: The environment to read. Defaults to ``os.environ``.
        path: Path to a JSON settings file. Defaults to the ``EXPENFYRE_CONFIG`` variable.

    Returns:
        Settings: The validated settings.

    Raises:
        status.SettingsInvalidException: If the file cannot be read or validation fails.
    """
    environ = os.environ if environ is None else environ
    path = path or environ.get(CONFIG_ENV_KEY)

    data: Dict[str, Any] = {}
    if path:
        logging.debug(f'Loading settings from "{path}"')
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data.update(json.load(f))
        except (OSError, json.JSONDecodeError) as ex:
            raise status.SettingsInvalidException(f'Could not read settings file "{path}".') from ex

    for env_key, key in ENV_KEYS.items():
        if environ.get(env_key):
            data[key] = _parse_env_value(key, environ[env_key])

    validate_settings(data)

    if 'cors_origins' in data:
        data['cors_origins'] = tuple(data['cors_origins'])
    return Settings(**data)
