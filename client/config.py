"""
Configuration for the authenticated API client.

Settings live in an INI file (``$XDG_CONFIG_HOME/auth-client/client.conf`` by
default), can be replaced through environment variables, and can be overridden
once more at runtime by command line flags. Precedence, highest first:
overrides, environment, file, defaults.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any
from configparser import ConfigParser, Error as ConfigParserError

from shared.exceptions import ConfigurationError, ErrorCode

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3001"
STORAGE_BACKENDS = ("auto", "keyring", "file", "memory")

# Later entries win, so AUTH_CLIENT_BASE_URL beats the legacy BASE_URL.
ENV_MAPPINGS = (
    ('BASE_URL', 'server', 'url'),
    ('AUTH_CLIENT_BASE_URL', 'server', 'url'),
    ('AUTH_CLIENT_TIMEOUT', 'server', 'timeout'),
    ('AUTH_CLIENT_STORAGE_BACKEND', 'storage', 'backend'),
    ('AUTH_CLIENT_STORAGE_FILE', 'storage', 'file'),
    ('AUTH_CLIENT_LOG_LEVEL', 'logging', 'level'),
    ('AUTH_CLIENT_LOG_FILE', 'logging', 'file'),
)


def get_config_dir() -> Path:
    """Directory holding the client's configuration and token files."""
    xdg_config = os.environ.get('XDG_CONFIG_HOME')
    if xdg_config:
        return Path(xdg_config) / 'auth-client'
    return Path.home() / '.config' / 'auth-client'


def _defaults() -> Dict[str, Dict[str, Any]]:
    return {
        'server': {
            'url': DEFAULT_BASE_URL,
            'timeout': 30.0
        },
        'storage': {
            'backend': 'auto',
            'service_name': 'auth-client',
            'file': str(get_config_dir() / 'tokens.enc')
        },
        'logging': {
            'level': 'WARNING',
            'format': 'standard',
            'file': None,
            'audit_file': None,
            'max_size': 10 * 1024 * 1024,
            'backup_count': 3
        }
    }


def _coerce(raw: str) -> Any:
    """Numbers, booleans and JSON lists/objects are decoded; anything else stays text."""
    try:
        return json.loads(raw)
    except ValueError:
        pass
    if raw.lower() in ('true', 'false'):
        return raw.lower() == 'true'
    return raw


class ClientConfiguration:
    """Layered client settings with dot-notation access (``'server.url'``)."""

    def __init__(self, config_file: Optional[str] = None):
        self._config_file = config_file or str(get_config_dir() / 'client.conf')
        self._config_data: Dict[str, Dict[str, Any]] = {}
        self._overrides: Dict[str, Any] = {}

        self._load_configuration()

    def _load_configuration(self) -> None:
        if os.path.exists(self._config_file):
            self._read_file()
            logger.info(f"Configuration loaded from: {self._config_file}")
        else:
            logger.debug(f"No configuration file at {self._config_file}, using defaults")

        self._apply_environment()

        for section, values in _defaults().items():
            target = self._config_data.setdefault(section, {})
            for key, value in values.items():
                target.setdefault(key, value)

        self._validate()

    def _read_file(self) -> None:
        parser = ConfigParser()
        try:
            parser.read(self._config_file)
        except ConfigParserError as e:
            raise ConfigurationError(
                f"Invalid configuration file {self._config_file}: {e}",
                ErrorCode.CONFIG_INVALID_FORMAT,
                cause=e
            )

        for section in parser.sections():
            self._config_data[section] = {key: _coerce(raw) for key, raw in parser.items(section)}

    def _apply_environment(self) -> None:
        for env_var, section, key in ENV_MAPPINGS:
            raw = os.environ.get(env_var)
            if raw is not None:
                self._config_data.setdefault(section, {})[key] = _coerce(raw)
                logger.debug(f"{section}.{key} taken from ${env_var}")

    def _validate(self) -> None:
        backend = self.get_storage_backend()
        if backend not in STORAGE_BACKENDS:
            raise ConfigurationError(
                f"Unknown storage backend '{backend}' (expected one of {', '.join(STORAGE_BACKENDS)})",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='storage.backend'
            )

        raw_timeout = self._overrides.get('timeout') or self._config_data['server']['timeout']
        try:
            timeout = float(raw_timeout)
        except (TypeError, ValueError):
            timeout = 0.0
        if timeout <= 0:
            raise ConfigurationError(
                f"Server timeout must be a positive number of seconds, got {raw_timeout!r}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='server.timeout'
            )

    def get_server_url(self) -> str:
        url = self._overrides.get('server_url') or self._config_data['server']['url']
        return str(url).rstrip('/')

    def get_server_timeout(self) -> float:
        """Total per-request timeout in seconds."""
        return float(self._overrides.get('timeout') or self._config_data['server']['timeout'])

    def get_storage_backend(self) -> str:
        """One of ``STORAGE_BACKENDS``."""
        return str(self._overrides.get('storage_backend') or self._config_data['storage']['backend']).lower()

    def get_storage_service_name(self) -> str:
        return self.get_config('storage.service_name', 'auth-client')

    def get_storage_file(self) -> str:
        """Path of the encrypted token file used by the file backend."""
        return str(self.get_config('storage.file'))

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Read a value by ``section.key``; a bare name returns the whole section.

        Args:
            key: ``section.key`` or ``section``
            default: Returned when the key is absent

        Returns:
            The stored value or ``default``
        """
        section, _, name = key.partition('.')
        if not name:
            return self._config_data.get(section, default)
        return self._config_data.get(section, {}).get(name, default)

    def set_config(self, key: str, value: Any) -> None:
        """Store a value by ``section.key``; it is written out by save_configuration()."""
        section, _, name = key.partition('.')
        if not name:
            self._config_data[section] = value
        else:
            self._config_data.setdefault(section, {})[name] = value

    def set_override(self, key: str, value: Any) -> None:
        """
        Override a setting for this process only.

        Args:
            key: One of ``server_url``, ``timeout`` or ``storage_backend``
            value: Replacement value

        Raises:
            ConfigurationError: if the result fails validation
        """
        self._overrides[key] = value
        self._validate()

    def save_configuration(self) -> None:
        """Write the file-level settings (not overrides) back to the configuration file."""
        parser = ConfigParser()
        for section, values in self._config_data.items():
            parser[section] = {
                key: json.dumps(value) if isinstance(value, (bool, list, dict)) else str(value)
                for key, value in values.items()
                if value is not None
            }

        config_path = Path(self._config_file)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with config_path.open('w') as f:
            parser.write(f)

        logger.info(f"Configuration saved to: {self._config_file}")

    def get_all_config(self) -> Dict[str, Any]:
        """Copy of every section, without overrides."""
        return {section: dict(values) for section, values in self._config_data.items()}

    def get_config_file_path(self) -> str:
        return self._config_file

    def reload_configuration(self) -> None:
        """Re-read file and environment; overrides are kept."""
        self._config_data.clear()
        self._load_configuration()
        logger.info("Configuration reloaded")

    def get_log_level(self) -> str:
        return str(self.get_config('logging.level', 'WARNING')).upper()

    def get_log_format(self) -> str:
        """``standard``, ``detailed`` or ``json``."""
        return str(self.get_config('logging.format', 'standard')).lower()

    def get_log_file(self) -> Optional[str]:
        return self.get_config('logging.file')

    def get_audit_file(self) -> Optional[str]:
        return self.get_config('logging.audit_file')
