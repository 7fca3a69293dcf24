# dbbridge/config.py
"""
Configuration management for database connections.
Supports YAML configuration files with optional password encryption and global settings.
"""

import logging
import os
from pathlib import Path
from textwrap import dedent
from typing import Any, Dict, Optional, Tuple, Union

import keyring
import yaml
from cryptography.fernet import Fernet, InvalidToken
from keyring.errors import KeyringError

from .database import DRIVERS, Database, get_params_for_database
from .defaults import settings
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

KEYRING_SERVICE = 'dbbridge'
KEYRING_USERNAME = 'encryption_key'
ENCRYPTION_KEY_VAR = 'DBBRIDGE_ENCRYPTION_KEY'


def _valid_fernet(key: str) -> bool:
    try:
        Fernet(key.encode())
        return True
    except (ValueError, TypeError):
        return False


def _merge_settings(target: dict, source: dict) -> None:
    """Merge nested setting dicts in place, so a file can override a single export option."""
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge_settings(target[key], value)
        else:
            target[key] = value


def _expand_env(value: str) -> str:
    """Resolve a ``${VAR_NAME}`` reference, other strings are returned unchanged."""
    if isinstance(value, str) and value.startswith('${') and value.endswith('}'):
        env_var = value[2:-1]
        env_value = os.environ.get(env_var)
        if env_value is None:
            raise ConfigurationError(f"Environment variable {env_var} not set")
        return env_value
    return value


class ConfigManager:
    """
    Manage dbbridge configuration from YAML files.

    Configuration File Structure
    ----------------------------
    ::

        # dbbridge.yml
        settings:
          command_timeout: 60
          export:
            delimiter: ';'
            quote_dates: true
          bulk_load:
            batch_size: 5000
            isolation_level: SERIALIZABLE

        connections:
          warehouse:
            type: sqlserver
            host: sql01
            database: dw
            user: etl
            encrypted_password: gAAAAABh...
          reporting:
            type: postgres
            host: localhost
            database: reports
            user: report
            password: ${REPORT_PASSWORD}

        passwords:
          sftp:
            encrypted_password: gAAAAABh...

    Configuration Locations
    -----------------------
    Searched in this order:

    1. File specified in config_file parameter
    2. ``./dbbridge.yml``
    3. ``./dbbridge.yaml``
    4. ``~/.config/dbbridge.yml``
    5. ``~/.config/dbbridge.yaml``

    Parameters
    ----------
    config_file : str or Path, optional
        Path to YAML config file. If None, searches standard locations.

    Notes
    -----
    * Connections require a 'type' (sqlserver, postgres, oracle, mysql, sqlite) or 'driver'
    * Encrypted passwords require DBBRIDGE_ENCRYPTION_KEY or a key stored in the system keyring
    * Passwords can reference environment variables with ${VAR_NAME}
    """

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()
        self._fernet = None
        self._apply_settings()

    def _find_config_file(self, config_file: Optional[Union[str, Path]]) -> Path:
        """Find the configuration file."""
        if config_file:
            path = Path(config_file)
            if not path.exists():
                raise FileNotFoundError(f"Config file not found: {config_file}")
            return path

        candidates = [
            Path("dbbridge.yml"),
            Path("dbbridge.yaml"),
            Path.home() / ".config" / "dbbridge.yml",
            Path.home() / ".config" / "dbbridge.yaml"
        ]
        for candidate in candidates:
            if candidate.exists():
                return candidate

        raise FileNotFoundError(
            "No config file found. Looked in: " +
            ", ".join(str(c) for c in candidates)
        )

    def _load_config(self) -> Dict[str, Any]:
        """Load and validate configuration file."""
        try:
            with open(self.config_file, 'r') as f:
                config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load config file {self.config_file}: {e}") from e

        if not isinstance(config, dict):
            raise ConfigurationError(f"Invalid config file {self.config_file}.")

        connections = config.get('connections', {})
        if not isinstance(connections, dict):
            raise ConfigurationError(f"Invalid config file {self.config_file}: 'connections' must be a dictionary")
        for name, conn in connections.items():
            if not isinstance(conn, dict) or ('type' not in conn and 'driver' not in conn):
                raise ConfigurationError(
                    f"Invalid connection '{name}' in {self.config_file}: 'type' or 'driver' is required")

        passwords = config.get('passwords', {})
        if not isinstance(passwords, dict):
            raise ConfigurationError(f"Invalid config file {self.config_file}: 'passwords' must be a dictionary")
        for name, password_data in passwords.items():
            if not isinstance(password_data, dict):
                raise ConfigurationError(
                    f"Invalid password entry '{name}' in {self.config_file}: must be a dictionary")
            if 'password' not in password_data and 'encrypted_password' not in password_data:
                raise ConfigurationError(
                    f"Invalid password entry '{name}' in {self.config_file}: "
                    f"'password' or 'encrypted_password' is required")

        if not isinstance(config.get('settings', {}), dict):
            raise ConfigurationError(f"Invalid config file {self.config_file}: 'settings' must be a dictionary")

        logger.info(f"Loaded config from {self.config_file}")
        return config

    def _apply_settings(self) -> None:
        """Merge the file's settings section into the global settings."""
        _merge_settings(settings, self.config.get('settings', {}))

    def get_setting(self, key: str, default: Any = None) -> Any:
        """
        Get a setting value from the config.

        Args:
            key: Setting key (supports dot notation like 'export.delimiter')
            default: Default value if key not found

        Example:
            batch_size = config.get_setting('bulk_load.batch_size', 1000)
        """
        value = self.config.get('settings', {})
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def _get_encryption_key(self) -> bytes:
        """Get encryption key from the environment or the system keyring."""
        key_str = os.environ.get(ENCRYPTION_KEY_VAR)
        if key_str:
            logger.debug(f"Using {ENCRYPTION_KEY_VAR} from environment")
            return key_str.encode()

        try:
            key_str = keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
        except KeyringError as e:
            logger.warning(f"Keyring access failed: {e}")
            key_str = None
        if key_str:
            logger.debug("Using encryption key from keyring")
            return key_str.encode()

        raise ConfigurationError(dedent(f"""\
            Encryption key not found in environment or keyring.
            Run `dbbridge store-key` to generate and store a new key in the keyring,
            or `dbbridge generate-key` and set {ENCRYPTION_KEY_VAR}."""))

    def _get_fernet(self) -> Fernet:
        """Get or create Fernet instance for encryption/decryption."""
        if self._fernet is None:
            self._fernet = Fernet(self._get_encryption_key())
        return self._fernet

    def decrypt_password(self, encrypted_password: str) -> str:
        """Decrypt an encrypted password."""
        fernet = self._get_fernet()
        try:
            return fernet.decrypt(encrypted_password.encode()).decode()
        except InvalidToken as e:
            raise ConfigurationError(f"Failed to decrypt password: {e}") from e

    def encrypt_password(self, password: str) -> str:
        """Encrypt a password for storage."""
        return self._get_fernet().encrypt(password.encode()).decode()

    def get_connection_config(self, name: str) -> Dict[str, Any]:
        """Get configuration for a named connection, with its password resolved."""
        connections = self.config.get('connections', {})
        if name not in connections:
            raise ConfigurationError(
                f"Connection '{name}' not found in config. "
                f"Available connections: {list(connections.keys())}"
            )

        config = connections[name].copy()
        if 'encrypted_password' in config:
            config['password'] = self.decrypt_password(config.pop('encrypted_password'))
        if 'password' in config:
            config['password'] = _expand_env(config['password'])
        return config

    def list_connections(self) -> list:
        """List all available connection names."""
        return list(self.config.get('connections', {}).keys())

    def get_password(self, name: str) -> str:
        """
        Get a stored password by name.

        Raises:
            ConfigurationError: If password not found or decryption fails
        """
        passwords = self.config.get('passwords', {})
        if name not in passwords:
            raise ConfigurationError(
                f"Password '{name}' not found in config. "
                f"Available passwords: {list(passwords.keys())}"
            )

        password_entry = passwords[name]
        if 'encrypted_password' in password_entry:
            return self.decrypt_password(password_entry['encrypted_password'])
        return _expand_env(password_entry['password'])

    def list_passwords(self) -> list:
        """List all available password names."""
        return list(self.config.get('passwords', {}).keys())


# Global config manager instance
_config_manager: Optional[ConfigManager] = None


def _get_manager(config_file: Optional[Union[str, Path]] = None) -> ConfigManager:
    global _config_manager
    if config_file:
        return ConfigManager(config_file)
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def generate_encryption_key() -> str:
    """
    Generate a random Fernet encryption key.

    Store it in the DBBRIDGE_ENCRYPTION_KEY environment variable or in the
    system keyring with `dbbridge store-key [your key]`.
    """
    return Fernet.generate_key().decode()


def store_key(key: Optional[str] = None, force: bool = False) -> bool:
    """
    Store an encryption key in the system keyring.

    Args:
        key: Key to store. A new key is generated when None.
        force: Overwrite a key that is already stored

    Returns:
        True if a key was stored, False if one already existed and force was not set
    """
    if key is not None and not _valid_fernet(key):
        raise ConfigurationError("Invalid encryption key. Must be 32 url-safe base64-encoded bytes.")

    try:
        current_key = keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
    except KeyringError:
        current_key = None

    if current_key and not force:
        logger.warning("Encryption key already stored in system keyring. Use --force to overwrite.")
        return False
    if current_key:
        logger.warning("Encryption key already stored in system keyring. Overwriting!")

    try:
        keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, key or generate_encryption_key())
    except KeyringError as e:
        logger.error(f"Failed to store encryption key in system keyring: {e}")
        raise ConfigurationError(f"Failed to store encryption key in system keyring: {e}") from e
    logger.info("Stored encryption key in system keyring")
    return True


def encrypt_password(password: str, encryption_key: Optional[str] = None) -> str:
    """
    Encrypt a password for use as ``encrypted_password`` in a config file.

    Args:
        password: Password to encrypt
        encryption_key: Optional key. If None, uses DBBRIDGE_ENCRYPTION_KEY or the keyring.
    """
    if encryption_key:
        return Fernet(encryption_key.encode()).encrypt(password.encode()).decode()
    temp_config = ConfigManager.__new__(ConfigManager)
    temp_config._fernet = None
    return temp_config.encrypt_password(password)


def set_config_file(config_file: Union[str, Path]) -> None:
    """Set the configuration file to use globally."""
    global _config_manager
    _config_manager = ConfigManager(config_file)


def connect(name: str, password: str = None, config_file: Optional[Union[str, Path]] = None) -> Database:
    """
    Connect to a named database from configuration.

    Args:
        name: Connection name from config file
        password: Optional password if not stored in config
        config_file: Optional path to config file

    Example:
        db = connect('warehouse')
    """
    config = _get_manager(config_file).get_connection_config(name)
    if password:
        config['password'] = password
    info = {key: val for key, val in config.items() if key != 'password'}
    logger.debug(f"Connecting to database {name} with config: {info}")
    return connect_params(config)


def connect_params(params: Dict[str, Any]) -> Database:
    """
    Open a connection from a parameter dict with a 'type' (or 'driver') key.

    Example:
        db = connect_params({'type': 'sqlite', 'database': ':memory:'})
    """
    config = dict(params)
    driver = config.pop('driver', None)
    db_type = config.pop('type', None) or config.pop('database_type', None)
    if not db_type:
        if driver is None:
            raise ConfigurationError("Connection parameters need a 'type' or 'driver'")
        if driver not in DRIVERS:
            raise ConfigurationError(f"Unknown driver: {driver}")
        db_type = DRIVERS[driver]['database_type']

    # remove any params that are not allowed for the database type
    allowed_params = get_params_for_database(db_type)
    dropped = set(config) - allowed_params
    if dropped:
        logger.debug(f"Ignoring connection parameters not used by {db_type}: {sorted(dropped)}")
    config = {key: val for key, val in config.items() if key in allowed_params}
    return Database.create(db_type, driver=driver, **config)


def resolve_connection(connection: Union[str, Dict[str, Any], Database]) -> Tuple[Database, bool]:
    """
    Resolve a connection argument to a Database.

    Args:
        connection: Config connection name, parameter dict, or an open Database

    Returns:
        (database, owned). Owned connections were opened here and must be closed by the caller.
    """
    if isinstance(connection, Database):
        return connection, False
    if isinstance(connection, str):
        return connect(connection), True
    if isinstance(connection, dict):
        return connect_params(connection), True
    raise ConfigurationError(f"Unsupported connection argument: {type(connection).__name__}")


def get_password(name: str, config_file: Optional[Union[str, Path]] = None) -> str:
    """
    Get a stored password from configuration.

    Example:
        secret = get_password('sftp')
    """
    return _get_manager(config_file).get_password(name)


def get_setting(key: str, default: Any = None, config_file: Optional[Union[str, Path]] = None) -> Any:
    """
    Get a setting value from configuration.

    Example:
        delimiter = get_setting('export.delimiter', ',')
    """
    return _get_manager(config_file).get_setting(key, default)
