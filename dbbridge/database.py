# dbbridge/database.py
"""
Database connection wrapper that provides a uniform interface
to different DB-API adapters.
"""

import importlib
import importlib.util
import logging
import os
from contextlib import contextmanager
from typing import Any, List, Optional

from .cursors import Cursor
from .utils import ParamStyle

logger = logging.getLogger(__name__)

DRIVERS = {
    # PostgreSQL Drivers
    'psycopg2': {
        'database_type': 'postgres',
        'priority': 11,
        'param_map': {'database': 'dbname'},
        'required_params': [{'host', 'database', 'user'}],
        'optional_params': {'port', 'password', 'sslmode', 'connect_timeout', 'application_name',
                            'client_encoding', 'options'},
        'connection_method': 'connection_string',
        'default_port': 5432,
    },
    'psycopg': {  # psycopg3
        'database_type': 'postgres',
        'priority': 12,
        'param_map': {'database': 'dbname'},
        'required_params': [{'host', 'database', 'user'}],
        'optional_params': {'port', 'password', 'sslmode', 'connect_timeout', 'application_name',
                            'client_encoding', 'options'},
        'connection_method': 'connection_string',
        'default_port': 5432,
    },

    # Oracle Drivers
    'oracledb': {
        'database_type': 'oracle',
        'priority': 11,
        'param_map': {'database': 'service_name'},
        'required_params': [{'dsn', 'user'}, {'host', 'port', 'database', 'user'}],
        'optional_params': {'password', 'config_dir', 'wallet_location', 'wallet_password'},
        'connection_method': 'dsn',
        'default_port': 1521
    },

    # MySQL Drivers
    'pymysql': {
        'database_type': 'mysql',
        'priority': 11,
        'param_map': {'database': 'db', 'password': 'passwd'},
        'required_params': [{'host', 'database', 'user'}],
        'optional_params': {'port', 'password', 'charset', 'connect_timeout', 'read_timeout',
                            'write_timeout', 'unix_socket'},
        'connection_method': 'kwargs',
        'default_port': 3306
    },

    # SQL Server Drivers
    'pyodbc_sqlserver': {
        'database_type': 'sqlserver',
        'module': 'pyodbc',
        'priority': 11,
        'param_map': {'host': 'SERVER', 'database': 'DATABASE', 'user': 'UID', 'password': 'PWD'},
        'required_params': [{'host', 'database', 'user'}, {'host', 'database', 'trusted_connection'}],
        'optional_params': {'password', 'port', 'encrypt', 'trustservercertificate'},
        'connection_method': 'odbc_string',
        'odbc_driver_name': 'ODBC Driver 17 for SQL Server',
        'default_port': 1433
    },
    'pymssql': {
        'database_type': 'sqlserver',
        'priority': 12,
        'param_map': {'host': 'server'},
        'required_params': [{'host', 'database', 'user'}],
        'optional_params': {'password', 'port', 'login_timeout', 'charset', 'appname'},
        'connection_method': 'kwargs',
        'default_port': 1433
    },

    # SQLite Driver
    'sqlite3': {
        'database_type': 'sqlite',
        'priority': 1,
        'param_map': {},
        'required_params': [{'database'}],
        'optional_params': {'timeout', 'detect_types', 'isolation_level', 'check_same_thread', 'uri'},
        'connection_method': 'kwargs'
    }
}

# Native statement that applies an isolation level at the start of a transaction.
# Levels are native names as returned by etl.isolation.resolve_isolation().
ISOLATION_STATEMENTS = {
    'sqlserver': 'SET TRANSACTION ISOLATION LEVEL {level}',
    'postgres': 'SET TRANSACTION ISOLATION LEVEL {level}',
    'mysql': 'SET TRANSACTION ISOLATION LEVEL {level}',
    'oracle': 'SET TRANSACTION ISOLATION LEVEL {level}',
    'sqlite': 'PRAGMA read_uncommitted = {flag}',
}


def _driver_module(driver_name: str) -> str:
    return DRIVERS[driver_name].get('module', driver_name)


def get_drivers_for_database(db_type: str, valid_only: bool = True) -> List[str]:
    """
    Get the drivers available for a database type, sorted by priority.

    Parameters:
        db_type (str): The type of database for which to retrieve drivers.
        valid_only (bool): Only include drivers that are importable (default is True).
    """
    available_drivers = []
    for driver_name, info in DRIVERS.items():
        if info['database_type'] != db_type:
            continue
        if valid_only and importlib.util.find_spec(_driver_module(driver_name)) is None:
            continue
        available_drivers.append(driver_name)
    available_drivers.sort(key=lambda d: DRIVERS[d]['priority'])
    return available_drivers


def get_params_for_database(db_type: str) -> set:
    """Get all valid connection parameters for a database type."""
    valid_params = set()
    for driver_info in DRIVERS.values():
        if driver_info['database_type'] == db_type:
            for param_set in driver_info['required_params']:
                valid_params.update(param_set)
            valid_params.update(driver_info.get('optional_params', set()))
    return valid_params


def validate_connection_params(driver_name: str, **params) -> dict:
    """
    Validate connection parameters against driver requirements.

    Returns:
        Dict of validated parameters, mapped to the driver's names, with extras removed

    Raises:
        ValueError: If the driver is unknown or required parameters are missing
    """
    if driver_name not in DRIVERS:
        raise ValueError(f"Unknown driver: {driver_name}")

    driver_info = DRIVERS[driver_name]
    params = {key: val for key, val in params.items() if val is not None}

    if 'port' not in params and driver_info.get('default_port'):
        params['port'] = driver_info['default_port']

    if not any(required.issubset(params.keys()) for required in driver_info['required_params']):
        raise ValueError(f"Missing required parameters. Need one of: {driver_info['required_params']}")

    all_valid_params = set()
    for req_set in driver_info['required_params']:
        all_valid_params.update(req_set)
    all_valid_params.update(driver_info.get('optional_params', set()))

    param_map = driver_info.get('param_map', {})
    return {param_map.get(key, key): value for key, value in params.items() if key in all_valid_params}


def get_connection_string(**kwargs) -> str:
    """ Get libpq style connection string from keyword arguments."""
    return " ".join([f"{key}={value}" for key, value in kwargs.items()])


def get_odbc_connection_string(odbc_driver_name: Optional[str] = None, **kwargs) -> str:
    """ Get connection string for ODBC from keyword arguments."""
    server = kwargs.pop('SERVER', 'localhost')
    port = kwargs.pop('port', None)
    params = {'SERVER': f'{server},{port}' if port else server}
    params.update({key.upper(): value for key, value in kwargs.items()})
    if odbc_driver_name:
        return f"DRIVER={{{odbc_driver_name}}};" + ";".join([f"{key}={value}" for key, value in params.items()])
    return ";".join([f"{key}={value}" for key, value in params.items()])


class Database:
    """
    Database connection wrapper that provides uniform interface
    across different database adapters.

    Attribute access not handled here is delegated to the driver connection,
    so ``db.commit()``, ``db.rollback()`` and ``db.close()`` are the driver's.
    """

    _local_attrs = ['_connection', 'interface', 'database_name', 'database_type', 'driver_name']

    def __init__(self, connection, interface, database_name: Optional[str] = None,
                 database_type: Optional[str] = None, driver_name: Optional[str] = None):
        """
        Initialize Database wrapper.

        Args:
            connection: Underlying database connection object
            interface: Database adapter module (sqlite3, pyodbc, psycopg2, ...)
            database_name: Name of the database
            database_type: 'sqlserver', 'postgres', 'oracle', 'mysql' or 'sqlite'
            driver_name: Key into DRIVERS the connection was created with
        """
        self._connection = connection
        self.interface = interface
        self.database_name = database_name
        self.driver_name = driver_name or interface.__name__
        if database_type is None:
            database_type = DRIVERS.get(self.driver_name, {}).get('database_type', 'unknown')
        self.database_type = database_type

    def __getattr__(self, key: str) -> Any:
        """Delegate attribute access to underlying connection."""
        return getattr(self._connection, key)

    def __setattr__(self, key: str, value: Any) -> None:
        if key in self._local_attrs:
            self.__dict__[key] = value
        else:
            setattr(self._connection, key, value)

    def __str__(self) -> str:
        if self.database_name:
            return f'Database({self.database_name}:{self.database_type})'
        return f'Database({self.database_type})'

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close connection."""
        self.close()

    @property
    def paramstyle(self) -> str:
        return getattr(self.interface, 'paramstyle', ParamStyle.DEFAULT)

    def cursor(self, **kwargs) -> Cursor:
        """Create a dbbridge Cursor on this connection."""
        return Cursor(self, **kwargs)

    def set_timeout(self, seconds: Optional[int]) -> None:
        """
        Apply a command timeout (seconds, 0 = no limit) to statements on this connection.

        DB-API has no standard for this, so it is done per driver. Drivers without
        a usable mechanism log a debug message and run without a timeout.
        """
        if seconds is None:
            return
        seconds = int(seconds)
        driver = self.interface.__name__
        if driver == 'pyodbc':
            self._connection.timeout = seconds
        elif self.database_type == 'postgres':
            with self.cursor() as cur:
                cur.execute(f'SET statement_timeout = {seconds * 1000}')
        elif self.database_type == 'oracle' and hasattr(self._connection, 'call_timeout'):
            self._connection.call_timeout = seconds * 1000
        elif self.database_type == 'mysql':
            with self.cursor() as cur:
                cur.execute(f'SET SESSION MAX_EXECUTION_TIME = {seconds * 1000}')
        else:
            logger.debug(f"Command timeout not supported by {driver}; running without one")
            return
        logger.debug(f"Command timeout set to {seconds}s on {self}")

    def _apply_isolation(self, native_level: str) -> None:
        """Issue the native statement that sets the isolation level for the next transaction."""
        template = ISOLATION_STATEMENTS.get(self.database_type)
        if template is None:
            raise ValueError(f"Isolation levels not supported for database type '{self.database_type}'")
        flag = 1 if native_level == 'READ UNCOMMITTED' else 0
        statement = template.format(level=native_level, flag=flag)
        logger.debug(f"Beginning transaction: {statement}")
        with self.cursor() as cur:
            cur.execute(statement)

    def _pragma(self, name: str):
        with self.cursor() as cur:
            cur.execute(f'PRAGMA {name}')
            return cur.fetchone()[0]

    @contextmanager
    def transaction(self, isolation_level: Optional[str] = None):
        """
        Context manager for database transactions.

        Args:
            isolation_level: Native isolation level name (see etl.isolation.resolve_isolation).
                None uses the engine default.

        Example:
            with db.transaction('SERIALIZABLE'):
                cursor = db.cursor()
                cursor.execute("INSERT ...")
                # Commit on success, rollback on exception
        """
        restore = None
        try:
            if isolation_level:
                if self.database_type == 'sqlite':
                    restore = self._pragma('read_uncommitted')
                self._apply_isolation(isolation_level)
            yield self
            self.commit()
        except Exception:
            self.rollback()
            raise
        finally:
            # read_uncommitted is a connection setting, not part of the transaction
            if restore is not None:
                with self.cursor() as cur:
                    cur.execute(f'PRAGMA read_uncommitted = {restore}')

    @classmethod
    def create(cls, db_type: str, driver: str = None, **kwargs) -> 'Database':
        """
        Factory method to create database connections.

        Args:
            db_type: Database type ('sqlserver', 'postgres', 'oracle', 'mysql', 'sqlite')
            driver: Specific driver from DRIVERS, otherwise the best available one is used
            **kwargs: Connection parameters

        Returns:
            Database instance
        """
        db_driver = None
        driver_name = None
        if driver:
            if driver not in DRIVERS:
                raise ValueError(f"Unknown driver: {driver}")
            if DRIVERS[driver]['database_type'] != db_type:
                raise ValueError(f"Driver '{driver}' is not compatible with database type '{db_type}'")
            try:
                db_driver = importlib.import_module(_driver_module(driver))
                driver_name = driver
            except ImportError:
                logger.warning(f"Driver '{driver}' not available, falling back to default")

        if db_driver is None:
            for candidate in get_drivers_for_database(db_type):
                try:
                    db_driver = importlib.import_module(_driver_module(candidate))
                    driver_name = candidate
                    break
                except ImportError:
                    pass

        if db_driver is None:
            raise ImportError(f"No database driver found for database type '{db_type}'")

        params = validate_connection_params(driver_name, **kwargs)
        driver_conf = DRIVERS[driver_name]
        method = driver_conf['connection_method']
        if method == 'kwargs':
            connection = db_driver.connect(**params)
        elif method == 'connection_string':
            connection = db_driver.connect(get_connection_string(**params))
        elif method == 'dsn':
            if 'dsn' not in params:
                host = params.pop('host', 'localhost')
                port = params.pop('port', 1521)
                service_name = params.pop('service_name', None)
                params['dsn'] = db_driver.makedsn(host, port, service_name=service_name)
            connection = db_driver.connect(**params)
        else:
            connection = db_driver.connect(
                get_odbc_connection_string(driver_conf.get('odbc_driver_name'), **params))

        logger.debug(f"Connected to {db_type} database using {driver_name}")
        database_name = kwargs.get('database')
        if db_type == 'sqlite' and database_name:
            database_name = os.path.basename(database_name)
        return cls(connection, db_driver, database_name, db_type, driver_name)
