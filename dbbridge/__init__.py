# dbbridge/__init__.py
"""
dbbridge - query results to delimited files, datasets back into tables

- Export any query's result set to delimited text with precise, configurable
  formatting of text, dates and numbers
- Bulk load DataFrames, dicts, records or lists into a table in one transaction
  at a chosen isolation level, or batch by batch
- Uniform interface across PostgreSQL, Oracle, MySQL, SQL Server and SQLite
- YAML-based configuration with password encryption

Basic usage::

    import dbbridge

    rows = dbbridge.export_query("SELECT * FROM users WHERE status = :status",
                                 'users.csv', 'warehouse',
                                 dbbridge.ExportOptions.create(delimiter=';'))

    dbbridge.bulk_load('warehouse', 'staging.users', df, isolation_level='SERIALIZABLE')
"""

__version__ = '0.1.0'

from . import etl, writers
from .config import connect, set_config_file
from .cursors import Cursor
from .database import Database
from .etl import BulkLoader, BulkLoadRequest, CopyOptions, IsolationLevel, bulk_load
from .exceptions import ConfigurationError, CopyError, DbBridgeError, OperationCancelled, SourceReadError
from .export import QueryParameter, QuerySpec, export_query
from .logging_utils import errors_logged, setup_logging
from .writers import ExportOptions, FieldDelimiter, FileEncoding, LineBreak

__all__ = [
    'connect',
    'set_config_file',
    'config',
    'Database',
    'Cursor',
    'export_query',
    'QuerySpec',
    'QueryParameter',
    'ExportOptions',
    'FieldDelimiter',
    'LineBreak',
    'FileEncoding',
    'bulk_load',
    'BulkLoader',
    'BulkLoadRequest',
    'CopyOptions',
    'IsolationLevel',
    'DbBridgeError',
    'ConfigurationError',
    'OperationCancelled',
    'SourceReadError',
    'CopyError',
    'etl',
    'writers',
    'setup_logging',
    'errors_logged',
]
