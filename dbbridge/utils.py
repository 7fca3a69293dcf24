# dbbridge/utils.py
"""
Utility functions for dbbridge.
"""

import itertools
import re
from typing import Any, Iterable, List, Tuple

from .exceptions import OperationCancelled

# :name placeholders, ignoring postgres ::casts and times like 12:30
_NAMED_PARAM = re.compile(r'(?<![:\w]):([A-Za-z_]\w*)')


class ParamStyle:
    """
    SQL parameter placeholder styles for different database drivers.

    - QMARK: Question mark placeholders (?, ?) - SQLite, ODBC
    - NUMERIC: Numeric placeholders (:1, :2) - Oracle
    - NAMED: Named placeholders (:name, :email) - Oracle, psycopg2
    - FORMAT: Printf-style (%s, %s) - MySQL (MySQLdb)
    - PYFORMAT: Python format (%(name)s) - psycopg2, pymysql

    Example
    -------
    ::
        >>> process_sql_parameters("SELECT * FROM users WHERE id = :id", ParamStyle.QMARK)
        ('SELECT * FROM users WHERE id = ?', ('id',))
    """
    QMARK = 'qmark'         # id = ?
    NUMERIC = 'numeric'     # id = :1
    NAMED = 'named'         # id = :id
    FORMAT = 'format'       # id = %s
    PYFORMAT = 'pyformat'   # id = %(id)s
    DEFAULT = NAMED

    @classmethod
    def values(cls):
        return [cls.QMARK, cls.NUMERIC, cls.NAMED, cls.FORMAT, cls.PYFORMAT]

    @classmethod
    def positional_styles(cls):
        """ Parameter styles where parameters must be in properly ordered tuple instead of dict"""
        return (cls.QMARK, cls.NUMERIC, cls.FORMAT)

    @classmethod
    def named_styles(cls):
        """ Parameter styles where parameters must be in dict instead of tuple"""
        return (cls.NAMED, cls.PYFORMAT)


def process_sql_parameters(sql: str, paramstyle: str) -> Tuple[str, Tuple[str, ...]]:
    """
    Convert ``:name`` placeholders to the given paramstyle.

    Parameters:
        sql: The SQL query string containing named parameters in the format ':name'.
        paramstyle: The desired parameter style for the resulting SQL string.

    Returns:
        A tuple of the converted SQL and the parameter names in order of appearance.

    Raises:
        ValueError: If the provided paramstyle is not supported.
    """
    param_names = tuple(_NAMED_PARAM.findall(sql))

    if paramstyle == ParamStyle.NAMED:
        return sql, param_names
    elif paramstyle == ParamStyle.PYFORMAT:
        return _NAMED_PARAM.sub(r'%(\1)s', sql), param_names
    elif paramstyle == ParamStyle.QMARK:
        return _NAMED_PARAM.sub('?', sql), param_names
    elif paramstyle == ParamStyle.FORMAT:
        return _NAMED_PARAM.sub('%s', sql), param_names
    elif paramstyle == ParamStyle.NUMERIC:
        counter = iter(range(1, len(param_names) + 1))
        return _NAMED_PARAM.sub(lambda m: f':{next(counter)}', sql), param_names
    else:
        raise ValueError(f"Unsupported paramstyle: {paramstyle}")


def create_insert_statement(table: str, columns: List[str], paramstyle: str = ParamStyle.NAMED) -> str:
    """
    Create an INSERT statement for the given table and columns.

    Args:
        table: Table name
        columns: List of column names
        paramstyle: Parameter style ('qmark', 'numeric', 'named', 'format', 'pyformat')

    Returns:
        INSERT statement string
    """
    if paramstyle == ParamStyle.QMARK:
        params = ', '.join(['?' for _ in columns])
    elif paramstyle == ParamStyle.FORMAT:
        params = ', '.join(['%s' for _ in columns])
    elif paramstyle == ParamStyle.NUMERIC:
        params = ', '.join([f':{i}' for i in range(1, len(columns) + 1)])
    elif paramstyle == ParamStyle.NAMED:
        params = ', '.join([f':{col}' for col in columns])
    elif paramstyle == ParamStyle.PYFORMAT:
        params = ', '.join([f'%({col})s' for col in columns])
    else:
        raise ValueError(f"Unsupported paramstyle: {paramstyle}")
    column_list = ', '.join(columns)
    return f'INSERT INTO {table} ({column_list}) VALUES ({params})'


def validate_identifier(identifier: str, max_length: int = 128) -> str:
    """
    Validate that an identifier is safe to interpolate into SQL.
    Returns the identifier if valid, raises ValueError if invalid.
    """
    if '.' in identifier:
        return '.'.join(validate_identifier(part, max_length) for part in identifier.split('.'))

    if not identifier:
        raise ValueError("Invalid identifier: cannot be empty")
    if identifier.startswith('[') and identifier.endswith(']'):
        # SQL Server bracket quoting
        inner = identifier[1:-1]
        if not inner or ']' in inner:
            raise ValueError(f"Invalid identifier: {identifier}")
        return identifier
    if not (identifier[0].isalpha() or identifier[0] in '_#'):
        raise ValueError(f"Invalid identifier: must start with a letter: {identifier}")
    if len(identifier) > max_length:
        raise ValueError(f"Invalid identifier: exceeds max length of {max_length}")
    if not re.match(r'^[#\w$]+$', identifier):
        raise ValueError(f"Invalid identifier: contains illegal characters: {identifier}")

    return identifier


def batch_iterable(iterable: Iterable[Any], batch_size: int) -> Iterable[List[Any]]:
    """
    Batch an iterable into chunks of specified size.

    Args:
        iterable: The iterable to batch
        batch_size: Size of each batch

    Yields:
        Lists of items up to batch_size length
    """
    iterator = iter(iterable)
    while True:
        batch = list(itertools.islice(iterator, batch_size))
        if not batch:
            break
        yield batch


def check_cancelled(cancel, rows: int = 0) -> None:
    """Raise OperationCancelled if the cancel token (e.g. threading.Event) is set."""
    if cancel is not None and cancel.is_set():
        raise OperationCancelled(rows=rows)
