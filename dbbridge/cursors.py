# dbbridge/cursors.py
"""
Cursor wrapper that delegates to the underlying DB-API cursor stored in _cursor.
"""

import logging
from typing import Any, Callable, List, Optional, Sequence

from .defaults import settings
from .utils import ParamStyle, process_sql_parameters

logger = logging.getLogger(__name__)
__all__ = ['Cursor']


class Cursor:
    """
    Thin wrapper around a DB-API cursor.

    Rows are returned exactly as the driver returns them (tuples), since the
    export formatter needs raw values and the driver's own column metadata.
    What the wrapper adds:

    * ``:name`` parameters converted to whatever paramstyle the driver uses
    * the fastest available ``executemany`` (psycopg2 ``execute_batch``,
      pyodbc ``fast_executemany``)
    * context manager support so the cursor is always closed

    Example
    -------
    ::

        with db.cursor() as cursor:
            cursor.execute("SELECT id, name FROM users WHERE status = :status",
                           {'status': 'active'})
            for row in cursor:
                print(row)
    """
    # Attributes that live on this class and are not delegated to the underlying cursor
    _local_attrs = ['connection', 'paramstyle', 'batch_size', 'debug', '_cursor', '_bulk_method']

    def __init__(self, connection, batch_size: Optional[int] = None, debug: bool = False, **kwargs):
        """
        Initialize a cursor for database operations.

        Parameters
        ----------
        connection : Database
            Database connection object
        batch_size : int, optional
            Page size used by the psycopg2 ``execute_batch`` fast path
        debug : bool, default False
            Log queries and bind variables at DEBUG level
        **kwargs
            Additional arguments passed to the underlying database cursor
        """
        self.connection = connection
        self.debug = debug
        if batch_size is None:
            batch_size = settings['bulk_load'].get('batch_size', 1000)
        self.batch_size = batch_size
        self._bulk_method = None
        try:
            if hasattr(self.connection, '_connection'):
                self._cursor = self.connection._connection.cursor(**kwargs)
            else:
                self._cursor = self.connection.cursor(**kwargs)
        except Exception as e:
            raise TypeError(f'First argument must be a database connection object: {e}')

        self.paramstyle = getattr(self.connection.interface, 'paramstyle', ParamStyle.DEFAULT)

    def __getattr__(self, key: str) -> Any:
        """Delegate attribute access to underlying cursor."""
        return getattr(self._cursor, key)

    def __setattr__(self, key: str, value: Any) -> None:
        if key in self._local_attrs:
            self.__dict__[key] = value
        else:
            setattr(self._cursor, key, value)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __iter__(self):
        return self

    def __next__(self):
        row = self._cursor.fetchone()
        if row is None:
            raise StopIteration
        return row

    def _prepare_params(self, param_names: Sequence[str], bind_vars: dict) -> Any:
        """
        Convert dict parameters to format required by cursor's paramstyle.

        Returns:
            Tuple for positional styles, dict for named styles
        """
        missing = set(param_names) - set(bind_vars.keys())
        if missing:
            logger.info(f"Parameters not provided, defaulting to None: {', '.join(sorted(missing))}")
        unused = set(bind_vars.keys()) - set(param_names)
        if unused:
            logger.debug(f"Parameters not referenced by query: {', '.join(sorted(unused))}")
        if self.paramstyle in ParamStyle.positional_styles():
            return tuple(bind_vars.get(name) for name in param_names)
        else:
            return {name: bind_vars.get(name) for name in dict.fromkeys(param_names)}

    def _detect_bulk_method(self) -> Callable:
        """
        Detect and return the fastest bulk execution method for this cursor.

        Called once per cursor, on first executemany(). Stored in self._bulk_method.
        """
        adapter = self.connection.interface.__name__
        if adapter == 'psycopg2':
            try:
                from psycopg2.extras import execute_batch

                def psycopg_batch(cur, sql, argslist):
                    return execute_batch(cur, sql, argslist, page_size=self.batch_size)

                logger.debug("Cursor upgraded: executemany to psycopg2.extras.execute_batch")
                return psycopg_batch
            except ImportError:
                logger.debug("psycopg2.extras not available, using native executemany")
        elif adapter == 'pyodbc':
            if hasattr(self._cursor, 'fast_executemany') and not self._cursor.fast_executemany:
                self._cursor.fast_executemany = True
                logger.debug("pyodbc: enabled fast_executemany for bulk operations")

        return lambda cur, sql, argslist: cur.executemany(sql, argslist)

    def execute(self, query: str, bind_vars: Any = None) -> None:
        """
        Execute a query.

        When bind_vars is a dict, ``:name`` placeholders in the query are converted
        to the driver's paramstyle and the values are bound by name.
        """
        if isinstance(bind_vars, dict):
            query, param_names = process_sql_parameters(query, self.paramstyle)
            bind_vars = self._prepare_params(param_names, bind_vars)

        if self.debug:
            logger.debug(f'Query:\n{query}')
            logger.debug(f'Bind vars:\n{bind_vars}')

        if bind_vars is None:
            self._cursor.execute(query)
        else:
            self._cursor.execute(query, bind_vars)

    def executemany(self, query: str, bind_vars: List[Any]) -> None:
        """Execute a query against multiple parameter sets."""
        if self.debug:
            logger.debug(f'Executemany - Query:\n{query}')
            logger.debug(f'Bind vars (first row):\n{bind_vars[0] if bind_vars else None}')

        if self._bulk_method is None:
            self._bulk_method = self._detect_bulk_method()

        self._bulk_method(self._cursor, query, bind_vars)

    def fetchone(self) -> Optional[Any]:
        return self._cursor.fetchone()

    def fetchall(self) -> List[Any]:
        return self._cursor.fetchall()

    def close(self) -> None:
        self._cursor.close()
