# dbbridge/export.py
"""
Run a query and stream its result set into a delimited text file.
"""

import logging
from contextlib import ExitStack
from pathlib import Path
from typing import Any, Dict, Mapping, NamedTuple, Optional, Sequence, TextIO, Union

from .config import resolve_connection
from .database import Database
from .defaults import settings
from .exceptions import SourceReadError
from .utils import check_cancelled
from .writers.base import sink_name, open_sink
from .writers.delimited import DelimitedWriter, ExportOptions

logger = logging.getLogger(__name__)


class QueryParameter(NamedTuple):
    """A named query parameter, bound to ``:name`` in the query text."""
    name: str
    value: Any


class QuerySpec(NamedTuple):
    """
    Query to export.

    Attributes
    ----------
    text : str
        SQL using ``:name`` placeholders
    parameters : sequence of QueryParameter or mapping
        Values bound by name
    timeout : int, optional
        Command timeout in seconds, 0 for no limit. None uses settings['command_timeout'] (30).

    Example
    -------
    ::

        query = QuerySpec("SELECT * FROM orders WHERE placed >= :since",
                          [QueryParameter('since', dt.date(2024, 1, 1))], timeout=120)
    """
    text: str
    parameters: Union[Sequence[QueryParameter], Mapping[str, Any]] = ()
    timeout: Optional[int] = None

    @classmethod
    def create(cls, query: Union[str, 'QuerySpec'], parameters=None, timeout: Optional[int] = None) -> 'QuerySpec':
        """Wrap query text in a QuerySpec with the default command timeout. QuerySpecs pass through."""
        if isinstance(query, QuerySpec):
            return query
        if timeout is None:
            timeout = settings.get('command_timeout', 30)
        return cls(query, parameters or (), timeout)

    def bind_vars(self) -> Optional[Dict[str, Any]]:
        """Parameters as a dict, or None when the query declares none."""
        if not self.parameters:
            return None
        if isinstance(self.parameters, Mapping):
            return dict(self.parameters)
        return {param.name: param.value for param in self.parameters}


def export_query(query: Union[str, QuerySpec],
                 file: Optional[Union[str, Path, TextIO]],
                 connection: Union[str, Dict[str, Any], Database],
                 options: Optional[ExportOptions] = None,
                 cancel=None) -> int:
    """
    Execute a query and write its results as delimited text.

    The sink, connection and cursor are acquired in that order and released in
    reverse on every exit path. A Database passed in is borrowed and left open;
    connections opened from a config name or parameter dict are closed.

    The command timeout is applied with Database.set_timeout and is not reset
    afterwards, so a borrowed Database keeps it for later statements.

    Args:
        query: Query text or QuerySpec
        file: Output path or text file object. None writes to stdout.
        connection: Config connection name, parameter dict with 'type', or open Database
        options: ExportOptions, defaults to ExportOptions.create()
        cancel: Optional threading.Event; setting it stops the export

    Returns:
        Number of data rows written

    Raises:
        ConfigurationError: Invalid options or encoding, raised before any file is created
        SourceReadError: Query execution or fetch failed
        OperationCancelled: cancel was set

    Example
    -------
    ::

        rows = export_query("SELECT * FROM users WHERE status = :status",
                            'users.csv', 'warehouse',
                            ExportOptions.create(delimiter=';', quote_dates=True))

        orders = QuerySpec("SELECT * FROM orders", timeout=300)
        export_query(orders, 'orders.txt', {'type': 'sqlite', 'database': 'shop.db'})
    """
    query = QuerySpec.create(query)
    options = options or ExportOptions.create()
    encoding, write_bom = options.resolve_encoding()

    with ExitStack() as stack:
        sink = stack.enter_context(open_sink(file, encoding, write_bom))
        db, owned = resolve_connection(connection)
        if owned:
            stack.callback(db.close)
        check_cancelled(cancel)
        cursor = stack.enter_context(db.cursor())
        db.set_timeout(settings.get('command_timeout', 30) if query.timeout is None else query.timeout)

        try:
            cursor.execute(query.text, query.bind_vars())
        except Exception as e:
            logger.error(f"Query failed on {db}: {e}")
            raise SourceReadError(f"Query execution failed: {e}") from e

        writer = DelimitedWriter(cursor, file, options, cancel=cancel)
        rows = writer.serialize(sink)
        sink.flush()

    logger.info(f"Exported {rows} rows to {sink_name(file)}")
    return rows
