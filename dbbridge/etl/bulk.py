# dbbridge/etl/bulk.py
"""
Bulk loading of in-memory datasets into a database table.

Rows are copied with batched ``executemany`` INSERTs, either inside one
transaction at a chosen isolation level, or with each batch committed on its
own (isolation level NONE).
"""

import logging
from contextlib import ExitStack
from typing import Any, Dict, Iterable, NamedTuple, Optional, Sequence, Union

from ..config import resolve_connection
from ..database import Database
from ..defaults import settings
from ..exceptions import ConfigurationError, CopyError
from ..utils import ParamStyle, batch_iterable, check_cancelled, create_insert_statement, validate_identifier
from .copy_options import CopyOptions, resolve_copy_options
from .dataset import dataset_rows
from .isolation import IsolationLevel, resolve_isolation

logger = logging.getLogger(__name__)


class BulkLoadRequest(NamedTuple):
    """
    A dataset to copy into a table.

    Attributes
    ----------
    table : str
        Destination table, optionally schema qualified
    data
        DataFrame, iterable of dicts/records/namedtuples, or rows with ``columns``
    columns : sequence of str, optional
        Destination columns, in row order
    timeout : int, optional
        Command timeout in seconds, defaults to settings['bulk_load']['timeout']
    isolation_level : str, optional
        IsolationLevel name, defaults to settings['bulk_load']['isolation_level']
    keep_identity : bool
        Insert the dataset's values into identity columns
    fire_triggers : bool
        Run insert triggers on the destination table. When False they are
        switched off for the load on SQL Server and postgres; other engines
        fire them anyway and a warning is logged.
    batch_size : int, optional
        Rows per executemany, defaults to settings['bulk_load']['batch_size']
    """
    table: str
    data: Any
    columns: Optional[Sequence[str]] = None
    timeout: Optional[int] = None
    isolation_level: Optional[str] = None
    keep_identity: bool = False
    fire_triggers: bool = False
    batch_size: Optional[int] = None


class CopyOutcome(NamedTuple):
    """Result of a completed bulk load."""
    table: str
    rows_copied: int


class InsertTransport:
    """
    Copies rows into a table with batched INSERT statements.

    Rows are counted as each batch executes successfully. With
    ``commit_each_batch`` every batch is committed immediately and a failed
    batch is rolled back, leaving the earlier batches in the table.

    Example
    -------
    ::

        transport = InsertTransport(db, 'staging.orders', ['id', 'total'], batch_size=500)
        with db.transaction():
            transport.copy(rows)
        print(transport.rows_copied)
    """

    def __init__(self, db: Database, table: str, columns: Sequence[str], batch_size: int,
                 flags: int = CopyOptions.DEFAULT, cancel=None, commit_each_batch: bool = False):
        self.db = db
        self.table = table
        self.columns = list(columns)
        self.batch_size = batch_size
        self.flags = flags
        self.cancel = cancel
        self.commit_each_batch = commit_each_batch
        self._rows = 0
        self.sql = create_insert_statement(table, self.columns, db.paramstyle)

    @property
    def rows_copied(self) -> int:
        """Rows in batches that executed successfully."""
        return self._rows

    @property
    def rows_committed(self) -> int:
        """Rows already committed. Only batch commits count; a surrounding transaction commits later."""
        return self._rows if self.commit_each_batch else 0

    def _bind_params(self, batch):
        if self.db.paramstyle in ParamStyle.named_styles():
            return [dict(zip(self.columns, row)) for row in batch]
        return batch

    def _keep_identity(self) -> bool:
        return bool(self.flags & CopyOptions.KEEP_IDENTITY) and self.db.database_type == 'sqlserver'

    def _disable_triggers(self, cursor) -> bool:
        """Switch off insert triggers where the engine allows it. Returns True if they were switched off."""
        if self.flags & CopyOptions.FIRE_TRIGGERS:
            return False
        if self.db.database_type == 'sqlserver':
            cursor.execute(f'ALTER TABLE {self.table} DISABLE TRIGGER ALL')
        elif self.db.database_type == 'postgres':
            # LOCAL ends with the surrounding transaction; batch commits need the session setting
            scope = 'SESSION' if self.commit_each_batch else 'LOCAL'
            cursor.execute(f'SET {scope} session_replication_role = replica')
        else:
            logger.warning(f"Triggers cannot be disabled on {self.db.database_type}; "
                           f"insert triggers on {self.table} will fire")
            return False
        return True

    def _enable_triggers(self, cursor) -> None:
        try:
            if self.db.database_type == 'sqlserver':
                cursor.execute(f'ALTER TABLE {self.table} ENABLE TRIGGER ALL')
            elif self.commit_each_batch:
                cursor.execute('SET SESSION session_replication_role = DEFAULT')
                self.db.commit()
        except self.db.interface.Error as e:
            logger.warning(f"Failed to re-enable triggers on {self.table}: {e}")

    def copy(self, rows: Iterable[tuple]) -> int:
        """
        Insert all rows.

        Returns:
            Number of rows copied

        Raises:
            CopyError: a batch failed
            OperationCancelled: cancel was set before a batch
        """
        with self.db.cursor(batch_size=self.batch_size) as cursor:
            triggers_disabled = self._disable_triggers(cursor)
            try:
                if self._keep_identity():
                    cursor.execute(f'SET IDENTITY_INSERT {self.table} ON')
                for batch_num, batch in enumerate(batch_iterable(rows, self.batch_size), 1):
                    check_cancelled(self.cancel, self.rows_committed)
                    try:
                        cursor.executemany(self.sql, self._bind_params(batch))
                        if self.commit_each_batch:
                            self.db.commit()
                    except self.db.interface.Error as e:
                        logger.error(f"Batch {batch_num} failed for {self.table} "
                                     f"after {self._rows:,} rows: {e}")
                        if self.commit_each_batch:
                            self.db.rollback()
                        raise CopyError(f"Bulk copy into {self.table} failed: {e}",
                                        table=self.table, rows_committed=self.rows_committed) from e
                    self._rows += len(batch)
                    logger.debug(f"Batch {batch_num}: {len(batch):,} rows into {self.table} ({self._rows:,} total)")
            finally:
                if self._keep_identity():
                    try:
                        cursor.execute(f'SET IDENTITY_INSERT {self.table} OFF')
                    except self.db.interface.Error as e:
                        logger.warning(f"Failed to turn off IDENTITY_INSERT on {self.table}: {e}")
                if triggers_disabled:
                    self._enable_triggers(cursor)
        return self._rows


class BulkLoader:
    """
    Copies a BulkLoadRequest's dataset into its table under an isolation policy.

    * IsolationLevel.NONE: direct copy. Each batch is committed as it goes; a
      failure rolls back only the failing batch, earlier batches stay committed.
    * Any other level: the whole copy runs in one transaction at that level
      (engine default for DEFAULT). Any error or cancellation rolls everything back.

    Parameters
    ----------
    connection : str, dict or Database
        Config connection name, parameter dict with 'type', or an open Database.
        Connections opened here are closed when the load finishes; a Database
        passed in is left open.
        The command timeout set for the load stays on a borrowed Database.
    cancel : threading.Event, optional
        Checked before the copy, before every batch, and before commit

    Example
    -------
    ::

        loader = BulkLoader('warehouse')
        outcome = loader.load(BulkLoadRequest('staging.orders', df,
                                              isolation_level='SERIALIZABLE', batch_size=5000))
        print(outcome.rows_copied)
    """

    def __init__(self, connection: Union[str, Dict[str, Any], Database], cancel=None):
        self.connection = connection
        self.cancel = cancel

    def load(self, request: BulkLoadRequest) -> CopyOutcome:
        """
        Run the copy.

        Raises:
            ConfigurationError: invalid isolation level, table, columns or batch size,
                or an isolation level the database does not support
            CopyError: the copy failed
            OperationCancelled: cancel was set
        """
        config = settings['bulk_load']
        level = IsolationLevel.validate(request.isolation_level or config.get('isolation_level', 'READ_COMMITTED'))
        batch_size = config.get('batch_size', 1000) if request.batch_size is None else request.batch_size
        if not isinstance(batch_size, int) or batch_size < 1:
            raise ConfigurationError(f"Invalid batch size: {batch_size}")
        timeout = config.get('timeout', 30) if request.timeout is None else request.timeout
        flags = resolve_copy_options(request.keep_identity, request.fire_triggers)

        columns, rows = dataset_rows(request.data, request.columns)
        if not columns:
            raise ConfigurationError(f"No columns to load into {request.table}")
        try:
            table = validate_identifier(request.table)
            for column in columns:
                validate_identifier(column)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        check_cancelled(self.cancel)
        with ExitStack() as stack:
            db, owned = resolve_connection(self.connection)
            if owned:
                stack.callback(db.close)
            native_level = resolve_isolation(level, db.database_type)
            transport = InsertTransport(db, table, columns, batch_size, flags, self.cancel,
                                        commit_each_batch=(level == IsolationLevel.NONE))
            logger.debug(f"Loading {table} on {db}: isolation {level}, batch size {batch_size}, "
                         f"options {CopyOptions.names(flags) or 'DEFAULT'}")

            if level == IsolationLevel.NONE:
                db.set_timeout(timeout)
                transport.copy(rows)
            else:
                with db.transaction(native_level):
                    db.set_timeout(timeout)
                    transport.copy(rows)
                    check_cancelled(self.cancel, transport.rows_committed)

        logger.info(f"Bulk loaded {transport.rows_copied:,} rows into {table}")
        return CopyOutcome(table, transport.rows_copied)


def bulk_load(connection: Union[str, Dict[str, Any], Database],
              table: str,
              data,
              columns: Optional[Sequence[str]] = None,
              cancel=None,
              **kwargs) -> int:
    """
    Copy a dataset into a table.

    Args:
        connection: Config connection name, parameter dict, or open Database
        table: Destination table
        data: DataFrame, iterable of dicts/records/namedtuples, or rows with columns
        columns: Column names, required for plain list/tuple rows
        cancel: Optional threading.Event
        **kwargs: Other BulkLoadRequest fields (timeout, isolation_level, keep_identity,
            fire_triggers, batch_size)

    Returns:
        Number of rows copied

    Example:
        bulk_load(db, 'users', [{'id': 1, 'name': 'a'}], isolation_level='NONE')
    """
    request = BulkLoadRequest(table, data, columns, **kwargs)
    return BulkLoader(connection, cancel=cancel).load(request).rows_copied
