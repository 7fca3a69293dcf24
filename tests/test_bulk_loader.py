# tests/test_bulk_loader.py
import logging
import sqlite3
import threading
from unittest.mock import MagicMock, call

import pytest

from dbbridge.database import Database
from dbbridge.defaults import settings
from dbbridge.etl import BulkLoader, BulkLoadRequest, CopyOptions, CopyOutcome, InsertTransport, bulk_load
from dbbridge.exceptions import ConfigurationError, CopyError, OperationCancelled


def soldiers(count, duplicate_at=None):
    """Fire Nation soldiers 1..count; the row at duplicate_at reuses soldier_id 1."""
    rows = []
    for i in range(1, count + 1):
        soldier_id = 1 if i == duplicate_at else i
        rows.append({'soldier_id': soldier_id, 'name': f'Soldier {i}', 'rank': 'private',
                     'firebending_skill': i / 10})
    return rows


def cancelling_soldiers(count, cancel, cancel_at):
    """Soldier rows that set the cancel event just before yielding row cancel_at."""
    for row in soldiers(count):
        if row['soldier_id'] == cancel_at:
            cancel.set()
        yield row


class TestDirectCopy:
    """IsolationLevel NONE: every batch is committed on its own."""

    def test_copies_all_rows(self, sqlite_db, soldiers_table, count_rows):
        rows = bulk_load(sqlite_db, soldiers_table, soldiers(250), isolation_level='NONE', batch_size=100)
        assert rows == 250
        assert count_rows(soldiers_table) == 250

    def test_failed_batch_keeps_earlier_batches(self, sqlite_db, soldiers_table, count_rows):
        with pytest.raises(CopyError) as exc_info:
            bulk_load(sqlite_db, soldiers_table, soldiers(500, duplicate_at=480),
                      isolation_level='NONE', batch_size=100)
        assert exc_info.value.rows_committed == 400
        assert exc_info.value.table == soldiers_table
        assert isinstance(exc_info.value.__cause__, sqlite3.IntegrityError)
        assert count_rows(soldiers_table) == 400

    def test_cancel_between_batches(self, sqlite_db, soldiers_table, count_rows):
        cancel = threading.Event()
        with pytest.raises(OperationCancelled) as exc_info:
            bulk_load(sqlite_db, soldiers_table, cancelling_soldiers(250, cancel, 151),
                      isolation_level='NONE', batch_size=100, cancel=cancel)
        assert exc_info.value.rows == 100
        assert count_rows(soldiers_table) == 100

    def test_cancel_after_last_batch_keeps_outcome(self, sqlite_db, soldiers_table, count_rows):
        cancel = threading.Event()

        def soldiers_then_cancel():
            yield from soldiers(200)
            cancel.set()

        rows = bulk_load(sqlite_db, soldiers_table, soldiers_then_cancel(),
                         isolation_level='NONE', batch_size=100, cancel=cancel)
        assert cancel.is_set()
        assert rows == 200
        assert count_rows(soldiers_table) == 200


class TestTransactionalCopy:
    """Any other isolation level: one transaction, all or nothing."""

    @pytest.mark.parametrize('level', ['DEFAULT', 'READ_UNCOMMITTED', 'READ_COMMITTED',
                                       'REPEATABLE_READ', 'SERIALIZABLE'])
    def test_copies_all_rows(self, sqlite_db, soldiers_table, count_rows, level):
        rows = bulk_load(sqlite_db, soldiers_table, soldiers(250), isolation_level=level, batch_size=100)
        assert rows == 250
        assert count_rows(soldiers_table) == 250

    def test_failure_rolls_back_everything(self, sqlite_db, soldiers_table, count_rows):
        with pytest.raises(CopyError) as exc_info:
            bulk_load(sqlite_db, soldiers_table, soldiers(500, duplicate_at=480),
                      isolation_level='READ_COMMITTED', batch_size=100)
        assert exc_info.value.rows_committed == 0
        assert count_rows(soldiers_table) == 0

    def test_cancel_rolls_back(self, sqlite_db, soldiers_table, count_rows):
        cancel = threading.Event()
        with pytest.raises(OperationCancelled):
            bulk_load(sqlite_db, soldiers_table, cancelling_soldiers(250, cancel, 151),
                      isolation_level='SERIALIZABLE', batch_size=100, cancel=cancel)
        assert count_rows(soldiers_table) == 0

    def test_cancel_before_copy(self, sqlite_db, soldiers_table, count_rows):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelled):
            bulk_load(sqlite_db, soldiers_table, soldiers(10), cancel=cancel)
        assert count_rows(soldiers_table) == 0

    def test_default_isolation_from_settings(self, sqlite_db, soldiers_table):
        settings['bulk_load']['isolation_level'] = 'SNAPSHOT'
        # sqlite has no snapshot level, so the configured default is rejected
        with pytest.raises(ConfigurationError):
            bulk_load(sqlite_db, soldiers_table, soldiers(1))


class TestBulkLoader:

    def test_load_returns_outcome(self, sqlite_db, soldiers_table):
        outcome = BulkLoader(sqlite_db).load(BulkLoadRequest(soldiers_table, soldiers(3)))
        assert outcome == CopyOutcome(soldiers_table, 3)

    def test_list_rows_with_columns(self, sqlite_db, soldiers_table, count_rows):
        rows = bulk_load(sqlite_db, soldiers_table, [(1, 'Zhao', 'admiral', 7.5), (2, 'Zuko', 'prince', 9.0)],
                         columns=['soldier_id', 'name', 'rank', 'firebending_skill'])
        assert rows == 2
        cur = sqlite_db.cursor()
        cur.execute(f"SELECT name FROM {soldiers_table} ORDER BY soldier_id")
        assert cur.fetchall() == [('Zhao',), ('Zuko',)]

    def test_column_subset(self, sqlite_db, soldiers_table):
        rows = bulk_load(sqlite_db, soldiers_table, soldiers(5), columns=['soldier_id', 'name'])
        assert rows == 5
        cur = sqlite_db.cursor()
        cur.execute(f"SELECT COUNT(*) FROM {soldiers_table} WHERE rank IS NULL")
        assert cur.fetchone()[0] == 5

    def test_polars_dataframe(self, sqlite_db, soldiers_table, count_rows):
        pl = pytest.importorskip('polars')
        df = pl.DataFrame({'soldier_id': [1, 2, 3], 'name': ['Zhao', 'Zuko', 'Azula'],
                           'rank': ['admiral', 'prince', 'princess'], 'firebending_skill': [7.5, 9.0, 10.0]})
        assert bulk_load(sqlite_db, soldiers_table, df, isolation_level='SERIALIZABLE') == 3
        assert count_rows(soldiers_table) == 3

    def test_empty_dataset(self, sqlite_db, soldiers_table):
        assert bulk_load(sqlite_db, soldiers_table, [], columns=['soldier_id', 'name']) == 0

    def test_empty_dataset_without_columns(self, sqlite_db, soldiers_table):
        with pytest.raises(ConfigurationError):
            bulk_load(sqlite_db, soldiers_table, [])

    def test_batch_size_from_settings(self, sqlite_db, soldiers_table, monkeypatch):
        settings['bulk_load']['batch_size'] = 2
        transport_sizes = []
        real_init = InsertTransport.__init__

        def recording_init(self, db, table, columns, batch_size, *args, **kwargs):
            transport_sizes.append(batch_size)
            real_init(self, db, table, columns, batch_size, *args, **kwargs)

        monkeypatch.setattr(InsertTransport, '__init__', recording_init)
        assert bulk_load(sqlite_db, soldiers_table, soldiers(5)) == 5
        assert transport_sizes == [2]

    def test_borrowed_database_left_open(self, sqlite_db, soldiers_table, count_rows):
        bulk_load(sqlite_db, soldiers_table, soldiers(2))
        assert count_rows(soldiers_table) == 2

    def test_owned_connection(self, tmp_path):
        path = tmp_path / 'army.db'
        db = Database.create('sqlite', database=str(path))
        db.cursor().execute("CREATE TABLE army (id INTEGER PRIMARY KEY, name TEXT)")
        db.commit()
        db.close()

        rows = bulk_load({'type': 'sqlite', 'database': str(path)}, 'army', [{'id': 1, 'name': 'Iroh'}])
        assert rows == 1
        with Database.create('sqlite', database=str(path)) as check:
            cur = check.cursor()
            cur.execute("SELECT name FROM army")
            assert cur.fetchall() == [('Iroh',)]


class TestValidation:

    def test_invalid_isolation_level(self, sqlite_db, soldiers_table):
        with pytest.raises(ConfigurationError):
            bulk_load(sqlite_db, soldiers_table, soldiers(1), isolation_level='CHAOTIC')

    def test_snapshot_on_sqlite(self, sqlite_db, soldiers_table, count_rows):
        with pytest.raises(ConfigurationError):
            bulk_load(sqlite_db, soldiers_table, soldiers(1), isolation_level='SNAPSHOT')
        assert count_rows(soldiers_table) == 0

    @pytest.mark.parametrize('table', ['fire nation', 'army; DROP TABLE army', '1army', ''])
    def test_invalid_table(self, sqlite_db, table):
        with pytest.raises(ConfigurationError):
            bulk_load(sqlite_db, table, soldiers(1))

    def test_invalid_column(self, sqlite_db, soldiers_table):
        with pytest.raises(ConfigurationError):
            bulk_load(sqlite_db, soldiers_table, [{'name); DROP TABLE x; --': 'Zhao'}])

    @pytest.mark.parametrize('batch_size', [0, -5, 'ten'])
    def test_invalid_batch_size(self, sqlite_db, soldiers_table, batch_size):
        with pytest.raises(ConfigurationError):
            bulk_load(sqlite_db, soldiers_table, soldiers(1), batch_size=batch_size)

    def test_validated_before_connecting(self):
        with pytest.raises(ConfigurationError):
            bulk_load('no_such_connection', 'army', soldiers(1), isolation_level='CHAOTIC')

    def test_bad_rows_raise_value_error(self, sqlite_db, soldiers_table):
        with pytest.raises(ValueError):
            bulk_load(sqlite_db, soldiers_table, [[1, 'Zhao'], [2]], columns=['soldier_id', 'name'])


class DriverError(Exception):
    pass


@pytest.fixture
def mock_sqlserver():
    """SQL Server Database double that records cursor statements."""
    db = MagicMock()
    db.database_type = 'sqlserver'
    db.paramstyle = 'qmark'
    db.interface.Error = DriverError
    cursor = MagicMock()
    db.cursor.return_value.__enter__.return_value = cursor
    return db, cursor


class TestInsertTransport:

    def test_insert_statement(self, sqlite_db):
        transport = InsertTransport(sqlite_db, 'army', ['id', 'name'], batch_size=10)
        assert transport.sql == 'INSERT INTO army (id, name) VALUES (?, ?)'

    def test_keep_identity_on_sqlserver(self, mock_sqlserver):
        db, cursor = mock_sqlserver
        transport = InsertTransport(db, 'dbo.benders', ['id', 'name'], batch_size=2,
                                    flags=CopyOptions.KEEP_IDENTITY | CopyOptions.FIRE_TRIGGERS)
        assert transport.copy([(1, 'Aang'), (2, 'Katara'), (3, 'Sokka')]) == 3
        assert cursor.execute.call_args_list == [call('SET IDENTITY_INSERT dbo.benders ON'),
                                                 call('SET IDENTITY_INSERT dbo.benders OFF')]
        assert cursor.executemany.call_count == 2

    def test_identity_insert_turned_off_after_failure(self, mock_sqlserver):
        db, cursor = mock_sqlserver
        cursor.executemany.side_effect = DriverError('identity conflict')
        transport = InsertTransport(db, 'dbo.benders', ['id', 'name'], batch_size=2,
                                    flags=CopyOptions.KEEP_IDENTITY | CopyOptions.FIRE_TRIGGERS)
        with pytest.raises(CopyError):
            transport.copy([(1, 'Aang')])
        assert cursor.execute.call_args_list[-1] == call('SET IDENTITY_INSERT dbo.benders OFF')

    def test_keep_identity_ignored_elsewhere(self, mock_sqlserver):
        db, cursor = mock_sqlserver
        db.database_type = 'postgres'
        transport = InsertTransport(db, 'benders', ['id', 'name'], batch_size=2,
                                    flags=CopyOptions.KEEP_IDENTITY | CopyOptions.FIRE_TRIGGERS)
        transport.copy([(1, 'Aang')])
        cursor.execute.assert_not_called()

    def test_triggers_disabled_on_sqlserver(self, mock_sqlserver):
        db, cursor = mock_sqlserver
        transport = InsertTransport(db, 'dbo.benders', ['id', 'name'], batch_size=2,
                                    flags=CopyOptions.KEEP_IDENTITY)
        transport.copy([(1, 'Aang'), (2, 'Katara')])
        assert cursor.execute.call_args_list == [call('ALTER TABLE dbo.benders DISABLE TRIGGER ALL'),
                                                 call('SET IDENTITY_INSERT dbo.benders ON'),
                                                 call('SET IDENTITY_INSERT dbo.benders OFF'),
                                                 call('ALTER TABLE dbo.benders ENABLE TRIGGER ALL')]

    def test_triggers_enabled_after_failure(self, mock_sqlserver):
        db, cursor = mock_sqlserver
        cursor.executemany.side_effect = DriverError('duplicate key')
        transport = InsertTransport(db, 'dbo.benders', ['id'], batch_size=2)
        with pytest.raises(CopyError):
            transport.copy([(1,)])
        assert cursor.execute.call_args_list[-1] == call('ALTER TABLE dbo.benders ENABLE TRIGGER ALL')

    def test_fire_triggers_leaves_sqlserver_triggers_alone(self, mock_sqlserver):
        db, cursor = mock_sqlserver
        transport = InsertTransport(db, 'dbo.benders', ['id'], batch_size=2, flags=CopyOptions.FIRE_TRIGGERS)
        transport.copy([(1,)])
        cursor.execute.assert_not_called()

    def test_postgres_replica_role_inside_transaction(self, mock_sqlserver):
        db, cursor = mock_sqlserver
        db.database_type = 'postgres'
        InsertTransport(db, 'benders', ['id'], batch_size=2).copy([(1,)])
        assert cursor.execute.call_args_list == [call('SET LOCAL session_replication_role = replica')]
        db.commit.assert_not_called()

    def test_postgres_replica_role_reset_after_batch_commits(self, mock_sqlserver):
        db, cursor = mock_sqlserver
        db.database_type = 'postgres'
        InsertTransport(db, 'benders', ['id'], batch_size=2, commit_each_batch=True).copy([(1,), (2,), (3,)])
        assert cursor.execute.call_args_list == [call('SET SESSION session_replication_role = replica'),
                                                 call('SET SESSION session_replication_role = DEFAULT')]
        assert db.commit.call_count == 3

    def test_triggers_fire_elsewhere_with_warning(self, sqlite_db, soldiers_table, count_rows, caplog):
        cur = sqlite_db.cursor()
        cur.execute("CREATE TABLE war_council (soldier_id INTEGER)")
        cur.execute(f"CREATE TRIGGER report_to_council AFTER INSERT ON {soldiers_table} "
                    f"BEGIN INSERT INTO war_council VALUES (NEW.soldier_id); END")
        sqlite_db.commit()
        with caplog.at_level(logging.WARNING, logger='dbbridge.etl.bulk'):
            bulk_load(sqlite_db, soldiers_table, soldiers(2), fire_triggers=False)
        assert count_rows('war_council') == 2
        assert 'insert triggers on' in caplog.text

    def test_named_paramstyle_binds_dicts(self, mock_sqlserver):
        db, cursor = mock_sqlserver
        db.paramstyle = 'named'
        transport = InsertTransport(db, 'benders', ['id', 'name'], batch_size=10)
        transport.copy([(1, 'Aang')])
        cursor.executemany.assert_called_once_with('INSERT INTO benders (id, name) VALUES (:id, :name)',
                                                   [{'id': 1, 'name': 'Aang'}])

    def test_commit_each_batch(self, mock_sqlserver):
        db, cursor = mock_sqlserver
        transport = InsertTransport(db, 'benders', ['id'], batch_size=2, flags=CopyOptions.FIRE_TRIGGERS,
                                    commit_each_batch=True)
        transport.copy([(1,), (2,), (3,)])
        assert db.commit.call_count == 2
        assert transport.rows_committed == 3

    def test_rows_committed_zero_inside_transaction(self, mock_sqlserver):
        db, cursor = mock_sqlserver
        transport = InsertTransport(db, 'benders', ['id'], batch_size=2)
        transport.copy([(1,), (2,), (3,)])
        db.commit.assert_not_called()
        assert transport.rows_copied == 3
        assert transport.rows_committed == 0
