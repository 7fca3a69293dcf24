# tests/test_export.py
import io
import sqlite3
import threading
from unittest.mock import patch

import pytest

import dbbridge.export
from dbbridge.database import Database
from dbbridge.exceptions import ConfigurationError, OperationCancelled, SourceReadError
from dbbridge.export import QueryParameter, QuerySpec, export_query
from dbbridge.writers import ExportOptions
from dbbridge.writers.encoding import FileEncoding, resolve_encoding


@pytest.fixture
def temple_db_file(tmp_path):
    """sqlite database file with an air_temples table, for owned connections."""
    path = tmp_path / 'temples.db'
    db = Database.create('sqlite', database=str(path))
    cur = db.cursor()
    cur.execute("CREATE TABLE air_temples (id INTEGER, name TEXT)")
    cur.executemany("INSERT INTO air_temples VALUES (?, ?)",
                    [(1, 'Northern'), (2, 'Southern'), (3, 'Eastern'), (4, 'Western')])
    db.commit()
    db.close()
    return path


class CancelAfterFetches:
    """Cancel token that reports set once a cursor has fetched more than `rows` rows."""

    def __init__(self, rows):
        self.rows = rows
        self.fetched = 0

    def is_set(self):
        return self.fetched > self.rows


class TestQuerySpec:

    def test_create_uses_default_timeout(self):
        assert QuerySpec.create('SELECT 1').timeout == 30

    def test_create_explicit_timeout(self):
        assert QuerySpec.create('SELECT 1', timeout=0).timeout == 0

    def test_create_passes_query_spec_through(self):
        spec = QuerySpec('SELECT 1', timeout=5)
        assert QuerySpec.create(spec) is spec

    def test_bind_vars(self):
        query = QuerySpec('SELECT :a, :b', [QueryParameter('a', 1), QueryParameter('b', 'x')])
        assert query.bind_vars() == {'a': 1, 'b': 'x'}
        assert QuerySpec('SELECT :a', {'a': 2}).bind_vars() == {'a': 2}
        assert QuerySpec('SELECT 1').bind_vars() is None


class TestExportQuery:

    def test_export_to_path(self, sqlite_db, air_nomads, tmp_path):
        path = tmp_path / 'nomads.csv'
        rows = export_query(f"SELECT nomad_id, name FROM {air_nomads} ORDER BY nomad_id", path, sqlite_db)
        assert rows == 3
        assert path.read_bytes() == b'nomad_id,name\r\n1,"Aang"\r\n2,"Gyatso"\r\n3,"Tenzin"\r\n'

    def test_named_parameters(self, sqlite_db, air_nomads):
        buffer = io.StringIO()
        query = QuerySpec(f"SELECT name FROM {air_nomads} WHERE temple = :temple ORDER BY nomad_id",
                          [QueryParameter('temple', 'Southern Air Temple')])
        rows = export_query(query, buffer, sqlite_db, ExportOptions.create(line_terminator='lf'))
        assert rows == 2
        assert buffer.getvalue() == 'name\n"Aang"\n"Gyatso"\n'

    def test_borrowed_database_left_open(self, sqlite_db, air_nomads):
        export_query(f"SELECT * FROM {air_nomads}", io.StringIO(), sqlite_db)
        cur = sqlite_db.cursor()
        cur.execute(f"SELECT COUNT(*) FROM {air_nomads}")
        assert cur.fetchone()[0] == 3

    def test_owned_connection_closed(self, temple_db_file):
        opened = []
        real_resolve = dbbridge.export.resolve_connection

        def recording_resolve(connection):
            db, owned = real_resolve(connection)
            opened.append(db)
            return db, owned

        buffer = io.StringIO()
        with patch('dbbridge.export.resolve_connection', recording_resolve):
            rows = export_query("SELECT * FROM air_temples", buffer,
                                {'type': 'sqlite', 'database': str(temple_db_file)})
        assert rows == 4
        with pytest.raises(sqlite3.ProgrammingError):
            opened[0].execute("SELECT 1")

    def test_owned_connection_closed_on_error(self, temple_db_file):
        opened = []
        real_resolve = dbbridge.export.resolve_connection

        def recording_resolve(connection):
            db, owned = real_resolve(connection)
            opened.append(db)
            return db, owned

        with patch('dbbridge.export.resolve_connection', recording_resolve):
            with pytest.raises(SourceReadError):
                export_query("SELECT * FROM no_such_table", io.StringIO(),
                             {'type': 'sqlite', 'database': str(temple_db_file)})
        with pytest.raises(sqlite3.ProgrammingError):
            opened[0].execute("SELECT 1")

    def test_connection_by_config_name(self, test_config_file):
        dbbridge.config.set_config_file(test_config_file)
        buffer = io.StringIO()
        rows = export_query("SELECT 'Aang' AS avatar", buffer, 'air_temple')
        assert rows == 1
        assert buffer.getvalue() == 'avatar\r\n"Aang"\r\n'

    def test_unsupported_connection(self):
        with pytest.raises(ConfigurationError):
            export_query("SELECT 1", io.StringIO(), 42)

    def test_execute_failure(self, sqlite_db):
        with pytest.raises(SourceReadError) as exc_info:
            export_query("SELECT * FROM spirit_world", io.StringIO(), sqlite_db)
        assert isinstance(exc_info.value.__cause__, sqlite3.Error)
        assert exc_info.value.rows_written == 0

    def test_invalid_encoding_creates_no_file(self, sqlite_db, tmp_path):
        path = tmp_path / 'never.csv'
        options = ExportOptions(encoding='other', encoding_name='no-such-codec')
        with pytest.raises(ConfigurationError):
            export_query("SELECT 1", path, sqlite_db, options)
        assert not path.exists()

    def test_timeout_applied(self, sqlite_db):
        with patch.object(Database, 'set_timeout') as set_timeout:
            export_query(QuerySpec('SELECT 1', timeout=120), io.StringIO(), sqlite_db)
            set_timeout.assert_called_once_with(120)

    def test_cancel_before_execute(self, sqlite_db, tmp_path):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelled):
            export_query("SELECT 1", tmp_path / 'out.csv', sqlite_db, cancel=cancel)

    def test_cancel_after_ten_of_hundred_rows(self, sqlite_db, tmp_path):
        cur = sqlite_db.cursor()
        cur.execute("CREATE TABLE lemurs (id INTEGER, name TEXT)")
        cur.executemany("INSERT INTO lemurs VALUES (?, ?)", [(i, f'momo {i}') for i in range(100)])
        sqlite_db.commit()

        cancel = CancelAfterFetches(10)
        real_fetchone = dbbridge.cursors.Cursor.fetchone

        def counting_fetchone(self):
            row = real_fetchone(self)
            if row is not None:
                cancel.fetched += 1
            return row

        path = tmp_path / 'lemurs.csv'
        with patch.object(dbbridge.cursors.Cursor, 'fetchone', counting_fetchone):
            with pytest.raises(OperationCancelled) as exc_info:
                export_query("SELECT id, name FROM lemurs ORDER BY id", path, sqlite_db,
                             ExportOptions.create(line_terminator='lf'), cancel=cancel)

        assert exc_info.value.rows == 10
        lines = path.read_text(encoding='utf-8').splitlines()
        # header plus only complete records
        assert len(lines) == 11
        assert lines[-1] == '9,"momo 9"'
        assert all(line.count(',') == 1 for line in lines)


class TestEncodings:

    def _export(self, sqlite_db, path, **options):
        return export_query("SELECT 'Zukó' AS name", path, sqlite_db,
                            ExportOptions.create(line_terminator='lf', **options))

    def test_utf8_without_bom(self, sqlite_db, tmp_path):
        path = tmp_path / 'out.csv'
        self._export(sqlite_db, path)
        assert path.read_bytes() == 'name\n"Zukó"\n'.encode('utf-8')

    def test_utf8_with_bom(self, sqlite_db, tmp_path):
        path = tmp_path / 'out.csv'
        self._export(sqlite_db, path, enable_bom=True)
        assert path.read_bytes().startswith(b'\xef\xbb\xbfname')

    def test_unicode_is_utf16le_with_bom(self, sqlite_db, tmp_path):
        path = tmp_path / 'out.csv'
        self._export(sqlite_db, path, encoding='unicode')
        assert path.read_bytes() == b'\xff\xfe' + 'name\n"Zukó"\n'.encode('utf-16-le')

    def test_other_codec(self, sqlite_db, tmp_path):
        path = tmp_path / 'out.csv'
        self._export(sqlite_db, path, encoding='other', encoding_name='latin-1')
        assert path.read_bytes() == b'name\n"Zuk\xf3"\n'

    def test_other_bom_codec_normalized(self, sqlite_db, tmp_path):
        path = tmp_path / 'out.csv'
        self._export(sqlite_db, path, encoding='other', encoding_name='utf-8-sig')
        assert path.read_bytes() == 'name\n"Zukó"\n'.encode('utf-8')

    def test_other_unicode_codec_with_bom(self, sqlite_db, tmp_path):
        path = tmp_path / 'out.csv'
        self._export(sqlite_db, path, encoding='other', encoding_name='utf-16', enable_bom=True)
        assert path.read_bytes() == b'\xff\xfe' + 'name\n"Zukó"\n'.encode('utf-16-le')


class TestResolveEncoding:

    def test_presets(self):
        assert resolve_encoding(FileEncoding.UTF8) == ('utf-8', False)
        assert resolve_encoding(FileEncoding.UTF8, enable_bom=True) == ('utf-8', True)
        assert resolve_encoding(FileEncoding.ASCII, enable_bom=True) == ('ascii', False)
        assert resolve_encoding(FileEncoding.UNICODE) == ('utf-16-le', True)

    def test_ansi_uses_preferred_encoding(self):
        with patch('dbbridge.writers.encoding.locale.getpreferredencoding', return_value='cp1252'):
            assert resolve_encoding(FileEncoding.ANSI) == ('cp1252', False)

    def test_other(self):
        assert resolve_encoding(FileEncoding.OTHER, encoding_name='latin-1') == ('iso8859-1', False)
        assert resolve_encoding(FileEncoding.OTHER, True, 'latin-1') == ('iso8859-1', False)
        assert resolve_encoding(FileEncoding.OTHER, True, 'utf-32') == ('utf-32-le', True)
        assert resolve_encoding(FileEncoding.OTHER, False, 'UTF8') == ('utf-8', False)

    def test_errors(self):
        with pytest.raises(ConfigurationError):
            resolve_encoding('ebcdic-ish')
        with pytest.raises(ConfigurationError):
            resolve_encoding(FileEncoding.OTHER)
        with pytest.raises(ConfigurationError):
            resolve_encoding(FileEncoding.OTHER, encoding_name='no-such-codec')
