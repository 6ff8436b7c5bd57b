"""
Unit tests for database adapters (backupx/backup/databases.py).

SQLite dumps run against a real database file; PostgreSQL and MySQL dumps
run against mocked connections.
"""

import gzip
import sqlite3
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from backupx.backup.databases import (
    MySQLSource,
    PostgreSQLSource,
    SQLiteSource,
    build_connection_url,
    quote_identifier,
    render_value
)
from backupx.backup.errors import BackupError, SourceNotFound
from backupx.models import DatabaseTarget, TargetKind


def mock_result(rows=None, scalar=None, keys=None):
    result = MagicMock()
    result.fetchall.return_value = rows or []
    result.fetchone.return_value = rows[0] if rows else None
    result.scalar.return_value = scalar
    result.keys.return_value = keys or []
    result.__iter__.return_value = iter(rows or [])
    return result


def collect(source, conn):
    chunks = []
    source.dump(conn, chunks.append)
    return ''.join(chunks)


class TestRenderValue:
    """Test SQL literal rendering."""

    @pytest.mark.parametrize('value,dialect,expected', [
        (None, 'sqlite', 'NULL'),
        (42, 'sqlite', '42'),
        (1.5, 'mysql', '1.5'),
        (Decimal('10.25'), 'postgresql', '10.25'),
        (True, 'postgresql', 'true'),
        (False, 'mysql', '0'),
        ("O'Brien", 'sqlite', "'O''Brien'"),
        ('C:\\path', 'mysql', "'C:\\\\path'"),
        ('C:\\path', 'postgresql', "'C:\\path'"),
        (b'\x01\xff', 'sqlite', "X'01ff'"),
        (b'\x01\xff', 'postgresql', "'\\x01ff'::bytea"),
        (date(2024, 1, 15), 'postgresql', "'2024-01-15'"),
        (datetime(2024, 1, 15, 12, 30), 'mysql', "'2024-01-15T12:30:00'"),
        ({'a': 1}, 'postgresql', '\'{"a": 1}\''),
    ])
    def test_render_value(self, value, dialect, expected):
        assert render_value(value, dialect) == expected

    def test_quote_identifier(self):
        assert quote_identifier('users') == '"users"'
        assert quote_identifier('we"ird') == '"we""ird"'
        assert quote_identifier('orders', '`') == '`orders`'


class TestBuildConnectionUrl:
    """Test connection URL construction."""

    def test_postgres_scheme_is_normalized(self):
        url = build_connection_url('postgres://user:pw@db.example.com:5433/app', TargetKind.POSTGRESQL)

        assert url.drivername == 'postgresql+psycopg2'
        assert url.host == 'db.example.com'
        assert url.port == 5433
        assert url.database == 'app'

    def test_mysql_string_uses_pymysql(self):
        url = build_connection_url('mysql://root@localhost/shop', TargetKind.MYSQL)

        assert url.drivername == 'mysql+pymysql'
        assert url.database == 'shop'

    def test_explicit_driver_is_kept(self):
        url = build_connection_url('postgresql+pg8000://u@h/d', TargetKind.POSTGRESQL)

        assert url.drivername == 'postgresql+pg8000'

    def test_postgresql_mapping_defaults(self):
        url = build_connection_url({'database': 'app', 'ssl': True}, TargetKind.POSTGRESQL)

        assert url.username == 'postgres'
        assert url.host == 'localhost'
        assert url.port == 5432
        assert url.query['sslmode'] == 'require'

    def test_mysql_mapping(self):
        url = build_connection_url(
            {'hostname': 'db', 'port': 3307, 'database': 'shop', 'username': 'app', 'password': 's3cret'},
            TargetKind.MYSQL
        )

        assert url.drivername == 'mysql+pymysql'
        assert url.port == 3307
        assert url.password == 's3cret'
        assert url.query['charset'] == 'utf8mb4'

    def test_mapping_requires_database(self):
        with pytest.raises(SourceNotFound):
            build_connection_url({'hostname': 'db'}, TargetKind.MYSQL)

    def test_invalid_string(self):
        with pytest.raises(SourceNotFound):
            build_connection_url('not a url', TargetKind.POSTGRESQL)


class TestSQLiteSource:
    """Test SQLite dumps against a real database."""

    def test_dump_contents(self, sqlite_target, output_dir, log):
        result = SQLiteSource(sqlite_target, log).backup(str(output_dir))

        assert result.success is True
        assert result.kind == TargetKind.SQLITE
        assert result.output_filename.endswith('.sql')
        assert result.file_count is None

        dump = (output_dir / result.output_filename).read_text(encoding='utf-8')
        assert '-- SQLite Database Backup' in dump
        assert 'DROP TABLE IF EXISTS "users";' in dump
        assert 'CREATE TABLE users' in dump
        assert 'INSERT INTO "users" ("id", "name", "avatar") VALUES (1, \'O\'\'Brien\', X\'0102\');' in dump
        assert 'INSERT INTO "users" ("id", "name", "avatar") VALUES (2, \'Alice\', NULL);' in dump
        assert 'CREATE INDEX idx_users_name' in dump
        assert 'CREATE TRIGGER trg_users_insert' in dump
        assert dump.rstrip().endswith('PRAGMA foreign_keys=ON;')

    def test_dump_restores(self, sqlite_target, output_dir, tmp_path, log):
        result = SQLiteSource(sqlite_target, log).backup(str(output_dir))
        dump = (output_dir / result.output_filename).read_text(encoding='utf-8')

        conn = sqlite3.connect(str(tmp_path / 'restored.sqlite'))
        try:
            conn.executescript(dump)
            rows = conn.execute('SELECT name FROM users ORDER BY id').fetchall()
            log_rows = conn.execute('SELECT COUNT(*) FROM logs').fetchone()[0]
        finally:
            conn.close()

        assert rows == [("O'Brien",), ('Alice',)]
        assert log_rows == 2

    def test_table_filters(self, sqlite_db, output_dir, log):
        target = DatabaseTarget(kind=TargetKind.SQLITE, name='db', path=str(sqlite_db), exclude_tables=['logs'])

        result = SQLiteSource(target, log).backup(str(output_dir))

        dump = (output_dir / result.output_filename).read_text(encoding='utf-8')
        assert '"users"' in dump
        assert '"logs"' not in dump
        # The trigger belongs to users and is kept
        assert 'CREATE TRIGGER' in dump

    def test_schema_only(self, sqlite_db, output_dir, log):
        target = DatabaseTarget(kind=TargetKind.SQLITE, name='db', path=str(sqlite_db), include_data=False)

        result = SQLiteSource(target, log).backup(str(output_dir))

        dump = (output_dir / result.output_filename).read_text(encoding='utf-8')
        assert 'CREATE TABLE users' in dump
        assert 'INSERT INTO' not in dump

    def test_data_only(self, sqlite_db, output_dir, log):
        target = DatabaseTarget(kind=TargetKind.SQLITE, name='db', path=str(sqlite_db), include_schema=False)

        result = SQLiteSource(target, log).backup(str(output_dir))

        dump = (output_dir / result.output_filename).read_text(encoding='utf-8')
        assert 'CREATE TABLE' not in dump
        assert 'INSERT INTO "users"' in dump

    def test_compressed_dump(self, sqlite_db, output_dir, log):
        target = DatabaseTarget(kind=TargetKind.SQLITE, name='db', path=str(sqlite_db), compress=True)

        result = SQLiteSource(target, log).backup(str(output_dir))

        assert result.output_filename.endswith('.sql.gz')
        with gzip.open(output_dir / result.output_filename, 'rt', encoding='utf-8') as f:
            assert 'CREATE TABLE users' in f.read()

    def test_connection_string_as_path(self, sqlite_db, output_dir, log):
        target = DatabaseTarget(kind=TargetKind.SQLITE, name='db', connection=str(sqlite_db))

        result = SQLiteSource(target, log).backup(str(output_dir))

        assert result.size_bytes > 0

    def test_missing_database_file(self, tmp_path, output_dir, log):
        target = DatabaseTarget(kind=TargetKind.SQLITE, name='db', path=str(tmp_path / 'missing.sqlite'))

        with pytest.raises(SourceNotFound):
            SQLiteSource(target, log).backup(str(output_dir))

        assert not (tmp_path / 'missing.sqlite').exists()
        assert list(output_dir.iterdir()) == []

    def test_no_path_configured(self, output_dir, log):
        target = DatabaseTarget(kind=TargetKind.SQLITE, name='db')

        with pytest.raises(SourceNotFound):
            SQLiteSource(target, log).backup(str(output_dir))


class TestPostgreSQLSource:
    """Test PostgreSQL dumps with a mocked connection."""

    @pytest.fixture
    def target(self):
        return DatabaseTarget(
            kind=TargetKind.POSTGRESQL,
            name='pg',
            connection='postgresql://postgres@localhost/app'
        )

    def make_connection(self):
        columns = [
            ('id', 'integer', None, 'NO', "nextval('users_id_seq'::regclass)"),
            ('name', 'character varying', 100, 'YES', None),
        ]
        responses = {
            'current_database': mock_result(scalar='app'),
            'information_schema.tables': mock_result(rows=[('public', 'users')]),
            'information_schema.columns': mock_result(rows=columns),
            'FROM "public"."users"': mock_result(rows=[(1, "O'Brien"), (2, None)]),
            'pg_indexes': mock_result(rows=[('idx_users_name', 'CREATE INDEX idx_users_name ON public.users (name)')]),
        }

        def execute(statement, params=None):
            sql = str(statement)
            for key, response in responses.items():
                if key in sql:
                    if key in ('information_schema.columns', 'FROM "public"."users"'):
                        response.__iter__.return_value = iter(response.fetchall.return_value)
                    return response
            raise AssertionError(f"Unexpected query: {sql}")

        conn = MagicMock()
        conn.execute.side_effect = execute
        conn.execution_options.return_value = conn
        return conn

    def test_dump(self, target, log):
        dump = collect(PostgreSQLSource(target, log), self.make_connection())

        assert '-- PostgreSQL Database Backup' in dump
        assert '-- Database: app' in dump
        assert 'DROP TABLE IF EXISTS "public"."users" CASCADE;' in dump
        assert '"name" CHARACTER VARYING(100)' in dump
        assert '"id" INTEGER NOT NULL DEFAULT nextval' in dump
        assert 'INSERT INTO "public"."users" ("id", "name") VALUES (1, \'O\'\'Brien\');' in dump
        assert 'INSERT INTO "public"."users" ("id", "name") VALUES (2, NULL);' in dump
        assert 'CREATE INDEX idx_users_name ON public.users (name);' in dump

    def test_rows_stream_from_one_query(self, target, log):
        conn = self.make_connection()

        collect(PostgreSQLSource(target, log), conn)

        conn.execution_options.assert_called_once_with(stream_results=True, yield_per=1000)
        queries = [str(c.args[0]) for c in conn.execute.call_args_list]
        assert sum('FROM "public"."users"' in q for q in queries) == 1
        assert not any('OFFSET' in q or 'COUNT(*)' in q for q in queries)

    def test_excluded_tables_are_skipped(self, log):
        target = DatabaseTarget(
            kind=TargetKind.POSTGRESQL, name='pg', connection='postgresql://localhost/app',
            exclude_tables=['users']
        )

        dump = collect(PostgreSQLSource(target, log), self.make_connection())

        assert 'INSERT INTO' not in dump
        assert 'CREATE TABLE' not in dump

    @patch('backupx.backup.databases.create_engine')
    def test_connection_failure(self, mock_create_engine, target, output_dir, log):
        engine = MagicMock()
        engine.connect.side_effect = OperationalError('connect', {}, Exception('refused'))
        mock_create_engine.return_value = engine

        with pytest.raises(SourceNotFound, match='Cannot connect'):
            PostgreSQLSource(target, log).backup(str(output_dir))

        engine.dispose.assert_called_once()

    @patch('backupx.backup.databases.create_engine')
    def test_partial_dump_is_removed(self, mock_create_engine, target, output_dir, log):
        engine = MagicMock()
        conn = engine.connect.return_value.__enter__.return_value
        conn.execute.side_effect = RuntimeError('boom')
        mock_create_engine.return_value = engine

        with pytest.raises(RuntimeError):
            PostgreSQLSource(target, log).backup(str(output_dir))

        assert list(output_dir.iterdir()) == []


class TestMySQLSource:
    """Test MySQL dumps with a mocked connection."""

    def make_connection(self):
        select = mock_result(rows=[(1, 'C:\\dir', b'\x00')], keys=['id', 'path', 'blob'])
        responses = {
            'DATABASE()': mock_result(scalar='shop'),
            'SHOW FULL TABLES': mock_result(rows=[('orders', 'BASE TABLE'), ('audit', 'BASE TABLE')]),
            'SHOW CREATE TABLE `orders`': mock_result(rows=[('orders', 'CREATE TABLE `orders` (`id` int)')]),
            'SELECT * FROM `orders`': select,
        }

        def execute(statement, params=None):
            sql = str(statement)
            for key, response in responses.items():
                if key in sql:
                    return response
            raise AssertionError(f"Unexpected query: {sql}")

        conn = MagicMock()
        conn.execute.side_effect = execute
        conn.execution_options.return_value = conn
        return conn

    def test_dump(self, log):
        target = DatabaseTarget(
            kind=TargetKind.MYSQL, name='shop', connection='mysql://root@localhost/shop', tables=['orders']
        )

        dump = collect(MySQLSource(target, log), self.make_connection())

        assert '-- MySQL Database Backup' in dump
        assert 'DROP TABLE IF EXISTS `orders`;' in dump
        assert 'CREATE TABLE `orders` (`id` int);' in dump
        assert "INSERT INTO `orders` (`id`, `path`, `blob`) VALUES (1, 'C:\\\\dir', X'00');" in dump
        assert '`audit`' not in dump
        assert dump.rstrip().endswith('SET FOREIGN_KEY_CHECKS=1;')

    @patch('backupx.backup.databases.create_engine')
    def test_ssl_connect_args(self, mock_create_engine, log):
        target = DatabaseTarget(
            kind=TargetKind.MYSQL, name='shop', connection={'database': 'shop', 'ssl': True}
        )

        MySQLSource(target, log).create_engine()

        assert mock_create_engine.call_args[1]['connect_args'] == {'ssl': {'check_hostname': False}}

    @patch('backupx.backup.databases.create_engine')
    def test_sqlalchemy_error_is_backup_error(self, mock_create_engine, output_dir, log):
        from sqlalchemy.exc import ProgrammingError

        engine = MagicMock()
        conn = engine.connect.return_value.__enter__.return_value
        conn.execute.side_effect = ProgrammingError('SELECT DATABASE()', {}, Exception('denied'))
        mock_create_engine.return_value = engine
        target = DatabaseTarget(kind=TargetKind.MYSQL, name='shop', connection='mysql://root@localhost/shop')

        with pytest.raises(BackupError, match='dump failed'):
            MySQLSource(target, log).backup(str(output_dir))
