"""
Database adapters producing SQL dump files.

Supports:
- SQLiteSource: dumps a SQLite file opened read-only
- PostgreSQLSource: dumps tables via information_schema (psycopg2 driver)
- MySQLSource: dumps tables via SHOW CREATE TABLE (PyMySQL driver)

Dumps are written statement by statement through SQLAlchemy Core, so row
data is never held in memory as a whole.
"""

import json
import os
from datetime import date, datetime, time as dt_time, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Connection, Engine, make_url
from sqlalchemy.exc import ArgumentError, InterfaceError, OperationalError, SQLAlchemyError

from backupx.models import TargetKind
from .compression import get_artifact_size, open_output_stream, remove_partial
from .errors import BackupError, SourceNotFound
from .sources import Source


POSTGRESQL_PORT = 5432
MYSQL_PORT = 3306
DATA_BATCH_SIZE = 1000

Emit = Callable[[str], None]


def quote_identifier(name: str, quote: str = '"') -> str:
    """Quote a table or column name, doubling embedded quote characters."""
    return f"{quote}{name.replace(quote, quote * 2)}{quote}"


def render_value(value: Any, dialect: str = 'sqlite') -> str:
    """
    Render a Python value as a SQL literal.

    Args:
        value: Column value returned by the driver
        dialect: 'sqlite', 'postgresql' or 'mysql'

    Returns:
        SQL literal text
    """
    if value is None:
        return 'NULL'
    if isinstance(value, bool):
        if dialect == 'postgresql':
            return 'true' if value else 'false'
        return '1' if value else '0'
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        hex_value = bytes(value).hex()
        if dialect == 'postgresql':
            return f"'\\x{hex_value}'::bytea"
        return f"X'{hex_value}'"
    if isinstance(value, (datetime, date, dt_time)):
        return _quote_string(value.isoformat(), dialect)
    if isinstance(value, (dict, list)):
        return _quote_string(json.dumps(value), dialect)
    return _quote_string(str(value), dialect)


def _quote_string(value: str, dialect: str) -> str:
    escaped = value.replace("'", "''")
    if dialect == 'mysql':
        escaped = escaped.replace('\\', '\\\\')
    return f"'{escaped}'"


def build_connection_url(connection: Union[str, Dict[str, Any]], kind: TargetKind) -> URL:
    """
    Build a SQLAlchemy URL from a connection string or mapping.

    Mapping keys: hostname, port, database, username, password, ssl.

    Raises:
        SourceNotFound: If the connection settings are unusable
    """
    if isinstance(connection, str):
        if connection.startswith('postgres://'):
            connection = 'postgresql://' + connection[len('postgres://'):]
        try:
            url = make_url(connection)
        except ArgumentError as e:
            raise SourceNotFound(f"Invalid connection string: {e}") from e
        if kind == TargetKind.POSTGRESQL and url.drivername == 'postgresql':
            url = url.set(drivername='postgresql+psycopg2')
        elif kind == TargetKind.MYSQL and url.drivername == 'mysql':
            url = url.set(drivername='mysql+pymysql')
        return url

    if not connection or not connection.get('database'):
        raise SourceNotFound("Connection must specify a database")

    query = {}
    if kind == TargetKind.POSTGRESQL:
        ssl = connection.get('ssl')
        if isinstance(ssl, str):
            query['sslmode'] = ssl
        elif ssl is True:
            query['sslmode'] = 'require'
        return URL.create(
            'postgresql+psycopg2',
            username=connection.get('username', 'postgres'),
            password=connection.get('password'),
            host=connection.get('hostname', 'localhost'),
            port=connection.get('port', POSTGRESQL_PORT),
            database=connection['database'],
            query=query
        )

    return URL.create(
        'mysql+pymysql',
        username=connection.get('username', 'root'),
        password=connection.get('password'),
        host=connection.get('hostname', 'localhost'),
        port=connection.get('port', MYSQL_PORT),
        database=connection['database'],
        query={'charset': 'utf8mb4'}
    )


class DatabaseSource(Source):
    """
    Base class for SQL dump adapters.

    Subclasses implement create_engine() and dump().
    """

    dialect = 'sqlite'

    def extension(self) -> str:
        return '.sql.gz' if self.target.compress else '.sql'

    def create_engine(self) -> Engine:
        raise NotImplementedError

    def dump(self, conn: Connection, emit: Emit):
        raise NotImplementedError

    def write(self, output_path: str) -> Tuple[int, Optional[int]]:
        engine = self.create_engine()
        try:
            with engine.connect() as conn:
                with open_output_stream(output_path, self.target.compress) as stream:
                    self.dump(conn, lambda sql: stream.write(sql.encode('utf-8')))
        except (OperationalError, InterfaceError) as e:
            remove_partial(output_path)
            raise SourceNotFound(f"Cannot connect to {self.kind} database {self.target.name}: {e}") from e
        except SQLAlchemyError as e:
            remove_partial(output_path)
            raise BackupError(f"{self.kind} dump failed: {e}") from e
        except Exception:
            remove_partial(output_path)
            raise
        finally:
            engine.dispose()

        return get_artifact_size(output_path), None

    def select_tables(self, tables: List[str]) -> List[str]:
        """Apply the table filter and exclusions, preserving order."""
        selected = tables
        if self.target.tables:
            wanted = set(self.target.tables)
            selected = [t for t in selected if t in wanted]
        if self.target.exclude_tables:
            excluded = set(self.target.exclude_tables)
            selected = [t for t in selected if t not in excluded]
        return selected

    def header(self, title: str, database: str) -> str:
        generated = datetime.now(timezone.utc).isoformat()
        return (
            f"-- {title} Database Backup\n"
            f"-- Database: {database}\n"
            f"-- Generated: {generated}\n"
            f"-- Backup tool: backupx\n\n"
        )

    def insert_statement(self, table: str, columns: List[str], row, quote: str = '"') -> str:
        column_list = ', '.join(quote_identifier(c, quote) for c in columns)
        values = ', '.join(render_value(v, self.dialect) for v in row)
        return f"INSERT INTO {table} ({column_list}) VALUES ({values});\n"


class SQLiteSource(DatabaseSource):
    """Dumps a SQLite database file."""

    kind = TargetKind.SQLITE
    dialect = 'sqlite'

    @property
    def database_path(self) -> str:
        path = self.target.path or self.target.connection
        if not isinstance(path, str) or not path:
            raise SourceNotFound(f"No database path configured for {self.target.name}")
        return path

    def create_engine(self) -> Engine:
        path = os.path.abspath(self.database_path)
        if not os.path.isfile(path):
            raise SourceNotFound(f"Database file not found: {self.database_path}")
        # Read-only URI connection; never creates the file
        return create_engine(f"sqlite:///file:{path}?mode=ro&uri=true")

    def dump(self, conn: Connection, emit: Emit):
        emit(self.header('SQLite', self.database_path))
        emit("PRAGMA foreign_keys=OFF;\nBEGIN TRANSACTION;\n\n")

        all_tables = [row[0] for row in conn.execute(text(
            "SELECT name FROM sqlite_master "
            "WHERE type='table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ))]
        tables = self.select_tables(all_tables)

        for table in tables:
            self.log.info(f"Backing up table: {table}")
            quoted = quote_identifier(table)

            if self.target.include_schema:
                schema = conn.execute(
                    text("SELECT sql FROM sqlite_master WHERE type='table' AND name = :name"),
                    {'name': table}
                ).scalar()
                if schema:
                    emit(f"-- Table: {table}\n")
                    emit(f"DROP TABLE IF EXISTS {quoted};\n")
                    emit(f"{schema};\n\n")

            if self.target.include_data:
                result = conn.execute(text(f"SELECT * FROM {quoted}"))
                columns = list(result.keys())
                wrote_header = False
                for row in result:
                    if not wrote_header:
                        emit(f"-- Data for table: {table}\n")
                        wrote_header = True
                    emit(self.insert_statement(quoted, columns, row))
                if wrote_header:
                    emit("\n")

        if self.target.include_schema and tables:
            self._dump_objects(conn, emit, 'index', 'Indexes', tables)
            self._dump_objects(conn, emit, 'trigger', 'Triggers', tables)

        emit("COMMIT;\nPRAGMA foreign_keys=ON;\n")

    def _dump_objects(self, conn: Connection, emit: Emit, object_type: str, title: str, tables: List[str]):
        rows = conn.execute(
            text("SELECT sql, tbl_name FROM sqlite_master "
                 "WHERE type = :type AND sql IS NOT NULL ORDER BY name"),
            {'type': object_type}
        ).fetchall()
        statements = [row[0] for row in rows if row[1] in tables]
        if statements:
            emit(f"-- {title}\n")
            for statement in statements:
                emit(f"{statement};\n")
            emit("\n")


class PostgreSQLSource(DatabaseSource):
    """Dumps a PostgreSQL database."""

    kind = TargetKind.POSTGRESQL
    dialect = 'postgresql'

    def create_engine(self) -> Engine:
        url = build_connection_url(self.target.connection, TargetKind.POSTGRESQL)
        return create_engine(url)

    def dump(self, conn: Connection, emit: Emit):
        database = conn.execute(text("SELECT current_database()")).scalar()
        emit(self.header('PostgreSQL', database))

        rows = conn.execute(text(
            "SELECT table_schema, table_name FROM information_schema.tables "
            "WHERE table_type = 'BASE TABLE' "
            "AND table_schema NOT IN ('information_schema', 'pg_catalog') "
            "ORDER BY table_schema, table_name"
        )).fetchall()
        names = self.select_tables([row[1] for row in rows])
        tables = [(row[0], row[1]) for row in rows if row[1] in names]

        if self.target.include_schema:
            self._dump_schema(conn, emit, tables)
        if self.target.include_data:
            self._dump_data(conn, emit, tables)
        if self.target.include_schema:
            self._dump_indexes(conn, emit, tables)

    def _columns(self, conn: Connection, schema: str, table: str):
        return conn.execute(
            text("SELECT column_name, data_type, character_maximum_length, is_nullable, column_default "
                 "FROM information_schema.columns "
                 "WHERE table_schema = :schema AND table_name = :table "
                 "ORDER BY ordinal_position"),
            {'schema': schema, 'table': table}
        ).fetchall()

    def _dump_schema(self, conn: Connection, emit: Emit, tables: List[Tuple[str, str]]):
        emit("-- Schema\n")
        emit("SET statement_timeout = 0;\n"
             "SET lock_timeout = 0;\n"
             "SET client_encoding = 'UTF8';\n"
             "SET standard_conforming_strings = on;\n"
             "SET check_function_bodies = false;\n"
             "SET xmloption = content;\n"
             "SET client_min_messages = warning;\n\n")

        for schema in sorted({schema for schema, _ in tables}):
            if schema != 'public':
                emit(f"CREATE SCHEMA IF NOT EXISTS {quote_identifier(schema)};\n")
        emit("\n")

        for schema, table in tables:
            self.log.info(f"Backing up schema for table: {schema}.{table}")
            columns = self._columns(conn, schema, table)
            if not columns:
                continue

            definitions = []
            for name, data_type, max_length, nullable, default in columns:
                definition = f"{quote_identifier(name)} {data_type.upper()}"
                if max_length:
                    definition += f"({max_length})"
                if nullable == 'NO':
                    definition += " NOT NULL"
                if default:
                    definition += f" DEFAULT {default}"
                definitions.append(definition)

            qualified = f"{quote_identifier(schema)}.{quote_identifier(table)}"
            emit(f"-- Table: {schema}.{table}\n")
            emit(f"DROP TABLE IF EXISTS {qualified} CASCADE;\n")
            emit(f"CREATE TABLE {qualified} (\n  " + ",\n  ".join(definitions) + "\n);\n\n")

    def _dump_data(self, conn: Connection, emit: Emit, tables: List[Tuple[str, str]]):
        emit("-- Data\n")
        # One server-side cursor per table; every row is read from a single scan
        streaming = conn.execution_options(stream_results=True, yield_per=DATA_BATCH_SIZE)
        for schema, table in tables:
            self.log.info(f"Backing up data for table: {schema}.{table}")
            qualified = f"{quote_identifier(schema)}.{quote_identifier(table)}"
            columns = [row[0] for row in self._columns(conn, schema, table)]
            if not columns:
                continue

            column_list = ', '.join(quote_identifier(c) for c in columns)
            result = streaming.execute(text(f"SELECT {column_list} FROM {qualified}"))
            rows = 0
            for row in result:
                if not rows:
                    emit(f"-- Data for table: {schema}.{table}\n")
                emit(self.insert_statement(qualified, columns, row))
                rows += 1
            if rows:
                emit("\n")

    def _dump_indexes(self, conn: Connection, emit: Emit, tables: List[Tuple[str, str]]):
        emit("-- Indexes\n")
        for schema, table in tables:
            indexes = conn.execute(
                text("SELECT indexname, indexdef FROM pg_indexes "
                     "WHERE schemaname = :schema AND tablename = :table "
                     "AND indexname NOT LIKE '%_pkey'"),
                {'schema': schema, 'table': table}
            ).fetchall()
            for _, definition in indexes:
                emit(f"{definition};\n")
        emit("\n")


class MySQLSource(DatabaseSource):
    """Dumps a MySQL database."""

    kind = TargetKind.MYSQL
    dialect = 'mysql'

    def create_engine(self) -> Engine:
        url = build_connection_url(self.target.connection, TargetKind.MYSQL)
        connect_args = {}
        if isinstance(self.target.connection, dict) and self.target.connection.get('ssl'):
            connect_args['ssl'] = {'check_hostname': False}
        return create_engine(url, connect_args=connect_args)

    def dump(self, conn: Connection, emit: Emit):
        database = conn.execute(text("SELECT DATABASE()")).scalar()
        emit(self.header('MySQL', database))
        emit("SET NAMES utf8mb4;\nSET FOREIGN_KEY_CHECKS=0;\n\n")

        rows = conn.execute(text("SHOW FULL TABLES WHERE Table_type = 'BASE TABLE'")).fetchall()
        tables = self.select_tables([row[0] for row in rows])

        for table in tables:
            self.log.info(f"Backing up table: {table}")
            quoted = quote_identifier(table, '`')

            if self.target.include_schema:
                create = conn.execute(text(f"SHOW CREATE TABLE {quoted}")).fetchone()
                if create:
                    emit(f"-- Table: {table}\n")
                    emit(f"DROP TABLE IF EXISTS {quoted};\n")
                    emit(f"{create[1]};\n\n")

            if self.target.include_data:
                result = conn.execution_options(stream_results=True).execute(text(f"SELECT * FROM {quoted}"))
                columns = list(result.keys())
                wrote_header = False
                for row in result:
                    if not wrote_header:
                        emit(f"-- Data for table: {table}\n")
                        wrote_header = True
                    emit(self.insert_statement(quoted, columns, row, quote='`'))
                if wrote_header:
                    emit("\n")

        emit("SET FOREIGN_KEY_CHECKS=1;\n")


DATABASE_SOURCES = {
    TargetKind.SQLITE: SQLiteSource,
    TargetKind.POSTGRESQL: PostgreSQLSource,
    TargetKind.MYSQL: MySQLSource,
}
