"""
Database connection handling with SQLAlchemy.

This module provides:
1. The `connect()` function for creating new database connections
2. The `ConnectionWrapper` class that wraps SQLAlchemy connections with query methods
3. Engine creation and management through a thread-safe registry

The ConnectionWrapper is the client the geometry/hstore layer runs on:
- execute(sql, *args) - Execute SQL and return affected row count
- select(sql, *args) - Execute SELECT and return results
- select_records(sql, *args, geom_name=, hstore_name=) - Decoded record set
- insert_records(table, records, ...) - Multi-row INSERT with encoding
- update_records(table, records, id_cols, update_cols, ...) - UPDATE ... FROM
"""
import atexit
import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import fields
from typing import Any, Self

import pandas as pd
import sqlalchemy as sa
from pgextras.cursor import Cursor, extract_column_info, get_dict_cursor
from pgextras.cursor import load_data
from pgextras.exceptions import QueryError
from pgextras.options import DatabaseOptions, use_iterdict_data_loader
from pgextras.reader import select_records
from pgextras.schema import get_column_types, get_table_columns
from pgextras.sql import prepare_query
from pgextras.types import RowAdapter
from pgextras.utils import ensure_commit, get_raw_connection
from pgextras.writer import insert_records, update_records
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

from libb import attrdict, is_null, load_options

__all__ = [
    'ConnectionWrapper',
    'connect',
    'configure_connection',
    'create_url_from_options',
    'get_engine_for_options',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)

_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()


def create_url_from_options(options: DatabaseOptions,
                            url_creator: Callable[..., sa.URL] = sa.URL.create) -> sa.URL:
    """Convert DatabaseOptions to SQLAlchemy URL.
    """
    query = {'application_name': options.appname}
    if options.timeout:
        query['connect_timeout'] = str(options.timeout)

    return url_creator(
        drivername='postgresql+psycopg',
        username=options.username,
        password=options.password,
        host=options.hostname,
        port=options.port,
        database=options.database,
        query=query
    )


def get_engine_for_options(options: DatabaseOptions, use_pool: bool = False,
                           pool_size: int = 5, pool_recycle: int = 300,
                           pool_timeout: int = 30,
                           engine_factory: Callable[..., Engine] = sa.create_engine,
                           **kwargs: Any) -> Engine:
    """Get or create a SQLAlchemy engine for the given options.
    """
    key = f'{str(options)}_{use_pool}_{pool_size}_{pool_recycle}_{pool_timeout}'

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {options.hostname}/{options.database}')
            return _engine_registry[key]

        url = create_url_from_options(options)

        engine_kwargs: dict[str, Any] = {'echo': False}

        if not use_pool:
            engine_kwargs['poolclass'] = NullPool
        else:
            engine_kwargs['pool_size'] = pool_size
            engine_kwargs['pool_recycle'] = pool_recycle
            engine_kwargs['pool_timeout'] = pool_timeout
            engine_kwargs['max_overflow'] = 10
            engine_kwargs['pool_pre_ping'] = True
            engine_kwargs['pool_reset_on_return'] = 'rollback'

        engine_kwargs.update(kwargs)

        engine = engine_factory(url, **engine_kwargs)

        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {options.hostname}/{options.database}')

        return engine


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for engine in _engine_registry.values():
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


class ConnectionWrapper:
    """Wraps a SQLAlchemy connection object to track calls and execution time

    This class provides a thin wrapper around SQLAlchemy connection objects that:
    1. Tracks query execution counts and timing
    2. Supports context manager protocol for explicit resource management
    3. Provides access to the underlying psycopg connection via dbapi_connection
    4. Delegates attribute access to the SQLAlchemy connection object
    """

    def __init__(self, sa_connection: sa.engine.Connection | None = None,
                 options: DatabaseOptions | None = None) -> None:
        self.sa_connection = sa_connection
        self.engine = sa_connection.engine if sa_connection else None
        self.options = options
        self.dbapi_connection = sa_connection.connection if sa_connection else None
        self.calls = 0
        self.time = 0

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        """Close the connection when exiting the context manager
        """
        try:
            self.close()
            logger.debug('Closed connection via context manager')
        except Exception as e:
            logger.debug(f'Error closing connection in __exit__: {e}')

    def __getattr__(self, name: str) -> Any:
        """Delegate attribute access to the SQLAlchemy connection or the raw connection.
        """
        if hasattr(self.sa_connection, name):
            return getattr(self.sa_connection, name)

        return getattr(self.dbapi_connection, name)

    def cursor(self) -> Cursor:
        """Get a wrapped cursor for this connection
        """
        if getattr(self.sa_connection, 'closed', False):
            self.sa_connection = self.engine.connect()
            self.dbapi_connection = self.sa_connection.connection
            configure_connection(self.sa_connection)

        return get_dict_cursor(self)

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    def commit(self) -> None:
        self.sa_connection.commit()

    def close(self) -> None:
        """Close the SQLAlchemy connection, committing first if needed
        """
        if self.sa_connection is not None and not self.sa_connection.closed:
            ensure_commit(self.sa_connection)
            self.sa_connection.close()
            logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s '
                         f'(avg: {self.time/max(1,self.calls):.3f}s per query)')

    def execute(self, sql: str, *args: Any) -> int:
        """Execute a SQL statement with the given parameters and return affected row count.
        """
        cursor = self.cursor()
        try:
            processed_sql, params = prepare_query(sql, args)
            rowcount = cursor.execute(processed_sql, params)
            self.commit()
            return rowcount
        except Exception:
            try:
                self.rollback()
            except Exception as e:
                logger.debug(f'Rollback after failed statement also failed: {e}')
            raise
        finally:
            cursor.close()

    def select(self, sql: str, *args: Any, **kwargs: Any) -> list[dict[str, Any]] | pd.DataFrame:
        """Execute a SELECT query and load the rows with the configured data loader.
        """
        processed_sql, params = prepare_query(sql, args)
        cursor = self.cursor()
        try:
            cursor.execute(processed_sql, params)
            columns = extract_column_info(cursor)
            result = load_data(cursor, columns=columns, **kwargs)
        finally:
            cursor.close()
        logger.debug(f'Select query returned {len(result)} rows')
        return result

    @use_iterdict_data_loader
    def select_dicts(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        """Execute a query and return rows as a list of dictionaries.
        """
        return self.select(sql, *args)

    def select_column(self, sql: str, *args: Any) -> list[Any]:
        """Execute a query and return a single column as a list.
        """
        return [RowAdapter(row).get_value() for row in self.select_dicts(sql, *args)]

    def select_row(self, sql: str, *args: Any) -> attrdict:
        """Execute a query and return a single row as an attribute dictionary.

        Raises QueryError if the query returns zero or multiple rows.
        """
        data = self.select_dicts(sql, *args)
        if len(data) != 1:
            raise QueryError(f'Expected one row, got {len(data)}')
        return RowAdapter(data[0]).to_attrdict()

    def select_row_or_none(self, sql: str, *args: Any) -> attrdict | None:
        """Execute a query and return a single row or None if no rows found.
        """
        data = self.select_dicts(sql, *args)
        if len(data) == 1:
            return RowAdapter(data[0]).to_attrdict()
        return None

    def select_scalar(self, sql: str, *args: Any) -> Any:
        """Execute a query and return a single scalar value.

        Raises QueryError if the query returns zero or multiple rows.
        """
        data = self.select_dicts(sql, *args)
        if len(data) != 1:
            raise QueryError(f'Expected one row, got {len(data)}')
        result = RowAdapter(data[0]).get_value()
        logger.debug(f'Scalar query returned value of type {type(result).__name__}')
        return result

    def select_scalar_or_none(self, sql: str, *args: Any) -> Any | None:
        """Execute a query and return a single scalar value or None if no rows found.
        """
        data = self.select_dicts(sql, *args)
        if len(data) != 1:
            return None
        val = RowAdapter(data[0]).get_value()
        if not is_null(val):
            return val
        return None

    def get_table_columns(self, table: str, bypass_cache: bool = False) -> list[str]:
        return get_table_columns(self, table, bypass_cache=bypass_cache)

    def get_column_types(self, table: str, bypass_cache: bool = False) -> dict[str, str]:
        return get_column_types(self, table, bypass_cache=bypass_cache)

    def select_records(self, sql: str, *args: Any, geom_name: str | None = None,
                       hstore_name: str | None = None) -> pd.DataFrame:
        """Execute a read statement and decode its geometry and hstore columns.
        """
        return select_records(self, sql, *args, geom_name=geom_name, hstore_name=hstore_name)

    def insert_records(self, table: str, records: pd.DataFrame,
                       write_cols: Sequence[str] | None = None,
                       geom_name: str | None = None, hstore_name: str | None = None) -> int:
        """Insert a record set into a table with one multi-row INSERT.
        """
        return insert_records(self, table, records, write_cols=write_cols,
                              geom_name=geom_name, hstore_name=hstore_name)

    def update_records(self, table: str, records: pd.DataFrame,
                       id_cols: Sequence[str], update_cols: Sequence[str],
                       geom_name: str | None = None, hstore_name: str | None = None,
                       hstore_concat: bool = True) -> int:
        """Update table rows matched on id_cols from a record set.
        """
        return update_records(self, table, records, id_cols, update_cols,
                              geom_name=geom_name, hstore_name=hstore_name,
                              hstore_concat=hstore_concat)


def configure_connection(sa_connection: sa.engine.Connection) -> None:
    """Put the underlying psycopg connection in autocommit mode.
    """
    get_raw_connection(sa_connection.connection).autocommit = True


@load_options(cls=DatabaseOptions)
def connect(options: DatabaseOptions | dict[str, Any] | str,
            config: Any | None = None, **kw: Any) -> ConnectionWrapper:
    """Connect to a PostgreSQL database using SQLAlchemy for connection management

    Args:
        options: Can be:
                - DatabaseOptions object
                - String name of a setting in the configuration
                - Dictionary of options
                - Options specified as keyword arguments
        config: Configuration object (for loading from config files)
        **kw: Additional keyword arguments to override options

    Returns
        ConnectionWrapper object for connecting to the database
    """
    if isinstance(options, DatabaseOptions):
        for field in fields(options):
            kw.pop(field.name, None)
    else:
        options_func = load_options(cls=DatabaseOptions)(lambda o, c: o)
        options = options_func(options, config, **kw)

    engine = get_engine_for_options(options, use_pool=options.use_pool,
                                    pool_size=options.pool_max_connections,
                                    pool_recycle=options.pool_max_idle_time,
                                    pool_timeout=options.pool_wait_timeout)

    sa_connection = engine.connect()
    configure_connection(sa_connection)

    return ConnectionWrapper(sa_connection, options)
