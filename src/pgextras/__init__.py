"""
PostGIS geometry and hstore record sets on PostgreSQL.

All query/data operations can be called either as:
- Module functions: pgx.select_records(cn, sql, *args, geom_name='geom')
- ConnectionWrapper methods: cn.select_records(sql, *args, geom_name='geom')

Importing the package registers the ``hstore`` pandas Series accessor.
"""
__version__ = '0.1.0'

from collections.abc import Sequence
from typing import Any

import pandas as pd
from pgextras.cache import Cache
from pgextras.connection import ConnectionWrapper, connect
from pgextras.exceptions import ColumnMismatchError, ConnectionFailure
from pgextras.exceptions import DatabaseError, DbConnectionError, DecodeError
from pgextras.exceptions import IntegrityError, InvalidColumnRoleError
from pgextras.exceptions import OperationalError, ProgrammingError, QueryError
from pgextras.exceptions import TypeConversionError, UniqueViolation
from pgextras.exceptions import ValidationError
from pgextras.hstore import Hstore, HstoreAccessor, format_hstore, parse_hstore
from pgextras.options import DatabaseOptions
from pgextras.types import Column


def execute(cn: ConnectionWrapper, sql: str, *args: Any) -> int:
    """Execute a SQL statement and return affected row count.
    """
    return cn.execute(sql, *args)


def select(cn: ConnectionWrapper, sql: str, *args: Any, **kwargs: Any) -> Any:
    """Execute a SELECT query.
    """
    return cn.select(sql, *args, **kwargs)


def select_column(cn: ConnectionWrapper, sql: str, *args: Any) -> list[Any]:
    """Execute a query and return a single column as a list.
    """
    return cn.select_column(sql, *args)


def select_row(cn: ConnectionWrapper, sql: str, *args: Any) -> Any:
    """Execute a query and return a single row.

    Raises QueryError if the query returns zero or multiple rows.
    """
    return cn.select_row(sql, *args)


def select_row_or_none(cn: ConnectionWrapper, sql: str, *args: Any) -> Any | None:
    """Execute a query and return a single row or None if no rows found.
    """
    return cn.select_row_or_none(sql, *args)


def select_scalar(cn: ConnectionWrapper, sql: str, *args: Any) -> Any:
    """Execute a query and return a single scalar value.

    Raises QueryError if the query returns zero or multiple rows.
    """
    return cn.select_scalar(sql, *args)


def select_scalar_or_none(cn: ConnectionWrapper, sql: str, *args: Any) -> Any | None:
    """Execute a query and return a single scalar value or None if no rows found.
    """
    return cn.select_scalar_or_none(sql, *args)


def select_records(cn: ConnectionWrapper, sql: str, *args: Any,
                   geom_name: str | None = None,
                   hstore_name: str | None = None) -> pd.DataFrame:
    """Execute a read statement and decode its geometry and hstore columns.
    """
    return cn.select_records(sql, *args, geom_name=geom_name, hstore_name=hstore_name)


def insert_records(cn: ConnectionWrapper, table: str, records: pd.DataFrame,
                   write_cols: Sequence[str] | None = None,
                   geom_name: str | None = None,
                   hstore_name: str | None = None) -> int:
    """Insert a record set into a table with one multi-row INSERT.
    """
    return cn.insert_records(table, records, write_cols=write_cols,
                             geom_name=geom_name, hstore_name=hstore_name)


def update_records(cn: ConnectionWrapper, table: str, records: pd.DataFrame,
                   id_cols: Sequence[str], update_cols: Sequence[str],
                   geom_name: str | None = None, hstore_name: str | None = None,
                   hstore_concat: bool = True) -> int:
    """Update table rows matched on id_cols from a record set.
    """
    return cn.update_records(table, records, id_cols, update_cols,
                             geom_name=geom_name, hstore_name=hstore_name,
                             hstore_concat=hstore_concat)


def get_table_columns(cn: ConnectionWrapper, table: str, bypass_cache: bool = False) -> list[str]:
    """Get all column names for a table ordered by their position.
    """
    return cn.get_table_columns(table, bypass_cache=bypass_cache)


def get_column_types(cn: ConnectionWrapper, table: str,
                     bypass_cache: bool = False) -> dict[str, str]:
    """Get the declared type of every column of a table.
    """
    return cn.get_column_types(table, bypass_cache=bypass_cache)


def isconnection(cn: Any) -> bool:
    """Check if an object is a database connection.
    """
    return isinstance(cn, ConnectionWrapper)


def clear_metadata_cache(table: str | None = None) -> None:
    """Forget cached table metadata, for one table or all of them.
    """
    if table is None:
        Cache.get_instance().clear_all()
    else:
        Cache.get_instance().clear_for_table(table)


__all__ = [
    'connect',
    'ConnectionWrapper',
    'DatabaseOptions',
    'isconnection',
    'execute',
    'select',
    'select_column',
    'select_row',
    'select_row_or_none',
    'select_scalar',
    'select_scalar_or_none',
    'select_records',
    'insert_records',
    'update_records',
    'get_table_columns',
    'get_column_types',
    'clear_metadata_cache',
    'Column',
    'Hstore',
    'HstoreAccessor',
    'parse_hstore',
    'format_hstore',
    'IntegrityError',
    'ProgrammingError',
    'OperationalError',
    'UniqueViolation',
    'DbConnectionError',
    'ConnectionFailure',
    'DatabaseError',
    'ValidationError',
    'QueryError',
    'TypeConversionError',
    'DecodeError',
    'ColumnMismatchError',
    'InvalidColumnRoleError',
]
