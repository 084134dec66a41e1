"""
Cursor wrapper for psycopg connections.

Implements the parts of the Python DB-API 2.0 specification (PEP-249) the
package uses, with every statement logged and timed.
"""
import logging
import time
from collections.abc import Sequence
from functools import wraps
from numbers import Number
from typing import Any

from pgextras.types import Column, RowAdapter, TypeConverter
from pgextras.types import columns_from_cursor_description, postgres_types

logger = logging.getLogger(__name__)


def dumpsql(func):
    """Decorator for logging SQL queries and parameters."""
    @wraps(func)
    def wrapper(self, operation: str, *args: Any, **kwargs: Any):
        start = time.time()
        logger.debug(f'SQL:\n{operation}\nargs: {args}')
        try:
            result = func(self, operation, *args, **kwargs)
            if hasattr(self.dbapi_cursor, 'statusmessage'):
                logger.debug(f'Query result: {self.dbapi_cursor.statusmessage}')
            return result
        except Exception:
            logger.error(f'Error with query:\nSQL:\n{operation}\nargs: {args}')
            raise
        finally:
            elapsed = time.time() - start
            self.connwrapper.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


class Cursor:
    """Cursor wrapper that converts parameters and tracks timing on its connection.
    """

    def __init__(self, cursor: Any, connection_wrapper: Any) -> None:
        self.dbapi_cursor = cursor
        self.connwrapper = connection_wrapper
        self.columns: list[Column] = []

    def __getattr__(self, name: str) -> Any:
        """Delegate members to underlying cursor."""
        return getattr(self.dbapi_cursor, name)

    @property
    def description(self) -> list[tuple] | None:
        """Column descriptions for last query."""
        return self.dbapi_cursor.description

    @property
    def rowcount(self) -> int:
        """Number of rows produced/affected by last operation."""
        return self.dbapi_cursor.rowcount

    def close(self) -> None:
        self.dbapi_cursor.close()

    def fetchall(self) -> list[dict]:
        return self.dbapi_cursor.fetchall()

    @dumpsql
    def execute(self, operation: str, params: Any = None) -> int:
        """Execute a database operation with already-prepared parameters."""
        if params is None:
            self.dbapi_cursor.execute(operation)
        else:
            self.dbapi_cursor.execute(operation, TypeConverter.convert_params(params))
        return self.dbapi_cursor.rowcount


class DictRowFactory:
    """Row factory for psycopg that returns dictionary rows.

    Numeric values are cast to the Python type registered for their column's
    type code so numeric columns come back as float rather than Decimal.
    """

    def __init__(self, cursor: Any) -> None:
        self.fields = [(c.name, postgres_types.get(c.type_code))
                       for c in (cursor.description or [])]

    def __call__(self, values: Sequence) -> dict:
        return {
            name: cast(value) if isinstance(value, Number) and cast is not None else value
            for (name, cast), value in zip(self.fields, values)
        }


def get_dict_cursor(cn: Any) -> Cursor:
    """Get cursor that returns rows as dictionaries."""
    return Cursor(cn.dbapi_connection.cursor(row_factory=DictRowFactory), cn)


def extract_column_info(cursor: Cursor) -> list[Column]:
    """Extract column information from the cursor's last result."""
    columns = columns_from_cursor_description(cursor)
    cursor.columns = columns
    return columns


def load_data(cursor: Cursor, columns: list[Column] | None = None, **kwargs: Any) -> Any:
    """Process cursor results into the connection's configured data format."""
    if columns is None:
        columns = extract_column_info(cursor)

    data_loader = cursor.connwrapper.options.data_loader
    if cursor.description is None:
        return data_loader([], columns, **kwargs)

    data = [RowAdapter(row).to_dict() for row in cursor.fetchall()]
    return data_loader(data, columns, **kwargs)
