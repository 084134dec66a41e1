from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any

import pandas as pd
import pyarrow as pa
from pgextras.types import Column

from libb import ConfigOptions, scriptname

__all__ = [
    'DatabaseOptions',
    'pandas_numpy_data_loader',
    'pandas_pyarrow_data_loader',
    'iterdict_data_loader',
    'use_iterdict_data_loader',
    'use_pandas_data_loader',
]

REQUIRED_OPTIONS = ('hostname', 'username', 'password', 'database', 'port', 'timeout')


def _use_data_loader(loader):
    """Temporarily replace the connection's data loader while calling func."""

    def decorator(func):
        @wraps(func)
        def inner(*args, **kwargs):
            cn = args[0]

            original_data_loader = cn.options.data_loader
            cn.options.data_loader = loader

            try:
                return func(*args, **kwargs)
            finally:
                cn.options.data_loader = original_data_loader

        return inner
    return decorator


def iterdict_data_loader(data, columns, **kwargs) -> list[dict]:
    """Minimal data loader.
    """
    if not data:
        return []
    return list(data)


def _empty_dataframe(columns) -> pd.DataFrame:
    """Create empty DataFrame with column metadata."""
    df = pd.DataFrame(columns=Column.get_names(columns))
    df.attrs['column_types'] = Column.get_column_types_dict(columns)
    return df


def pandas_numpy_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """Standard pandas DataFrame loader using NumPy.

    Always returns a DataFrame, never None, with columns preserved for empty results.
    Includes type information in the DataFrame.attrs attribute.
    """
    if not data:
        return _empty_dataframe(columns)

    names = Column.get_names(columns)
    df = pd.DataFrame.from_records([[row[name] for name in names] for row in data],
                                   columns=names)
    df.attrs['column_types'] = Column.get_column_types_dict(columns)
    return df


def pandas_pyarrow_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """PyArrow-backed pandas DataFrame loader.

    Geometry and hstore columns arrive as text and stay plain strings, so the
    reader can decode them the same way as with the NumPy loader.
    """
    if not data:
        return _empty_dataframe(columns)

    column_names = Column.get_names(columns)
    columns_data = [[row[col] for row in data] for col in column_names]
    df = pa.table(columns_data, names=column_names).to_pandas(types_mapper=pd.ArrowDtype)
    df.attrs['column_types'] = Column.get_column_types_dict(columns)
    return df


use_iterdict_data_loader = _use_data_loader(iterdict_data_loader)
use_pandas_data_loader = _use_data_loader(pandas_numpy_data_loader)


@dataclass
class DatabaseOptions(ConfigOptions):
    """Options

    supported driver names: `postgresql`

    Connection pooling options:
    - use_pool: Whether to use connection pooling (default: False)
    - pool_max_connections: Maximum connections in pool (default: 5)
    - pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
    - pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)
    """
    drivername: str = 'postgresql'
    hostname: str = None
    username: str = None
    password: str = None
    database: str = None
    port: int = 0
    timeout: int = 0
    appname: str = None
    data_loader: Callable[..., Any] | None = None
    # Connection pooling parameters
    use_pool: bool = False
    pool_max_connections: int = 5
    pool_max_idle_time: int = 300
    pool_wait_timeout: int = 30

    def __post_init__(self):
        if self.drivername != 'postgresql':
            raise ValueError("drivername must be one of: ['postgresql']")
        for field in REQUIRED_OPTIONS:
            if not getattr(self, field):
                raise ValueError(f'field {field} cannot be None or 0')
        self.appname = self.appname or scriptname() or 'python_console'
        if self.data_loader is None:
            self.data_loader = pandas_numpy_data_loader
