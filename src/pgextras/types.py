"""
Type handling for database operations.

This module provides:
- TypeConverter: Convert Python values to database-compatible parameters
- Column: Column metadata from cursor descriptions
- resolve_type: Resolve PostgreSQL type codes to Python types
- RowAdapter: Convert database rows to dictionaries
"""
import datetime
import logging
import math
from typing import Any, Self

import numpy as np
import pandas as pd
import pyarrow as pa
from psycopg.postgres import types as pg_types

from libb import attrdict

logger = logging.getLogger(__name__)

NUMPY_FLOAT_TYPES = (np.floating,)
NUMPY_INT_TYPES = (np.integer, np.unsignedinteger)


# Type Converter - Handles Python -> Database value conversion

def _convert_numpy_value(val: Any) -> float | int | bool | datetime.datetime | None:
    """Convert NumPy value to Python type."""
    if isinstance(val, np.floating) and np.isnan(val):
        return None

    if isinstance(val, np.datetime64):
        if np.isnat(val):
            return None
        return pd.Timestamp(val).to_pydatetime()

    return val.item()


def _convert_pyarrow_value(value: Any) -> Any:
    """Convert PyArrow scalar to Python type."""
    if not value.is_valid:
        return None
    return value.as_py()


class TypeConverter:
    """Universal type conversion for database parameters.

    Handles NumPy, Pandas and PyArrow scalars. Missing markers (NaN, NaT,
    pd.NA) become None so they reach the database as NULL.
    """

    @staticmethod
    def convert_value(value: Any) -> Any:
        """Convert a single value to a database-compatible format."""
        if value is None:
            return None

        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return None

        if isinstance(value, (*NUMPY_FLOAT_TYPES, *NUMPY_INT_TYPES, np.bool_, np.datetime64)):
            return _convert_numpy_value(value)

        if isinstance(value, pa.Scalar):
            return _convert_pyarrow_value(value)

        if isinstance(value, pd.Timestamp):
            return None if pd.isna(value) else value.to_pydatetime()

        if pd.api.types.is_scalar(value) and pd.isna(value):
            return None

        return value

    @staticmethod
    def convert_params(params: Any) -> Any:
        """Convert a collection of parameters for database operations."""
        if params is None:
            return None

        if isinstance(params, dict):
            return {k: TypeConverter.convert_value(v) for k, v in params.items()}

        if isinstance(params, list | tuple):
            if params and all(isinstance(p, (list, tuple)) for p in params):
                return type(params)(TypeConverter.convert_params(p) for p in params)
            return type(params)(TypeConverter.convert_value(v) for v in params)

        return TypeConverter.convert_value(params)


# Type Resolution - PostgreSQL type codes -> Python types

_oid = lambda x: pg_types.get(x).oid
_aoid = lambda x: pg_types.get(x).array_oid

postgres_types: dict[int, type] = {}

for v in [_oid('"char"'), _oid('bpchar'), _oid('varchar'), _oid('json'),
          _oid('name'), _oid('text'), _oid('uuid')]:
    postgres_types[v] = str

for v in [_oid('int2'), _oid('int4'), _oid('int8')]:
    postgres_types[v] = int

for v in [_oid('float4'), _oid('float8'), _oid('numeric')]:
    postgres_types[v] = float

postgres_types[_oid('date')] = datetime.date

for v in [_oid('time'), _oid('timetz'), _oid('timestamp'), _oid('timestamptz')]:
    postgres_types[v] = datetime.datetime

postgres_types[_oid('bool')] = bool

for v in [_oid('bytea'), _oid('jsonb')]:
    postgres_types[v] = bytes

for k in tuple(postgres_types):
    postgres_types[_aoid(k)] = tuple


def resolve_type(type_code: Any) -> type:
    """Resolve a PostgreSQL type code to a Python type.

    Extension types (geometry, hstore) have installation-specific OIDs and
    resolve to str, their text representation.
    """
    if isinstance(type_code, type):
        return type_code
    return postgres_types.get(type_code, str)


# Column - Metadata from cursor descriptions

class Column:
    """Database column metadata."""

    def __init__(self,
                 name: str,
                 type_code: Any,
                 python_type: type | None = None,
                 display_size: int | None = None,
                 internal_size: int | None = None,
                 precision: int | None = None,
                 scale: int | None = None):
        self.name = name
        self.type_code = type_code
        self.python_type = python_type
        self.display_size = display_size
        self.internal_size = internal_size
        self.precision = precision
        self.scale = scale

    @classmethod
    def from_cursor_description(cls, description_item: Any) -> Self:
        """Create a Column from a psycopg cursor description item."""
        type_code = getattr(description_item, 'type_code', None)
        return cls(
            name=getattr(description_item, 'name', None),
            type_code=type_code,
            python_type=resolve_type(type_code),
            display_size=getattr(description_item, 'display_size', None),
            internal_size=getattr(description_item, 'internal_size', None),
            precision=getattr(description_item, 'precision', None),
            scale=getattr(description_item, 'scale', None),
        )

    def __repr__(self) -> str:
        return (f'Column(name={self.name!r}, type_code={self.type_code!r}, '
                f'python_type={self.python_type.__name__ if self.python_type else None})')

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'type_code': self.type_code,
            'python_type': self.python_type.__name__ if self.python_type else None,
            'display_size': self.display_size,
            'internal_size': self.internal_size,
            'precision': self.precision,
            'scale': self.scale,
        }

    @staticmethod
    def get_names(columns: list[Self]) -> list[str]:
        return [col.name for col in columns]

    @staticmethod
    def get_column_types_dict(columns: list[Self]) -> dict[str, dict]:
        return {col.name: col.to_dict() for col in columns}


def columns_from_cursor_description(cursor: Any) -> list[Column]:
    """Create Column objects from cursor description."""
    if cursor.description is None:
        return []
    return [Column.from_cursor_description(desc) for desc in cursor.description]


# Row Adapters - Convert database rows to dictionaries

class RowAdapter:
    """Simple row adapter for converting database rows to dictionaries."""

    def __init__(self, row: Any):
        self.row = row

    def to_dict(self) -> dict[str, Any]:
        """Convert row to dictionary."""
        if isinstance(self.row, dict):
            return self.row
        if hasattr(self.row, '_asdict'):
            return self.row._asdict()
        return dict(self.row)

    def get_value(self, key: str | None = None) -> Any:
        """Get a value from the row, the first one when no key is given."""
        row = self.to_dict()
        if key is not None:
            return row[key]
        return next(iter(row.values()))

    def to_attrdict(self) -> attrdict:
        return attrdict(self.to_dict())
