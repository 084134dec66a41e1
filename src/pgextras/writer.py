"""
Write spatial and hstore record sets to tables.

Both operations encode the geometry column as hex EWKB and hstore columns as
hstore text, cast every parameter to the target column's declared type, and
leave the caller's record set untouched.

- `insert_records` appends rows with one multi-row INSERT.
- `update_records` overwrites columns of rows matched on identifying columns
  with UPDATE ... FROM (VALUES ...). Hstore columns are merged with ``||`` by
  default (keys missing from the source survive in the target) or replaced
  wholesale with ``hstore_concat=False``.
"""
import logging
from collections.abc import Iterator, Mapping, Sequence
from typing import TYPE_CHECKING

import geopandas as gpd
import pandas as pd
from pgextras.exceptions import ColumnMismatchError, InvalidColumnRoleError
from pgextras.geometry import encode_geometry
from pgextras.hstore import encode_hstore, is_hstore_series
from pgextras.schema import geometry_srid, get_column_types, is_hstore_type
from pgextras.sql import build_insert_sql, build_update_sql
from psycopg.types.json import Json, Jsonb

if TYPE_CHECKING:
    from pgextras.connection import ConnectionWrapper

logger = logging.getLogger(__name__)

# psycopg sends the parameter count as a 16-bit integer
MAX_PARAMS = 65535

_JSON_TYPES = {'json': Json, 'jsonb': Jsonb}


def _geometry_column(records: pd.DataFrame, geom_name: str | None) -> str | None:
    """The explicit geometry column, else the active geometry of a GeoDataFrame."""
    if geom_name is not None:
        if geom_name not in records.columns:
            raise ColumnMismatchError(f'Geometry column {geom_name!r} not in records')
        return geom_name
    if isinstance(records, gpd.GeoDataFrame):
        try:
            return records.geometry.name
        except AttributeError:
            return None
    return None


def _check_hstore_name(records: pd.DataFrame, hstore_name: str | None,
                       geom_col: str | None) -> None:
    if hstore_name is None:
        return
    if hstore_name not in records.columns:
        raise ColumnMismatchError(f'Hstore column {hstore_name!r} not in records')
    if hstore_name == geom_col:
        raise InvalidColumnRoleError(f'Column {hstore_name!r} cannot be both the geometry and the hstore column')


def _hstore_columns(records: pd.DataFrame, hstore_name: str | None,
                    geom_col: str | None, column_types: dict[str, str]) -> list[str]:
    """The explicit hstore column plus every record column declared hstore in the table."""
    declared = [col for col in records.columns
                if col not in {geom_col, hstore_name} and is_hstore_type(column_types.get(col))]
    if declared:
        logger.debug(f'Treating columns {declared} as hstore')
    ignored = [col for col in records.columns
               if col not in {geom_col, hstore_name} and col not in declared
               and col in column_types and is_hstore_series(records[col])]
    if ignored:
        logger.debug(f'Columns {ignored} hold mappings but are not hstore in the table')
    return ([hstore_name] if hstore_name is not None else []) + declared


def _check_unique_columns(records: pd.DataFrame) -> None:
    duplicated = records.columns[records.columns.duplicated()].tolist()
    if duplicated:
        raise ColumnMismatchError(f'Records have duplicate columns: {duplicated}')


def _check_record_columns(columns: Sequence[str], records: pd.DataFrame) -> None:
    missing = [col for col in columns if col not in records.columns]
    if missing:
        raise ColumnMismatchError(f'Column mismatch (not in records: {missing})')


def _check_columns(columns: Sequence[str], records: pd.DataFrame,
                   table_cols: Sequence[str], table: str) -> None:
    """Require every column in both the records and the target table."""
    missing_source = [col for col in columns if col not in records.columns]
    missing_target = [col for col in columns if col not in table_cols]
    if missing_source or missing_target:
        problems = []
        if missing_source:
            problems.append(f'not in records: {missing_source}')
        if missing_target:
            problems.append(f'not in table {table}: {missing_target}')
        raise ColumnMismatchError(f"Column mismatch ({'; '.join(problems)})")


def _unique(columns: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(columns))


def _encode_rows(records: pd.DataFrame, columns: Sequence[str], geom_col: str | None,
                 hstore_cols: Sequence[str], column_types: dict[str, str]) -> list[tuple]:
    """Encode the records column by column and return one tuple per row."""
    encoded = []
    for col in columns:
        if col == geom_col:
            encoded.append(encode_geometry(records[col], srid=geometry_srid(column_types.get(col))))
        elif col in hstore_cols:
            encoded.append([encode_hstore(value) for value in records[col]])
        elif column_types.get(col) in _JSON_TYPES:
            encoded.append([_JSON_TYPES[column_types[col]](value) if isinstance(value, Mapping) else value
                            for value in records[col]])
        else:
            encoded.append(records[col].tolist())
    return list(zip(*encoded))


def _batches(rows: list[tuple], width: int) -> Iterator[list[tuple]]:
    """Split rows so no statement exceeds the protocol's parameter limit."""
    size = max(1, MAX_PARAMS // max(1, width))
    if len(rows) > size:
        logger.debug(f'Splitting {len(rows)} rows into statements of {size} rows')
    for i in range(0, len(rows), size):
        yield rows[i:i + size]


def insert_records(cn: 'ConnectionWrapper', table: str, records: pd.DataFrame,
                   write_cols: Sequence[str] | None = None,
                   geom_name: str | None = None,
                   hstore_name: str | None = None) -> int:
    """Insert a record set into a table.

    Parameters
        cn: Database connection
        table: Target table, ``name``, ``schema.name`` or ``(schema, name)``
        records: DataFrame or GeoDataFrame to write
        write_cols: Columns to write. Every entry must exist in both the
            records and the table. By default, the columns present in both
            are written and the others dropped.
        geom_name: Geometry column, by default the active geometry column of
            a GeoDataFrame
        hstore_name: Hstore column. Columns declared hstore in the table are
            also written as hstore.

    Returns
        Number of rows inserted

    Raises
        ColumnMismatchError: If a write column is missing from the records or
            the table, or no column is common to both. Write columns missing
            from the records are reported even when the records are empty.
        InvalidColumnRoleError: If geom_name and hstore_name are the same column
    """
    _check_unique_columns(records)
    geom_col = _geometry_column(records, geom_name)
    _check_hstore_name(records, hstore_name, geom_col)
    if write_cols is not None:
        _check_record_columns(_unique(write_cols), records)

    if records.empty:
        logger.debug('Skipping insert of empty records')
        return 0

    column_types = get_column_types(cn, table)
    table_cols = list(column_types)

    if write_cols is not None:
        columns = _unique(write_cols)
        _check_columns(columns, records, table_cols, table)
    else:
        columns = [col for col in records.columns if col in table_cols]
        dropped = [col for col in records.columns if col not in table_cols]
        if dropped:
            logger.debug(f'Removed columns {dropped} not in {table}')
    if not columns:
        raise ColumnMismatchError(f'No columns in common between records and {table}')

    hstore_cols = _hstore_columns(records, hstore_name, geom_col, column_types)
    rows = _encode_rows(records, columns, geom_col, hstore_cols, column_types)

    total = 0
    for batch in _batches(rows, len(columns)):
        sql = build_insert_sql(table, columns, len(batch), casts=column_types)
        total += cn.execute(sql, tuple(value for row in batch for value in row))

    logger.debug(f'Inserted {total} rows into {table}')
    return total


def update_records(cn: 'ConnectionWrapper', table: str, records: pd.DataFrame,
                   id_cols: Sequence[str], update_cols: Sequence[str],
                   geom_name: str | None = None, hstore_name: str | None = None,
                   hstore_concat: bool = True) -> int:
    """Update table rows matched on id_cols from a record set.

    Each record updates the rows whose ``id_cols`` equal its own, setting
    ``update_cols`` to the record's values. For hstore columns among
    ``update_cols``:

    * ``hstore_concat=True`` merges the record's cell into the stored one:
      the record's keys are added or overwritten, other stored keys remain.
      A key removed from the record's cell therefore stays in the table.
    * ``hstore_concat=False`` replaces the stored cell with the record's cell.

    Parameters
        cn: Database connection
        table: Target table, ``name``, ``schema.name`` or ``(schema, name)``
        records: DataFrame or GeoDataFrame holding the new values
        id_cols: Columns identifying rows; not geometry or hstore columns
        update_cols: Columns to overwrite
        geom_name: Geometry column, by default the active geometry column of
            a GeoDataFrame
        hstore_name: Hstore column. Columns declared hstore in the table are
            also treated as hstore, whatever their cells hold.
        hstore_concat: Merge rather than replace hstore columns

    Returns
        Number of rows updated

    Raises
        ValueError: If id_cols or update_cols is empty, or they overlap
        InvalidColumnRoleError: If a geometry or hstore column is in id_cols
        ColumnMismatchError: If a column is missing from the records or table
    """
    id_cols = _unique([id_cols] if isinstance(id_cols, str) else id_cols)
    update_cols = _unique([update_cols] if isinstance(update_cols, str) else update_cols)
    if not id_cols:
        raise ValueError('id_cols must name at least one column')
    if not update_cols:
        raise ValueError('update_cols must name at least one column')
    overlap = [col for col in id_cols if col in update_cols]
    if overlap:
        raise ValueError(f'Columns cannot be both id_cols and update_cols: {overlap}')

    _check_unique_columns(records)
    geom_col = _geometry_column(records, geom_name)
    _check_hstore_name(records, hstore_name, geom_col)
    if geom_col is not None and geom_col in id_cols:
        raise InvalidColumnRoleError(f'Geometry column {geom_col!r} cannot be used in id_cols')
    if hstore_name is not None and hstore_name in id_cols:
        raise InvalidColumnRoleError(f'Hstore column {hstore_name!r} cannot be used in id_cols')
    columns = id_cols + update_cols
    _check_record_columns(columns, records)

    if records.empty:
        logger.debug('Skipping update from empty records')
        return 0

    column_types = get_column_types(cn, table)
    _check_columns(columns, records, list(column_types), table)
    hstore_cols = _hstore_columns(records, hstore_name, geom_col, column_types)
    bad_hstore = [col for col in id_cols if col in hstore_cols]
    if bad_hstore:
        raise InvalidColumnRoleError(f'Hstore columns {bad_hstore} cannot be used in id_cols')

    rows = _encode_rows(records, columns, geom_col, hstore_cols, column_types)
    updated_hstore = [col for col in update_cols if col in hstore_cols]
    if updated_hstore:
        logger.debug(f"{'Merging' if hstore_concat else 'Replacing'} hstore columns {updated_hstore}")

    total = 0
    for batch in _batches(rows, len(columns)):
        sql = build_update_sql(table, columns, id_cols, update_cols, len(batch),
                               casts=column_types, hstore_cols=updated_hstore,
                               hstore_concat=hstore_concat)
        total += cn.execute(sql, tuple(value for row in batch for value in row))

    logger.debug(f'Updated {total} rows in {table}')
    return total
