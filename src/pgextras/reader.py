"""
Read spatial and hstore record sets.

`select_records` runs a read-only statement and decodes up to two special
columns of its result: a PostGIS geometry column, which turns the result into
a GeoDataFrame, and an hstore column, whose text becomes `Hstore` cells.
"""
import logging
from typing import TYPE_CHECKING, Any

import geopandas as gpd
import pandas as pd
from pgextras.exceptions import DecodeError, InvalidColumnRoleError, QueryError
from pgextras.geometry import decode_geometry
from pgextras.hstore import decode_hstore
from pgextras.options import use_pandas_data_loader
from pgextras.sql import is_read_statement

if TYPE_CHECKING:
    from pgextras.connection import ConnectionWrapper

logger = logging.getLogger(__name__)


def _check_result_column(df: pd.DataFrame, name: str, role: str) -> None:
    """Require exactly one result column with the given name."""
    count = list(df.columns).count(name)
    if count == 0:
        raise DecodeError(f'{role} column {name!r} not in query result: {list(df.columns)}')
    if count > 1:
        raise DecodeError(f'{role} column {name!r} appears {count} times in query result')


@use_pandas_data_loader
def _select_frame(cn: 'ConnectionWrapper', sql: str, *args: Any) -> pd.DataFrame:
    return cn.select(sql, *args)


def select_records(cn: 'ConnectionWrapper', sql: str, *args: Any,
                   geom_name: str | None = None,
                   hstore_name: str | None = None) -> pd.DataFrame | gpd.GeoDataFrame:
    """Execute a read statement and decode its geometry and hstore columns.

    Parameters
        cn: Database connection
        sql: SELECT (or WITH/VALUES/TABLE) statement with %s placeholders
        *args: Query parameters
        geom_name: Result column holding geometries (hex EWKB, WKB or WKT).
            When given, the result is a GeoDataFrame with this column as its
            active geometry and the SRID of the values as its CRS.
        hstore_name: Result column holding hstore text, decoded into `Hstore`
            cells. SQL NULL becomes an empty cell.

    Returns
        DataFrame, or GeoDataFrame when geom_name is given

    Raises
        QueryError: If the statement does not only read data
        DecodeError: If a named column is missing, repeated, or unparseable
        InvalidColumnRoleError: If geom_name and hstore_name are the same column
    """
    if not is_read_statement(sql):
        raise QueryError(f'Expected a read statement, got: {sql.strip()[:60]}')
    if geom_name is not None and geom_name == hstore_name:
        raise InvalidColumnRoleError(f'Column {geom_name!r} cannot be both the geometry and the hstore column')

    df = _select_frame(cn, sql, *args)
    column_types = df.attrs.get('column_types', {})

    if hstore_name is not None:
        _check_result_column(df, hstore_name, 'Hstore')
        cells = []
        for label, value in df[hstore_name].items():
            try:
                cells.append(decode_hstore(value))
            except DecodeError as e:
                raise DecodeError(f'Column {hstore_name!r}, row {label!r}: {e}') from e
        df[hstore_name] = pd.Series(cells, index=df.index, dtype=object)
        logger.debug(f'Decoded {len(cells)} hstore cells from {hstore_name!r}')

    if geom_name is None:
        return df

    _check_result_column(df, geom_name, 'Geometry')
    geoms = decode_geometry(df[geom_name].astype(object))
    df[geom_name] = geoms
    gdf = gpd.GeoDataFrame(df, geometry=geom_name)
    gdf.attrs['column_types'] = column_types
    logger.debug(f'Decoded {len(gdf)} geometries from {geom_name!r} (crs={geoms.crs})')
    return gdf
