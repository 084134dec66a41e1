"""
Table schema lookups.

The writer checks write columns against the target table and casts every
parameter to the column's declared type, including typmods such as
``geometry(Polygon,4326)``. Both come from one catalog query per table,
cached for five minutes; pass ``bypass_cache=True`` for fresh information.
"""
import logging
import re
from typing import TYPE_CHECKING

from pgextras.cache import cacheable_metadata
from pgextras.exceptions import ColumnMismatchError
from pgextras.sql import quote_table

if TYPE_CHECKING:
    from pgextras.connection import ConnectionWrapper

logger = logging.getLogger(__name__)

_GEOMETRY_SRID = re.compile(r'^geometry\(\s*\w+\s*,\s*(\d+)\s*\)$', re.IGNORECASE)


@cacheable_metadata('column_types')
def get_column_types(cn: 'ConnectionWrapper', table: str) -> dict[str, str]:
    """Get the declared type of every column of a table, in ordinal order.

    Returns
        Mapping of column name to ``format_type`` text, e.g. ``'integer'``,
        ``'hstore'``, ``'geometry(MultiPolygon,4326)'``

    Raises
        ColumnMismatchError: If the table does not exist
    """
    sql = """
select
    a.attname as name,
    format_type(a.atttypid, a.atttypmod) as type
from
    pg_attribute a
where
    a.attrelid = to_regclass(%s)
    and a.attnum > 0
    and not a.attisdropped
order by
    a.attnum
"""
    rows = cn.select_dicts(sql, quote_table(table))
    if not rows:
        raise ColumnMismatchError(f'Table {table} does not exist or has no columns')
    column_types = {row['name']: row['type'] for row in rows}
    logger.debug(f'Column types for {table}: {column_types}')
    return column_types


def get_table_columns(cn: 'ConnectionWrapper', table: str,
                      bypass_cache: bool = False) -> list[str]:
    """Get all column names for a table ordered by their position.
    """
    return list(get_column_types(cn, table, bypass_cache=bypass_cache))


def geometry_srid(type_name: str | None) -> int | None:
    """SRID constraint carried by a declared geometry type, if any.

    >>> geometry_srid('geometry(Polygon,4326)')
    4326
    >>> geometry_srid('geometry') is None
    True
    """
    if not type_name:
        return None
    match = _GEOMETRY_SRID.match(type_name.strip())
    if match is None:
        return None
    return int(match.group(1)) or None


def is_hstore_type(type_name: str | None) -> bool:
    """True for a declared hstore type, schema-qualified or not.

    >>> is_hstore_type('hstore'), is_hstore_type('public.hstore')
    (True, True)
    >>> is_hstore_type('text'), is_hstore_type(None)
    (False, False)
    """
    if not type_name:
        return False
    return type_name.rsplit('.', 1)[-1].strip('"').lower() == 'hstore'


if __name__ == '__main__':
    __import__('doctest').testmod(optionflags=4 | 8 | 32)
