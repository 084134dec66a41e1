import pgextras as pgx
import pytest


def test_select(psql_docker, conn):
    """Verify basic SELECT query returns proper results and structure.
    """
    result = pgx.select(conn, 'select id, name from parcels order by id')

    expected_data = [
        {'id': 1, 'name': 'Meadow'},
        {'id': 2, 'name': 'Orchard'},
        {'id': 3, 'name': 'Quarry'},
    ]
    assert result == expected_data, 'The select query did not return the expected results.'


def test_select_numeric(psql_docker, conn):
    """Verify numeric values are returned as float rather than Decimal.
    """
    value = pgx.select_scalar(conn, 'select area from parcels where id = 2')
    assert value == 4.0
    assert isinstance(value, float)


def test_execute(psql_docker, conn):
    """Verify execute returns the affected row count.
    """
    row_count = pgx.execute(conn, 'update parcels set name = %s where id > %s', 'Renamed', 1)
    assert row_count == 2
    assert pgx.select_column(conn, 'select name from parcels order by id') == [
        'Meadow', 'Renamed', 'Renamed']


def test_percent_literals(psql_docker, conn):
    """Verify literal percent signs work alongside placeholders.
    """
    result = pgx.select_column(conn, "select name from parcels where name like 'M%' and id < %s", 5)
    assert result == ['Meadow']


def test_select_row(psql_docker, conn):
    row = pgx.select_row(conn, 'select id, name from parcels where id = %s', 1)
    assert row.name == 'Meadow'
    assert pgx.select_row_or_none(conn, 'select id from parcels where id = %s', 99) is None
    assert pgx.select_scalar_or_none(conn, 'select id from parcels where id = %s', 99) is None
    with pytest.raises(pgx.QueryError, match="Expected one row, got 3"):
        pgx.select_row(conn, "select id from parcels")


def test_get_column_types(psql_docker, conn):
    """Verify declared column types come from the catalog with their modifiers.
    """
    column_types = pgx.get_column_types(conn, 'parcels')
    assert list(column_types) == ['id', 'name', 'area', 'tags', 'geom']
    assert column_types['id'] == 'integer'
    assert column_types['name'] == 'character varying(255)'
    assert column_types['tags'] == 'hstore'
    assert column_types['geom'] == 'geometry(Polygon,4326)'
    assert pgx.get_table_columns(conn, 'public.parcels') == list(column_types)


def test_column_types_cached(psql_docker, conn):
    """Verify the metadata cache serves repeated lookups until cleared.
    """
    pgx.get_column_types(conn, 'parcels')
    pgx.execute(conn, 'alter table parcels add column note text')

    assert 'note' not in pgx.get_column_types(conn, 'parcels')
    assert 'note' in pgx.get_column_types(conn, 'parcels', bypass_cache=True)

    pgx.execute(conn, 'alter table parcels drop column note')
    pgx.clear_metadata_cache('parcels')
    assert 'note' not in pgx.get_column_types(conn, 'parcels')


def test_driver_errors_propagate(psql_docker, conn):
    """Verify database errors surface unchanged and the connection stays usable.
    """
    with pytest.raises(pgx.UniqueViolation):
        pgx.execute(conn, "insert into parcels (id, name) values (1, 'Again')")
    with pytest.raises(pgx.ProgrammingError):
        pgx.select(conn, 'select nope from parcels')
    assert pgx.select_scalar(conn, 'select count(*) from parcels') == 3


def test_connection_tracks_calls(psql_docker, conn):
    calls = conn.calls
    pgx.select(conn, 'select 1')
    assert conn.calls == calls + 1


if __name__ == '__main__':
    __import__('pytest').main([__file__])
