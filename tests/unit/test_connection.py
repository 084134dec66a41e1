from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from pgextras.connection import ConnectionWrapper, create_url_from_options
from pgextras.connection import dispose_all_engines, get_engine_for_options
from pgextras.exceptions import QueryError
from pgextras.options import DatabaseOptions
from sqlalchemy.pool import NullPool


@pytest.fixture
def options():
    return DatabaseOptions(hostname='testhost', username='testuser', password='testpass',
                           database='testdb', port=1234, timeout=30, appname='pgx_tests')


@pytest.fixture
def wrapper(options):
    sa_connection = MagicMock()
    sa_connection.closed = False
    raw_cursor = sa_connection.connection.cursor.return_value
    return ConnectionWrapper(sa_connection, options), sa_connection, raw_cursor


def test_create_url_from_options(options):
    url = create_url_from_options(options)
    assert url.drivername == 'postgresql+psycopg'
    assert url.host == 'testhost'
    assert url.port == 1234
    assert url.database == 'testdb'
    assert url.query['application_name'] == 'pgx_tests'
    assert url.query['connect_timeout'] == '30'


def test_engine_registry(options):
    """Test one engine is created per distinct options"""
    factory = MagicMock()
    try:
        engine1 = get_engine_for_options(options, engine_factory=factory)
        engine2 = get_engine_for_options(options, engine_factory=factory)
        assert engine1 is engine2
        assert factory.call_count == 1
        assert factory.call_args.kwargs['poolclass'] is NullPool

        pooled = get_engine_for_options(options, use_pool=True, engine_factory=factory)
        assert factory.call_count == 2
        assert factory.call_args.kwargs['pool_size'] == 5
        assert pooled is factory.return_value
    finally:
        dispose_all_engines()
    factory.return_value.dispose.assert_called()


def test_execute_commits(wrapper):
    """Test execute returns the row count and commits"""
    cn, sa_connection, raw_cursor = wrapper
    raw_cursor.rowcount = 3

    assert cn.execute('update parcels set name = %s', 'x') == 3
    raw_cursor.execute.assert_called_once_with('update parcels set name = %s', ('x',))
    sa_connection.commit.assert_called_once()
    raw_cursor.close.assert_called_once()
    assert cn.calls == 1


def test_execute_rolls_back_and_raises(wrapper):
    """Test a failing statement is rolled back and the error propagates"""
    cn, sa_connection, raw_cursor = wrapper
    raw_cursor.execute.side_effect = RuntimeError('boom')

    with pytest.raises(RuntimeError, match='boom'):
        cn.execute('update parcels set name = %s', 'x')
    sa_connection.rollback.assert_called_once()
    sa_connection.commit.assert_not_called()
    raw_cursor.close.assert_called_once()


def test_select_helpers(wrapper):
    cn, _, raw_cursor = wrapper
    raw_cursor.description = [SimpleNamespace(name='id', type_code=23)]
    raw_cursor.fetchall.return_value = [{'id': 7}]

    assert cn.select_dicts('select id from parcels') == [{'id': 7}]
    assert cn.select_scalar('select id from parcels') == 7
    assert cn.select_column('select id from parcels') == [7]
    assert cn.select_row('select id from parcels').id == 7

    raw_cursor.fetchall.return_value = []
    assert cn.select_scalar_or_none('select id from parcels') is None
    assert cn.select_row_or_none('select id from parcels') is None


@pytest.mark.parametrize('rows', [[], [{'id': 7}, {'id': 8}]])
def test_select_single_row_helpers_check_row_count(wrapper, rows):
    """Test zero or several rows raise QueryError, or give None for the _or_none variants"""
    cn, _, raw_cursor = wrapper
    raw_cursor.description = [SimpleNamespace(name='id', type_code=23)]
    raw_cursor.fetchall.return_value = rows

    with pytest.raises(QueryError, match=f'Expected one row, got {len(rows)}'):
        cn.select_row('select id from parcels')
    with pytest.raises(QueryError, match=f'Expected one row, got {len(rows)}'):
        cn.select_scalar('select id from parcels')
    assert cn.select_row_or_none('select id from parcels') is None
    assert cn.select_scalar_or_none('select id from parcels') is None


def test_context_manager_closes(wrapper):
    cn, sa_connection, _ = wrapper
    with cn:
        pass
    sa_connection.close.assert_called_once()


if __name__ == '__main__':
    __import__('pytest').main([__file__])
