"""
Mock connections for reader and writer tests.

`FakeConnection` stands in for a ConnectionWrapper without a database. It
answers the column type catalog query from a dict of tables, returns canned
query results through the connection's data loader, and records every
executed statement.

Usage:
    def test_insert(fake_connection):
        cn = fake_connection(tables={'parcels': {'id': 'integer'}})
        insert_records(cn, 'parcels', records)
        sql, params = cn.executed[0]
"""
from types import SimpleNamespace

import pytest
from pgextras.options import pandas_numpy_data_loader
from pgextras.types import Column

TEXT_OID = 25


class FakeConnection:

    def __init__(self, tables=None, result=None):
        self.tables = tables or {}
        self.result = result or ([], [])
        self.engine = object()
        self.options = SimpleNamespace(data_loader=pandas_numpy_data_loader)
        self.executed = []
        self.selected = []
        self.catalog_queries = 0

    def select_dicts(self, sql, *args):
        self.catalog_queries += 1
        table = args[0].replace('"', '')
        return [{'name': name, 'type': type_name}
                for name, type_name in self.tables.get(table, {}).items()]

    def select(self, sql, *args):
        self.selected.append((sql, args))
        names, rows = self.result
        columns = [Column(name, TEXT_OID, str) for name in names]
        data = [dict(zip(names, row)) for row in rows]
        return self.options.data_loader(data, columns)

    def execute(self, sql, *args):
        params = args[0] if len(args) == 1 else args
        self.executed.append((sql, params))
        return sql.count('(%s')


@pytest.fixture
def fake_connection():
    """Factory for FakeConnection objects.

    Example usage:
        def test_read(fake_connection):
            cn = fake_connection(result=(['id', 'tags'], [(1, '"a"=>"1"')]))
    """
    def factory(tables=None, result=None):
        return FakeConnection(tables=tables, result=result)

    return factory
