"""Tests for the database client in mock mode."""

import pytest

from sql import queries
from utils.db_client import DatabaseClient, validate_identifier


@pytest.mark.parametrize("name", ["workers", "_tmp", "worker_attendance2"])
def test_valid_identifiers(name):
    assert validate_identifier(name) == name


@pytest.mark.parametrize("name", ["", "1table", "workers; DROP", 'a"b', "x" * 64, None])
def test_invalid_identifiers(name):
    with pytest.raises(ValueError):
        validate_identifier(name)


def test_mock_client_routes_queries():
    client = DatabaseClient()
    tables = [row["table_name"] for row in client.execute_query(queries.USER_TABLES)]
    assert tables == ["projects", "workers", "worker_attendance", "supplier_payments"]
    count = client.execute_query(queries.TABLE_ROW_COUNT.format(table="workers"))
    assert count == [{"count": 340}]
    assert client.execute_query("SELECT * FROM unknown_view") == []


def test_mock_client_records_statements():
    client = DatabaseClient()
    assert client.execute_statement(queries.ANALYZE_DATABASE) == 1
    assert client.get_connection().statements == [queries.ANALYZE_DATABASE]


def test_ping_and_reset():
    client = DatabaseClient()
    assert client.ping() is True
    first = client.get_connection()
    client.close_all()
    assert client.get_connection() is not first
