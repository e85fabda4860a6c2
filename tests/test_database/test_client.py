"""
Tests for Supabase query execution and client construction.
"""
from unittest.mock import MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError

from app.core.config import Settings
from app.core.exceptions import ConfigurationError, DatabaseConnectionError, DatabaseError
from app.database.client import execute_query, get_supabase_client


def test_execute_query_returns_response():
    query = MagicMock()
    query.execute.return_value = MagicMock(data=[{"id": 1}])
    assert execute_query(query, "read").data == [{"id": 1}]


def test_transport_errors_become_connection_errors():
    query = MagicMock()
    query.execute.side_effect = httpx.ConnectError("connection refused")

    with pytest.raises(DatabaseConnectionError):
        execute_query(query, "read")


def test_rejected_queries_become_database_errors():
    query = MagicMock()
    query.execute.side_effect = APIError({"message": "column does not exist", "code": "42703"})

    with pytest.raises(DatabaseError) as exc_info:
        execute_query(query, "find_cases")

    assert exc_info.value.operation == "find_cases"
    assert not isinstance(exc_info.value, DatabaseConnectionError)


def test_missing_credentials():
    with pytest.raises(ConfigurationError):
        get_supabase_client(Settings(_env_file=None, supabase_url=None, supabase_key=None))

    with pytest.raises(ConfigurationError):
        get_supabase_client(Settings(_env_file=None, supabase_url="https://x.supabase.co", supabase_key=None))
