"""Tests for PostgresQueryHistory against a mocked psycopg2 pool."""
import uuid
from datetime import datetime, timezone
from unittest.mock import MagicMock
import psycopg2
import pytest
from github_pg_query.domain.errors import DatabaseError, TableCreationError
from github_pg_query.domain.models import QueryMetadata
from github_pg_query.infrastructure.postgres_query_history import (
    HISTORY_INDEXES_SQL,
    PostgresQueryHistory
)


@pytest.fixture
def cursor():
    return MagicMock()


@pytest.fixture
def pool(cursor):
    pool = MagicMock()
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    pool.getconn.return_value = conn
    return pool


@pytest.fixture
def history(pool, cursor):
    store = PostgresQueryHistory(pool)
    cursor.reset_mock()
    return store


def test_schema_created_on_init(pool, cursor):
    """Test the history table and its indexes are created up front."""
    PostgresQueryHistory(pool)

    statements = [c[0][0] for c in cursor.execute.call_args_list]
    assert "CREATE TABLE IF NOT EXISTS query_history" in statements[0]
    assert statements[1:] == list(HISTORY_INDEXES_SQL)
    pool.putconn.assert_called_once()


def test_schema_failure(pool, cursor):
    """Test DDL failures become TableCreationError."""
    cursor.execute.side_effect = psycopg2.ProgrammingError("permission denied for schema public")

    with pytest.raises(TableCreationError) as exc_info:
        PostgresQueryHistory(pool)

    assert exc_info.value.table_name == "query_history"


def test_save_binds_every_field(history, cursor):
    """Test all metadata fields are bound in column order."""
    metadata = QueryMetadata.new("language:rust", "repos_20240101000000").mark_success(25, 1500)

    history.save(metadata)

    statement, params = cursor.execute.call_args[0]
    assert "ON CONFLICT (id) DO UPDATE" in statement
    assert params == (
        metadata.id,
        "language:rust",
        "repos_20240101000000",
        25,
        metadata.executed_at,
        1500,
        True,
        None,
    )


def test_save_failure(history, cursor):
    """Test write failures surface as DatabaseError."""
    cursor.execute.side_effect = psycopg2.OperationalError("server closed the connection")

    with pytest.raises(DatabaseError):
        history.save(QueryMetadata.new("q", "repos_20240101000000"))


def test_history_unbounded(history, cursor):
    """Test history without filters orders newest first with no limit."""
    cursor.fetchall.return_value = []

    assert history.history() == []

    query, params = cursor.execute.call_args[0]
    assert "WHERE" not in query
    assert query.endswith("ORDER BY executed_at DESC")
    assert params == []


def test_history_success_only_with_limit(history, cursor):
    """Test filters and limit are applied and rows map onto QueryMetadata."""
    record_id = uuid.uuid4()
    executed_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    cursor.fetchall.return_value = [
        (record_id, "language:rust", "repos_20240101000000", 2, executed_at, 850, True, None),
    ]

    records = history.history(limit=1, success_only=True)

    query, params = cursor.execute.call_args[0]
    assert "WHERE success = TRUE" in query
    assert query.endswith("LIMIT %s")
    assert params == [1]
    assert records == [
        QueryMetadata(
            search_query="language:rust",
            table_name="repos_20240101000000",
            id=record_id,
            result_count=2,
            executed_at=executed_at,
            duration_ms=850,
            success=True,
            error_message=None
        )
    ]


def test_history_failure(history, cursor):
    """Test read failures surface as DatabaseError."""
    cursor.execute.side_effect = psycopg2.OperationalError("timeout")

    with pytest.raises(DatabaseError):
        history.history(limit=5)
