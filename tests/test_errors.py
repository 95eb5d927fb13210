"""Tests for the error hierarchy."""
from github_pg_query.domain.errors import AppError, DatabaseError, TableCreationError


def test_database_error_message():
    """Test plain database errors carry the generic prefix."""
    error = DatabaseError("connection refused")

    assert str(error) == "Database error: connection refused"
    assert error.message == "connection refused"


def test_table_creation_error_is_a_database_error():
    """Test table creation failures keep their own message and the full hierarchy."""
    error = TableCreationError("repos_20240101000000", "permission denied")

    assert isinstance(error, DatabaseError)
    assert isinstance(error, AppError)
    assert str(error) == "Database table creation failed: repos_20240101000000 - permission denied"
    assert error.args == (str(error),)
    assert error.message == "permission denied"
    assert error.table_name == "repos_20240101000000"
    assert error.reason == "permission denied"
