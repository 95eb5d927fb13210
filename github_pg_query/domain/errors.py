"""Error hierarchy shared by the search client, persister and CLI.

Each kind carries only the data needed for its message so callers can
branch on the exception class instead of parsing strings.
"""
from typing import Optional


class AppError(Exception):
    """Base class for every error raised by github-pg-query."""
    pass


class GitHubApiError(AppError):
    """Unexpected response from the GitHub API."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"GitHub API error: {message}")


class RateLimitError(AppError):
    """Raised when rate limiting persists after every retry was spent."""

    UNKNOWN_RESET = "unknown"

    def __init__(self, reset_time: str = UNKNOWN_RESET):
        self.reset_time = reset_time
        super().__init__(f"GitHub API rate limit exceeded: {reset_time}")


class AuthenticationError(AppError):
    """Missing, invalid or expired GitHub token. Never retried."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"GitHub API authentication failed: {reason}")


class InvalidQueryError(AppError):
    """Search query rejected locally or by the API."""

    def __init__(self, query: str, reason: str):
        self.query = query
        self.reason = reason
        super().__init__(f"Invalid GitHub search query: {query} - {reason}")


class TransportError(AppError):
    """Network failure or timeout below the HTTP status level."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"HTTP request failed: {message}")


class ValidationError(AppError):
    """A repository field (or a table name) failed a validation rule."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Repository data validation failed: {field} - {reason}")


class DatabaseError(AppError):
    """PostgreSQL failure."""

    def __init__(self, message: str, text: Optional[str] = None):
        self.message = message
        super().__init__(text or f"Database error: {message}")


class TableCreationError(DatabaseError):
    """DDL for a managed table or the history table failed."""

    def __init__(self, table_name: str, reason: str):
        self.table_name = table_name
        self.reason = reason
        super().__init__(reason, f"Database table creation failed: {table_name} - {reason}")


class TableNotFoundError(AppError):
    """Statistics were requested for a table that does not exist."""

    def __init__(self, table_name: str):
        self.table_name = table_name
        super().__init__(f"Table not found: {table_name}")


class ConfigurationError(AppError):
    """Invalid command line or environment configuration."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"Configuration error: {message}")


class MissingEnvironmentError(AppError):
    """A required environment variable is missing or empty."""

    def __init__(self, var_name: str):
        self.var_name = var_name
        super().__init__(f"Environment variable missing or invalid: {var_name}")
