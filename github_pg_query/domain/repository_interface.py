"""Storage interfaces (ports) for repository tables and query history.

These are the ports in hexagonal architecture that the infrastructure layer implements.
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence
from github_pg_query.domain.models import QueryMetadata, Repository, TableStats


class IRepositoryStorage(ABC):
    """Abstract interface for per-query repository tables."""

    @abstractmethod
    def generate_table_name(self) -> str:
        """Return a fresh managed table name."""
        pass

    @abstractmethod
    def ensure_table(self, table_name: str) -> None:
        """Create the table and its indexes if they do not exist."""
        pass

    @abstractmethod
    def upsert_batch(self, table_name: str, repositories: Sequence[Repository]) -> int:
        """Insert or update a batch of repositories atomically.

        Either every repository in the batch is written or none is.

        Args:
            table_name: Managed table to write into
            repositories: Repository entities to persist

        Returns:
            Number of rows inserted or updated
        """
        pass

    @abstractmethod
    def get_stats(self, table_name: str) -> TableStats:
        """Compute aggregate statistics, raising TableNotFoundError if absent."""
        pass

    @abstractmethod
    def count_rows(self, table_name: str) -> int:
        """Get the number of repositories stored in a table."""
        pass

    @abstractmethod
    def list_tables(self) -> List[str]:
        """List managed tables, newest name first."""
        pass

    @abstractmethod
    def drop_table(self, table_name: str) -> None:
        """Drop a managed table."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close any open connections."""
        pass


class IQueryHistory(ABC):
    """Abstract interface for the query audit trail."""

    @abstractmethod
    def save(self, metadata: QueryMetadata) -> None:
        """Insert the record, or update it in place if its id exists."""
        pass

    @abstractmethod
    def history(self, limit: Optional[int] = None, success_only: bool = False) -> List[QueryMetadata]:
        """Return records newest first."""
        pass
