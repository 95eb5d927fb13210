"""PostgreSQL persistence of the query audit trail."""
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional
import psycopg2
from psycopg2.extras import register_uuid
from github_pg_query.domain.errors import DatabaseError, TableCreationError
from github_pg_query.domain.models import QueryMetadata
from github_pg_query.domain.repository_interface import IQueryHistory
from github_pg_query.infrastructure.postgres_repository import BlockingConnectionPool


logger = logging.getLogger(__name__)

register_uuid()

HISTORY_TABLE = "query_history"

CREATE_HISTORY_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS query_history (
        id UUID PRIMARY KEY,
        search_query TEXT NOT NULL,
        table_name VARCHAR(50) NOT NULL,
        result_count BIGINT NOT NULL DEFAULT 0,
        executed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        duration_ms BIGINT NOT NULL DEFAULT 0,
        success BOOLEAN NOT NULL DEFAULT FALSE,
        error_message TEXT
    )
"""

HISTORY_INDEXES_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_query_history_executed_at ON query_history(executed_at)",
    "CREATE INDEX IF NOT EXISTS idx_query_history_table_name ON query_history(table_name)",
    "CREATE INDEX IF NOT EXISTS idx_query_history_success ON query_history(success)",
)

# Only the outcome columns change when a pending record is finished
SAVE_SQL = """
    INSERT INTO query_history (
        id, search_query, table_name, result_count, executed_at,
        duration_ms, success, error_message
    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (id) DO UPDATE SET
        result_count = EXCLUDED.result_count,
        duration_ms = EXCLUDED.duration_ms,
        success = EXCLUDED.success,
        error_message = EXCLUDED.error_message
"""

HISTORY_COLUMNS = (
    "id, search_query, table_name, result_count, executed_at, "
    "duration_ms, success, error_message"
)


class PostgresQueryHistory(IQueryHistory):
    """Stores one row per executed query in ``query_history``.

    Borrows connections from the repository storage pool, so both wait on
    the same connection limit; it never closes the pool itself.
    """

    def __init__(self, pool: BlockingConnectionPool):
        self._pool = pool
        self.ensure_schema()

    @contextmanager
    def _connection(self) -> Iterator:
        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    def ensure_schema(self) -> None:
        """Create the query_history table and its indexes if missing."""
        try:
            with self._connection() as conn, conn, conn.cursor() as cursor:
                cursor.execute(CREATE_HISTORY_TABLE_SQL)
                for statement in HISTORY_INDEXES_SQL:
                    cursor.execute(statement)
        except psycopg2.Error as e:
            raise TableCreationError(HISTORY_TABLE, str(e)) from e

    def save(self, metadata: QueryMetadata) -> None:
        """Insert the record, or update its outcome if the id already exists."""
        params = (
            metadata.id,
            metadata.search_query,
            metadata.table_name,
            metadata.result_count,
            metadata.executed_at,
            metadata.duration_ms,
            metadata.success,
            metadata.error_message,
        )
        try:
            with self._connection() as conn, conn, conn.cursor() as cursor:
                cursor.execute(SAVE_SQL, params)
        except psycopg2.Error as e:
            logger.error(f"Error saving query metadata {metadata.id}: {e}")
            raise DatabaseError(str(e)) from e

        logger.debug(f"Saved query metadata {metadata.id} (success={metadata.success})")

    def history(self, limit: Optional[int] = None, success_only: bool = False) -> List[QueryMetadata]:
        """Get query history, newest first.

        Args:
            limit: Maximum number of records, unbounded when None
            success_only: Only return successful queries
        """
        query = f"SELECT {HISTORY_COLUMNS} FROM query_history"
        params = []
        if success_only:
            query += " WHERE success = TRUE"
        query += " ORDER BY executed_at DESC"
        if limit is not None:
            query += " LIMIT %s"
            params.append(max(limit, 0))

        try:
            with self._connection() as conn, conn, conn.cursor() as cursor:
                cursor.execute(query, params)
                rows = cursor.fetchall()
        except psycopg2.Error as e:
            raise DatabaseError(str(e)) from e

        return [
            QueryMetadata(
                id=row[0],
                search_query=row[1],
                table_name=row[2],
                result_count=row[3],
                executed_at=row[4],
                duration_ms=row[5],
                success=row[6],
                error_message=row[7]
            )
            for row in rows
        ]
