"""PostgreSQL repository implementation for data persistence."""
import logging
import re
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Sequence, Tuple
import psycopg2
from psycopg2 import sql
from psycopg2.pool import AbstractConnectionPool, ThreadedConnectionPool
from github_pg_query.domain.errors import (
    DatabaseError,
    TableCreationError,
    TableNotFoundError,
    ValidationError
)
from github_pg_query.domain.models import Repository, TableStats
from github_pg_query.domain.repository_interface import IRepositoryStorage
from github_pg_query.domain.validation import RepositoryValidator


logger = logging.getLogger(__name__)

TABLE_PREFIX = "repos_"
TABLE_NAME_PATTERN = re.compile(r"repos_[A-Za-z0-9_]+")

# Insert order of the per-query table columns
REPOSITORY_COLUMNS = (
    "github_id", "full_name", "name", "description", "html_url", "clone_url", "ssh_url",
    "size_kb", "stargazers_count", "watchers_count", "forks_count", "open_issues_count",
    "language", "default_branch", "visibility", "private", "fork", "archived", "disabled",
    "created_at", "updated_at", "pushed_at",
    "owner_id", "owner_login", "owner_type", "owner_avatar_url", "owner_html_url", "owner_site_admin",
    "license_key", "license_name", "license_spdx_id", "license_url",
    "topics", "has_issues", "has_projects", "has_wiki", "has_pages", "has_downloads",
)

# Columns refreshed on conflict; identity and creation facts stay as first seen
IMMUTABLE_COLUMNS = ("github_id", "created_at", "owner_id")
UPDATABLE_COLUMNS = tuple(c for c in REPOSITORY_COLUMNS if c not in IMMUTABLE_COLUMNS)

CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS {table} (
        id SERIAL PRIMARY KEY,
        github_id BIGINT UNIQUE NOT NULL,
        full_name VARCHAR(255) NOT NULL,
        name VARCHAR(255) NOT NULL,
        description TEXT,
        html_url VARCHAR(500) NOT NULL,
        clone_url VARCHAR(500) NOT NULL,
        ssh_url VARCHAR(500) NOT NULL,
        size_kb BIGINT NOT NULL DEFAULT 0,
        stargazers_count BIGINT NOT NULL DEFAULT 0,
        watchers_count BIGINT NOT NULL DEFAULT 0,
        forks_count BIGINT NOT NULL DEFAULT 0,
        open_issues_count BIGINT NOT NULL DEFAULT 0,
        language VARCHAR(100),
        default_branch VARCHAR(100) NOT NULL,
        visibility VARCHAR(20) NOT NULL,
        private BOOLEAN NOT NULL DEFAULT FALSE,
        fork BOOLEAN NOT NULL DEFAULT FALSE,
        archived BOOLEAN NOT NULL DEFAULT FALSE,
        disabled BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        pushed_at TIMESTAMPTZ,
        owner_id BIGINT NOT NULL,
        owner_login VARCHAR(255) NOT NULL,
        owner_type VARCHAR(50) NOT NULL,
        owner_avatar_url VARCHAR(500) NOT NULL,
        owner_html_url VARCHAR(500) NOT NULL,
        owner_site_admin BOOLEAN NOT NULL DEFAULT FALSE,
        license_key VARCHAR(100),
        license_name VARCHAR(255),
        license_spdx_id VARCHAR(100),
        license_url VARCHAR(500),
        topics TEXT[] DEFAULT '{{}}',
        has_issues BOOLEAN NOT NULL DEFAULT FALSE,
        has_projects BOOLEAN NOT NULL DEFAULT FALSE,
        has_wiki BOOLEAN NOT NULL DEFAULT FALSE,
        has_pages BOOLEAN NOT NULL DEFAULT FALSE,
        has_downloads BOOLEAN NOT NULL DEFAULT FALSE,
        fetched_at TIMESTAMPTZ DEFAULT NOW()
    )
"""

# (index suffix, indexed expression)
TABLE_INDEXES = (
    ("github_id", "github_id"),
    ("full_name", "full_name"),
    ("language", "language"),
    ("stargazers", "stargazers_count DESC"),
    ("created_at", "created_at"),
    ("owner_login", "owner_login"),
)

TABLE_EXISTS_SQL = """
    SELECT EXISTS (
        SELECT FROM information_schema.tables
        WHERE table_schema = current_schema()
        AND table_name = %s
    )
"""

LIST_TABLES_SQL = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = current_schema()
    AND table_name LIKE %s
    ORDER BY table_name DESC
"""

STATS_SQL = """
    SELECT
        COUNT(*) AS total_repositories,
        COUNT(DISTINCT language) AS unique_languages,
        COUNT(DISTINCT owner_login) AS unique_owners,
        COALESCE(AVG(stargazers_count), 0) AS avg_stars,
        COALESCE(MAX(stargazers_count), 0) AS max_stars,
        MIN(created_at) AS oldest_repo,
        MAX(created_at) AS newest_repo
    FROM {table}
"""


def is_managed_table_name(table_name: str) -> bool:
    """True when the name follows the repos_<alphanumerics/underscores> convention."""
    return bool(table_name) and TABLE_NAME_PATTERN.fullmatch(table_name) is not None


def validate_table_name(table_name: str) -> None:
    """Reject anything that is not a managed table name.

    Table identifiers cannot be bound as query parameters, so this runs
    before any statement that names a table.
    """
    if not is_managed_table_name(table_name):
        raise ValidationError("table_name", "Invalid table name format")


def generate_table_name(now: Optional[datetime] = None) -> str:
    """Generate a timestamped table name in the format repos_YYYYMMDDHHMMSS."""
    now = now or datetime.now(timezone.utc)
    return f"{TABLE_PREFIX}{now.astimezone(timezone.utc).strftime('%Y%m%d%H%M%S')}"


def repository_to_row(repo: Repository) -> Tuple:
    """Flatten a repository into column values, in REPOSITORY_COLUMNS order."""
    license = repo.license
    return (
        repo.id,
        repo.full_name,
        repo.name,
        repo.description,
        repo.html_url,
        repo.clone_url,
        repo.ssh_url,
        repo.size,
        repo.stargazers_count,
        repo.watchers_count,
        repo.forks_count,
        repo.open_issues_count,
        repo.language,
        repo.default_branch,
        repo.visibility,
        repo.private,
        repo.fork,
        repo.archived,
        repo.disabled,
        repo.created_at,
        repo.updated_at,
        repo.pushed_at,
        repo.owner.id,
        repo.owner.login,
        repo.owner.owner_type,
        repo.owner.avatar_url,
        repo.owner.html_url,
        repo.owner.site_admin,
        license.key if license else None,
        license.name if license else None,
        license.spdx_id if license else None,
        license.url if license else None,
        # psycopg2 adapts lists (not tuples) to ARRAY
        list(repo.topics),
        repo.has_issues,
        repo.has_projects,
        repo.has_wiki,
        repo.has_pages,
        repo.has_downloads,
    )


def create_connection_pool(
    connection_string: str,
    min_connections: int = 1,
    max_connections: int = 10
) -> ThreadedConnectionPool:
    """Open a thread-safe PostgreSQL connection pool."""
    try:
        pool = ThreadedConnectionPool(min_connections, max_connections, connection_string)
    except psycopg2.Error as e:
        raise DatabaseError(f"Could not connect to PostgreSQL: {e}") from e
    logger.info("Connected to PostgreSQL database")
    return pool


class BlockingConnectionPool:
    """Front for a psycopg2 pool that waits for a free connection.

    psycopg2 pools raise PoolError as soon as every connection is lent
    out; here callers block on a semaphore sized to the pool instead.
    """

    def __init__(self, pool: AbstractConnectionPool, max_connections: int):
        self._pool = pool
        self._slots = threading.BoundedSemaphore(max_connections)

    @property
    def closed(self) -> bool:
        return self._pool.closed

    def getconn(self):
        self._slots.acquire()
        try:
            return self._pool.getconn()
        except BaseException:
            self._slots.release()
            raise

    def putconn(self, conn) -> None:
        try:
            self._pool.putconn(conn)
        finally:
            self._slots.release()

    def closeall(self) -> None:
        self._pool.closeall()


class PostgresRepositoryStorage(IRepositoryStorage):
    """PostgreSQL implementation of per-query repository tables.

    Each search gets its own managed table (``repos_YYYYMMDDHHMMSS``).
    Batches are written with ON CONFLICT upserts keyed on the GitHub id
    inside a single transaction, so a batch is stored completely or not
    at all.
    """

    def __init__(
        self,
        connection_string: Optional[str] = None,
        pool: Optional[AbstractConnectionPool] = None,
        validator: Optional[RepositoryValidator] = None,
        min_connections: int = 1,
        max_connections: int = 10
    ):
        """Initialize PostgreSQL storage.

        Args:
            connection_string: PostgreSQL connection string, used when no pool is given
            pool: Existing psycopg2 connection pool, never lent to more
                than its maxconn (or max_connections) callers at once
            validator: Record validator run before every write
            min_connections: Pool lower bound
            max_connections: Pool upper bound
        """
        if pool is None:
            if not connection_string:
                raise DatabaseError("A connection string or a connection pool is required")
            pool = create_connection_pool(connection_string, min_connections, max_connections)
        if isinstance(pool, AbstractConnectionPool):
            max_connections = pool.maxconn
        self._pool = BlockingConnectionPool(pool, max_connections)
        self._validator = validator or RepositoryValidator()

    @property
    def pool(self) -> BlockingConnectionPool:
        """Connection pool shared with PostgresQueryHistory."""
        return self._pool

    @staticmethod
    def generate_table_name() -> str:
        return generate_table_name()

    @contextmanager
    def _connection(self) -> Iterator:
        """Borrow a pooled connection, returning it on every path."""
        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    def ensure_table(self, table_name: str) -> None:
        """Create a managed table and its indexes if they do not exist.

        Args:
            table_name: Managed table name (repos_...)
        """
        validate_table_name(table_name)

        statements = [sql.SQL(CREATE_TABLE_SQL).format(table=sql.Identifier(table_name))]
        for suffix, expression in TABLE_INDEXES:
            statements.append(
                sql.SQL("CREATE INDEX IF NOT EXISTS {index} ON {table}({expression})").format(
                    index=sql.Identifier(f"idx_{table_name}_{suffix}"),
                    table=sql.Identifier(table_name),
                    expression=sql.SQL(expression)
                )
            )

        try:
            with self._connection() as conn, conn, conn.cursor() as cursor:
                for statement in statements:
                    cursor.execute(statement)
        except psycopg2.Error as e:
            logger.error(f"Error creating table {table_name}: {e}")
            raise TableCreationError(table_name, str(e)) from e

        logger.info(f"Table {table_name} is ready")

    def _upsert_statement(self, table_name: str) -> sql.Composed:
        updates = sql.SQL(", ").join(
            sql.SQL("{column} = EXCLUDED.{column}").format(column=sql.Identifier(column))
            for column in UPDATABLE_COLUMNS
        )
        return sql.SQL(
            "INSERT INTO {table} ({columns}) VALUES ({values}) "
            "ON CONFLICT (github_id) DO UPDATE SET {updates}, fetched_at = NOW()"
        ).format(
            table=sql.Identifier(table_name),
            columns=sql.SQL(", ").join(map(sql.Identifier, REPOSITORY_COLUMNS)),
            values=sql.SQL(", ").join(sql.Placeholder() * len(REPOSITORY_COLUMNS)),
            updates=updates
        )

    def upsert_batch(self, table_name: str, repositories: Sequence[Repository]) -> int:
        """Insert or update repositories in one transaction.

        Every repository is validated before anything is written; a single
        failure raises ValidationError and leaves the table untouched. A
        database error mid-batch rolls the whole transaction back.

        Args:
            table_name: Managed table to write into
            repositories: Repository entities to persist

        Returns:
            Number of rows inserted or updated. A repeated id counts as an
            affected row without adding a new one.
        """
        if not repositories:
            return 0

        validate_table_name(table_name)
        for repo in repositories:
            self._validator.validate(repo)

        statement = self._upsert_statement(table_name)
        affected = 0

        try:
            with self._connection() as conn, conn, conn.cursor() as cursor:
                for repo in repositories:
                    cursor.execute(statement, repository_to_row(repo))
                    affected += cursor.rowcount
        except psycopg2.Error as e:
            logger.error(f"Error saving repositories to {table_name}: {e}")
            raise DatabaseError(str(e)) from e

        logger.info(f"Saved {affected} repositories to {table_name}")
        return affected

    def get_stats(self, table_name: str) -> TableStats:
        """Compute aggregate statistics for a managed table.

        Raises:
            TableNotFoundError: The table does not exist
        """
        validate_table_name(table_name)

        try:
            with self._connection() as conn, conn, conn.cursor() as cursor:
                cursor.execute(TABLE_EXISTS_SQL, (table_name,))
                if not cursor.fetchone()[0]:
                    raise TableNotFoundError(table_name)

                cursor.execute(sql.SQL(STATS_SQL).format(table=sql.Identifier(table_name)))
                row = cursor.fetchone()
        except psycopg2.Error as e:
            raise DatabaseError(str(e)) from e

        total, languages, owners, avg_stars, max_stars, oldest, newest = row
        return TableStats(
            table_name=table_name,
            total_repositories=total,
            unique_languages=languages,
            unique_owners=owners,
            avg_stars=float(avg_stars),
            max_stars=max_stars,
            oldest_repo=oldest,
            newest_repo=newest
        )

    def list_tables(self) -> List[str]:
        """List managed repository tables, newest name first."""
        try:
            with self._connection() as conn, conn, conn.cursor() as cursor:
                cursor.execute(LIST_TABLES_SQL, (TABLE_PREFIX.replace("_", "\\_") + "%",))
                rows = cursor.fetchall()
        except psycopg2.Error as e:
            raise DatabaseError(str(e)) from e

        return [name for (name,) in rows if is_managed_table_name(name)]

    def drop_table(self, table_name: str) -> None:
        """Drop a managed table (for cleanup/testing)."""
        validate_table_name(table_name)

        try:
            with self._connection() as conn, conn, conn.cursor() as cursor:
                cursor.execute(
                    sql.SQL("DROP TABLE IF EXISTS {table}").format(table=sql.Identifier(table_name))
                )
        except psycopg2.Error as e:
            raise DatabaseError(str(e)) from e

        logger.info(f"Dropped table {table_name}")

    def count_rows(self, table_name: str) -> int:
        """Get the number of rows stored in a managed table."""
        validate_table_name(table_name)

        try:
            with self._connection() as conn, conn, conn.cursor() as cursor:
                cursor.execute(sql.SQL("SELECT COUNT(*) FROM {table}").format(table=sql.Identifier(table_name)))
                return cursor.fetchone()[0]
        except psycopg2.Error as e:
            raise DatabaseError(str(e)) from e

    def close(self) -> None:
        """Close every pooled connection."""
        if not self._pool.closed:
            self._pool.closeall()
            logger.info("Closed PostgreSQL connection pool")
