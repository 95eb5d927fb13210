"""Database initialization script.

Creates the query_history audit table and its indexes. Per-query
repository tables (repos_YYYYMMDDHHMMSS) are created on demand by each
search run.
"""
import os
import sys
import logging
from dotenv import load_dotenv
from github_pg_query.domain.errors import AppError
from github_pg_query.infrastructure.postgres_query_history import PostgresQueryHistory
from github_pg_query.infrastructure.postgres_repository import PostgresRepositoryStorage

# Load environment variables from .env or env file
load_dotenv('.env') or load_dotenv('env')


logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def get_connection_string() -> str:
    """Build PostgreSQL connection string from environment variables.

    DATABASE_URL wins; otherwise it is assembled from the POSTGRES_* variables.
    """
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return database_url

    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    database = os.getenv("POSTGRES_DB", "github_pg_query")
    user = os.getenv("POSTGRES_USER", "postgres")
    password = os.getenv("POSTGRES_PASSWORD", "postgres")

    return f"host={host} port={port} dbname={database} user={user} password={password}"


def main():
    """Initialize the database."""
    try:
        logger.info("Connecting to database...")
        storage = PostgresRepositoryStorage(get_connection_string(), max_connections=1)
        try:
            PostgresQueryHistory(storage.pool)
            logger.info("Database schema created successfully")
            tables = storage.list_tables()
            logger.info(f"Existing repository tables: {len(tables)}")
        finally:
            storage.close()

        logger.info("Database initialization completed successfully")

    except AppError as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
