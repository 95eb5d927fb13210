"""Query and display statistics about stored search results."""
import argparse
import os
import sys
from dotenv import load_dotenv
from github_pg_query.domain.errors import AppError, TableNotFoundError
from github_pg_query.infrastructure.postgres_query_history import PostgresQueryHistory
from github_pg_query.infrastructure.postgres_repository import PostgresRepositoryStorage

# Load environment variables from .env or env file
load_dotenv('.env') or load_dotenv('env')


def get_connection_string() -> str:
    """Build PostgreSQL connection string from environment variables."""
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return database_url

    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    database = os.getenv("POSTGRES_DB", "github_pg_query")
    user = os.getenv("POSTGRES_USER", "postgres")
    password = os.getenv("POSTGRES_PASSWORD", "postgres")

    return f"host={host} port={port} dbname={database} user={user} password={password}"


def print_section(title: str):
    """Print a section header."""
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


def show_tables(storage: PostgresRepositoryStorage, args):
    print_section("Repository Tables")
    tables = storage.list_tables()
    for table in tables:
        print(f"{table:<30} {storage.count_rows(table):>10,} rows")
    print(f"\nTotal tables: {len(tables)}")


def show_stats(storage: PostgresRepositoryStorage, args):
    table = args.table or next(iter(storage.list_tables()), None)
    if table is None:
        print("No repository tables found.")
        return

    stats = storage.get_stats(table)
    print_section(f"Statistics for {stats.table_name}")
    print(f"Total repositories: {stats.total_repositories:,}")
    print(f"Unique languages:   {stats.unique_languages:,}")
    print(f"Unique owners:      {stats.unique_owners:,}")
    print(f"Average stars:      {stats.avg_stars:,.1f}")
    print(f"Max stars:          {stats.max_stars:,}")
    if stats.oldest_repo:
        print(f"Oldest repository:  {stats.oldest_repo}")
        print(f"Newest repository:  {stats.newest_repo}")


def show_history(storage: PostgresRepositoryStorage, args):
    history = PostgresQueryHistory(storage.pool)
    records = history.history(limit=args.limit, success_only=args.success_only)

    print_section("Query History")
    print(f"{'Executed At':<26} {'Table':<22} {'Results':>8} {'Status':<8} Query")
    print("-" * 100)
    for record in records:
        status = "ok" if record.success else "failed"
        print(
            f"{record.executed_at:%Y-%m-%d %H:%M:%S %Z}".ljust(26)
            + f" {record.table_name:<22} {record.result_count:>8} {status:<8} {record.search_query}"
        )
        if record.error_message:
            print(f"{'':<26} error: {record.error_message}")


def drop_tables(storage: PostgresRepositoryStorage, args):
    for table in args.tables:
        storage.drop_table(table)
        print(f"Dropped {table}")


def cleanup_tables(storage: PostgresRepositoryStorage, args):
    tables = storage.list_tables()
    keep = max(args.keep, 0)
    stale = tables[keep:]
    for table in stale:
        storage.drop_table(table)
        print(f"Dropped {table}")
    print(f"Kept {min(len(tables), keep)} newest tables, dropped {len(stale)}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect and maintain stored search results")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("tables", help="List repository tables").set_defaults(handler=show_tables)

    stats = commands.add_parser("stats", help="Show statistics for a table (default: newest)")
    stats.add_argument("table", nargs="?")
    stats.set_defaults(handler=show_stats)

    history = commands.add_parser("history", help="Show query history")
    history.add_argument("--limit", type=int, default=20)
    history.add_argument("--success-only", action="store_true")
    history.set_defaults(handler=show_history)

    drop = commands.add_parser("drop", help="Drop repository tables")
    drop.add_argument("tables", nargs="+")
    drop.set_defaults(handler=drop_tables)

    cleanup = commands.add_parser("cleanup", help="Drop all but the newest tables")
    cleanup.add_argument("--keep", type=int, default=5)
    cleanup.set_defaults(handler=cleanup_tables)

    return parser


def main():
    args = build_parser().parse_args()
    storage = PostgresRepositoryStorage(get_connection_string(), max_connections=2)
    try:
        args.handler(storage, args)
    finally:
        storage.close()


if __name__ == "__main__":
    try:
        main()
    except TableNotFoundError as e:
        print(f"Error: {e}")
        sys.exit(2)
    except AppError as e:
        print(f"Error: {e}")
        sys.exit(1)
