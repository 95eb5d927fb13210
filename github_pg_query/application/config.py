"""Command line and environment configuration for a search run."""
import argparse
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence
from github_pg_query.domain.errors import (
    AuthenticationError,
    ConfigurationError,
    InvalidQueryError,
    MissingEnvironmentError
)


MAX_QUERY_LENGTH = 256
MIN_TOKEN_LENGTH = 10
MAX_TOKEN_LENGTH = 255


def validate_search_query(query: str) -> None:
    if not query.strip():
        raise InvalidQueryError(query, "Query cannot be empty")
    if len(query) > MAX_QUERY_LENGTH:
        raise InvalidQueryError(query, f"Query too long (maximum {MAX_QUERY_LENGTH} characters)")
    if "\0" in query:
        raise InvalidQueryError(query, "Query contains null characters")


def validate_github_token(token: str) -> None:
    if not token.strip():
        raise MissingEnvironmentError("GITHUB_TOKEN")
    if len(token) < MIN_TOKEN_LENGTH:
        raise AuthenticationError(
            f"GitHub token appears to be too short (minimum {MIN_TOKEN_LENGTH} characters)"
        )
    if len(token) > MAX_TOKEN_LENGTH:
        raise AuthenticationError(
            f"GitHub token appears to be too long (maximum {MAX_TOKEN_LENGTH} characters)"
        )
    if any(c.isspace() for c in token):
        raise AuthenticationError("GitHub token contains whitespace characters")


def validate_database_url(url: str) -> None:
    if not url.strip():
        raise MissingEnvironmentError("DATABASE_URL")
    if not url.startswith(("postgres://", "postgresql://")):
        raise ConfigurationError("DATABASE_URL must start with 'postgres://' or 'postgresql://'")
    if "@" not in url:
        raise ConfigurationError("DATABASE_URL must contain authentication information (user@host)")
    if url.count("/") < 3:
        raise ConfigurationError("DATABASE_URL must contain a database name")


def _page_size(value: str) -> int:
    size = int(value)
    if not 1 <= size <= 100:
        raise argparse.ArgumentTypeError("must be between 1 and 100")
    return size


def _page_number(value: str) -> int:
    page = int(value)
    if page < 1:
        raise argparse.ArgumentTypeError("must be 1 or greater")
    return page


class _RaisingArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises instead of exiting on bad input."""

    def error(self, message):
        raise ConfigurationError(f"Argument parsing failed: {message}")


def build_parser() -> argparse.ArgumentParser:
    parser = _RaisingArgumentParser(
        prog="github-pg-query",
        description="Execute GitHub API search queries and store results in PostgreSQL tables"
    )
    parser.add_argument(
        "query",
        help="GitHub search query (e.g. 'rust language:rust', 'stars:>1000')"
    )
    parser.add_argument(
        "-p", "--per-page",
        type=_page_size,
        default=30,
        help="Number of results per page (1-100, default: 30)"
    )
    parser.add_argument(
        "--page",
        type=_page_number,
        default=1,
        help="Page number to retrieve (starts from 1)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output with detailed progress information"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and query without executing the search"
    )
    parser.add_argument(
        "--github-token",
        help="GitHub API token (overrides GITHUB_TOKEN environment variable)"
    )
    parser.add_argument(
        "--database-url",
        help="PostgreSQL database URL (overrides DATABASE_URL environment variable)"
    )
    return parser


@dataclass(frozen=True)
class SearchConfig:
    """Validated settings for one search run."""
    search_query: str
    github_token: str
    database_url: str
    per_page: int = 30
    page: int = 1
    verbose: bool = False
    dry_run: bool = False

    @classmethod
    def from_args(
        cls,
        argv: Optional[Sequence[str]] = None,
        environ: Optional[Mapping[str, str]] = None
    ) -> 'SearchConfig':
        """Parse CLI arguments, falling back to GITHUB_TOKEN and DATABASE_URL.

        Raises:
            ConfigurationError, MissingEnvironmentError, InvalidQueryError,
            AuthenticationError: on invalid input
        """
        environ = os.environ if environ is None else environ
        args = build_parser().parse_args(argv)

        validate_search_query(args.query)

        github_token = args.github_token or environ.get("GITHUB_TOKEN")
        if github_token is None:
            raise MissingEnvironmentError("GITHUB_TOKEN")
        validate_github_token(github_token)

        database_url = args.database_url or environ.get("DATABASE_URL")
        if database_url is None:
            raise MissingEnvironmentError("DATABASE_URL")
        validate_database_url(database_url)

        return cls(
            search_query=args.query,
            github_token=github_token,
            database_url=database_url,
            per_page=args.per_page,
            page=args.page,
            verbose=args.verbose,
            dry_run=args.dry_run
        )

    def masked_database_url(self) -> str:
        """Database URL with the password replaced by ***."""
        at_pos = self.database_url.find("@")
        if at_pos == -1:
            return "***"
        colon_pos = self.database_url.rfind(":", 0, at_pos)
        scheme_end = self.database_url.find("://") + 2
        if colon_pos > scheme_end:
            return f"{self.database_url[:colon_pos + 1]}***{self.database_url[at_pos:]}"
        return f"{self.database_url[:min(at_pos, 10)]}@***"

    def masked_token(self) -> str:
        return f"{self.github_token[:3]}***"
