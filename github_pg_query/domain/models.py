"""Domain models representing core business entities."""
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Iterator, Optional, Tuple


@dataclass(frozen=True)
class RepositoryOwner:
    """Owner of a repository (user, organization or bot account)."""
    id: int
    login: str
    owner_type: str
    avatar_url: str
    html_url: str
    site_admin: bool = False


@dataclass(frozen=True)
class RepositoryLicense:
    """License attached to a repository."""
    key: str
    name: str
    spdx_id: Optional[str] = None
    url: Optional[str] = None


@dataclass(frozen=True)
class Repository:
    """Immutable domain entity representing a GitHub repository.

    Built fresh from each search response page. ``id`` is the GitHub
    assigned identifier and the conflict key for upserts.
    """
    id: int
    full_name: str
    name: str
    html_url: str
    clone_url: str
    ssh_url: str
    default_branch: str
    visibility: str
    created_at: datetime
    updated_at: datetime
    owner: RepositoryOwner
    description: Optional[str] = None
    size: int = 0
    stargazers_count: int = 0
    watchers_count: int = 0
    forks_count: int = 0
    open_issues_count: int = 0
    language: Optional[str] = None
    private: bool = False
    fork: bool = False
    archived: bool = False
    disabled: bool = False
    pushed_at: Optional[datetime] = None
    license: Optional[RepositoryLicense] = None
    topics: Tuple[str, ...] = ()
    has_issues: bool = False
    has_projects: bool = False
    has_wiki: bool = False
    has_pages: bool = False
    has_downloads: bool = False

    @property
    def owner_login(self) -> str:
        return self.owner.login


@dataclass(frozen=True)
class SearchResult:
    """One page of repository search results."""
    total_count: int
    incomplete_results: bool
    items: Tuple[Repository, ...] = ()

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters applied to rate-limited search requests.

    Delays are in milliseconds. The base delay starts at
    ``initial_backoff_ms`` and grows by ``multiplier`` after each retry,
    never exceeding ``max_backoff_ms``.
    """
    max_retries: int = 3
    initial_backoff_ms: int = 1000
    max_backoff_ms: int = 60000
    multiplier: float = 2.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.initial_backoff_ms <= 0:
            raise ValueError("initial_backoff_ms must be positive")
        if self.max_backoff_ms <= 0:
            raise ValueError("max_backoff_ms must be positive")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be at least 1.0")

    @property
    def first_backoff_ms(self) -> float:
        return min(self.initial_backoff_ms, self.max_backoff_ms)

    def next_backoff_ms(self, current: float) -> float:
        """Returns the base delay that follows ``current``."""
        return min(current * self.multiplier, self.max_backoff_ms)

    def backoff_schedule(self) -> Iterator[float]:
        """Yields base delays (before jitter) for consecutive retries."""
        current = self.first_backoff_ms
        for _ in range(self.max_retries):
            yield current
            current = self.next_backoff_ms(current)


@dataclass(frozen=True)
class RateLimitStatus:
    """Search quota reported by the rate limit endpoint."""
    limit: int
    remaining: int
    reset_at: datetime


@dataclass(frozen=True)
class QueryMetadata:
    """Audit record for one executed search query.

    Created in a pending shape via ``new`` and finished with exactly one of
    ``mark_success``/``mark_failure``. Both return a copy with the same id,
    so saving the finished copy overwrites the pending row.
    """
    search_query: str
    table_name: str
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    result_count: int = 0
    executed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: int = 0
    success: bool = False
    error_message: Optional[str] = None

    @classmethod
    def new(cls, search_query: str, table_name: str) -> 'QueryMetadata':
        return cls(search_query=search_query, table_name=table_name)

    def mark_success(self, result_count: int, duration_ms: int) -> 'QueryMetadata':
        """Returns the successful version of this record."""
        return replace(
            self,
            result_count=result_count,
            duration_ms=duration_ms,
            success=True,
            error_message=None
        )

    def mark_failure(self, error_message: str, duration_ms: int) -> 'QueryMetadata':
        """Returns the failed version of this record."""
        return replace(
            self,
            duration_ms=duration_ms,
            success=False,
            error_message=error_message
        )


@dataclass(frozen=True)
class TableStats:
    """Aggregate statistics computed on demand from a managed table."""
    table_name: str
    total_repositories: int
    unique_languages: int
    unique_owners: int
    avg_stars: float
    max_stars: int
    oldest_repo: Optional[datetime] = None
    newest_repo: Optional[datetime] = None


@dataclass(frozen=True)
class SearchOutcome:
    """Summary of one search-and-store run."""
    query_id: uuid.UUID
    table_name: str
    total_count: int
    result_count: int
    stored_count: int
    incomplete_results: bool
    search_duration_ms: int
    total_duration_seconds: float
