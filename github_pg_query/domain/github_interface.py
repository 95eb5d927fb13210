"""GitHub API interface (port) for searching repositories.

This is the anti-corruption layer that shields the domain from GitHub API specifics.
"""
from abc import ABC, abstractmethod
from typing import Optional
from github_pg_query.domain.models import RateLimitStatus, RetryPolicy, SearchResult


class IGitHubClient(ABC):
    """Abstract interface for GitHub API operations."""

    @abstractmethod
    async def search_repositories(
        self,
        query: str,
        per_page: int = 30,
        page: int = 1,
        policy: Optional[RetryPolicy] = None
    ) -> SearchResult:
        """Search repositories, retrying rate-limited responses.

        Args:
            query: GitHub search query, passed through unchanged
            per_page: Results per page, clamped to 1..100
            page: Page number, floored to 1
            policy: Backoff parameters, defaults to RetryPolicy()

        Returns:
            One page of search results
        """
        pass

    @abstractmethod
    async def validate_token(self) -> None:
        """Raise AuthenticationError unless the token is accepted."""
        pass

    @abstractmethod
    async def get_rate_limit(self) -> RateLimitStatus:
        """Return the current search quota."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        pass
