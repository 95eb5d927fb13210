"""GitHub REST search client implementation with rate limiting and retry logic."""
import asyncio
import json
import logging
import random
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple
import aiohttp
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt
)
from tenacity.wait import wait_base
from github_pg_query.domain.errors import (
    AuthenticationError,
    GitHubApiError,
    InvalidQueryError,
    RateLimitError,
    TransportError
)
from github_pg_query.domain.github_interface import IGitHubClient
from github_pg_query.domain.models import (
    RateLimitStatus,
    Repository,
    RepositoryLicense,
    RepositoryOwner,
    RetryPolicy,
    SearchResult
)


logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
USER_AGENT = "github-pg-query/0.1.0"
REQUEST_TIMEOUT_SECONDS = 30
DEFAULT_PER_PAGE = 30
MAX_PER_PAGE = 100


class wait_policy_backoff(wait_base):
    """Exponential backoff driven by a RetryPolicy, with bounded jitter.

    Holds the current base delay, so one instance serves exactly one
    retrying call. Each wait is ``current + uniform(0, current / 4)``.
    """

    def __init__(self, policy: RetryPolicy, rng: random.Random):
        self.policy = policy
        self.rng = rng
        self.current_ms = policy.first_backoff_ms

    def __call__(self, retry_state) -> float:
        delay_ms = self.current_ms + self.rng.uniform(0, self.current_ms / 4)
        self.current_ms = self.policy.next_backoff_ms(self.current_ms)
        return delay_ms / 1000.0


def clamp_per_page(per_page: Optional[int]) -> int:
    """Clamp a requested page size into 1..100 (default 30)."""
    if per_page is None:
        return DEFAULT_PER_PAGE
    return max(1, min(per_page, MAX_PER_PAGE))


def clamp_page(page: Optional[int]) -> int:
    """Floor a requested page number to 1."""
    if page is None:
        return 1
    return max(page, 1)


def extract_rate_limit_reset(headers: Mapping[str, str]) -> str:
    """Format the ``X-RateLimit-Reset`` header, or return ``"unknown"``."""
    value = headers.get("X-RateLimit-Reset")
    if value is None:
        return RateLimitError.UNKNOWN_RESET
    try:
        reset_at = datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return RateLimitError.UNKNOWN_RESET
    return reset_at.strftime("%Y-%m-%d %H:%M:%S UTC")


def extract_validation_error(body: str) -> str:
    """Pull a readable reason out of a 422 error body."""
    try:
        payload = json.loads(body)
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str):
            return message
        errors = payload.get("errors")
        if isinstance(errors, list):
            messages = [
                e["message"] for e in errors
                if isinstance(e, dict) and isinstance(e.get("message"), str)
            ]
            if messages:
                return ", ".join(messages)

    return "Invalid query format"


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Convert GitHub's ISO datetime string to an aware datetime."""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _parse_owner(node: Dict[str, Any]) -> RepositoryOwner:
    return RepositoryOwner(
        id=node["id"],
        login=node["login"],
        owner_type=node["type"],
        avatar_url=node.get("avatar_url") or "",
        html_url=node.get("html_url") or "",
        site_admin=node.get("site_admin", False)
    )


def _parse_license(node: Optional[Dict[str, Any]]) -> Optional[RepositoryLicense]:
    if not node:
        return None
    return RepositoryLicense(
        key=node["key"],
        name=node["name"],
        spdx_id=node.get("spdx_id"),
        url=node.get("url")
    )


def parse_repository(item: Dict[str, Any]) -> Repository:
    """Translate one search API item into a Repository entity.

    Raises KeyError, TypeError or ValueError on malformed items.
    """
    return Repository(
        id=item["id"],
        full_name=item["full_name"],
        name=item["name"],
        description=item.get("description"),
        html_url=item["html_url"],
        clone_url=item.get("clone_url") or "",
        ssh_url=item.get("ssh_url") or "",
        size=item.get("size", 0),
        stargazers_count=item.get("stargazers_count", 0),
        watchers_count=item.get("watchers_count", 0),
        forks_count=item.get("forks_count", 0),
        open_issues_count=item.get("open_issues_count", 0),
        language=item.get("language"),
        default_branch=item.get("default_branch") or "",
        visibility=item.get("visibility") or "",
        private=item.get("private", False),
        fork=item.get("fork", False),
        archived=item.get("archived", False),
        disabled=item.get("disabled", False),
        created_at=_parse_datetime(item["created_at"]),
        updated_at=_parse_datetime(item["updated_at"]),
        pushed_at=_parse_datetime(item.get("pushed_at")),
        owner=_parse_owner(item["owner"]),
        license=_parse_license(item.get("license")),
        topics=tuple(item.get("topics") or ()),
        has_issues=item.get("has_issues", False),
        has_projects=item.get("has_projects", False),
        has_wiki=item.get("has_wiki", False),
        has_pages=item.get("has_pages", False),
        has_downloads=item.get("has_downloads", False)
    )


def parse_search_result(body: str) -> SearchResult:
    """Decode a 200 search response body.

    Items that cannot be translated are skipped with a warning.
    """
    try:
        payload = json.loads(body)
        total_count = payload["total_count"]
        incomplete = payload.get("incomplete_results", False)
        raw_items = payload.get("items") or []
    except (ValueError, KeyError, TypeError) as e:
        raise GitHubApiError(f"Malformed search response: {e}") from e

    items = []
    for item in raw_items:
        try:
            items.append(parse_repository(item))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Skipping malformed repository item: {e!r}")

    return SearchResult(
        total_count=total_count,
        incomplete_results=incomplete,
        items=tuple(items)
    )


class GitHubSearchClient(IGitHubClient):
    """GitHub REST API client with rate limiting and retry mechanisms.

    Implements the IGitHubClient port, providing an anti-corruption layer
    between the domain and GitHub's API. A session may be injected; when it
    is not, one is created lazily and closed by ``close()``.
    """

    def __init__(
        self,
        access_token: str,
        base_url: str = GITHUB_API_URL,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None
    ):
        """Initialize GitHub client.

        Args:
            access_token: GitHub personal access token
            base_url: API root, overridable for tests
            session: Optional shared aiohttp session
            sleep: Coroutine used for backoff sleeps
            rng: Random source for backoff jitter
        """
        if not access_token:
            raise AuthenticationError("GitHub token cannot be empty")

        self._access_token = access_token
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS)

    async def __aenter__(self) -> 'GitHubSearchClient':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": USER_AGENT
        }

    async def _init_session(self) -> aiohttp.ClientSession:
        """Create the HTTP session (lazy initialization)."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _get(
        self,
        path: str,
        params: Optional[Dict[str, str]] = None
    ) -> Tuple[int, Mapping[str, str], str]:
        """Issue one GET request and return status, headers and body text.

        Raises:
            TransportError: On connection failures and timeouts
        """
        session = await self._init_session()
        url = f"{self._base_url}{path}"
        try:
            async with session.get(
                url,
                params=params,
                headers=self._headers,
                timeout=self._timeout
            ) as response:
                body = await response.text()
                return response.status, response.headers, body
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"GET {path} timed out after {REQUEST_TIMEOUT_SECONDS}s"
            ) from e
        except aiohttp.ClientError as e:
            raise TransportError(f"GET {path} failed: {e}") from e

    async def _search_once(self, query: str, params: Dict[str, str]) -> SearchResult:
        """Execute a single search attempt and classify the response.

        Raises:
            RateLimitError: On 403/429, retried by the caller
        """
        status, headers, body = await self._get("/search/repositories", params)

        if 200 <= status < 300:
            return parse_search_result(body)
        if status in (403, 429):
            reset_time = extract_rate_limit_reset(headers)
            logger.warning(f"Rate limited (HTTP {status}), reset at {reset_time}")
            raise RateLimitError(reset_time)
        if status == 401:
            raise AuthenticationError("Invalid or expired GitHub token")
        if status == 422:
            raise InvalidQueryError(query, extract_validation_error(body))
        raise GitHubApiError(f"HTTP {status}: {body}")

    async def search_repositories(
        self,
        query: str,
        per_page: Optional[int] = DEFAULT_PER_PAGE,
        page: Optional[int] = 1,
        policy: Optional[RetryPolicy] = None
    ) -> SearchResult:
        """Search GitHub repositories.

        Rate-limited responses (403/429) are retried with exponential
        backoff; every other failure is raised immediately.

        Args:
            query: GitHub search query string (e.g. "language:rust stars:>1000")
            per_page: Number of results per page, clamped to 1..100
            page: Page number to retrieve, floored to 1
            policy: Backoff parameters, defaults to RetryPolicy()

        Returns:
            SearchResult for the requested page

        Raises:
            InvalidQueryError: Empty query or a 422 response
            AuthenticationError: 401 response
            RateLimitError: Still rate limited after policy.max_retries retries
            GitHubApiError: Any other unexpected status
            TransportError: Network failure or timeout
        """
        if not query:
            raise InvalidQueryError(query, "Query cannot be empty")

        policy = policy or RetryPolicy()
        params = {
            "q": query,
            "per_page": str(clamp_per_page(per_page)),
            "page": str(clamp_page(page)),
            "sort": "updated",
            "order": "desc"
        }

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(RateLimitError),
            stop=stop_after_attempt(policy.max_retries + 1),
            wait=wait_policy_backoff(policy, self._rng),
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.INFO),
            reraise=True
        )

        async for attempt in retrying:
            with attempt:
                result = await self._search_once(query, params)

        logger.info(
            f"Search returned {len(result)} of {result.total_count} repositories "
            f"(page {params['page']}, per_page {params['per_page']})"
        )
        return result

    async def validate_token(self) -> None:
        """Validate the token with a lightweight identity call."""
        status, _, body = await self._get("/user")

        if status == 200:
            return
        if status == 401:
            raise AuthenticationError("Invalid or expired GitHub token")
        raise GitHubApiError(f"Token validation failed: HTTP {status}: {body}")

    async def get_rate_limit(self) -> RateLimitStatus:
        """Get the current search rate limit status."""
        status, _, body = await self._get("/rate_limit")

        if status != 200:
            raise GitHubApiError(f"Rate limit check failed: HTTP {status}: {body}")

        try:
            search = json.loads(body)["resources"]["search"]
            return RateLimitStatus(
                limit=search["limit"],
                remaining=search["remaining"],
                reset_at=datetime.fromtimestamp(search["reset"], tz=timezone.utc)
            )
        except (ValueError, KeyError, TypeError, OverflowError, OSError) as e:
            raise GitHubApiError(f"Malformed rate limit response: {e}") from e

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
