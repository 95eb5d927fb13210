"""Shared fixtures: repository factories, a fake GitHub API and in-memory stores."""
import random
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from github_pg_query.domain.errors import DatabaseError, TableNotFoundError
from github_pg_query.domain.models import (
    QueryMetadata,
    Repository,
    RepositoryLicense,
    RepositoryOwner,
    TableStats
)
from github_pg_query.domain.repository_interface import IQueryHistory, IRepositoryStorage
from github_pg_query.domain.validation import RepositoryValidator
from github_pg_query.infrastructure.github_client import GitHubSearchClient
from github_pg_query.infrastructure.postgres_repository import (
    generate_table_name,
    validate_table_name
)


TEST_TOKEN = "ghp_test_token_1234567890"


def make_repository(
    repo_id: int = 123456789,
    full_name: str = "octocat/Hello-World",
    stars: int = 42,
    language: Optional[str] = "Rust",
    created_at: Optional[datetime] = None
) -> Repository:
    """Build a valid Repository entity."""
    owner_login = full_name.split("/")[0] if "/" in full_name else "testuser"
    name = full_name.split("/")[-1] or "repo"
    created_at = created_at or datetime(2023, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
    return Repository(
        id=repo_id,
        full_name=full_name,
        name=name,
        description="Test repository",
        html_url=f"https://github.com/{full_name}",
        clone_url=f"https://github.com/{full_name}.git",
        ssh_url=f"git@github.com:{full_name}.git",
        size=1024,
        stargazers_count=stars,
        watchers_count=15,
        forks_count=8,
        open_issues_count=3,
        language=language,
        default_branch="main",
        visibility="public",
        created_at=created_at,
        updated_at=created_at,
        pushed_at=created_at,
        owner=RepositoryOwner(
            id=repo_id + 1000,
            login=owner_login,
            owner_type="User",
            avatar_url="https://github.com/images/error/octocat_happy.gif",
            html_url=f"https://github.com/{owner_login}",
            site_admin=False
        ),
        license=RepositoryLicense(
            key="mit",
            name="MIT License",
            spdx_id="MIT",
            url="https://api.github.com/licenses/mit"
        ),
        topics=("rust", "cli"),
        has_issues=True,
        has_projects=True,
        has_wiki=False,
        has_pages=False,
        has_downloads=True
    )


def api_item(
    repo_id: int = 1296269,
    full_name: str = "octocat/Hello-World",
    stars: int = 80,
    language: Optional[str] = "Rust",
    owner_type: str = "User"
) -> Dict:
    """Build a repository item as returned by the search API."""
    owner_login, name = full_name.split("/")
    return {
        "id": repo_id,
        "name": name,
        "full_name": full_name,
        "private": False,
        "owner": {
            "login": owner_login,
            "id": repo_id + 1000,
            "avatar_url": "https://github.com/images/error/octocat_happy.gif",
            "html_url": f"https://github.com/{owner_login}",
            "type": owner_type,
            "site_admin": False
        },
        "html_url": f"https://github.com/{full_name}",
        "description": "This your first repo!",
        "fork": False,
        "created_at": "2011-01-26T19:01:12Z",
        "updated_at": "2011-01-26T19:14:43Z",
        "pushed_at": "2011-01-26T19:06:43Z",
        "clone_url": f"https://github.com/{full_name}.git",
        "ssh_url": f"git@github.com:{full_name}.git",
        "size": 108,
        "stargazers_count": stars,
        "watchers_count": 9,
        "language": language,
        "has_issues": True,
        "has_projects": True,
        "has_downloads": True,
        "has_wiki": True,
        "has_pages": False,
        "forks_count": 9,
        "archived": False,
        "disabled": False,
        "open_issues_count": 0,
        "license": {
            "key": "mit",
            "name": "MIT License",
            "spdx_id": "MIT",
            "url": "https://api.github.com/licenses/mit"
        },
        "topics": ["octocat", "api"],
        "visibility": "public",
        "default_branch": "master"
    }


def search_body(items: Sequence[Dict], total_count: Optional[int] = None, incomplete: bool = False) -> Dict:
    return {
        "total_count": len(items) if total_count is None else total_count,
        "incomplete_results": incomplete,
        "items": list(items)
    }


class FakeGitHubApi:
    """In-process stand-in for the GitHub REST API.

    Search responses are served in order; the last one repeats once the
    queue is down to a single entry.
    """

    def __init__(self):
        self.search_responses = []
        self.requests = []
        self.user_status = 200
        self.rate_limit = {"limit": 30, "remaining": 29, "reset": 1704067200}
        self.base_url = None
        self.app = web.Application()
        self.app.router.add_get("/search/repositories", self._search)
        self.app.router.add_get("/user", self._user)
        self.app.router.add_get("/rate_limit", self._rate_limit)

    def add_search_response(self, status: int = 200, body=None, headers: Optional[Dict] = None):
        self.search_responses.append((status, body, headers or {}))

    @property
    def search_requests(self) -> List[Dict]:
        return [r for r in self.requests if r["path"] == "/search/repositories"]

    def _record(self, request: web.Request) -> None:
        self.requests.append({
            "path": request.path,
            "query": dict(request.query),
            "headers": dict(request.headers)
        })

    @staticmethod
    def _respond(status: int, body, headers: Dict) -> web.Response:
        if isinstance(body, (dict, list)):
            return web.json_response(body, status=status, headers=headers)
        return web.Response(text=body or "", status=status, headers=headers)

    async def _search(self, request: web.Request) -> web.Response:
        self._record(request)
        if len(self.search_responses) > 1:
            status, body, headers = self.search_responses.pop(0)
        else:
            status, body, headers = self.search_responses[0]
        return self._respond(status, body, headers)

    async def _user(self, request: web.Request) -> web.Response:
        self._record(request)
        if self.user_status == 200:
            return web.json_response({"login": "octocat"})
        return web.json_response({"message": "Bad credentials"}, status=self.user_status)

    async def _rate_limit(self, request: web.Request) -> web.Response:
        self._record(request)
        return web.json_response({"resources": {"search": self.rate_limit}})


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class InMemoryRepositoryStorage(IRepositoryStorage):
    """Dictionary-backed storage with the same contract as the PostgreSQL one."""

    def __init__(self, validator: Optional[RepositoryValidator] = None):
        self.tables: Dict[str, Dict[int, Repository]] = {}
        self.transactions = 0
        self._validator = validator or RepositoryValidator()
        self.closed = False

    def generate_table_name(self) -> str:
        return generate_table_name()

    def ensure_table(self, table_name: str) -> None:
        validate_table_name(table_name)
        self.tables.setdefault(table_name, {})

    def upsert_batch(self, table_name: str, repositories: Sequence[Repository]) -> int:
        if not repositories:
            return 0
        validate_table_name(table_name)
        for repo in repositories:
            self._validator.validate(repo)
        if table_name not in self.tables:
            raise DatabaseError(f'relation "{table_name}" does not exist')
        self.transactions += 1
        for repo in repositories:
            self.tables[table_name][repo.id] = repo
        return len(repositories)

    def get_stats(self, table_name: str) -> TableStats:
        validate_table_name(table_name)
        if table_name not in self.tables:
            raise TableNotFoundError(table_name)
        repos = list(self.tables[table_name].values())
        stars = [r.stargazers_count for r in repos]
        created = [r.created_at for r in repos]
        return TableStats(
            table_name=table_name,
            total_repositories=len(repos),
            unique_languages=len({r.language for r in repos if r.language is not None}),
            unique_owners=len({r.owner.login for r in repos}),
            avg_stars=sum(stars) / len(stars) if stars else 0.0,
            max_stars=max(stars, default=0),
            oldest_repo=min(created, default=None),
            newest_repo=max(created, default=None)
        )

    def count_rows(self, table_name: str) -> int:
        return len(self.tables.get(table_name, {}))

    def list_tables(self) -> List[str]:
        return sorted(self.tables, reverse=True)

    def drop_table(self, table_name: str) -> None:
        validate_table_name(table_name)
        self.tables.pop(table_name, None)

    def close(self) -> None:
        self.closed = True


class InMemoryQueryHistory(IQueryHistory):
    """Query history keyed by id, like the query_history table."""

    def __init__(self):
        self.records: Dict = {}
        self.saves: List[QueryMetadata] = []

    def save(self, metadata: QueryMetadata) -> None:
        self.saves.append(metadata)
        self.records[metadata.id] = metadata

    def history(self, limit: Optional[int] = None, success_only: bool = False) -> List[QueryMetadata]:
        records = sorted(self.records.values(), key=lambda m: m.executed_at, reverse=True)
        if success_only:
            records = [m for m in records if m.success]
        return records if limit is None else records[:limit]


class FailingQueryHistory(InMemoryQueryHistory):
    """Query history whose saves always fail."""

    def save(self, metadata: QueryMetadata) -> None:
        self.saves.append(metadata)
        raise DatabaseError("connection refused")


@pytest.fixture
def sample_repository() -> Repository:
    return make_repository()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest_asyncio.fixture
async def github_api():
    api = FakeGitHubApi()
    server = TestServer(api.app)
    await server.start_server()
    api.base_url = f"http://{server.host}:{server.port}"
    yield api
    await server.close()


@pytest_asyncio.fixture
async def github_client(github_api, recording_sleep):
    client = GitHubSearchClient(
        TEST_TOKEN,
        base_url=github_api.base_url,
        sleep=recording_sleep,
        rng=random.Random(7)
    )
    yield client
    await client.close()
