"""Search service orchestrating one GitHub query into a PostgreSQL table."""
import logging
import time
from typing import Optional
from github_pg_query.application.config import SearchConfig
from github_pg_query.application.progress import NullProgress, ProgressReporter
from github_pg_query.domain.errors import AppError
from github_pg_query.domain.github_interface import IGitHubClient
from github_pg_query.domain.models import QueryMetadata, RetryPolicy, SearchOutcome
from github_pg_query.domain.repository_interface import IQueryHistory, IRepositoryStorage


logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class SearchWorkflowService:
    """Application service for searching GitHub and storing the results.

    Orchestrates the interaction between the GitHub API, the per-query
    table storage and the query history. Only coordinates; every decision
    about retries or transactions lives in the collaborators.
    """

    def __init__(
        self,
        github_client: IGitHubClient,
        storage: IRepositoryStorage,
        history: IQueryHistory,
        progress: Optional[ProgressReporter] = None,
        retry_policy: Optional[RetryPolicy] = None
    ):
        """Initialize search service.

        Args:
            github_client: GitHub API client implementation
            storage: Repository table storage implementation
            history: Query history implementation
            progress: Progress sink, silent when omitted
            retry_policy: Backoff parameters for rate-limited searches
        """
        self._github_client = github_client
        self._storage = storage
        self._history = history
        self._progress = progress or NullProgress()
        self._retry_policy = retry_policy or RetryPolicy()

    async def execute(self, config: SearchConfig) -> SearchOutcome:
        """Search GitHub and store the results in a fresh table.

        A failed search is still recorded in the query history (best
        effort) before the search error is re-raised.

        Args:
            config: Validated run configuration

        Returns:
            SearchOutcome with run statistics
        """
        started = time.monotonic()
        progress = self._progress

        table_name = self._storage.generate_table_name()
        metadata = QueryMetadata.new(config.search_query, table_name)

        progress.start(f"Creating table: {table_name}")
        self._storage.ensure_table(table_name)
        progress.success(f"Table {table_name} created")

        progress.start(f"Searching GitHub: '{config.search_query}'")
        search_started = time.monotonic()
        try:
            result = await self._github_client.search_repositories(
                config.search_query,
                per_page=config.per_page,
                page=config.page,
                policy=self._retry_policy
            )
        except Exception as e:
            metadata = metadata.mark_failure(str(e), _elapsed_ms(search_started))
            progress.error(f"Search failed: {e}")
            self._save_failed_metadata(metadata)
            raise
        search_duration_ms = _elapsed_ms(search_started)

        result_count = len(result.items)
        progress.success(
            f"Found {result_count} repositories "
            f"(total: {result.total_count}, page: {config.page})"
        )
        progress.info(f"Search completed in {search_duration_ms / 1000:.2f}s")
        if result.incomplete_results:
            progress.warning("Search results may be incomplete due to timeout")

        stored_count = 0
        if result.items:
            progress.start(f"Storing {result_count} repositories")
            stored_count = self._storage.upsert_batch(table_name, result.items)
            progress.success(f"Stored {stored_count} repositories")
        else:
            progress.warning("No repositories matched the search query")

        metadata = metadata.mark_success(result_count, search_duration_ms)
        progress.start("Saving query metadata")
        self._history.save(metadata)
        progress.success("Query metadata saved")

        outcome = SearchOutcome(
            query_id=metadata.id,
            table_name=table_name,
            total_count=result.total_count,
            result_count=result_count,
            stored_count=stored_count,
            incomplete_results=result.incomplete_results,
            search_duration_ms=search_duration_ms,
            total_duration_seconds=time.monotonic() - started
        )

        logger.info(
            f"Search completed: {result_count} repositories stored in {table_name} "
            f"in {outcome.total_duration_seconds:.2f} seconds"
        )
        return outcome

    def _save_failed_metadata(self, metadata: QueryMetadata) -> None:
        """Record a failed query without masking the original error."""
        try:
            self._history.save(metadata)
        except AppError as e:
            logger.error(f"Error saving failed query metadata {metadata.id}: {e}")
            self._progress.warning(f"Failed to save query metadata: {e}")

    async def validate(self, config: SearchConfig) -> None:
        """Dry run: check the token and the database without searching."""
        progress = self._progress
        progress.start("Dry run validation")

        progress.update("Validating GitHub token")
        await self._github_client.validate_token()
        progress.update("GitHub token is valid")

        progress.update("Validating database connection")
        self._storage.list_tables()
        progress.update("Database connection is valid")

        progress.update(f"Search query '{config.search_query}' is well formed")
        progress.success("All validations passed")
