import asyncio
import logging
from datetime import datetime, timezone
from functools import partial
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import TypeAdapter, ValidationError

from vibe_assistant.core.config import Settings, settings
from vibe_assistant.core.errors import (
    CollaboratorError,
    MalformedResponseError,
    NotFoundError,
    RateLimitedError,
    UnauthorizedError,
    UpstreamError,
)
from vibe_assistant.schemas.analysis import AnalysisRecord
from vibe_assistant.schemas.repository import RepositorySummary
from vibe_assistant.services.single_flight import SingleFlight
from vibe_assistant.utils.url_helpers import parse_github_url

logger = logging.getLogger(__name__)

# GitHub API constants
DEFAULT_TIMEOUT_SECONDS = 10.0
MAX_RETRIES = 3
BACKOFF_SECONDS = 1.0
CONTRIBUTORS_PER_PAGE = 100
COMMITS_PER_PAGE = 100

_repository_list = TypeAdapter(List[RepositorySummary])


class GitHubService:
    """
    Client for the GitHub REST API.

    Serves as both the analysis collaborator (repository facts) and the
    listing collaborator (a user's repositories, one upstream page at a time).

    Features:
    - URL parsing for various GitHub URL formats
    - Status code mapping onto the collaborator error taxonomy
    - Exponential backoff for transport errors and 5xx responses
    """

    def __init__(
        self,
        config: Settings = settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        backoff_seconds: float = BACKOFF_SECONDS,
    ):
        self.base_url = config.GITHUB_API_BASE
        self.token = config.GITHUB_TOKEN
        self._transport = transport
        self.backoff_seconds = backoff_seconds
        self._snapshots = SingleFlight()

    def parse_github_url(self, url: str) -> Tuple[str, str]:
        """
        Parse GitHub repository URL to extract owner and repository name.

        Raises:
            InvalidTargetError: If the URL is not a GitHub repository.
        """
        return parse_github_url(url)

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "Vibe-GitHub-Assistant/1.0",
        }
        # Add authentication if token is available
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=httpx.Timeout(DEFAULT_TIMEOUT_SECONDS),
            transport=self._transport,
        )

    @staticmethod
    def _raise_for_status(response: httpx.Response, what: str) -> None:
        """Map an error response onto the collaborator error taxonomy."""
        status = response.status_code
        if status < 400:
            return

        if status == 401:
            raise UnauthorizedError("GitHub API authentication failed. Please check your token.")

        if status in (403, 429):
            remaining = response.headers.get("X-RateLimit-Remaining")
            if status == 429 or remaining == "0":
                reset_at = None
                reset_time = response.headers.get("X-RateLimit-Reset")
                if reset_time and reset_time.isdigit():
                    reset_at = datetime.fromtimestamp(int(reset_time), tz=timezone.utc)
                    logger.warning(f"GitHub API rate limit exceeded. Resets at {reset_at}")
                else:
                    logger.warning("GitHub API rate limit exceeded")
                raise RateLimitedError("GitHub API rate limit exceeded. Please try again later.", reset_at=reset_at)
            raise UnauthorizedError(f"Access denied to {what}. It might be private or restricted.")

        if status == 404:
            raise NotFoundError(f"{what} not found or is private.")

        raise UpstreamError(f"GitHub API returned {status} for {what}", status_code=status)

    async def _get(self, path: str, what: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """GET with retries for transient failures; client errors fail fast."""
        last_error: Optional[CollaboratorError] = None

        for attempt in range(MAX_RETRIES):
            try:
                async with self._client() as client:
                    response = await client.get(path, params=params)
                self._raise_for_status(response, what)
                return response
            except UpstreamError as e:
                if e.status_code is not None and e.status_code < 500:
                    raise
                last_error = e
                logger.warning(f"{e.message} (attempt {attempt + 1})")
            except httpx.TimeoutException:
                last_error = UpstreamError(f"Timeout fetching {what}")
                logger.warning(f"Timeout fetching {what} (attempt {attempt + 1})")
            except httpx.HTTPError as e:
                last_error = UpstreamError(f"Error fetching {what}: {e}")
                logger.warning(f"Error fetching {what}: {e} (attempt {attempt + 1})")

            # Exponential backoff for retries
            if attempt < MAX_RETRIES - 1:
                wait_time = self.backoff_seconds * (2 ** attempt)
                logger.debug(f"Retrying in {wait_time} seconds...")
                await asyncio.sleep(wait_time)

        logger.error(f"Failed to fetch {what} after {MAX_RETRIES} attempts")
        raise last_error

    @staticmethod
    def _json(response: httpx.Response, what: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(f"GitHub returned invalid JSON for {what}") from e

    async def get_repository_info(self, owner: str, repo: str) -> Dict[str, Any]:
        what = f"Repository {owner}/{repo}"
        data = self._json(await self._get(f"/repos/{owner}/{repo}", what), what)
        if not isinstance(data, dict):
            raise MalformedResponseError(f"Unexpected payload for {what}")
        return data

    async def get_languages(self, owner: str, repo: str) -> Dict[str, int]:
        what = f"Languages of {owner}/{repo}"
        data = self._json(await self._get(f"/repos/{owner}/{repo}/languages", what), what)
        return data if isinstance(data, dict) else {}

    async def get_contributors(self, owner: str, repo: str) -> List[Dict[str, Any]]:
        what = f"Contributors of {owner}/{repo}"
        response = await self._get(
            f"/repos/{owner}/{repo}/contributors", what, params={"per_page": CONTRIBUTORS_PER_PAGE}
        )
        # Empty repositories answer 204 with no body
        if response.status_code == 204:
            return []
        data = self._json(response, what)
        return data if isinstance(data, list) else []

    async def get_recent_commits(self, owner: str, repo: str) -> List[Dict[str, Any]]:
        what = f"Commits of {owner}/{repo}"
        try:
            response = await self._get(
                f"/repos/{owner}/{repo}/commits", what, params={"per_page": COMMITS_PER_PAGE}
            )
        except UpstreamError as e:
            # 409 Conflict: the repository is empty
            if e.status_code == 409:
                return []
            raise
        data = self._json(response, what)
        return data if isinstance(data, list) else []

    async def get_repository_snapshot(self, owner: str, repo: str) -> Dict[str, Any]:
        """
        Repository info plus languages, contributors and recent commits.

        Only the repository info is required; the secondary lookups degrade
        to empty values, except rate limiting which is reported as is.
        Concurrent calls for the same repository share one set of requests.
        """
        key = (owner.lower(), repo.lower())
        return await self._snapshots.do(key, partial(self._load_snapshot, owner, repo))

    async def _load_snapshot(self, owner: str, repo: str) -> Dict[str, Any]:
        info =await self.get_repository_info(owner, repo)

        results = await asyncio.gather(
            self.get_languages(owner, repo),
            self.get_contributors(owner, repo),
            self.get_recent_commits(owner, repo),
            return_exceptions=True,
        )

        defaults: Tuple[Any, ...] = ({}, [], [])
        resolved = []
        for result, default in zip(results, defaults):
            if isinstance(result, RateLimitedError):
                raise result
            if isinstance(result, CollaboratorError):
                logger.warning(f"Partial data for {owner}/{repo}: {result.message}")
                resolved.append(default)
            elif isinstance(result, BaseException):
                raise result
            else:
                resolved.append(result)

        languages, contributors, commits = resolved
        return {"info": info, "languages": languages, "contributors": contributors, "commits": commits}

    async def fetch_analysis(self, target: str) -> AnalysisRecord:
        """Collect the structural facts for one repository."""
        owner, repo = self.parse_github_url(target)
        snapshot = await self.get_repository_snapshot(owner, repo)
        info = snapshot["info"]

        try:
            return AnalysisRecord.model_validate({
                "full_name": info.get("full_name"),
                "owner": (info.get("owner") or {}).get("login"),
                "name": info.get("name"),
                "html_url": info.get("html_url"),
                "description": info.get("description"),
                "default_branch": info.get("default_branch"),
                "language": info.get("language"),
                "languages": snapshot["languages"],
                "topics": info.get("topics") or [],
                "license": (info.get("license") or {}).get("spdx_id"),
                "stars": info.get("stargazers_count", 0),
                "forks": info.get("forks_count", 0),
                "watchers": info.get("subscribers_count", info.get("watchers_count", 0)),
                "open_issues": info.get("open_issues_count", 0),
                "contributor_count": len(snapshot["contributors"]),
                "recent_commit_count": len(snapshot["commits"]),
                "created_at": info.get("created_at"),
                "updated_at": info.get("updated_at"),
                "pushed_at": info.get("pushed_at"),
            })
        except (ValidationError, AttributeError) as e:
            raise MalformedResponseError(f"Unexpected repository payload for {owner}/{repo}: {e}") from e

    async def fetch_listing_page(
        self, subject: str, upstream_page: int, upstream_page_size: int
    ) -> List[RepositorySummary]:
        """One page of a user's repositories, most recently updated first."""
        what = f"Repositories of {subject}"
        response = await self._get(
            f"/users/{subject}/repos",
            what,
            params={"page": upstream_page, "per_page": upstream_page_size, "sort": "updated"},
        )
        data = self._json(response, what)
        try:
            return _repository_list.validate_python(data)
        except ValidationError as e:
            raise MalformedResponseError(f"Unexpected repository listing for {subject}: {e}") from e
