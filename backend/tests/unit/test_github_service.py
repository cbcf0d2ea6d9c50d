import asyncio
import json

import httpx
import pytest

from vibe_assistant.core.config import Settings
from vibe_assistant.core.errors import (
    InvalidTargetError,
    MalformedResponseError,
    NotFoundError,
    RateLimitedError,
    UnauthorizedError,
    UpstreamError,
)
from vibe_assistant.services.github_service import MAX_RETRIES, GitHubService

REPO_INFO = {
    "id": 1296269,
    "name": "hello-world",
    "full_name": "octocat/hello-world",
    "owner": {"login": "octocat"},
    "html_url": "https://github.com/octocat/hello-world",
    "description": "My first repository",
    "default_branch": "main",
    "language": "Python",
    "topics": ["demo"],
    "license": {"spdx_id": "MIT"},
    "stargazers_count": 1500,
    "forks_count": 12,
    "subscribers_count": 9,
    "open_issues_count": 3,
    "created_at": "2020-01-01T00:00:00Z",
    "updated_at": "2024-05-01T12:00:00Z",
    "pushed_at": "2024-05-01T12:00:00Z",
}


def make_service(handler, token="test-token"):
    config = Settings(GITHUB_TOKEN=token)
    return GitHubService(config, transport=httpx.MockTransport(handler), backoff_seconds=0)


def repo_routes(overrides=None):
    """Handler serving a healthy repository; ``overrides`` maps path -> Response."""
    overrides = overrides or {}
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        path = request.url.path
        if path in overrides:
            # Fresh copy per request since retries hit the same path
            canned = overrides[path]
            return httpx.Response(canned.status_code, headers=canned.headers, content=canned.content)
        if path == "/repos/octocat/hello-world":
            return httpx.Response(200, json=REPO_INFO)
        if path == "/repos/octocat/hello-world/languages":
            return httpx.Response(200, json={"Python": 9000, "Shell": 120})
        if path == "/repos/octocat/hello-world/contributors":
            return httpx.Response(200, json=[{"login": "octocat"}, {"login": "hubot"}])
        if path == "/repos/octocat/hello-world/commits":
            return httpx.Response(200, json=[{"commit": {"message": "Initial commit"}}] * 4)
        return httpx.Response(404, json={"message": "Not Found"})

    handler.requests = requests
    return handler


class TestGitHubService:
    """Test cases for GitHub service functionality."""

    def setup_method(self):
        """Set up test fixtures."""
        self.service = GitHubService(Settings())

    def test_parse_github_url_valid_https(self):
        """Test parsing valid HTTPS GitHub URLs."""
        test_cases = [
            ("https://github.com/owner/repo", ("owner", "repo")),
            ("https://github.com/owner/repo.git", ("owner", "repo")),
            ("https://github.com/owner/repo/", ("owner", "repo")),
            ("https://www.github.com/owner/repo", ("owner", "repo")),
        ]

        for url, expected in test_cases:
            result = self.service.parse_github_url(url)
            assert result == expected, f"Failed for URL: {url}"

    def test_parse_github_url_valid_ssh(self):
        """Test parsing valid SSH GitHub URLs."""
        result = self.service.parse_github_url("git@github.com:owner/repo.git")
        assert result == ("owner", "repo")

    def test_parse_github_url_invalid(self):
        """Test parsing invalid URLs raises InvalidTargetError."""
        invalid_urls = [
            "",
            None,
            "https://gitlab.com/owner/repo",
            "https://github.com/owner",
            "not-a-url",
            "https://github.com/",
        ]

        for url in invalid_urls:
            with pytest.raises(InvalidTargetError):
                self.service.parse_github_url(url)


@pytest.mark.asyncio
async def test_fetch_analysis_builds_record():
    handler = repo_routes()
    service = make_service(handler)

    record = await service.fetch_analysis("https://github.com/octocat/hello-world")

    assert record.full_name == "octocat/hello-world"
    assert record.owner == "octocat"
    assert record.stars == 1500
    assert record.watchers == 9
    assert record.license == "MIT"
    assert record.languages == {"Python": 9000, "Shell": 120}
    assert record.contributor_count == 2
    assert record.recent_commit_count == 4
    assert record.created_at.year == 2020
    assert record.overall_score is None


@pytest.mark.asyncio
async def test_requests_carry_auth_and_accept_headers():
    handler = repo_routes()
    service = make_service(handler)

    await service.get_repository_info("octocat", "hello-world")

    request = handler.requests[0]
    assert request.headers["Authorization"] == "token test-token"
    assert request.headers["Accept"] == "application/vnd.github.v3+json"
    assert request.url.host == "api.github.com"


@pytest.mark.asyncio
async def test_no_token_sends_no_authorization():
    handler = repo_routes()
    service = make_service(handler, token=None)

    await service.get_repository_info("octocat", "hello-world")

    assert "Authorization" not in handler.requests[0].headers


@pytest.mark.asyncio
async def test_missing_repository_is_not_found():
    service = make_service(repo_routes({
        "/repos/octocat/hello-world": httpx.Response(404, json={"message": "Not Found"}),
    }))

    with pytest.raises(NotFoundError):
        await service.fetch_analysis("octocat/hello-world")


@pytest.mark.asyncio
async def test_exhausted_rate_limit():
    service = make_service(repo_routes({
        "/repos/octocat/hello-world": httpx.Response(
            403,
            headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1700000000"},
            json={"message": "API rate limit exceeded"},
        ),
    }))

    with pytest.raises(RateLimitedError) as exc_info:
        await service.fetch_analysis("octocat/hello-world")

    assert exc_info.value.reset_at is not None
    assert int(exc_info.value.reset_at.timestamp()) == 1700000000
    assert exc_info.value.to_dict()["kind"] == "rate_limited"


@pytest.mark.asyncio
async def test_too_many_requests_is_rate_limited():
    service = make_service(repo_routes({
        "/repos/octocat/hello-world": httpx.Response(429, json={}),
    }))

    with pytest.raises(RateLimitedError):
        await service.fetch_analysis("octocat/hello-world")


@pytest.mark.asyncio
async def test_forbidden_without_rate_limit_is_unauthorized():
    service = make_service(repo_routes({
        "/repos/octocat/hello-world": httpx.Response(
            403, headers={"X-RateLimit-Remaining": "4999"}, json={}
        ),
    }))

    with pytest.raises(UnauthorizedError):
        await service.fetch_analysis("octocat/hello-world")


@pytest.mark.asyncio
async def test_bad_credentials_is_unauthorized():
    service = make_service(repo_routes({
        "/repos/octocat/hello-world": httpx.Response(401, json={"message": "Bad credentials"}),
    }))

    with pytest.raises(UnauthorizedError):
        await service.fetch_analysis("octocat/hello-world")


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_reported():
    handler = repo_routes({"/repos/octocat/hello-world": httpx.Response(503)})
    service = make_service(handler)

    with pytest.raises(UpstreamError) as exc_info:
        await service.get_repository_info("octocat", "hello-world")

    assert exc_info.value.status_code == 503
    assert len(handler.requests) == MAX_RETRIES


@pytest.mark.asyncio
async def test_transient_server_error_recovers():
    responses = [httpx.Response(502), httpx.Response(200, json=REPO_INFO)]

    def handler(request):
        return responses.pop(0)

    service = make_service(handler)
    info = await service.get_repository_info("octocat", "hello-world")

    assert info["full_name"] == "octocat/hello-world"


@pytest.mark.asyncio
async def test_transport_errors_become_upstream_errors():
    attempts = []

    def handler(request):
        attempts.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    service = make_service(handler)

    with pytest.raises(UpstreamError):
        await service.get_repository_info("octocat", "hello-world")
    assert len(attempts) == MAX_RETRIES


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    handler = repo_routes({"/repos/octocat/hello-world": httpx.Response(404)})
    service = make_service(handler)

    with pytest.raises(NotFoundError):
        await service.get_repository_info("octocat", "hello-world")
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_invalid_json_is_malformed():
    service = make_service(repo_routes({
        "/repos/octocat/hello-world": httpx.Response(200, content=b"<html>oops</html>"),
    }))

    with pytest.raises(MalformedResponseError):
        await service.get_repository_info("octocat", "hello-world")


@pytest.mark.asyncio
async def test_unexpected_repository_payload_is_malformed():
    service = make_service(repo_routes({
        "/repos/octocat/hello-world": httpx.Response(200, json={"name": "hello-world"}),
    }))

    with pytest.raises(MalformedResponseError):
        await service.fetch_analysis("octocat/hello-world")


@pytest.mark.asyncio
async def test_secondary_lookups_degrade_to_empty():
    service = make_service(repo_routes({
        "/repos/octocat/hello-world/languages": httpx.Response(500),
        "/repos/octocat/hello-world/contributors": httpx.Response(204),
        "/repos/octocat/hello-world/commits": httpx.Response(409, json={"message": "Git Repository is empty."}),
    }))

    record = await service.fetch_analysis("octocat/hello-world")

    assert record.languages == {}
    assert record.contributor_count == 0
    assert record.recent_commit_count == 0


@pytest.mark.asyncio
async def test_rate_limit_on_secondary_lookup_propagates():
    service = make_service(repo_routes({
        "/repos/octocat/hello-world/commits": httpx.Response(
            403, headers={"X-RateLimit-Remaining": "0"}, json={}
        ),
    }))

    with pytest.raises(RateLimitedError):
        await service.fetch_analysis("octocat/hello-world")


@pytest.mark.asyncio
async def test_fetch_listing_page():
    requests = []

    def handler(request):
        requests.append(request)
        repos = [
            {"id": i, "name": f"repo-{i}", "full_name": f"octocat/repo-{i}",
             "html_url": f"https://github.com/octocat/repo-{i}", "stargazers_count": i}
            for i in range(1, 4)
        ]
        return httpx.Response(200, json=repos)

    service = make_service(handler)
    items = await service.fetch_listing_page("octocat", 2, 30)

    assert [item.id for item in items] == [1, 2, 3]
    assert items[2].stargazers_count == 3
    params = requests[0].url.params
    assert requests[0].url.path == "/users/octocat/repos"
    assert params["page"] == "2"
    assert params["per_page"] == "30"
    assert params["sort"] == "updated"


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{"message": "not a list"}, [{"name": "missing-id"}]])
async def test_fetch_listing_page_rejects_bad_payload(payload):
    service = make_service(lambda request: httpx.Response(200, content=json.dumps(payload).encode()))

    with pytest.raises(MalformedResponseError):
        await service.fetch_listing_page("octocat", 1, 30)


@pytest.mark.asyncio
async def test_fetch_listing_page_unknown_user():
    service = make_service(lambda request: httpx.Response(404, json={"message": "Not Found"}))

    with pytest.raises(NotFoundError):
        await service.fetch_listing_page("nobody-here", 1, 30)


@pytest.mark.asyncio
async def test_concurrent_snapshots_share_requests():
    """Analysis and insights fetch the same repository at the same time."""
    handler = repo_routes()
    service = make_service(handler)

    first, second = await asyncio.gather(
        service.get_repository_snapshot("octocat", "hello-world"),
        service.get_repository_snapshot("Octocat", "Hello-World"),
    )

    assert first is second
    assert len(handler.requests) == 4

    await service.get_repository_snapshot("octocat", "hello-world")
    assert len(handler.requests) == 8
