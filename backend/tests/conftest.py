import pytest

from vibe_assistant.schemas.analysis import AnalysisRecord, InsightsRecord
from vibe_assistant.schemas.repository import RepositorySummary


class FakeClock:
    """Manually advanced clock, injected wherever code reads the time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def analysis_record():
    return AnalysisRecord(
        full_name="octocat/hello-world",
        owner="octocat",
        name="hello-world",
        html_url="https://github.com/octocat/hello-world",
        language="Python",
        stars=42,
        forks=7,
        contributor_count=3,
        overall_score=80,
    )


@pytest.fixture
def insights_record():
    return InsightsRecord(
        summary="A small, actively maintained demo repository.",
        strengths=["Clear README", "Active maintainers"],
        improvements=["Add tests"],
        recommendations=["Set up continuous integration"],
        activity="active",
        quality=75,
    )


@pytest.fixture
def make_repo():
    """Factory for listing items with a given id."""

    def _make(repo_id: int, owner: str = "octocat") -> RepositorySummary:
        return RepositorySummary(
            id=repo_id,
            name=f"repo-{repo_id}",
            full_name=f"{owner}/repo-{repo_id}",
            html_url=f"https://github.com/{owner}/repo-{repo_id}",
        )

    return _make
