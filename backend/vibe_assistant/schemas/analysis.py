from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from vibe_assistant.core.errors import CollaboratorError


class AnalysisRecord(BaseModel):
    """Structural facts about a repository, as gathered from the GitHub API."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    full_name: str = Field(min_length=3)  # e.g. "octocat/hello-world"
    owner: str
    name: str
    html_url: str
    description: Optional[str] = None
    default_branch: Optional[str] = None
    language: Optional[str] = None
    languages: Dict[str, int] = Field(default_factory=dict)  # bytes per language
    topics: List[str] = Field(default_factory=list)
    license: Optional[str] = None

    stars: int = Field(default=0, ge=0)
    forks: int = Field(default=0, ge=0)
    watchers: int = Field(default=0, ge=0)
    open_issues: int = Field(default=0, ge=0)
    contributor_count: int = Field(default=0, ge=0)
    recent_commit_count: int = Field(default=0, ge=0)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    pushed_at: Optional[datetime] = None

    # Filled by the scoring step, which lives outside this service
    overall_score: Optional[int] = Field(default=None, ge=0, le=100)
    breakdown: Dict[str, int] = Field(default_factory=dict)

    # Stamped by the orchestrator before the record is cached
    repo_url: Optional[str] = None
    timestamp: Optional[datetime] = None


class InsightsRecord(BaseModel):
    """Narrative insights produced by the LLM for a repository."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    summary: str = Field(min_length=1)
    strengths: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    collaboration: Optional[str] = None
    activity: Optional[str] = None  # "active" | "moderate" | "low"
    quality: Optional[int] = Field(default=None, ge=1, le=100)
    model: Optional[str] = None

    repo_url: Optional[str] = None
    timestamp: Optional[datetime] = None


class BranchOutcome(str, Enum):
    CACHED = "cached"
    FETCHED = "fetched"
    FAILED = "failed"


class OrchestrationResult(BaseModel):
    """
    Combined outcome of one complete-analysis call.

    Each branch (analysis, insights) either carries a record or an error,
    never both. ``from_cache`` is True only when no fetch was scheduled.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    target: str
    analysis: Optional[AnalysisRecord] = None
    insights: Optional[InsightsRecord] = None
    analysis_error: Optional[CollaboratorError] = None
    insights_error: Optional[CollaboratorError] = None
    analysis_outcome: BranchOutcome
    insights_outcome: BranchOutcome
    from_cache: bool = False
    # Ledger entry for the same target that this call's fresh analysis replaced
    previous_analysis: Optional[AnalysisRecord] = None

    @property
    def status(self) -> str:
        if self.from_cache:
            return "cached"
        if self.analysis is not None and self.insights is not None:
            return "success"
        if self.analysis is not None or self.insights is not None:
            return "partial"
        return "failed"


class HistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    target: str
    analysis: AnalysisRecord
    timestamp: datetime
    # Clock reading used for TTL checks
    written_at: float


class ScoreComparison(BaseModel):
    previous: int
    current: int
    difference: int
    percentage: Optional[float] = None
