from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RepositorySummary(BaseModel):
    """One entry of a user's repository listing (GET /users/{login}/repos)."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int  # listing identity; stable across renames
    name: str
    full_name: str
    html_url: str
    description: Optional[str] = None
    language: Optional[str] = None
    stargazers_count: int = Field(default=0, ge=0)
    forks_count: int = Field(default=0, ge=0)
    fork: bool = False
    archived: bool = False
    topics: List[str] = Field(default_factory=list)
    updated_at: Optional[datetime] = None
    pushed_at: Optional[datetime] = None


class RepositoryPage(BaseModel):
    """One consumer-facing page of a user's repositories."""
    username: str
    page: int
    page_size: int
    repositories: List[RepositorySummary]
    has_more: bool
    total_count: Optional[int] = None
