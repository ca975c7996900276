"""Pydantic models shared across the engine.

Commits and branch activity are read-only views of version-control data.
Repository, AnalysisRun and WeeklyReport mirror persisted rows; the
metadata models are stored as JSON alongside them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Version-control records
# ---------------------------------------------------------------------------

class Commit(BaseModel):
    """A single commit as seen by the analyzer."""

    model_config = ConfigDict(frozen=True)

    sha: str
    author: str
    date: datetime
    message: str

    @property
    def short_sha(self) -> str:
        return self.sha[:8]


class BranchActivity(BaseModel):
    """Commits on a feature branch that are not yet on the main branch."""

    branch_name: str
    commit_count: int = 0
    author_counts: dict[str, int] = Field(default_factory=dict)


class DiffResult(BaseModel):
    """A path-filtered diff plus how many lines the filter removed."""

    diff: str = ""
    suppressed_lines: int = 0


class AuthorStats(BaseModel):
    name: str
    total_commits: int = 0
    first_commit: Optional[datetime] = None
    last_commit: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Budget & report metadata (persisted as JSON)
# ---------------------------------------------------------------------------

class DiffFetchRecord(BaseModel):
    sha: str
    size_bytes: int
    reason: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class BudgetMetadata(BaseModel):
    """Snapshot of what an agent run spent on diff fetches."""

    fetch_count: int = 0
    total_bytes: int = 0
    estimated_tokens: int = 0
    fetch_log: list[DiffFetchRecord] = Field(default_factory=list)


class ReportMetadata(BaseModel):
    """Who contributed to a week and which commits were summarized."""

    authors: list[str] = Field(default_factory=list)
    commit_shas: list[str] = Field(default_factory=list)
    author_counts: dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_commits(cls, commits: list[Commit]) -> "ReportMetadata":
        authors: list[str] = []
        counts: dict[str, int] = {}
        for c in commits:
            if c.author not in counts:
                authors.append(c.author)
                counts[c.author] = 0
            counts[c.author] += 1
        return cls(
            authors=authors,
            commit_shas=[c.sha for c in commits],
            author_counts=counts,
        )


# ---------------------------------------------------------------------------
# Persisted entities
# ---------------------------------------------------------------------------

class Repository(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    name: str
    url: str = ""
    branch: str = "main"
    local_path: str
    active: bool = True
    description: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    last_run_sha: Optional[str] = None


class AnalysisRun(BaseModel):
    """One invocation of the summarizer over a commit range."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    repo_id: int
    start_sha: str = ""
    end_sha: str
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    summary: Optional[str] = None
    raw_data: Optional[dict] = None
    agent_mode: bool = False
    budget: Optional[BudgetMetadata] = None


class WeeklyReport(BaseModel):
    """The persisted summary for one repository and ISO week."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    repo_id: int
    year: int
    week: int
    week_start: datetime
    week_end: datetime
    summary: Optional[str] = None
    commit_count: int = 0
    metadata: Optional[ReportMetadata] = None
    agent_mode: bool = False
    budget: Optional[BudgetMetadata] = None
    source_run_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def week_label(self) -> str:
        return f"{self.year:04d}-W{self.week:02d}"
