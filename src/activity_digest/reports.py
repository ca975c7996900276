"""Weekly report generation with idempotent upserts.

For each (repository, ISO year, ISO week) a report is either absent or
present:

* absent  + commits      → generate and insert
* absent  + no commits   → nothing stored (``NO_COMMITS``)
* present + no force     → untouched (``SKIPPED``)
* present + force        → regenerate in place, keeping ``id`` and ``created_at``

Backfills walk the weeks oldest first so each week can use the previous
week's summary for continuity.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from enum import Enum
from typing import Callable, Optional, Union

from pydantic import BaseModel, Field

from .analyzer import Analyzer, commit_sha_range
from .exceptions import (
    AgentExecutionError,
    ConfigurationError,
    GitCommandError,
    RangeResolutionError,
    ReportPersistenceError,
    RepositoryNotFoundError,
)
from .git.repository import GitRepository, run_in_thread
from .git.resolver import CommitRangeResolver
from .isoweek import (
    format_week_label,
    last_complete_week,
    parse_week_label,
    previous_week,
    week_bounds,
    weeks_in_range,
)
from .models import ReportMetadata, Repository, WeeklyReport
from .storage.db import Database

logger = logging.getLogger("activity.reports")

# Per-week failures that a backfill records and moves past.
_RECOVERABLE = (RangeResolutionError, AgentExecutionError, ReportPersistenceError)


class ReportOutcome(str, Enum):
    GENERATED = "generated"
    SKIPPED = "skipped"
    NO_COMMITS = "no_commits"
    FAILED = "failed"


class GenerateResult(BaseModel):
    """Outcome for one repository and week."""

    repo_name: str
    week_label: str
    outcome: ReportOutcome
    report: Optional[WeeklyReport] = None
    regenerated: bool = False
    error: Optional[str] = None


class BackfillResult(BaseModel):
    """Tally over many weeks (and possibly many repositories)."""

    generated: int = 0
    skipped: int = 0
    no_commits: int = 0
    failed: int = 0
    results: list[GenerateResult] = Field(default_factory=list)

    def add(self, result: GenerateResult) -> None:
        self.results.append(result)
        if result.outcome == ReportOutcome.GENERATED:
            self.generated += 1
        elif result.outcome == ReportOutcome.SKIPPED:
            self.skipped += 1
        elif result.outcome == ReportOutcome.NO_COMMITS:
            self.no_commits += 1
        else:
            self.failed += 1

    def merge(self, other: "BackfillResult") -> None:
        for r in other.results:
            self.add(r)


class ReportService:
    """Generates, regenerates and looks up weekly reports."""

    def __init__(
        self,
        db: Database,
        analyzer: Optional[Analyzer] = None,
        *,
        git_factory: Callable[[str], GitRepository] = GitRepository,
    ) -> None:
        self.db = db
        self.analyzer = analyzer
        self.git_factory = git_factory

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------
    async def generate_for_week(
        self, repo_name: str, week_label: str, *, force: bool = False,
    ) -> GenerateResult:
        """Generate (or with ``force`` regenerate) one week's report.

        Raises
        ------
        WeekFormatError
            ``week_label`` is not ``YYYY-Www``.
        RepositoryNotFoundError
            No such repository.
        """
        year, week = parse_week_label(week_label)
        repo = self._repo(repo_name)
        return await self._generate(repo, year, week, force=force)

    async def generate_since(
        self,
        repo_name: str,
        since: Union[date, datetime],
        *,
        force: bool = False,
        until: Union[date, datetime, None] = None,
    ) -> BackfillResult:
        """Backfill every ISO week from ``since`` through ``until`` (default now)."""
        repo = self._repo(repo_name)
        return await self._backfill(repo, since, until or datetime.now(timezone.utc), force)

    async def generate_all_repos_since(
        self, since: Union[date, datetime], *, force: bool = False,
    ) -> BackfillResult:
        total = BackfillResult()
        now = datetime.now(timezone.utc)
        for repo in self.db.list_repositories(active_only=True):
            total.merge(await self._backfill(repo, since, now, force))
        return total

    async def generate_last_week(
        self, *, force: bool = False, today: Union[date, datetime, None] = None,
    ) -> BackfillResult:
        """Report on the last complete ISO week for every active repository."""
        year, week = last_complete_week(today)
        total = BackfillResult()
        for repo in self.db.list_repositories(active_only=True):
            total.add(await self._generate_or_fail(repo, year, week, force))
        return total

    async def _backfill(
        self,
        repo: Repository,
        since: Union[date, datetime],
        until: Union[date, datetime],
        force: bool,
    ) -> BackfillResult:
        weeks = weeks_in_range(since, until)
        logger.info("%s: processing %d weeks", repo.name, len(weeks))
        result = BackfillResult()
        for year, week in weeks:
            result.add(await self._generate_or_fail(repo, year, week, force))
        logger.info(
            "%s: %d generated, %d skipped, %d without commits, %d failed",
            repo.name, result.generated, result.skipped, result.no_commits, result.failed,
        )
        return result

    async def _generate_or_fail(
        self, repo: Repository, year: int, week: int, force: bool,
    ) -> GenerateResult:
        try:
            return await self._generate(repo, year, week, force=force)
        except _RECOVERABLE as exc:
            label = format_week_label(year, week)
            logger.error("%s %s: %s", repo.name, label, exc)
            return GenerateResult(
                repo_name=repo.name, week_label=label,
                outcome=ReportOutcome.FAILED, error=str(exc),
            )

    async def _generate(
        self, repo: Repository, year: int, week: int, *, force: bool,
    ) -> GenerateResult:
        if self.analyzer is None:
            raise ConfigurationError("report generation needs an analyzer")
        label = format_week_label(year, week)
        existing = self.db.get_weekly_report_by_week(repo.id, year, week)
        if existing is not None and not force:
            logger.info("%s %s: report exists, skipping (use force to regenerate)", repo.name, label)
            return GenerateResult(
                repo_name=repo.name, week_label=label,
                outcome=ReportOutcome.SKIPPED, report=existing,
            )

        git = self.git_factory(repo.local_path)
        try:
            await run_in_thread(git.fetch_all)
        except GitCommandError as exc:
            logger.warning("%s: fetch failed, using local refs: %s", repo.name, exc)

        resolver = CommitRangeResolver(git)
        commits = await run_in_thread(resolver.resolve_week, year, week, repo.branch)
        if not commits:
            logger.info("%s %s: no commits", repo.name, label)
            return GenerateResult(
                repo_name=repo.name, week_label=label, outcome=ReportOutcome.NO_COMMITS,
            )

        try:
            branch_activity = await run_in_thread(
                resolver.resolve_branch_activity, repo.branch, year, week,
            )
        except RangeResolutionError as exc:
            logger.warning("%s %s: branch activity unavailable: %s", repo.name, label, exc)
            branch_activity = []

        prev = self.db.get_weekly_report_by_week(repo.id, *previous_week(year, week))
        previous_summary = prev.summary if prev is not None else None

        from_sha, to_sha = commit_sha_range(commits)
        logger.info("%s %s: analyzing %d commits", repo.name, label, len(commits))
        run = await self.analyzer.analyze_and_save(
            repo, from_sha, to_sha, commits, git,
            branch_activity=branch_activity,
            previous_summary=previous_summary,
        )

        fields = dict(
            summary=run.summary,
            commit_count=len(commits),
            metadata=ReportMetadata.from_commits(commits),
            agent_mode=run.agent_mode,
            budget=run.budget,
            source_run_id=run.id,
        )
        if existing is not None:
            report = self.db.update_weekly_report(existing.model_copy(update=fields))
        else:
            start, end = week_bounds(year, week)
            report = self.db.create_weekly_report(WeeklyReport(
                repo_id=repo.id, year=year, week=week,
                week_start=start, week_end=end, **fields,
            ))
        logger.info("%s %s: report %s", repo.name, label, "regenerated" if existing else "created")
        return GenerateResult(
            repo_name=repo.name, week_label=label, outcome=ReportOutcome.GENERATED,
            report=report, regenerated=existing is not None,
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def get_report(self, report_id: int) -> Optional[WeeklyReport]:
        return self.db.get_weekly_report(report_id)

    def get_report_for_week(self, repo_name: str, week_label: str) -> Optional[WeeklyReport]:
        year, week = parse_week_label(week_label)
        return self.db.get_weekly_report_by_week(self._repo(repo_name).id, year, week)

    def get_latest_report(self, repo_name: str) -> Optional[WeeklyReport]:
        return self.db.get_latest_weekly_report(self._repo(repo_name).id)

    def list_reports(
        self, repo_name: Optional[str] = None, *, year: Optional[int] = None,
    ) -> list[WeeklyReport]:
        repo_id = self._repo(repo_name).id if repo_name else None
        return self.db.list_weekly_reports(repo_id, year=year)

    def _repo(self, name: str) -> Repository:
        repo = self.db.get_repository_by_name(name)
        if repo is None:
            raise RepositoryNotFoundError(f"repository not found: {name}")
        return repo
