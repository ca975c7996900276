"""Analyzer: turns a commit list into a summary and records the run.

Routes to the tool-calling agent or to a single-shot prompt depending on
``llm.use_agent``.  Every agent run gets its own budget, gateway and
orchestrator.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Optional, Sequence

from pydantic import BaseModel, Field

from .agent.budget import BudgetTracker
from .agent.orchestrator import AgentOrchestrator
from .agent.prompts import build_agent_prompt, build_simple_prompt
from .agent.tools.gateway import ToolGateway
from .config import LLMSettings
from .exceptions import AgentExecutionError
from .git.repository import GitRepository, run_in_thread
from .git.resolver import CommitRangeResolver
from .llm.providers import TextBackend
from .models import AnalysisRun, BranchActivity, BudgetMetadata, Commit, Repository, utcnow
from .storage.db import Database

logger = logging.getLogger("activity.analyzer")

NO_COMMITS_SUMMARY = "No new commits to analyze."


class AnalysisOutcome(BaseModel):
    summary: str
    agent_mode: bool = False
    budget: Optional[BudgetMetadata] = None
    tool_usage: dict[str, int] = Field(default_factory=dict)


def _unique_authors(commits: Sequence[Commit]) -> list[str]:
    seen: dict[str, None] = {}
    for c in commits:
        seen.setdefault(c.author, None)
    return list(seen)


def commit_sha_range(commits: Sequence[Commit]) -> tuple[str, str]:
    """``(from_sha, to_sha)`` for a newest-first list; ``from`` is empty for one commit."""
    to_sha = commits[0].sha
    from_sha = commits[-1].sha if len(commits) > 1 else ""
    return from_sha, to_sha


class Analyzer:
    """Summarizes commits with the configured backend and persists runs."""

    def __init__(self, settings: LLMSettings, db: Database, backend: TextBackend) -> None:
        self.settings = settings
        self.db = db
        self.backend = backend

    # -- Summaries ----------------------------------------------------------

    async def analyze_commits(
        self,
        repo: Repository,
        commits: Sequence[Commit],
        git: GitRepository,
        *,
        branch_activity: Sequence[BranchActivity] = (),
        previous_summary: Optional[str] = None,
    ) -> AnalysisOutcome:
        if not commits:
            return AnalysisOutcome(summary=NO_COMMITS_SUMMARY, agent_mode=self.settings.use_agent)

        if self.settings.use_agent:
            return await self._analyze_with_agent(
                repo, commits, git, branch_activity, previous_summary,
            )
        return await self._analyze_simple(repo, commits, branch_activity, previous_summary)

    async def _analyze_with_agent(
        self,
        repo: Repository,
        commits: Sequence[Commit],
        git: GitRepository,
        branch_activity: Sequence[BranchActivity],
        previous_summary: Optional[str],
    ) -> AnalysisOutcome:
        s = self.settings
        budget = BudgetTracker(
            max_fetches=s.max_diff_fetches,
            max_bytes_per_fetch=s.max_diff_bytes,
            max_tokens=s.max_total_tokens,
        )
        orchestrator = AgentOrchestrator(
            self.backend,
            ToolGateway(git, budget),
            system_prompt=s.get_agent_system_prompt(),
            max_turns=s.max_agent_turns,
        )
        prompt = build_agent_prompt(
            repo,
            commits,
            max_message_length=s.max_message_length,
            branch_activity=branch_activity,
            previous_summary=previous_summary,
        )
        logger.info("Analyzing %d commits of %s with agent", len(commits), repo.name)
        result = await orchestrator.run(prompt)
        return AnalysisOutcome(
            summary=result.summary,
            agent_mode=True,
            budget=result.budget,
            tool_usage=result.tool_usage,
        )

    async def _analyze_simple(
        self,
        repo: Repository,
        commits: Sequence[Commit],
        branch_activity: Sequence[BranchActivity],
        previous_summary: Optional[str],
    ) -> AnalysisOutcome:
        s = self.settings
        prompt = build_simple_prompt(
            repo,
            commits,
            max_commits=s.max_commits,
            max_message_length=s.max_message_length,
            summary_prompt=s.get_summary_prompt(),
            branch_activity=branch_activity,
            previous_summary=previous_summary,
        )
        logger.info("Analyzing %d commits of %s (single prompt)", len(commits), repo.name)
        try:
            summary = await self.backend.generate_text(prompt)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise AgentExecutionError(f"failed to generate summary: {exc}") from exc
        return AnalysisOutcome(summary=summary.strip(), agent_mode=False)

    # -- Persisted runs -----------------------------------------------------

    async def analyze_and_save(
        self,
        repo: Repository,
        from_sha: str,
        to_sha: str,
        commits: Sequence[Commit],
        git: GitRepository,
        *,
        branch_activity: Sequence[BranchActivity] = (),
        previous_summary: Optional[str] = None,
    ) -> AnalysisRun:
        """Create an AnalysisRun, summarize, then complete the run.

        A failed analysis leaves the run without ``completed_at``.
        """
        run = self.db.create_analysis_run(AnalysisRun(
            repo_id=repo.id,
            start_sha=from_sha,
            end_sha=to_sha,
            agent_mode=self.settings.use_agent,
        ))

        outcome = await self.analyze_commits(
            repo, commits, git,
            branch_activity=branch_activity,
            previous_summary=previous_summary,
        )

        raw: dict[str, Any] = {
            "commit_count": len(commits),
            "authors": _unique_authors(commits),
        }
        if commits:
            raw["date_range"] = {
                "start": commits[-1].date.isoformat(),
                "end": commits[0].date.isoformat(),
            }
        if outcome.budget is not None:
            raw["agent_diffs_fetched"] = outcome.budget.fetch_count
            raw["agent_estimated_tokens"] = outcome.budget.estimated_tokens
        if outcome.tool_usage:
            raw["tool_usage"] = outcome.tool_usage

        run.summary = outcome.summary
        run.raw_data = raw
        run.agent_mode = outcome.agent_mode
        run.budget = outcome.budget
        run.completed_at = utcnow()
        return self.db.update_analysis_run(run)

    async def analyze_new_commits(self, repo: Repository, git: GitRepository) -> Optional[AnalysisRun]:
        """Summarize everything after the repository's watermark and advance it.

        Without a watermark the most recent ``max_commits`` commits are used.
        Returns ``None`` when there is nothing new.
        """
        resolver = CommitRangeResolver(git)
        head = await run_in_thread(resolver.head_sha)
        if repo.last_run_sha == head:
            logger.info("%s: no new commits since %s", repo.name, head[:8])
            return None

        commits = await run_in_thread(partial(
            resolver.resolve_range,
            repo.last_run_sha,
            head,
            max_count=None if repo.last_run_sha else self.settings.max_commits,
        ))
        if not commits:
            logger.info("%s: no new commits since %s", repo.name, (repo.last_run_sha or "")[:8])
            return None

        from_sha = repo.last_run_sha or commit_sha_range(commits)[0]
        run = await self.analyze_and_save(repo, from_sha, head, commits, git)
        self.db.update_repository_last_run(repo.id, head, run.completed_at)
        return run
