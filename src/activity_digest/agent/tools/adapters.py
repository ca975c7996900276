"""Tool adapters, one class per tool the summarizer can call.

Adapters receive already-validated parameters and return a JSON-able dict.
Collaborator failures are raised as ``ToolExecutionError``; the gateway
turns them into error payloads for the model.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, TypeVar

from ...exceptions import GitCommandError, ToolExecutionError
from ...git.repository import GitRepository, run_in_thread
from ..budget import BudgetTracker

logger = logging.getLogger("activity.agent.tools")

T = TypeVar("T")

BUDGET_DENIED_MESSAGE = (
    "Cannot fetch more diffs. Consider summarizing based on commit messages alone."
)
TOO_LARGE_MESSAGE = (
    "The commit likely involves extensive changes. Consider this when summarizing."
)
SUPPRESSED_HINT = (
    "Some vendored or lock-file changes were filtered out; use "
    "get_commit_diff_full if they matter."
)
FULL_DIFF_NOTE = (
    "This is the complete unfiltered diff including vendor/node_modules/lock files"
)

# Payload key marking a budget or size refusal; stripped by the gateway.
DENIED_MARKER = "_denied"


def _short(sha: str) -> str:
    return sha[:8]


class _GitToolBase(ABC):
    """Shared state for git-backed tools."""

    def __init__(self, git: GitRepository) -> None:
        self.git = git

    @abstractmethod
    async def execute(self, params: dict[str, Any]) -> dict[str, Any]:
        ...

    async def _call_git(self, fn: Callable[..., T], *args: Any) -> T:
        return await run_in_thread(fn, *args)


class _BudgetedDiffTool(_GitToolBase):
    """Common gating for the two diff tools."""

    full = False

    def __init__(self, git: GitRepository, budget: BudgetTracker) -> None:
        super().__init__(git)
        self.budget = budget

    async def execute(self, params: dict[str, Any]) -> dict[str, Any]:
        sha: str = params["commit_sha"]
        reason: str = params["reason"]
        tool = "get_commit_diff_full" if self.full else "get_commit_diff"
        logger.debug("tool call %s sha=%s reason=%s", tool, _short(sha), reason)

        allowed, why = self.budget.can_fetch_more()
        if not allowed:
            logger.debug("diff fetch denied sha=%s: %s", _short(sha), why)
            return {"error": why, "message": BUDGET_DENIED_MESSAGE, DENIED_MARKER: True}

        diff, suppressed = await self._fetch(sha)
        size = len(diff.encode("utf-8"))
        limit = self.budget.max_bytes_per_fetch
        if size > limit:
            logger.debug("diff too large sha=%s size=%d max=%d", _short(sha), size, limit)
            return {
                "error": "Diff too large",
                "commit_sha": sha,
                "size_bytes": size,
                "max_bytes": limit,
                "message": TOO_LARGE_MESSAGE,
                DENIED_MARKER: True,
            }

        logged_reason = f"full: {reason}" if self.full else reason
        recorded, why = self.budget.try_record_fetch(sha, size, logged_reason)
        if not recorded:
            return {"error": why, "message": BUDGET_DENIED_MESSAGE, DENIED_MARKER: True}

        logger.debug(
            "diff fetched sha=%s bytes=%d lines=%d suppressed=%d",
            _short(sha), size, diff.count("\n"), suppressed,
        )
        result: dict[str, Any] = {
            "commit_sha": sha,
            "diff": diff,
            "size_bytes": size,
            "reason": reason,
        }
        if self.full:
            result["note"] = FULL_DIFF_NOTE
        else:
            result["suppressed_lines"] = suppressed
            if suppressed:
                result["hint"] = SUPPRESSED_HINT
        return result

    @abstractmethod
    async def _fetch(self, sha: str) -> tuple[str, int]:
        ...


# ---------------------------------------------------------------------------
# get_commit_diff
# ---------------------------------------------------------------------------

class CommitDiffTool(_BudgetedDiffTool):
    """Filtered diff (no vendored code or lock files)."""

    async def _fetch(self, sha: str) -> tuple[str, int]:
        try:
            result = await self._call_git(self.git.commit_diff, sha)
        except GitCommandError as exc:
            raise ToolExecutionError(f"Error fetching diff: {exc}") from exc
        return result.diff, result.suppressed_lines


# ---------------------------------------------------------------------------
# get_commit_diff_full
# ---------------------------------------------------------------------------

class CommitDiffFullTool(_BudgetedDiffTool):
    """Unfiltered diff; charged like the filtered one."""

    full = True

    async def _fetch(self, sha: str) -> tuple[str, int]:
        try:
            diff = await self._call_git(self.git.commit_diff_full, sha)
        except GitCommandError as exc:
            raise ToolExecutionError(f"Error fetching full diff: {exc}") from exc
        return diff, 0


# ---------------------------------------------------------------------------
# get_full_commit_message
# ---------------------------------------------------------------------------

class FullCommitMessageTool(_GitToolBase):

    async def execute(self, params: dict[str, Any]) -> dict[str, Any]:
        sha: str = params["commit_sha"]
        logger.debug("tool call get_full_commit_message sha=%s", _short(sha))
        try:
            commit = await self._call_git(self.git.commit_info, sha)
        except GitCommandError as exc:
            raise ToolExecutionError(f"Error fetching commit info: {exc}") from exc

        return {
            "commit_sha": sha,
            "author": commit.author,
            "date": commit.date.strftime("%Y-%m-%d %H:%M"),
            "full_message": commit.message,
            "message_length": len(commit.message),
        }


# ---------------------------------------------------------------------------
# get_author_stats
# ---------------------------------------------------------------------------

class AuthorStatsTool(_GitToolBase):

    async def execute(self, params: dict[str, Any]) -> dict[str, Any]:
        name: str = params["author_name"]
        logger.debug("tool call get_author_stats author=%s", name)
        try:
            stats = await self._call_git(self.git.author_stats, name)
        except GitCommandError as exc:
            raise ToolExecutionError(f"Error fetching author stats: {exc}") from exc

        if stats.total_commits == 0:
            return {
                "author_name": name,
                "total_commits": 0,
                "message": "No commits found for this author",
            }
        return {
            "author_name": stats.name,
            "total_commits": stats.total_commits,
            "first_commit": stats.first_commit.strftime("%Y-%m-%d"),
            "last_commit": stats.last_commit.strftime("%Y-%m-%d"),
        }
