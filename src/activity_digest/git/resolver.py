"""Decide which commits (and which side-branch activity) a summary covers."""

from __future__ import annotations

import logging
from typing import Optional

from ..exceptions import GitCommandError, RangeResolutionError
from ..isoweek import format_week_label, week_bounds
from ..models import BranchActivity, Commit
from .repository import GitRepository

logger = logging.getLogger("activity.git.resolver")


class CommitRangeResolver:
    """Turns a watermark or an ISO week into an ordered commit list.

    All listings are newest first.
    """

    def __init__(self, git: GitRepository, *, remote: str = "origin") -> None:
        self.git = git
        self.remote = remote

    def head_sha(self, ref: str = "HEAD") -> str:
        try:
            return self.git.head_sha(ref)
        except GitCommandError as exc:
            raise RangeResolutionError(f"cannot resolve {ref}: {exc}") from exc

    def resolve_range(
        self,
        watermark_sha: Optional[str],
        head_sha: str,
        *,
        max_count: int | None = None,
    ) -> list[Commit]:
        """Commits after ``watermark_sha`` up to and including ``head_sha``.

        Without a watermark the whole history reachable from ``head_sha`` is
        returned (optionally capped at ``max_count``).
        """
        try:
            return self.git.commit_range(watermark_sha or None, head_sha, max_count=max_count)
        except GitCommandError as exc:
            raise RangeResolutionError(
                f"cannot list commits {watermark_sha or '<root>'}..{head_sha}: {exc}"
            ) from exc

    def resolve_week(self, year: int, week: int, ref: str | None = None) -> list[Commit]:
        """Commits on ``ref`` (default HEAD) whose timestamp falls in the ISO week."""
        start, end = week_bounds(year, week)
        target = self._main_ref(ref) if ref else "HEAD"
        try:
            commits = self.git.commits_between(start, end, target)
        except GitCommandError as exc:
            raise RangeResolutionError(
                f"cannot list commits for {format_week_label(year, week)}: {exc}"
            ) from exc
        logger.debug(
            "%s on %s: %d commits", format_week_label(year, week), target, len(commits),
        )
        return commits

    def resolve_branch_activity(
        self, main_branch: str, year: int, week: int,
    ) -> list[BranchActivity]:
        """Per-branch commits in the week that have not reached ``main_branch``.

        A branch that cannot be inspected is logged and left out; failing to
        enumerate the branches at all raises ``RangeResolutionError``.
        """
        start, end = week_bounds(year, week)
        main_ref = self._main_ref(main_branch)
        try:
            branches = self.git.remote_branches()
        except GitCommandError as exc:
            raise RangeResolutionError(f"cannot list remote branches: {exc}") from exc

        activity: list[BranchActivity] = []
        for branch in branches:
            short = branch.split("/", 1)[1] if "/" in branch else branch
            if short == main_branch or branch == main_ref:
                continue
            try:
                entries = self.git.branch_commit_authors(branch, main_ref, start, end)
            except GitCommandError as exc:
                logger.warning("Skipping branch %s: %s", branch, exc)
                continue
            if not entries:
                continue

            counts: dict[str, int] = {}
            for author, _ in entries:
                counts[author] = counts.get(author, 0) + 1
            activity.append(BranchActivity(
                branch_name=short,
                commit_count=len(entries),
                author_counts=counts,
            ))
        return activity

    def _main_ref(self, branch: str) -> str:
        """Prefer the remote-tracking ref of ``branch`` when it exists."""
        remote_ref = f"{self.remote}/{branch}"
        if self.git.ref_exists(remote_ref):
            return remote_ref
        return branch
