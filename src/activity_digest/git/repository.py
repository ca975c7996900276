"""Git operations over a local clone: commit ranges, week windows, diffs.

Every call shells out to ``git -C <path>``.  Non-zero exits raise
``GitCommandError``; callers decide whether that is fatal.
"""

from __future__ import annotations

import asyncio
import logging
import re
import subprocess
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any, Callable, TypeVar

from ..exceptions import GitCommandError
from ..models import AuthorStats, Commit, DiffResult

logger = logging.getLogger("activity.git")

T = TypeVar("T")

_FIELD_SEP = "\x1e"

# Abbreviated or full hex object name.
SHA_PATTERN = r"[0-9a-fA-F]{4,40}"
_SHA_RE = re.compile(SHA_PATTERN)

# hash, author name, author unix time, subject
_LOG_FORMAT = "%H%x1e%an%x1e%at%x1e%s"

# Paths whose churn carries no signal for a summary.
EXCLUDED_PATHSPECS: tuple[str, ...] = (
    ":(exclude,glob)**/vendor/**",
    ":(exclude,glob)**/node_modules/**",
    ":(exclude,glob)**/go.sum",
    ":(exclude,glob)**/package-lock.json",
    ":(exclude,glob)**/yarn.lock",
    ":(exclude,glob)**/pnpm-lock.yaml",
    ":(exclude,glob)**/Cargo.lock",
    ":(exclude,glob)**/poetry.lock",
    ":(exclude,glob)**/uv.lock",
    ":(exclude,glob)**/Pipfile.lock",
    ":(exclude,glob)**/Gemfile.lock",
    ":(exclude,glob)**/composer.lock",
)


async def run_in_thread(fn: Callable[..., T], *args: Any) -> T:
    """Run a blocking git call off the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(fn, *args))


def _from_unix(ts: str) -> datetime:
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


def _lines(raw: str) -> list[str]:
    """Non-empty output lines.

    ``str.splitlines`` also breaks on ``\\x1e``, so split on newlines only.
    """
    return [line for line in raw.split("\n") if line.strip()]


def _check_sha(sha: str) -> None:
    """Reject anything but a hex object name before it reaches git argv."""
    if not _SHA_RE.fullmatch(sha):
        raise GitCommandError(["show", sha], f"invalid commit sha: {sha!r}")


def _git_time(value: datetime) -> str:
    """Format a datetime for ``--since``/``--until`` unambiguously."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class GitRepository:
    """Read-only view of a local git clone."""

    def __init__(self, path: Path | str, *, timeout: int = 120) -> None:
        self.path = Path(path).expanduser()
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"GitRepository({str(self.path)!r})"

    # ------------------------------------------------------------------
    # refs
    # ------------------------------------------------------------------
    def head_sha(self, ref: str = "HEAD") -> str:
        return self._run_git("rev-parse", ref).strip()

    def ref_exists(self, ref: str) -> bool:
        try:
            self._run_git("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}")
        except GitCommandError:
            return False
        return True

    def fetch_all(self) -> None:
        """Update remote-tracking branches (``git fetch --all --prune``)."""
        self._run_git("fetch", "--all", "--prune")

    def remote_branches(self) -> list[str]:
        """Remote-tracking branches as ``origin/name``, skipping symbolic refs."""
        raw = self._run_git(
            "for-each-ref", "--format=%(refname)%1e%(symref)", "refs/remotes",
        )
        branches: list[str] = []
        for line in _lines(raw):
            refname, _, symref = line.partition(_FIELD_SEP)
            if symref or refname.endswith("/HEAD"):
                continue
            branches.append(refname[len("refs/remotes/"):])
        return branches

    # ------------------------------------------------------------------
    # commit listings (newest first)
    # ------------------------------------------------------------------
    def commit_range(
        self,
        from_sha: str | None,
        to_sha: str,
        *,
        max_count: int | None = None,
    ) -> list[Commit]:
        """Commits in ``from_sha..to_sha``; all history to ``to_sha`` if no lower bound."""
        rev = f"{from_sha}..{to_sha}" if from_sha else to_sha
        args = ["log", f"--format={_LOG_FORMAT}"]
        if max_count:
            args.append(f"--max-count={max_count}")
        args.append(rev)
        return self._parse_log(self._run_git(*args))

    def commits_between(
        self, since: datetime, until: datetime, ref: str = "HEAD",
    ) -> list[Commit]:
        """Commits reachable from ``ref`` authored within ``[since, until]``."""
        raw = self._run_git(
            "log",
            f"--format={_LOG_FORMAT}",
            f"--since={_git_time(since)}",
            f"--until={_git_time(until)}",
            ref,
        )
        return [c for c in self._parse_log(raw) if since <= c.date <= until]

    def commits_since(
        self, since: str | None = None, until: str | None = None, ref: str = "HEAD",
    ) -> list[Commit]:
        """Commits filtered by free-form git dates, e.g. ``"1 week ago"``."""
        args = ["log", f"--format={_LOG_FORMAT}"]
        if since:
            args.append(f"--since={since}")
        if until:
            args.append(f"--until={until}")
        args.append(ref)
        return self._parse_log(self._run_git(*args))

    def last_n_commits(self, n: int, ref: str = "HEAD") -> list[Commit]:
        return self._parse_log(
            self._run_git("log", f"--format={_LOG_FORMAT}", f"--max-count={n}", ref)
        )

    def branch_commit_authors(
        self, branch: str, main_ref: str, since: datetime, until: datetime,
    ) -> list[tuple[str, datetime]]:
        """``(author, date)`` of commits on ``branch`` not reachable from ``main_ref``."""
        raw = self._run_git(
            "log",
            "--format=%an%x1e%at",
            f"--since={_git_time(since)}",
            f"--until={_git_time(until)}",
            branch,
            f"^{main_ref}",
        )
        out: list[tuple[str, datetime]] = []
        for line in _lines(raw):
            author, _, ts = line.partition(_FIELD_SEP)
            date = _from_unix(ts)
            if since <= date <= until:
                out.append((author, date))
        return out

    # ------------------------------------------------------------------
    # single-commit detail
    # ------------------------------------------------------------------
    def commit_diff(self, sha: str) -> DiffResult:
        """Diff of ``sha`` with vendored and lock-file paths filtered out.

        ``suppressed_lines`` is the number of diff lines the filter removed.
        """
        _check_sha(sha)
        filtered = self._run_git(
            "show", "--format=", "--end-of-options", sha, "--", ".", *EXCLUDED_PATHSPECS,
        )
        full = self.commit_diff_full(sha)
        suppressed = max(0, full.count("\n") - filtered.count("\n"))
        return DiffResult(diff=filtered, suppressed_lines=suppressed)

    def commit_diff_full(self, sha: str) -> str:
        _check_sha(sha)
        return self._run_git("show", "--format=", "--end-of-options", sha)

    def commit_info(self, sha: str) -> Commit:
        """The commit with its complete message body."""
        _check_sha(sha)
        raw = self._run_git(
            "show", "--no-patch", "--format=%H%x1e%an%x1e%at%x1e%B", "--end-of-options", sha,
        )
        parts = raw.split(_FIELD_SEP, 3)
        if len(parts) != 4:
            raise GitCommandError(["show", sha], "unexpected git show output format")
        full_sha, author, ts, body = parts
        return Commit(sha=full_sha.strip(), author=author, date=_from_unix(ts), message=body.strip())

    def author_stats(self, author_name: str, ref: str = "HEAD") -> AuthorStats:
        """Commit count and first/last commit dates for an exact author name."""
        raw = self._run_git(
            "log", "--fixed-strings", f"--author={author_name}", "--format=%an%x1e%at", ref,
        )
        dates: list[datetime] = []
        for line in _lines(raw):
            name, _, ts = line.partition(_FIELD_SEP)
            # --author matches substrings of "Name <email>"
            if name == author_name and ts:
                dates.append(_from_unix(ts))
        if not dates:
            return AuthorStats(name=author_name)
        return AuthorStats(
            name=author_name,
            total_commits=len(dates),
            first_commit=min(dates),
            last_commit=max(dates),
        )

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    @staticmethod
    def _parse_log(raw: str) -> list[Commit]:
        commits: list[Commit] = []
        for line in _lines(raw):
            parts = line.split(_FIELD_SEP, 3)
            if len(parts) != 4:
                logger.debug("Skipping malformed log line: %r", line)
                continue
            sha, author, ts, subject = parts
            commits.append(Commit(sha=sha, author=author, date=_from_unix(ts), message=subject))
        return commits

    def _run_git(self, *args: str) -> str:
        """Run a git command in the repository and return stdout."""
        cmd = ["git", "-C", str(self.path), *args]
        try:
            result = subprocess.run(
                cmd,
                check=True,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.CalledProcessError as exc:
            raise GitCommandError(list(args), exc.stderr or "", exc.returncode) from exc
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise GitCommandError(list(args), str(exc)) from exc
        return result.stdout
