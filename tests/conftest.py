"""Shared fixtures: throwaway git repositories, a fake git collaborator and
a scripted text backend."""

from __future__ import annotations

import os
import shutil
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from activity_digest.exceptions import GitCommandError
from activity_digest.llm.providers import ModelTurn, TextBackend, ToolRequest
from activity_digest.models import AuthorStats, Commit, DiffResult

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


# ---------------------------------------------------------------------------
# Real git repositories
# ---------------------------------------------------------------------------

def run_git(path: Path, *args: str, env: dict[str, str] | None = None) -> str:
    full_env = {**os.environ, "GIT_CONFIG_NOSYSTEM": "1", **(env or {})}
    result = subprocess.run(
        ["git", "-C", str(path), *args],
        check=True, capture_output=True, text=True, env=full_env,
    )
    return result.stdout


def make_commit(
    path: Path,
    message: str,
    *,
    when: str,
    author: str = "Alice",
    files: dict[str, str] | None = None,
) -> str:
    """Write ``files`` and commit them with a fixed author/committer date."""
    for rel, content in (files or {f"{abs(hash(message))}.txt": message}).items():
        target = path / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    email = f"{author.lower().replace(' ', '.')}@example.com"
    env = {
        "GIT_AUTHOR_NAME": author,
        "GIT_AUTHOR_EMAIL": email,
        "GIT_COMMITTER_NAME": author,
        "GIT_COMMITTER_EMAIL": email,
        "GIT_AUTHOR_DATE": when,
        "GIT_COMMITTER_DATE": when,
    }
    run_git(path, "add", "-A")
    run_git(path, "commit", "-q", "--no-verify", "-m", message, env=env)
    return run_git(path, "rev-parse", "HEAD").strip()


def init_repo(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    run_git(path, "init", "-q", "-b", "main")
    run_git(path, "config", "user.name", "Test")
    run_git(path, "config", "user.email", "test@example.com")
    run_git(path, "config", "commit.gpgsign", "false")
    return path


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    return init_repo(tmp_path / "repo")


# ---------------------------------------------------------------------------
# Fake git collaborator
# ---------------------------------------------------------------------------

def make_sha(n: int) -> str:
    return f"{n:040x}"


class FakeGit:
    """In-memory stand-in for ``GitRepository``."""

    def __init__(
        self,
        commits: list[Commit] | None = None,
        *,
        diffs: dict[str, DiffResult] | None = None,
        full_diffs: dict[str, str] | None = None,
        messages: dict[str, str] | None = None,
        fail_fetch: bool = False,
    ) -> None:
        self.commits = sorted(commits or [], key=lambda c: c.date, reverse=True)
        self.diffs = diffs or {}
        self.full_diffs = full_diffs or {}
        self.messages = messages or {}
        self.fail_fetch = fail_fetch
        self.fetches = 0

    def fetch_all(self) -> None:
        self.fetches += 1
        if self.fail_fetch:
            raise GitCommandError(["fetch", "--all"], "no network")

    def ref_exists(self, ref: str) -> bool:
        return False

    def head_sha(self, ref: str = "HEAD") -> str:
        return self.commits[0].sha

    def remote_branches(self) -> list[str]:
        return []

    def branch_commit_authors(self, branch, main_ref, since, until):
        return []

    def commit_range(self, from_sha, to_sha, *, max_count=None):
        out: list[Commit] = []
        started = False
        for c in self.commits:
            if c.sha == to_sha:
                started = True
            if c.sha == from_sha:
                break
            if started:
                out.append(c)
        return out[:max_count] if max_count else out

    def commits_between(self, since, until, ref="HEAD"):
        return [c for c in self.commits if since <= c.date <= until]

    def commit_diff(self, sha: str) -> DiffResult:
        if sha not in self.diffs:
            raise GitCommandError(["show", sha], f"bad object {sha}")
        return self.diffs[sha]

    def commit_diff_full(self, sha: str) -> str:
        if sha in self.full_diffs:
            return self.full_diffs[sha]
        return self.commit_diff(sha).diff

    def commit_info(self, sha: str) -> Commit:
        for c in self.commits:
            if c.sha == sha:
                return c.model_copy(update={"message": self.messages.get(sha, c.message)})
        raise GitCommandError(["show", sha], f"bad object {sha}")

    def author_stats(self, author_name: str, ref: str = "HEAD") -> AuthorStats:
        dates = [c.date for c in self.commits if c.author == author_name]
        if not dates:
            return AuthorStats(name=author_name)
        return AuthorStats(
            name=author_name, total_commits=len(dates),
            first_commit=min(dates), last_commit=max(dates),
        )


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Scripted backend
# ---------------------------------------------------------------------------

class ScriptedBackend(TextBackend):
    """Replays a fixed list of model turns (or raises queued exceptions)."""

    provider = "scripted"

    def __init__(self, turns: list[Any] | None = None, *, text: str = "Simple summary.") -> None:
        super().__init__(model="scripted")
        self.turns = list(turns or [])
        self.text = text
        self.seen: list[list] = []
        self.prompts: list[str] = []
        self.system_prompts: list[str] = []
        self.closed = 0

    async def generate_text(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.text

    async def complete_with_tools(self, system, messages, tools) -> ModelTurn:
        self.system_prompts.append(system)
        self.seen.append([m.model_copy(deep=True) for m in messages])
        if not self.turns:
            return ModelTurn(text=["(no more scripted turns)"])
        item = self.turns.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed += 1


def tool_turn(*requests: tuple[str, Any], text: str = "") -> ModelTurn:
    """A model turn requesting ``(name, arguments)`` tool calls."""
    return ModelTurn(
        text=[text] if text else [],
        tool_requests=[
            ToolRequest(id=f"call_{i}", name=name, arguments=args)
            for i, (name, args) in enumerate(requests)
        ],
    )


def text_turn(*fragments: str) -> ModelTurn:
    return ModelTurn(text=list(fragments))
