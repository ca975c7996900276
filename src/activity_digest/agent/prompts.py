"""Prompt construction for the agent and the single-shot summarizer.

Both prompts list commits newest first.  The agent prompt keeps dates short
and points the model at ``get_full_commit_message`` for truncated text; the
simple prompt carries its own instructions since there are no tools.
"""

from __future__ import annotations

from typing import Optional, Sequence

from ..models import BranchActivity, Commit, Repository

AGENT_TRUNCATION_MARKER = " [truncated - use get_full_commit_message for complete text]"
SIMPLE_TRUNCATION_MARKER = "... [truncated]"

DEFAULT_SUMMARY_PROMPT = """\
Please provide a concise summary of the development activity in this commit range.
Focus on:
1. Main features or changes implemented
2. Bug fixes
3. Refactoring or code improvements
4. Notable patterns or trends

Keep the summary under 300 words and use clear, professional language."""

# ``{max_diff_fetches}`` is substituted from settings.
DEFAULT_AGENT_SYSTEM_PROMPT = """\
You are a Git commit analyzer that summarizes development activity.

Your goal is to produce a concise summary of what happened in this commit range.

IMPORTANT GUIDELINES:
1. First, review all commit messages provided in the user prompt
2. If a commit message is CLEAR and DESCRIPTIVE (e.g., "Fix null pointer in user auth",
   "Add pagination to API endpoint"), you can summarize it WITHOUT viewing the diff
3. ONLY use get_commit_diff when:
   - The commit message is vague (e.g., "fix", "update", "changes", "stuff")
   - The message doesn't explain WHAT was changed
   - You need to verify the scope of a change
   - The message references a ticket/issue without explanation (e.g., "Fix #123")
4. You have LIMITED diff fetches (max {max_diff_fetches} per analysis) - use them wisely
5. Before fetching a diff, consider using get_full_commit_message if the message was truncated
6. get_commit_diff hides vendored code and lock files; use get_commit_diff_full only when
   the filtered diff reports suppressed lines that matter
7. Prioritize diffs for:
   - Unclear messages that seem important
   - Commits that likely have significant impact
   - Bug fixes without clear descriptions
8. Use get_author_stats to get information about contributors when there are multiple
   authors or when you want to provide context about who is contributing

OUTPUT FORMAT:
Provide a summary with these sections:
1. Main Features or Changes: New capabilities added
2. Bug Fixes: Issues resolved
3. Refactoring/Improvements: Code quality changes
4. Notable Patterns: Trends across commits (if any)
5. Contributors: Brief info about active authors (use get_author_stats for context)

Keep the summary under 400 words and use clear, professional language.
If you had to skip analyzing some commits due to limits, mention this briefly at the end."""


def _header(repo: Repository) -> list[str]:
    lines = [f"Repository: {repo.name}"]
    if repo.description:
        lines.append(f"About: {repo.description}")
    lines.append(f"Branch: {repo.branch}")
    return lines


def _branch_section(branch_activity: Sequence[BranchActivity]) -> list[str]:
    if not branch_activity:
        return []
    lines = [
        "## Other Branch Activity",
        "The following feature branches had commits this week that haven't "
        "been merged to the main branch:",
    ]
    for ba in branch_activity:
        authors = sorted(ba.author_counts.items(), key=lambda kv: (-kv[1], kv[0]))
        who = ", ".join(f"{name}: {n}" for name, n in authors)
        lines.append(f"- {ba.branch_name}: {ba.commit_count} commits ({who})")
    lines += ["", "Include a brief mention of this parallel work in your summary.", ""]
    return lines


def _previous_section(previous_summary: Optional[str]) -> list[str]:
    if not previous_summary:
        return []
    return [
        "## Previous Week's Summary (for context)",
        previous_summary,
        "",
        "Use this context to maintain narrative continuity and reference ongoing "
        "work where relevant.",
        "",
    ]


def build_agent_prompt(
    repo: Repository,
    commits: Sequence[Commit],
    *,
    max_message_length: int,
    branch_activity: Sequence[BranchActivity] = (),
    previous_summary: Optional[str] = None,
) -> str:
    """User prompt for the tool-calling agent."""
    lines = _header(repo)
    lines += [f"Analyzing {len(commits)} commits", "", "Commits (newest first):", ""]

    for i, commit in enumerate(commits, start=1):
        message = commit.message
        marker = ""
        if len(message) > max_message_length:
            message = message[:max_message_length]
            marker = AGENT_TRUNCATION_MARKER
        lines += [
            f"Commit {i}:",
            f"  SHA: {commit.short_sha}",
            f"  Author: {commit.author}",
            f"  Date: {commit.date:%Y-%m-%d}",
            f"  Message: {message}{marker}",
            "",
        ]

    lines += _branch_section(branch_activity)
    lines += _previous_section(previous_summary)
    lines.append("Please analyze these commits and provide a summary.")
    return "\n".join(lines) + "\n"


def build_simple_prompt(
    repo: Repository,
    commits: Sequence[Commit],
    *,
    max_commits: int,
    max_message_length: int,
    summary_prompt: str = DEFAULT_SUMMARY_PROMPT,
    branch_activity: Sequence[BranchActivity] = (),
    previous_summary: Optional[str] = None,
) -> str:
    """Single-shot prompt used when the agent is disabled."""
    lines = ["You are analyzing git commits for a software project.", ""]
    lines += _header(repo)
    lines += [f"Total commits: {len(commits)}", "", "Commits (newest first):", ""]

    for i, commit in enumerate(commits[:max_commits], start=1):
        message = commit.message
        if len(message) > max_message_length:
            message = message[:max_message_length] + SIMPLE_TRUNCATION_MARKER
        lines += [
            f"Commit {i}:",
            f"  SHA: {commit.short_sha}",
            f"  Author: {commit.author}",
            f"  Date: {commit.date:%Y-%m-%d %H:%M}",
            f"  Message: {message}",
            "",
        ]
    if len(commits) > max_commits:
        lines += [f"... and {len(commits) - max_commits} more commits", ""]

    lines += _branch_section(branch_activity)
    lines += _previous_section(previous_summary)
    lines.append(summary_prompt)
    return "\n".join(lines) + "\n"
