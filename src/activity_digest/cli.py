"""activity-digest CLI: register repositories, analyze commits, build weekly reports.

Usage:
    activity-digest repo add <name> <path> [--branch main]
    activity-digest analyze <name> [--since DATE] [--until DATE] [-n COUNT]
    activity-digest report generate <name> --week 2026-W02 [--force]
    activity-digest report generate <name> --since 2026-01-01
    activity-digest report generate --last-week
    activity-digest report show <name> [--week 2026-W02]
    activity-digest report list [<name>] [--year 2026]
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Awaitable, TypeVar

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table as RichTable

from . import __version__
from .analyzer import Analyzer, commit_sha_range
from .config import Settings, load_settings
from .exceptions import ActivityError, RepositoryNotFoundError
from .git.repository import GitRepository
from .llm.providers import TextBackend, get_backend
from .models import Repository, WeeklyReport
from .reports import BackfillResult, GenerateResult, ReportOutcome, ReportService
from .storage.db import Database

console = Console()

T = TypeVar("T")

_OUTCOME_STYLE: dict[ReportOutcome, str] = {
    ReportOutcome.GENERATED: "[bold green]generated[/]",
    ReportOutcome.SKIPPED: "[yellow]skipped[/]",
    ReportOutcome.NO_COMMITS: "[dim]no commits[/]",
    ReportOutcome.FAILED: "[bold red]failed[/]",
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # SDK transports are noisy at DEBUG
    for name in ("httpx", "httpcore", "openai", "anthropic"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _open_db(settings: Settings) -> Database:
    if not settings.database_url:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
    return Database(settings.get_database_url())


def _build_analyzer(settings: Settings, db: Database) -> Analyzer:
    return Analyzer(settings.llm, db, get_backend(settings.llm))


def _run(backend: TextBackend, work: Awaitable[T]) -> T:
    """Run ``work`` to completion, then close the backend's client."""
    async def _main() -> T:
        try:
            return await work
        finally:
            await backend.close()
    return asyncio.run(_main())


def _parse_date(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise click.BadParameter(f"expected YYYY-MM-DD, got {value!r}")


def _fail(exc: Exception) -> None:
    console.print(f"[bold red]Error:[/] {exc}")
    raise SystemExit(1)


@click.group()
@click.version_option(version=__version__, prog_name="activity-digest")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Config file (default: ~/.config/activity/config.yaml).",
)
@click.option("-v", "--verbose", is_flag=True, default=False, help="Verbose logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool):
    """activity-digest: budgeted AI summaries of git activity."""
    try:
        settings = load_settings(config_path)
    except ActivityError as exc:
        _fail(exc)
    _setup_logging(verbose or settings.debug)
    ctx.obj = settings


# ══════════════════════════════════════════════════════════════════════════
# repo
# ══════════════════════════════════════════════════════════════════════════


@main.group()
def repo():
    """Manage tracked repositories."""


@repo.command("add")
@click.argument("name")
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.option("--url", default="", help="Remote URL (informational).")
@click.option("--branch", default="main", show_default=True, help="Main branch to report on.")
@click.option("--description", default="", help="Short description used in prompts.")
@click.pass_obj
def repo_add(settings: Settings, name: str, path: str, url: str, branch: str, description: str):
    """Register an existing local clone."""
    db = _open_db(settings)
    try:
        created = db.create_repository(Repository(
            name=name,
            url=url,
            branch=branch,
            local_path=str(Path(path).resolve()),
            description=description,
        ))
    except ActivityError as exc:
        _fail(exc)
    console.print(f"[green]✓[/] Added [bold]{created.name}[/] ({created.local_path}, branch {created.branch})")


@repo.command("list")
@click.pass_obj
def repo_list(settings: Settings):
    """List tracked repositories."""
    db = _open_db(settings)
    repos = db.list_repositories()
    if not repos:
        console.print("[dim]No repositories registered.[/]")
        return

    table = RichTable(title="Repositories", show_lines=False)
    table.add_column("Name", style="bold")
    table.add_column("Branch")
    table.add_column("Path", style="dim")
    table.add_column("Last run")
    table.add_column("Active")
    for r in repos:
        last = f"{r.last_run_sha[:8]} @ {r.last_run_at:%Y-%m-%d %H:%M}" if r.last_run_sha and r.last_run_at else "-"
        table.add_row(r.name, r.branch, r.local_path, last, "yes" if r.active else "no")
    console.print(table)


# ══════════════════════════════════════════════════════════════════════════
# analyze
# ══════════════════════════════════════════════════════════════════════════


@main.command()
@click.argument("name")
@click.option("--since", "since", default=None, help="Start date, any git date (e.g. '1 week ago').")
@click.option("--until", "until", default=None, help="End date, any git date.")
@click.option("-n", "count", type=int, default=0, help="Analyze the last N commits.")
@click.pass_obj
def analyze(settings: Settings, name: str, since: str | None, until: str | None, count: int):
    """Summarize commits for a repository.

    Without options, analyzes everything since the last run and advances the
    watermark.  With --since/--until or -n, analyzes that selection only.
    """
    if count and (since or until):
        raise click.UsageError("-n cannot be used with --since or --until")

    db = _open_db(settings)
    try:
        repo_obj = db.get_repository_by_name(name)
        if repo_obj is None:
            raise RepositoryNotFoundError(f"repository not found: {name}")
        analyzer = _build_analyzer(settings, db)
        git = GitRepository(repo_obj.local_path)

        if not (since or until or count):
            run = _run(analyzer.backend, analyzer.analyze_new_commits(repo_obj, git))
            if run is None:
                console.print("[dim]No new commits since the last run.[/]")
                return
        else:
            commits = git.last_n_commits(count) if count else git.commits_since(since, until)
            if not commits:
                console.print("[dim]No commits found in the specified range.[/]")
                return
            from_sha, to_sha = commit_sha_range(commits)
            run = _run(
                analyzer.backend,
                analyzer.analyze_and_save(repo_obj, from_sha, to_sha, commits, git),
            )
    except ActivityError as exc:
        _fail(exc)

    commit_count = (run.raw_data or {}).get("commit_count", 0)
    console.print(Panel(
        Markdown(run.summary or ""),
        title=f"[bold green]{name}[/] ({commit_count} commits)",
        border_style="green",
    ))
    if run.budget is not None:
        console.print(
            f"[dim]Diff fetches: {run.budget.fetch_count}, "
            f"~{run.budget.estimated_tokens} tokens[/]"
        )


# ══════════════════════════════════════════════════════════════════════════
# report
# ══════════════════════════════════════════════════════════════════════════


@main.group()
def report():
    """Generate and view weekly reports."""


@report.command("generate")
@click.argument("name", required=False)
@click.option("--week", "week_label", default=None, help="ISO week, e.g. 2026-W02.")
@click.option("--since", "since", default=None, help="Backfill every week since YYYY-MM-DD.")
@click.option("--last-week", is_flag=True, default=False, help="Last complete ISO week.")
@click.option("--force", is_flag=True, default=False, help="Regenerate existing reports.")
@click.pass_obj
def report_generate(
    settings: Settings,
    name: str | None,
    week_label: str | None,
    since: str | None,
    last_week: bool,
    force: bool,
):
    """Generate weekly reports for one repository (or all with --last-week / --since)."""
    chosen = [opt for opt in (week_label, since, last_week) if opt]
    if len(chosen) != 1:
        raise click.UsageError("exactly one of --week, --since or --last-week is required")
    if week_label and not name:
        raise click.UsageError("--week needs a repository name")

    db = _open_db(settings)
    try:
        analyzer = _build_analyzer(settings, db)
        service = ReportService(db, analyzer)
        if week_label:
            result = _run(analyzer.backend, service.generate_for_week(name, week_label, force=force))
            _print_result(result)
            return
        if last_week:
            total = _run(analyzer.backend, service.generate_last_week(force=force))
        elif name:
            total = _run(
                analyzer.backend, service.generate_since(name, _parse_date(since), force=force),
            )
        else:
            total = _run(
                analyzer.backend, service.generate_all_repos_since(_parse_date(since), force=force),
            )
    except ActivityError as exc:
        _fail(exc)
    _print_backfill(total)


@report.command("show")
@click.argument("name")
@click.option("--week", "week_label", default=None, help="ISO week (default: latest).")
@click.pass_obj
def report_show(settings: Settings, name: str, week_label: str | None):
    """Show a weekly report."""
    db = _open_db(settings)
    service = ReportService(db)
    try:
        found = (
            service.get_report_for_week(name, week_label) if week_label
            else service.get_latest_report(name)
        )
    except ActivityError as exc:
        _fail(exc)
    if found is None:
        console.print("[dim]No report found.[/]")
        return
    _print_report(name, found)


@report.command("list")
@click.argument("name", required=False)
@click.option("--year", type=int, default=None)
@click.pass_obj
def report_list(settings: Settings, name: str | None, year: int | None):
    """List weekly reports, newest first."""
    db = _open_db(settings)
    service = ReportService(db)
    try:
        reports = service.list_reports(name, year=year)
    except ActivityError as exc:
        _fail(exc)
    if not reports:
        console.print("[dim]No reports.[/]")
        return

    names = {r.id: r.name for r in db.list_repositories()}
    table = RichTable(title="Weekly reports")
    table.add_column("ID", justify="right")
    table.add_column("Repository", style="bold")
    table.add_column("Week")
    table.add_column("Commits", justify="right")
    table.add_column("Mode")
    table.add_column("Updated", style="dim")
    for r in reports:
        table.add_row(
            str(r.id),
            names.get(r.repo_id, str(r.repo_id)),
            r.week_label,
            str(r.commit_count),
            "agent" if r.agent_mode else "simple",
            f"{r.updated_at:%Y-%m-%d %H:%M}" if r.updated_at else "",
        )
    console.print(table)


# ── output helpers ────────────────────────────────────────────────────────


def _print_result(result: GenerateResult) -> None:
    console.print(f"{result.repo_name} {result.week_label}: {_OUTCOME_STYLE[result.outcome]}")
    if result.outcome == ReportOutcome.GENERATED and result.report is not None:
        _print_report(result.repo_name, result.report)


def _print_backfill(total: BackfillResult) -> None:
    for r in total.results:
        line = f"  {r.repo_name} {r.week_label}: {_OUTCOME_STYLE[r.outcome]}"
        if r.error:
            line += f" [dim]({r.error})[/]"
        console.print(line)
    console.print(
        f"\n[bold]{total.generated}[/] generated, {total.skipped} skipped, "
        f"{total.no_commits} without commits, [red]{total.failed}[/] failed"
    )
    if total.failed:
        raise SystemExit(1)


def _print_report(name: str, r: WeeklyReport) -> None:
    authors = ", ".join(r.metadata.authors) if r.metadata else ""
    console.print(Panel(
        Markdown(r.summary or ""),
        title=f"[bold]{name}[/] {r.week_label} "
              f"({r.week_start:%Y-%m-%d} → {r.week_end:%Y-%m-%d})",
        subtitle=f"{r.commit_count} commits · {authors}" if authors else f"{r.commit_count} commits",
        border_style="cyan",
    ))


if __name__ == "__main__":
    main()
