"""Tests for the SQLAlchemy store (in-memory SQLite)."""

from __future__ import annotations

import pytest

from activity_digest.exceptions import ReportPersistenceError
from activity_digest.isoweek import week_bounds
from activity_digest.models import (
    AnalysisRun,
    BudgetMetadata,
    DiffFetchRecord,
    ReportMetadata,
    Repository,
    WeeklyReport,
)
from activity_digest.storage import Database

from conftest import utc


# ---- Fixtures ----

@pytest.fixture
def db() -> Database:
    database = Database("sqlite://")
    yield database
    database.close()


@pytest.fixture
def repo(db) -> Repository:
    return db.create_repository(Repository(name="acme", local_path="/srv/acme", branch="main"))


def _report(repo_id: int, year: int, week: int, summary: str = "summary") -> WeeklyReport:
    start, end = week_bounds(year, week)
    return WeeklyReport(
        repo_id=repo_id, year=year, week=week, week_start=start, week_end=end,
        summary=summary, commit_count=2,
        metadata=ReportMetadata(authors=["Alice"], commit_shas=["a", "b"], author_counts={"Alice": 2}),
        agent_mode=True,
        budget=BudgetMetadata(fetch_count=1, total_bytes=40, estimated_tokens=10,
                              fetch_log=[DiffFetchRecord(sha="a", size_bytes=40, reason="vague")]),
    )


# ---- Repositories ----

class TestRepositories:

    def test_create_and_get(self, db, repo):
        assert repo.id is not None
        assert repo.active is True
        assert repo.created_at is not None
        assert db.get_repository(repo.id).name == "acme"
        assert db.get_repository_by_name("acme").local_path == "/srv/acme"
        assert db.get_repository_by_name("nope") is None

    def test_duplicate_name(self, db, repo):
        with pytest.raises(ReportPersistenceError, match="constraint"):
            db.create_repository(Repository(name="acme", local_path="/elsewhere"))

    def test_list_active_only(self, db, repo):
        db.create_repository(Repository(name="legacy", local_path="/srv/legacy", active=False))
        assert [r.name for r in db.list_repositories()] == ["acme", "legacy"]
        assert [r.name for r in db.list_repositories(active_only=True)] == ["acme"]

    def test_watermark(self, db, repo):
        db.update_repository_last_run(repo.id, "f" * 40, utc(2026, 1, 9, 12))
        stored = db.get_repository(repo.id)
        assert stored.last_run_sha == "f" * 40
        assert stored.last_run_at == utc(2026, 1, 9, 12)

    def test_watermark_unknown_repo(self, db):
        with pytest.raises(ReportPersistenceError):
            db.update_repository_last_run(999, "abc")

    def test_description(self, db, repo):
        db.update_repository_description(repo.id, "Billing service")
        assert db.get_repository(repo.id).description == "Billing service"


# ---- Analysis runs ----

class TestAnalysisRuns:

    def test_create_then_complete(self, db, repo):
        run = db.create_analysis_run(AnalysisRun(repo_id=repo.id, start_sha="a", end_sha="b"))
        assert run.id is not None
        assert run.completed_at is None

        run.summary = "Did things."
        run.raw_data = {"commit_count": 2, "authors": ["Alice"]}
        run.budget = BudgetMetadata(fetch_count=1, total_bytes=8, estimated_tokens=2)
        run.completed_at = utc(2026, 1, 9)
        run.agent_mode = True
        db.update_analysis_run(run)

        stored = db.get_analysis_run(run.id)
        assert stored.summary == "Did things."
        assert stored.raw_data == {"commit_count": 2, "authors": ["Alice"]}
        assert stored.budget.fetch_count == 1
        assert stored.completed_at == utc(2026, 1, 9)
        assert stored.started_at.tzinfo is not None

    def test_latest_run(self, db, repo):
        db.create_analysis_run(AnalysisRun(repo_id=repo.id, end_sha="a", started_at=utc(2026, 1, 1)))
        db.create_analysis_run(AnalysisRun(repo_id=repo.id, end_sha="b", started_at=utc(2026, 1, 2)))
        assert db.get_latest_analysis_run(repo.id).end_sha == "b"

    def test_run_requires_repository(self, db):
        with pytest.raises(ReportPersistenceError):
            db.create_analysis_run(AnalysisRun(repo_id=42, end_sha="a"))


# ---- Weekly reports ----

class TestWeeklyReports:

    def test_create_and_read_back(self, db, repo):
        created = db.create_weekly_report(_report(repo.id, 2026, 2))
        assert created.id is not None
        assert created.week_label == "2026-W02"
        assert created.created_at == created.updated_at

        stored = db.get_weekly_report_by_week(repo.id, 2026, 2)
        assert stored.week_start == utc(2026, 1, 5)
        assert stored.week_end == utc(2026, 1, 11, 23, 59, 59)
        assert stored.metadata.author_counts == {"Alice": 2}
        assert stored.budget.fetch_log[0].reason == "vague"
        assert db.weekly_report_exists(repo.id, 2026, 2)
        assert not db.weekly_report_exists(repo.id, 2026, 3)

    def test_duplicate_week(self, db, repo):
        db.create_weekly_report(_report(repo.id, 2026, 2))
        with pytest.raises(ReportPersistenceError):
            db.create_weekly_report(_report(repo.id, 2026, 2, summary="again"))
        assert len(db.list_weekly_reports(repo.id)) == 1

    def test_update_keeps_identity(self, db, repo):
        created = db.create_weekly_report(_report(repo.id, 2026, 2))
        changed = created.model_copy(update={"summary": "Regenerated.", "commit_count": 5, "budget": None})
        updated = db.update_weekly_report(changed)

        assert updated.id == created.id
        assert updated.created_at == created.created_at
        assert updated.updated_at >= created.updated_at
        assert updated.summary == "Regenerated."
        assert updated.commit_count == 5
        assert updated.budget is None

    def test_update_missing_report(self, db, repo):
        ghost = _report(repo.id, 2026, 2).model_copy(update={"id": 404})
        with pytest.raises(ReportPersistenceError):
            db.update_weekly_report(ghost)

    def test_latest_and_listing_order(self, db, repo):
        other = db.create_repository(Repository(name="zeta", local_path="/srv/zeta"))
        for year, week in [(2025, 52), (2026, 2), (2026, 1)]:
            db.create_weekly_report(_report(repo.id, year, week))
        db.create_weekly_report(_report(other.id, 2026, 1))

        assert db.get_latest_weekly_report(repo.id).week_label == "2026-W02"
        assert [r.week_label for r in db.list_weekly_reports(repo.id)] == [
            "2026-W02", "2026-W01", "2025-W52",
        ]
        assert len(db.list_weekly_reports(year=2026)) == 3
        assert [r.repo_id for r in db.list_weekly_reports(year=2026)][1:] == [repo.id, other.id]
        assert db.get_weekly_report(999) is None
