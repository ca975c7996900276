"""SQLAlchemy-backed store for repositories, analysis runs and weekly reports.

Tables:
- repositories:    tracked clones and their analysis watermark
- analysis_runs:   one row per summarizer invocation
- weekly_reports:  one row per (repository, ISO year, ISO week)

SQLite is the default; any SQLAlchemy URL works.  Schema is created on
first use, there are no migrations.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text,
    TypeDecorator, UniqueConstraint, create_engine, event, select,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..exceptions import ReportPersistenceError
from ..models import (
    AnalysisRun,
    BudgetMetadata,
    ReportMetadata,
    Repository,
    WeeklyReport,
    utcnow,
)

logger = logging.getLogger("activity.storage")

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    Stored as naive UTC (SQLite has no timezone support) and handed back
    with ``tzinfo=timezone.utc``.
    """
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# =============================================================================
# ORM rows
# =============================================================================

class RepositoryRow(Base):
    __tablename__ = "repositories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)
    url = Column(Text, nullable=False, default="")
    branch = Column(String(255), nullable=False, default="main")
    local_path = Column(Text, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    description = Column(Text, nullable=False, default="")
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)
    last_run_at = Column(UTCDateTime, nullable=True)
    last_run_sha = Column(String(64), nullable=True)


class AnalysisRunRow(Base):
    __tablename__ = "analysis_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    repo_id = Column(Integer, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False, index=True)
    start_sha = Column(String(64), nullable=False, default="")
    end_sha = Column(String(64), nullable=False)
    started_at = Column(UTCDateTime, nullable=False, default=utcnow)
    completed_at = Column(UTCDateTime, nullable=True)
    summary = Column(Text, nullable=True)
    raw_data = Column(JSON, nullable=True)
    agent_mode = Column(Boolean, nullable=False, default=False)
    budget_metadata = Column(JSON, nullable=True)


class WeeklyReportRow(Base):
    __tablename__ = "weekly_reports"
    __table_args__ = (
        UniqueConstraint("repo_id", "year", "week", name="uq_weekly_reports_repo_week"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    repo_id = Column(Integer, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False, index=True)
    year = Column(Integer, nullable=False)
    week = Column(Integer, nullable=False)
    week_start = Column(UTCDateTime, nullable=False)
    week_end = Column(UTCDateTime, nullable=False)
    summary = Column(Text, nullable=True)
    commit_count = Column(Integer, nullable=False, default=0)
    report_metadata = Column(JSON, nullable=True)
    agent_mode = Column(Boolean, nullable=False, default=False)
    budget_metadata = Column(JSON, nullable=True)
    source_run_id = Column(Integer, ForeignKey("analysis_runs.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)


# =============================================================================
# Row ↔ model conversion
# =============================================================================

def _dump(model) -> Optional[dict]:
    return model.model_dump(mode="json") if model is not None else None


def _to_run(row: AnalysisRunRow) -> AnalysisRun:
    return AnalysisRun(
        id=row.id,
        repo_id=row.repo_id,
        start_sha=row.start_sha or "",
        end_sha=row.end_sha,
        started_at=row.started_at,
        completed_at=row.completed_at,
        summary=row.summary,
        raw_data=row.raw_data,
        agent_mode=row.agent_mode,
        budget=BudgetMetadata.model_validate(row.budget_metadata) if row.budget_metadata else None,
    )


def _to_report(row: WeeklyReportRow) -> WeeklyReport:
    return WeeklyReport(
        id=row.id,
        repo_id=row.repo_id,
        year=row.year,
        week=row.week,
        week_start=row.week_start,
        week_end=row.week_end,
        summary=row.summary,
        commit_count=row.commit_count,
        metadata=ReportMetadata.model_validate(row.report_metadata) if row.report_metadata else None,
        agent_mode=row.agent_mode,
        budget=BudgetMetadata.model_validate(row.budget_metadata) if row.budget_metadata else None,
        source_run_id=row.source_run_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


# =============================================================================
# Database
# =============================================================================

class Database:
    """Thin repository layer over a SQLAlchemy engine.

    Every public method runs in its own transaction.  SQLAlchemy errors are
    re-raised as ``ReportPersistenceError``.
    """

    def __init__(self, url: str = "sqlite://", *, echo: bool = False) -> None:
        kwargs: dict = {"echo": echo}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        self.url = url
        self.engine = create_engine(url, **kwargs)
        if url.startswith("sqlite"):
            event.listen(self.engine, "connect", _enable_sqlite_fks)
        Base.metadata.create_all(self.engine)
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.debug("Database ready at %s", url)

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        session = self._sessions()
        try:
            yield session
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ReportPersistenceError(f"{action}: constraint violated ({exc.orig})") from exc
        except SQLAlchemyError as exc:
            session.rollback()
            raise ReportPersistenceError(f"{action}: {exc}") from exc
        finally:
            session.close()

    # ── repositories ─────────────────────────────────────────────────

    def create_repository(self, repo: Repository) -> Repository:
        with self._session(f"create repository {repo.name}") as s:
            row = RepositoryRow(
                name=repo.name,
                url=repo.url,
                branch=repo.branch,
                local_path=repo.local_path,
                active=repo.active,
                description=repo.description,
            )
            s.add(row)
            s.flush()
            return Repository.model_validate(row)

    def get_repository(self, repo_id: int) -> Optional[Repository]:
        with self._session("get repository") as s:
            row = s.get(RepositoryRow, repo_id)
            return Repository.model_validate(row) if row else None

    def get_repository_by_name(self, name: str) -> Optional[Repository]:
        with self._session("get repository") as s:
            row = s.scalars(select(RepositoryRow).where(RepositoryRow.name == name)).first()
            return Repository.model_validate(row) if row else None

    def list_repositories(self, *, active_only: bool = False) -> list[Repository]:
        with self._session("list repositories") as s:
            stmt = select(RepositoryRow).order_by(RepositoryRow.name)
            if active_only:
                stmt = stmt.where(RepositoryRow.active.is_(True))
            return [Repository.model_validate(r) for r in s.scalars(stmt)]

    def update_repository_last_run(
        self, repo_id: int, sha: str, at: Optional[datetime] = None,
    ) -> None:
        with self._session("update repository watermark") as s:
            row = s.get(RepositoryRow, repo_id)
            if row is None:
                raise ReportPersistenceError(f"repository {repo_id} does not exist")
            row.last_run_sha = sha
            row.last_run_at = at or utcnow()

    def update_repository_description(self, repo_id: int, description: str) -> None:
        with self._session("update repository description") as s:
            row = s.get(RepositoryRow, repo_id)
            if row is None:
                raise ReportPersistenceError(f"repository {repo_id} does not exist")
            row.description = description

    # ── analysis runs ────────────────────────────────────────────────

    def create_analysis_run(self, run: AnalysisRun) -> AnalysisRun:
        with self._session("create analysis run") as s:
            row = AnalysisRunRow(
                repo_id=run.repo_id,
                start_sha=run.start_sha,
                end_sha=run.end_sha,
                started_at=run.started_at,
                agent_mode=run.agent_mode,
            )
            s.add(row)
            s.flush()
            return _to_run(row)

    def update_analysis_run(self, run: AnalysisRun) -> AnalysisRun:
        """Store the completion fields of an existing run."""
        with self._session("update analysis run") as s:
            row = s.get(AnalysisRunRow, run.id)
            if row is None:
                raise ReportPersistenceError(f"analysis run {run.id} does not exist")
            row.completed_at = run.completed_at
            row.summary = run.summary
            row.raw_data = run.raw_data
            row.agent_mode = run.agent_mode
            row.budget_metadata = _dump(run.budget)
            s.flush()
            return _to_run(row)

    def get_analysis_run(self, run_id: int) -> Optional[AnalysisRun]:
        with self._session("get analysis run") as s:
            row = s.get(AnalysisRunRow, run_id)
            return _to_run(row) if row else None

    def get_latest_analysis_run(self, repo_id: int) -> Optional[AnalysisRun]:
        with self._session("get latest analysis run") as s:
            row = s.scalars(
                select(AnalysisRunRow)
                .where(AnalysisRunRow.repo_id == repo_id)
                .order_by(AnalysisRunRow.started_at.desc(), AnalysisRunRow.id.desc())
            ).first()
            return _to_run(row) if row else None

    # ── weekly reports ───────────────────────────────────────────────

    def weekly_report_exists(self, repo_id: int, year: int, week: int) -> bool:
        return self.get_weekly_report_by_week(repo_id, year, week) is not None

    def get_weekly_report(self, report_id: int) -> Optional[WeeklyReport]:
        with self._session("get weekly report") as s:
            row = s.get(WeeklyReportRow, report_id)
            return _to_report(row) if row else None

    def get_weekly_report_by_week(self, repo_id: int, year: int, week: int) -> Optional[WeeklyReport]:
        with self._session("get weekly report") as s:
            row = s.scalars(
                select(WeeklyReportRow).where(
                    WeeklyReportRow.repo_id == repo_id,
                    WeeklyReportRow.year == year,
                    WeeklyReportRow.week == week,
                )
            ).first()
            return _to_report(row) if row else None

    def create_weekly_report(self, report: WeeklyReport) -> WeeklyReport:
        """Insert a report; a duplicate (repo, year, week) raises."""
        label = f"{report.year:04d}-W{report.week:02d}"
        with self._session(f"create weekly report {label}") as s:
            now = utcnow()
            row = WeeklyReportRow(
                repo_id=report.repo_id,
                year=report.year,
                week=report.week,
                week_start=report.week_start,
                week_end=report.week_end,
                summary=report.summary,
                commit_count=report.commit_count,
                report_metadata=_dump(report.metadata),
                agent_mode=report.agent_mode,
                budget_metadata=_dump(report.budget),
                source_run_id=report.source_run_id,
                created_at=now,
                updated_at=now,
            )
            s.add(row)
            s.flush()
            return _to_report(row)

    def update_weekly_report(self, report: WeeklyReport) -> WeeklyReport:
        """Overwrite the generated fields; ``id`` and ``created_at`` are kept."""
        with self._session("update weekly report") as s:
            row = s.get(WeeklyReportRow, report.id)
            if row is None:
                raise ReportPersistenceError(f"weekly report {report.id} does not exist")
            row.summary = report.summary
            row.commit_count = report.commit_count
            row.report_metadata = _dump(report.metadata)
            row.agent_mode = report.agent_mode
            row.budget_metadata = _dump(report.budget)
            row.source_run_id = report.source_run_id
            row.updated_at = utcnow()
            s.flush()
            return _to_report(row)

    def get_latest_weekly_report(self, repo_id: int) -> Optional[WeeklyReport]:
        with self._session("get latest weekly report") as s:
            row = s.scalars(
                select(WeeklyReportRow)
                .where(WeeklyReportRow.repo_id == repo_id)
                .order_by(WeeklyReportRow.year.desc(), WeeklyReportRow.week.desc())
            ).first()
            return _to_report(row) if row else None

    def list_weekly_reports(
        self, repo_id: Optional[int] = None, *, year: Optional[int] = None,
    ) -> list[WeeklyReport]:
        """Reports newest week first, optionally for one repository or year."""
        with self._session("list weekly reports") as s:
            stmt = select(WeeklyReportRow).order_by(
                WeeklyReportRow.year.desc(), WeeklyReportRow.week.desc(), WeeklyReportRow.repo_id,
            )
            if repo_id is not None:
                stmt = stmt.where(WeeklyReportRow.repo_id == repo_id)
            if year is not None:
                stmt = stmt.where(WeeklyReportRow.year == year)
            return [_to_report(r) for r in s.scalars(stmt)]


def _enable_sqlite_fks(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
