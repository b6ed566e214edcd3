# store.py
"""
Persisted run records (SQLite through SQLAlchemy).

One `runs` row per Run and one `jobs` row per job of that run; step results
are kept as JSON on the job row. Older runs are pruned by the retention policy.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker

from .model import RunResult

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class RunRecord(Base):
    __tablename__ = "runs"
    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    workflow: Mapped[str] = mapped_column(sa.Text, nullable=False)
    event: Mapped[str] = mapped_column(sa.Text, nullable=False)
    ref: Mapped[str] = mapped_column(sa.Text, nullable=False, default="")
    sha: Mapped[str] = mapped_column(sa.Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(sa.Text, nullable=False)
    error: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    finished_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    jobs: Mapped[List["JobRecord"]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="JobRecord.position",
    )


class JobRecord(Base):
    __tablename__ = "jobs"
    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(sa.String(64), sa.ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    job_name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    status: Mapped[str] = mapped_column(sa.Text, nullable=False)
    attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    error: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    steps_json: Mapped[list] = mapped_column(sa.JSON, nullable=False, default=list)
    started_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    run: Mapped[RunRecord] = relationship(back_populates="jobs")


@dataclass(frozen=True)
class RunSummary:
    run_id: str
    workflow: str
    event: str
    status: str
    started_at: datetime
    finished_at: Optional[datetime]

    def as_row(self) -> Dict[str, str]:
        return {
            "run_id": self.run_id,
            "workflow": self.workflow,
            "event": self.event,
            "status": self.status,
            "started_at": self.started_at.isoformat(timespec="seconds"),
        }


class RunStore:
    """Run records with a keep-the-newest-N retention policy."""

    def __init__(self, url: str):
        if url.startswith("sqlite:///") and url != "sqlite:///:memory:":
            Path(url[len("sqlite:///"):]).expanduser().parent.mkdir(parents=True, exist_ok=True)
        self.engine = sa.create_engine(url)
        self.SessionLocal = sessionmaker(self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)

    def save(self, result: RunResult) -> None:
        record = RunRecord(
            id=result.run_id,
            workflow=result.workflow,
            event=result.event.name,
            ref=result.event.ref,
            sha=result.event.sha,
            status=result.status.value,
            error=result.error,
            started_at=result.started_at,
            finished_at=result.finished_at,
        )
        for position, (job_id, state) in enumerate(result.jobs.items()):
            record.jobs.append(
                JobRecord(
                    position=position,
                    job_name=job_id,
                    status=state.status.value,
                    attempts=state.attempts,
                    error=state.error,
                    reason=state.reason,
                    steps_json=[s.to_dict() for s in state.steps],
                    started_at=state.started_at,
                    finished_at=state.finished_at,
                )
            )
        with self.SessionLocal() as session:
            session.merge(record)
            session.commit()
        logger.debug("saved run %s (%s)", result.run_id, result.status.value)

    def get(self, run_id: str) -> Optional[Dict[str, Any]]:
        with self.SessionLocal() as session:
            record = session.get(RunRecord, run_id)
            if record is None:
                return None
            return {
                "run_id": record.id,
                "workflow": record.workflow,
                "event": record.event,
                "ref": record.ref,
                "sha": record.sha,
                "status": record.status,
                "error": record.error,
                "started_at": record.started_at,
                "finished_at": record.finished_at,
                "jobs": [
                    {
                        "job": j.job_name,
                        "status": j.status,
                        "attempts": j.attempts,
                        "error": j.error,
                        "reason": j.reason,
                        "steps": list(j.steps_json or []),
                    }
                    for j in record.jobs
                ],
            }

    def list_runs(self, limit: int = 20, workflow: Optional[str] = None) -> List[RunSummary]:
        stmt = sa.select(RunRecord).order_by(RunRecord.started_at.desc()).limit(limit)
        if workflow:
            stmt = stmt.where(RunRecord.workflow == workflow)
        with self.SessionLocal() as session:
            return [
                RunSummary(
                    run_id=r.id,
                    workflow=r.workflow,
                    event=r.event,
                    status=r.status,
                    started_at=r.started_at,
                    finished_at=r.finished_at,
                )
                for r in session.scalars(stmt)
            ]

    def prune(self, keep: int) -> int:
        """Delete all but the newest `keep` runs. Returns the number deleted."""
        with self.SessionLocal() as session:
            stale = session.scalars(
                sa.select(RunRecord).order_by(RunRecord.started_at.desc()).offset(max(keep, 0))
            ).all()
            for record in stale:
                session.delete(record)
            session.commit()
        if stale:
            logger.debug("pruned %d old run(s)", len(stale))
        return len(stale)
