# pagespeed_analyzer/services/job_store.py
"""
Keyed persistence for AnalysisJob records.

Two backends share the same interface:

  - SQLAlchemyJobStore: the default, backed by the Flask-SQLAlchemy session.
    Same-id updates take a row lock (SELECT ... FOR UPDATE where supported).
  - MemoryJobStore: a process-local dict guarded by a lock, bounded by
    ``max_jobs``. Only usable with the thread dispatcher, since a Celery
    worker lives in another process.

Both refuse to move a job out of a terminal state.
"""
import itertools
import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional

from flask import current_app
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from pagespeed_analyzer.errors import JobStateError, StorageError
from pagespeed_analyzer.models import db
from pagespeed_analyzer.models.job import AnalysisJob, JobStatus

logger = logging.getLogger(__name__)

_UPDATABLE = frozenset({"status", "result", "error_message", "task_id", "completed_at"})
_COPIED = (
    "id", "task_id", "url", "device", "status", "result", "error_message",
    "project_id", "application_id", "environment_id",
    "created_at", "updated_at", "completed_at",
)


def _check_update(job: AnalysisJob, fields: dict) -> None:
    unknown = set(fields) - _UPDATABLE
    if unknown:
        raise ValueError(f"Cannot update job fields: {sorted(unknown)}")

    new_status = fields.get("status")
    if new_status is not None and new_status not in JobStatus.ALL:
        raise ValueError(f"Unknown job status: {new_status}")

    if job.is_terminal and (new_status is not None or "result" in fields or "error_message" in fields):
        raise JobStateError(
            f"Job {job.id} is already {job.status}",
            details={"job_id": job.id, "status": job.status},
        )

    # result iff completed, error_message iff failed
    if new_status == JobStatus.COMPLETED and fields.get("result") is None:
        raise ValueError("A completed job needs a result")
    if new_status == JobStatus.FAILED and not fields.get("error_message"):
        raise ValueError("A failed job needs an error_message")
    if "result" in fields and new_status != JobStatus.COMPLETED:
        raise ValueError("result can only be written together with status=completed")
    if "error_message" in fields and new_status != JobStatus.FAILED:
        raise ValueError("error_message can only be written together with status=failed")


class JobStore:
    """Interface implemented by the concrete stores."""

    def create(self, url: str, device: str, **provenance) -> AnalysisJob:
        raise NotImplementedError

    def get(self, job_id: int) -> Optional[AnalysisJob]:
        raise NotImplementedError

    def update(self, job_id: int, **fields) -> Optional[AnalysisJob]:
        raise NotImplementedError

    def list(self, limit: int = 10) -> List[AnalysisJob]:
        raise NotImplementedError

    def prune(self, keep: int) -> int:
        raise NotImplementedError


class SQLAlchemyJobStore(JobStore):

    def create(self, url: str, device: str, **provenance) -> AnalysisJob:
        try:
            job = AnalysisJob(url=url, device=device, status=JobStatus.PENDING, **provenance)
            db.session.add(job)
            db.session.commit()
            return job
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StorageError("Could not create analysis job", details=str(e)) from e

    def get(self, job_id: int) -> Optional[AnalysisJob]:
        try:
            # populate_existing: another session (the runner) may have finalized it
            return db.session.get(AnalysisJob, job_id, populate_existing=True)
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StorageError("Could not read analysis job", details=str(e)) from e

    def update(self, job_id: int, **fields) -> Optional[AnalysisJob]:
        try:
            stmt = (
                select(AnalysisJob)
                .where(AnalysisJob.id == job_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            job = db.session.execute(stmt).scalar_one_or_none()
            if job is None:
                db.session.rollback()
                return None
            try:
                _check_update(job, fields)
            except (JobStateError, ValueError):
                db.session.rollback()
                raise
            for key, value in fields.items():
                setattr(job, key, value)
            job.updated_at = datetime.utcnow()
            db.session.commit()
            return job
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StorageError("Could not update analysis job", details=str(e)) from e

    def list(self, limit: int = 10) -> List[AnalysisJob]:
        try:
            stmt = (
                select(AnalysisJob)
                .order_by(AnalysisJob.created_at.desc(), AnalysisJob.id.desc())
                .limit(limit)
                .execution_options(populate_existing=True)
            )
            return list(db.session.execute(stmt).scalars())
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StorageError("Could not list analysis jobs", details=str(e)) from e

    def prune(self, keep: int) -> int:
        try:
            total = db.session.execute(select(func.count(AnalysisJob.id))).scalar_one()
            excess = total - keep
            if excess <= 0:
                return 0
            oldest = (
                select(AnalysisJob.id)
                .where(AnalysisJob.status.in_(JobStatus.TERMINAL))
                .order_by(AnalysisJob.created_at.asc(), AnalysisJob.id.asc())
                .limit(excess)
            )
            ids = list(db.session.execute(oldest).scalars())
            if ids:
                db.session.execute(delete(AnalysisJob).where(AnalysisJob.id.in_(ids)))
            db.session.commit()
            return len(ids)
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StorageError("Could not prune analysis jobs", details=str(e)) from e


class MemoryJobStore(JobStore):
    """
    Records are swapped, never mutated in place, so a reader holding a job
    never sees a half-applied update.
    """

    def __init__(self, max_jobs: int = 500):
        self.max_jobs = max_jobs
        self._jobs: Dict[int, AnalysisJob] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    @staticmethod
    def _copy(job: AnalysisJob, **changes) -> AnalysisJob:
        values = {name: getattr(job, name) for name in _COPIED}
        values.update(changes)
        return AnalysisJob(**values)

    def create(self, url: str, device: str, **provenance) -> AnalysisJob:
        now = datetime.utcnow()
        with self._lock:
            job = AnalysisJob(
                id=next(self._ids),
                url=url,
                device=device,
                status=JobStatus.PENDING,
                created_at=now,
                updated_at=now,
                **provenance,
            )
            self._jobs[job.id] = job
            if self.max_jobs and len(self._jobs) > self.max_jobs:
                self._prune_locked(self.max_jobs)
            return job

    def get(self, job_id: int) -> Optional[AnalysisJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def update(self, job_id: int, **fields) -> Optional[AnalysisJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            _check_update(job, fields)
            updated = self._copy(job, updated_at=datetime.utcnow(), **fields)
            self._jobs[job_id] = updated
            return updated

    def list(self, limit: int = 10) -> List[AnalysisJob]:
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda j: (j.created_at, j.id), reverse=True)
        return jobs[:limit]

    def prune(self, keep: int) -> int:
        with self._lock:
            return self._prune_locked(keep)

    def _prune_locked(self, keep: int) -> int:
        excess = len(self._jobs) - keep
        if excess <= 0:
            return 0
        terminal = sorted(
            (j for j in self._jobs.values() if j.is_terminal),
            key=lambda j: (j.created_at, j.id),
        )
        removed = 0
        for job in terminal[:excess]:
            del self._jobs[job.id]
            removed += 1
        if removed:
            logger.info("evicted %d finished jobs from memory store", removed)
        return removed


def build_job_store(app) -> JobStore:
    kind = (app.config.get("JOB_STORE") or "sql").lower()
    if kind == "sql":
        return SQLAlchemyJobStore()
    if kind == "memory":
        return MemoryJobStore(max_jobs=app.config.get("MEMORY_STORE_MAX_JOBS", 500))
    raise ValueError(f"Unknown JOB_STORE: {kind}")


def init_app(app) -> None:
    app.extensions["job_store"] = build_job_store(app)


def get_job_store() -> JobStore:
    return current_app.extensions["job_store"]

