# pagespeed_analyzer/services/runner.py
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from flask import current_app

from pagespeed_analyzer.errors import JobStateError
from pagespeed_analyzer.models.job import JobStatus
from pagespeed_analyzer.services.analyzer import analyzer_from_config
from pagespeed_analyzer.services.job_store import get_job_store

logger = logging.getLogger(__name__)

Analyzer = Callable[[str, str], Dict[str, Any]]


def _failure_message(exc: Exception) -> str:
    msg = str(exc).strip()
    return msg or f"Analysis failed ({type(exc).__name__})"


def run_analysis(job_id: int, url: str, device: str, analyzer: Optional[Analyzer] = None) -> Dict[str, Any]:
    """
    Run the analysis for ``job_id`` and write its single terminal update.

    Must be called inside an app context. Failures of the analysis itself end
    up on the job as ``failed`` and are never raised to the caller.
    """
    store = get_job_store()
    job = store.get(job_id)
    if job is None:
        logger.warning("analysis job %s not found", job_id, extra={"job_id": job_id})
        return {"error": "job not found", "job_id": job_id}
    if job.is_terminal:
        logger.info("analysis job %s already %s, skipping", job_id, job.status, extra={"job_id": job_id})
        return {"job_id": job_id, "status": job.status, "skipped": True}

    analyzer = analyzer or analyzer_from_config(current_app.config)
    logger.info("analysis started for %s (%s)", url, device, extra={"job_id": job_id})

    try:
        result = analyzer(url, device)
    except Exception as e:
        message = _failure_message(e)
        logger.exception("analysis failed for %s: %s", url, message, extra={"job_id": job_id})
        return _finalize(store, job_id, status=JobStatus.FAILED, error_message=message)

    return _finalize(store, job_id, status=JobStatus.COMPLETED, result=result)


def _finalize(store, job_id: int, **fields) -> Dict[str, Any]:
    try:
        job = store.update(job_id, completed_at=datetime.utcnow(), **fields)
    except JobStateError:
        logger.warning("analysis job %s was finalized concurrently", job_id, extra={"job_id": job_id})
        return {"job_id": job_id, "skipped": True}

    if job is None:
        # deleted while running (retention)
        return {"error": "job not found", "job_id": job_id}

    logger.info("analysis job %s %s", job_id, job.status, extra={"job_id": job_id})
    out = {"ok": job.status == JobStatus.COMPLETED, "job_id": job_id, "status": job.status}
    if job.status == JobStatus.FAILED:
        out["error"] = job.error_message
    return out
