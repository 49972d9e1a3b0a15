# pagespeed_analyzer/tasks/analysis_tasks.py
import logging

from celery import shared_task
from flask import current_app

from pagespeed_analyzer.errors import StorageError
from pagespeed_analyzer.services.job_store import get_job_store
from pagespeed_analyzer.services.runner import run_analysis

logger = logging.getLogger(__name__)


@shared_task(
    name="analysis.run",
    autoretry_for=(StorageError,),
    retry_backoff=True,
    max_retries=5,
)
def run_analysis_task(job_id: int, url: str, device: str = "desktop"):
    # analysis failures are recorded on the job; only an unreachable store retries
    return run_analysis(job_id, url, device)


@shared_task(name="analysis.prune")
def prune_jobs_task(keep=None):
    keep = keep if keep is not None else current_app.config.get("ANALYSIS_HISTORY_LIMIT", 1000)
    removed = get_job_store().prune(int(keep))
    logger.info("pruned %d finished analysis jobs (keep=%s)", removed, keep)
    return {"removed": removed, "keep": keep}
