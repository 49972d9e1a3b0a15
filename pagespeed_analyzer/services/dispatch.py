# pagespeed_analyzer/services/dispatch.py
"""
Hand-off from the submit request to the runner.

The request handler only enqueues; the analysis runs in a Celery worker or in
a background thread, never on the request's call stack.
"""
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor

from celery import Celery
from flask import current_app

logger = logging.getLogger(__name__)


class Dispatcher:
    def dispatch(self, job_id: int, url: str, device: str) -> str:
        """Schedule the job and return a task id."""
        raise NotImplementedError

    def shutdown(self, wait: bool = True) -> None:
        pass


class CeleryDispatcher(Dispatcher):
    """Publishes ``analysis.run`` to the broker; the worker imports the task itself."""

    TASK_NAME = "analysis.run"

    def __init__(self, broker_url: str, result_backend: str = None):
        self.celery = Celery("pagespeed_analyzer", broker=broker_url, backend=result_backend or broker_url)
        self.celery.conf.update(task_serializer="json", accept_content=["json"], result_serializer="json")

    def dispatch(self, job_id: int, url: str, device: str) -> str:
        async_res = self.celery.send_task(self.TASK_NAME, args=[job_id, url, device])
        return async_res.id


class ThreadDispatcher(Dispatcher):
    """Runs jobs on a bounded thread pool, each inside its own app context."""

    def __init__(self, app, max_workers: int = 4):
        self.app = app
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="analysis")

    def dispatch(self, job_id: int, url: str, device: str) -> str:
        task_id = f"thread-{uuid.uuid4()}"
        self._executor.submit(self._run, job_id, url, device, task_id)
        return task_id

    def _run(self, job_id: int, url: str, device: str, task_id: str):
        from pagespeed_analyzer.services.runner import run_analysis

        with self.app.app_context():
            try:
                return run_analysis(job_id, url, device)
            except Exception:
                # only store failures get here; the job cannot be updated
                logger.exception("runner %s crashed for job %s", task_id, job_id, extra={"job_id": job_id})
                raise

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def build_dispatcher(app) -> Dispatcher:
    kind = (app.config.get("ANALYSIS_DISPATCHER") or "celery").lower()
    if kind == "celery":
        return CeleryDispatcher(
            app.config.get("CELERY_BROKER_URL"),
            app.config.get("CELERY_RESULT_BACKEND"),
        )
    if kind == "thread":
        return ThreadDispatcher(app, max_workers=app.config.get("ANALYSIS_MAX_WORKERS", 4))
    raise ValueError(f"Unknown ANALYSIS_DISPATCHER: {kind}")


def init_app(app) -> None:
    app.extensions["analysis_dispatcher"] = build_dispatcher(app)


def get_dispatcher() -> Dispatcher:
    return current_app.extensions["analysis_dispatcher"]
