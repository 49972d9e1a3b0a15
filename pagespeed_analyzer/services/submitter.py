# pagespeed_analyzer/services/submitter.py
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from urllib.parse import urlparse

from sqlalchemy.exc import SQLAlchemyError

from pagespeed_analyzer.errors import DispatchError, StorageError, ValidationError
from pagespeed_analyzer.models import db
from pagespeed_analyzer.models.job import AnalysisJob, JobStatus
from pagespeed_analyzer.models.project import Application, Environment, Project
from pagespeed_analyzer.services.dispatch import get_dispatcher
from pagespeed_analyzer.services.job_store import get_job_store

logger = logging.getLogger(__name__)

DEVICES = ("desktop", "mobile")
DEFAULT_DEVICE = "desktop"


@dataclass(frozen=True)
class AnalysisRequest:
    url: str
    device: str = DEFAULT_DEVICE
    project_id: Optional[int] = None
    application_id: Optional[int] = None
    environment_id: Optional[int] = None

    def provenance(self) -> dict:
        return {
            "project_id": self.project_id,
            "application_id": self.application_id,
            "environment_id": self.environment_id,
        }


def is_absolute_url(value: Any) -> bool:
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        parsed = urlparse(value.strip())
        hostname = parsed.hostname
    except ValueError:
        # e.g. an unbalanced IPv6 bracket
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc) and bool(hostname)


def _optional_id(payload: dict, key: str) -> Optional[int]:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"'{key}' must be a positive integer", details={"field": key})
    return value


def _load(model, obj_id: int, field: str, label: str):
    try:
        obj = db.session.get(model, obj_id)
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError(f"Could not read {label.lower()}", details=str(e)) from e
    if obj is None:
        raise ValidationError(f"{label} {obj_id} does not exist", details={"field": field})
    return obj


def _mismatch(field: str, given: int, expected: int):
    return ValidationError(
        f"'{field}' {given} does not match the registry ({expected})",
        details={"field": field},
    )


def _resolve_provenance(project_id, application_id, environment_id):
    """Check the registry ids exist and belong together; fill in the parents."""
    env = None
    if environment_id is not None:
        env = _load(Environment, environment_id, "environmentId", "Environment")
        if application_id is not None and application_id != env.application_id:
            raise _mismatch("applicationId", application_id, env.application_id)
        application_id = env.application_id

    if application_id is not None:
        application = _load(Application, application_id, "applicationId", "Application")
        if project_id is not None and project_id != application.project_id:
            raise _mismatch("projectId", project_id, application.project_id)
        project_id = application.project_id

    if project_id is not None:
        _load(Project, project_id, "projectId", "Project")

    return project_id, application_id, env


def validate_analysis_request(payload: Any) -> AnalysisRequest:
    """
    Check a submit body before anything is written.

    Accepts ``{url, device?}``; ``environmentId`` may stand in for ``url``,
    in which case the environment's URL is used. Registry ids must exist and
    belong to each other; missing parents are filled in from the children.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    device = payload.get("device")
    if device is None:
        device = DEFAULT_DEVICE
    if device not in DEVICES:
        raise ValidationError(
            f"'device' must be one of {', '.join(DEVICES)}", details={"field": "device"}
        )

    project_id = _optional_id(payload, "projectId")
    application_id = _optional_id(payload, "applicationId")
    environment_id = _optional_id(payload, "environmentId")

    project_id, application_id, env = _resolve_provenance(project_id, application_id, environment_id)

    url = payload.get("url")
    if url is None and env is not None:
        url = env.url

    if url is None:
        raise ValidationError("Missing 'url'", details={"field": "url"})
    if not is_absolute_url(url):
        raise ValidationError("'url' must be an absolute http(s) URL", details={"field": "url"})

    return AnalysisRequest(
        url=url.strip(),
        device=device,
        project_id=project_id,
        application_id=application_id,
        environment_id=environment_id,
    )


def submit_analysis(payload: Any) -> AnalysisJob:
    """Validate, create the pending job, hand it to the runner. Does not wait."""
    req = validate_analysis_request(payload)

    store = get_job_store()
    job = store.create(req.url, req.device, **req.provenance())
    logger.info("analysis job %s created for %s (%s)", job.id, req.url, req.device, extra={"job_id": job.id})

    try:
        task_id = get_dispatcher().dispatch(job.id, req.url, req.device)
    except Exception as e:
        logger.exception("could not queue analysis job %s", job.id, extra={"job_id": job.id})
        store.update(
            job.id,
            status=JobStatus.FAILED,
            error_message="Analysis could not be queued",
            completed_at=datetime.utcnow(),
        )
        raise DispatchError("Could not queue the analysis", details=str(e)) from e

    return store.update(job.id, task_id=task_id) or job
