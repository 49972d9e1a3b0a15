# pagespeed_analyzer/routes/analysis_routes.py
from flask import Blueprint, jsonify, request

from pagespeed_analyzer.errors import NotFoundError, ValidationError
from pagespeed_analyzer.services.job_store import get_job_store
from pagespeed_analyzer.services.report import build_integrated_report
from pagespeed_analyzer.services.submitter import submit_analysis

bp = Blueprint("analysis", __name__, url_prefix="/api")

MAX_LIST_LIMIT = 100


def _parse_limit(raw, default: int = 10) -> int:
    if raw in (None, ""):
        return default
    try:
        limit = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("'limit' must be an integer")
    if limit < 1 or limit > MAX_LIST_LIMIT:
        raise ValidationError(f"'limit' must be between 1 and {MAX_LIST_LIMIT}")
    return limit


def _get_job_or_404(job_id: int):
    job = get_job_store().get(job_id)
    if job is None:
        raise NotFoundError("Analysis not found", details={"job_id": job_id})
    return job


@bp.post("/analyze")
def analyze():
    """
    Analysis: submit a job
    Returns as soon as the job exists; poll /api/analysis/{jobId} for the outcome.
    ---
    tags:
      - Analysis
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            url:
              type: string
              description: Absolute http(s) URL to analyze.
              example: "https://example.com"
            device:
              type: string
              enum: [desktop, mobile]
              default: desktop
            environmentId:
              type: integer
              description: Use this environment's URL when 'url' is omitted.
          example:
            url: "https://example.com"
            device: "desktop"
    responses:
      200:
        description: Job created
        schema:
          type: object
          properties:
            jobId: {type: integer, example: 1}
      400:
        description: Invalid request
      500:
        description: Store or queue unavailable
    """
    job = submit_analysis(request.get_json(silent=True))
    return jsonify({"jobId": job.id}), 200


@bp.get("/analysis/<int:job_id>")
def get_analysis(job_id: int):
    """
    Analysis: current state of a job
    ---
    tags:
      - Analysis
    parameters:
      - in: path
        name: job_id
        required: true
        type: integer
        example: 1
    responses:
      200:
        description: Job in any state (pending, completed, failed)
      404:
        description: Unknown job
    """
    return jsonify(_get_job_or_404(job_id).to_dict()), 200


@bp.get("/analyses")
def list_analyses():
    """
    Analysis: most recent jobs, newest first
    ---
    tags:
      - Analysis
    parameters:
      - in: query
        name: limit
        required: false
        type: integer
        default: 10
        minimum: 1
        maximum: 100
    responses:
      200:
        description: OK
      400:
        description: Invalid limit
    """
    limit = _parse_limit(request.args.get("limit"))
    jobs = get_job_store().list(limit)
    return jsonify([job.to_dict() for job in jobs]), 200


@bp.get("/report/<int:job_id>")
def get_report(job_id: int):
    """
    Analysis: integrated frontend/backend report of a completed job
    ---
    tags:
      - Analysis
    parameters:
      - in: path
        name: job_id
        required: true
        type: integer
        example: 1
    responses:
      200:
        description: OK
      404:
        description: Unknown job
      409:
        description: Job not completed
    """
    job = _get_job_or_404(job_id)
    return jsonify(build_integrated_report(job)), 200
