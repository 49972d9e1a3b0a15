# pagespeed_analyzer/errors.py
"""
Exception hierarchy shared by the API, the background runner and the client.

Server-side errors carry the HTTP status they map to; ``register_error_handlers``
turns them into the ``{"ok": false, "error": ...}`` body used by every route.
"""
import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class AnalyzerError(Exception):
    status_code = 500

    def __init__(self, message: str, details=None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        body = {"ok": False, "error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(AnalyzerError):
    status_code = 400


class NotFoundError(AnalyzerError):
    status_code = 404


class JobStateError(AnalyzerError):
    status_code = 409


class StorageError(AnalyzerError):
    status_code = 500


class DispatchError(AnalyzerError):
    status_code = 500


# --- client side ---

class ClientError(AnalyzerError):
    """Transport failure or unexpected HTTP status talking to the API."""


class AnalysisFailedError(AnalyzerError):
    """The job ran and the runner reported a failure."""

    def __init__(self, job_id, error_message: str):
        super().__init__(error_message or "Analysis failed")
        self.job_id = job_id
        self.error_message = error_message


class AnalysisTimeoutError(AnalyzerError, TimeoutError):
    """The poller gave up waiting; says nothing about the server-side job."""

    def __init__(self, job_id, attempts: int):
        super().__init__(f"Analysis {job_id} took too long (gave up after {attempts} polls)")
        self.job_id = job_id
        self.attempts = attempts


def register_error_handlers(app):
    @app.errorhandler(AnalyzerError)
    def _analyzer_error(exc: AnalyzerError):
        if exc.status_code >= 500:
            logger.error("request failed: %s", exc.message, exc_info=exc)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        return jsonify({"ok": False, "error": exc.description or exc.name}), exc.code

    @app.errorhandler(Exception)
    def _unexpected(exc: Exception):
        logger.exception("unhandled error")
        return jsonify({"ok": False, "error": "Internal server error"}), 500
