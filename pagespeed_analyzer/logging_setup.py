import logging
import json
import time
from flask import has_request_context, request

QUIET_PATHS = ("/healthz", "/metrics")


class JsonRequestFormatter(logging.Formatter):
    def format(self, record):
        # health checks and scrapes are noise
        if has_request_context() and request.path in QUIET_PATHS:
            return ""

        data = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        if has_request_context():
            data.update({
                "method": request.method,
                "path": request.path,
                "remote_addr": request.headers.get("X-Forwarded-For", request.remote_addr),
                "request_id": request.headers.get("X-Request-ID"),
            })

        job_id = getattr(record, "job_id", None)
        if job_id is not None:
            data["job_id"] = job_id

        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(data, ensure_ascii=False)


def setup_logging(app=None, level=logging.INFO):
    root = logging.getLogger()
    root.setLevel(level)

    # avoid duplicated handlers on reload
    for h in list(root.handlers):
        root.removeHandler(h)

    h = logging.StreamHandler()
    h.setFormatter(JsonRequestFormatter())
    root.addHandler(h)

    if app:
        app.logger.handlers = [h]
        app.logger.setLevel(level)
        app.logger.propagate = False
