# pagespeed_analyzer/client/http.py
from typing import Any, Dict, Optional

import requests

from pagespeed_analyzer.errors import ClientError, NotFoundError, ValidationError


def _error_message(resp) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        return body.get("error") or body.get("message") or f"HTTP {resp.status_code}"
    return f"HTTP {resp.status_code}"


class AnalysisClient:
    """Thin wrapper over the submit/poll endpoints."""

    def __init__(self, base_url: str, session: Optional[requests.Session] = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise ClientError(f"{method} {path} failed: {e}") from e

        if resp.status_code == 400:
            raise ValidationError(_error_message(resp))
        if resp.status_code == 404:
            raise NotFoundError(_error_message(resp))
        if not resp.ok:
            raise ClientError(f"{method} {path} returned {resp.status_code}: {_error_message(resp)}")

        try:
            return resp.json()
        except ValueError as e:
            raise ClientError(f"{method} {path} returned invalid JSON") from e

    def submit(self, url: str, device: str = "desktop") -> int:
        data = self._request("POST", "/api/analyze", json={"url": url, "device": device})
        try:
            return data["jobId"]
        except (KeyError, TypeError) as e:
            raise ClientError("Submit response has no jobId") from e

    def get_job(self, job_id) -> Dict[str, Any]:
        return self._request("GET", f"/api/analysis/{job_id}")
