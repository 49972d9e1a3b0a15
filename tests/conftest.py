import os
import time
from urllib.parse import urlparse

import pytest
import requests

from pagespeed_analyzer import create_app
from pagespeed_analyzer.client.http import AnalysisClient
from pagespeed_analyzer.models import db as _db
from pagespeed_analyzer.services.dispatch import Dispatcher


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    os.environ["FLASK_ENV"] = "testing"
    # a file, not :memory:, so runner threads see the same database
    db_path = tmp_path_factory.mktemp("db") / "analyzer.db"
    app = create_app("testing", overrides={"SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}"})
    with app.app_context():
        _db.create_all()
        yield app
        app.extensions["analysis_dispatcher"].shutdown()
        _db.drop_all()


@pytest.fixture(autouse=True)
def clean_db(app):
    _db.session.rollback()
    for table in reversed(_db.metadata.sorted_tables):
        _db.session.execute(table.delete())
    _db.session.commit()
    _db.session.remove()
    yield


@pytest.fixture()
def client(app):
    return app.test_client()


class RecordingDispatcher(Dispatcher):
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def dispatch(self, job_id, url, device):
        if self.error:
            raise self.error
        self.calls.append((job_id, url, device))
        return "fake-task-id"


@pytest.fixture()
def dispatcher(app, monkeypatch):
    # keeps jobs pending: nothing runs them
    d = RecordingDispatcher()
    monkeypatch.setitem(app.extensions, "analysis_dispatcher", d)
    return d


class FlaskSession:
    """requests.Session stand-in that routes calls to the Flask test client."""

    def __init__(self, test_client):
        self.test_client = test_client

    def request(self, method, url, timeout=None, **kwargs):
        rv = self.test_client.open(urlparse(url).path, method=method, **kwargs)
        resp = requests.Response()
        resp.status_code = rv.status_code
        resp._content = rv.data
        resp.headers["Content-Type"] = rv.content_type
        resp.url = url
        return resp


@pytest.fixture()
def api_client(client):
    return AnalysisClient("http://testserver", session=FlaskSession(client))


@pytest.fixture()
def wait_for_terminal(client):
    def _wait(job_id, timeout=10.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            job = client.get(f"/api/analysis/{job_id}").get_json()
            if job["status"] != "pending":
                return job
            time.sleep(0.05)
        raise AssertionError(f"job {job_id} still pending after {timeout}s")
    return _wait
