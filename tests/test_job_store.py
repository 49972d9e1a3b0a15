from datetime import datetime

import pytest

from pagespeed_analyzer.errors import JobStateError
from pagespeed_analyzer.models import JobStatus
from pagespeed_analyzer.services.job_store import MemoryJobStore, SQLAlchemyJobStore, build_job_store


@pytest.fixture(params=["sql", "memory"])
def store(request, app):
    if request.param == "sql":
        return SQLAlchemyJobStore()
    return MemoryJobStore(max_jobs=100)


def _complete(store, job_id, **result):
    return store.update(
        job_id,
        status=JobStatus.COMPLETED,
        result=result or {"performanceScore": 90},
        completed_at=datetime.utcnow(),
    )


def test_create_is_pending(store):
    job = store.create("https://example.com", "mobile")
    assert job.id is not None
    assert job.status == JobStatus.PENDING
    assert job.result is None and job.error_message is None

    fetched = store.get(job.id)
    assert fetched.url == "https://example.com"
    assert fetched.device == "mobile"
    assert fetched.status == JobStatus.PENDING


def test_ids_are_unique(store):
    ids = {store.create(f"https://example.com/{i}", "desktop").id for i in range(5)}
    assert len(ids) == 5


def test_get_unknown_returns_none(store):
    assert store.get(987654) is None


def test_update_unknown_returns_none(store):
    assert store.update(987654, status=JobStatus.FAILED, error_message="x") is None
    assert store.get(987654) is None


def test_complete_job(store):
    job = store.create("https://example.com", "desktop")
    _complete(store, job.id, performanceScore=77)

    done = store.get(job.id)
    assert done.status == JobStatus.COMPLETED
    assert done.result == {"performanceScore": 77}
    assert done.completed_at is not None
    assert done.to_dict()["result"] == {"performanceScore": 77}
    assert "errorMessage" not in done.to_dict()


def test_terminal_state_is_final(store):
    job = store.create("https://example.com", "desktop")
    _complete(store, job.id)

    with pytest.raises(JobStateError):
        store.update(job.id, status=JobStatus.FAILED, error_message="late")
    with pytest.raises(JobStateError):
        store.update(job.id, status=JobStatus.PENDING)

    assert store.get(job.id).status == JobStatus.COMPLETED


def test_failed_job_keeps_message(store):
    job = store.create("https://example.com", "desktop")
    store.update(job.id, status=JobStatus.FAILED, error_message="probe exploded")

    body = store.get(job.id).to_dict()
    assert body["status"] == "failed"
    assert body["errorMessage"] == "probe exploded"
    assert "result" not in body


def test_task_id_can_be_set_after_finish(store):
    job = store.create("https://example.com", "desktop")
    _complete(store, job.id)
    store.update(job.id, task_id="late-task")
    assert store.get(job.id).task_id == "late-task"


def test_rejects_unknown_fields_and_statuses(store):
    job = store.create("https://example.com", "desktop")
    with pytest.raises(ValueError):
        store.update(job.id, url="https://other.example")
    with pytest.raises(ValueError):
        store.update(job.id, status="running")
    assert store.get(job.id).status == JobStatus.PENDING


def test_list_newest_first(store):
    ids = [store.create(f"https://example.com/{i}", "desktop").id for i in range(4)]
    listed = [j.id for j in store.list(10)]
    assert listed == list(reversed(ids))
    assert [j.id for j in store.list(2)] == list(reversed(ids))[:2]


def test_prune_drops_oldest_finished_only(store):
    a = store.create("https://a.example", "desktop")
    b = store.create("https://b.example", "desktop")
    c = store.create("https://c.example", "desktop")
    _complete(store, a.id)
    _complete(store, c.id)

    a_id, b_id, c_id = a.id, b.id, c.id

    removed = store.prune(keep=1)

    # b is pending, so only the two finished ones may go
    assert removed == 2
    assert store.get(a_id) is None
    assert store.get(c_id) is None
    assert store.get(b_id).status == JobStatus.PENDING


def test_prune_under_limit_is_noop(store):
    store.create("https://a.example", "desktop")
    assert store.prune(keep=10) == 0
    assert len(store.list(10)) == 1


def test_memory_store_evicts_finished_jobs_beyond_capacity(app):
    store = MemoryJobStore(max_jobs=2)
    first = store.create("https://a.example", "desktop")
    _complete(store, first.id)
    store.create("https://b.example", "desktop")
    store.create("https://c.example", "desktop")

    assert store.get(first.id) is None
    assert len(store.list(10)) == 2


def test_memory_store_readers_keep_their_snapshot(app):
    store = MemoryJobStore()
    job = store.create("https://a.example", "desktop")
    held = store.get(job.id)
    _complete(store, job.id)

    assert held.status == JobStatus.PENDING
    assert store.get(job.id).status == JobStatus.COMPLETED


def test_build_job_store_from_config(app, monkeypatch):
    assert isinstance(build_job_store(app), SQLAlchemyJobStore)
    monkeypatch.setitem(app.config, "JOB_STORE", "memory")
    assert isinstance(build_job_store(app), MemoryJobStore)
    monkeypatch.setitem(app.config, "JOB_STORE", "redis")
    with pytest.raises(ValueError):
        build_job_store(app)


def test_completed_needs_result_and_failed_needs_message(store):
    job = store.create("https://example.com", "desktop")

    with pytest.raises(ValueError):
        store.update(job.id, status=JobStatus.COMPLETED)
    with pytest.raises(ValueError):
        store.update(job.id, status=JobStatus.COMPLETED, result=None)
    with pytest.raises(ValueError):
        store.update(job.id, status=JobStatus.FAILED)
    with pytest.raises(ValueError):
        store.update(job.id, status=JobStatus.FAILED, error_message="")

    assert store.get(job.id).status == JobStatus.PENDING


def test_result_and_message_only_with_matching_status(store):
    job = store.create("https://example.com", "desktop")

    with pytest.raises(ValueError):
        store.update(job.id, result={"performanceScore": 80})
    with pytest.raises(ValueError):
        store.update(job.id, status=JobStatus.FAILED, error_message="x", result={"a": 1})
    with pytest.raises(ValueError):
        store.update(job.id, status=JobStatus.COMPLETED, result={"a": 1}, error_message="x")

    pending = store.get(job.id)
    assert pending.status == JobStatus.PENDING
    assert pending.result is None and pending.error_message is None
