import json
import re

import pytest

from job_service.exceptions import InvalidRequestError, JobNotFoundError, StorageError
from job_service.models import JOB_COMPLETED, JOB_RUNNING
from job_service.store import JobStore, new_job_id


def test_create_job_writes_metadata_and_empty_output(store):
    job = store.create_job("echo hi", "/tmp", notify=True)

    assert job.status == JOB_RUNNING
    assert job.exit_code is None
    assert job.duration is None
    assert job.pid is None
    assert store.output_path(job.id).read_bytes() == b""

    data = json.loads(store.metadata_path(job.id).read_text(encoding="utf-8"))
    assert data["id"] == job.id
    assert data["command"] == "echo hi"
    assert data["cwd"] == "/tmp"
    assert data["status"] == "running"
    assert data["notify"] is True


def test_jobs_dir_created_lazily(tmp_path):
    jobs_dir = tmp_path / "nested" / "jobs"
    store = JobStore(jobs_dir)
    assert not jobs_dir.exists()
    assert store.list_jobs() == []

    store.create_job("true", "/tmp")
    assert jobs_dir.is_dir()


def test_create_job_storage_failure(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x", encoding="utf-8")
    store = JobStore(blocker / "jobs")

    with pytest.raises(StorageError):
        store.create_job("true", "/tmp")


def test_job_ids_are_unique_and_time_based():
    ids = {new_job_id() for _ in range(200)}
    assert len(ids) == 200
    for job_id in ids:
        assert re.match(r"^\d{8}-\d{6}-[0-9a-f]{8}$", job_id)


def test_read_job_not_found(store):
    with pytest.raises(JobNotFoundError):
        store.read_job("20250101-000000-deadbeef")


def test_read_job_rejects_path_traversal(store):
    with pytest.raises(InvalidRequestError):
        store.read_job("../etc/passwd")
    with pytest.raises(InvalidRequestError):
        store.read_job("   ")


def test_read_output_missing_artifact_is_empty(store):
    job = store.create_job("true", "/tmp")
    store.output_path(job.id).unlink()
    assert store.read_output(job.id) == ""


def test_append_output_accumulates(store):
    job = store.create_job("true", "/tmp")
    store.append_output(job.id, b"first\n")
    store.append_output(job.id, b"second\n")
    assert store.read_output(job.id) == "first\nsecond\n"


def test_complete_job_only_moves_forward(store):
    job = store.create_job("true", "/tmp")

    completed = store.complete_job(job.id, 3, 120)
    assert completed.status == JOB_COMPLETED
    assert completed.exit_code == 3
    assert completed.duration == 120

    again = store.complete_job(job.id, 0, 999)
    assert again.exit_code == 3
    assert store.read_job(job.id).duration == 120


def test_complete_job_leaves_no_temp_files(store):
    job = store.create_job("true", "/tmp")
    store.complete_job(job.id, 0, 1)

    leftovers = [p.name for p in store.jobs_dir.iterdir() if p.name.endswith(".tmp")]
    assert leftovers == []


def test_delete_job_is_idempotent(store):
    job = store.create_job("true", "/tmp")
    store.delete_job(job.id)
    store.delete_job(job.id)

    assert not store.metadata_path(job.id).exists()
    assert not store.output_path(job.id).exists()
    with pytest.raises(JobNotFoundError):
        store.read_job(job.id)


def test_list_jobs_newest_first_and_skips_corrupt(store):
    first = store.create_job("echo 1", "/tmp")
    second = store.create_job("echo 2", "/tmp")
    (store.jobs_dir / "broken.json").write_text("{not json", encoding="utf-8")

    jobs = store.list_jobs()
    assert [job.id for job in jobs] == [second.id, first.id]


def test_corrupt_metadata_is_storage_error(store):
    (store.jobs_dir).mkdir(parents=True, exist_ok=True)
    store.metadata_path("garbled").write_text("[]", encoding="utf-8")
    with pytest.raises(StorageError):
        store.read_job("garbled")


def test_read_output_holds_back_partial_utf8_while_running(store):
    job = store.create_job("true", "/tmp")
    store.append_output(job.id, b"caf\xc3")
    partial = store.read_output(job.id, complete=False)
    store.append_output(job.id, b"\xa9\n")
    final = store.read_output(job.id)

    assert partial == "caf"
    assert final.startswith(partial)
    assert final == "café\n"


def test_read_output_complete_replaces_truncated_utf8(store):
    job = store.create_job("true", "/tmp")
    store.append_output(job.id, b"caf\xc3")
    assert store.read_output(job.id) == "caf\ufffd"


def test_complete_job_after_delete_does_not_resurrect(store, monkeypatch):
    job = store.create_job("true", "/tmp")
    original_read = store.read_job

    def read_then_delete(job_id):
        found = original_read(job_id)
        store.delete_job(job_id)
        return found

    monkeypatch.setattr(store, "read_job", read_then_delete)
    with pytest.raises(JobNotFoundError):
        store.complete_job(job.id, 0, 10)

    assert not store.metadata_path(job.id).exists()
    assert not store.output_path(job.id).exists()


def test_complete_job_racing_delete_during_save(store, monkeypatch):
    job = store.create_job("true", "/tmp")
    original_save = store.save_job

    def save_then_delete(saved):
        original_save(saved)
        store.delete_job(saved.id)

    monkeypatch.setattr(store, "save_job", save_then_delete)
    with pytest.raises(JobNotFoundError):
        store.complete_job(job.id, 0, 10)

    assert not store.metadata_path(job.id).exists()
    assert not store.output_path(job.id).exists()
    assert store.list_jobs() == []
