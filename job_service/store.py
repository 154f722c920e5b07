"""File-backed persistence for job metadata and captured output.

Each job owns two artifacts in the jobs directory, both named by its id:
`<job_id>.json` (metadata, rewritten atomically) and `<job_id>.log`
(combined stdout/stderr, appended to by the job's process).
"""

from __future__ import annotations

import codecs
import json
import re
import uuid
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, List, Optional

from loguru import logger

from .exceptions import InvalidRequestError, JobNotFoundError, StorageError
from .models import JOB_COMPLETED, Job
from .settings import JOBS_DIR

_JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def new_job_id() -> str:
    """Time-based id with a random suffix so concurrent submissions never collide."""
    return f"{datetime.now():%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:8]}"


def _atomic_write_json(path: Path, payload: dict) -> None:
    temp_path = path.parent / f".{path.name}.tmp"
    try:
        with open(temp_path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
        temp_path.replace(path)
    except Exception:
        try:
            temp_path.unlink(missing_ok=True)
        except OSError:
            pass
        raise


class JobStore:
    """Reads and writes job artifacts under a single jobs directory."""

    def __init__(self, jobs_dir: Optional[Path] = None):
        self.jobs_dir = Path(jobs_dir or JOBS_DIR)

    def _ensure_dir(self) -> None:
        try:
            self.jobs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError("create jobs directory", self.jobs_dir, exc) from exc

    @staticmethod
    def _check_id(job_id: str) -> str:
        normalized = (job_id or "").strip()
        if not normalized:
            raise InvalidRequestError("job_id", "job id is required")
        if not _JOB_ID_PATTERN.match(normalized):
            raise InvalidRequestError("job_id", "job id may only contain letters, digits, '-' and '_'")
        return normalized

    def metadata_path(self, job_id: str) -> Path:
        return self.jobs_dir / f"{self._check_id(job_id)}.json"

    def output_path(self, job_id: str) -> Path:
        return self.jobs_dir / f"{self._check_id(job_id)}.log"

    def create_job(
        self,
        command: str,
        cwd: str,
        notify: bool = False,
        script_path: Optional[str] = None,
    ) -> Job:
        """Allocate an id and write the initial `running` record plus an empty output file."""
        self._ensure_dir()
        job = Job(id=new_job_id(), command=command, cwd=cwd, notify=notify, script_path=script_path)
        metadata_path = self.metadata_path(job.id)
        output_path = self.output_path(job.id)
        try:
            output_path.touch(exist_ok=False)
            _atomic_write_json(metadata_path, job.to_dict())
        except OSError as exc:
            for path in (metadata_path, output_path):
                try:
                    path.unlink(missing_ok=True)
                except OSError:
                    pass
            raise StorageError("create job", metadata_path, exc) from exc
        logger.debug("Created job {} in {}", job.id, self.jobs_dir)
        return job

    def save_job(self, job: Job) -> None:
        """Replace the metadata record in one write."""
        self._ensure_dir()
        path = self.metadata_path(job.id)
        try:
            _atomic_write_json(path, job.to_dict())
        except OSError as exc:
            raise StorageError("write job metadata", path, exc) from exc

    def open_output(self, job_id: str) -> BinaryIO:
        """Open the output artifact for appending; the handle is given to the job's process."""
        self._ensure_dir()
        path = self.output_path(job_id)
        try:
            return open(path, "ab")
        except OSError as exc:
            raise StorageError("open job output", path, exc) from exc

    def append_output(self, job_id: str, data: bytes) -> None:
        with self.open_output(job_id) as handle:
            handle.write(data)

    def read_job(self, job_id: str) -> Job:
        path = self.metadata_path(job_id)
        try:
            with open(path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except FileNotFoundError as exc:
            raise JobNotFoundError(job_id) from exc
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError("read job metadata", path, exc) from exc
        try:
            return Job.from_dict(data)
        except (TypeError, ValueError) as exc:
            raise StorageError("parse job metadata", path, exc) from exc

    def read_output(self, job_id: str, complete: bool = True) -> str:
        """Return output captured so far; empty when the artifact does not exist yet.

        While a job is still running (`complete=False`) a trailing partial UTF-8
        sequence is held back, so output read mid-run is a prefix of the final output.
        """
        path = self.output_path(job_id)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            return ""
        except OSError as exc:
            raise StorageError("read job output", path, exc) from exc
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        return decoder.decode(data, final=complete)

    def complete_job(
        self,
        job_id: str,
        exit_code: int,
        duration: int,
        error: Optional[str] = None,
    ) -> Job:
        """Move a job to `completed`. A job that already completed is returned unchanged."""
        job = self.read_job(job_id)
        if job.status == JOB_COMPLETED:
            logger.warning("Job {} already completed with exit code {}; ignoring update", job_id, job.exit_code)
            return job
        job.status = JOB_COMPLETED
        job.exit_code = exit_code
        job.duration = duration
        if error:
            job.error = error
        if not self.metadata_path(job_id).exists():
            raise JobNotFoundError(job_id)
        self.save_job(job)
        if not self.output_path(job_id).exists():
            # Deleted while completing: drop the record just written.
            self.metadata_path(job_id).unlink(missing_ok=True)
            raise JobNotFoundError(job_id)
        return job

    def delete_job(self, job_id: str) -> None:
        """Remove both artifacts; missing files are not an error.

        Output goes first so a concurrent `complete_job` can tell the job is gone.
        """
        for path in (self.output_path(job_id), self.metadata_path(job_id)):
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                raise StorageError("delete job artifact", path, exc) from exc

    def list_jobs(self) -> List[Job]:
        """All readable jobs, newest first."""
        if not self.jobs_dir.exists():
            return []
        try:
            paths = sorted(self.jobs_dir.glob("*.json"))
        except OSError as exc:
            raise StorageError("list jobs in", self.jobs_dir, exc) from exc
        jobs = []
        for path in paths:
            try:
                jobs.append(self.read_job(path.stem))
            except (StorageError, JobNotFoundError, InvalidRequestError) as exc:
                logger.warning("Skipping unreadable job metadata {}: {}", path, exc)
        return sorted(jobs, key=lambda job: job.start_time, reverse=True)
