"""FastAPI application for the background command runner."""

from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from loguru import logger
from pydantic import BaseModel, Field

from .exceptions import InvalidRequestError, JobNotFoundError, StorageError
from .models import JOB_RUNNING, Job
from .runner import JobRunner
from .settings import Settings
from .store import JobStore


# Request/Response models
class SubmitCommandRequest(BaseModel):
    command: Optional[str] = Field(default=None, description="Shell command text, may span several lines")
    cwd: Optional[str] = Field(default=None, description="Working directory; defaults to the configured one")
    notify: bool = Field(default=False, description="Send a notification when the command finishes")


class SubmitCommandResponse(BaseModel):
    job_id: str
    pid: Optional[int] = None


class PollResponse(BaseModel):
    job_id: str
    status: str
    exit_code: Optional[int] = None
    duration: Optional[int] = None
    output: str
    command: str
    cwd: str
    start_time: str
    error: Optional[str] = None


class JobSummary(BaseModel):
    job_id: str
    command: str
    cwd: str
    status: str
    pid: Optional[int] = None
    exit_code: Optional[int] = None
    duration: Optional[int] = None
    start_time: str
    notify: bool = False
    error: Optional[str] = None


class CleanupResponse(BaseModel):
    success: bool


def _summary(job: Job) -> JobSummary:
    return JobSummary(
        job_id=job.id,
        command=job.command,
        cwd=job.cwd,
        status=job.status,
        pid=job.pid,
        exit_code=job.exit_code,
        duration=job.duration,
        start_time=job.start_time.isoformat(),
        notify=job.notify,
        error=job.error,
    )


def _require_job_id(job_id: Optional[str]) -> str:
    if not job_id or not job_id.strip():
        raise HTTPException(status_code=400, detail="job_id is required")
    return job_id.strip()


def _runner(request: Request) -> JobRunner:
    return request.app.state.runner


def create_app(settings: Optional[Settings] = None, runner: Optional[JobRunner] = None) -> FastAPI:
    """Build the API around an explicitly configured runner."""
    settings = settings or Settings.from_env()
    runner = runner or JobRunner(JobStore(settings.jobs_dir), settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            runner.recover_orphans()
        except StorageError:
            logger.exception("Orphaned job recovery failed")
        logger.info("Job service ready, jobs directory: {}", runner.store.jobs_dir)
        yield

    app = FastAPI(
        title="gitmob job service",
        description="Run shell commands in the background and poll their progress",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.runner = runner

    @app.post("/api/cli", response_model=SubmitCommandResponse)
    async def submit_command(request: Request, body: Optional[SubmitCommandRequest] = None):
        """Start a command; responds before the command finishes."""
        body = body or SubmitCommandRequest()
        try:
            job = _runner(request).submit(body.command, cwd=body.cwd, notify=body.notify)
        except InvalidRequestError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        except StorageError as exc:
            raise HTTPException(status_code=500, detail=str(exc))
        return SubmitCommandResponse(job_id=job.id, pid=job.pid)

    @app.get("/api/cli", response_model=PollResponse)
    async def poll_job(request: Request, job_id: Optional[str] = Query(None, description="Job to poll")):
        """Current status merged with the output captured so far."""
        job_id = _require_job_id(job_id)
        runner = _runner(request)
        try:
            job = runner.get_job(job_id)
            output = runner.store.read_output(job_id, complete=job.is_terminal)
        except InvalidRequestError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        except JobNotFoundError:
            raise HTTPException(status_code=404, detail="Job not found")
        except StorageError as exc:
            raise HTTPException(status_code=500, detail=str(exc))
        return PollResponse(
            job_id=job.id,
            status=job.status,
            exit_code=job.exit_code,
            duration=job.duration,
            output=output,
            command=job.command,
            cwd=job.cwd,
            start_time=job.start_time.isoformat(),
            error=job.error,
        )

    @app.delete("/api/cli", response_model=CleanupResponse)
    async def cleanup_job(request: Request, job_id: Optional[str] = Query(None, description="Job to remove")):
        """Remove a job's artifacts; succeeds for unknown ids too."""
        job_id = _require_job_id(job_id)
        try:
            _runner(request).cleanup(job_id)
        except InvalidRequestError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        except StorageError as exc:
            raise HTTPException(status_code=500, detail=str(exc))
        return CleanupResponse(success=True)

    @app.get("/api/cli/jobs", response_model=List[JobSummary])
    async def list_jobs(
        request: Request,
        status: Optional[str] = Query(None, description="Filter by status"),
        limit: Optional[int] = Query(None, ge=1, le=1000, description="Limit number of results"),
    ):
        """List jobs newest first."""
        try:
            jobs = _runner(request).store.list_jobs()
        except StorageError as exc:
            raise HTTPException(status_code=500, detail=str(exc))

        if status:
            jobs = [job for job in jobs if job.status == status]
        if limit:
            jobs = jobs[:limit]
        return [_summary(job) for job in jobs]

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        try:
            jobs = _runner(request).store.list_jobs()
        except StorageError as exc:
            raise HTTPException(status_code=500, detail=str(exc))
        running = len([job for job in jobs if job.status == JOB_RUNNING])
        return {
            "status": "ok",
            "running_jobs": running,
            "total_jobs": len(jobs),
        }

    return app
