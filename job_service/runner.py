"""Run submitted shell commands as detached background processes."""

import asyncio
import functools
import os
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import BinaryIO, Callable, Dict, List, Optional

from loguru import logger

from .exceptions import InvalidRequestError, JobNotFoundError, JobSpawnError, StorageError
from .models import JOB_RUNNING, TRACKING_FAILURE_EXIT_CODE, Job
from .notify import format_job_message, notify_in_background, notify_user
from .settings import Settings
from .store import JobStore

LOST_PROCESS_ERROR = "Process exited while no runner was tracking it; exit status unknown"


def exit_code_from_returncode(returncode: Optional[int]) -> int:
    """Map a Popen return code to a shell-style exit code.

    Popen reports death by signal N as -N; shells report it as 128 + N.
    A missing code with no signal counts as success.
    """
    if returncode is None:
        return 0
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except (ProcessLookupError, PermissionError):
        return False
    return True


class JobRunner:
    """Spawns one detached process per job and records its completion in the store.

    Job state lives only in the store. The runner keeps an in-memory record of
    the watchers it owns so it can tell its own running jobs apart from jobs
    left behind by an earlier server process.
    """

    def __init__(
        self,
        store: JobStore,
        settings: Settings,
        notifier: Optional[Callable[[str], bool]] = None,
    ):
        self.store = store
        self.settings = settings
        self.notifier = notifier or functools.partial(notify_user, settings=settings)
        self._lock = threading.Lock()
        # job_id -> watcher thread (None while the process is being spawned)
        self._active: Dict[str, Optional[threading.Thread]] = {}

    def submit(self, command: Optional[str], cwd: Optional[str] = None, notify: bool = False) -> Job:
        """Start `command` in the background and return its job without waiting for it."""
        if not command or not command.strip():
            raise InvalidRequestError("command", "command must be a non-empty string")
        working_dir = str(Path(cwd).expanduser().resolve()) if cwd else str(self.settings.default_cwd)

        script_path = self._write_script(command)
        try:
            job = self.store.create_job(command, working_dir, notify, script_path=str(script_path))
        except StorageError:
            self._remove_script(script_path)
            raise
        with self._lock:
            self._active[job.id] = None

        try:
            process, output = self._spawn(job, script_path)
        except JobSpawnError as exc:
            return self._resolve_spawn_failure(job, script_path, exc)

        job.pid = process.pid
        try:
            self.store.save_job(job)
        except StorageError:
            logger.exception("Could not record pid {} for job {}", process.pid, job.id)
        logger.info("Job {} started with PID {} in {}", job.id, job.pid, job.cwd)

        watcher = threading.Thread(
            target=self._watch,
            args=(job, process, output, script_path),
            name=f"job-watch-{job.id}",
            daemon=True,
        )
        with self._lock:
            self._active[job.id] = watcher
        watcher.start()
        return job

    def _write_script(self, command: str) -> Path:
        """Write the command text verbatim into an executable temp script."""
        scripts_dir = self.settings.scripts_dir
        try:
            scripts_dir.mkdir(parents=True, exist_ok=True)
            fd, path = tempfile.mkstemp(prefix="job-", suffix=".sh", dir=scripts_dir)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(command)
            os.chmod(path, 0o700)
        except OSError as exc:
            raise StorageError("write command script in", scripts_dir, exc) from exc
        return Path(path)

    @staticmethod
    def _remove_script(script_path: Optional[Path]) -> None:
        if not script_path:
            return
        try:
            Path(script_path).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to remove command script {}: {}", script_path, exc)

    def _spawn(self, job: Job, script_path: Path):
        try:
            output = self.store.open_output(job.id)
        except StorageError as exc:
            raise JobSpawnError(job.id, exc) from exc
        try:
            process = subprocess.Popen(
                [self.settings.shell, str(script_path)],
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=subprocess.STDOUT,
                cwd=job.cwd,
                # New session: the command survives the request and a server shutdown.
                start_new_session=True,
            )
        except OSError as exc:
            output.close()
            raise JobSpawnError(job.id, exc) from exc
        return process, output

    def _resolve_spawn_failure(self, job: Job, script_path: Path, exc: JobSpawnError) -> Job:
        logger.error("Job {} failed to start: {}", job.id, exc)
        try:
            self.store.append_output(job.id, f"{exc}\n".encode("utf-8"))
        except StorageError:
            logger.exception("Could not record spawn failure output for job {}", job.id)
        self._remove_script(script_path)
        try:
            completed = self.store.complete_job(
                job.id,
                TRACKING_FAILURE_EXIT_CODE,
                job.elapsed_ms(),
                error=str(exc),
            )
        finally:
            self._forget(job.id)
        if completed.notify:
            notify_in_background(format_job_message(completed), self.notifier)
        return completed

    def _watch(self, job: Job, process: subprocess.Popen, output: BinaryIO, script_path: Path) -> None:
        try:
            returncode = process.wait()
        finally:
            output.close()
            self._remove_script(script_path)

        exit_code = exit_code_from_returncode(returncode)
        try:
            completed = self.store.complete_job(job.id, exit_code, job.elapsed_ms())
        except JobNotFoundError:
            logger.info("Job {} was removed before it finished (exit code {})", job.id, exit_code)
            return
        except StorageError:
            logger.exception("Failed to record completion of job {}", job.id)
            return
        finally:
            self._forget(job.id)

        logger.info("Job {} completed with exit code {} in {} ms", job.id, completed.exit_code, completed.duration)
        if completed.notify:
            notify_in_background(format_job_message(completed), self.notifier)

    def _forget(self, job_id: str) -> None:
        with self._lock:
            self._active.pop(job_id, None)

    def is_tracking(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._active

    def reconcile(self, job: Job) -> Job:
        """Resolve a `running` job whose process is gone and that no watcher owns."""
        if job.is_terminal or self.is_tracking(job.id):
            return job
        if job.pid and _pid_alive(job.pid):
            return job
        logger.warning("Job {} (pid {}) is no longer running; marking completed", job.id, job.pid)
        self._remove_script(Path(job.script_path) if job.script_path else None)
        return self.store.complete_job(
            job.id,
            TRACKING_FAILURE_EXIT_CODE,
            job.elapsed_ms(),
            error=LOST_PROCESS_ERROR,
        )

    def recover_orphans(self) -> List[Job]:
        """Reconcile every stored `running` job; returns the ones that were resolved."""
        resolved = []
        for job in self.store.list_jobs():
            if job.status != JOB_RUNNING:
                continue
            updated = self.reconcile(job)
            if updated.is_terminal:
                resolved.append(updated)
        if resolved:
            logger.info("Resolved {} orphaned job(s)", len(resolved))
        return resolved

    def get_job(self, job_id: str) -> Job:
        return self.reconcile(self.store.read_job(job_id))

    def cleanup(self, job_id: str) -> None:
        self.store.delete_job(job_id)

    async def wait_for(self, job_id: str, timeout: float = 5.0, interval: float = 0.05) -> Job:
        """Poll the store until the job completes or `timeout` elapses.

        Returns the current Job (may still be running if the timeout was reached).
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        job = self.get_job(job_id)
        while not job.is_terminal and loop.time() < deadline:
            await asyncio.sleep(interval)
            job = self.get_job(job_id)
        return job
