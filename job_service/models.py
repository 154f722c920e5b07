"""Data models for tracked command jobs."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

JOB_RUNNING = "running"
JOB_COMPLETED = "completed"

# Exit code recorded when the job could not be tracked (spawn failure, lost watcher).
# Real processes report 0..255, so a negative code is never mistaken for command output.
TRACKING_FAILURE_EXIT_CODE = -1


@dataclass
class Job:
    """One submitted shell command and its lifecycle."""
    id: str
    command: str
    cwd: str
    notify: bool = False
    pid: Optional[int] = None
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: str = JOB_RUNNING
    exit_code: Optional[int] = None
    duration: Optional[int] = None
    script_path: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status == JOB_COMPLETED

    def elapsed_ms(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        return max(0, int((now - self.start_time).total_seconds() * 1000))

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to dictionary for JSON serialization."""
        result = {}
        for key, value in self.__dict__.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
            else:
                result[key] = value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        """Create Job from dictionary."""
        data = dict(data)
        if data.get("start_time"):
            data["start_time"] = datetime.fromisoformat(data["start_time"])
        return cls(**data)
