"""Configuration settings for the job service."""

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Directory settings
JOBS_DIR = Path.home() / ".local" / "share" / "gitmob" / "cli-jobs"
SCRIPTS_DIR = Path(tempfile.gettempdir()) / "gitmob-cli-scripts"

# Execution settings
DEFAULT_SHELL = "bash"
DEFAULT_CWD = Path.home()

# Notification settings
DEFAULT_NOTIFICATION_CHANNEL = "command"
DEFAULT_NOTIFY_COMMAND = "notify-send"
NOTIFY_TIMEOUT = 10
NOTIFY_PREVIEW_CHARS = 50

# Server settings
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3031


@dataclass(frozen=True)
class Settings:
    """Resolved configuration, built once at startup and passed to collaborators."""

    jobs_dir: Path = JOBS_DIR
    scripts_dir: Path = SCRIPTS_DIR
    shell: str = DEFAULT_SHELL
    default_cwd: Path = DEFAULT_CWD
    notification_channel: str = DEFAULT_NOTIFICATION_CHANNEL
    notify_command: str = DEFAULT_NOTIFY_COMMAND
    notify_webhook_url: Optional[str] = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    @classmethod
    def from_env(cls) -> "Settings":
        """Read overrides from the environment (call after load_dotenv)."""
        port = os.getenv("JOB_SERVICE_PORT")
        try:
            resolved_port = int(port) if port else DEFAULT_PORT
        except ValueError as exc:
            raise ValueError(f"JOB_SERVICE_PORT must be an integer, got {port!r}") from exc
        return cls(
            jobs_dir=Path(os.getenv("JOB_SERVICE_JOBS_DIR") or JOBS_DIR).expanduser(),
            scripts_dir=Path(os.getenv("JOB_SERVICE_SCRIPTS_DIR") or SCRIPTS_DIR).expanduser(),
            shell=os.getenv("JOB_SERVICE_SHELL") or DEFAULT_SHELL,
            default_cwd=Path(os.getenv("JOB_SERVICE_DEFAULT_CWD") or DEFAULT_CWD).expanduser(),
            notification_channel=(os.getenv("NOTIFICATION_CHANNEL") or DEFAULT_NOTIFICATION_CHANNEL).strip().lower(),
            notify_command=os.getenv("NOTIFY_COMMAND") or DEFAULT_NOTIFY_COMMAND,
            notify_webhook_url=os.getenv("NOTIFY_WEBHOOK_URL") or None,
            host=os.getenv("JOB_SERVICE_HOST") or DEFAULT_HOST,
            port=resolved_port,
        )
