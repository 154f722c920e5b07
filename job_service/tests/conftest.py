import sys
import threading
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from job_service.runner import JobRunner
from job_service.settings import Settings
from job_service.store import JobStore


class RecordingNotifier:
    """Captures notification messages instead of calling notify-send."""

    def __init__(self, result: bool = True, error: Exception = None):
        self.messages = []
        self.result = result
        self.error = error
        self.called = threading.Event()

    def __call__(self, message: str) -> bool:
        self.messages.append(message)
        self.called.set()
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        jobs_dir=tmp_path / "jobs",
        scripts_dir=tmp_path / "scripts",
        default_cwd=tmp_path,
        notification_channel="log",
    )


@pytest.fixture()
def store(settings):
    return JobStore(settings.jobs_dir)


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def runner(store, settings, notifier):
    return JobRunner(store, settings, notifier=notifier)


@pytest.fixture()
def make_notifier():
    return RecordingNotifier
