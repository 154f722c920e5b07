#!/usr/bin/env python3
"""Job completion notifications
Handles multi-channel operator notifications

Copyright 2024-2025 Di Chen

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

import subprocess
import threading
from typing import Callable, Optional

import httpx
from loguru import logger

from .models import Job
from .settings import NOTIFY_PREVIEW_CHARS, NOTIFY_TIMEOUT, Settings

NOTIFICATION_TITLE = "gitmob"


def format_job_message(job: Job) -> str:
    """Build the completion message: exit code plus a truncated prefix of the command."""
    command = " ".join(job.command.split())
    if len(command) > NOTIFY_PREVIEW_CHARS:
        command = command[:NOTIFY_PREVIEW_CHARS] + "..."
    return f"Command finished (exit {job.exit_code}): {command}"


def notify_user(message: str, settings: Settings) -> bool:
    """Send notification via the configured channel.

    Args:
        message: Complete message to deliver
        settings: Resolved settings; `notification_channel` is one of
            'command', 'webhook' or 'log'

    Returns:
        True if notification was sent successfully, False otherwise
    """
    channel = settings.notification_channel

    if channel == 'command':
        return _notify_command(message, settings.notify_command)
    elif channel == 'webhook':
        return _notify_webhook(message, settings.notify_webhook_url)
    elif channel == 'log':
        return _notify_log(message)
    else:
        logger.warning("Unknown notification channel '{}', falling back to log", channel)
        return _notify_log(message)


def _notify_log(message: str) -> bool:
    logger.info("[NOTIFICATION] {}", message)
    return True


def _notify_command(message: str, executable: str) -> bool:
    """Run the OS notification executable (notify-send style: `<exe> <title> <body>`)."""
    try:
        result = subprocess.run(
            [executable, NOTIFICATION_TITLE, message],
            capture_output=True,
            text=True,
            timeout=NOTIFY_TIMEOUT,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.warning("Notification command {} failed: {}", executable, exc)
        return False
    if result.returncode != 0:
        logger.warning(
            "Notification command {} exited with {}: {}",
            executable,
            result.returncode,
            (result.stderr or "").strip(),
        )
        return False
    return True


def _notify_webhook(message: str, webhook: Optional[str]) -> bool:
    """POST `{"text": message}` to NOTIFY_WEBHOOK_URL."""
    if not webhook:
        logger.warning("NOTIFY_WEBHOOK_URL not set, falling back to log")
        return _notify_log(message)
    try:
        response = httpx.post(webhook, json={"text": message[:2048]}, timeout=NOTIFY_TIMEOUT)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Notification webhook error: {}", exc)
        return False
    return True


def notify_in_background(message: str, notifier: Callable[[str], bool]) -> threading.Thread:
    """Fire-and-forget delivery; failures are logged and never propagate."""

    def _deliver():
        try:
            delivered = notifier(message)
        except Exception:
            logger.exception("Notification hook raised for message {!r}", message)
            return
        if not delivered:
            logger.warning("Notification not delivered: {}", message)

    thread = threading.Thread(target=_deliver, name="job-notify", daemon=True)
    thread.start()
    return thread
