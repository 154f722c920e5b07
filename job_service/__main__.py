#!/usr/bin/env python3
"""Serve the job API, or run one command through the runner from the terminal."""

import argparse
import asyncio
import sys

import uvicorn
from dotenv import load_dotenv
from loguru import logger

from .api import create_app
from .runner import JobRunner
from .settings import Settings
from .store import JobStore

# Same code as coreutils `timeout` when the command outlives the wait.
WAIT_TIMEOUT_EXIT_CODE = 124


async def run_once(settings: Settings, command: str, cwd: str | None, timeout: float) -> int:
    """Submit a command, wait for it, print its output and return its exit code."""
    store = JobStore(settings.jobs_dir)
    runner = JobRunner(store, settings)
    job = runner.submit(command, cwd=cwd)
    logger.info("Submitted job {}", job.id)
    finished = await runner.wait_for(job.id, timeout=timeout, interval=0.5)
    sys.stdout.write(store.read_output(job.id, complete=finished.is_terminal))
    if not finished.is_terminal:
        logger.warning("Job {} still running after {}s; poll it via the API", job.id, timeout)
        return WAIT_TIMEOUT_EXIT_CODE
    return finished.exit_code


def main():
    """Main entry point for the job service."""
    parser = argparse.ArgumentParser(description="Background command runner with pollable jobs")
    subparsers = parser.add_subparsers(dest="action")

    serve = subparsers.add_parser("serve", help="Serve the HTTP API (default)")
    serve.add_argument("--host", required=False, help="Bind address")
    serve.add_argument("--port", type=int, required=False, help="Bind port")
    serve.add_argument("--log-level", default="info", help="uvicorn log level")

    run = subparsers.add_parser("run", help="Run one command as a tracked job and wait for it")
    run.add_argument("shell_command", help="Command text to run")
    run.add_argument("--cwd", required=False, help="Working directory")
    run.add_argument("--timeout", type=float, default=3600.0, help="Seconds to wait before detaching")

    args = parser.parse_args()

    load_dotenv()
    settings = Settings.from_env()

    if args.action == "run":
        sys.exit(asyncio.run(run_once(settings, args.shell_command, args.cwd, args.timeout)))

    uvicorn.run(
        create_app(settings),
        host=getattr(args, "host", None) or settings.host,
        port=getattr(args, "port", None) or settings.port,
        log_level=getattr(args, "log_level", "info"),
    )


if __name__ == "__main__":
    main()
