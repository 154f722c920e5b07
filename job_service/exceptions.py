#!/usr/bin/env python3
"""Custom exceptions for the job service

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


class JobServiceError(Exception):
    """Base class for job tracking failures."""


class InvalidRequestError(JobServiceError):
    """Raised when required input (command text, job id) is missing or malformed"""

    def __init__(self, field_name: str, description: str):
        self.field_name = field_name
        self.description = description
        super().__init__(f"Invalid '{field_name}': {description}")


class JobNotFoundError(JobServiceError):
    """Raised when no metadata exists for a job id"""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job '{job_id}' not found")


class JobSpawnError(JobServiceError):
    """Raised when the background process for a job cannot be started"""

    def __init__(self, job_id: str, original_error: Exception):
        self.job_id = job_id
        self.original_error = original_error
        super().__init__(f"Failed to start job '{job_id}': {original_error}")


class StorageError(JobServiceError):
    """Raised when job artifacts cannot be read or written"""

    def __init__(self, operation: str, path, original_error: Exception):
        self.operation = operation
        self.path = path
        self.original_error = original_error
        super().__init__(f"Failed to {operation} {path}: {original_error}")
