"""Background shell command runner with file-backed job tracking."""
