"""
CLI runner module.

Provides commands:
- init-config: Write a default config file
- upload: Import a file and (optionally) wait for extraction
- status / list: Inspect jobs
- confirm / reject / retry / change-type: Act on a job
- recover: Fail stale PROCESSING jobs and restart PENDING ones
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
