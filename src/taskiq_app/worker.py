"""Entrypoint for ``taskiq worker`` and ``taskiq scheduler``.

Importing tasks registers every crawl, ingest and freshness task (and its
cron label) on the broker before the worker or scheduler starts.
"""

from src.taskiq_app.broker import broker, scheduler
from src.taskiq_app import tasks as _tasks  # noqa: F401

__all__ = ["broker", "scheduler"]
