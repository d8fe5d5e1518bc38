"""Sync provider work items into local timekeeper tasks."""

__version__ = "1.0.0"
