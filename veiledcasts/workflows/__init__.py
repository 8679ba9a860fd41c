"""Periodic lifecycle tasks."""

from .scheduler import LifecycleScheduler, TaskAlreadyRunning

__all__ = ["LifecycleScheduler", "TaskAlreadyRunning"]
