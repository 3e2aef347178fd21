"""Timer-driven task scheduling.

Provides:
- ScheduledTask: periodic async job with start/stop and an overlap guard
"""

from polystrat.scheduler.task import ScheduledTask

__all__ = ["ScheduledTask"]
