"""
Runner: CLI, service wiring and daily schedules.
"""

from .scheduler import ClassificationRunSummary, ScheduledRunner
from .wiring import Services, build_services

__all__ = ["ClassificationRunSummary", "ScheduledRunner", "Services", "build_services"]
