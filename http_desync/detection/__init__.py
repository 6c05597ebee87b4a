"""Baseline calibration, workers and test scheduling."""

from .baseline import BaselineCalibrator, detection_timeout
from .worker import Worker, WorkerPool, WorkerContext, StageOutcome
from .scheduler import TestScheduler, DispatchStats

__all__ = [
    "BaselineCalibrator",
    "detection_timeout",
    "Worker",
    "WorkerPool",
    "WorkerContext",
    "StageOutcome",
    "TestScheduler",
    "DispatchStats",
]
