#!/usr/bin/env python3
"""
Analysis-run orchestration core.

Drives documents through ordered, multi-algorithm analysis pipelines:
definitions, runs, step execution, user corrections and progress.
"""

from .exceptions import (
    OrchestratorError, ValidationError, ValidationIssue, InvalidRunStateError, NotFoundError,
    OperationTimeoutError, ExecutorError, BackendError, ConfigurationError
)
from .registry import DefinitionRegistry
from .run_store import RunStore
from .progress import ProgressTracker, ProgressPoller

__all__ = [
    'OrchestratorError', 'ValidationError', 'ValidationIssue', 'InvalidRunStateError', 'NotFoundError',
    'OperationTimeoutError', 'ExecutorError', 'BackendError', 'ConfigurationError',
    'DefinitionRegistry', 'RunStore', 'ProgressTracker', 'ProgressPoller',
]
