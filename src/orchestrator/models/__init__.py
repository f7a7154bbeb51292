#!/usr/bin/env python3
"""
Core data models for analysis orchestration.

Contains all data structures used throughout the application.
"""

from .definition import ParameterSchema, AlgorithmDefinition, StepDefinition, AnalysisDefinition
from .run import (
    RunStatus, StepStatus, AnalysisMode,
    AlgorithmSelection, StepConfig, NotificationConfig, AnalysisRunConfig, AnalysisRunRequest,
    StepResult, RunAttempt, AnalysisRun, RunFilter,
)
from .progress import ProgressSnapshot

__all__ = [
    'ParameterSchema', 'AlgorithmDefinition', 'StepDefinition', 'AnalysisDefinition',
    'RunStatus', 'StepStatus', 'AnalysisMode',
    'AlgorithmSelection', 'StepConfig', 'NotificationConfig', 'AnalysisRunConfig', 'AnalysisRunRequest',
    'StepResult', 'RunAttempt', 'AnalysisRun', 'RunFilter',
    'ProgressSnapshot',
]
