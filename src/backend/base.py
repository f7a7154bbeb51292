#!/usr/bin/env python3
"""
Base classes for analysis backends.

Defines the abstract contract the orchestration core requires from the
service that stores runs and executes steps.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from orchestrator.models.definition import AnalysisDefinition
from orchestrator.models.run import AnalysisRun, AnalysisRunRequest, RunFilter, StepResult


class AnalysisBackend(ABC):
    """
    Abstract base class for analysis backends.

    Implementations raise the orchestrator exception types: NotFoundError for
    unknown resources, ValidationError for rejected input, ExecutorError when
    a step invocation fails and BackendError for anything else.
    """

    name = 'abstract'

    @abstractmethod
    async def list_definitions(self) -> List[AnalysisDefinition]:
        """List every analysis definition."""

    @abstractmethod
    async def get_definition(self, code: str, version: Optional[str] = None) -> AnalysisDefinition:
        """
        Get a single analysis definition.

        Raises:
            NotFoundError: If the code (or version) is unknown
        """

    @abstractmethod
    async def submit_run(self, document_id: str, request: AnalysisRunRequest) -> AnalysisRun:
        """
        Create a run for a document.

        Returns:
            The created run, normally in pending status
        """

    @abstractmethod
    async def cancel_run(self, run_id: str) -> AnalysisRun:
        """Request cancellation and return the run as the backend now sees it."""

    @abstractmethod
    async def retry_run(self, run_id: str) -> AnalysisRun:
        """Re-submit a failed run with its existing configuration."""

    @abstractmethod
    async def list_runs(self, run_filter: RunFilter) -> List[AnalysisRun]:
        """List runs matching a filter, newest first."""

    @abstractmethod
    async def get_run(self, run_id: str) -> AnalysisRun:
        """Get a run with its step results."""

    @abstractmethod
    async def get_progress(self, run_id: str) -> Dict[str, Any]:
        """
        Get a lightweight progress report.

        Returns:
            Dictionary with at least status and progress keys
        """

    @abstractmethod
    async def execute_step(self,
                           run_id: str,
                           step_code: str,
                           algorithm_code: str,
                           algorithm_version: Optional[str],
                           parameters: Dict[str, Any],
                           user_corrections: Dict[str, Any]) -> StepResult:
        """
        Execute one step of a run (the step executor contract).

        Returns:
            The step result; a failed status carries error_message

        Raises:
            ExecutorError: If the executor could not run the step
        """

    @abstractmethod
    async def update_corrections(self, run_id: str, step_code: str, corrections: Dict[str, Any]) -> None:
        """Persist the full correction overlay of a step."""

    async def close(self) -> None:
        """Release any held resources."""
