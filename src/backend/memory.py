#!/usr/bin/env python3
"""
In-process analysis backend.

Stores runs in memory (optionally mirrored to a JSON file) and executes
steps through an explicit registry of algorithm callables keyed by
algorithm code. Runs in automatic mode advance one step per poll.
"""

import asyncio
import copy
import itertools
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from orchestrator.exceptions import ExecutorError, NotFoundError, ValidationError
from orchestrator.models.definition import AnalysisDefinition
from orchestrator.models.run import (
    AnalysisMode, AnalysisRun, AnalysisRunRequest, RunAttempt, RunFilter, RunStatus, StepResult, StepStatus
)
from orchestrator.state_machine import failed_step_codes, progress_percent, recompute_run_status, step_statuses

from .base import AnalysisBackend
from .catalog import AlgorithmFunc, builtin_algorithms, builtin_definitions

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AlgorithmRegistry:
    """Algorithm implementations resolved by code at startup."""

    def __init__(self, algorithms: Optional[Dict[str, AlgorithmFunc]] = None):
        self._algorithms: Dict[str, AlgorithmFunc] = dict(algorithms or {})

    def register(self, code: str, func: AlgorithmFunc) -> None:
        self._algorithms[code] = func
        logger.debug(f"Registered algorithm {code}")

    def resolve(self, code: str) -> AlgorithmFunc:
        func = self._algorithms.get(code)
        if func is None:
            raise ExecutorError(code, f"no implementation registered for algorithm {code}")
        return func

    def codes(self) -> List[str]:
        return sorted(self._algorithms)


class InMemoryBackend(AnalysisBackend):
    """AnalysisBackend kept entirely in this process."""

    name = 'memory'

    def __init__(self,
                 definitions: Optional[Iterable[AnalysisDefinition]] = None,
                 algorithms: Optional[AlgorithmRegistry] = None,
                 latency: float = 0.0,
                 auto_advance: bool = True,
                 state_path: Optional[str] = None):
        """
        Initialize the backend.

        Args:
            definitions: Definitions to serve (the built-in catalog by default)
            algorithms: Algorithm registry (the built-in algorithms by default)
            latency: Seconds each call sleeps, to simulate a network
            auto_advance: Execute one pending step of automatic runs per poll
            state_path: JSON file runs are loaded from and saved to
        """
        self._definitions = list(definitions) if definitions is not None else builtin_definitions()
        self.algorithms = algorithms or AlgorithmRegistry(builtin_algorithms())
        self.latency = latency
        self.auto_advance = auto_advance
        self._state_path = Path(state_path) if state_path else None
        self._runs: Dict[str, AnalysisRun] = {}
        self._ids = itertools.count(1)
        self.calls: Dict[str, int] = {}
        self._load_state()

    async def _enter(self, operation: str) -> None:
        self.calls[operation] = self.calls.get(operation, 0) + 1
        await asyncio.sleep(self.latency)

    def _load_state(self) -> None:
        if self._state_path is None or not self._state_path.exists():
            return
        with open(self._state_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        for raw in data.get('runs', []):
            run = AnalysisRun.from_dict(raw)
            self._runs[run.id] = run
        self._ids = itertools.count(int(data.get('next_id', len(self._runs) + 1)))
        logger.debug(f"Loaded {len(self._runs)} runs from {self._state_path}")

    def _save_state(self) -> None:
        if self._state_path is None:
            return
        next_id = next(self._ids)
        self._ids = itertools.count(next_id)
        data = {'next_id': next_id, 'runs': [run.to_dict() for run in self._runs.values()]}
        self._state_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._state_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

    def _stored_run(self, run_id: str) -> AnalysisRun:
        run = self._runs.get(run_id)
        if run is None:
            raise NotFoundError('analysis run', run_id)
        return run

    def _find_definition(self, code: str, version: Optional[str]) -> AnalysisDefinition:
        matches = [d for d in self._definitions if d.code == code and (version is None or d.version == version)]
        if not matches:
            raise NotFoundError('analysis definition', f"{code}@{version}" if version else code)
        return matches[-1]

    # Definitions

    async def list_definitions(self) -> List[AnalysisDefinition]:
        await self._enter('list_definitions')
        return list(self._definitions)

    async def get_definition(self, code: str, version: Optional[str] = None) -> AnalysisDefinition:
        await self._enter('get_definition')
        return self._find_definition(code, version)

    # Runs

    async def submit_run(self, document_id: str, request: AnalysisRunRequest) -> AnalysisRun:
        await self._enter('submit_run')
        definition = self._find_definition(request.analysis_code, request.analysis_version)
        now = _now()
        run = AnalysisRun(
            id=f"run-{next(self._ids):04d}",
            document_id=document_id,
            analysis_code=definition.code,
            analysis_version=definition.version,
            mode=request.mode,
            config=copy.deepcopy(request.config),
            status=RunStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self._runs[run.id] = run
        self._save_state()
        logger.debug(f"Created run {run.id} for {document_id}")
        return copy.deepcopy(run)

    async def cancel_run(self, run_id: str) -> AnalysisRun:
        await self._enter('cancel_run')
        run = self._stored_run(run_id)
        if not run.status.is_terminal:
            run.status = RunStatus.CANCELLED
            run.completed_at = run.updated_at = _now()
            self._save_state()
        return copy.deepcopy(run)

    async def retry_run(self, run_id: str) -> AnalysisRun:
        await self._enter('retry_run')
        run = self._stored_run(run_id)
        if run.status != RunStatus.FAILED:
            raise ValidationError.single('status', f"only failed runs can be retried, run is {run.status.value}")

        failed = failed_step_codes(run)
        run.attempts.append(RunAttempt(
            attempt=len(run.attempts) + 1,
            status=RunStatus.FAILED,
            error_message=run.error_message,
            failed_steps=failed,
            ended_at=run.completed_at or _now(),
        ))
        for step_code in failed:
            step_result = run.get_step_result(step_code)
            step_result.status = StepStatus.PENDING
            step_result.error_message = None
            step_result.completed_at = None
        run.status = RunStatus.PENDING
        run.error_message = None
        run.completed_at = None
        run.updated_at = _now()
        self._save_state()
        return copy.deepcopy(run)

    async def list_runs(self, run_filter: RunFilter) -> List[AnalysisRun]:
        await self._enter('list_runs')
        ordered = sorted(self._runs.values(), key=lambda r: (r.created_at or _now(), r.id), reverse=True)
        matching = [run for run in ordered if run_filter.matches(run)]
        page = matching[run_filter.skip:run_filter.skip + run_filter.limit]
        return [copy.deepcopy(run) for run in page]

    async def get_run(self, run_id: str) -> AnalysisRun:
        await self._enter('get_run')
        run = self._stored_run(run_id)
        self._advance(run)
        return copy.deepcopy(run)

    async def get_progress(self, run_id: str) -> Dict[str, Any]:
        await self._enter('get_progress')
        run = self._stored_run(run_id)
        self._advance(run)
        current = next((code for code, status in step_statuses(run).items()
                        if status in (StepStatus.IN_PROGRESS, StepStatus.PENDING)), None)
        return {'run_id': run.id, 'status': run.status.value, 'progress': progress_percent(run),
                'current_step': current}

    def _advance(self, run: AnalysisRun) -> None:
        """Run the next pending step of an automatic run."""
        if not self.auto_advance or run.mode != AnalysisMode.AUTOMATIC or run.status.is_terminal:
            return
        definition = self._find_definition(run.analysis_code, run.analysis_version)
        statuses = step_statuses(run)
        for step in definition.steps:
            if statuses.get(step.code) != StepStatus.PENDING:
                continue
            selection = run.config.steps[step.code].algorithm
            if selection is None:
                continue
            existing = run.get_step_result(step.code)
            corrections = existing.user_corrections if existing else {}
            self._run_step(run, step.code, selection.code, selection.version, selection.parameters, corrections)
            return

    # Steps

    async def execute_step(self,
                           run_id: str,
                           step_code: str,
                           algorithm_code: str,
                           algorithm_version: Optional[str],
                           parameters: Dict[str, Any],
                           user_corrections: Dict[str, Any]) -> StepResult:
        await self._enter('execute_step')
        run = self._stored_run(run_id)
        if run.status == RunStatus.CANCELLED:
            raise ValidationError.single('status', f"run {run_id} is cancelled", step_code)
        self.algorithms.resolve(algorithm_code)
        step_result = self._run_step(run, step_code, algorithm_code, algorithm_version, parameters, user_corrections)
        return copy.deepcopy(step_result)

    def _run_step(self, run: AnalysisRun, step_code: str, algorithm_code: str, algorithm_version: Optional[str],
                  parameters: Dict[str, Any], corrections: Dict[str, Any]) -> StepResult:
        now = _now()
        step_result = run.get_step_result(step_code)
        if step_result is None:
            step_result = run.upsert_step_result(
                StepResult(id=f"{run.id}:{step_code}", step_code=step_code, created_at=now)
            )
        else:
            step_result.retry_count += 1

        step_result.algorithm_code = algorithm_code
        step_result.algorithm_version = algorithm_version
        step_result.parameters = copy.deepcopy(parameters)
        step_result.started_at = now
        step_result.status = StepStatus.IN_PROGRESS
        recompute_run_status(run, now)

        try:
            step_result.result = self.algorithms.resolve(algorithm_code)(
                run.document_id, copy.deepcopy(parameters), copy.deepcopy(corrections)
            )
            step_result.status = StepStatus.COMPLETED
            step_result.error_message = None
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Algorithm {algorithm_code} failed on {run.id}/{step_code}: {e}")
            step_result.status = StepStatus.FAILED
            step_result.error_message = str(e)

        step_result.completed_at = step_result.updated_at = _now()
        recompute_run_status(run)
        self._save_state()
        return step_result

    async def update_corrections(self, run_id: str, step_code: str, corrections: Dict[str, Any]) -> None:
        await self._enter('update_corrections')
        run = self._stored_run(run_id)
        step_result = run.get_step_result(step_code)
        if step_result is None:
            raise NotFoundError('step result', f"{run_id}/{step_code}")
        step_result.user_corrections = copy.deepcopy(corrections)
        step_result.updated_at = _now()
        self._save_state()
