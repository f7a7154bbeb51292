#!/usr/bin/env python3
"""
Run Store

The stateful orchestration core. Owns the known runs, the focused run, the
cached run lists and the last error, and exposes every run and step
operation. Reads are single-flighted; mutations of one run are guarded by
that run's lock, with backend calls made outside the lock.
"""

import asyncio
import copy
import logging
from dataclasses import fields, replace
from functools import wraps
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .cache import InMemoryCache, SingleFlight, bounded_call
from .config import RUNS_FRESHNESS_SECONDS
from .corrections import merge_corrections, revert_corrections
from .exceptions import (
    ExecutorError, InvalidRunStateError, NotFoundError, OrchestratorError, ValidationError
)
from .models.definition import AnalysisDefinition
from .models.progress import ProgressSnapshot
from .models.run import (
    AlgorithmSelection, AnalysisRun, AnalysisRunConfig, AnalysisRunRequest, RunAttempt,
    RunFilter, RunStatus, StepConfig, StepResult, StepStatus
)
from .progress import ProgressPoller, ProgressTracker
from .state_machine import can_transition_step, failed_step_codes, recompute_run_status, utcnow
from .validation import resolve_parameters, validate_run_request, validate_step_execution
from . import views

logger = logging.getLogger(__name__)

_RUN_FIELDS = [f.name for f in fields(AnalysisRun) if f.name not in ('id', 'step_results', 'attempts')]
_STEP_FIELDS = [f.name for f in fields(StepResult) if f.name not in ('id', 'step_code')]
_STATUS_FIELDS = ('status', 'started_at', 'completed_at', 'updated_at', 'error_message')


def _records_errors(func):
    """Remember the message of any orchestration error before re-raising it."""
    @wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except OrchestratorError as e:
            self.last_error = e.message
            raise
    return wrapper


class RunStore:
    """Owns analysis runs and their step results for one session."""

    def __init__(self,
                 backend,
                 registry,
                 tracker: Optional[ProgressTracker] = None,
                 runs_cache_ttl: float = RUNS_FRESHNESS_SECONDS,
                 operation_timeout: Optional[float] = 30.0,
                 cache: Optional[InMemoryCache] = None):
        """
        Initialize the run store.

        Args:
            backend: AnalysisBackend implementation
            registry: DefinitionRegistry used for validation
            tracker: Progress tracker to feed (a private one is created if omitted)
            runs_cache_ttl: Freshness window for cached run lists in seconds
            operation_timeout: Bound on each backend call in seconds
            cache: Cache holding run lists
        """
        self._backend = backend
        self._registry = registry
        self.tracker = tracker or ProgressTracker()
        self._timeout = operation_timeout
        self._list_cache = cache or InMemoryCache(default_ttl=runs_cache_ttl, max_entries=200)

        self._runs: Dict[str, AnalysisRun] = {}
        self._order: List[str] = []
        self._current_run_id: Optional[str] = None
        self.last_error: Optional[str] = None

        self._run_locks: Dict[str, asyncio.Lock] = {}
        self._step_locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._executing: Set[Tuple[str, str]] = set()

        self._list_flights = SingleFlight('runs')
        self._run_flights = SingleFlight('run')
        self._poller: Optional[ProgressPoller] = None

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def attach_poller(self, poller: ProgressPoller) -> None:
        """Start this poller whenever a run begins being tracked."""
        self._poller = poller

    @property
    def known_runs(self) -> List[AnalysisRun]:
        """Every run this store has seen, newest submissions first."""
        return [self._runs[run_id] for run_id in self._order]

    def get_known_run(self, run_id: str) -> Optional[AnalysisRun]:
        return self._runs.get(run_id)

    @property
    def current_run(self) -> Optional[AnalysisRun]:
        if self._current_run_id is None:
            return None
        return self._runs.get(self._current_run_id)

    @_records_errors
    async def set_current_run(self, run_id: Optional[str]) -> Optional[AnalysisRun]:
        """Focus a run (fetching it fresh), or clear the focus with None."""
        if run_id is None:
            self._current_run_id = None
            return None
        run = await self.fetch_run(run_id)
        self._current_run_id = run.id
        return run

    def clear_error(self) -> None:
        self.last_error = None

    def is_executing(self, run_id: str, step_code: str) -> bool:
        return (run_id, step_code) in self._executing

    def _lock_for(self, run_id: str) -> asyncio.Lock:
        lock = self._run_locks.get(run_id)
        if lock is None:
            lock = self._run_locks[run_id] = asyncio.Lock()
        return lock

    def _step_lock_for(self, run_id: str, step_code: str) -> asyncio.Lock:
        key = (run_id, step_code)
        lock = self._step_locks.get(key)
        if lock is None:
            lock = self._step_locks[key] = asyncio.Lock()
        return lock

    def _absorb(self, incoming: AnalysisRun, head: bool = False) -> AnalysisRun:
        """
        Merge a run received from the backend into the known runs.

        Known runs are updated in place so every holder sees the change;
        step results being executed locally are left alone.
        """
        existing = self._runs.get(incoming.id)
        if existing is None:
            self._runs[incoming.id] = incoming
            if head:
                self._order.insert(0, incoming.id)
            else:
                self._order.append(incoming.id)
            self._recompute_if_stepped(incoming)
            return incoming

        if head and incoming.id in self._order:
            self._order.remove(incoming.id)
            self._order.insert(0, incoming.id)

        keep_config = not incoming.config.steps and existing.config.steps
        for name in _RUN_FIELDS:
            if name == 'config' and keep_config:
                continue
            if name == 'analysis_version' and not incoming.analysis_version:
                continue
            setattr(existing, name, getattr(incoming, name))

        for step_result in incoming.step_results:
            if (existing.id, step_result.step_code) in self._executing:
                continue
            current = existing.get_step_result(step_result.step_code)
            if current is None:
                existing.step_results.append(step_result)
            else:
                for name in _STEP_FIELDS:
                    setattr(current, name, getattr(step_result, name))

        if incoming.attempts:
            existing.attempts = incoming.attempts

        self._recompute_if_stepped(existing)
        return existing

    @staticmethod
    def _recompute_if_stepped(run: AnalysisRun) -> None:
        # Runs without step results keep the status the backend reported
        if run.step_results:
            recompute_run_status(run)

    def _refresh_cached_lists(self, run: AnalysisRun, inserted: bool = False) -> None:
        """
        Keep cached run lists consistent with a run that changed locally.

        New runs are put at the head of every matching first-page list;
        paged lists are dropped since their offsets shift.
        """
        for key in list(self._list_cache.get_keys()):
            entry = self._list_cache.get(key)
            if entry is None:
                continue
            run_filter, runs = entry
            if inserted and run_filter.skip > 0:
                self._list_cache.delete(key)
                continue

            present = any(r is run for r in runs)
            matches = run_filter.matches(run)
            if inserted and matches and not present:
                updated = ([run] + list(runs))[:run_filter.limit]
            elif present and not matches:
                updated = [r for r in runs if r is not run]
            else:
                continue
            self._list_cache.update(key, lambda _old, new=updated, f=run_filter: (f, new))

    def _track(self, run: AnalysisRun, definition: Optional[AnalysisDefinition]) -> None:
        step_names = definition.step_names() if definition else {}
        self.tracker.track(run, step_names)
        if self._poller is not None and not run.status.is_terminal:
            self._poller.start()

    async def _require_run(self, run_id: str) -> AnalysisRun:
        run = self._runs.get(run_id)
        if run is None:
            run = await self.fetch_run(run_id)
        return run

    async def _definition_for(self, run: AnalysisRun) -> AnalysisDefinition:
        return await self._registry.get_definition(run.analysis_code, run.analysis_version)

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    @_records_errors
    async def start_analysis(self, document_id: str, request: AnalysisRunRequest) -> AnalysisRun:
        """
        Validate and submit a new run.

        Args:
            document_id: Document to analyse
            request: Analysis code, mode and per-step configuration

        Returns:
            The created run, in pending status

        Raises:
            ValidationError: Listing every offending step and field
            NotFoundError: If the analysis code is unknown
        """
        if not document_id:
            raise ValidationError.single('document_id', 'is required')

        definition = await self._registry.get_definition(request.analysis_code, request.analysis_version)
        validate_run_request(definition, request)
        submitted = replace(
            request,
            analysis_version=definition.version,
            config=self._normalized_config(definition, request.config),
        )

        created = await bounded_call('start_analysis', self._backend.submit_run(document_id, submitted),
                                     self._timeout)

        async with self._lock_for(created.id):
            if not created.analysis_version:
                created.analysis_version = definition.version
            run = self._absorb(created, head=True)
            self._refresh_cached_lists(run, inserted=True)

        self._track(run, definition)
        logger.info(f"Started {definition.key} run {run.id} for document {document_id} "
                    f"({len(submitted.config.enabled_step_codes())} enabled steps)")
        return run

    @staticmethod
    def _normalized_config(definition: AnalysisDefinition, config: AnalysisRunConfig) -> AnalysisRunConfig:
        """
        Config in definition step order with versions pinned and defaults filled.

        Definition steps the caller left out are submitted as disabled.
        """
        steps: Dict[str, StepConfig] = {}
        for step in definition.steps:
            step_config = config.steps.get(step.code)
            if step_config is None:
                steps[step.code] = StepConfig(enabled=False)
                continue
            if not step_config.enabled or step_config.algorithm is None:
                steps[step.code] = copy.deepcopy(step_config)
                continue

            selection = step_config.algorithm
            algorithm = step.get_algorithm(selection.code, selection.version)
            steps[step.code] = replace(
                step_config,
                algorithm=AlgorithmSelection(
                    code=algorithm.code,
                    version=algorithm.version,
                    parameters=resolve_parameters(algorithm, selection.parameters),
                ),
            )
        return replace(config, steps=steps, metadata=copy.deepcopy(config.metadata))

    @_records_errors
    async def cancel_analysis(self, run_id: str) -> AnalysisRun:
        """
        Cancel a run. Cancelling a run that already ended is a no-op.

        Raises:
            NotFoundError: If the run is unknown
        """
        run = await self._require_run(run_id)
        if run.status.is_terminal:
            logger.info(f"Run {run_id} already {run.status.value}, nothing to cancel")
            return run

        updated = await bounded_call('cancel_analysis', self._backend.cancel_run(run_id), self._timeout)

        async with self._lock_for(run_id):
            run = self._absorb(updated)
            if not run.status.is_terminal:
                run.status = RunStatus.CANCELLED
            if run.status == RunStatus.CANCELLED:
                now = utcnow()
                run.completed_at = run.completed_at or now
                run.updated_at = now
            self._refresh_cached_lists(run)

        self.tracker.update_from_run(run)
        logger.info(f"Run {run_id} is now {run.status.value}")
        return run

    @_records_errors
    async def retry_analysis(self, run_id: str) -> AnalysisRun:
        """
        Retry a failed run on the same run id.

        The failed attempt is appended to the run's attempt history, failed
        steps go back to pending and a fresh tracking entry starts.

        Raises:
            InvalidRunStateError: If the run is not failed
        """
        run = await self._require_run(run_id)
        if run.status != RunStatus.FAILED:
            raise InvalidRunStateError(run_id, run.status.value, 'retry')

        attempt = RunAttempt(
            attempt=len(run.attempts) + 1,
            status=RunStatus.FAILED,
            error_message=run.error_message,
            failed_steps=failed_step_codes(run),
            ended_at=run.completed_at or utcnow(),
        )

        updated = await bounded_call('retry_analysis', self._backend.retry_run(run_id), self._timeout)

        async with self._lock_for(run_id):
            run = self._absorb(updated)
            if len(run.attempts) < attempt.attempt:
                run.attempts.append(attempt)
            for step_code in attempt.failed_steps:
                step_result = run.get_step_result(step_code)
                if step_result is not None and step_result.status == StepStatus.FAILED:
                    step_result.status = StepStatus.PENDING
                    step_result.error_message = None
                    step_result.completed_at = None
            run.status = RunStatus.PENDING
            run.error_message = None
            run.completed_at = None
            run.updated_at = utcnow()
            self._refresh_cached_lists(run)

        definition = self._registry.cached_definition(run.analysis_code, run.analysis_version)
        self.tracker.clear(run_id)
        self._track(run, definition)
        logger.info(f"Retrying run {run_id} (attempt {attempt.attempt + 1}, "
                    f"{len(attempt.failed_steps)} failed steps reset)")
        return run

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @_records_errors
    async def fetch_runs(self, run_filter: Optional[RunFilter] = None,
                         force_refresh: bool = False) -> List[AnalysisRun]:
        """
        List runs, served from cache inside the freshness window.

        Concurrent callers for the same filter share one backend request,
        forced refreshes included.
        """
        run_filter = run_filter or RunFilter()
        key = run_filter.cache_key
        if not force_refresh:
            cached = self._list_cache.get(key)
            if cached is not None:
                return list(cached[1])

        runs = await self._list_flights.do(key, lambda: self._load_runs(run_filter))
        return list(runs)

    async def _load_runs(self, run_filter: RunFilter) -> List[AnalysisRun]:
        fetched = await bounded_call('fetch_runs', self._backend.list_runs(run_filter), self._timeout)
        merged = []
        for incoming in fetched:
            async with self._lock_for(incoming.id):
                run = self._absorb(incoming)
            self.tracker.update_from_run(run)
            merged.append(run)

        self._list_cache.set(run_filter.cache_key, (run_filter, merged))
        logger.debug(f"Fetched {len(merged)} runs for {run_filter.cache_key}")
        return merged

    @_records_errors
    async def fetch_run(self, run_id: str) -> AnalysisRun:
        """
        Fetch one run fresh from the backend.

        Never served from cache, but concurrent calls for the same id share
        one request.

        Raises:
            NotFoundError: If the run is unknown
        """
        return await self._run_flights.do(run_id, lambda: self._load_run(run_id))

    async def _load_run(self, run_id: str) -> AnalysisRun:
        fetched = await bounded_call('fetch_run', self._backend.get_run(run_id), self._timeout)
        async with self._lock_for(fetched.id):
            run = self._absorb(fetched)
            self._refresh_cached_lists(run)
        self.tracker.update_from_run(run)
        return run

    @_records_errors
    async def fetch_progress(self, run_id: str) -> Optional[ProgressSnapshot]:
        """
        Refresh a run's progress from the backend's lightweight progress report.

        The full run is fetched only when the reported status differs from
        the known one, so step results stay current across transitions.

        Returns:
            The tracker snapshot (None once the run is no longer tracked)

        Raises:
            NotFoundError: If the run is unknown
        """
        report = await bounded_call('fetch_progress', self._backend.get_progress(run_id), self._timeout)
        snapshot = self.tracker.apply_report(run_id, report)

        known = self._runs.get(run_id)
        if known is None or report.get('status') != known.status.value:
            await self.fetch_run(run_id)
            snapshot = self.tracker.get(run_id)
        return snapshot

    # ------------------------------------------------------------------
    # Corrections
    # ------------------------------------------------------------------

    def _require_step_result(self, run: AnalysisRun, step_code: str) -> StepResult:
        step_result = run.get_step_result(step_code)
        if step_result is None:
            raise NotFoundError('step result', f"{run.id}/{step_code}")
        return step_result

    @_records_errors
    async def update_step_corrections(self, run_id: str, step_code: str,
                                      corrections: Dict[str, Any]) -> StepResult:
        """
        Deep-merge corrections into a step's overlay and persist them.

        The step's raw result is never touched and the step is not
        re-executed; call execute_step for that.

        Raises:
            NotFoundError: If the run or its step result is unknown
        """
        if not isinstance(corrections, dict):
            raise ValidationError.single('corrections', 'must be a mapping', step_code)

        run = await self._require_run(run_id)
        async with self._step_lock_for(run_id, step_code):
            step_result = self._require_step_result(run, step_code)
            merged = merge_corrections(step_result.user_corrections, corrections)
            await self._persist_corrections(run, step_result, merged)

        logger.info(f"Saved {len(corrections)} correction key(s) on {run_id}/{step_code}")
        return step_result

    @_records_errors
    async def revert_step_corrections(self, run_id: str, step_code: str,
                                      keys: Optional[Iterable[str]] = None) -> StepResult:
        """
        Remove correction keys from a step's overlay (all of them by default).

        Raises:
            NotFoundError: If the run or its step result is unknown
        """
        run = await self._require_run(run_id)
        async with self._step_lock_for(run_id, step_code):
            step_result = self._require_step_result(run, step_code)
            remaining = revert_corrections(step_result.user_corrections, keys)
            await self._persist_corrections(run, step_result, remaining)

        logger.info(f"Reverted corrections on {run_id}/{step_code}")
        return step_result

    async def _persist_corrections(self, run: AnalysisRun, step_result: StepResult,
                                   overlay: Dict[str, Any]) -> None:
        await bounded_call(
            'update_step_corrections',
            self._backend.update_corrections(run.id, step_result.step_code, copy.deepcopy(overlay)),
            self._timeout,
        )
        async with self._lock_for(run.id):
            step_result.user_corrections = overlay
            step_result.updated_at = utcnow()

    # ------------------------------------------------------------------
    # Step execution
    # ------------------------------------------------------------------

    @_records_errors
    async def execute_step(self,
                           run_id: str,
                           step_code: str,
                           algorithm_code: str,
                           parameters: Optional[Dict[str, Any]] = None,
                           algorithm_version: Optional[str] = None) -> StepResult:
        """
        (Re-)execute one step of a run.

        Parameters are validated locally first. The step's result is
        updated in place with an incremented retry count; current user
        corrections are sent along to the executor.

        Returns:
            The step result (the same object on every re-execution)

        Raises:
            ValidationError: Unknown algorithm or bad parameters (nothing changes)
            InvalidRunStateError: Run cancelled, step disabled or already executing
            ExecutorError: The executor reported a failure (recorded on the step)
            OperationTimeoutError: The call timed out (prior state restored)
        """
        run = await self._require_run(run_id)
        definition = await self._definition_for(run)
        algorithm, resolved = validate_step_execution(
            definition, step_code, algorithm_code, parameters, algorithm_version
        )

        if run.status == RunStatus.CANCELLED:
            raise InvalidRunStateError(run_id, run.status.value, 'execute a step of', step_code)
        if run.config.steps and not run.config.is_enabled(step_code):
            raise InvalidRunStateError(run_id, 'skipped', f"execute disabled step {step_code} of", step_code)

        existing = run.get_step_result(step_code)
        if existing is not None and not can_transition_step(existing.status, StepStatus.IN_PROGRESS):
            raise InvalidRunStateError(run_id, existing.status.value, f"execute step {step_code} of", step_code)

        key = (run_id, step_code)
        if key in self._executing:
            raise InvalidRunStateError(run_id, 'in_progress', f"execute step {step_code} again on", step_code)

        self._executing.add(key)
        try:
            async with self._lock_for(run_id):
                snapshot = self._snapshot(run, step_code)
                step_result, was_run = self._begin_step(run, definition, step_code)
                corrections = copy.deepcopy(step_result.user_corrections)
                recompute_run_status(run)
            self.tracker.update_from_run(run)

            try:
                returned = await bounded_call(
                    'execute_step',
                    self._backend.execute_step(run_id, step_code, algorithm.code, algorithm.version,
                                               resolved, corrections),
                    self._timeout,
                )
            except ExecutorError as e:
                async with self._lock_for(run_id):
                    self._fail_step(step_result, e.reason, algorithm.code, algorithm.version, resolved, was_run)
                    recompute_run_status(run)
                    self._refresh_cached_lists(run)
                self.tracker.update_from_run(run)
                logger.warning(f"Step {run_id}/{step_code} failed: {e.reason}")
                raise
            except (Exception, asyncio.CancelledError):
                async with self._lock_for(run_id):
                    self._restore(run, snapshot)
                self.tracker.update_from_run(run)
                raise

            async with self._lock_for(run_id):
                self._apply_step_result(step_result, returned, algorithm.code, algorithm.version, resolved, was_run)
                recompute_run_status(run)
                self._refresh_cached_lists(run)
            self.tracker.update_from_run(run)
        finally:
            self._executing.discard(key)

        if step_result.status == StepStatus.FAILED:
            logger.warning(f"Step {run_id}/{step_code} failed: {step_result.error_message}")
            raise ExecutorError(step_code, step_result.error_message or 'step failed', run_id)

        logger.info(f"Step {run_id}/{step_code} {step_result.status.value} with {algorithm.code}@{algorithm.version} "
                    f"(retry {step_result.retry_count}), run {run.status.value}")
        return step_result

    @staticmethod
    def _snapshot(run: AnalysisRun, step_code: str) -> Dict[str, Any]:
        """Run status fields plus the one step result an execution touches."""
        existing = run.get_step_result(step_code)
        return {
            'step_code': step_code,
            'run': {name: getattr(run, name) for name in _STATUS_FIELDS},
            'step': (existing, copy.deepcopy(existing)) if existing is not None else None,
        }

    @staticmethod
    def _restore(run: AnalysisRun, snapshot: Dict[str, Any]) -> None:
        for name, value in snapshot['run'].items():
            setattr(run, name, value)
        if snapshot['step'] is None:
            run.step_results[:] = [sr for sr in run.step_results if sr.step_code != snapshot['step_code']]
        else:
            original, saved = snapshot['step']
            # Corrections saved while the call was outstanding are kept
            for name in _STEP_FIELDS:
                if name != 'user_corrections':
                    setattr(original, name, getattr(saved, name))
        logger.debug(f"Restored run {run.id} to its state before the failed call")

    @staticmethod
    def _begin_step(run: AnalysisRun, definition: AnalysisDefinition, step_code: str) -> Tuple[StepResult, bool]:
        """Mark the step in progress, creating its result in definition order if needed."""
        now = utcnow()
        step_result = run.get_step_result(step_code)
        was_run = step_result is not None and step_result.status != StepStatus.PENDING
        if step_result is None:
            step_result = StepResult(id=f"{run.id}:{step_code}", step_code=step_code, created_at=now)
            order = definition.step_codes
            position = len(run.step_results)
            if step_code in order:
                later = set(order[order.index(step_code) + 1:])
                for index, existing in enumerate(run.step_results):
                    if existing.step_code in later:
                        position = index
                        break
            run.step_results.insert(position, step_result)

        step_result.status = StepStatus.IN_PROGRESS
        step_result.started_at = now
        step_result.updated_at = now
        step_result.completed_at = None
        step_result.error_message = None
        return step_result, was_run

    @staticmethod
    def _apply_step_result(step_result: StepResult, returned: StepResult, algorithm_code: str,
                           algorithm_version: str, parameters: Dict[str, Any], was_run: bool) -> None:
        now = utcnow()
        step_result.algorithm_code = returned.algorithm_code or algorithm_code
        step_result.algorithm_version = returned.algorithm_version or algorithm_version
        step_result.parameters = returned.parameters or copy.deepcopy(parameters)
        step_result.status = returned.status
        step_result.result = returned.result
        step_result.retry_count = step_result.retry_count + 1 if was_run else step_result.retry_count
        step_result.started_at = returned.started_at or step_result.started_at
        step_result.completed_at = returned.completed_at or now
        step_result.updated_at = now
        step_result.error_message = returned.error_message

    @staticmethod
    def _fail_step(step_result: StepResult, reason: str, algorithm_code: str, algorithm_version: str,
                   parameters: Dict[str, Any], was_run: bool) -> None:
        now = utcnow()
        step_result.algorithm_code = algorithm_code
        step_result.algorithm_version = algorithm_version
        step_result.parameters = copy.deepcopy(parameters)
        step_result.status = StepStatus.FAILED
        step_result.error_message = reason
        step_result.retry_count = step_result.retry_count + 1 if was_run else step_result.retry_count
        step_result.completed_at = now
        step_result.updated_at = now

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def runs_by_document(self) -> Dict[str, List[AnalysisRun]]:
        return views.group_by_document(self.known_runs)

    def runs_by_definition(self) -> Dict[str, List[AnalysisRun]]:
        return views.group_by_definition(self.known_runs)

    def steps_by_document(self) -> Dict[str, List[Tuple[str, StepResult]]]:
        return views.steps_by_document(self.known_runs)

    def latest_run_per_document(self) -> Dict[str, AnalysisRun]:
        return views.latest_run_per_document(self.known_runs)

    def most_used_analysis_type(self) -> Optional[str]:
        return views.most_used_analysis_type(self.known_runs)

    def dashboard_stats(self) -> views.DashboardStats:
        return views.dashboard_stats(self.known_runs)
