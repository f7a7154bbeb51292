#!/usr/bin/env python3
"""
Run and step status rules.

Run status is derived from step statuses; the only status set directly is
cancellation. Everything here is pure and safe to call under a run lock.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .models.run import AnalysisRun, RunStatus, StepStatus

logger = logging.getLogger(__name__)

STEP_TRANSITIONS: Dict[StepStatus, frozenset] = {
    StepStatus.PENDING: frozenset({StepStatus.IN_PROGRESS, StepStatus.SKIPPED}),
    # Re-execution brings terminal steps back to in_progress
    StepStatus.IN_PROGRESS: frozenset({StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.PENDING}),
    StepStatus.COMPLETED: frozenset({StepStatus.IN_PROGRESS}),
    StepStatus.FAILED: frozenset({StepStatus.IN_PROGRESS, StepStatus.PENDING}),
    StepStatus.SKIPPED: frozenset(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_transition_step(current: StepStatus, target: StepStatus) -> bool:
    return current == target or target in STEP_TRANSITIONS[current]


def step_statuses(run: AnalysisRun) -> Dict[str, StepStatus]:
    """
    Effective status of every configured step.

    Disabled steps are skipped; enabled steps without a result are pending.
    """
    statuses: Dict[str, StepStatus] = {}
    for step_code, step_config in run.config.steps.items():
        if not step_config.enabled:
            statuses[step_code] = StepStatus.SKIPPED
            continue
        result = run.get_step_result(step_code)
        statuses[step_code] = result.status if result else StepStatus.PENDING

    # Results for steps the configuration does not mention still count
    for result in run.step_results:
        if result.step_code not in statuses:
            statuses[result.step_code] = result.status
    return statuses


def derive_run_status(statuses: List[StepStatus],
                      continue_on_failure: bool = False,
                      current: Optional[RunStatus] = None) -> RunStatus:
    """
    Overall run status as a function of the enabled steps' statuses.

    Args:
        statuses: Status of each configured step (skipped steps included)
        continue_on_failure: Keep running past failed steps
        current: Existing run status; cancellation is sticky

    Returns:
        The derived run status
    """
    if current == RunStatus.CANCELLED:
        return RunStatus.CANCELLED

    enabled = [status for status in statuses if status != StepStatus.SKIPPED]
    if not enabled:
        return current or RunStatus.PENDING

    any_failed = StepStatus.FAILED in enabled
    if any_failed and not continue_on_failure:
        return RunStatus.FAILED

    if all(status.is_terminal for status in enabled):
        return RunStatus.FAILED if any_failed else RunStatus.COMPLETED

    if StepStatus.IN_PROGRESS in enabled:
        return RunStatus.IN_PROGRESS

    started = any(status != StepStatus.PENDING for status in enabled)
    # A pending (or freshly retried) run waits until a step actually starts
    if started and current != RunStatus.PENDING:
        return RunStatus.IN_PROGRESS
    return RunStatus.PENDING


def recompute_run_status(run: AnalysisRun, now: Optional[datetime] = None) -> RunStatus:
    """
    Apply the derived status to the run and stamp its timestamps.

    Returns:
        The run's new status
    """
    now = now or utcnow()
    previous = run.status
    statuses = list(step_statuses(run).values())
    status = derive_run_status(statuses, run.config.continue_on_failure, previous)

    if status != previous:
        logger.debug(f"Run {run.id}: {previous.value} -> {status.value}")
        run.status = status
        run.updated_at = now

    if status == RunStatus.IN_PROGRESS and run.started_at is None:
        run.started_at = now
    if status.is_terminal and run.completed_at is None:
        run.completed_at = now
    if not status.is_terminal:
        run.completed_at = None

    if status == RunStatus.FAILED:
        failed = failed_step_codes(run)
        if failed and not run.error_message:
            first = run.get_step_result(failed[0])
            reason = first.error_message if first and first.error_message else 'step failed'
            run.error_message = f"{failed[0]}: {reason}"
    elif status in (RunStatus.COMPLETED, RunStatus.IN_PROGRESS, RunStatus.PENDING):
        run.error_message = None

    return status


def failed_step_codes(run: AnalysisRun) -> List[str]:
    return [code for code, status in step_statuses(run).items() if status == StepStatus.FAILED]


def progress_percent(run: AnalysisRun) -> float:
    """Share of configured steps in a terminal state, 0 to 100."""
    statuses = list(step_statuses(run).values())
    if not statuses:
        return 100.0 if run.status.is_terminal else 0.0
    if run.status == RunStatus.COMPLETED:
        return 100.0
    done = sum(1 for status in statuses if status.is_terminal)
    return round(done / len(statuses) * 100, 1)
