#!/usr/bin/env python3
"""
Read-only dashboard views derived from known runs.

Nothing here touches the network; every view is recomputed from the run
list it is given.
"""

from collections import Counter, OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models.run import AnalysisRun, RunStatus, StepResult


def group_by_document(runs: Iterable[AnalysisRun]) -> Dict[str, List[AnalysisRun]]:
    """Runs keyed by document id, in first-seen order."""
    grouped: Dict[str, List[AnalysisRun]] = OrderedDict()
    for run in runs:
        grouped.setdefault(run.document_id, []).append(run)
    return grouped


def group_by_definition(runs: Iterable[AnalysisRun]) -> Dict[str, List[AnalysisRun]]:
    """Runs keyed by analysis definition code."""
    grouped: Dict[str, List[AnalysisRun]] = OrderedDict()
    for run in runs:
        grouped.setdefault(run.analysis_code, []).append(run)
    return grouped


def steps_by_document(runs: Iterable[AnalysisRun]) -> Dict[str, List[Tuple[str, StepResult]]]:
    """(run id, step result) pairs keyed by document id."""
    grouped: Dict[str, List[Tuple[str, StepResult]]] = OrderedDict()
    for run in runs:
        bucket = grouped.setdefault(run.document_id, [])
        for step_result in run.step_results:
            bucket.append((run.id, step_result))
    return grouped


def _sort_time(run: AnalysisRun) -> datetime:
    stamp = run.created_at or datetime.min
    return stamp.replace(tzinfo=None)


def latest_run_per_document(runs: Iterable[AnalysisRun]) -> Dict[str, AnalysisRun]:
    """Most recently created run for each document."""
    latest: Dict[str, AnalysisRun] = {}
    for run in runs:
        current = latest.get(run.document_id)
        if current is None or _sort_time(run) > _sort_time(current):
            latest[run.document_id] = run
    return latest


def most_used_analysis_type(runs: Iterable[AnalysisRun]) -> Optional[str]:
    """Analysis code with the most runs; ties go to the code seen first."""
    counts = Counter(run.analysis_code for run in runs if run.analysis_code)
    if not counts:
        return None
    return counts.most_common(1)[0][0]


@dataclass
class DashboardStats:
    total: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    ongoing: int = 0
    success_rate: float = 0.0
    average_duration_minutes: Optional[float] = None
    most_used_analysis_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'completed': self.completed,
            'failed': self.failed,
            'cancelled': self.cancelled,
            'ongoing': self.ongoing,
            'success_rate': self.success_rate,
            'average_duration_minutes': self.average_duration_minutes,
            'most_used_analysis_type': self.most_used_analysis_type,
        }


def dashboard_stats(runs: Iterable[AnalysisRun]) -> DashboardStats:
    """
    Summary counters for the dashboard.

    Success rate is completed runs over all runs, as a percentage. The
    average duration only covers runs that have both a start and an end.
    """
    runs = list(runs)
    stats = DashboardStats(total=len(runs))
    durations = []
    for run in runs:
        if run.status == RunStatus.COMPLETED:
            stats.completed += 1
        elif run.status == RunStatus.FAILED:
            stats.failed += 1
        elif run.status == RunStatus.CANCELLED:
            stats.cancelled += 1
        else:
            stats.ongoing += 1
        if run.duration_minutes is not None:
            durations.append(run.duration_minutes)

    if stats.total:
        stats.success_rate = round(stats.completed / stats.total * 100, 1)
    if durations:
        stats.average_duration_minutes = round(sum(durations) / len(durations), 2)
    stats.most_used_analysis_type = most_used_analysis_type(runs)
    return stats
