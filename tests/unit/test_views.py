from datetime import datetime, timedelta, timezone

from orchestrator.models.run import AnalysisRun, RunStatus, StepResult, StepStatus
from orchestrator.views import (
    dashboard_stats, group_by_definition, group_by_document, latest_run_per_document, most_used_analysis_type,
    steps_by_document
)

BASE = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def _run(run_id, document_id, code, status, minutes_ago=0, duration=None):
    created = BASE - timedelta(minutes=minutes_ago)
    completed = created + timedelta(minutes=duration) if duration is not None else None
    return AnalysisRun(id=run_id, document_id=document_id, analysis_code=code, status=status,
                       created_at=created, started_at=created if duration is not None else None,
                       completed_at=completed,
                       step_results=[StepResult(id=f"{run_id}:s", step_code='s', status=StepStatus.COMPLETED)])


RUNS = [
    _run('r1', 'doc-a', 'table_analysis', RunStatus.COMPLETED, minutes_ago=30, duration=4),
    _run('r2', 'doc-a', 'text_extraction', RunStatus.FAILED, minutes_ago=10, duration=2),
    _run('r3', 'doc-b', 'table_analysis', RunStatus.IN_PROGRESS, minutes_ago=5),
    _run('r4', 'doc-c', 'table_analysis', RunStatus.CANCELLED, minutes_ago=1),
]


def test_grouping():
    assert [r.id for r in group_by_document(RUNS)['doc-a']] == ['r1', 'r2']
    assert list(group_by_definition(RUNS)) == ['table_analysis', 'text_extraction']
    assert steps_by_document(RUNS)['doc-b'][0][0] == 'r3'


def test_latest_run_per_document():
    latest = latest_run_per_document(RUNS)
    assert latest['doc-a'].id == 'r2'
    assert set(latest) == {'doc-a', 'doc-b', 'doc-c'}


def test_most_used_analysis_type():
    assert most_used_analysis_type(RUNS) == 'table_analysis'
    assert most_used_analysis_type([]) is None


def test_dashboard_stats():
    stats = dashboard_stats(RUNS)

    assert stats.total == 4
    assert (stats.completed, stats.failed, stats.cancelled, stats.ongoing) == (1, 1, 1, 1)
    assert stats.success_rate == 25.0
    assert stats.average_duration_minutes == 3.0
    assert stats.to_dict()['most_used_analysis_type'] == 'table_analysis'


def test_dashboard_stats_empty():
    stats = dashboard_stats([])
    assert stats.total == 0
    assert stats.success_rate == 0.0
    assert stats.average_duration_minutes is None
