import asyncio

import pytest

from orchestrator.exceptions import BackendError, NotFoundError
from orchestrator.models.run import (
    AnalysisRun, AnalysisRunConfig, NotificationConfig, RunStatus, StepConfig, StepResult, StepStatus
)
from orchestrator.progress import ProgressPoller, ProgressTracker

STEP_NAMES = {'detect': 'Detect Tables', 'read': 'Read Cells'}


def _run(run_id: str = 'run-1', status: RunStatus = RunStatus.PENDING, channel=None, results=()) -> AnalysisRun:
    return AnalysisRun(
        id=run_id,
        document_id='doc-1',
        analysis_code='table_analysis',
        status=status,
        config=AnalysisRunConfig(
            steps={'detect': StepConfig(), 'read': StepConfig()},
            notifications=NotificationConfig(websocket_channel=channel),
        ),
        step_results=[StepResult(id=f"{run_id}:{code}", step_code=code, status=s) for code, s in results],
    )


@pytest.fixture
def tracker():
    return ProgressTracker()


def test_track_builds_initial_snapshot(tracker):
    events = []
    tracker.add_callback(lambda event, snapshot: events.append(event))

    snapshot = tracker.track(_run(channel='ch-1'), STEP_NAMES)

    assert snapshot.progress == 0.0
    assert snapshot.current_step_label == 'Detect Tables'
    assert tracker.channels() == {'ch-1': 'run-1'}
    assert tracker.active_run_ids() == ['run-1']
    assert events == ['tracked']


def test_update_from_run_follows_steps(tracker):
    tracker.track(_run(), STEP_NAMES)
    run = _run(status=RunStatus.IN_PROGRESS,
               results=[('detect', StepStatus.COMPLETED), ('read', StepStatus.IN_PROGRESS)])

    snapshot = tracker.update_from_run(run)

    assert snapshot.progress == 50.0
    assert snapshot.current_step_label == 'Read Cells'


def test_terminal_run_is_cleared(tracker):
    events = []
    tracker.add_callback(lambda event, snapshot: events.append((event, snapshot.status)))
    tracker.track(_run(channel='ch-1'), STEP_NAMES)

    tracker.update_from_run(_run(status=RunStatus.COMPLETED,
                                 results=[('detect', StepStatus.COMPLETED), ('read', StepStatus.COMPLETED)]))

    assert not tracker.is_tracking('run-1')
    assert tracker.channels() == {}
    assert events[-1] == ('cleared', RunStatus.COMPLETED)


def test_tracking_an_ended_run_clears_it_at_once(tracker):
    tracker.track(_run(status=RunStatus.FAILED))
    assert not tracker.is_tracking('run-1')


def test_untracked_runs_are_ignored(tracker):
    assert tracker.update_from_run(_run()) is None
    assert tracker.handle_push('ch-9', {'progress': 10}) is None


def test_push_by_channel(tracker):
    """Test that a push message on a run's channel updates its snapshot."""
    tracker.track(_run(channel='ch-1'), STEP_NAMES)

    snapshot = tracker.handle_push('ch-1', {'status': 'in_progress', 'progress': 40,
                                            'current_step': 'Read Cells'})

    assert snapshot.status == RunStatus.IN_PROGRESS
    assert snapshot.progress == 40.0
    assert snapshot.current_step_label == 'Read Cells'
    assert tracker.get('run-1') is snapshot


def test_push_by_run_id_with_bad_values(tracker):
    tracker.track(_run(), STEP_NAMES)
    tracker.handle_push('', {'run_id': 'run-1', 'progress': 30})

    snapshot = tracker.handle_push('', {'run_id': 'run-1', 'status': 'exploded', 'progress': 'lots'})

    assert snapshot.status == RunStatus.PENDING
    assert snapshot.progress == 30.0


def test_progress_report_shows_step_names(tracker):
    tracker.track(_run(), STEP_NAMES)

    snapshot = tracker.apply_report('run-1', {'status': 'in_progress', 'progress': 50.0, 'current_step': 'read'})

    assert snapshot.progress == 50.0
    assert snapshot.current_step_label == 'Read Cells'
    assert tracker.apply_report('run-9', {'progress': 10}) is None


def test_push_progress_is_clamped(tracker):
    tracker.track(_run(channel='ch-1'))
    assert tracker.handle_push('ch-1', {'progress': 250}).progress == 100.0


def test_terminal_push_clears_run(tracker):
    tracker.track(_run(channel='ch-1'))
    tracker.handle_push('ch-1', {'status': 'failed'})
    assert not tracker.is_tracking('run-1')


def test_broken_callback_does_not_stop_tracking(tracker):
    def explode(event, snapshot):
        raise RuntimeError('boom')

    seen = []
    tracker.add_callback(explode)
    tracker.add_callback(lambda event, snapshot: seen.append(event))

    tracker.track(_run())

    assert seen == ['tracked']
    assert tracker.is_tracking('run-1')


# Poller

@pytest.mark.asyncio
async def test_poll_once_drops_runs_that_no_longer_exist(tracker):
    tracker.track(_run('run-1'))
    tracker.track(_run('run-2'))

    async def fetch(run_id):
        if run_id == 'run-1':
            raise NotFoundError('analysis run', run_id)
        return None

    poller = ProgressPoller(tracker, fetch, interval=0)
    polled = await poller.poll_once()

    assert polled == 2
    assert tracker.active_run_ids() == ['run-2']
    assert poller.errors == 0


@pytest.mark.asyncio
async def test_poll_errors_are_counted_not_raised(tracker):
    tracker.track(_run())

    async def fetch(run_id):
        raise BackendError('fetch_run', 503, 'unavailable')

    poller = ProgressPoller(tracker, fetch, interval=0)
    await poller.poll_once()

    assert poller.errors == 1
    assert 'unavailable' in poller.last_error
    assert tracker.is_tracking('run-1')


@pytest.mark.asyncio
async def test_poller_stops_when_nothing_is_active(tracker):
    """Test that the loop ends on its own once every run is terminal."""
    tracker.track(_run())
    fetches = []

    async def fetch(run_id):
        fetches.append(run_id)
        if len(fetches) == 3:
            tracker.update_from_run(_run(status=RunStatus.COMPLETED))

    poller = ProgressPoller(tracker, fetch, interval=0.001)
    poller.start()
    poller.start()
    await asyncio.wait_for(poller.wait_idle(), timeout=2)

    assert fetches == ['run-1'] * 3
    assert poller.polls == 3
    assert not poller.is_running()


@pytest.mark.asyncio
async def test_stop_cancels_the_loop(tracker):
    tracker.track(_run())

    async def fetch(run_id):
        return None

    poller = ProgressPoller(tracker, fetch, interval=10)
    poller.start()
    assert poller.is_running()

    await poller.stop()

    assert not poller.is_running()
    assert tracker.is_tracking('run-1')
