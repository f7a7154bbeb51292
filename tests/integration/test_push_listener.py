import asyncio
import json

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from backend.push_listener import ProgressPushListener
from orchestrator.models.run import AnalysisRun, AnalysisRunConfig, NotificationConfig, RunStatus, StepConfig
from orchestrator.progress import ProgressTracker


def _tracked(tracker: ProgressTracker, run_id: str = 'run-1', channel: str = 'analysis-run-1') -> AnalysisRun:
    run = AnalysisRun(
        id=run_id,
        document_id='doc-1',
        analysis_code='table_analysis',
        config=AnalysisRunConfig(steps={'detect': StepConfig()},
                                 notifications=NotificationConfig(websocket_channel=channel)),
    )
    tracker.track(run, {'detect': 'Detect Tables'})
    return run


@pytest.fixture
def tracker():
    return ProgressTracker()


@pytest.fixture
def listener(tracker):
    return ProgressPushListener('ws://unused', tracker)


def test_enveloped_message_updates_tracked_run(tracker, listener):
    _tracked(tracker)

    handled = listener._dispatch_message(json.dumps({
        'channel': 'analysis-run-1',
        'payload': {'status': 'in_progress', 'progress': 25, 'current_step': 'Detect Tables'},
    }))

    assert handled is True
    assert tracker.get('run-1').progress == 25.0
    assert listener.messages_received == 1


def test_flat_message_with_run_id(tracker, listener):
    _tracked(tracker)
    assert listener._dispatch_message(json.dumps({'run_id': 'run-1', 'progress': 60}))
    assert tracker.get('run-1').progress == 60.0


def test_data_envelope_is_accepted(tracker, listener):
    _tracked(tracker)
    listener._dispatch_message(json.dumps({'channel': 'analysis-run-1', 'data': {'status': 'completed'}}))
    assert not tracker.is_tracking('run-1')


def test_unusable_messages_are_ignored(tracker, listener):
    _tracked(tracker)

    assert listener._dispatch_message('not json') is False
    assert listener._dispatch_message('[1, 2]') is False
    assert listener._dispatch_message(json.dumps({'channel': 'other', 'payload': {'progress': 5}})) is False
    assert tracker.get('run-1').progress == 0.0


@pytest.mark.asyncio
async def test_listen_subscribes_and_stops_when_run_ends(tracker):
    """Test that the listener subscribes to run channels and returns once nothing is active."""
    subscriptions = []

    async def ws_handler(request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        message = await ws.receive_json()
        subscriptions.append(message)
        await ws.send_json({'channel': message['channel'],
                            'payload': {'status': 'in_progress', 'progress': 50}})
        await ws.send_json({'channel': message['channel'],
                            'payload': {'status': 'completed', 'progress': 100}})
        await ws.receive()
        return ws

    app = web.Application()
    app.router.add_get('/ws', ws_handler)
    server = TestServer(app)
    await server.start_server()

    events = []
    tracker.add_callback(lambda event, snapshot: events.append((event, snapshot.status)))
    _tracked(tracker)
    listener = ProgressPushListener(f"ws://{server.host}:{server.port}/ws", tracker, heartbeat=5)

    try:
        async with aiohttp.ClientSession() as session:
            await asyncio.wait_for(listener.listen(session), timeout=5)
    finally:
        await server.close()

    assert subscriptions == [{'action': 'subscribe', 'channel': 'analysis-run-1'}]
    assert listener.messages_received == 2
    assert events[-1] == ('cleared', RunStatus.COMPLETED)
    assert not tracker.is_tracking('run-1')
