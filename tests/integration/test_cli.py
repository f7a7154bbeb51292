import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from backend.catalog import builtin_definitions
from backend.memory import InMemoryBackend
from cli_router import CLIRouter
from commands import get_command
from commands.runs import build_request, parse_value
from commands.steps import load_corrections, parse_parameters
from orchestrator.config import ApplicationConfig, BackendConfig, Config, StoreConfig
from orchestrator.container import Container, setup_default_services
from orchestrator.exceptions import ValidationError
from orchestrator.models.run import AnalysisMode


@pytest.fixture
def state_path(tmp_path):
    return str(tmp_path / 'runs.json')


@pytest.fixture
def router(state_path):
    config = Config(
        backend=BackendConfig(kind='memory', memory_state_path=state_path),
        store=StoreConfig(auto_poll=False),
        app=ApplicationConfig(display_timezone='Asia/Jerusalem'),
    )
    container = Container()
    setup_default_services(container, config)
    return CLIRouter(container)


def _run_cli(router, capsys, *args):
    code = router.route_command(list(args))
    return code, capsys.readouterr().out


def test_definitions_list(router, capsys):
    code, out = _run_cli(router, capsys, 'definitions', 'list')

    assert code == 0
    assert 'table_analysis@1.0.0' in out
    assert 'table_detection → table_structure → table_data' in out


def test_definitions_show_json(router, capsys):
    code, out = _run_cli(router, capsys, 'definitions', 'show', 'text_extraction', '--json')

    assert code == 0
    assert json.loads(out)['steps'][0]['code'] == 'ocr'


def test_start_then_work_a_manual_run(router, capsys, state_path):
    """Test the manual flow: start, execute a step, correct it and inspect the run."""
    code, out = _run_cli(router, capsys, 'runs', 'start', '--analysis', 'table_analysis',
                         '--document', 'invoice-7.pdf', '--mode', 'step_by_step')
    assert code == 0
    assert 'Started run run-0001' in out

    code, out = _run_cli(router, capsys, 'steps', 'execute', 'run-0001', 'table_detection',
                         '--algorithm', 'grid_detector', '--param', 'max_tables=2')
    assert code == 0
    assert 'table_detection: completed (grid_detector@1.0.0, retries=0)' in out

    code, out = _run_cli(router, capsys, 'steps', 'correct', 'run-0001', 'table_detection',
                         '{"table_count": 9}')
    assert code == 0
    assert "table_count: " in out and "→ 9" in out

    code, out = _run_cli(router, capsys, 'runs', 'show', 'run-0001', '--json')
    shown = json.loads(out)
    assert code == 0
    assert shown['status'] == 'in_progress'
    assert shown['step_results'][0]['user_corrections'] == {'table_count': 9}
    assert shown['step_results'][0]['parameters']['max_tables'] == 2

    saved = json.loads(open(state_path, encoding='utf-8').read())
    assert saved['runs'][0]['step_results'][0]['user_corrections'] == {'table_count': 9}


def test_invalid_selection_is_reported_per_step(router, capsys):
    code, out = _run_cli(router, capsys, 'runs', 'start', '--analysis', 'table_analysis',
                         '--document', 'invoice-7.pdf', '--step', 'table_detection=hough_lines')

    assert code == 22
    assert '❌ Validation failed' in out
    assert 'table_detection.algorithm: hough_lines is not available' in out


def test_unknown_run_exit_code(router, capsys):
    code, out = _run_cli(router, capsys, 'runs', 'show', 'run-9999')
    assert code == 2
    assert 'analysis run not found: run-9999' in out


def test_watch_follows_automatic_run(router, capsys):
    code, out = _run_cli(router, capsys, 'runs', 'start', '--analysis', 'table_analysis',
                         '--document', 'invoice-7.pdf', '--watch', '--interval', '0')

    assert code == 0
    assert '✅ Status: completed' in out
    assert 'IDT' in out or 'IST' in out


def test_failed_run_retry(router, capsys):
    _run_cli(router, capsys, 'runs', 'start', '--analysis', 'text_extraction',
             '--document', 'scan.corrupt', '--mode', 'step_by_step')

    code, out = _run_cli(router, capsys, 'steps', 'execute', 'run-0001', 'ocr', '--algorithm', 'basic_ocr')
    assert code == 3
    assert 'unreadable' in out

    code, out = _run_cli(router, capsys, 'runs', 'retry', 'run-0001')
    assert code == 0
    assert 'Retrying run run-0001 (attempt 2)' in out
    assert '#1 failed' in out


def test_cancel_twice_and_stats(router, capsys):
    _run_cli(router, capsys, 'runs', 'start', '--analysis', 'table_analysis', '--document', 'a.pdf',
             '--mode', 'step_by_step')
    _run_cli(router, capsys, 'runs', 'start', '--analysis', 'text_extraction', '--document', 'b.pdf',
             '--mode', 'step_by_step')

    assert _run_cli(router, capsys, 'runs', 'cancel', 'run-0001')[0] == 0
    code, out = _run_cli(router, capsys, 'runs', 'cancel', 'run-0001')
    assert code == 0
    assert 'Run run-0001 is cancelled' in out

    code, out = _run_cli(router, capsys, 'runs', 'stats', '--json')
    stats = json.loads(out)
    assert stats['total'] == 2
    assert stats['cancelled'] == 1
    assert stats['ongoing'] == 1


def test_missing_subcommand(router, capsys):
    assert router.route_command(['runs']) == 1


# Argument helpers

def test_parse_value_prefers_json():
    assert parse_value('0.8') == 0.8
    assert parse_value('true') is True
    assert parse_value('accurate') == 'accurate'


def test_build_request_defaults_to_every_active_step():
    definition = builtin_definitions()[0]

    request = build_request(definition, mode='step_by_step', disabled=['table_data'])

    assert request.mode == AnalysisMode.STEP_BY_STEP
    assert request.analysis_version == '1.0.0'
    assert list(request.config.steps) == ['table_detection', 'table_structure', 'table_data']
    assert request.config.steps['table_detection'].algorithm.code == 'grid_detector'
    assert request.config.steps['table_data'].enabled is False


def test_build_request_with_explicit_steps():
    definition = builtin_definitions()[0]

    request = build_request(
        definition,
        steps=['table_detection=layout_detector@2.0.0', 'table_lines=hough'],
        params=['table_detection.model="accurate"', 'table_structure.merge_cells=false'],
    )

    steps = request.config.steps
    assert steps['table_detection'].algorithm.version == '2.0.0'
    assert steps['table_detection'].algorithm.parameters == {'model': 'accurate'}
    assert steps['table_structure'].algorithm.parameters == {'merge_cells': False}
    assert 'table_data' not in steps
    assert steps['table_lines'].algorithm.code == 'hough'


def test_malformed_assignments_are_rejected():
    definition = builtin_definitions()[0]
    with pytest.raises(ValidationError):
        build_request(definition, steps=['table_detection'])
    with pytest.raises(ValidationError):
        parse_parameters(['max_tables'])


def test_load_corrections_from_file(tmp_path):
    path = tmp_path / 'fix.json'
    path.write_text('{"rows": 4}', encoding='utf-8')

    assert load_corrections(f"@{path}") == {'rows': 4}
    with pytest.raises(ValidationError):
        load_corrections('[1, 2]')
    with pytest.raises(ValidationError):
        load_corrections('{broken')


def test_container_builds_memory_backend(state_path):
    config = Config(backend=BackendConfig(kind='memory', memory_state_path=state_path),
                    store=StoreConfig(), app=ApplicationConfig())
    container = Container()
    setup_default_services(container, config)

    assert isinstance(container.get('backend'), InMemoryBackend)
    assert container.get('run_store') is container.get('run_store')
    assert container.get('run_store').tracker is container.get('tracker')
    with pytest.raises(ValueError):
        container.get('push_listener')


@pytest.mark.asyncio
async def test_watch_follows_pushed_progress(capsys):
    """Test that watching with a push URL shows pushed progress instead of polling the backend."""
    subscriptions = []

    async def ws_handler(request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        message = await ws.receive_json()
        subscriptions.append(message)
        await ws.send_json({'channel': message['channel'],
                            'payload': {'status': 'in_progress', 'progress': 50, 'current_step': 'table_structure'}})
        await ws.receive()
        return ws

    app = web.Application()
    app.router.add_get('/ws', ws_handler)
    server = TestServer(app)
    await server.start_server()

    config = Config(
        backend=BackendConfig(kind='memory', push_url=f"ws://{server.host}:{server.port}/ws"),
        store=StoreConfig(auto_poll=False),
        app=ApplicationConfig(),
    )
    container = Container()
    setup_default_services(container, config)
    command = get_command('runs', container)

    try:
        request = build_request(builtin_definitions()[0], mode='step_by_step', channel='invoice-7-progress')
        run = await command.store.start_analysis('invoice-7.pdf', request)
        watched = await command._watch(run.id, 0.01, 1.0)
    finally:
        await server.close()

    out = capsys.readouterr().out
    assert subscriptions == [{'action': 'subscribe', 'channel': 'invoice-7-progress'}]
    assert '50.0% in_progress' in out
    assert 'Table Structure' in out
    assert watched is run
    assert container.get('backend').calls['get_run'] == 1
