import asyncio

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from backend.catalog import TABLE_ANALYSIS
from backend.http_client import AnalysisAPIClient
from orchestrator.exceptions import (
    AuthenticationError, BackendError, ExecutorError, NotFoundError, OperationTimeoutError, RateLimitError,
    ValidationError
)
from orchestrator.models.run import (
    AlgorithmSelection, AnalysisMode, AnalysisRunConfig, AnalysisRunRequest, RunFilter, RunStatus, StepConfig,
    StepStatus
)

RUN = {
    'id': 'run-42',
    'document_id': 'invoice-7.pdf',
    'analysis_type_id': 'table_analysis',
    'analysis_version': '1.0.0',
    'mode': 'step_by_step',
    'status': 'in_progress',
    'created_at': '2024-05-01T10:00:00Z',
    'step_results': [
        {'id': 's-1', 'step_code': 'table_detection', 'status': 'completed', 'result': {'table_count': 1},
         'parameters': {'max_tables': {'value': 3}}},
    ],
}


def _build_app(received):
    @web.middleware
    async def require_token(request, handler):
        if request.headers.get('Authorization') != 'Bearer secret':
            return web.json_response({'detail': 'Not authenticated'}, status=401)
        return await handler(request)

    async def list_types(request):
        return web.json_response({'items': [TABLE_ANALYSIS]})

    async def get_type(request):
        received.append(('get_type', dict(request.query)))
        if request.match_info['code'] != 'table_analysis':
            return web.json_response({'detail': 'Analysis type not found'}, status=404)
        return web.json_response(TABLE_ANALYSIS)

    async def submit(request):
        body = await request.json()
        received.append(('submit', body))
        return web.json_response({
            'id': 'run-43',
            'document_id': request.match_info['document_id'],
            'analysis_type_id': body['analysis_type_id'],
            'mode': body['mode'],
            'status': 'pending',
        }, status=201)

    async def list_runs(request):
        received.append(('list', dict(request.query)))
        return web.json_response([RUN])

    async def get_run(request):
        run_id = request.match_info['run_id']
        if run_id == 'run-42':
            return web.json_response(RUN)
        if run_id == 'run-garbled':
            return web.Response(text='{not json', content_type='application/json')
        if run_id == 'run-slow':
            await asyncio.sleep(2)
            return web.json_response(RUN)
        return web.json_response({'detail': 'Analysis not found'}, status=404)

    async def cancel(request):
        return web.json_response({'message': 'cancelled'})

    async def retry(request):
        return web.json_response({'detail': [{'loc': ['body', 'status'], 'msg': 'run is not failed'}]}, status=422)

    async def execute(request):
        body = await request.json()
        step_code = request.match_info['step_code']
        received.append(('execute', body))
        if step_code == 'broken':
            return web.json_response({'detail': 'worker crashed'}, status=500)
        if step_code == 'busy':
            return web.json_response({'detail': 'slow down'}, status=429, headers={'Retry-After': '7'})
        return web.json_response({'id': 's-1', 'result': {'table_count': 2}, 'retry_count': 1})

    async def corrections(request):
        received.append(('corrections', await request.json()))
        return web.json_response({'message': 'saved'})

    app = web.Application(middlewares=[require_token])
    app.router.add_get('/api/v1/analysis/types', list_types)
    app.router.add_get('/api/v1/analysis/types/{code}', get_type)
    app.router.add_post('/api/v1/analysis/documents/{document_id}', submit)
    app.router.add_get('/api/v1/analysis', list_runs)
    app.router.add_get('/api/v1/analysis/{run_id}', get_run)
    app.router.add_post('/api/v1/analysis/{run_id}/cancel', cancel)
    app.router.add_post('/api/v1/analysis/{run_id}/retry', retry)
    app.router.add_post('/api/v1/analysis/{run_id}/steps/{step_code}/execute', execute)
    app.router.add_put('/api/v1/analysis/{run_id}/steps/{step_code}/corrections', corrections)
    return app


@pytest_asyncio.fixture
async def api():
    received = []
    server = TestServer(_build_app(received))
    await server.start_server()
    base_url = f"http://{server.host}:{server.port}"
    client = AnalysisAPIClient(base_url, api_token='secret', timeout=0.5)
    yield client, received, base_url
    await client.close()
    await server.close()


@pytest.mark.asyncio
async def test_definitions_are_parsed(api):
    client, received, _ = api

    definitions = await client.list_definitions()
    definition = await client.get_definition('table_analysis', '1.0.0')

    assert [d.key for d in definitions] == ['table_analysis@1.0.0']
    assert definition.step_codes == ['table_detection', 'table_structure', 'table_data']
    assert received == [('get_type', {'version': '1.0.0'})]


@pytest.mark.asyncio
async def test_submit_sends_step_configs_and_fills_gaps(api):
    """Test that the request body carries algorithm configs and the reply is completed locally."""
    client, received, _ = api
    config = AnalysisRunConfig(steps={
        'table_detection': StepConfig(algorithm=AlgorithmSelection('grid_detector', '1.0.0', {'max_tables': 3})),
        'table_structure': StepConfig(enabled=False),
    })
    request = AnalysisRunRequest('table_analysis', AnalysisMode.STEP_BY_STEP, config, analysis_version='1.0.0')

    run = await client.submit_run('invoice-7.pdf', request)

    _, body = received[0]
    assert body['analysis_type_id'] == 'table_analysis'
    assert body['mode'] == 'step_by_step'
    assert body['algorithm_configs']['table_detection']['algorithm']['parameters'] == {'max_tables': 3}
    assert body['algorithm_configs']['table_structure'] == {'enabled': False}
    assert run.id == 'run-43'
    assert run.status == RunStatus.PENDING
    assert run.config is config
    assert run.analysis_version == '1.0.0'


@pytest.mark.asyncio
async def test_list_runs_sends_filter_as_query(api):
    client, received, _ = api

    runs = await client.list_runs(RunFilter(status=RunStatus.IN_PROGRESS, analysis_code='table_analysis', limit=5))

    assert received[0] == ('list', {'skip': '0', 'limit': '5', 'status': 'in_progress',
                                    'analysis_type': 'table_analysis'})
    assert runs[0].analysis_code == 'table_analysis'
    assert runs[0].step_results[0].parameters == {'max_tables': 3}


@pytest.mark.asyncio
async def test_cancel_without_run_body_refetches(api):
    client, _, _ = api
    run = await client.cancel_run('run-42')
    assert run.id == 'run-42'


@pytest.mark.asyncio
async def test_execute_step_defaults_to_completed(api):
    client, received, _ = api

    step = await client.execute_step('run-42', 'table_detection', 'grid_detector', '1.0.0',
                                     {'max_tables': 3}, {'table_count': 4})

    assert received[0] == ('execute', {'algorithm_id': 'grid_detector', 'algorithm_version': '1.0.0',
                                       'parameters': {'max_tables': 3}, 'user_corrections': {'table_count': 4}})
    assert step.step_code == 'table_detection'
    assert step.status == StepStatus.COMPLETED
    assert step.result == {'table_count': 2}


@pytest.mark.asyncio
async def test_corrections_are_keyed_by_step(api):
    client, received, _ = api
    await client.update_corrections('run-42', 'table_data', {'cells': [['a']]})
    assert received[0] == ('corrections', {'table_data': {'cells': [['a']]}})


@pytest.mark.asyncio
async def test_not_found_names_the_run(api):
    client, _, _ = api
    with pytest.raises(NotFoundError) as exc_info:
        await client.get_run('run-missing')
    assert exc_info.value.identifier == 'run-missing'

    with pytest.raises(NotFoundError):
        await client.get_definition('unknown_type')


@pytest.mark.asyncio
async def test_unprocessable_entity_becomes_validation_error(api):
    client, _, _ = api
    with pytest.raises(ValidationError) as exc_info:
        await client.retry_run('run-42')
    assert exc_info.value.issues[0].field == 'status'
    assert exc_info.value.issues[0].message == 'run is not failed'


@pytest.mark.asyncio
async def test_server_error_on_execute_is_an_executor_error(api):
    client, _, _ = api
    with pytest.raises(ExecutorError) as exc_info:
        await client.execute_step('run-42', 'broken', 'grid_detector', None, {}, {})
    assert exc_info.value.reason == 'worker crashed'
    assert exc_info.value.run_id == 'run-42'


@pytest.mark.asyncio
async def test_rate_limit_carries_retry_after(api):
    client, _, _ = api
    with pytest.raises(RateLimitError) as exc_info:
        await client.execute_step('run-42', 'busy', 'grid_detector', None, {}, {})
    assert exc_info.value.context['retry_after_seconds'] == 7


@pytest.mark.asyncio
async def test_invalid_json_is_a_backend_error(api):
    client, _, _ = api
    with pytest.raises(BackendError, match='invalid JSON'):
        await client.get_run('run-garbled')


@pytest.mark.asyncio
async def test_slow_response_times_out(api):
    client, _, _ = api
    with pytest.raises(OperationTimeoutError):
        await client.get_run('run-slow')


@pytest.mark.asyncio
async def test_missing_token_is_rejected(api):
    _, _, base_url = api
    async with AnalysisAPIClient(base_url) as anonymous:
        with pytest.raises(AuthenticationError):
            await anonymous.list_definitions()


@pytest.mark.asyncio
async def test_unreachable_server_is_a_backend_error():
    async with AnalysisAPIClient('http://127.0.0.1:9', timeout=2) as client:
        with pytest.raises(BackendError):
            await client.list_definitions()
