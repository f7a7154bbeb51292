#!/usr/bin/env python3
"""
Async HTTP client for the analysis REST API.

Maps the backend contract onto the /analysis endpoints and translates HTTP
failures into orchestrator exceptions.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from orchestrator.exceptions import (
    AuthenticationError, BackendError, ExecutorError, NotFoundError, OperationTimeoutError,
    RateLimitError, ValidationError, ValidationIssue
)
from orchestrator.models.definition import AnalysisDefinition
from orchestrator.models.run import AnalysisRun, AnalysisRunRequest, RunFilter, StepResult

from .base import AnalysisBackend

logger = logging.getLogger(__name__)


def _decode(text: str) -> Any:
    return json.loads(text) if text and text.strip() else None


def _items(payload: Any) -> List[Dict[str, Any]]:
    """Accept both bare lists and {"items": [...]} envelopes."""
    if isinstance(payload, dict):
        for key in ('items', 'results', 'data'):
            if isinstance(payload.get(key), list):
                return payload[key]
        return []
    return payload or []


def _detail(payload: Any, fallback: str) -> str:
    if isinstance(payload, dict):
        detail = payload.get('detail') or payload.get('message') or payload.get('error')
        if isinstance(detail, str):
            return detail
        if detail is not None:
            return str(detail)
    if isinstance(payload, str) and payload.strip():
        return payload.strip()[:500]
    return fallback


def _validation_issues(payload: Any, step_code: Optional[str]) -> List[ValidationIssue]:
    """Turn a 400/422 body into issues; list-shaped details carry a loc path."""
    detail = payload.get('detail') if isinstance(payload, dict) else None
    if isinstance(detail, list) and detail:
        issues = []
        for item in detail:
            if not isinstance(item, dict):
                issues.append(ValidationIssue(step_code, 'request', str(item)))
                continue
            loc = [str(part) for part in item.get('loc', []) if part != 'body']
            issues.append(ValidationIssue(step_code, '.'.join(loc) or 'request', item.get('msg', 'invalid')))
        return issues
    return [ValidationIssue(step_code, 'request', _detail(payload, 'rejected by server'))]


class AnalysisAPIClient(AnalysisBackend):
    """AnalysisBackend over the REST API."""

    name = 'http'

    def __init__(self,
                 api_url: str,
                 api_version: str = '/api/v1',
                 api_token: Optional[str] = None,
                 timeout: float = 10.0,
                 user_agent: str = 'AnalysisOrchestrator/1.0',
                 session: Optional[aiohttp.ClientSession] = None):
        """
        Initialize the API client.

        Args:
            api_url: Server root, e.g. https://host
            api_version: Version prefix joined to the root
            api_token: Bearer token sent with every request
            timeout: Per-request timeout in seconds
            user_agent: User-Agent header value
            session: Externally owned session (tests, connection sharing)
        """
        self.base_url = f"{api_url.rstrip('/')}{api_version}/analysis"
        self.timeout = timeout
        self._headers = {'User-Agent': user_agent, 'Accept': 'application/json'}
        if api_token:
            self._headers['Authorization'] = f"Bearer {api_token}"
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        """Async context manager entry."""
        self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers=self._headers,
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(self,
                       operation: str,
                       method: str,
                       path: str,
                       params: Optional[Dict[str, str]] = None,
                       body: Optional[Dict[str, Any]] = None,
                       step_code: Optional[str] = None,
                       run_id: Optional[str] = None) -> Any:
        url = f"{self.base_url}{path}"
        session = self._get_session()
        headers = None if self._owns_session else self._headers
        logger.debug(f"{method} {url}")
        try:
            async with session.request(method, url, params=params, json=body, headers=headers) as response:
                if response.status >= 400:
                    await self._raise_for_status(operation, response, step_code, run_id)
                text = await response.text()
                try:
                    return _decode(text)
                except ValueError as e:
                    raise BackendError(operation, response.status, f"invalid JSON response: {e}") from e
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError(operation, self.timeout) from e
        except aiohttp.ClientError as e:
            logger.error(f"{operation} request failed: {e}")
            raise BackendError(operation, None, str(e)) from e

    async def _raise_for_status(self, operation: str, response: aiohttp.ClientResponse,
                                step_code: Optional[str], run_id: Optional[str]) -> None:
        text = await response.text()
        try:
            payload = _decode(text)
        except ValueError:
            payload = text

        status = response.status
        detail = _detail(payload, response.reason or f"HTTP {status}")
        logger.warning(f"{operation} answered HTTP {status}: {detail}")

        if status == 401:
            raise AuthenticationError(operation)
        if status == 404:
            identifier = '/'.join(part for part in (run_id, step_code) if part) or response.url.path
            raise NotFoundError(operation.replace('_', ' '), identifier)
        if status in (400, 422):
            raise ValidationError(_validation_issues(payload, step_code))
        if status == 429:
            retry_after = response.headers.get('Retry-After')
            raise RateLimitError(operation, int(retry_after) if retry_after and retry_after.isdigit() else None)
        if operation == 'execute_step' and step_code:
            raise ExecutorError(step_code, detail, run_id)
        raise BackendError(operation, status, detail)

    # Definitions

    async def list_definitions(self) -> List[AnalysisDefinition]:
        payload = await self._request('list_definitions', 'GET', '/types')
        return [AnalysisDefinition.from_dict(item) for item in _items(payload)]

    async def get_definition(self, code: str, version: Optional[str] = None) -> AnalysisDefinition:
        params = {'version': version} if version else None
        payload = await self._request('get_definition', 'GET', f"/types/{code}", params=params, run_id=code)
        return AnalysisDefinition.from_dict(payload)

    # Runs

    async def submit_run(self, document_id: str, request: AnalysisRunRequest) -> AnalysisRun:
        config = request.config
        body = {
            'analysis_type_id': request.analysis_code,
            'mode': request.mode.value,
            'algorithm_configs': {code: step.to_dict() for code, step in config.steps.items()},
            'notifications': config.notifications.to_dict(),
            'metadata': config.metadata,
            'continue_on_failure': config.continue_on_failure,
        }
        payload = await self._request('submit_run', 'POST', f"/documents/{document_id}", body=body)
        run = AnalysisRun.from_dict(payload)
        # The server may omit what it was just sent
        if not run.config.steps:
            run.config = config
        run.document_id = run.document_id or document_id
        run.analysis_code = run.analysis_code or request.analysis_code
        run.analysis_version = run.analysis_version or request.analysis_version
        return run

    async def _run_action(self, operation: str, run_id: str, action: str) -> AnalysisRun:
        payload = await self._request(operation, 'POST', f"/{run_id}/{action}", run_id=run_id)
        if isinstance(payload, dict) and payload.get('id'):
            return AnalysisRun.from_dict(payload)
        return await self.get_run(run_id)

    async def cancel_run(self, run_id: str) -> AnalysisRun:
        return await self._run_action('cancel_run', run_id, 'cancel')

    async def retry_run(self, run_id: str) -> AnalysisRun:
        return await self._run_action('retry_run', run_id, 'retry')

    async def list_runs(self, run_filter: RunFilter) -> List[AnalysisRun]:
        payload = await self._request('list_runs', 'GET', '', params=run_filter.to_query())
        return [AnalysisRun.from_dict(item) for item in _items(payload)]

    async def get_run(self, run_id: str) -> AnalysisRun:
        payload = await self._request('get_run', 'GET', f"/{run_id}", run_id=run_id)
        return AnalysisRun.from_dict(payload)

    async def get_progress(self, run_id: str) -> Dict[str, Any]:
        payload = await self._request('get_progress', 'GET', f"/{run_id}/progress", run_id=run_id)
        return payload or {}

    # Steps

    async def execute_step(self,
                           run_id: str,
                           step_code: str,
                           algorithm_code: str,
                           algorithm_version: Optional[str],
                           parameters: Dict[str, Any],
                           user_corrections: Dict[str, Any]) -> StepResult:
        body = {
            'algorithm_id': algorithm_code,
            'algorithm_version': algorithm_version,
            'parameters': parameters,
            'user_corrections': user_corrections,
        }
        payload = await self._request('execute_step', 'POST', f"/{run_id}/steps/{step_code}/execute",
                                      body=body, step_code=step_code, run_id=run_id)
        payload = dict(payload or {})
        payload.setdefault('step_code', step_code)
        # A 2xx without a status means the step ran
        payload.setdefault('status', 'completed')
        return StepResult.from_dict(payload)

    async def update_corrections(self, run_id: str, step_code: str, corrections: Dict[str, Any]) -> None:
        await self._request('update_corrections', 'PUT', f"/{run_id}/steps/{step_code}/corrections",
                            body={step_code: corrections}, step_code=step_code, run_id=run_id)
