#!/usr/bin/env python3
"""
Analysis run data models.

An AnalysisRun is the mutable execution unit: one definition executed
against one document, holding one StepResult per step code.
"""

import copy
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser

from ..corrections import merge_overlay


def _parse_datetime_safe(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return date_parser.parse(value)
    except (ValueError, OverflowError, TypeError):
        return None


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class RunStatus(str, Enum):
    PENDING = 'pending'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


class StepStatus(str, Enum):
    PENDING = 'pending'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    FAILED = 'failed'
    SKIPPED = 'skipped'

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED)


class AnalysisMode(str, Enum):
    AUTOMATIC = 'automatic'
    STEP_BY_STEP = 'step_by_step'


def _step_status(value: Any) -> StepStatus:
    try:
        return StepStatus(value)
    except ValueError:
        # Servers report queued steps as "pending"-like custom states
        return StepStatus.PENDING


def _unwrap_parameters(raw: Any) -> Dict[str, Any]:
    """Accept both {name: value} and {name: {name, value}} parameter maps."""
    if not isinstance(raw, dict):
        return {}
    parameters = {}
    for name, value in raw.items():
        if isinstance(value, dict) and set(value.keys()) <= {'name', 'value'} and 'value' in value:
            parameters[name] = value['value']
        else:
            parameters[name] = value
    return parameters


@dataclass
class AlgorithmSelection:
    """Algorithm chosen for a step together with its parameter values."""
    code: str
    version: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AlgorithmSelection':
        return cls(
            code=data['code'],
            version=data.get('version'),
            parameters=_unwrap_parameters(data.get('parameters')),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'version': self.version,
            'parameters': copy.deepcopy(self.parameters),
        }


@dataclass
class StepConfig:
    """Per-step run configuration."""
    enabled: bool = True
    algorithm: Optional[AlgorithmSelection] = None
    timeout: Optional[int] = None
    retry: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StepConfig':
        algorithm = data.get('algorithm')
        return cls(
            enabled=bool(data.get('enabled', True)),
            algorithm=AlgorithmSelection.from_dict(algorithm) if algorithm else None,
            timeout=data.get('timeout'),
            retry=data.get('retry'),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'enabled': self.enabled}
        if self.algorithm is not None:
            data['algorithm'] = self.algorithm.to_dict()
        if self.timeout is not None:
            data['timeout'] = self.timeout
        if self.retry is not None:
            data['retry'] = self.retry
        return data


@dataclass
class NotificationConfig:
    notify_on_completion: bool = True
    notify_on_failure: bool = True
    websocket_channel: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'NotificationConfig':
        data = data or {}
        return cls(
            notify_on_completion=bool(data.get('notify_on_completion', True)),
            notify_on_failure=bool(data.get('notify_on_failure', True)),
            websocket_channel=data.get('websocket_channel'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'notify_on_completion': self.notify_on_completion,
            'notify_on_failure': self.notify_on_failure,
            'websocket_channel': self.websocket_channel,
        }


@dataclass
class AnalysisRunConfig:
    """
    Configuration of a run.

    Steps are an ordered mapping of step code to StepConfig; insertion order
    follows the definition's step order when built by the CLI or the catalog.
    """
    steps: Dict[str, StepConfig] = field(default_factory=dict)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    metadata: Dict[str, Any] = field(default_factory=dict)
    continue_on_failure: bool = False

    def enabled_step_codes(self) -> List[str]:
        return [code for code, step in self.steps.items() if step.enabled]

    def is_enabled(self, step_code: str) -> bool:
        # Steps missing from the configuration count as disabled
        step = self.steps.get(step_code)
        return bool(step and step.enabled)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'AnalysisRunConfig':
        data = data or {}
        return cls(
            steps={code: StepConfig.from_dict(step or {}) for code, step in (data.get('steps') or {}).items()},
            notifications=NotificationConfig.from_dict(data.get('notifications')),
            metadata=dict(data.get('metadata') or {}),
            continue_on_failure=bool(data.get('continue_on_failure', False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'steps': {code: step.to_dict() for code, step in self.steps.items()},
            'notifications': self.notifications.to_dict(),
            'metadata': copy.deepcopy(self.metadata),
            'continue_on_failure': self.continue_on_failure,
        }


@dataclass
class AnalysisRunRequest:
    """What a caller submits to start a run."""
    analysis_code: str
    mode: AnalysisMode = AnalysisMode.AUTOMATIC
    config: AnalysisRunConfig = field(default_factory=AnalysisRunConfig)
    document_type: Optional[str] = None
    analysis_version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'analysis_code': self.analysis_code,
            'analysis_version': self.analysis_version,
            'mode': self.mode.value,
            'config': self.config.to_dict(),
            'document_type': self.document_type,
        }


@dataclass
class StepResult:
    """Outcome of one step; updated in place on re-execution."""
    id: str
    step_code: str
    algorithm_code: Optional[str] = None
    algorithm_version: Optional[str] = None
    status: StepStatus = StepStatus.PENDING
    parameters: Dict[str, Any] = field(default_factory=dict)
    result: Any = None
    user_corrections: Dict[str, Any] = field(default_factory=dict)
    retry_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    def effective_result(self) -> Any:
        """The result with user corrections overlaid; result itself is untouched."""
        return merge_overlay(self.result, self.user_corrections)

    def result_fingerprint(self) -> str:
        """Stable serialization of the raw result, used to detect mutation."""
        return json.dumps(self.result, sort_keys=True, default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StepResult':
        return cls(
            id=str(data.get('id') or f"{data['step_code']}-result"),
            step_code=data['step_code'],
            algorithm_code=data.get('algorithm_code'),
            algorithm_version=data.get('algorithm_version'),
            status=_step_status(data.get('status', 'pending')),
            parameters=_unwrap_parameters(data.get('parameters')),
            result=copy.deepcopy(data.get('result')),
            user_corrections=copy.deepcopy(data.get('user_corrections') or {}),
            retry_count=int(data.get('retry_count') or 0),
            created_at=_parse_datetime_safe(data.get('created_at')),
            updated_at=_parse_datetime_safe(data.get('updated_at')),
            started_at=_parse_datetime_safe(data.get('started_at')),
            completed_at=_parse_datetime_safe(data.get('completed_at')),
            error_message=data.get('error_message'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'step_code': self.step_code,
            'algorithm_code': self.algorithm_code,
            'algorithm_version': self.algorithm_version,
            'status': self.status.value,
            'parameters': copy.deepcopy(self.parameters),
            'result': copy.deepcopy(self.result),
            'user_corrections': copy.deepcopy(self.user_corrections),
            'retry_count': self.retry_count,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
            'started_at': _isoformat(self.started_at),
            'completed_at': _isoformat(self.completed_at),
            'error_message': self.error_message,
        }


@dataclass
class RunAttempt:
    """Audit record of an attempt that ended in failure before a retry."""
    attempt: int
    status: RunStatus
    error_message: Optional[str] = None
    failed_steps: List[str] = field(default_factory=list)
    ended_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RunAttempt':
        return cls(
            attempt=int(data.get('attempt', 1)),
            status=RunStatus(data.get('status', 'failed')),
            error_message=data.get('error_message'),
            failed_steps=list(data.get('failed_steps') or []),
            ended_at=_parse_datetime_safe(data.get('ended_at')),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'attempt': self.attempt,
            'status': self.status.value,
            'error_message': self.error_message,
            'failed_steps': list(self.failed_steps),
            'ended_at': _isoformat(self.ended_at),
        }


@dataclass
class AnalysisRun:
    """
    One execution of an analysis definition against a document.

    The step_results list holds at most one entry per step code.
    """
    id: str
    document_id: str
    analysis_code: str
    analysis_version: Optional[str] = None
    mode: AnalysisMode = AnalysisMode.AUTOMATIC
    config: AnalysisRunConfig = field(default_factory=AnalysisRunConfig)
    status: RunStatus = RunStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    step_results: List[StepResult] = field(default_factory=list)
    attempts: List[RunAttempt] = field(default_factory=list)

    def get_step_result(self, step_code: str) -> Optional[StepResult]:
        for step_result in self.step_results:
            if step_result.step_code == step_code:
                return step_result
        return None

    def upsert_step_result(self, step_result: StepResult) -> StepResult:
        """Replace the entry for the step code in place, or append a new one."""
        for index, existing in enumerate(self.step_results):
            if existing.step_code == step_result.step_code:
                self.step_results[index] = step_result
                return step_result
        self.step_results.append(step_result)
        return step_result

    @property
    def duration_minutes(self) -> Optional[float]:
        start = self.started_at or self.created_at
        if not start or not self.completed_at:
            return None
        return (self.completed_at - start).total_seconds() / 60

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnalysisRun':
        """Parse the wire format; type / analysis_type_id are accepted as the code."""
        analysis_code = data.get('analysis_code') or data.get('analysis_type_id') or data.get('type')
        results: List[StepResult] = []
        for raw in data.get('step_results') or []:
            step_result = StepResult.from_dict(raw)
            # Keep the last entry when the server repeats a step code
            results = [r for r in results if r.step_code != step_result.step_code]
            results.append(step_result)

        return cls(
            id=str(data['id']),
            document_id=str(data.get('document_id') or ''),
            analysis_code=analysis_code or '',
            analysis_version=data.get('analysis_version'),
            mode=AnalysisMode(data.get('mode') or AnalysisMode.AUTOMATIC.value),
            config=AnalysisRunConfig.from_dict(data.get('config')),
            status=RunStatus(data.get('status') or RunStatus.PENDING.value),
            created_at=_parse_datetime_safe(data.get('created_at')),
            updated_at=_parse_datetime_safe(data.get('updated_at')),
            started_at=_parse_datetime_safe(data.get('started_at')),
            completed_at=_parse_datetime_safe(data.get('completed_at')),
            error_message=data.get('error_message'),
            step_results=results,
            attempts=[RunAttempt.from_dict(a) for a in data.get('attempts') or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'document_id': self.document_id,
            'analysis_code': self.analysis_code,
            'analysis_version': self.analysis_version,
            'mode': self.mode.value,
            'config': self.config.to_dict(),
            'status': self.status.value,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
            'started_at': _isoformat(self.started_at),
            'completed_at': _isoformat(self.completed_at),
            'error_message': self.error_message,
            'step_results': [r.to_dict() for r in self.step_results],
            'attempts': [a.to_dict() for a in self.attempts],
        }


@dataclass(frozen=True)
class RunFilter:
    """Filter for listing runs; doubles as the run-list cache key."""
    status: Optional[RunStatus] = None
    document_id: Optional[str] = None
    analysis_code: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    skip: int = 0
    limit: int = 100

    @property
    def cache_key(self) -> str:
        parts = [
            f"status={self.status.value if self.status else ''}",
            f"document={self.document_id or ''}",
            f"type={self.analysis_code or ''}",
            f"from={_isoformat(self.start_date) or ''}",
            f"to={_isoformat(self.end_date) or ''}",
            f"skip={self.skip}",
            f"limit={self.limit}",
        ]
        return "runs:" + "&".join(parts)

    def matches(self, run: AnalysisRun) -> bool:
        """Local predicate mirroring the server-side filter."""
        if self.status is not None and run.status != self.status:
            return False
        if self.document_id and run.document_id != self.document_id:
            return False
        if self.analysis_code and run.analysis_code != self.analysis_code:
            return False
        if run.created_at is not None:
            created = run.created_at
            if self.start_date and _comparable(created, self.start_date) < _comparable(self.start_date, created):
                return False
            if self.end_date and _comparable(created, self.end_date) > _comparable(self.end_date, created):
                return False
        return True

    def to_query(self) -> Dict[str, str]:
        params = {'skip': str(self.skip), 'limit': str(self.limit)}
        if self.status is not None:
            params['status'] = self.status.value
        if self.document_id:
            params['document_id'] = self.document_id
        if self.analysis_code:
            params['analysis_type'] = self.analysis_code
        if self.start_date:
            params['start_date'] = self.start_date.isoformat()
        if self.end_date:
            params['end_date'] = self.end_date.isoformat()
        return params


def _comparable(value: datetime, other: datetime) -> datetime:
    """Drop tzinfo when comparing aware and naive datetimes."""
    if (value.tzinfo is None) != (other.tzinfo is None):
        return value.replace(tzinfo=None)
    return value
