import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from backend.memory import InMemoryBackend  # noqa: E402
from orchestrator.exceptions import ExecutorError  # noqa: E402
from orchestrator.models.run import (  # noqa: E402
    AlgorithmSelection, AnalysisMode, AnalysisRunConfig, AnalysisRunRequest, NotificationConfig, StepConfig
)
from orchestrator.registry import DefinitionRegistry  # noqa: E402
from orchestrator.run_store import RunStore  # noqa: E402


class SlowExecuteBackend(InMemoryBackend):
    """Memory backend whose step execution blocks until released."""

    def __init__(self, delay: float = 1.0, **kwargs) -> None:
        super().__init__(auto_advance=False, **kwargs)
        self.delay = delay
        self.release = asyncio.Event()

    async def execute_step(self, *args, **kwargs):
        try:
            await asyncio.wait_for(self.release.wait(), timeout=self.delay)
        except asyncio.TimeoutError:
            pass
        return await super().execute_step(*args, **kwargs)


class FailingExecuteBackend(InMemoryBackend):
    """Memory backend whose executor rejects every step."""

    def __init__(self, reason: str = "executor crashed", **kwargs) -> None:
        super().__init__(auto_advance=False, **kwargs)
        self.reason = reason

    async def execute_step(self, run_id, step_code, *args, **kwargs):
        self.calls['execute_step'] = self.calls.get('execute_step', 0) + 1
        raise ExecutorError(step_code, self.reason, run_id)


def table_request(mode: AnalysisMode = AnalysisMode.STEP_BY_STEP,
                  continue_on_failure: bool = False,
                  disabled: tuple = (),
                  parameters: Optional[Dict[str, Dict[str, Any]]] = None,
                  channel: Optional[str] = None) -> AnalysisRunRequest:
    parameters = parameters or {}
    algorithms = {
        'table_detection': 'grid_detector',
        'table_structure': 'cell_splitter',
        'table_data': 'cell_reader',
    }
    steps = {
        step_code: StepConfig(
            enabled=step_code not in disabled,
            algorithm=AlgorithmSelection(code=code, parameters=dict(parameters.get(step_code, {}))),
        )
        for step_code, code in algorithms.items()
    }
    return AnalysisRunRequest(
        analysis_code='table_analysis',
        mode=mode,
        config=AnalysisRunConfig(
            steps=steps,
            notifications=NotificationConfig(websocket_channel=channel),
            continue_on_failure=continue_on_failure,
        ),
    )


def ocr_request(mode: AnalysisMode = AnalysisMode.STEP_BY_STEP) -> AnalysisRunRequest:
    return AnalysisRunRequest(
        analysis_code='text_extraction',
        mode=mode,
        config=AnalysisRunConfig(steps={
            'ocr': StepConfig(algorithm=AlgorithmSelection(code='basic_ocr', parameters={'language': 'en'})),
        }),
    )


@pytest.fixture
def memory_backend() -> InMemoryBackend:
    return InMemoryBackend(auto_advance=False)


@pytest.fixture
def registry(memory_backend) -> DefinitionRegistry:
    return DefinitionRegistry(memory_backend)


@pytest.fixture
def store(memory_backend, registry) -> RunStore:
    return RunStore(memory_backend, registry)


@pytest.fixture
def make_store():
    def _factory(backend, operation_timeout: Optional[float] = 5.0, runs_cache_ttl: float = 30) -> RunStore:
        return RunStore(backend, DefinitionRegistry(backend), operation_timeout=operation_timeout,
                        runs_cache_ttl=runs_cache_ttl)

    return _factory


@pytest.fixture
def table_request_factory():
    return table_request


@pytest.fixture
def ocr_request_factory():
    return ocr_request
