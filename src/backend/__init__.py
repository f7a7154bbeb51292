"""
Analysis backends.

The orchestration core talks to its backend only through AnalysisBackend.
"""

from .base import AnalysisBackend
from .http_client import AnalysisAPIClient
from .memory import AlgorithmRegistry, InMemoryBackend
from .push_listener import ProgressPushListener

__all__ = ['AnalysisBackend', 'AnalysisAPIClient', 'AlgorithmRegistry', 'InMemoryBackend', 'ProgressPushListener']
