#!/usr/bin/env python3
"""
Standardized exception hierarchy for the analysis orchestration core.

Provides specific exception types for the different failure modes of run
orchestration with structured error context and recovery helpers.
"""

from dataclasses import dataclass
from typing import Optional, Dict, Any, List


class OrchestratorError(Exception):
    """Base exception for all orchestration errors."""

    def __init__(self, message: str, error_code: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        """
        Initialize base exception.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code
            context: Additional error context
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            'error_type': self.__class__.__name__,
            'error_code': self.error_code,
            'message': self.message,
            'context': self.context
        }


@dataclass(frozen=True)
class ValidationIssue:
    """A single offending field in a run or step configuration."""
    step_code: Optional[str]
    field: str
    message: str

    def __str__(self) -> str:
        location = f"{self.step_code}.{self.field}" if self.step_code else self.field
        return f"{location}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {'step_code': self.step_code, 'field': self.field, 'message': self.message}


# Validation-related exceptions
class ValidationError(OrchestratorError):
    """Step, algorithm or parameter configuration is invalid. Never retried."""

    def __init__(self, issues: List[ValidationIssue]):
        self.issues = list(issues)
        summary = "; ".join(str(issue) for issue in self.issues[:5])
        if len(self.issues) > 5:
            summary += f" (+{len(self.issues) - 5} more)"
        message = f"Validation failed: {summary}" if summary else "Validation failed"
        context = {'issues': [issue.to_dict() for issue in self.issues]}
        super().__init__(message, context=context)

    @classmethod
    def single(cls, field: str, message: str, step_code: Optional[str] = None) -> 'ValidationError':
        """Build an error carrying a single issue."""
        return cls([ValidationIssue(step_code=step_code, field=field, message=message)])

    @property
    def step_codes(self) -> List[str]:
        """Step codes named by the issues, in order, without duplicates."""
        codes = []
        for issue in self.issues:
            if issue.step_code and issue.step_code not in codes:
                codes.append(issue.step_code)
        return codes


class InvalidRunStateError(ValidationError):
    """Operation is not allowed in the run's (or step's) current status."""

    def __init__(self, run_id: str, status: str, operation: str, step_code: Optional[str] = None):
        issue = ValidationIssue(
            step_code=step_code,
            field='status',
            message=f"cannot {operation} run {run_id} while it is {status}"
        )
        super().__init__([issue])
        self.run_id = run_id
        self.status = status
        self.operation = operation


# Lookup-related exceptions
class NotFoundError(OrchestratorError):
    """Unknown run, step or definition."""

    def __init__(self, resource_type: str, identifier: str):
        message = f"{resource_type} not found: {identifier}"
        context = {
            'resource_type': resource_type,
            'identifier': identifier
        }
        super().__init__(message, context=context)
        self.resource_type = resource_type
        self.identifier = identifier


# Timing-related exceptions
class OperationTimeoutError(OrchestratorError):
    """Network-bound operation exceeded its bound. Store state is unchanged."""

    def __init__(self, operation: str, timeout_seconds: float):
        message = f"{operation} timed out after {timeout_seconds}s"
        context = {
            'operation': operation,
            'timeout_seconds': timeout_seconds
        }
        super().__init__(message, context=context)
        self.operation = operation
        self.timeout_seconds = timeout_seconds


# Execution-related exceptions
class ExecutorError(OrchestratorError):
    """The step executor reported a failure for a step invocation."""

    def __init__(self, step_code: str, reason: str, run_id: Optional[str] = None):
        message = f"Step {step_code} failed: {reason}"
        context = {
            'step_code': step_code,
            'run_id': run_id,
            'reason': reason
        }
        super().__init__(message, context=context)
        self.step_code = step_code
        self.reason = reason
        self.run_id = run_id


# Backend-related exceptions
class BackendError(OrchestratorError):
    """The analysis backend answered with an unexpected error."""

    def __init__(self, operation: str, status: Optional[int], detail: str):
        message = f"Backend {operation} failed"
        if status is not None:
            message += f" (HTTP {status})"
        if detail:
            message += f": {detail}"
        context = {
            'operation': operation,
            'status': status,
            'detail': detail
        }
        super().__init__(message, context=context)
        self.operation = operation
        self.status = status
        self.detail = detail


class AuthenticationError(BackendError):
    """Backend rejected the credentials."""

    def __init__(self, operation: str):
        super().__init__(operation, 401, "Authentication failed")


class RateLimitError(BackendError):
    """Backend rate limit exceeded."""

    def __init__(self, operation: str, retry_after_seconds: Optional[int] = None):
        detail = "Too many requests. Please try again later."
        super().__init__(operation, 429, detail)
        self.context['retry_after_seconds'] = retry_after_seconds


# Configuration-related exceptions
class ConfigurationError(OrchestratorError):
    """Configuration is invalid or missing."""

    def __init__(self, config_key: str, issue: str):
        message = f"Configuration error for {config_key}: {issue}"
        context = {
            'config_key': config_key,
            'issue': issue
        }
        super().__init__(message, context=context)


# Recovery utilities
class ErrorRecovery:
    """Utilities for error recovery and retry logic."""

    @staticmethod
    def is_retryable_error(error: Exception) -> bool:
        """Check if an error is safe to retry without changing the request."""
        if isinstance(error, (ValidationError, NotFoundError, ExecutorError, AuthenticationError)):
            return False
        if isinstance(error, (OperationTimeoutError, RateLimitError)):
            return True
        if isinstance(error, BackendError):
            return error.status is None or error.status >= 500
        return False

    @staticmethod
    def get_retry_delay(error: Exception, attempt: int) -> int:
        """Get recommended retry delay in seconds."""
        if isinstance(error, RateLimitError):
            return error.context.get('retry_after_seconds') or 60

        # Exponential backoff: 2^attempt seconds, max 300s (5 minutes)
        return min(2 ** attempt, 300)
