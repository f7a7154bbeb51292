#!/usr/bin/env python3
"""
Base command class for the modular command architecture.

Provides common functionality and interface that all commands inherit.
Uses dependency injection for better testability and maintainability.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from argparse import Namespace
from datetime import datetime, timezone
from typing import Any, Awaitable, List, Optional, TypeVar

import pytz

from orchestrator.container import get_container
from orchestrator.exceptions import (
    ConfigurationError, ExecutorError, NotFoundError, OperationTimeoutError, OrchestratorError, ValidationError
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


class BaseCommand(ABC):
    """
    Base class for all command endpoints.

    Provides common infrastructure like service access, async execution,
    time formatting and error handling that all commands can use.
    """

    def __init__(self, container=None):
        """
        Initialize base command with dependency injection container.

        Args:
            container: Optional container instance. If None, uses global container.
        """
        self.logger = logging.getLogger(self.__class__.__name__)
        self._container = container or get_container()

    @property
    def config(self):
        """Get configuration from container."""
        return self._container.get('config')

    @property
    def store(self):
        """Get run store from container."""
        return self._container.get('run_store')

    @property
    def registry(self):
        """Get definition registry from container."""
        return self._container.get('registry')

    @property
    def tracker(self):
        """Get progress tracker from container."""
        return self._container.get('tracker')

    def run_async(self, awaitable: Awaitable[T]) -> T:
        """Run a coroutine to completion, closing the backend afterwards."""
        async def _runner():
            try:
                return await awaitable
            finally:
                await self._container.get('backend').close()
        return asyncio.run(_runner())

    def format_time(self, value: Optional[datetime]) -> str:
        """Render a timestamp in the configured display timezone."""
        if value is None:
            return '-'
        tz = pytz.timezone(self.config.app.display_timezone)
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(tz).strftime('%Y-%m-%d %H:%M:%S %Z')

    @staticmethod
    def print_json(data: Any) -> None:
        print(json.dumps(data, indent=2, ensure_ascii=False, default=str))

    @abstractmethod
    def execute(self, subcommand: str, args: Namespace) -> int:
        """
        Execute the command with given subcommand and arguments.

        Args:
            subcommand: The specific action to perform
            args: Parsed command line arguments

        Returns:
            Exit code (0 for success, non-zero for error)
        """
        pass

    def get_available_subcommands(self) -> List[str]:
        """
        Get list of available subcommands for this command.

        Returns:
            List of subcommand names
        """
        methods = []
        for attr_name in dir(type(self)):
            if attr_name.startswith('_'):
                continue
            attr = getattr(self, attr_name)
            if callable(attr) and attr_name not in (
                'execute', 'get_available_subcommands', 'handle_error', 'run_async', 'format_time', 'print_json'
            ):
                methods.append(attr_name)
        return methods

    def handle_error(self, error: Exception, context: str = "") -> int:
        """
        Standard error handling for commands.

        Args:
            error: The exception that occurred
            context: Additional context about where the error occurred

        Returns:
            Appropriate exit code
        """
        error_msg = f"{context}: {error}" if context else str(error)

        if isinstance(error, OrchestratorError):
            # Expected failures: report without a traceback
            self.logger.error(error_msg)
            print(f"❌ {error.message}")
            if isinstance(error, ValidationError):
                for issue in error.issues:
                    print(f"   • {issue}")
        else:
            self.logger.error(error_msg, exc_info=True)

        # Map common exceptions to exit codes
        if isinstance(error, KeyboardInterrupt):
            self.logger.info("Command interrupted by user")
            return 130
        elif isinstance(error, NotFoundError):
            return 2
        elif isinstance(error, ExecutorError):
            return 3
        elif isinstance(error, ConfigurationError):
            return 78
        elif isinstance(error, OperationTimeoutError):
            return 124
        elif isinstance(error, (ValidationError, ValueError)):
            return 22
        else:
            return 1

    def validate_args(self, args: Namespace, required_args: List[str] = None) -> bool:
        """
        Validate that required arguments are present.

        Args:
            args: Parsed arguments
            required_args: List of required argument names

        Returns:
            True if valid, False otherwise
        """
        if not required_args:
            return True

        missing = []
        for arg_name in required_args:
            if not hasattr(args, arg_name) or getattr(args, arg_name) is None:
                missing.append(arg_name)

        if missing:
            self.logger.error(f"Missing required arguments: {', '.join(missing)}")
            return False

        return True
