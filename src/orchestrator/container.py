#!/usr/bin/env python3
"""
Dependency Injection Container

Provides a centralized way to wire the backend, registry, store and progress
tracking from configuration. Supports singleton and factory patterns.
"""

import logging
from typing import Any, Dict, Callable, TypeVar, Optional
from functools import wraps
import threading

logger = logging.getLogger(__name__)

T = TypeVar('T')


class Container:
    """Simple dependency injection container with lifecycle management."""

    def __init__(self):
        """Initialize empty container."""
        self._factories: Dict[str, Callable] = {}
        self._singletons: Dict[str, Any] = {}
        self._lock = threading.RLock()

    def register_singleton(self, service_name: str, factory: Callable[[], T]) -> None:
        """
        Register a service as singleton (created once, reused).

        Args:
            service_name: Unique name for the service
            factory: Function that creates the service instance
        """
        with self._lock:
            self._factories[service_name] = singleton(factory)
            # Remove any existing instance to force recreation
            self._singletons.pop(service_name, None)

    def register_factory(self, service_name: str, factory: Callable[[], T]) -> None:
        """
        Register a service as factory (new instance each time).

        Args:
            service_name: Unique name for the service
            factory: Function that creates service instances
        """
        with self._lock:
            self._factories[service_name] = factory

    def register_instance(self, service_name: str, instance: T) -> None:
        """
        Register an existing instance as singleton.

        Args:
            service_name: Unique name for the service
            instance: Pre-created service instance
        """
        with self._lock:
            self._singletons[service_name] = instance

    def get(self, service_name: str) -> Any:
        """
        Get service instance by name.

        Raises:
            KeyError: If service is not registered
        """
        if service_name in self._singletons:
            return self._singletons[service_name]

        if service_name not in self._factories:
            raise KeyError(f"Service '{service_name}' not registered")

        with self._lock:
            factory = self._factories[service_name]

            if getattr(factory, '_is_singleton', False):
                # Double-check pattern for thread safety
                if service_name not in self._singletons:
                    self._singletons[service_name] = factory()
                    logger.debug(f"Created singleton instance for '{service_name}'")
                return self._singletons[service_name]

            instance = factory()
            logger.debug(f"Created new instance for '{service_name}'")
            return instance

    def has(self, service_name: str) -> bool:
        """Check if service is registered."""
        return service_name in self._factories or service_name in self._singletons

    def clear(self) -> None:
        """Clear all registered services and instances."""
        with self._lock:
            self._factories.clear()
            self._singletons.clear()


def singleton(factory_func: Callable[[], T]) -> Callable[[], T]:
    """
    Decorator to mark a factory function as singleton.

    Usage:
        @singleton
        def create_registry():
            return DefinitionRegistry(backend)
    """
    if getattr(factory_func, '_is_singleton', False):
        return factory_func

    @wraps(factory_func)
    def wrapper():
        return factory_func()

    wrapper._is_singleton = True
    return wrapper


# Global container instance
_container: Optional[Container] = None
_container_lock = threading.Lock()


def get_container() -> Container:
    """Get global container instance (thread-safe singleton)."""
    global _container
    if _container is None:
        with _container_lock:
            if _container is None:
                _container = Container()
                setup_default_services(_container)
    return _container


def setup_default_services(container: Container, config=None) -> None:
    """
    Register the orchestration services.

    Args:
        container: Container to populate
        config: Configuration to wire from (the global one if omitted)
    """

    def create_config():
        if config is not None:
            return config
        from orchestrator.config import get_config
        return get_config()

    def create_backend():
        cfg = container.get('config')
        if cfg.uses_memory_backend():
            from backend.memory import InMemoryBackend
            return InMemoryBackend(state_path=cfg.backend.memory_state_path)

        from backend.http_client import AnalysisAPIClient
        return AnalysisAPIClient(
            api_url=cfg.backend.api_url,
            api_version=cfg.backend.api_version,
            api_token=cfg.backend.api_token,
            timeout=cfg.backend.request_timeout,
            user_agent=cfg.backend.user_agent,
        )

    def create_registry():
        from orchestrator.registry import DefinitionRegistry
        cfg = container.get('config')
        return DefinitionRegistry(container.get('backend'), operation_timeout=cfg.store.operation_timeout_seconds)

    def create_tracker():
        from orchestrator.progress import ProgressTracker
        return ProgressTracker()

    def create_run_store():
        from orchestrator.progress import ProgressPoller
        from orchestrator.run_store import RunStore
        cfg = container.get('config')
        store = RunStore(
            backend=container.get('backend'),
            registry=container.get('registry'),
            tracker=container.get('tracker'),
            runs_cache_ttl=cfg.store.runs_cache_ttl_seconds,
            operation_timeout=cfg.store.operation_timeout_seconds,
        )
        if cfg.store.auto_poll:
            store.attach_poller(ProgressPoller(
                container.get('tracker'),
                store.fetch_progress,
                interval=cfg.store.progress_poll_interval_seconds,
            ))
        return store

    def create_push_listener():
        from backend.push_listener import ProgressPushListener
        cfg = container.get('config')
        if not cfg.has_push():
            raise ValueError("ANALYSIS_PUSH_URL is not configured")
        return ProgressPushListener(cfg.backend.push_url, container.get('tracker'), api_token=cfg.backend.api_token)

    # Register services
    container.register_singleton('config', create_config)
    container.register_singleton('backend', create_backend)
    container.register_singleton('registry', create_registry)
    container.register_singleton('tracker', create_tracker)
    container.register_singleton('run_store', create_run_store)

    # Non-singletons
    container.register_factory('push_listener', create_push_listener)

    logger.debug("Default services registered in container")

