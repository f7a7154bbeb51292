#!/usr/bin/env python3
"""
Definition Registry

Read-only, session-lifetime cache of analysis definitions in front of the
backend. Concurrent identical loads share one backend request.
"""

import logging
from typing import List, Optional

from .cache import InMemoryCache, SingleFlight, bounded_call
from .exceptions import NotFoundError
from .models.definition import AnalysisDefinition

logger = logging.getLogger(__name__)

_LIST_KEY = 'definitions:list'


def _definition_key(code: str, version: Optional[str]) -> str:
    return f"definitions:{code}@{version or 'latest'}"


class DefinitionRegistry:
    """Cached lookup of AnalysisDefinition records."""

    def __init__(self, backend, operation_timeout: float = 30.0, cache: Optional[InMemoryCache] = None):
        """
        Initialize the registry.

        Args:
            backend: AnalysisBackend implementation
            operation_timeout: Bound on each backend call in seconds
            cache: Cache to populate (definitions never expire)
        """
        self._backend = backend
        self._timeout = operation_timeout
        self._cache = cache or InMemoryCache(default_ttl=None, max_entries=500)
        self._flights = SingleFlight('definitions')

    async def list_definitions(self, force_refresh: bool = False) -> List[AnalysisDefinition]:
        """
        List every known analysis definition.

        Args:
            force_refresh: Bypass the cache (an outstanding load is still shared)

        Returns:
            Definitions as returned by the backend
        """
        if not force_refresh:
            cached = self._cache.get(_LIST_KEY)
            if cached is not None:
                return list(cached)

        definitions = await self._flights.do(_LIST_KEY, self._load_list)
        return list(definitions)

    async def _load_list(self) -> List[AnalysisDefinition]:
        definitions = await bounded_call('list_definitions', self._backend.list_definitions(), self._timeout)
        self._cache.set(_LIST_KEY, tuple(definitions), ttl=None)
        for definition in definitions:
            self._cache.set(_definition_key(definition.code, definition.version), definition, ttl=None)
        logger.info(f"Loaded {len(definitions)} analysis definitions")
        return definitions

    async def get_definition(self, code: str, version: Optional[str] = None,
                             force_refresh: bool = False) -> AnalysisDefinition:
        """
        Get one definition by code (and version).

        Without a version the latest loaded version is preferred.

        Raises:
            NotFoundError: If the backend does not know the code
        """
        key = _definition_key(code, version)
        if not force_refresh:
            cached = self._cache.get(key)
            if cached is not None:
                return cached
            if version is None:
                listed = self._latest_from_list(code)
                if listed is not None:
                    return listed

        return await self._flights.do(key, lambda: self._load_one(code, version))

    def _latest_from_list(self, code: str) -> Optional[AnalysisDefinition]:
        listed = self._cache.get(_LIST_KEY)
        if not listed:
            return None
        matches = [d for d in listed if d.code == code]
        return matches[-1] if matches else None

    async def _load_one(self, code: str, version: Optional[str]) -> AnalysisDefinition:
        definition = await bounded_call('get_definition', self._backend.get_definition(code, version), self._timeout)
        if definition is None:
            raise NotFoundError('analysis definition', f"{code}@{version}" if version else code)

        self._cache.set(_definition_key(code, version), definition, ttl=None)
        self._cache.set(_definition_key(definition.code, definition.version), definition, ttl=None)
        logger.debug(f"Loaded analysis definition {definition.key}")
        return definition

    async def refresh(self) -> List[AnalysisDefinition]:
        """Drop every cached definition and reload the list."""
        self._cache.clear()
        logger.info("Definition cache cleared, reloading")
        return await self.list_definitions(force_refresh=True)

    def cached_definition(self, code: str, version: Optional[str] = None) -> Optional[AnalysisDefinition]:
        """Cached definition without any backend call."""
        cached = self._cache.get(_definition_key(code, version))
        if cached is None and version is None:
            cached = self._latest_from_list(code)
        return cached
