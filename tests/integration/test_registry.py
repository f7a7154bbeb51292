import asyncio

import pytest

from backend.memory import InMemoryBackend
from orchestrator.exceptions import NotFoundError
from orchestrator.registry import DefinitionRegistry


@pytest.mark.asyncio
async def test_list_definitions_is_cached(registry, memory_backend):
    """Test that definitions are loaded once per session unless forced."""
    first = await registry.list_definitions()
    second = await registry.list_definitions()

    assert [d.key for d in first] == ['table_analysis@1.0.0', 'text_extraction@1.0.0']
    assert [d.key for d in second] == [d.key for d in first]
    assert memory_backend.calls['list_definitions'] == 1

    await registry.list_definitions(force_refresh=True)
    assert memory_backend.calls['list_definitions'] == 2


@pytest.mark.asyncio
async def test_get_definition_uses_loaded_list(registry, memory_backend):
    """Test that a listed definition is served without a second request."""
    await registry.list_definitions()

    definition = await registry.get_definition('table_analysis')
    pinned = await registry.get_definition('table_analysis', '1.0.0')

    assert definition is pinned
    assert 'get_definition' not in memory_backend.calls


@pytest.mark.asyncio
async def test_get_definition_caches_by_code_and_version(registry, memory_backend):
    definition = await registry.get_definition('text_extraction')
    again = await registry.get_definition('text_extraction', definition.version)

    assert again is definition
    assert memory_backend.calls['get_definition'] == 1
    assert registry.cached_definition('text_extraction') is definition


@pytest.mark.asyncio
async def test_unknown_definition_raises_not_found(registry):
    with pytest.raises(NotFoundError) as exc_info:
        await registry.get_definition('nonexistent')
    assert exc_info.value.identifier == 'nonexistent'


@pytest.mark.asyncio
async def test_concurrent_lookups_share_one_request():
    """Test that identical concurrent loads coalesce into one backend call."""
    backend = InMemoryBackend(latency=0.05)
    registry = DefinitionRegistry(backend)

    results = await asyncio.gather(*(registry.get_definition('table_analysis') for _ in range(5)))

    assert backend.calls['get_definition'] == 1
    assert all(result is results[0] for result in results)


@pytest.mark.asyncio
async def test_refresh_drops_cached_definitions(registry, memory_backend):
    await registry.get_definition('table_analysis')
    reloaded = await registry.refresh()

    assert len(reloaded) == 2
    assert memory_backend.calls['list_definitions'] == 1
    assert registry.cached_definition('table_analysis', '1.0.0') is reloaded[0]
