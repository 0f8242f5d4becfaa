"""Tests for the per-learner context cache."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from tutor_mcp.modules.mcp_tools.registry import LearnerContextEntry, LearnerContextRegistry


def _mock_client(ttl=300.0):
    client = MagicMock()
    client.settings.learner_context_ttl_seconds = ttl

    async def load(learner_id):
        await asyncio.sleep(0.01)
        return {"learner": learner_id, "full_context_text": f"context for {learner_id}"}

    client.get_enhanced_learning_context = AsyncMock(side_effect=load)
    client.get_learning_context = AsyncMock(side_effect=load)
    return client


class TestLearnerContextRegistry:
    @pytest.mark.asyncio
    async def test_concurrent_first_loads_fetch_once(self):
        client = _mock_client()
        registry = LearnerContextRegistry(client)

        contexts = await asyncio.gather(*(registry.get_context("child-1") for _ in range(5)))

        assert client.get_enhanced_learning_context.await_count == 1
        assert all(c is contexts[0] for c in contexts)
        assert "child-1" in registry

    @pytest.mark.asyncio
    async def test_learners_are_loaded_independently(self):
        client = _mock_client()
        registry = LearnerContextRegistry(client)

        first, second = await asyncio.gather(registry.get_context("a"), registry.get_context("b"))

        assert first["learner"] == "a"
        assert second["learner"] == "b"
        assert len(registry) == 2

    @pytest.mark.asyncio
    async def test_stale_entry_is_reloaded(self):
        client = _mock_client()
        registry = LearnerContextRegistry(client, ttl_seconds=0)

        await registry.get_context("child-1")
        await registry.get_context("child-1")

        assert client.get_enhanced_learning_context.await_count == 2

    @pytest.mark.asyncio
    async def test_refresh_forces_reload(self):
        client = _mock_client()
        registry = LearnerContextRegistry(client)

        await registry.get_context("child-1")
        await registry.get_context("child-1", refresh=True)

        assert client.get_enhanced_learning_context.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_load_is_not_cached(self):
        client = _mock_client()
        client.get_enhanced_learning_context = AsyncMock(return_value={"error": "Search failed"})
        registry = LearnerContextRegistry(client)

        context = await registry.get_context("child-1")

        assert context["error"] == "Search failed"
        assert "child-1" not in registry

    @pytest.mark.asyncio
    async def test_basic_context_when_not_enhanced(self):
        client = _mock_client()
        registry = LearnerContextRegistry(client, enhanced=False)

        await registry.get_context("child-1")

        client.get_learning_context.assert_awaited_once_with("child-1")
        client.get_enhanced_learning_context.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalidate_and_clear(self):
        client = _mock_client()
        registry = LearnerContextRegistry(client)
        await registry.get_context("a")
        await registry.get_context("b")

        assert registry.invalidate("a") is True
        assert registry.invalidate("a") is False
        assert "a" not in registry

        registry.clear()
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_invalidate_and_clear_release_locks(self):
        registry = LearnerContextRegistry(_mock_client())
        await registry.get_context("a")
        await registry.get_context("b")
        await registry.get_context("c")

        registry.invalidate("a")
        assert "a" not in registry._locks

        registry.clear()
        assert registry._locks == {}

    @pytest.mark.asyncio
    async def test_invalidate_keeps_lock_held_by_a_load(self):
        client = _mock_client()
        registry = LearnerContextRegistry(client)

        loading = asyncio.create_task(registry.get_context("a"))
        await asyncio.sleep(0)
        registry.invalidate("a")
        held = registry._locks.get("a")
        await loading

        assert held is not None
        assert client.get_enhanced_learning_context.await_count == 1

    def test_ttl_defaults_to_client_settings(self):
        registry = LearnerContextRegistry(_mock_client(ttl=42.0))
        assert registry.ttl_seconds == 42.0


def test_entry_freshness():
    entry = LearnerContextEntry(learner_id="a", context={}, loaded_at=0.0)
    assert entry.is_fresh(float("inf"))
    assert not entry.is_fresh(0.0)
