"""
Tests for the episode document stores.
"""

import pytest
from unittest.mock import MagicMock, patch

from shared.errors import ConfigError, RetryableError
from shared.storage import (
    EPISODE_TABLE,
    InMemoryEpisodeStore,
    SupabaseEpisodeStore,
    create_episode_store,
)


@pytest.mark.asyncio
async def test_in_memory_store_round_trip():
    store = InMemoryEpisodeStore()
    document = {"episode_id": "ep1", "shot_videos": {"s1": "a.mp4"}}

    assert await store.get("ep1") is None
    await store.put("ep1", document)
    document["shot_videos"]["s2"] = "b.mp4"

    stored = await store.get("ep1")
    assert stored == {"episode_id": "ep1", "shot_videos": {"s1": "a.mp4"}}
    stored["state"] = "mutated"
    assert "state" not in await store.get("ep1")


@pytest.fixture
def supabase_client():
    client = MagicMock()
    with patch("shared.storage.settings") as mock_settings, \
            patch("shared.storage.create_client", return_value=client):
        mock_settings.supabase_url = "https://test.supabase.co"
        mock_settings.supabase_service_key = "service_key"
        yield client


@pytest.mark.asyncio
async def test_supabase_store_upserts_document(supabase_client):
    store = SupabaseEpisodeStore()

    await store.put("ep1", {"state": "running"})

    supabase_client.table.assert_called_with(EPISODE_TABLE)
    supabase_client.table.return_value.upsert.assert_called_once_with(
        {"episode_id": "ep1", "document": {"state": "running"}}, on_conflict="episode_id"
    )


@pytest.mark.asyncio
async def test_supabase_store_get(supabase_client):
    query = supabase_client.table.return_value.select.return_value.eq.return_value.limit.return_value
    query.execute.return_value = MagicMock(data=[{"document": {"state": "completed"}}])
    store = SupabaseEpisodeStore()

    assert await store.get("ep1") == {"state": "completed"}

    query.execute.return_value = MagicMock(data=[])
    assert await store.get("missing") is None


@pytest.mark.asyncio
async def test_supabase_failures_are_transient(supabase_client):
    supabase_client.table.side_effect = RuntimeError("connection reset")
    store = SupabaseEpisodeStore()

    with pytest.raises(RetryableError, match="connection reset"):
        await store.get("ep1")


def test_supabase_store_requires_credentials():
    with patch("shared.storage.settings") as mock_settings:
        mock_settings.supabase_url = None
        mock_settings.supabase_service_key = None
        with pytest.raises(ConfigError):
            SupabaseEpisodeStore()


def test_create_episode_store_defaults_to_memory():
    with patch("shared.storage.settings") as mock_settings:
        mock_settings.episode_store_backend = "memory"
        assert isinstance(create_episode_store(), InMemoryEpisodeStore)
