"""
Episode document store.

Composition state is persisted as one JSON document per episode id. The
orchestration core only depends on ``EpisodeStore``; the Supabase-backed
implementation writes to the ``episode_compositions`` table.
"""

import asyncio
import copy
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from supabase import create_client

from shared.config import settings
from shared.errors import ConfigError, RetryableError
from shared.logging import get_logger

logger = get_logger("storage")

EPISODE_TABLE = "episode_compositions"


class EpisodeStore(ABC):
    """Key-value store for episode composition documents."""

    @abstractmethod
    async def get(self, episode_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored document or None."""

    @abstractmethod
    async def put(self, episode_id: str, document: Dict[str, Any]) -> None:
        """Create or replace the document for ``episode_id``."""


class InMemoryEpisodeStore(EpisodeStore):
    """Process-local store, used in development and tests."""

    def __init__(self):
        self._documents: Dict[str, Dict[str, Any]] = {}

    async def get(self, episode_id: str) -> Optional[Dict[str, Any]]:
        document = self._documents.get(episode_id)
        return copy.deepcopy(document) if document is not None else None

    async def put(self, episode_id: str, document: Dict[str, Any]) -> None:
        self._documents[episode_id] = copy.deepcopy(document)


class SupabaseEpisodeStore(EpisodeStore):
    """Supabase table with one JSON document column keyed by episode id."""

    def __init__(self, table_name: str = EPISODE_TABLE):
        if not settings.supabase_url or not settings.supabase_service_key:
            raise ConfigError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required for the supabase episode store")
        try:
            self.client = create_client(settings.supabase_url, settings.supabase_service_key)
        except Exception as e:
            raise ConfigError(f"Failed to initialize episode store: {str(e)}") from e
        self.table_name = table_name

    async def _execute_sync(self, func: Callable[[], Any]) -> Any:
        """Run a blocking Supabase call in the default executor."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func)
        except Exception as e:
            raise RetryableError(f"Episode store operation failed: {str(e)}") from e

    async def get(self, episode_id: str) -> Optional[Dict[str, Any]]:
        result = await self._execute_sync(
            lambda: self.client.table(self.table_name)
            .select("document")
            .eq("episode_id", episode_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return result.data[0]["document"]

    async def put(self, episode_id: str, document: Dict[str, Any]) -> None:
        row = {"episode_id": episode_id, "document": document}
        await self._execute_sync(
            lambda: self.client.table(self.table_name).upsert(row, on_conflict="episode_id").execute()
        )
        logger.debug("Persisted episode document", extra={"episode_id": episode_id})


def create_episode_store() -> EpisodeStore:
    """Build the store selected by EPISODE_STORE_BACKEND."""
    if settings.episode_store_backend == "supabase":
        return SupabaseEpisodeStore()
    return InMemoryEpisodeStore()
