"""Remembered user choices for food queries."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from health_assistant.services.cache import Cache
from health_assistant.services.reconciler import normalize_name

_logger = logging.getLogger(__name__)


class FoodOverrideRepository(Protocol):
    """Persistence for query -> external id overrides."""

    def get_override(self, user_id: str, query_norm: str) -> str | None:
        """Return the remembered external id for a normalized query."""

    def save_override(self, user_id: str, query_norm: str, external_id: str) -> None:
        """Insert or update the override for a normalized query."""


@dataclass
class FoodOverrideService:
    """Override memory fronted by a per-process cache."""

    repository: FoodOverrideRepository
    cache: Cache
    user_id: str
    ttl_seconds: int = 3600

    async def lookup(self, query: str) -> str | None:
        """Return the remembered external id for a query, if any."""
        query_norm = normalize_name(query)
        if not query_norm:
            return None
        cache_key = f"override:{self.user_id}:{query_norm}"
        cached = self.cache.get(cache_key)
        if isinstance(cached, str):
            return cached or None
        external_id = await asyncio.to_thread(
            self.repository.get_override, self.user_id, query_norm
        )
        self.cache.set(cache_key, external_id or "", ttl_seconds=self.ttl_seconds)
        return external_id

    async def remember(self, query: str, external_id: str) -> None:
        """Record that query should resolve to external_id from now on."""
        query_norm = normalize_name(query)
        if not query_norm:
            return
        await asyncio.to_thread(
            self.repository.save_override, self.user_id, query_norm, external_id
        )
        self.cache.set(
            f"override:{self.user_id}:{query_norm}",
            external_id,
            ttl_seconds=self.ttl_seconds,
        )
        _logger.info("Remembered food override: %s -> %s", query_norm, external_id)
