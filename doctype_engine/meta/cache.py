"""
Meta cache with single-flight loading.

The MetaCache memoizes the merged Meta view per DocType name. A cache miss
loads the base DocType from the registry, merges custom fields, applies
property setters and indexes the result.

Invariants:
    - At most one load is in flight per name; every caller arriving
      before it completes receives the same Meta instance
    - A load that was invalidated while in flight is returned to its
      callers but not cached
    - reload_meta always yields a new instance
    - The cache owns no authoritative state; clear_cache is always safe

How to change safely:
    - Every registry/overlay mutation must reach invalidate_meta (the
      constructor subscribes to the services it is given)
    - Keep _load free of side effects besides caching
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Dict, Optional

from ..overlay.custom_fields import CustomFieldManager
from ..overlay.property_setters import PropertySetterManager
from ..schema.registry import DocTypeRegistry
from ..schema.types import DocType
from .meta import Meta

logger = logging.getLogger(__name__)


@dataclass
class CacheStats:
    """Counters for cache behaviour."""

    hits: int = 0
    misses: int = 0
    loads: int = 0
    invalidations: int = 0


class MetaCache:
    """Memoizing factory for Meta views.

    Args:
        registry: Source of base DocTypes
        custom_fields: Custom field overlay (optional)
        property_setters: Property setter overlay (optional)

    Example:
        >>> cache = MetaCache(registry, custom_fields, property_setters)
        >>> meta = await cache.get_meta("User")
        >>> meta is await cache.get_meta("User")
        True
    """

    def __init__(
        self,
        registry: DocTypeRegistry,
        custom_fields: Optional[CustomFieldManager] = None,
        property_setters: Optional[PropertySetterManager] = None,
    ) -> None:
        self._registry = registry
        self._custom_fields = custom_fields
        self._property_setters = property_setters
        self._cache: Dict[str, Meta] = {}
        self._inflight: Dict[str, asyncio.Future[Optional[Meta]]] = {}
        self._generation: Dict[str, int] = {}
        self.stats = CacheStats()

        registry.add_listener(self.invalidate_meta)
        if custom_fields is not None:
            custom_fields.add_listener(self.invalidate_meta)
        if property_setters is not None:
            property_setters.add_listener(self.invalidate_meta)

    @property
    def registry(self) -> DocTypeRegistry:
        return self._registry

    def build_effective(self, doctype: DocType) -> DocType:
        """Compose the overlay: apply_properties(merge_custom_fields(doctype))."""
        if self._custom_fields is not None:
            doctype = self._custom_fields.merge_custom_fields(doctype)
        if self._property_setters is not None:
            doctype = self._property_setters.apply_properties(doctype)
        return doctype

    async def get_meta(self, name: str) -> Optional[Meta]:
        """Get the merged Meta for a DocType.

        Returns:
            Cached or freshly built Meta, or None if the DocType is not
            registered

        Raises:
            TypeError: If name is not a non-empty string
        """
        if not isinstance(name, str) or not name:
            raise TypeError(f"DocType name must be a non-empty string, got {name!r}")

        meta = self._cache.get(name)
        if meta is not None:
            self.stats.hits += 1
            return meta

        self.stats.misses += 1
        future = self._inflight.get(name)
        if future is None:
            future = asyncio.ensure_future(self._load(name, self._generation.get(name, 0)))
            self._inflight[name] = future
            future.add_done_callback(lambda f, n=name: self._forget(n, f))
        return await asyncio.shield(future)

    def _forget(self, name: str, future: asyncio.Future[Optional[Meta]]) -> None:
        if self._inflight.get(name) is future:
            del self._inflight[name]

    async def _load(self, name: str, generation: int) -> Optional[Meta]:
        self.stats.loads += 1
        doctype = self._registry.get(name)
        if doctype is None:
            logger.debug(f"Meta not found: {name}")
            return None

        meta = Meta(self.build_effective(doctype))
        if self._generation.get(name, 0) == generation:
            self._cache[name] = meta
        else:
            logger.debug(f"Meta for {name} invalidated while loading; not cached")
        return meta

    async def reload_meta(self, name: str) -> Optional[Meta]:
        """Drop any cached entry and build a new Meta."""
        self.invalidate_meta(name)
        return await self.get_meta(name)

    def invalidate_meta(self, name: str) -> None:
        """Drop the cached entry for one DocType.

        An in-flight load for the name is detached: its callers still get
        its result, later callers start a new load.
        """
        self._generation[name] = self._generation.get(name, 0) + 1
        self._inflight.pop(name, None)
        if self._cache.pop(name, None) is not None:
            self.stats.invalidations += 1
            logger.debug(f"Invalidated meta: {name}")

    def clear_cache(self) -> None:
        """Drop every cached entry."""
        for name in set(self._cache) | set(self._inflight):
            self._generation[name] = self._generation.get(name, 0) + 1
        self.stats.invalidations += len(self._cache)
        self._cache.clear()
        self._inflight.clear()
        logger.debug("Cleared meta cache")

    async def preload_metas(self, names: Iterable[str]) -> Dict[str, Meta]:
        """Warm the cache for several DocTypes.

        Names that are not registered are skipped.

        Returns:
            Loaded Meta by name
        """
        names = list(dict.fromkeys(names))
        metas = await asyncio.gather(*(self.get_meta(n) for n in names))
        loaded = {n: m for n, m in zip(names, metas) if m is not None}
        missing = [n for n in names if n not in loaded]
        if missing:
            logger.warning(f"Preload skipped unknown DocType(s): {missing}")
        logger.debug(f"Preloaded {len(loaded)} meta(s)")
        return loaded

    def is_cached(self, name: str) -> bool:
        return name in self._cache

    def cached_names(self) -> list[str]:
        return sorted(self._cache)

    def __len__(self) -> int:
        return len(self._cache)
