"""
Meta module: merged metadata views and their cache.
"""

from .cache import CacheStats, MetaCache
from .meta import Meta

__all__ = ["Meta", "MetaCache", "CacheStats"]
