# formflow/cache/__init__.py

"""
Multi-tier cache

- L1: in-process TTL map
- L2: Redis, optional
- L3: ``cache_entries`` table, authoritative
"""

from formflow.cache.manager import CacheManager, get_cache_manager

__all__ = ["CacheManager", "get_cache_manager"]
