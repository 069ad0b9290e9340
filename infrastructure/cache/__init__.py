from config.settings import ASSOCIATION_CACHE_MAX_ENTRIES, ASSOCIATION_CACHE_TTL_SECONDS

from .ttl_cache import AssociationCache, InMemoryTTLCache, association_cache_key

default_association_cache: AssociationCache = InMemoryTTLCache(
    ttl_seconds=ASSOCIATION_CACHE_TTL_SECONDS,
    max_entries=ASSOCIATION_CACHE_MAX_ENTRIES,
)

__all__ = [
    "AssociationCache",
    "InMemoryTTLCache",
    "association_cache_key",
    "default_association_cache",
]
