"""
Cache Invalidator: named in-memory LRU regions for read use cases and one
declarative table describing which regions each kind of change evicts.
"""

from collections import OrderedDict
from contextlib import contextmanager
from enum import Enum
from typing import (
    Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Mapping, NamedTuple, Optional, Union,
)

import structlog

from catalog.models import EntityType

logger = structlog.get_logger(__name__)


class CacheRegion(str, Enum):
    BOOKS = "books"
    BOOKS_BY_ID = "booksById"
    BOOKS_BY_SEARCH = "booksBySearch"
    AUTHORS = "authors"
    AUTHOR_BY_ID = "authorById"
    CATEGORIES = "categories"
    CATEGORY_BY_ID = "categoryById"
    USERS = "users"
    USER_BY_ID = "userById"
    LOANS = "loans"
    LOANS_BY_ID = "loansById"
    REVIEWS_BY_BOOK = "reviewsByBook"
    REVIEWS_BY_USER = "reviewsByUser"


class ChangeKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class EvictionScope(str, Enum):
    CLEAR = "clear"
    KEY = "key"


class Eviction(NamedTuple):
    """Clear a whole region, or evict the ids of ``key`` supplied with the change."""
    region: CacheRegion
    scope: EvictionScope = EvictionScope.CLEAR
    key: Optional[EntityType] = None


def clear(region: CacheRegion) -> Eviction:
    return Eviction(region)


def evict(region: CacheRegion, key: EntityType) -> Eviction:
    return Eviction(region, EvictionScope.KEY, key)


# Regions holding a copy of a book summary outside the book regions.
_BOOK_COPIES = [
    clear(CacheRegion.AUTHORS),
    clear(CacheRegion.AUTHOR_BY_ID),
    clear(CacheRegion.CATEGORIES),
    clear(CacheRegion.CATEGORY_BY_ID),
]

_BOOK_REGIONS = [
    clear(CacheRegion.BOOKS),
    clear(CacheRegion.BOOKS_BY_SEARCH),
    evict(CacheRegion.BOOKS_BY_ID, EntityType.BOOK),
]

_BOOK_CHANGE = _BOOK_REGIONS + _BOOK_COPIES + [
    clear(CacheRegion.USERS),
    clear(CacheRegion.USER_BY_ID),
    clear(CacheRegion.LOANS),
    clear(CacheRegion.LOANS_BY_ID),
    evict(CacheRegion.REVIEWS_BY_BOOK, EntityType.BOOK),
    clear(CacheRegion.REVIEWS_BY_USER),
]

_USER_REGIONS = [
    clear(CacheRegion.USERS),
    evict(CacheRegion.USER_BY_ID, EntityType.USER),
]

_USER_CHANGE = _USER_REGIONS + [
    clear(CacheRegion.BOOKS),
    clear(CacheRegion.BOOKS_BY_ID),
    clear(CacheRegion.BOOKS_BY_SEARCH),
    clear(CacheRegion.LOANS),
    clear(CacheRegion.LOANS_BY_ID),
    clear(CacheRegion.REVIEWS_BY_BOOK),
    evict(CacheRegion.REVIEWS_BY_USER, EntityType.USER),
]

_LOAN_CHANGE = [
    clear(CacheRegion.LOANS),
    evict(CacheRegion.LOANS_BY_ID, EntityType.LOAN),
    clear(CacheRegion.BOOKS),
    clear(CacheRegion.BOOKS_BY_SEARCH),
    evict(CacheRegion.BOOKS_BY_ID, EntityType.BOOK),
    clear(CacheRegion.USERS),
    evict(CacheRegion.USER_BY_ID, EntityType.USER),
]

# Review changes move the book's average rating, which every book summary carries.
_REVIEW_CHANGE = [
    evict(CacheRegion.REVIEWS_BY_BOOK, EntityType.BOOK),
    evict(CacheRegion.REVIEWS_BY_USER, EntityType.USER),
] + _BOOK_REGIONS + _BOOK_COPIES + [
    clear(CacheRegion.USERS),
    clear(CacheRegion.USER_BY_ID),
    clear(CacheRegion.LOANS),
    clear(CacheRegion.LOANS_BY_ID),
]

_AUTHOR_REGIONS = [
    clear(CacheRegion.AUTHORS),
    evict(CacheRegion.AUTHOR_BY_ID, EntityType.AUTHOR),
]

_CATEGORY_REGIONS = [
    clear(CacheRegion.CATEGORIES),
    evict(CacheRegion.CATEGORY_BY_ID, EntityType.CATEGORY),
]

INVALIDATION_TABLE: Dict[EntityType, Dict[ChangeKind, List[Eviction]]] = {
    EntityType.BOOK: {
        ChangeKind.CREATED: _BOOK_REGIONS + _BOOK_COPIES,
        ChangeKind.UPDATED: _BOOK_CHANGE,
        ChangeKind.DELETED: _BOOK_CHANGE,
    },
    EntityType.AUTHOR: {
        ChangeKind.CREATED: _AUTHOR_REGIONS,
        # A rename rewrites Book.author in a background job, which evicts book regions itself.
        ChangeKind.UPDATED: _AUTHOR_REGIONS,
        ChangeKind.DELETED: _AUTHOR_REGIONS,
    },
    EntityType.CATEGORY: {
        ChangeKind.CREATED: _CATEGORY_REGIONS,
        ChangeKind.UPDATED: _CATEGORY_REGIONS,
        ChangeKind.DELETED: _CATEGORY_REGIONS + [
            clear(CacheRegion.BOOKS),
            clear(CacheRegion.BOOKS_BY_ID),
            clear(CacheRegion.BOOKS_BY_SEARCH),
        ],
    },
    EntityType.USER: {
        ChangeKind.CREATED: _USER_REGIONS,
        ChangeKind.UPDATED: _USER_CHANGE,
        ChangeKind.DELETED: _USER_CHANGE + [clear(CacheRegion.REVIEWS_BY_USER)] + _BOOK_COPIES,
    },
    EntityType.LOAN: {
        ChangeKind.CREATED: _LOAN_CHANGE,
        ChangeKind.UPDATED: _LOAN_CHANGE,
        ChangeKind.DELETED: _LOAN_CHANGE,
    },
    EntityType.REVIEW: {
        ChangeKind.CREATED: _REVIEW_CHANGE,
        ChangeKind.UPDATED: _REVIEW_CHANGE,
        ChangeKind.DELETED: _REVIEW_CHANGE,
    },
}

KeyValues = Union[str, Iterable[str]]


class RegionCache:
    """Bounded LRU map for one region."""

    def __init__(self, max_entries: int = 1000):
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, Any]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Any:
        if key in self._entries:
            self._entries.move_to_end(key)
            self.hits += 1
            return self._entries[key]
        self.misses += 1
        return None

    def put(self, key: str, value: Any) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = value
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def evict(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()


class CatalogCache:
    """
    All read regions plus table-driven invalidation.

    Cached values are shared between callers and must be treated as read-only.
    """

    def __init__(self, max_entries: int = 1000, table: Optional[Mapping] = None):
        self.regions = {region: RegionCache(max_entries) for region in CacheRegion}
        self.table = table if table is not None else INVALIDATION_TABLE
        self.logger = logger.bind(component="cache_invalidator")

    def region(self, region: CacheRegion) -> RegionCache:
        return self.regions[region]

    async def get_or_load(self, region: CacheRegion, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value for ``key`` or load, store and return it."""
        cache = self.regions[region]
        if key in cache:
            return cache.get(key)
        cache.misses += 1
        value = await loader()
        cache.put(key, value)
        return value

    def invalidate(
        self,
        entity_type: EntityType,
        change: ChangeKind,
        keys: Optional[Mapping[EntityType, KeyValues]] = None
    ) -> List[Eviction]:
        """
        Apply every eviction listed for ``(entity_type, change)``.

        ``keys`` supplies the ids a KEY eviction needs; when an id is not
        supplied the region is cleared instead.
        """
        keys = keys or {}
        evictions = self.table[entity_type][change]
        for eviction in evictions:
            cache = self.regions[eviction.region]
            ids = _as_ids(keys.get(eviction.key)) if eviction.scope == EvictionScope.KEY else []
            if ids:
                for entity_id in ids:
                    cache.evict(entity_id)
            else:
                cache.clear()

        self.logger.debug(
            "Cache invalidated",
            entity_type=entity_type.value,
            change=change.value,
            evictions=len(evictions)
        )
        return evictions

    @contextmanager
    def invalidating(
        self,
        entity_type: EntityType,
        change: ChangeKind,
        keys: Optional[Mapping[EntityType, KeyValues]] = None
    ) -> Iterator[None]:
        """Invalidate after the block, whether it succeeded or not."""
        try:
            yield
        finally:
            self.invalidate(entity_type, change, keys)

    def clear_all(self) -> None:
        for cache in self.regions.values():
            cache.clear()
        self.logger.info("All cache regions cleared")

    def stats(self) -> Dict[str, Dict[str, int]]:
        return {
            region.value: {"size": len(cache), "hits": cache.hits, "misses": cache.misses}
            for region, cache in self.regions.items()
        }


def _as_ids(value: Optional[KeyValues]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [item for item in value if item]
