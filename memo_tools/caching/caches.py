"""
Dict-like cache classes to be used with the :func:`cached<.caching.decorate.cached>` decorator.

The default store is a plain dict, which is never pruned - every distinct key that is stored will be kept for as long
as the cache exists.  Bounded stores are available via ``maxsize`` (least-recently-used eviction) and ``ttl``
(time-to-live expiry).  Note that bounding a store changes observable behavior: when an entry has been evicted or has
expired, the next call with the same arguments will invoke the wrapped function again.
"""

from __future__ import annotations

import logging
from typing import Hashable, MutableMapping, TypeVar

from cachetools import LRUCache, TTLCache

__all__ = ['new_cache', 'cache_maxsize', 'Cache']
log = logging.getLogger(__name__)

T = TypeVar('T')
Cache = MutableMapping[Hashable, T]


def new_cache(maxsize: int | None = None, ttl: float | None = None) -> Cache:
    """
    :param maxsize: The maximum number of entries to keep, or None for no limit
    :param ttl: The number of seconds that an entry should be kept, or None for no expiry
    :return: A new, empty cache
    """
    if maxsize is not None and maxsize <= 0:
        raise ValueError(f'Invalid {maxsize=} - expected a positive integer')
    if ttl is not None:
        if ttl <= 0:
            raise ValueError(f'Invalid {ttl=} - expected a positive number of seconds')
        # TTLCache requires a maxsize; float('inf') effectively removes the size limit
        cache = TTLCache(float('inf') if maxsize is None else maxsize, ttl)
    elif maxsize is not None:
        cache = LRUCache(maxsize)
    else:
        cache = {}
    log.log(9, f'Created new {cache.__class__.__name__} cache with {maxsize=} {ttl=}')
    return cache


def cache_maxsize(cache: Cache) -> int | None:
    """
    :param cache: A cache
    :return: The maximum number of entries that the given cache may hold, or None if it is unbounded
    """
    maxsize = getattr(cache, 'maxsize', None)
    if maxsize is None or maxsize == float('inf'):
        return None
    return int(maxsize)
