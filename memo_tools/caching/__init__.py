"""
A ``cached`` memoizing decorator, memoizing object proxies, and utilities that go with them.
"""

from .caches import new_cache
from .decorate import cached, memoize, once, CachedFunc, LockingCachedFunc, CacheInfo
from .exceptions import CacheLockWarning
from .intercept import intercept, MemoizedProxy, pure, impure, proxy_cache_info, clear_proxy_cache
from .keys import CacheKey, callable_identity
