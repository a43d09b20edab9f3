"""
A ``cached`` memoizing decorator and utilities that go with it.

The ``cached`` decorator here is based on the ``cached`` and ``cachedmethod`` decorators in the `cachetools` package,
but it combines them and adds additional locking and toggling features.

Notes on behavior:

- Exceptions raised by the wrapped function are never cached - they propagate to the caller, and the next call with
  the same arguments will call the function again.
- Without a lock, concurrent calls with the same new arguments may all call the wrapped function (a cache stampede),
  and the last value stored wins.  That is harmless for pure functions, but functions with side effects that matter
  should either not be memoized, or should be wrapped with ``lock=True`` so that only one caller computes the value
  for a given key while the others wait for it.
- The default cache is never pruned.  Use ``maxsize`` and/or ``ttl`` for a bounded cache, keeping in mind that an
  evicted / expired entry will be re-computed on the next call.  The bounded caches (``cachetools.LRUCache`` and
  ``TTLCache``) are not thread-safe, so a bounded cache that may be used by concurrent callers needs ``lock=True``.
"""

from __future__ import annotations

import logging
import warnings
from collections import namedtuple
from functools import update_wrapper, partial
from inspect import Parameter
from operator import attrgetter
from threading import Lock, RLock
from typing import TypeVar, Union, Callable, ParamSpec, Generic, Hashable

from ..config import config
from ..core.introspection import get_signature, split_arg_vals_with_defaults, insert_kwonly_arg
from .caches import Cache, cache_maxsize, new_cache
from .exceptions import CacheLockWarning
from .keys import CacheKey, KeyFunc, callable_identity

__all__ = ['cached', 'memoize', 'once', 'CachedFunc', 'LockingCachedFunc', 'CacheInfo']
log = logging.getLogger(__name__)

P = ParamSpec('P')
T = TypeVar('T')
Obj = TypeVar('Obj')
Func = Callable[P, T] | classmethod
CacheFactory = Callable[[Obj], Cache]
CacheArg = Union[Cache, attrgetter, CacheFactory, str, bool, None]
LockArg = Union[Lock, RLock, attrgetter, str, bool]
KeyArg = Union[KeyFunc, str, None]
_NoValue = object()

CacheInfo = namedtuple('CacheInfo', 'hits misses currsize maxsize')


def cached(
    cache: CacheArg = True,
    *,
    key: KeyArg = None,
    lock: LockArg = None,
    maxsize: int = None,
    ttl: float = None,
    optional: str | bool = None,
    default: bool = True,
    method: bool = None,
    key_lock: bool = True,
) -> Callable[[Func], CachedFunc[P, T]]:
    """
    Memoize the decorated function.

    :param cache: The cache to use.  If True or None (default), a new cache will be created.  For methods, this may be
      the name of an attribute, an :func:`operator.attrgetter`, or a callable that accepts the instance (or class) and
      returns the cache to use for it (or None to skip caching for that instance).
    :param key: The key strategy to use - the name of a :class:`.CacheKey` strategy (``text``, ``strict``, or
      ``constant``), or a callable that accepts ``(identity, args, kwargs)``.  Defaults to ``config.cache.key``.
    :param lock: A lock (or, for methods, the name of an attribute / a callable that returns a lock) to use for
      thread-safe access to the cache.  If True, a new lock will be created (per instance, for methods).  Defaults to
      ``config.cache.lock``.
    :param maxsize: The maximum number of entries to store in a new cache (default: no limit)
    :param ttl: The number of seconds that entries should be kept in a new cache (default: no expiry)
    :param optional: Inject a keyword-only parameter with this name (or ``use_cached`` if True) that may be used to
      bypass the cache for a given call
    :param default: The default value for the ``optional`` parameter
    :param method: Whether the decorated function is a method that uses a per-instance cache (default: inferred from
      the type of ``cache``)
    :param key_lock: When a lock is used, also prevent concurrent calls with the same arguments (default: True)
    :return: A decorator that returns a :class:`CachedFunc` or :class:`LockingCachedFunc`
    """
    if lock is None:
        lock = config.cache.lock

    def decorator(func: Func):
        if lock is not None and lock is not False:
            cls, kwargs = LockingCachedFunc, {'lock': lock, 'key_lock': key_lock}
        else:
            cls, kwargs = CachedFunc, {}
        return cls(
            func, cache, key=key, maxsize=maxsize, ttl=ttl, optional=optional, optional_default=default, method=method,
            **kwargs
        )

    return decorator


def memoize(func: Func, cache: CacheArg = True, **kwargs) -> CachedFunc[P, T]:
    """
    Memoize the given function.  Accepts the same keyword arguments as :func:`cached`.

    :param func: The function whose results should be cached
    :param cache: The cache to use (default: a new cache)
    :return: A :class:`CachedFunc` wrapping the given function
    """
    return cached(cache, **kwargs)(func)


def once(func: Func) -> LockingCachedFunc[P, T]:
    """
    Wrap the given function so that it is only called until it succeeds once.  Every subsequent call returns the value
    returned by the first successful call, regardless of the arguments that are provided.
    """
    return LockingCachedFunc(func, {}, key=CacheKey.constant)


class CachedFunc(Generic[P, T]):
    __slots__ = (
        'func', 'sig', 'cache', 'key', 'identity', 'optional', 'method', 'cls_method', 'hits', 'misses', '__dict__'
    )
    cache: Cache | CacheFactory

    def __init__(
        self,
        func: Func,
        cache: CacheArg = True,
        *,
        key: KeyArg = None,
        maxsize: int = None,
        ttl: float = None,
        optional: Union[bool, str] = None,
        optional_default: bool = True,
        method: bool = None,
        identity: str = None,
    ):
        if method is None:
            method = isinstance(cache, (attrgetter, str))
        if method:
            if isinstance(cache, str):
                cache = attrgetter(cache)
            elif not callable(cache):
                raise TypeError(
                    f'Invalid type={cache.__class__.__name__} for {cache=} with method=True - expected the name of'
                    ' an attribute, an operator.attrgetter, or another func/callable that accepts one argument and'
                    ' returns a mutable mapping to use as a cache'
                )
        elif cache is None or cache is True:
            if maxsize is None and ttl is None:
                maxsize, ttl = config.cache.maxsize, config.cache.ttl
            cache = new_cache(maxsize, ttl)

        if isinstance(func, classmethod):
            self.cls_method = True  # It may be a class method without using an attrgetter for the cache or lock
            func = func.__func__
        else:
            self.cls_method = False
        self.func = func
        self.sig = get_signature(func)
        self.cache = cache
        self.key = CacheKey.resolve(config.cache.key if key is None else key)
        self.identity = identity or callable_identity(func)
        self.method = method
        self.hits = 0
        self.misses = 0
        update_wrapper(self, func)
        if optional:
            self.optional = Optional(optional, optional_default)
            self.optional.inject_param(self)
        else:
            self.optional = None

    def __get__(self, instance, owner):
        if self.cls_method:
            instance = owner  # This imitates the behavior of classmethod.__get__
        elif instance is None:
            return self
        return partial(self.__call__, instance)

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}[{self.identity}]>'

    def _make_key(self, args: P.args, kwargs: P.kwargs) -> Hashable:
        key_args, key_kwargs = split_arg_vals_with_defaults(self.sig, args, kwargs)
        if self.method:
            key_args = key_args[1:]  # the per-instance cache already distinguishes between instances
        return self.key(self.identity, tuple(key_args), key_kwargs)

    def _get_cached_value(self, cache: Cache, key, default=_NoValue):
        try:
            val = cache[key]
        except KeyError:
            self.misses += 1
            return default
        else:
            self.hits += 1
            log.log(9, 'Returning cached value for key=%r', key)
            return val

    def _store(self, cache: Cache, key, val):
        try:
            cache[key] = val
        except ValueError:  # May be raised if the value is too large to store
            pass
        else:
            log.log(9, 'Stored value for key=%r', key)

    def _get_cache(self, args: P.args) -> Cache | None:
        if self.method:
            return self.cache(args[0])  # noqa  # args[0] is the wrapped method's `self` or `cls`
        return self.cache

    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> T:
        # The key needs to be popped first, if potentially present, to prevent it from being passed if the cache is None
        use_cached = kwargs.pop(self.optional.key, self.optional.default) if self.optional else True
        if (cache := self._get_cache(args)) is None:
            return self.func(*args, **kwargs)

        key = self._make_key(args, kwargs)
        if use_cached and (val := self._get_cached_value(cache, key)) is not _NoValue:
            return val

        val = self.func(*args, **kwargs)  # Exceptions propagate without storing anything
        self._store(cache, key, val)
        return val

    def cache_info(self, instance=None) -> CacheInfo:
        """
        :param instance: For methods with per-instance caches, the instance whose cache should be described
        :return: A :class:`CacheInfo` tuple.  Hits and misses are totals across all instances for methods.
        """
        cache = self.cache(instance) if self.method else self.cache
        if cache is None:
            return CacheInfo(self.hits, self.misses, 0, None)
        return CacheInfo(self.hits, self.misses, len(cache), cache_maxsize(cache))

    def clear_cache(self, instance=None):
        """
        Remove all stored values so that the wrapped function will be called again for any arguments.

        :param instance: For methods with per-instance caches, the instance whose cache should be cleared
        """
        cache = self.cache(instance) if self.method else self.cache
        if cache is not None:
            cache.clear()
        self.hits = self.misses = 0


class LockingCachedFunc(CachedFunc):
    __slots__ = ('lock', 'key_lock', 'key_lock_type', 'key_locks')

    def __init__(
        self,
        func: Func,
        cache: CacheArg = True,
        lock: LockArg = True,
        *,
        key: KeyArg = None,
        maxsize: int = None,
        ttl: float = None,
        optional: Union[bool, str] = None,
        optional_default: bool = True,
        method: bool = None,
        identity: str = None,
        key_lock: bool = True,
        key_lock_type: Callable[[], Lock] = RLock,
    ):
        super().__init__(
            func,
            cache,
            key=key,
            maxsize=maxsize,
            ttl=ttl,
            optional=optional,
            optional_default=optional_default,
            method=method,
            identity=identity,
        )
        if self.method:
            if isinstance(lock, str):
                lock = attrgetter(lock)
            elif lock is True:
                name = getattr(self.func, '__name__', 'cache')
                lock = partial(_get_or_create_lock, lock_attr_name=f'_cached__{name}_lock')
            elif not callable(lock) and hasattr(lock, 'acquire') and hasattr(lock, 'release'):
                warnings.warn(CacheLockWarning(func, lock))
                _lock = lock
                def lock(_): return _lock
        elif lock is True:
            lock = RLock()

        self.lock = lock
        self.key_lock = key_lock
        self.key_lock_type = key_lock_type
        self.key_locks = {}

    def _get_and_store_new_value(self, cache: Cache, key, args: P.args, kwargs: P.kwargs, cache_lock: Lock):
        val = self.func(*args, **kwargs)  # Exceptions propagate without storing anything
        with cache_lock:
            self._store(cache, key, val)
        return val

    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> T:
        # The key needs to be popped first, if potentially present, to prevent it from being passed if the cache is None
        use_cached = kwargs.pop(self.optional.key, self.optional.default) if self.optional else True
        if self.method:
            obj = args[0]  # self or cls
            cache = self.cache(obj)  # noqa
            cache_lock = self.lock(obj)
        else:
            cache, cache_lock = self.cache, self.lock

        if cache is None:
            return self.func(*args, **kwargs)

        key = self._make_key(args, kwargs)
        if use_cached:
            with cache_lock:
                if (val := self._get_cached_value(cache, key)) is not _NoValue:
                    return val

            if self.key_lock:
                if (val := self._get_key_locked_value(cache_lock, cache, key, args, kwargs)) is not _NoValue:
                    return val
                # The call that held the key lock did not store a value (it most likely raised an exception), so this
                # thread needs to call the func itself

        return self._get_and_store_new_value(cache, key, args, kwargs, cache_lock)

    def _get_key_locked_value(self, cache_lock: Lock, cache: Cache, key, args: P.args, kwargs: P.kwargs):
        wait = True
        with cache_lock:
            # Another thread may have stored a value between this thread's first check and acquiring the lock again
            if (val := self._get_cached_value(cache, key)) is not _NoValue:
                return val
            # If a key_lock for this key already exists, then another thread is already calling the func with these
            # args to obtain a new value, so this thread should wait for that value to be available in the cache.
            if (key_lock := self.key_locks.get(key)) is None:
                wait = False  # The func isn't already being called with these args
                self.key_locks[key] = key_lock = self.key_lock_type()
                # Acquire before releasing cache_lock to prevent the wrong thread from getting it first
                key_lock.acquire()

        if wait:
            # The cache_lock must be acquired after the key_lock, otherwise the thread calling the func would be
            # blocked from storing the result (deadlock).
            with key_lock, cache_lock:
                return self._get_cached_value(cache, key)

        # The key lock was already acquired, and this is the first thread to call the func with these args
        try:
            return self._get_and_store_new_value(cache, key, args, kwargs, cache_lock)
        finally:
            with cache_lock:
                key_lock.release()
                # Removing the key lock marks the call with these args as complete.  If no value was stored (because
                # the func raised an exception, or because the entry already expired), then the next thread to reach
                # the top of this method will create a new lock for this key.
                del self.key_locks[key]


class Optional:
    __slots__ = ('key', 'default')

    def __init__(self, key: str | bool, default: bool = True):
        self.key = 'use_cached' if key is True else key
        self.default = default

    def inject_param(self, wrapper: CachedFunc | LockingCachedFunc):
        new_param = Parameter(self.key, Parameter.KEYWORD_ONLY, default=self.default)
        description = 'Use cached return values for previously used arguments if they exist'
        insert_kwonly_arg(wrapper, new_param, description, 'bool', sig=wrapper.sig)


_LOCK_ATTR_LOCK = RLock()


def _get_or_create_lock(obj, lock_attr_name: str = '_cached__cache_lock'):
    if (lock := vars(obj).get(lock_attr_name)) is None:
        with _LOCK_ATTR_LOCK:
            # In case two threads were trying to create this lock at
            # the same time, we need to check for its existence again
            if (lock := vars(obj).get(lock_attr_name)) is None:
                lock = RLock()
                setattr(obj, lock_attr_name, lock)

    return lock
