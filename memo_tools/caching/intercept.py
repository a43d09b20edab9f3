"""
Memoizing proxies for arbitrary objects.

:func:`intercept` wraps an object in a :class:`MemoizedProxy`.  Methods accessed through the proxy return memoized
wrappers whose results are stored per method name, so calling ``proxy.method(*args)`` twice with equivalent arguments
only calls the underlying method once.  Other attributes are read from / written to the wrapped object directly.

Only the explicitly wrapped object is affected - no classes are modified, and the object itself may still be used
directly (without caching) alongside the proxy.

Methods with side effects that matter per call should be excluded, either by decorating them with :func:`impure` or
by passing their names via ``impure=...``.
"""

from __future__ import annotations

import logging
from threading import RLock
from typing import Callable, Collection, TypeVar

from wrapt import ObjectProxy

from ..config import config
from .decorate import CachedFunc, CacheInfo, LockingCachedFunc, KeyArg

__all__ = ['intercept', 'MemoizedProxy', 'pure', 'impure', 'proxy_cache_info', 'clear_proxy_cache']
log = logging.getLogger(__name__)

F = TypeVar('F', bound=Callable)
MEMOIZE_ATTR = '__memoize__'


def pure(func: F) -> F:
    """Mark the given method as safe to memoize when it is accessed through a :class:`MemoizedProxy`."""
    setattr(func, MEMOIZE_ATTR, True)
    return func


def impure(func: F) -> F:
    """Mark the given method as unsafe to memoize - it will always be called when accessed through a proxy."""
    setattr(func, MEMOIZE_ATTR, False)
    return func


class MemoizedProxy(ObjectProxy):
    """
    A proxy that memoizes calls to the methods of the wrapped object.

    Dunder methods are not intercepted, and neither are operations that Python performs via type slots (such as
    ``len(proxy)`` or ``proxy[key]``), nor classes that are accessible as attributes of the wrapped object.

    :param wrapped: The object whose methods should be memoized
    :param pure: If specified, only methods with these names (or that were decorated with :func:`pure`) will be
      memoized.  By default, all methods that were not marked as impure are memoized.
    :param impure: Names of methods that should never be memoized
    :param key: The key strategy to use for each method (see :func:`cached<.caching.decorate.cached>`)
    :param maxsize: The maximum number of results to store for each method (default: no limit)
    :param ttl: The number of seconds that results should be stored (default: no expiry)
    :param lock: Whether concurrent calls should be synchronized (default: ``config.cache.lock``)
    """

    def __init__(
        self,
        wrapped,
        *,
        pure: Collection[str] = None,
        impure: Collection[str] = (),
        key: KeyArg = None,
        maxsize: int = None,
        ttl: float = None,
        lock: bool = None,
    ):
        super().__init__(wrapped)
        self._self_pure = None if pure is None else frozenset((pure,) if isinstance(pure, str) else pure)
        self._self_impure = frozenset((impure,) if isinstance(impure, str) else impure)
        self._self_cache_opts = {'key': key, 'maxsize': maxsize, 'ttl': ttl}
        self._self_lock = config.cache.lock if lock is None else lock
        self._self_methods = {}
        self._self_methods_lock = RLock()

    def __getattr__(self, name: str):
        # Only called for attributes that were not found on the proxy itself
        value = super().__getattr__(name)
        if name.startswith('__') or not callable(value) or isinstance(value, type):
            return value
        elif not self._self_should_cache(name, value):
            return value
        return self._self_cached_method(name, value)

    def __repr__(self) -> str:
        return f'<{type(self).__name__} for {self.__wrapped__!r}>'  # __class__ is proxied

    def _self_should_cache(self, name: str, method) -> bool:
        if name in self._self_impure:
            return False
        tag = getattr(method, MEMOIZE_ATTR, None)  # bound methods expose their function's attributes
        if tag is False:
            return False
        elif self._self_pure is not None:
            return tag is True or name in self._self_pure
        return True

    def _self_cached_method(self, name: str, method) -> CachedFunc:
        with self._self_methods_lock:
            try:
                cached_func, orig = self._self_methods[name]
            except KeyError:
                pass
            else:
                # Bound methods are re-created on every access; they compare equal if they have the same self + func
                if orig is method or orig == method:
                    return cached_func
                log.debug(f'The {name!r} attribute of {self.__wrapped__!r} changed - discarding its cached results')

            if self._self_lock:
                cached_func = LockingCachedFunc(method, lock=True, identity=name, **self._self_cache_opts)
            else:
                cached_func = CachedFunc(method, identity=name, **self._self_cache_opts)
            self._self_methods[name] = (cached_func, method)
            return cached_func


def intercept(obj, **kwargs) -> MemoizedProxy:
    """
    Wrap the given object in a :class:`MemoizedProxy`.  Accepts the same keyword arguments as :class:`MemoizedProxy`.

    Example::

        >>> calc = intercept(Calculator(), impure=('reset',))
        >>> calc.slow_square(12)  # computed
        144
        >>> calc.slow_square(12)  # returned from the cache
        144
    """
    return MemoizedProxy(obj, **kwargs)


def proxy_cache_info(proxy: MemoizedProxy, name: str) -> CacheInfo:
    """
    :param proxy: A :class:`MemoizedProxy`
    :param name: The name of a method of the wrapped object
    :return: A :class:`CacheInfo` tuple for the given method (all zeros if it was not called through the proxy yet)
    """
    try:
        cached_func, _ = proxy._self_methods[name]
    except KeyError:
        return CacheInfo(0, 0, 0, None)
    return cached_func.cache_info()


def clear_proxy_cache(proxy: MemoizedProxy, name: str = None):
    """
    :param proxy: A :class:`MemoizedProxy`
    :param name: The name of a method whose results should be discarded, or None to discard results for all methods
    """
    with proxy._self_methods_lock:
        if name is None:
            entries = list(proxy._self_methods.values())
        elif (entry := proxy._self_methods.get(name)) is not None:
            entries = [entry]
        else:
            entries = []
        for cached_func, _ in entries:
            cached_func.clear_cache()
