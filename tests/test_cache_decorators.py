#!/usr/bin/env python

import inspect
from concurrent.futures import ThreadPoolExecutor, as_completed
from functools import partial
from operator import attrgetter
from time import sleep, monotonic
from threading import RLock
from unittest import TestCase
from unittest.mock import Mock, MagicMock

from cachetools import LRUCache, TTLCache

from memo_tools.caching import cached, memoize, once, CachedFunc, LockingCachedFunc, CacheLockWarning, CacheInfo
from memo_tools.config import config
from memo_tools.test_common import TestCaseBase, main

LockType = type(RLock())


class AssertRuntimeBelowThreshold:
    __slots__ = ('test_case', 'threshold', 'start')

    def __init__(self, test_case: TestCase, delay: float, threshold: float = None):
        self.test_case = test_case
        if threshold is None:
            threshold = 1.35 if delay < 0.1 else 1.125
        self.threshold = delay * threshold

    def __enter__(self):
        self.start = monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = monotonic() - self.start
        self.test_case.assertLess(elapsed, self.threshold)


class IncrementingMultiplier:
    __slots__ = ('n', 'delay')

    def __init__(self, n: int = 0, delay: float = 0):
        self.n = n
        self.delay = delay

    def __call__(self, x: int) -> int:
        if self.delay:
            sleep(self.delay)
        self.n += 1
        return x * self.n


class PerKeyIncrementingMultiplier(IncrementingMultiplier):
    __slots__ = ('key_n_map',)

    def __init__(self, n: int = 0, delay: float = 0):
        super().__init__(n, delay)
        self.key_n_map = {}

    def __call__(self, x: int) -> int:
        if self.delay:
            sleep(self.delay)
        self.key_n_map[x] = n = self.key_n_map.get(x, self.n) + 1
        return x * n


class TestAssertionHelpers(TestCase):
    def test_assert_runtime_below_threshold(self):
        with self.assertRaises(AssertionError):
            with AssertRuntimeBelowThreshold(self, 0.01):
                sleep(0.02)


class TestCachedFunc(TestCase):
    # region Initialization

    def test_invalid_cache_type(self):
        with self.assertRaisesRegex(TypeError, 'Invalid type=.* for cache=.* with method=True - expected'):
            CachedFunc(Mock(), [], method=True)

    def test_auto_method_cache_converted_to_attrgetter(self):
        cf = CachedFunc(Mock(), 'cache_attr')
        self.assertIsInstance(cf.cache, attrgetter)
        self.assertTrue(cf.method)

    def test_auto_method_cache_as_attrgetter(self):
        cf = CachedFunc(Mock(), attrgetter('cache_attr'))
        self.assertIsInstance(cf.cache, attrgetter)
        self.assertTrue(cf.method)

    def test_invalid_key_strategy(self):
        with self.assertRaisesRegex(ValueError, 'Invalid key strategy='):
            CachedFunc(Mock(), key='bogus')

    def test_bounded_caches(self):
        self.assertIsInstance(CachedFunc(Mock()).cache, dict)
        self.assertIsInstance(CachedFunc(Mock(), maxsize=10).cache, LRUCache)
        self.assertIsInstance(CachedFunc(Mock(), ttl=10).cache, TTLCache)

    def test_signature_is_preserved(self):
        def add(a: int, b: int = 2) -> int:
            """Add two numbers"""
            return a + b

        func = memoize(add)
        self.assertEqual(inspect.signature(add), inspect.signature(func))
        self.assertEqual('add', func.__name__)
        self.assertEqual('Add two numbers', func.__doc__)
        self.assertIs(add, func.__wrapped__)

    # endregion

    def test_cached_value_is_returned(self):
        for cls in (CachedFunc, LockingCachedFunc):
            with self.subTest(cls=cls):
                func = cls(IncrementingMultiplier())
                self.assertEqual(2, func(2))
                self.assertEqual(2, func(2))
                self.assertEqual(4, func.func(2))
                self.assertEqual(2, func(2))

    def test_separate_cached_values_are_returned(self):
        for cls in (CachedFunc, LockingCachedFunc):
            with self.subTest(cls=cls):
                func = cls(PerKeyIncrementingMultiplier())
                self.assertEqual(2, func(2))
                self.assertEqual(2, func(2))
                self.assertEqual(4, func.func(2))
                self.assertEqual(2, func(2))
                self.assertEqual(3, func(3))
                self.assertEqual(3, func(3))
                self.assertEqual(6, func.func(3))
                self.assertEqual(3, func(3))

    def test_same_object_is_returned(self):
        for cls in (CachedFunc, LockingCachedFunc):
            with self.subTest(cls=cls):
                func = cls(lambda x: [x])
                self.assertIs(func(1), func(1))
                self.assertIsNot(func(1), func(2))

    def test_default_args_are_normalized(self):
        calls = []

        @cached()
        def add(a, b=2):
            calls.append((a, b))
            return a + b

        self.assertEqual(3, add(1))
        self.assertEqual(3, add(1, 2))
        self.assertEqual(3, add(1, b=2))
        self.assertEqual(3, add(a=1, b=2))
        self.assertEqual([(1, 2)], calls)

    def test_text_keys_collide_for_equal_text(self):
        mock = Mock(return_value='result')
        func = memoize(mock)
        func(1)
        func('1')
        self.assertEqual(1, mock.call_count)

    def test_strict_keys_do_not_collide(self):
        mock = Mock(return_value='result')
        func = memoize(mock, key='strict')
        func(1)
        func('1')
        func(1)
        self.assertEqual(2, mock.call_count)

    def test_method_no_cache(self):
        for cls in (CachedFunc, LockingCachedFunc):
            with self.subTest(cls=cls):
                kwargs = {'lock': lambda _: RLock()} if cls is LockingCachedFunc else {}
                func = cls(IncrementingMultiplier(), method=True, cache=lambda _: None, **kwargs)
                self.assertEqual(2, func(2))
                self.assertEqual(4, func(2))
                self.assertEqual(6, func(2))

    def test_custom_key_func(self):
        for cls in (CachedFunc, LockingCachedFunc):
            with self.subTest(cls=cls):
                cache = {}
                func = cls(lambda x: x + 1, cache=cache, key=lambda identity, args, kwargs: args[0])
                func(1)
                self.assertEqual({1: 2}, cache)
                func(2)
                self.assertEqual({1: 2, 2: 3}, cache)

    def test_exception_not_cached(self):
        for cls in (CachedFunc, LockingCachedFunc):
            with self.subTest(cls=cls):
                func = cls(Mock(side_effect=(ValueError, 2, RuntimeError)))
                with self.assertRaises(ValueError):
                    func(1)
                self.assertEqual(2, func(1))
                self.assertEqual(2, func(1))

    def test_repeated_failures_call_func_each_time(self):
        for cls in (CachedFunc, LockingCachedFunc):
            with self.subTest(cls=cls):
                mock = Mock(side_effect=RuntimeError('boom'))
                func = cls(mock)
                for _ in range(2):
                    with self.assertRaisesRegex(RuntimeError, 'boom'):
                        func()
                self.assertEqual(2, mock.call_count)
                self.assertEqual(0, func.cache_info().currsize)

    def test_cached_class_method(self):
        class Foo:
            bar_calls = 0
            baz_calls = 0

            @cached()  # noqa
            @classmethod
            def bar(cls, n):
                cls.bar_calls += 1
                return n + 1

            @classmethod
            @cached()
            def baz(cls, n):
                cls.baz_calls += 1
                return n + 2

        self.assertEqual(2, Foo.bar(1))
        self.assertEqual(2, Foo.bar(1))
        self.assertEqual(1, Foo.bar_calls)
        self.assertEqual(3, Foo.bar(2))
        self.assertEqual(2, Foo.bar_calls)

        self.assertEqual(3, Foo.baz(1))
        self.assertEqual(3, Foo.baz(1))
        self.assertEqual(1, Foo.baz_calls)
        self.assertEqual(4, Foo.baz(2))
        self.assertEqual(2, Foo.baz_calls)

    def test_per_instance_method_cache(self):
        class Foo:
            def __init__(self, n):
                self.n = n
                self.cache = {}
                self.calls = 0

            @cached('cache')
            def bar(self, x):
                self.calls += 1
                return x * self.n

        foo, other = Foo(2), Foo(3)
        self.assertEqual(4, foo.bar(2))
        self.assertEqual(4, foo.bar(2))
        self.assertEqual(6, other.bar(2))
        self.assertEqual((1, 1), (foo.calls, other.calls))
        self.assertEqual(1, len(foo.cache))
        self.assertEqual(1, Foo.bar.cache_info(foo).currsize)

    def test_caching_optional(self):
        for cls in (cached(optional=True), partial(LockingCachedFunc, optional=True)):
            with self.subTest(cls=cls):
                func = cls(PerKeyIncrementingMultiplier())
                self.assertEqual(2, func(2))
                self.assertEqual(2, func(2))
                self.assertEqual(4, func(2, use_cached=False))
                self.assertEqual(4, func(2))

                self.assertEqual(3, func(3))
                self.assertEqual(3, func(3))
                self.assertEqual(6, func(3, use_cached=False))
                self.assertEqual(6, func(3))

    def test_optional_param_in_signature(self):
        func = cached(optional='refresh', default=True)(lambda x: x)
        param = inspect.signature(func).parameters['refresh']
        self.assertEqual(inspect.Parameter.KEYWORD_ONLY, param.kind)
        self.assertIs(True, param.default)


class TestCacheInfo(TestCaseBase):
    def test_hits_and_misses(self):
        func = memoize(lambda x: x + 1)
        func(1)
        func(1)
        func(2)
        self.assertEqual(CacheInfo(hits=1, misses=2, currsize=2, maxsize=None), func.cache_info())

    def test_clear_cache(self):
        mock = Mock(return_value=1)
        func = memoize(mock)
        func(1)
        func.clear_cache()
        self.assertEqual(CacheInfo(0, 0, 0, None), func.cache_info())
        func(1)
        self.assertEqual(2, mock.call_count)

    def test_lru_eviction(self):
        mock = Mock(side_effect=lambda x: x)
        func = memoize(mock, maxsize=2)
        for x in (1, 2, 3):
            func(x)
        self.assertEqual(3, mock.call_count)
        self.assertEqual(CacheInfo(0, 3, 2, 2), func.cache_info())
        func(3)
        self.assertEqual(3, mock.call_count)
        func(1)  # evicted
        self.assertEqual(4, mock.call_count)

    def test_ttl_expiry(self):
        mock = Mock(side_effect=lambda x: x)
        func = memoize(mock, ttl=0.05)
        func(1)
        func(1)
        self.assertEqual(1, mock.call_count)
        sleep(0.1)
        func(1)
        self.assertEqual(2, mock.call_count)

    def test_config_defaults_used_for_new_caches(self):
        func = memoize(Mock(side_effect=lambda x: x))
        self.assertIsNone(func.cache_info().maxsize)

        config.cache.update(maxsize=1, key='strict')
        func = memoize(Mock(side_effect=lambda x: x))
        self.assertEqual(1, func.cache_info().maxsize)
        self.assertIn('"int"', func._make_key((1,), {}))


class TestOnce(TestCase):
    def test_first_result_is_always_returned(self):
        mock = Mock(side_effect=lambda x: [x])
        func = once(mock)
        first = func(1)
        self.assertEqual([1], first)
        self.assertIs(first, func(2))
        self.assertIs(first, func())
        self.assertEqual(1, mock.call_count)

    def test_failures_are_retried(self):
        mock = Mock(side_effect=(ValueError, 'ok', 'unexpected'))
        func = once(mock)
        with self.assertRaises(ValueError):
            func()
        self.assertEqual('ok', func())
        self.assertEqual('ok', func())
        self.assertEqual(2, mock.call_count)

    def test_concurrent_calls_only_call_once(self):
        mock = Mock(side_effect=lambda: sleep(0.05) or object())
        func = once(mock)
        with ThreadPoolExecutor(max_workers=4) as pool:
            results = [f.result() for f in [pool.submit(func) for _ in range(4)]]
        self.assertEqual(1, mock.call_count)
        self.assertTrue(all(r is results[0] for r in results))


class TestLockingCachedFunc(TestCase):
    # region Initialization

    def test_auto_method_lock_converted_to_attrgetter(self):
        cf = LockingCachedFunc(Mock(), 'cache_attr', lock='bar')
        self.assertIsInstance(cf.lock, attrgetter)
        self.assertTrue(cf.method)

    def test_auto_method_cache_as_attrgetter(self):
        cf = LockingCachedFunc(Mock(), 'cache_attr', lock=attrgetter('bar'))
        self.assertIsInstance(cf.lock, attrgetter)
        self.assertTrue(cf.method)

    def test_default_lock(self):
        self.assertIsInstance(LockingCachedFunc(Mock()).lock, LockType)

    def test_explicit_lock(self):
        lock = RLock()
        self.assertIs(lock, LockingCachedFunc(Mock(), lock=lock).lock)

    def test_lock_from_decorator(self):
        self.assertIsInstance(cached(lock=True)(Mock()), LockingCachedFunc)
        self.assertNotIsInstance(cached(lock=False)(Mock()), LockingCachedFunc)

    # endregion

    def test_concurrent_call_with_same_args_waits_for_lock(self):
        delay = 0.05
        func = LockingCachedFunc(IncrementingMultiplier(delay=delay))
        with ThreadPoolExecutor(max_workers=3) as pool, AssertRuntimeBelowThreshold(self, delay):
            for future in as_completed(pool.submit(func, 2) for _ in range(3)):
                self.assertEqual(2, future.result())

    def test_concurrent_calls_for_different_args_do_not_block_each_other(self):
        delay = 0.05
        func = LockingCachedFunc(PerKeyIncrementingMultiplier(delay=delay))
        with ThreadPoolExecutor(max_workers=4) as pool, AssertRuntimeBelowThreshold(self, delay):
            futures = {pool.submit(func, n): n for n in (2, 2, 3, 3)}
            for future in as_completed(futures):
                self.assertEqual(futures[future], future.result())

    def test_bounded_cache_with_concurrent_callers(self):
        func = memoize(lambda x: x * 2, maxsize=4, lock=True)
        self.assertIsInstance(func, LockingCachedFunc)
        args = [n % 10 for n in range(200)]
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(func, args))
        self.assertEqual([x * 2 for x in args], results)
        self.assertEqual(4, func.cache_info().currsize)

    def test_waiting_callers_retry_after_failure(self):
        mock = Mock(side_effect=(RuntimeError('boom'), 'ok', 'ok', 'ok'))

        def slow(x):
            sleep(0.05)
            return mock(x)

        func = LockingCachedFunc(slow)
        with ThreadPoolExecutor(max_workers=3) as pool:
            futures = [pool.submit(func, 1) for _ in range(3)]
        results = []
        for future in futures:
            try:
                results.append(future.result())
            except RuntimeError:
                results.append('error')

        self.assertEqual(1, results.count('error'))
        self.assertEqual(2, results.count('ok'))
        self.assertEqual('ok', func(1))

    def test_shared_lock_warns_and_is_used(self):
        delay = 0.05
        with self.assertWarns(CacheLockWarning):
            class Foo:
                def __init__(self):
                    self.cache = {}

                @cached('cache', lock=RLock(), key_lock=False)  # noqa
                def bar(self, baz):
                    sleep(delay)
                    return baz + 1

        cf = Foo.bar
        self.assertIsInstance(cf, LockingCachedFunc)
        self.assertTrue(cf.method)
        self.assertIsInstance(cf.cache, attrgetter)

        instances = [Foo(), Foo()]
        with ThreadPoolExecutor(max_workers=2) as pool, AssertRuntimeBelowThreshold(self, delay):
            for future in as_completed(pool.submit(foo.bar, 2) for foo in instances):
                self.assertEqual(3, future.result())

        self.assertEqual([1, 1], [len(foo.cache) for foo in instances])

    def test_methods_use_separate_default_locks(self):
        class Foo:
            @cached(MagicMock(), method=True, lock=True)  # noqa
            def bar(self, n):
                return n + 1

            @cached(MagicMock(), method=True, lock=True)
            def baz(self, n):
                return n + 2

        foo = Foo()
        self.assertEqual({}, foo.__dict__)
        foo.bar(1)
        self.assertIsInstance(foo.__dict__['_cached__bar_lock'], LockType)
        foo.baz(1)
        self.assertIsInstance(foo.__dict__['_cached__baz_lock'], LockType)


if __name__ == '__main__':
    main()
