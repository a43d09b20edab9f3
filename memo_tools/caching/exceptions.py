"""
Exceptions and warnings for the caching package.
"""

__all__ = ['CacheLockWarning']


class CacheLockWarning(Warning):
    def __init__(self, func, lock):
        self.func = func
        self.lock = lock

    def __str__(self) -> str:
        return (
            f'The @cached lock provided for method {self.func.__qualname__!r}'
            f' appears to be a single lock instance: {self.lock!r}'
        )
