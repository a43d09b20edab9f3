"""
Package-wide defaults for memoized wrappers and intercepted objects.

Defaults are read when a wrapper is created without explicit options, so changing them never affects wrappers that
already exist.  Initial values may be provided via environment variables, e.g. ``MEMO_TOOLS_MAXSIZE=1000``::

    >>> from memo_tools.config import config
    >>> config.cache.update(key='strict', maxsize=500)
"""

from __future__ import annotations

import os
from typing import Any, Callable, Mapping, Optional

from .core.config import ConfigItem, ConfigSection, NestedSection

__all__ = ['CacheConfig', 'MemoConfig', 'config', 'env_overrides']

ENV_PREFIX = 'MEMO_TOOLS_'
KEY_STRATEGIES = ('text', 'strict', 'constant')


def _optional(type_: Callable[[Any], Any]) -> Callable[[Any], Optional[Any]]:
    def convert(value):
        if value is None or (isinstance(value, str) and value.strip().lower() in ('', 'none')):
            return None
        return type_(value)

    convert.__name__ = f'optional_{type_.__name__}'
    return convert


def _bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def _key_strategy(value: str) -> str:
    if value not in KEY_STRATEGIES:
        raise ValueError(f'expected one of: {", ".join(KEY_STRATEGIES)}')
    return value


class CacheConfig(ConfigSection):
    key: str = ConfigItem('text', type=_key_strategy)
    maxsize: int | None = ConfigItem(None, type=_optional(int))
    ttl: float | None = ConfigItem(None, type=_optional(float))
    lock: bool = ConfigItem(False, type=_bool)


class MemoConfig(ConfigSection):
    cache: CacheConfig = NestedSection(CacheConfig)


def env_overrides(environ: Mapping[str, str] = None) -> dict[str, dict[str, str]]:
    """
    :param environ: A mapping of environment variables (default: :data:`os.environ`)
    :return: A config mapping containing the values that were set via ``MEMO_TOOLS_*`` environment variables
    """
    environ = os.environ if environ is None else environ
    cache = {}
    for name in CacheConfig._config_items_:
        if (value := environ.get(f'{ENV_PREFIX}{name.upper()}')) is not None:
            cache[name] = value
    return {'cache': cache} if cache else {}


config = MemoConfig(env_overrides())
