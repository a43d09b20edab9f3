"""
Key derivation strategies for the :func:`cached<.caching.decorate.cached>` decorator and for intercepted objects.

Every strategy accepts ``(identity, args, kwargs)`` and returns a string key, where ``identity`` is a stable label for
the callable whose results are being cached.  Strategies never raise - values that cannot be converted are encoded in
a generic fallback form instead.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Set, Sequence
from datetime import date, time, timedelta
from decimal import Decimal
from enum import Enum
from fractions import Fraction
from operator import itemgetter
from types import BuiltinFunctionType, FunctionType, MethodType
from typing import Any, Callable, Union

from ..core.serialization import PermissiveJSONEncoder
from ..core.structures import _is_record, _record_fields

__all__ = ['CacheKey', 'KeyFunc', 'callable_identity']
log = logging.getLogger(__name__)

KeyFunc = Callable[[str, tuple, Mapping[str, Any]], str]
_ENCODED_TYPES = (bytes, Decimal, Fraction, complex, date, time, timedelta)


class CacheKey:
    """
    Namespace for the built-in key derivation strategies.  The strategies are intended to be used as the ``key``
    argument to :func:`cached<.caching.decorate.cached>`, either directly or by name.

    The default :meth:`.text` strategy is intentionally loose: it joins the textual form of each argument, so arguments
    whose text is identical share a cached result (for example, ``f(1)`` and ``f('1')``, or ``f([1, 2])`` and
    ``f(1, 2)``).  The :meth:`.strict` strategy includes the type of every value and the structure of every container,
    so distinct arguments do not collide.
    """
    __slots__ = ()

    @classmethod
    def text(cls, identity: str, args: Sequence[Any], kwargs: Mapping[str, Any]) -> str:
        """Return a key built from the text of each argument."""
        parts = [_text(val) for val in args]
        if kwargs:
            parts.extend(f'{name}={_text(val)}' for name, val in sorted(kwargs.items(), key=itemgetter(0)))
        return f'{identity}:{",".join(parts)}'

    @classmethod
    def strict(cls, identity: str, args: Sequence[Any], kwargs: Mapping[str, Any]) -> str:
        """Return a key that reflects the type and structure of each argument."""
        doc = [
            identity,
            [_tagged(val) for val in args],
            [[name, _tagged(val)] for name, val in sorted(kwargs.items(), key=itemgetter(0))],
        ]
        try:
            return _dumps(doc)
        except (TypeError, ValueError) as e:
            log.debug(f'Unable to serialize strict cache key for {identity} - falling back to repr: {e}')
            return repr(doc)

    @classmethod
    def constant(cls, identity: str, args: Sequence[Any], kwargs: Mapping[str, Any]) -> str:
        """Return the same key regardless of arguments, so that only one result is ever stored."""
        return identity

    @classmethod
    def resolve(cls, key: Union[str, KeyFunc, None]) -> KeyFunc:
        """
        :param key: The name of a built-in strategy (``text``, ``strict``, or ``constant``), a custom key function, or
          None for the default (``text``) strategy
        :return: The key function
        """
        if key is None:
            return cls.text
        elif callable(key):
            return key
        try:
            return {'text': cls.text, 'strict': cls.strict, 'constant': cls.constant}[key]
        except (KeyError, TypeError):
            raise ValueError(
                f'Invalid key strategy={key!r} - expected one of: text, strict, constant, or a key function'
            ) from None


def callable_identity(func) -> str:
    """
    :param func: A function, method, or other callable
    :return: A stable label for the given callable (its module and qualified name)
    """
    try:
        return f'{func.__module__}.{func.__qualname__}'
    except AttributeError:  # instances of callable classes, partials, etc.
        cls = type(func)
        return f'{cls.__module__}.{cls.__qualname__}'


def _text(value, _seen: set[int] = None) -> str:
    if value is None:
        return ''
    elif isinstance(value, (str, bytes, int, float)):
        return str(value)

    if _seen is None:
        _seen = set()
    elif id(value) in _seen:
        return '...'

    if isinstance(value, Mapping):
        _seen.add(id(value))
        parts = sorted(f'{_text(k, _seen)}: {_text(v, _seen)}' for k, v in value.items())
        return '{' + ', '.join(parts) + '}'
    elif isinstance(value, Set):
        _seen.add(id(value))
        return ','.join(sorted(_text(v, _seen) for v in value))
    elif isinstance(value, Sequence):
        _seen.add(id(value))
        return ','.join(_text(v, _seen) for v in value)

    try:
        return str(value)
    except Exception as e:  # noqa
        log.debug(f'Unable to convert {type(value).__qualname__} object to a cache key - using fallback: {e}')
        return f'<{type(value).__qualname__} object>'


def _tagged(value, _seen: set[int] = None) -> list[Any]:
    cls = type(value)
    name = cls.__qualname__ if cls.__module__ == 'builtins' else f'{cls.__module__}.{cls.__qualname__}'
    if isinstance(value, Enum):
        return [name, value.name]
    elif value is None or isinstance(value, (bool, int, float, str)):
        return [name, value]
    elif isinstance(value, _ENCODED_TYPES):
        return [name, value]  # converted by PermissiveJSONEncoder
    elif isinstance(value, MethodType):
        return [name, callable_identity(value), _tagged(value.__self__, _seen)]
    elif isinstance(value, (type, FunctionType, BuiltinFunctionType)):
        return [name, callable_identity(value)]

    if _seen is None:
        _seen = set()
    elif id(value) in _seen:
        return [name, '<cycle>']

    if isinstance(value, Mapping):
        _seen.add(id(value))
        return [name, sorted(([_tagged(k, _seen), _tagged(v, _seen)] for k, v in value.items()), key=_dumps_safe)]
    elif isinstance(value, Set):
        _seen.add(id(value))
        return [name, sorted((_tagged(v, _seen) for v in value), key=_dumps_safe)]
    elif isinstance(value, Sequence):
        _seen.add(id(value))
        return [name, [_tagged(v, _seen) for v in value]]
    elif _is_record(value):
        _seen.add(id(value))
        return [name, [[field, _tagged(v, _seen)] for field, v in _record_fields(value)]]

    try:
        return [name, repr(value)]
    except Exception as e:  # noqa
        log.debug(f'Unable to convert {name} object to a strict cache key - using its id: {e}')
        return [name, f'id:{id(value)}']


def _dumps(doc) -> str:
    return json.dumps(doc, cls=PermissiveJSONEncoder, separators=(',', ':'))


def _dumps_safe(doc) -> str:
    try:
        return _dumps(doc)
    except (TypeError, ValueError):
        return repr(doc)
