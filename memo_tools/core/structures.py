"""
Structural copy / merge helpers for nested data.

:func:`deep_copy` rebuilds a nested value so that the result shares no mutable sub-structure with its input, and
:func:`deep_merge` combines two trees without modifying the target that was passed in.  Both understand the following
kinds of values:

- scalars (None, bool, numbers, str, bytes, enum members) - returned as-is
- temporal values (datetime, date, time, timedelta) - a new instance holding the same value
- mappings - a new mapping of the same type (``defaultdict`` factories etc. are preserved)
- sets - a new set of the same type
- sequences (list, tuple, named tuples, deque, ...) - a new sequence of the same type
- containers based on the :mod:`collections.abc` classes - copied via their own ``__deepcopy__``, otherwise field by
  field like records, so the container that holds their items is copied as well
- records (instances with a ``__dict__`` and/or ``__slots__``) - a new instance of the same class, created without
  calling ``__init__``
- anything else (functions, classes, modules, locks, ...) is treated as opaque and returned as-is

Cyclic graphs and shared references are handled with a memo keyed by object identity, in the same way as
:func:`copy.deepcopy`.
"""

import logging
from collections import OrderedDict, defaultdict, deque
from collections.abc import Mapping, MutableMapping, Set, Sequence
from datetime import date, time, timedelta
from decimal import Decimal
from enum import Enum
from fractions import Fraction
from functools import partial
from types import BuiltinFunctionType, FunctionType, MethodType, ModuleType, CodeType
from typing import Any, Iterator, Union

__all__ = ['deep_copy', 'deep_merge', 'get_path', 'pick', 'omit']
log = logging.getLogger(__name__)

_NotSet = object()
_SCALAR_TYPES = (type(None), bool, int, float, complex, str, bytes, Decimal, Fraction, range, Enum, type(Ellipsis))
_OPAQUE_TYPES = (type, FunctionType, BuiltinFunctionType, MethodType, ModuleType, CodeType, partial, property)
# datetime is a subclass of date
_TEMPORAL_TYPES = (date, time, timedelta)
# Subclasses must precede their bases
_MUTABLE_BUILTINS = (defaultdict, OrderedDict, dict, deque, list, set)

Memo = dict[int, Any]


def deep_copy(obj, _memo: Memo = None):
    """
    :param obj: Any value
    :return: A structurally equal copy of the given value that shares no mutable sub-structure with it
    """
    if isinstance(obj, _SCALAR_TYPES) or isinstance(obj, _OPAQUE_TYPES):
        return obj
    if _memo is None:
        _memo = {}
    else:
        try:
            return _memo[id(obj)]
        except KeyError:
            pass

    if isinstance(obj, _TEMPORAL_TYPES):
        return _copy_temporal(obj)
    elif (copier := getattr(type(obj), '__deepcopy__', None)) is not None:
        _memo[id(obj)] = new = copier(obj, _memo)
        return new
    elif isinstance(obj, _MUTABLE_BUILTINS):
        return _copy_builtin(obj, _memo)
    elif isinstance(obj, (tuple, frozenset)):
        return _rebuild(obj, _memo)
    elif _has_fields(obj):
        # Containers built on the collections.abc classes keep their items in their own fields (``self._data``, ...)
        return _copy_record(obj, _memo)
    elif isinstance(obj, (Mapping, Set, Sequence)):
        return _rebuild(obj, _memo)

    log.log(9, f'Treating {type(obj).__qualname__} object as opaque - it will not be copied')
    return obj


# region Copy Helpers


def _copy_temporal(obj: Union[date, time, timedelta]):
    if isinstance(obj, timedelta):
        return type(obj)(days=obj.days, seconds=obj.seconds, microseconds=obj.microseconds)
    return obj.replace()


def _copy_builtin(obj, memo: Memo):
    """
    Copies a dict / list / set / deque, or an instance of a subclass of one of them.  The new instance is created and
    filled via the built-in base class' methods so that overridden ``__init__`` / ``__setitem__`` / etc. methods on
    subclasses are not called.
    """
    base = next(cls for cls in _MUTABLE_BUILTINS if isinstance(obj, cls))
    new = base.__new__(type(obj))
    if base is defaultdict:
        base.__init__(new, obj.default_factory)
    elif base is deque:
        base.__init__(new, (), obj.maxlen)
    else:
        base.__init__(new)
    memo[id(obj)] = new

    if base is list or base is deque:
        base.extend(new, [deep_copy(val, memo) for val in base.__iter__(obj)])
    elif base is set:
        for val in set.__iter__(obj):
            set.add(new, deep_copy(val, memo))
    else:
        src_dict = OrderedDict if base is OrderedDict else dict
        for key, val in src_dict.items(obj):
            src_dict.__setitem__(new, deep_copy(key, memo), deep_copy(val, memo))

    _copy_fields(obj, new, memo)
    return new


def _rebuild(obj: Union[Mapping, Set, Sequence], memo: Memo):
    if isinstance(obj, Mapping):
        items = {deep_copy(key, memo): deep_copy(val, memo) for key, val in obj.items()}
        fallback = dict
    else:
        items = [deep_copy(val, memo) for val in obj]
        fallback = frozenset if isinstance(obj, Set) else tuple
        if (new := memo.get(id(obj))) is not None:  # A cycle was resolved while copying the elements
            return new

    cls = type(obj)
    try:
        new = cls._make(items) if hasattr(cls, '_make') else cls(items)  # named tuples need _make
    except TypeError:
        new = fallback(items)
    else:
        _copy_fields(obj, new, memo)
    memo[id(obj)] = new
    return new


def _copy_record(obj, memo: Memo):
    cls = type(obj)
    new = cls.__new__(cls)
    memo[id(obj)] = new
    _copy_fields(obj, new, memo)
    return new


def _copy_fields(obj, new, memo: Memo):
    for name, val in _record_fields(obj):
        object.__setattr__(new, name, deep_copy(val, memo))


# endregion


# region Records


def _slot_names(cls: type) -> Iterator[str]:
    for klass in cls.__mro__:
        slots = klass.__dict__.get('__slots__', ())
        if isinstance(slots, str):
            slots = (slots,)
        for name in slots:
            if name in ('__dict__', '__weakref__'):
                continue
            elif name.startswith('__') and not name.endswith('__'):
                name = f'_{klass.__name__.lstrip("_")}{name}'  # private names are mangled
            yield name


def _record_fields(obj) -> Iterator[tuple[str, Any]]:
    try:
        yield from vars(obj).items()
    except TypeError:  # no __dict__
        pass
    for name in _slot_names(type(obj)):
        try:
            yield name, object.__getattribute__(obj, name)
        except AttributeError:  # an unset slot
            pass


def _has_fields(obj) -> bool:
    return hasattr(obj, '__dict__') or any(True for _ in _slot_names(type(obj)))


def _is_record(obj) -> bool:
    if isinstance(obj, _SCALAR_TYPES + _OPAQUE_TYPES + _TEMPORAL_TYPES) or isinstance(obj, (Set, Sequence)):
        return False
    return _has_fields(obj)


def _is_tree(obj) -> bool:
    return isinstance(obj, Mapping) or _is_record(obj)


# endregion


# region Merge


def deep_merge(target, source):
    """
    Merge the given source tree into a copy of the given target tree.  For each field in ``source``, if both the target
    and the source have a mapping (or both have a record) at that field, then they are merged recursively, otherwise
    the source value replaces the target value.  Sequences and sets are replaced, never concatenated.  If the target
    and the source are not the same kind of tree, then the result is a copy of the source.

    Neither of the given trees is modified, and the result shares no mutable sub-structure with either of them.

    :param target: A mapping or record
    :param source: A mapping or record whose values should take precedence over the values in ``target``
    :return: The merged tree
    """
    merged = deep_copy(target)
    if not _is_tree(source):
        log.debug(f'Ignoring merge source with type={type(source).__qualname__} - it has no fields')
        return merged
    elif not _same_tree_kind(merged, source):
        return deep_copy(source)
    return _merge_into(merged, source, {})


def _merge_into(merged, source, memo: Memo):
    """Merges the given source into ``merged``, which must be a copy owned by :func:`deep_merge`."""
    if isinstance(merged, Mapping) and not isinstance(merged, MutableMapping):
        merged = dict(merged)

    for key, src_val in _tree_items(source):
        dst_val = _get_field(merged, key)
        if _same_tree_kind(dst_val, src_val):
            _set_field(merged, key, _merge_into(dst_val, src_val, memo))
        else:
            _set_field(merged, key, deep_copy(src_val, memo))
    return merged


def _same_tree_kind(a, b) -> bool:
    if isinstance(a, Mapping):
        return isinstance(b, Mapping)
    elif isinstance(b, Mapping) or not (_is_record(a) and _is_record(b)):
        return False
    elif hasattr(a, '__dict__'):
        return True
    # A record without a __dict__ can only accept the fields that it has slots for
    slots = set(_slot_names(type(a)))
    return all(name in slots for name, _ in _record_fields(b))


def _tree_items(tree) -> Iterator[tuple[Any, Any]]:
    if isinstance(tree, Mapping):
        return iter(list(tree.items()))
    return iter(list(_record_fields(tree)))


def _get_field(tree, key):
    if isinstance(tree, Mapping):
        return tree.get(key, _NotSet)
    try:
        return object.__getattribute__(tree, key)
    except (AttributeError, TypeError):
        return _NotSet


def _set_field(tree, key, value):
    if isinstance(tree, MutableMapping):
        tree[key] = value
    else:
        object.__setattr__(tree, key, value)  # the tree is a copy, so frozen records may be updated


# endregion


# region Path Helpers


def get_path(obj, path: str, default=None, delim: str = '.'):
    """
    Retrieve the value at the given path within the given nested object.

    :param obj: A mapping, record, or sequence that may contain nested values
    :param path: A string containing keys / attribute names / sequence indexes separated by ``delim``
    :param default: The value to return if the path cannot be fully resolved
    :param delim: The separator between path components
    :return: The value found at the given path, or the default value
    """
    value = obj
    for key in (p for p in path.split(delim) if p):
        if isinstance(value, Mapping):
            try:
                value = value[key]
                continue
            except KeyError:
                return default
        elif isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            try:
                value = value[int(key)]
                continue
            except (ValueError, IndexError):
                return default
        try:
            value = getattr(value, key)
        except AttributeError:
            return default
    return value


def pick(obj, *keys) -> dict[Any, Any]:
    """
    :param obj: A mapping or record
    :param keys: The keys / field names to include
    :return: A new dict that contains only the given keys that were present in the given object
    """
    items = dict(_tree_items(obj))
    return {key: items[key] for key in keys if key in items}


def omit(obj, *keys) -> dict[Any, Any]:
    """
    :param obj: A mapping or record
    :param keys: The keys / field names to exclude
    :return: A new dict that contains all of the given object's keys except for the given keys
    """
    omitted = set(keys)
    return {key: val for key, val in _tree_items(obj) if key not in omitted}


# endregion
