"""
Helpers for serializing Python data structures to JSON
"""

import json
from base64 import b64encode
from collections.abc import Mapping, KeysView, ValuesView
from datetime import datetime, date, time, timedelta
from decimal import Decimal
from enum import Enum
from fractions import Fraction

__all__ = ['PermissiveJSONEncoder', 'json_copy']


class PermissiveJSONEncoder(json.JSONEncoder):
    def default(self, o):
        if isinstance(o, (set, frozenset, KeysView)):
            try:
                return sorted(o)
            except TypeError:  # mixed types
                return sorted(o, key=repr)
        elif isinstance(o, ValuesView):
            return list(o)
        elif isinstance(o, Mapping):
            return dict(o)
        elif isinstance(o, bytes):
            try:
                return o.decode('utf-8')
            except UnicodeDecodeError:
                return b64encode(o).decode('utf-8')
        elif isinstance(o, (datetime, date, time)):
            return o.isoformat()
        elif isinstance(o, Enum):
            return o.value
        elif isinstance(o, complex):
            return [o.real, o.imag]
        elif isinstance(o, (type, timedelta, Decimal, Fraction)):
            return str(o)
        elif hasattr(o, '__to_json__'):
            return o.__to_json__()
        elif hasattr(o, '__serializable__'):
            return o.__serializable__()
        return super().default(o)


def json_copy(obj):
    """
    Copy the given object by serializing it to JSON and loading the result.  The copy is lossy: sets become lists,
    temporal values become strings, and mapping keys become strings.  Use :func:`.structures.deep_copy` to preserve
    types.
    """
    return json.loads(json.dumps(obj, cls=PermissiveJSONEncoder))
