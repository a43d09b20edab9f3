"""
Core utilities that are used by multiple other modules/packages in memo_tools.
"""

from importlib import import_module

__attr_module_map = {
    # introspection
    'get_signature': 'introspection',
    'split_arg_vals_with_defaults': 'introspection',
    # serialization
    'PermissiveJSONEncoder': 'serialization',
    'json_copy': 'serialization',
    # structures
    'deep_copy': 'structures',
    'deep_merge': 'structures',
    'get_path': 'structures',
    'pick': 'structures',
    'omit': 'structures',
}

# noinspection PyUnresolvedReferences
__all__ = ['config', 'introspection', 'serialization', 'structures']
__all__.extend(__attr_module_map.keys())


def __dir__():
    return sorted(__all__ + list(globals().keys()))


def __getattr__(name):
    try:
        module_name = __attr_module_map[name]
    except KeyError:
        raise AttributeError(f'module {__name__!r} has no attribute {name!r}')
    else:
        module = import_module(f'.{module_name}', __name__)
        return getattr(module, name)
