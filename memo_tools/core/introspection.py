"""
Introspection utilities that build upon the built-in inspect module.
"""

import re
from collections import OrderedDict
from contextlib import suppress
from inspect import Signature, Parameter

__all__ = ['get_signature', 'split_arg_vals_with_defaults', 'insert_kwonly_arg']

_empty = Parameter.empty


def get_signature(func):
    """
    :param func: A callable
    :return: The :class:`inspect.Signature` for the given callable, or None if it cannot be determined (some builtins
      and extension types do not expose one)
    """
    try:
        return Signature.from_callable(func)
    except (TypeError, ValueError):
        return None


def split_arg_vals_with_defaults(sig, args, kwargs):
    """
    Inserts default values where applicable in the given args and kwargs based on the given Signature, so that calls
    that differ only in whether a default was passed explicitly result in the same values.

    If no signature is available, or if the arguments cannot be bound to it, then the given values are returned as-is
    so that the wrapped function can raise its own error when it is called.

    :param Signature sig: The signature of the function the given arguments are for
    :param args: Positional arguments explicitly provided for the function with the given signature
    :param kwargs: Keyword args explicitly provided for the function with the given signature
    :return tuple: (List of args that can be provided as positional, Mapping of arg:value)
    """
    if sig is None:
        return list(args), OrderedDict(kwargs)
    try:
        vals = sig.bind(*args, **kwargs).arguments
    except TypeError:
        return list(args), OrderedDict(kwargs)

    args_out = []
    kwargs_out = OrderedDict()
    for name, param in sig.parameters.items():
        if param.kind == Parameter.VAR_KEYWORD:
            with suppress(KeyError):
                kwargs_out.update(vals[name])
        elif param.kind == Parameter.VAR_POSITIONAL:
            with suppress(KeyError):
                args_out.extend(vals[name])
        elif param.kind in (Parameter.POSITIONAL_ONLY, Parameter.POSITIONAL_OR_KEYWORD):
            try:
                args_out.append(vals[name])
            except KeyError:
                if param.default is not _empty:
                    args_out.append(param.default)
        else:
            try:
                kwargs_out[name] = vals[name]
            except KeyError:
                if param.default is not _empty:
                    kwargs_out[name] = param.default
    return args_out, kwargs_out


def insert_kwonly_arg(func, param, description, param_type='', sig=None):
    """
    Updates the given function in-place to add the given parameter to its signature and docstring.

    :param func: A function
    :param Parameter param: A :class:`inspect.Parameter`
    :param str description: The parameter description to include in the docstring
    :param str param_type: The type to include in the docstring
    :param Signature sig: The :class:`inspect.Signature` of the function if it is already known
    :return: The updated function
    :raises: ValueError if param.kind is not ``Parameter.KEYWORD_ONLY``
    """
    if param.kind != Parameter.KEYWORD_ONLY:
        raise ValueError(f'Only KEYWORD_ONLY parameters are supported; found: {param}')
    sig = sig or Signature.from_callable(func)
    params = list(sig.parameters.values())
    sig_pos = len(params)
    prev = None
    for i, p in enumerate(params):
        if p.kind in (Parameter.KEYWORD_ONLY, Parameter.VAR_KEYWORD):
            sig_pos = i
            prev = params[i]
            break
    if not prev and sig_pos > 0:
        prev = params[sig_pos - 1]

    if prev and func.__doc__ and any(txt in func.__doc__ for txt in (':param', ':return')):
        prev_rx = re.compile(r':param (?<!:){}:.*'.format(prev.name))
        indent_rx = re.compile(r'^(\s+):.*')
        doc = func.__doc__.splitlines()
        doc_pos = len(doc)
        found = False
        indent = ''
        for i, line in enumerate(doc):
            sline = line.strip()
            if sline.startswith(':'):
                if not indent:
                    if m := indent_rx.match(line):
                        indent = m.group(1)

                if not found:
                    if prev_rx.match(sline) or sline.startswith(':return'):
                        found = True
                elif sline.startswith(':param'):
                    doc_pos = i
                    break

                if sline.startswith(':return'):
                    doc_pos = i
                    break

        param_doc = '{}:param {}{}{}: {}'.format(indent, param_type, ' ' if param_type else '', param.name, description)
        if param.default is not _empty:
            param_doc += f' (default: {param.default})'
        doc.insert(doc_pos, param_doc)
        func.__doc__ = '\n'.join(doc)
    params.insert(sig_pos, param)
    func.__signature__ = Signature(params)
    return func
