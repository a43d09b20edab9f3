"""
Memoizing wrappers and object proxies, plus structural copy / merge helpers for nested data.
"""

from .__version__ import __version__
from .caching import cached, memoize, once, intercept, pure, impure, CacheKey
from .core.structures import deep_copy, deep_merge, get_path, pick, omit
