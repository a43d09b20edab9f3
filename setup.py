#!/usr/bin/env python

from pathlib import Path
from setuptools import setup, find_packages

project_root = Path(__file__).resolve().parent
long_description = project_root.joinpath('readme.rst').read_text('utf-8')

about = {}
with project_root.joinpath('memo_tools', '__version__.py').open('r', encoding='utf-8') as f:
    exec(f.read(), about)

optional_dependencies = {
    'dev': [                                            # Development env requirements
        'coverage',
        'ipython',
        'pre-commit',                                   # run `pre-commit install` to install hooks
    ],
    'test': ['pytest'],
}

requirements = [
    'cachetools',                                       # memo_tools.caching.caches
    'tzlocal',                                          # memo_tools.logging
    'wrapt',                                            # memo_tools.caching.intercept
]


setup(
    name=about['__title__'],
    version=about['__version__'],
    description=about['__description__'],
    long_description=long_description,
    packages=find_packages(include=['memo_tools', 'memo_tools.*']),
    classifiers=[
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ],
    python_requires='>=3.10',
    install_requires=requirements,
    extras_require=optional_dependencies,
)
